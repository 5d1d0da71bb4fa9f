from __future__ import annotations

import asyncio
import json
import os
from typing import Any, Dict, Mapping, Optional, Tuple

from aiomqtt import Client, MqttError

from .events import Event, EventBus
from .things.base import ThingBase, UnknownInteractionError
from .utils import ensure_dir_for_file, log


# ============================================================
# Topics
#   <base>/<thing>/properties/<name>        property changes (out)
#   <base>/<thing>/events/<name>            thing events (out)
#   <base>/<thing>/properties/<name>/set    property writes (in)
#   <base>/<thing>/actions/<name>           action invocations (in)
# ============================================================
def event_topic(base_topic: str, ev: Event) -> Optional[str]:
    if ev.type == "property":
        return f"{base_topic}/{ev.source}/properties/{ev.name}"
    if ev.type == "event":
        return f"{base_topic}/{ev.source}/events/{ev.name}"
    return None


def build_payload(ev: Event) -> Dict[str, Any]:
    return {
        "thing": ev.source,
        "name": ev.name,
        "value": ev.data.get("value"),
        "ts": ev.ts,
        "seq": ev.seq,
    }


def parse_command_topic(base_topic: str, topic: str) -> Optional[Tuple[str, str, str]]:
    """Returns (thing, kind, name) with kind "write" or "action", or None."""
    prefix = f"{base_topic}/"
    if not topic.startswith(prefix):
        return None
    parts = topic[len(prefix):].split("/")

    if len(parts) == 4 and parts[1] == "properties" and parts[3] == "set":
        return parts[0], "write", parts[2]
    if len(parts) == 3 and parts[1] == "actions":
        return parts[0], "action", parts[2]
    return None


async def dispatch_command(
    things: Mapping[str, ThingBase],
    base_topic: str,
    topic: str,
    payload: Any,
) -> Dict[str, Any]:
    """Route one inbound command to the addressed Thing."""
    parsed = parse_command_topic(base_topic, topic)
    if parsed is None:
        return {"success": False, "message": f"not a command topic: {topic}"}

    thing_name, kind, name = parsed
    thing = things.get(thing_name)
    if thing is None:
        return {"success": False, "message": f"unknown thing {thing_name!r}"}

    try:
        if kind == "write":
            result = await thing.write_property(name, payload)
        elif payload is None:
            result = await thing.invoke_action(name)
        else:
            result = await thing.invoke_action(name, payload)
    except UnknownInteractionError as e:
        return {"success": False, "message": str(e.args[0])}
    except TypeError as e:
        # payload shape does not match the handler signature
        log(f"[CTL] WARNING rejected {topic}: {e!r}")
        return {"success": False, "message": f"invalid arguments for {name!r}"}

    if isinstance(result, dict):
        return result
    return {"success": bool(result) if isinstance(result, bool) else True, "result": result}


def decode_payload(raw: bytes) -> Any:
    text = raw.decode("utf-8", errors="replace").strip()
    if not text:
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return text


# ============================================================
# Publisher: bus -> JSONL (+ MQTT)
# ============================================================
async def mqtt_publisher(
    host: str,
    port: int,
    base_topic: str,
    bus: EventBus,
    stop_event: asyncio.Event,
    out_jsonl: str,
    enable_mqtt: bool = True,
) -> None:
    """
    Forwards every property change and Thing event from the bus to
    out_jsonl and, unless disabled, to the broker.
    """
    ensure_dir_for_file(out_jsonl)
    q = await bus.subscribe()

    try:
        while not stop_event.is_set():
            mqtt_client: Optional[Client] = None
            try:
                if enable_mqtt:
                    log(f"[PUB] connecting to mqtt://{host}:{port}")
                    mqtt_client = Client(hostname=host, port=port)
                    await mqtt_client.__aenter__()
                    log("[PUB] connected")

                with open(out_jsonl, "a", encoding="utf-8") as f:
                    log(f"[PUB] writing to {os.path.abspath(out_jsonl)}")

                    while not stop_event.is_set():
                        try:
                            ev: Event = await asyncio.wait_for(q.get(), timeout=0.5)
                        except asyncio.TimeoutError:
                            continue

                        topic = event_topic(base_topic, ev)
                        if topic is None:
                            continue
                        payload = build_payload(ev)

                        f.write(json.dumps({"topic": topic, "payload": payload}, ensure_ascii=False) + "\n")
                        f.flush()

                        if mqtt_client is not None:
                            await mqtt_client.publish(topic, json.dumps(payload).encode("utf-8"), qos=0)

            except MqttError as e:
                log(f"[PUB] MQTT error: {repr(e)} retry 1s")
                await asyncio.sleep(1.0)
            except Exception as e:
                log(f"[PUB] Unexpected error: {repr(e)} retry 1s")
                await asyncio.sleep(1.0)
            finally:
                if mqtt_client is not None:
                    try:
                        await mqtt_client.__aexit__(None, None, None)
                    except MqttError:
                        pass
    finally:
        await bus.unsubscribe(q)


# ============================================================
# Command listener: MQTT -> Things
# ============================================================
async def command_listener(
    host: str,
    port: int,
    base_topic: str,
    things: Mapping[str, ThingBase],
    stop_event: asyncio.Event,
) -> None:
    filters = [f"{base_topic}/+/properties/+/set", f"{base_topic}/+/actions/+"]

    while not stop_event.is_set():
        try:
            async with Client(hostname=host, port=port) as client:
                for t in filters:
                    await client.subscribe(t)
                    log(f"[CTL] subscribed {t}")

                async for msg in client.messages:
                    if stop_event.is_set():
                        break

                    topic = str(msg.topic)
                    try:
                        result = await dispatch_command(things, base_topic, topic, decode_payload(msg.payload))
                    except Exception as e:
                        log(f"[CTL] command {topic} failed: {repr(e)}")
                        continue
                    log(f"[CTL] {topic} -> {result}")
                    await client.publish(f"{topic}/result", json.dumps(result, default=str).encode("utf-8"), qos=0)

        except MqttError as e:
            log(f"[CTL] MQTT error: {repr(e)} retry 1s")
            await asyncio.sleep(1.0)
        except Exception as e:
            log(f"[CTL] Unexpected error: {repr(e)} retry 1s")
            await asyncio.sleep(1.0)
