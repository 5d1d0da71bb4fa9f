import asyncio
import json
from types import SimpleNamespace

import pytest

from aquarium import mqtt_bridge
from aquarium.events import make_event
from aquarium.mqtt_bridge import (
    command_listener,
    build_payload,
    decode_payload,
    dispatch_command,
    event_topic,
    mqtt_publisher,
    parse_command_topic,
)


BASE = "aquarium"


def test_event_topics():
    prop = make_event("property", "water", "pH", 7.1)
    ev = make_event("event", "filterpump", "cleaningCompleted", {"filterHealth": 100.0})

    assert event_topic(BASE, prop) == "aquarium/water/properties/pH"
    assert event_topic(BASE, ev) == "aquarium/filterpump/events/cleaningCompleted"
    assert event_topic(BASE, make_event("tick", "clock", "tick", 1)) is None


def test_build_payload():
    payload = build_payload(make_event("property", "water", "pH", 7.1))
    assert payload["thing"] == "water"
    assert payload["name"] == "pH"
    assert payload["value"] == 7.1


@pytest.mark.parametrize(
    "topic, parsed",
    [
        ("aquarium/water/properties/pH/set", ("water", "write", "pH")),
        ("aquarium/filterpump/actions/cleaningCycle", ("filterpump", "action", "cleaningCycle")),
        ("aquarium/water/properties/pH", None),
        ("other/water/actions/startDegradation", None),
    ],
)
def test_parse_command_topic(topic, parsed):
    assert parse_command_topic(BASE, topic) == parsed


@pytest.mark.parametrize("raw, value", [(b"42", 42), (b'{"value": 7.2}', {"value": 7.2}), (b"", None), (b"demo", "demo")])
def test_decode_payload(raw, value):
    assert decode_payload(raw) == value


def test_dispatch_property_write(tank):
    things = {"water": tank.water}
    result = asyncio.run(dispatch_command(things, BASE, "aquarium/water/properties/pH/set", 8.2))

    assert result["success"] is True
    assert tank.water.read().pH == 8.2


def test_dispatch_action_with_payload(tank):
    things = {"filterpump": tank.pump}
    result = asyncio.run(dispatch_command(things, BASE, "aquarium/filterpump/actions/setPumpSpeed", {"value": 70}))

    assert result["newSpeed"] == 70
    assert tank.pump.state.pumpSpeed == 70


def test_dispatch_sensor_mode_write(tank):
    things = {"waterqualitysensor": tank.sensor}
    result = asyncio.run(dispatch_command(things, BASE, "aquarium/waterqualitysensor/properties/mode/set", "production"))

    assert result == {"success": True, "result": True}
    assert tank.store.get_mode() == "production"


def test_dispatch_rejects_unknown_targets(tank):
    things = {"water": tank.water}

    async def scenario():
        return (
            await dispatch_command(things, BASE, "aquarium/heater/actions/on", None),
            await dispatch_command(things, BASE, "aquarium/water/actions/boil", None),
            await dispatch_command(things, BASE, "aquarium/water/properties/pH", 7.0),
        )

    unknown_thing, unknown_action, not_command = asyncio.run(scenario())

    assert unknown_thing["success"] is False
    assert unknown_action["success"] is False
    assert "boil" in unknown_action["message"]
    assert not_command["success"] is False


def test_publisher_writes_jsonl_without_broker(tank, tmp_path):
    out = tmp_path / "traffic.jsonl"

    async def scenario():
        stop = asyncio.Event()
        task = asyncio.create_task(mqtt_publisher("127.0.0.1", 1883, BASE, tank.bus, stop, str(out), enable_mqtt=False))
        await asyncio.sleep(0.05)
        await tank.water.write("pH", 7.4)
        await asyncio.sleep(0.1)
        stop.set()
        await asyncio.wait_for(task, timeout=2.0)

    asyncio.run(scenario())

    lines = [json.loads(line) for line in out.read_text(encoding="utf-8").splitlines()]
    topics = [line["topic"] for line in lines]
    assert "aquarium/water/properties/pH" in topics
    assert "aquarium/water/events/waterStateChanged" in topics


def test_dispatch_rejects_mismatched_payloads(tank):
    things = {"water": tank.water, "filterpump": tank.pump}

    async def scenario():
        return (
            await dispatch_command(things, BASE, "aquarium/water/actions/startDegradation", {"go": 1}),
            await dispatch_command(things, BASE, "aquarium/filterpump/actions/setPumpSpeed", None),
        )

    degrade, speed = asyncio.run(scenario())

    assert degrade["success"] is False
    assert "startDegradation" in degrade["message"]
    assert speed["success"] is False
    assert tank.water.degradation_active is False
    assert tank.pump.state.pumpSpeed == 0


class FakeBrokerClient:
    """Stands in for aiomqtt.Client: replays queued messages, records publishes."""

    def __init__(self, messages, stop_event, published):
        self._messages = messages
        self._stop_event = stop_event
        self.published = published

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def subscribe(self, topic):
        pass

    async def publish(self, topic, payload, qos=0):
        self.published.append((topic, json.loads(payload)))

    @property
    def messages(self):
        return self._replay()

    async def _replay(self):
        for topic, payload in self._messages:
            yield SimpleNamespace(topic=topic, payload=payload)
        self._stop_event.set()


def test_listener_keeps_serving_after_bad_commands(tank, monkeypatch):
    def explode():
        raise RuntimeError("valve stuck")

    tank.water.set_action_handler("flush", explode)
    things = {"water": tank.water, "filterpump": tank.pump}
    messages = [
        ("aquarium/water/actions/startDegradation", b'{"go": 1}'),
        ("aquarium/filterpump/actions/setPumpSpeed", b""),
        ("aquarium/water/actions/flush", b""),
        ("aquarium/filterpump/actions/setPumpSpeed", b"30"),
    ]
    published = []

    async def scenario():
        stop = asyncio.Event()
        monkeypatch.setattr(
            mqtt_bridge,
            "Client",
            lambda hostname, port: FakeBrokerClient(messages, stop, published),
        )
        await asyncio.wait_for(command_listener("127.0.0.1", 1883, BASE, things, stop), timeout=2.0)

    asyncio.run(scenario())

    results = dict(published)
    assert results["aquarium/water/actions/startDegradation/result"]["success"] is False
    assert "aquarium/water/actions/flush/result" not in results
    assert results["aquarium/filterpump/actions/setPumpSpeed/result"]["newSpeed"] == 30
    assert tank.pump.state.pumpSpeed == 30
