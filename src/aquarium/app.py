from __future__ import annotations

import argparse
import asyncio
import os
import signal
from typing import Dict, List, Optional

from .clients import ThingClient, WaterClient
from .config import ConfigStore, SamplingConfig
from .events import EventBus
from .modbus_mock import ModbusFilterPumpMock
from .mqtt_bridge import command_listener, mqtt_publisher
from .orchestrator import Orchestrator
from .things import FilterPumpThing, PumpConfig, ThingBase, WaterConfig, WaterQualitySensorThing, WaterThing
from .utils import log


# ============================================================
# Wiring
# ============================================================
class Aquarium:
    """All Things of one simulated tank, wired through in-process clients."""

    def __init__(
        self,
        store: ConfigStore,
        sampling: Optional[SamplingConfig] = None,
        correction: str = "pump",
        bus: Optional[EventBus] = None,
        sensor_interval_ms: Optional[int] = None,
        health_interval_ms: Optional[int] = None,
    ):
        self.store = store
        self.sampling = sampling or SamplingConfig()
        self.correction = correction
        self.bus = bus or EventBus()

        mode = store.mode_settings()
        self.water = WaterThing(self.bus, WaterConfig(degradation_interval_ms=mode["degradationIntervalMs"]))
        self.pump = FilterPumpThing(
            WaterClient(self.water),
            store,
            self.bus,
            PumpConfig(health_interval_ms=health_interval_ms or mode["filterDegradationIntervalMs"]),
        )
        self.sensor = WaterQualitySensorThing(
            WaterClient(self.water),
            store,
            self.bus,
            sampling_interval_ms=sensor_interval_ms,
        )

        if correction == "water":
            self.water.attach_pump(ThingClient(self.pump), store)

        self.orchestrator = Orchestrator(
            self.bus,
            ThingClient(self.sensor),
            ThingClient(self.pump),
            status_interval_ms=self.sampling.orchestration_check_interval_ms,
        )

    @property
    def things(self) -> Dict[str, ThingBase]:
        return {t.name: t for t in (self.water, self.pump, self.sensor)}

    def start(self) -> None:
        self.water.start(degrade=True)
        self.pump.start(correction=(self.correction == "pump"))
        self.sensor.start()
        for t in self.things.values():
            log(f"[MAIN] {t.name}: properties={t.property_names()} actions={t.action_names()}")
        log(f"[MAIN] things started: {', '.join(self.things)} (correction={self.correction})")

    def stop(self) -> None:
        for t in self.things.values():
            t.stop()


# ============================================================
# Main
# ============================================================
def install_signal_handlers(stop_event: asyncio.Event) -> None:
    def _handler(*_):
        stop_event.set()

    try:
        signal.signal(signal.SIGINT, _handler)
        signal.signal(signal.SIGTERM, _handler)
    except ValueError:
        # not on the main thread
        pass


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Aquarium Web of Things simulator over MQTT + JSONL")
    p.add_argument("--config", default="config.json", help="Configuration document (JSON)")
    p.add_argument("--host", default="127.0.0.1", help="MQTT broker host")
    p.add_argument("--port", default=1883, type=int, help="MQTT broker port")
    p.add_argument("--base-topic", default="aquarium", help="Base topic")
    p.add_argument("--out", default="out/aquarium_traffic.jsonl", help="Output JSONL")
    p.add_argument(
        "--correction",
        choices=["pump", "water"],
        default="pump",
        help="Which side runs the correction loop: the pump pushes, or the water pulls pump speed",
    )
    p.add_argument("--with-modbus-mock", action="store_true", help="Also run the register-level filter pump mock")
    p.add_argument("--no-mqtt", action="store_true", help="Disable MQTT (still writes JSONL)")
    return p.parse_args(argv)


async def run_all(args: argparse.Namespace) -> None:
    stop_event = asyncio.Event()
    install_signal_handlers(stop_event)

    store = ConfigStore(args.config)
    sampling = SamplingConfig.from_env()
    log(f"[MAIN] intervals: {sampling.describe()}")

    # explicit env overrides win over the mode table
    sensor_interval = sampling.water_sensor_interval_ms if os.environ.get("WATER_SENSOR_INTERVAL") else None
    health_interval = sampling.filter_health_interval_ms if os.environ.get("FILTER_HEALTH_INTERVAL") else None

    aquarium = Aquarium(
        store,
        sampling,
        correction=args.correction,
        sensor_interval_ms=sensor_interval,
        health_interval_ms=health_interval,
    )
    aquarium.start()

    modbus: Optional[ModbusFilterPumpMock] = None
    if args.with_modbus_mock:
        modbus = ModbusFilterPumpMock(WaterClient(aquarium.water), store)
        modbus.start()

    tasks: List[asyncio.Task] = [
        asyncio.create_task(aquarium.orchestrator.run(stop_event)),
        asyncio.create_task(
            mqtt_publisher(
                host=args.host,
                port=args.port,
                base_topic=args.base_topic,
                bus=aquarium.bus,
                stop_event=stop_event,
                out_jsonl=args.out,
                enable_mqtt=(not args.no_mqtt),
            )
        ),
    ]
    if not args.no_mqtt:
        tasks.append(asyncio.create_task(
            command_listener(args.host, args.port, args.base_topic, aquarium.things, stop_event)
        ))

    log(f"[MAIN] config={os.path.abspath(args.config)} mode={store.get_mode()}")
    log(f"[MAIN] host={args.host} port={args.port} base_topic={args.base_topic} out={os.path.abspath(args.out)}")
    if args.no_mqtt:
        log("[MAIN] MQTT disabled (--no-mqtt). Writing JSONL only.")

    while not stop_event.is_set():
        await asyncio.sleep(0.2)

    log("[MAIN] shutting down")
    aquarium.stop()
    if modbus is not None:
        modbus.stop()
    for t in tasks:
        t.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)
    try:
        asyncio.run(run_all(args))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
