"""
Shared fixtures for the aquarium test suite.

Provides:
- a ConfigStore backed by a temp file seeded with the default document
- a controllable millisecond clock for backoff gates
- an in-process wired tank (water twin, filter pump, sensor) on one bus

Timers are only started inside the scenario coroutines the tests run with
asyncio.run(), so building Things here needs no event loop.
"""
from __future__ import annotations

from types import SimpleNamespace

import pytest

from aquarium.clients import WaterClient
from aquarium.config import DEFAULT_CONFIG, ConfigStore
from aquarium.events import EventBus
from aquarium.things import FilterPumpThing, PumpConfig, WaterQualitySensorThing, WaterThing
from aquarium.utils import deep_copy_jsonable


class FakeClock:
    def __init__(self, start_ms: float = 0.0):
        self.t = float(start_ms)

    def __call__(self) -> float:
        return self.t

    def advance(self, ms: float) -> None:
        self.t += ms


@pytest.fixture()
def store(tmp_path):
    s = ConfigStore(str(tmp_path / "config.json"))
    s.save(deep_copy_jsonable(DEFAULT_CONFIG))
    return s


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def tank(store, clock):
    bus = EventBus()
    water = WaterThing(bus)
    pump = FilterPumpThing(WaterClient(water), store, bus, PumpConfig(cleaning_duration_ms=20), clock=clock)
    sensor = WaterQualitySensorThing(WaterClient(water), store, bus)
    return SimpleNamespace(bus=bus, water=water, pump=pump, sensor=sensor, store=store, clock=clock)
