import asyncio

import pytest

from aquarium.events import drain
from aquarium.things import WaterThing


def test_write_clamps_into_physical_bounds():
    async def scenario():
        water = WaterThing()
        high = await water.write("pH", 15.0)
        low = await water.write("temperature", -3)
        return water, high, low

    water, high, low = asyncio.run(scenario())

    assert high["success"] is True
    assert high["clampedValue"] == 14.0
    assert low["clampedValue"] == 0.0
    assert water.read().pH == 14.0
    assert water.read().temperature == 0.0


def test_write_accepts_value_envelope():
    water = WaterThing()
    result = asyncio.run(water.write_property("oxygenLevel", {"value": 9.5}))

    assert result["success"] is True
    assert water.read().oxygenLevel == 9.5


def test_non_numeric_write_is_rejected():
    water = WaterThing()
    result = asyncio.run(water.write("pH", "acidic"))

    assert result["success"] is False
    assert water.read().pH == 7.0


def test_unknown_parameter_raises():
    water = WaterThing()
    with pytest.raises(KeyError):
        asyncio.run(water.write("salinity", 1.0))


def test_degradation_tick_moves_accelerated_parameter_faster():
    water = WaterThing()
    asyncio.run(water.run_degradation_tick())

    state = water.read()
    assert state.pH == pytest.approx(7.6)
    assert state.temperature == pytest.approx(25.2)
    assert state.oxygenLevel == pytest.approx(7.2)


def test_rotation_flips_direction_and_accelerated_parameter():
    water = WaterThing()
    water.rotate_cycle()

    assert water.increasing is False
    assert water.accelerated_parameter == "temperature"

    asyncio.run(water.run_degradation_tick())
    state = water.read()
    assert state.pH == pytest.approx(6.8)
    assert state.temperature == pytest.approx(24.4)
    assert state.oxygenLevel == pytest.approx(6.8)


def test_rotation_wraps_around():
    water = WaterThing()
    for _ in range(3):
        water.rotate_cycle()

    assert water.accelerated_parameter == "pH"
    assert water.increasing is False


def test_degradation_clamps_at_bounds():
    async def scenario():
        water = WaterThing()
        await water.write("oxygenLevel", 19.9)
        water.rotate_cycle()
        water.rotate_cycle()  # UP again, oxygenLevel accelerated
        await water.run_degradation_tick()
        return water

    water = asyncio.run(scenario())
    assert water.read().oxygenLevel == 20.0


def test_start_and_stop_degradation_are_idempotent():
    async def scenario():
        water = WaterThing()
        first = water.start_degradation()
        second = water.start_degradation()
        active = water.degradation_active
        stopped = water.stop_degradation()
        stopped_again = water.stop_degradation()
        return first, second, active, stopped, stopped_again, water.degradation_active

    first, second, active, stopped, stopped_again, still_active = asyncio.run(scenario())

    assert (first, second) == (True, False)
    assert active is True
    assert (stopped, stopped_again) == (True, False)
    assert still_active is False


def test_degradation_actions_report_state():
    async def scenario():
        water = WaterThing()
        started = await water.invoke_action("startDegradation")
        stopped = await water.invoke_action("stopDegradation")
        noop = await water.invoke_action("stopDegradation")
        return started, stopped, noop

    started, stopped, noop = asyncio.run(scenario())

    assert started == {"success": True, "active": True, "changed": True}
    assert stopped == {"success": True, "active": False, "changed": True}
    assert noop["changed"] is False


def test_write_emits_property_change_and_state_event():
    async def scenario():
        water = WaterThing()
        q = await water.bus.subscribe()
        await water.write("pH", 8.0)
        return drain(q)

    events = asyncio.run(scenario())

    prop = [e for e in events if e.type == "property"]
    changed = [e for e in events if e.type == "event"]
    assert [(e.name, e.data["value"]) for e in prop] == [("pH", 8.0)]
    assert changed[0].name == "waterStateChanged"
    payload = changed[0].data["value"]
    assert payload["parameter"] == "pH"
    assert payload["oldValue"] == 7.0
    assert payload["newValue"] == 8.0


def test_stopped_thing_ignores_late_restart():
    async def scenario():
        water = WaterThing()
        water.start_degradation()
        water.stop()
        # e.g. a pump hand-over that was in flight during shutdown
        restarted = await water.invoke_action("startDegradation")
        return restarted, water.degradation_active

    restarted, active = asyncio.run(scenario())

    assert restarted["changed"] is False
    assert active is False
