import asyncio

import pytest

from aquarium.clients import ThingClient
from aquarium.correction import plan_corrections
from aquarium.state import WaterParameterSet


TARGETS = {"pH": 7.0, "temperature": 25.0, "oxygenLevel": 7.0}


def test_plan_moves_by_at_most_max_step():
    updates = plan_corrections(WaterParameterSet(pH=8.0, temperature=23.0, oxygenLevel=7.1), TARGETS, 0.4)

    assert updates["pH"] == pytest.approx(7.6)
    assert updates["temperature"] == pytest.approx(23.4)
    assert updates["oxygenLevel"] == pytest.approx(7.0)


def test_plan_skips_parameters_on_target():
    updates = plan_corrections(WaterParameterSet(pH=7.005), TARGETS, 0.4)
    assert updates == {}


def test_plan_with_zero_step_is_empty():
    assert plan_corrections(WaterParameterSet(pH=9.0), TARGETS, 0.0) == {}


def test_pump_correction_at_half_speed(tank):
    async def scenario():
        await tank.water.write("pH", 8.0)
        await tank.pump.set_speed(50)
        updates = await tank.pump.run_correction_tick()
        return updates

    updates = asyncio.run(scenario())

    assert updates == {"pH": pytest.approx(7.6)}
    assert tank.water.read().pH == pytest.approx(7.6)
    assert tank.pump.connection.reachable is True


def test_correction_is_idle_at_speed_zero(tank):
    async def scenario():
        await tank.water.write("pH", 8.0)
        return await tank.pump.run_correction_tick()

    assert asyncio.run(scenario()) == {}
    assert tank.water.read().pH == 8.0


def test_unreachable_water_backs_off(tank):
    async def scenario():
        await tank.water.write("pH", 8.0)
        await tank.pump.set_speed(100)
        tank.pump.water.set_online(False)

        failed = await tank.pump.run_correction_tick()
        tank.pump.water.set_online(True)
        gated = await tank.pump.run_correction_tick()
        tank.clock.advance(1000)
        recovered = await tank.pump.run_correction_tick()
        return failed, gated, recovered

    failed, gated, recovered = asyncio.run(scenario())

    assert failed == {}
    assert gated == {}
    assert recovered == {"pH": pytest.approx(7.2)}
    assert tank.pump.connection.reachable is True
    assert tank.pump.connection.retry_delay_ms == 1000


def test_water_side_pull_correction(tank):
    async def scenario():
        loop = tank.water.attach_pump(ThingClient(tank.pump), tank.store, clock=tank.clock)
        await tank.water.write("pH", 8.0)
        await tank.pump.set_speed(50)
        return await loop.tick()

    updates = asyncio.run(scenario())

    # 2.2 per tick at 50% is 1.1, enough to land on the midpoint
    assert updates == {"pH": pytest.approx(7.0)}
    assert tank.water.read().pH == pytest.approx(7.0)


def test_pull_correction_backs_off_when_pump_is_unreachable(tank):
    async def scenario():
        pump_client = ThingClient(tank.pump)
        loop = tank.water.attach_pump(pump_client, tank.store, clock=tank.clock)
        pump_client.set_online(False)
        await loop.tick()
        return loop

    loop = asyncio.run(scenario())

    assert loop.connection.reachable is False
    assert loop.connection.next_retry_at_ms == 1000
