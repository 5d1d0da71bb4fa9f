from __future__ import annotations

from typing import Awaitable, Callable, Dict

from .backoff import PeerConnection
from .clients import PeerUnavailableError, WaterClient
from .config import ConfigStore
from .state import PARAMETERS, WaterParameterSet
from .utils import clamp, log


SpeedSource = Callable[[], Awaitable[float]]

# below this distance a parameter counts as on target
TARGET_TOLERANCE = 0.01


def plan_corrections(current: WaterParameterSet, targets: Dict[str, float], max_step: float) -> Dict[str, float]:
    """Move every parameter towards its target by at most max_step, never past it."""
    updates: Dict[str, float] = {}
    if max_step <= 0:
        return updates

    for p in PARAMETERS:
        value = current.get(p)
        delta = float(targets[p]) - value
        if abs(delta) < TARGET_TOLERANCE:
            continue

        step = min(abs(delta), max_step)
        if step <= TARGET_TOLERANCE:
            continue
        updates[p] = value + (step if delta > 0 else -step)
    return updates


class CorrectionLoop:
    """
    Closed-loop correction of the water twin towards the configured optimal
    midpoints, proportional to pump speed:

        max_step = rate_per_tick * speed / 100

    The loop talks to exactly one remote peer guarded by `connection`: the
    water twin for pump-driven correction, or the pump for water-side pull
    correction. Unreachable peers are handled by backoff, never raised.
    """

    def __init__(
        self,
        owner: str,
        water: WaterClient,
        store: ConfigStore,
        speed_source: SpeedSource,
        connection: PeerConnection,
        rate_per_tick: float = 0.8,
    ):
        self.owner = owner
        self.water = water
        self.store = store
        self.speed_source = speed_source
        self.connection = connection
        self.rate_per_tick = float(rate_per_tick)

        self.active = False
        self.last_updates: Dict[str, float] = {}

    def max_step(self, speed: float) -> float:
        return self.rate_per_tick * clamp(float(speed) / 100.0, 0.0, 1.0)

    async def tick(self) -> Dict[str, float]:
        self.last_updates = {}
        if not self.active:
            return {}
        if not self.connection.can_attempt():
            return {}

        try:
            speed = float(await self.speed_source())
            if speed <= 0:
                self.connection.record_success()
                return {}

            current = await self.water.read_all()
            targets = self.store.optimal_targets()
            updates = plan_corrections(current, targets, self.max_step(speed))

            for p, v in updates.items():
                await self.water.write(p, v)
        except PeerUnavailableError as e:
            self.connection.record_failure(e)
            return {}

        self.connection.record_success()
        if updates:
            pretty = ", ".join(f"{k}={v:.2f}" for k, v in updates.items())
            log(f"[{self.owner}] correction @ {speed:.0f}%: {pretty}")
        self.last_updates = updates
        return updates
