from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any, Dict

from .state import PARAMETERS, WaterParameterSet

if TYPE_CHECKING:
    from .things.base import ThingBase


class PeerUnavailableError(ConnectionError):
    pass


class ThingClient:
    """
    Consumer-side handle to a Thing.

    Every call is a suspension point, like a network round-trip, and fails
    with PeerUnavailableError while the peer is offline. The in-process
    transport keeps the failure mode so retry/backoff can be exercised
    without a network.
    """

    def __init__(self, thing: "ThingBase", latency_s: float = 0.0):
        self.thing = thing
        self.latency_s = latency_s
        self.online = True

    @property
    def peer_name(self) -> str:
        return self.thing.name

    def set_online(self, online: bool) -> None:
        self.online = bool(online)

    async def _round_trip(self) -> None:
        await asyncio.sleep(self.latency_s)
        if not self.online:
            raise PeerUnavailableError(f"{self.thing.name} is unreachable")

    async def read_property(self, prop: str) -> Any:
        await self._round_trip()
        return await self.thing.read_property(prop)

    async def write_property(self, prop: str, value: Any) -> Any:
        await self._round_trip()
        return await self.thing.write_property(prop, value)

    async def invoke_action(self, action: str, *args: Any) -> Any:
        await self._round_trip()
        return await self.thing.invoke_action(action, *args)


class WaterClient(ThingClient):
    """ThingClient with the water-specific conveniences used by correction loops."""

    async def read_all(self) -> WaterParameterSet:
        values: Dict[str, float] = {}
        for p in PARAMETERS:
            values[p] = float(await self.read_property(p))
        return WaterParameterSet(**values)

    async def write(self, parameter: str, value: float) -> Any:
        return await self.write_property(parameter, value)

    async def start_degradation(self) -> Any:
        return await self.invoke_action("startDegradation")

    async def stop_degradation(self) -> Any:
        return await self.invoke_action("stopDegradation")
