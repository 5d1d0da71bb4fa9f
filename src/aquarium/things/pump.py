from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from ..backoff import PeerConnection
from ..clients import PeerUnavailableError, WaterClient
from ..config import ConfigStore
from ..correction import CorrectionLoop
from ..events import EventBus
from ..state import PumpState
from ..utils import clamp, extract_number, log, now_ms, utc_iso
from .base import ThingBase


@dataclass
class PumpConfig:
    # health decay: decay_per_tick * speed/100 every health_interval_ms
    health_interval_ms: float = 5000.0
    decay_per_tick: float = 0.3

    cleaning_duration_ms: float = 8000.0

    # pump-driven correction of the water twin
    correction_interval_ms: float = 1000.0
    correction_rate: float = 0.8

    initial_speed: int = 0


class FilterPumpThing(ThingBase):
    """
    Filter pump actuator.

    State machine:
        idle --speed>0--> running --cleaningCycle--> cleaning --duration--> running|idle
        running --speed=0--> idle

    Cleaning is never interrupted by a speed change. Leaving speed 0 hands
    water control from degradation to correction; returning to 0 does the
    reverse. "error" is only reachable through inject_fault().
    """

    def __init__(
        self,
        water: WaterClient,
        store: ConfigStore,
        bus: Optional[EventBus] = None,
        cfg: Optional[PumpConfig] = None,
        name: str = "filterpump",
        clock=now_ms,
    ):
        super().__init__(name, bus)
        self.cfg = cfg or PumpConfig()
        self.water = water
        self.store = store

        speed = int(clamp(self.cfg.initial_speed, 0, 100))
        self.state = PumpState(pumpSpeed=speed, filterStatus="running" if speed > 0 else "idle")
        self.cleaning_command: bool = False

        self.connection = PeerConnection("PUMP", water.peer_name, clock=clock)
        self.correction = CorrectionLoop(
            owner="PUMP",
            water=water,
            store=store,
            speed_source=self._effective_speed,
            connection=self.connection,
            rate_per_tick=self.cfg.correction_rate,
        )
        self.correction.active = speed > 0
        # degradation state still owed to the water after a failed handover
        self._pending_degradation: Optional[bool] = None

        self._health_timer = self.periodic("health", self.cfg.health_interval_ms, self.run_health_decay_tick)
        self._correction_timer = self.periodic("correction", self.cfg.correction_interval_ms, self.run_correction_tick)
        self._cleaning_timer = self.one_shot("cleaning", self.cfg.cleaning_duration_ms, self._finish_cleaning)

        self._register_handlers()

    # ======================================================
    # Thing surface
    # ======================================================
    def _register_handlers(self) -> None:
        self.set_property_read_handler("pumpSpeed", lambda: self.state.pumpSpeed)
        self.set_property_read_handler("filterStatus", lambda: self.state.filterStatus)
        self.set_property_read_handler("filterHealth", lambda: self.state.filterHealth)
        self.set_property_read_handler("lastCleaningTime", lambda: self.state.lastCleaningTime)

        self.set_action_handler("setPumpSpeed", self.set_speed)
        self.set_action_handler("cleaningCycle", self.trigger_cleaning)

    async def _effective_speed(self) -> float:
        if self.state.filterStatus == "error":
            return 0.0
        return float(self.state.pumpSpeed)

    # ======================================================
    # SPEED
    # ======================================================
    def _recompute_status(self) -> None:
        if self.state.filterStatus in ("cleaning", "error"):
            return
        self.state.filterStatus = "running" if self.state.pumpSpeed > 0 else "idle"

    async def set_speed(self, value: Any) -> Dict[str, Any]:
        number = extract_number(value)
        if number is None:
            log(f"[PUMP] WARNING invalid pump speed {value!r}")
            return {"success": False, "newSpeed": self.state.pumpSpeed, "message": "speed must be a number"}

        old_speed = self.state.pumpSpeed
        new_speed = int(round(clamp(number, 0.0, 100.0)))
        self.state.pumpSpeed = new_speed
        self._recompute_status()

        log(f"[PUMP] pump speed set to {new_speed}%")

        if old_speed == 0 and new_speed > 0:
            self.correction.active = True
            self._pending_degradation = False
            await self._hand_over_water()
        elif old_speed > 0 and new_speed == 0:
            self.correction.active = False
            self._pending_degradation = True
            await self._hand_over_water()

        await self.emit_property_change("pumpSpeed")
        await self.emit_property_change("filterStatus")

        return {"success": True, "newSpeed": new_speed, "message": f"Pump speed set to {new_speed}%"}

    async def _hand_over_water(self) -> None:
        degrade = self._pending_degradation
        if degrade is None or not self.connection.can_attempt():
            return
        try:
            if degrade:
                await self.water.start_degradation()
            else:
                await self.water.stop_degradation()
        except PeerUnavailableError as e:
            self.connection.record_failure(e)
            return
        self.connection.record_success()
        if self._pending_degradation is degrade:
            self._pending_degradation = None
        log(f"[PUMP] water degradation handed over (active={degrade})")

    # ======================================================
    # HEALTH
    # ======================================================
    async def run_health_decay_tick(self) -> None:
        await self._hand_over_water()
        speed = await self._effective_speed()
        decay = (speed / 100.0) * self.cfg.decay_per_tick
        if decay <= 0 or self.state.filterHealth <= 0:
            return

        self.state.filterHealth = max(0.0, self.state.filterHealth - decay)
        await self.emit_property_change("filterHealth")

    # ======================================================
    # CLEANING
    # ======================================================
    @property
    def cleaning(self) -> bool:
        return self.state.filterStatus == "cleaning"

    async def trigger_cleaning(self, *_: Any) -> Dict[str, Any]:
        if self.state.filterStatus == "error":
            log("[PUMP] WARNING cleaning refused while the pump is in error")
            return {"success": False, "status": "error", "message": "Pump is in error state, clear the fault first"}

        if self.cleaning or self._cleaning_timer.pending:
            log("[PUMP] cleaning cycle already in progress, ignoring")
            return {"success": False, "status": "cleaning", "message": "Cleaning already in progress"}

        log("[PUMP] starting cleaning cycle...")
        self.cleaning_command = True
        self.state.filterStatus = "cleaning"
        self._cleaning_timer.start()
        await self.emit_property_change("filterStatus")

        return {
            "success": True,
            "status": "cleaning",
            "message": f"Cleaning cycle started ({self.cfg.cleaning_duration_ms / 1000.0:.0f}s)",
        }

    async def _finish_cleaning(self) -> None:
        self.state.filterHealth = 100.0
        self.state.filterStatus = "running" if self.state.pumpSpeed > 0 else "idle"
        self.cleaning_command = False
        self.state.lastCleaningTime = utc_iso()

        log(f"[PUMP] cleaning cycle completed, status={self.state.filterStatus}")

        await self.emit_property_change("filterHealth")
        await self.emit_property_change("filterStatus")
        await self.emit_property_change("lastCleaningTime")
        await self.emit_event(
            "cleaningCompleted",
            {"filterHealth": self.state.filterHealth, "timestamp": self.state.lastCleaningTime},
        )

    # ======================================================
    # FAULTS
    # ======================================================
    async def inject_fault(self) -> None:
        self._cleaning_timer.cancel()
        self.cleaning_command = False
        self.state.filterStatus = "error"
        log("[PUMP] WARNING fault injected, pump in error state")
        await self.emit_property_change("filterStatus")

    async def clear_fault(self) -> None:
        if self.state.filterStatus != "error":
            return
        self.state.filterStatus = "idle"
        self._recompute_status()
        await self.emit_property_change("filterStatus")

    # ======================================================
    # CORRECTION
    # ======================================================
    async def run_correction_tick(self) -> Dict[str, float]:
        await self._hand_over_water()
        return await self.correction.tick()

    # ======================================================
    # LIFECYCLE
    # ======================================================
    def start(self, correction: bool = True) -> None:
        self._health_timer.start()
        if correction:
            self._correction_timer.start()
