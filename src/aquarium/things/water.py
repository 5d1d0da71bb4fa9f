from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Dict, Optional

from ..backoff import PeerConnection
from ..clients import ThingClient, WaterClient
from ..config import ConfigStore
from ..correction import CorrectionLoop
from ..events import EventBus
from ..state import PARAMETERS, WaterParameterSet, clamp_parameter
from ..utils import extract_number, log, now_ms, utc_iso
from .base import ThingBase


@dataclass
class WaterConfig:
    degradation_interval_ms: float = 1000.0
    cycle_duration_ms: float = 30000.0      # accelerated parameter + direction rotation

    base_step: float = 0.2                  # applied to every parameter
    accelerated_step: float = 0.4           # extra, applied to the accelerated one

    # water-side pull correction (reads pump speed remotely)
    correction_interval_ms: float = 1000.0
    pull_correction_rate: float = 2.2


class WaterThing(ThingBase):
    """
    Digital twin of the aquarium water: the source of truth for pH,
    temperature and oxygen level.

    Writes are clamped into physical bounds, never rejected. While degradation
    is active the values drift in a saw-tooth: every tick moves all three
    parameters by base_step and one "accelerated" parameter by an extra
    accelerated_step; every cycle the direction flips and the accelerated
    parameter rotates.
    """

    def __init__(
        self,
        bus: Optional[EventBus] = None,
        cfg: Optional[WaterConfig] = None,
        initial: Optional[WaterParameterSet] = None,
        name: str = "water",
    ):
        super().__init__(name, bus)
        self.cfg = cfg or WaterConfig()
        self.state: WaterParameterSet = replace(initial) if initial else WaterParameterSet()

        # survives stop/start of the degradation
        self.increasing: bool = True
        self.accelerated_index: int = 0

        self._degradation_timer = self.periodic("degradation", self.cfg.degradation_interval_ms, self.run_degradation_tick)
        self._rotation_timer = self.periodic("rotation", self.cfg.cycle_duration_ms, self._on_rotation)

        self.pump_correction: Optional[CorrectionLoop] = None
        self._correction_timer = None

        self._register_handlers()

    # ======================================================
    # Thing surface
    # ======================================================
    def _register_handlers(self) -> None:
        for p in PARAMETERS:
            self.set_property_read_handler(p, self._reader(p))
            self.set_property_write_handler(p, self._writer(p))

        self.set_action_handler("startDegradation", self._start_degradation_action)
        self.set_action_handler("stopDegradation", self._stop_degradation_action)

    def _reader(self, parameter: str):
        def _read() -> float:
            return self.state.get(parameter)
        return _read

    def _writer(self, parameter: str):
        async def _write(value: Any) -> Dict[str, Any]:
            return await self.write(parameter, value)
        return _write

    async def _start_degradation_action(self) -> Dict[str, Any]:
        started = self.start_degradation()
        return {"success": True, "active": self.degradation_active, "changed": started}

    async def _stop_degradation_action(self) -> Dict[str, Any]:
        stopped = self.stop_degradation()
        return {"success": True, "active": self.degradation_active, "changed": stopped}

    # ======================================================
    # READ / WRITE
    # ======================================================
    def read(self) -> WaterParameterSet:
        return replace(self.state)

    async def write(self, parameter: str, value: Any) -> Dict[str, Any]:
        if parameter not in PARAMETERS:
            raise KeyError(f"unknown water parameter {parameter!r}")

        number = extract_number(value)
        if number is None:
            log(f"[WATER] WARNING ignoring non-numeric {parameter} write: {value!r}")
            current = self.state.get(parameter)
            return {"success": False, "clampedValue": current, "message": f"{parameter} must be a number"}

        old, new = self._store(parameter, number)
        log(f"[WATER] {parameter} updated: {old:.2f} -> {new:.2f}")
        await self._notify_change(parameter, old, new)

        return {"success": True, "clampedValue": new, "message": f"{parameter} set to {new}"}

    def _store(self, parameter: str, value: float):
        old = self.state.get(parameter)
        new = clamp_parameter(parameter, value)
        setattr(self.state, parameter, new)
        return old, new

    async def _notify_change(self, parameter: str, old: float, new: float) -> None:
        await self.emit_property_change(parameter)
        await self.emit_event(
            "waterStateChanged",
            {"parameter": parameter, "oldValue": old, "newValue": new, "timestamp": utc_iso()},
        )

    # ======================================================
    # DEGRADATION
    # ======================================================
    @property
    def degradation_active(self) -> bool:
        return self._degradation_timer.running

    @property
    def accelerated_parameter(self) -> str:
        return PARAMETERS[self.accelerated_index]

    def degradation_deltas(self) -> Dict[str, float]:
        direction = 1.0 if self.increasing else -1.0
        deltas: Dict[str, float] = {}
        for i, p in enumerate(PARAMETERS):
            extra = self.cfg.accelerated_step if i == self.accelerated_index else 0.0
            deltas[p] = (self.cfg.base_step + extra) * direction
        return deltas

    async def run_degradation_tick(self) -> None:
        changes = []
        for p, delta in self.degradation_deltas().items():
            old, new = self._store(p, self.state.get(p) + delta)
            changes.append((p, old, new))

        for p, old, new in changes:
            await self._notify_change(p, old, new)

    def rotate_cycle(self) -> None:
        self.increasing = not self.increasing
        self.accelerated_index = (self.accelerated_index + 1) % len(PARAMETERS)
        log(
            f"[WATER] cycle switched to {'UP' if self.increasing else 'DOWN'}, "
            f"accelerated param: {self.accelerated_parameter}"
        )

    async def _on_rotation(self) -> None:
        self.rotate_cycle()

    def start_degradation(self) -> bool:
        if self.degradation_active:
            log("[WATER] degradation simulation already running")
            return False
        if not self._degradation_timer.start():
            return False
        self._rotation_timer.start()
        log(f"[WATER] starting degradation simulation (cycle {'UP' if self.increasing else 'DOWN'})")
        return True

    def stop_degradation(self) -> bool:
        if not self.degradation_active:
            return False
        self._degradation_timer.stop()
        self._rotation_timer.stop()
        log("[WATER] degradation simulation stopped")
        return True

    # ======================================================
    # PULL CORRECTION (water reads pump speed)
    # ======================================================
    def attach_pump(
        self,
        pump: ThingClient,
        store: ConfigStore,
        clock=now_ms,
    ) -> CorrectionLoop:
        async def _pump_speed() -> float:
            return float(await pump.read_property("pumpSpeed"))

        loop = CorrectionLoop(
            owner="WATER",
            water=WaterClient(self),
            store=store,
            speed_source=_pump_speed,
            connection=PeerConnection("WATER", pump.peer_name, clock=clock),
            rate_per_tick=self.cfg.pull_correction_rate,
        )
        loop.active = True
        self.pump_correction = loop
        self._correction_timer = self.periodic("pump-correction", self.cfg.correction_interval_ms, loop.tick)
        return loop

    # ======================================================
    # LIFECYCLE
    # ======================================================
    def start(self, degrade: bool = True) -> None:
        if degrade:
            self.start_degradation()
        if self._correction_timer is not None:
            self._correction_timer.start()

