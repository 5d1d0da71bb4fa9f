from __future__ import annotations

from typing import Any, Dict, List, Optional

from ..clients import WaterClient
from ..config import ConfigError, ConfigStore
from ..events import EventBus
from ..state import MODES, PARAMETERS, ParameterRange, WaterParameterSet
from ..utils import log, utc_iso
from .base import ThingBase


class WaterQualitySensorThing(ThingBase):
    """
    Polls the water twin on a fixed cadence and classifies every parameter
    against the configured optimal range:

        ok       inside [optimal.min, optimal.max]
        warning  outside optimal, inside optimal +/- 15% of its width
        alert    outside that critical band

    Status changes are edge-triggered: one `<param>StatusChanged` event per
    parameter whose status differs from the previous sample, nothing otherwise.
    """

    MIN_INTERVAL_MS = 3000          # 3 s
    MAX_INTERVAL_MS = 1800000       # 30 min

    def __init__(
        self,
        water: WaterClient,
        store: ConfigStore,
        bus: Optional[EventBus] = None,
        name: str = "waterqualitysensor",
        sampling_interval_ms: Optional[int] = None,
    ):
        super().__init__(name, bus)
        self.water = water
        self.store = store

        # local cache of the last successful sample
        self.values = WaterParameterSet()
        self.statuses: Dict[str, str] = {p: "ok" for p in PARAMETERS}
        self.last_sample_ts: Optional[str] = None

        self.sampling_interval_ms: int = self.MIN_INTERVAL_MS
        self._sampling_timer = self.periodic("sampling", self.sampling_interval_ms, self.sample, tag="SENSOR")

        self.apply_mode(self.store.get_mode(), persist=False)
        if sampling_interval_ms:
            self.set_sampling_interval(sampling_interval_ms)

        self._register_handlers()

    # ======================================================
    # Thing surface
    # ======================================================
    def _register_handlers(self) -> None:
        for p in PARAMETERS:
            self.set_property_read_handler(p, self._value_reader(p))
            self.set_property_read_handler(f"{p}Status", self._status_reader(p))

        self.set_property_read_handler("allParameters", self.all_parameters)
        self.set_property_read_handler("mode", lambda: self.store.get_mode())
        self.set_property_read_handler("config", lambda: self.store.load())
        self.set_property_read_handler("samplingIntervalMs", lambda: self.sampling_interval_ms)

        self.set_property_write_handler("mode", self.set_mode)
        self.set_property_write_handler("config", self.write_config)

    def _value_reader(self, parameter: str):
        def _read() -> float:
            return self.values.get(parameter)
        return _read

    def _status_reader(self, parameter: str):
        def _read() -> str:
            return self.statuses[parameter]
        return _read

    def all_parameters(self) -> Dict[str, Any]:
        d: Dict[str, Any] = self.values.to_dict()
        d["timestamp"] = utc_iso()
        return d

    # ======================================================
    # CLASSIFICATION
    # ======================================================
    @staticmethod
    def classify(value: float, prange: Optional[ParameterRange]) -> str:
        if prange is None:
            return "ok"
        return prange.classify(value)

    # ======================================================
    # SAMPLING
    # ======================================================
    async def sample(self) -> List[Dict[str, Any]]:
        """One sampling tick. Returns the status-change notifications emitted."""
        try:
            values = await self.water.read_all()
        except Exception as e:
            log(f"[SENSOR] error during sampling: {e!r}")
            return []

        self.values = values
        self.last_sample_ts = utc_iso()

        for p in PARAMETERS:
            await self.emit_property_change(p)
        await self.emit_property_change("allParameters")

        return await self._update_statuses()

    async def _update_statuses(self) -> List[Dict[str, Any]]:
        ranges = self.store.parameter_ranges()
        notifications: List[Dict[str, Any]] = []

        for p in PARAMETERS:
            value = self.values.get(p)
            new_status = self.classify(value, ranges.get(p))
            previous = self.statuses[p]
            self.statuses[p] = new_status
            if new_status == previous:
                continue

            log(f"[SENSOR] {p} status changed to {new_status}: {value:.2f}")
            payload = {
                "parameter": p,
                "newStatus": new_status,
                "previousStatus": previous,
                "value": value,
                "timestamp": utc_iso(),
            }
            await self.emit_event(f"{p}StatusChanged", payload)
            await self.emit_property_change(f"{p}Status")
            notifications.append(payload)

        return notifications

    def set_sampling_interval(self, interval_ms: Any) -> int:
        try:
            interval = int(interval_ms)
        except (TypeError, ValueError):
            interval = -1

        if interval < self.MIN_INTERVAL_MS or interval > self.MAX_INTERVAL_MS:
            log(
                f"[SENSOR] WARNING sampling interval {interval_ms}ms out of range "
                f"[{self.MIN_INTERVAL_MS}-{self.MAX_INTERVAL_MS}]. Using default {self.MIN_INTERVAL_MS}ms."
            )
            interval = self.MIN_INTERVAL_MS
        else:
            log(f"[SENSOR] sampling interval set to {interval}ms")

        self.sampling_interval_ms = interval
        self._sampling_timer.restart(interval)
        return interval

    # ======================================================
    # MODE / CONFIG
    # ======================================================
    def apply_mode(self, mode: str, persist: bool = True) -> int:
        if mode not in MODES:
            raise ConfigError(f"mode must be demo or production, got {mode!r}")

        if persist:
            self.store.set_mode(mode)
        interval = self.store.mode_settings(mode)["samplingIntervalMs"]
        log(f"[SENSOR] mode set to {mode} (sampling {interval}ms)")
        return self.set_sampling_interval(interval)

    async def set_mode(self, value: Any) -> bool:
        mode = value.get("value") if isinstance(value, dict) else value
        if mode not in MODES:
            log(f"[SENSOR] WARNING invalid mode: {mode!r}")
            return False

        try:
            self.apply_mode(mode, persist=True)
        except (ConfigError, OSError) as e:
            log(f"[SENSOR] WARNING unable to switch mode: {e!r}")
            return False

        await self._announce_config()
        return True

    async def write_config(self, value: Any) -> bool:
        try:
            saved = self.store.save(value)
        except ConfigError as e:
            log(f"[SENSOR] WARNING invalid config payload: {e}")
            return False
        except OSError as e:
            log(f"[SENSOR] failed to save config: {e!r}")
            return False

        self.apply_mode(saved["mode"], persist=False)
        await self._announce_config()
        return True

    async def _announce_config(self) -> None:
        config = self.store.load()
        await self.emit_property_change("config")
        await self.emit_property_change("mode")
        await self.emit_property_change("samplingIntervalMs")
        await self.emit_event("configChanged", {"mode": config["mode"], "parameters": config["parameters"]})

    # ======================================================
    # LIFECYCLE
    # ======================================================
    def start(self) -> None:
        self._sampling_timer.start()
