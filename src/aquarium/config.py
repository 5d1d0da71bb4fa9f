from __future__ import annotations

import json
import math
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .state import MODES, PARAMETERS, ParameterRange
from .utils import deep_copy_jsonable, ensure_dir_for_file, log


class ConfigError(ValueError):
    pass


DEFAULT_CONFIG: Dict[str, Any] = {
    "mode": "demo",
    "description": "Fallback configuration",
    "parameters": {
        "pH": {
            "unit": "pH",
            "description": "Water pH Level",
            "configurable": {"min": 0.0, "max": 14.0},
            "optimal": {"min": 6.5, "max": 7.5},
        },
        "temperature": {
            "unit": "°C",
            "description": "Water Temperature",
            "configurable": {"min": 0.0, "max": 40.0},
            "optimal": {"min": 24.0, "max": 26.0},
        },
        "oxygenLevel": {
            "unit": "mg/L",
            "description": "Dissolved Oxygen Level",
            "configurable": {"min": 0.0, "max": 20.0},
            "optimal": {"min": 6.0, "max": 8.0},
        },
    },
    "modes": {
        "demo": {
            "samplingIntervalMs": 3000,
            "degradationIntervalMs": 1000,
            "filterDegradationIntervalMs": 5000,
        },
        "production": {
            "samplingIntervalMs": 1800000,
            "degradationIntervalMs": 60000,
            "filterDegradationIntervalMs": 300000,
        },
    },
}

DEFAULT_TARGETS: Dict[str, float] = {"pH": 7.0, "temperature": 25.0, "oxygenLevel": 7.0}


def _finite(v: Any) -> Optional[float]:
    if isinstance(v, bool):
        return None
    try:
        f = float(v)
    except (TypeError, ValueError):
        return None
    return f if math.isfinite(f) else None


def validate_config(config: Any) -> None:
    """Raise ConfigError with a readable message if the document is not acceptable."""
    if not isinstance(config, dict):
        raise ConfigError("config must be an object")

    if config.get("mode") not in MODES:
        raise ConfigError("mode must be demo or production")

    params = config.get("parameters")
    if not isinstance(params, dict):
        raise ConfigError("parameters is missing")

    for name in PARAMETERS:
        p = params.get(name)
        if not isinstance(p, dict):
            raise ConfigError(f"{name} is missing")

        optimal = p.get("optimal") if isinstance(p.get("optimal"), dict) else {}
        configurable = p.get("configurable") if isinstance(p.get("configurable"), dict) else {}

        opt_min = _finite(optimal.get("min"))
        opt_max = _finite(optimal.get("max"))
        conf_min = _finite(configurable.get("min"))
        conf_max = _finite(configurable.get("max"))

        if None in (opt_min, opt_max, conf_min, conf_max):
            raise ConfigError(f"{name} has non-numeric bounds")
        if conf_min >= conf_max:
            raise ConfigError(f"{name} configurable min must be less than max")
        if opt_min >= opt_max:
            raise ConfigError(f"{name} optimal min must be less than max")
        if opt_min < conf_min or opt_max > conf_max:
            raise ConfigError(f"{name} optimal range must be within configurable range")

    modes = config.get("modes")
    if modes is not None:
        if not isinstance(modes, dict):
            raise ConfigError("modes must be an object")
        for mode, settings in modes.items():
            if mode not in MODES or not isinstance(settings, dict):
                raise ConfigError(f"unknown mode entry {mode!r}")
            for key, v in settings.items():
                f = _finite(v)
                if f is None or f <= 0:
                    raise ConfigError(f"modes.{mode}.{key} must be a positive number")


class ConfigStore:
    """
    Single JSON document holding optimal ranges, configurable bounds and mode.

    Every read goes back to the file; there is no cache to invalidate. Writes
    are validated first and rejected payloads never touch the file.
    """

    def __init__(self, path: str = "config.json"):
        self.path = path

    # ======================================================
    # READ
    # ======================================================
    def load(self) -> Dict[str, Any]:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                config = json.load(f)
            validate_config(config)
        except (OSError, json.JSONDecodeError, ConfigError) as e:
            log(f"[CONFIG] WARNING failed to load {self.path} ({e!r}), using defaults")
            return deep_copy_jsonable(DEFAULT_CONFIG)

        # missing modes table -> defaults
        merged = deep_copy_jsonable(DEFAULT_CONFIG["modes"])
        for mode, settings in (config.get("modes") or {}).items():
            merged[mode].update(settings)
        config["modes"] = merged
        return config

    def get_mode(self) -> str:
        return self.load()["mode"]

    def parameter_names(self) -> List[str]:
        return list(self.load()["parameters"].keys())

    def parameter_range(self, name: str) -> ParameterRange:
        params = self.load()["parameters"]
        if name not in params:
            raise KeyError(f"Parameter {name} not found in configuration")
        return ParameterRange.from_dict(params[name])

    def parameter_ranges(self) -> Dict[str, ParameterRange]:
        params = self.load()["parameters"]
        return {name: ParameterRange.from_dict(params[name]) for name in PARAMETERS}

    def optimal_ranges(self) -> Dict[str, Dict[str, float]]:
        return {k: dict(v["optimal"]) for k, v in self.load()["parameters"].items()}

    def optimal_targets(self) -> Dict[str, float]:
        targets = dict(DEFAULT_TARGETS)
        params = self.load().get("parameters") or {}
        for name in PARAMETERS:
            optimal = (params.get(name) or {}).get("optimal") or {}
            lo = _finite(optimal.get("min"))
            hi = _finite(optimal.get("max"))
            if lo is not None and hi is not None:
                targets[name] = (lo + hi) / 2.0
        return targets

    def mode_settings(self, mode: Optional[str] = None) -> Dict[str, int]:
        config = self.load()
        mode = mode or config["mode"]
        if mode not in MODES:
            raise ConfigError(f"unknown mode {mode!r}")
        return {k: int(v) for k, v in config["modes"][mode].items()}

    # ======================================================
    # WRITE
    # ======================================================
    def save(self, config: Dict[str, Any]) -> Dict[str, Any]:
        validate_config(config)
        doc = deep_copy_jsonable(config)
        ensure_dir_for_file(self.path)
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(doc, f, indent=2, ensure_ascii=False)
        log(f"[CONFIG] configuration saved to {self.path}")
        return doc

    def set_mode(self, mode: str) -> Dict[str, Any]:
        if mode not in MODES:
            raise ConfigError(f"mode must be demo or production, got {mode!r}")
        config = self.load()
        config["mode"] = mode
        return self.save(config)


# ============================================================
# Environment tunables
# ============================================================
def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw, 10)
    except ValueError:
        log(f"[CONFIG] WARNING {name}={raw!r} is not an integer, using {default}")
        return default


@dataclass
class SamplingConfig:
    # TEST: 3000, PROD: 30000 - 180000
    water_sensor_interval_ms: int = 3000
    # TEST: 5000, PROD: 60000 - 300000
    filter_health_interval_ms: int = 5000
    # TEST: 30000, PROD: 300000 - 3600000
    orchestration_check_interval_ms: int = 30000

    @classmethod
    def from_env(cls) -> "SamplingConfig":
        return cls(
            water_sensor_interval_ms=_env_int("WATER_SENSOR_INTERVAL", 3000),
            filter_health_interval_ms=_env_int("FILTER_HEALTH_INTERVAL", 5000),
            orchestration_check_interval_ms=_env_int("ORCHESTRATION_CHECK_INTERVAL", 30000),
        )

    def describe(self) -> str:
        return (
            f"water_sensor={self.water_sensor_interval_ms}ms "
            f"filter_health={self.filter_health_interval_ms}ms "
            f"orchestration={self.orchestration_check_interval_ms}ms"
        )
