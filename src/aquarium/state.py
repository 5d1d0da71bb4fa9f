from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Dict, Literal, Optional, Tuple

from .utils import clamp, utc_iso


ParameterStatus = Literal["ok", "warning", "alert"]
FilterStatus = Literal["idle", "running", "cleaning", "error"]
Mode = Literal["demo", "production"]

PARAMETERS: Tuple[str, ...] = ("pH", "temperature", "oxygenLevel")
MODES: Tuple[str, ...] = ("demo", "production")

# physical limits, every write is clamped into these
PHYSICAL_BOUNDS: Dict[str, Tuple[float, float]] = {
    "pH": (0.0, 14.0),
    "temperature": (0.0, 40.0),
    "oxygenLevel": (0.0, 20.0),
}

# 15% of the optimal range width on each side
CRITICAL_MARGIN_RATIO = 0.15

# register codes used by the modbus mock
FILTER_STATUS_CODES: Dict[int, str] = {
    0: "idle",
    1: "running",
    2: "cleaning",
    3: "error",
}


def clamp_parameter(parameter: str, value: float) -> float:
    lo, hi = PHYSICAL_BOUNDS[parameter]
    return clamp(float(value), lo, hi)


@dataclass
class WaterParameterSet:
    pH: float = 7.0
    temperature: float = 25.0
    oxygenLevel: float = 7.0

    def get(self, parameter: str) -> float:
        return float(getattr(self, parameter))

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


@dataclass
class Bounds:
    min: float
    max: float

    @property
    def width(self) -> float:
        return self.max - self.min

    @property
    def midpoint(self) -> float:
        return (self.min + self.max) / 2.0


@dataclass
class ParameterRange:
    unit: str
    description: str
    configurable: Bounds
    optimal: Bounds

    @classmethod
    def from_dict(cls, d: Dict) -> "ParameterRange":
        conf = d.get("configurable") or d["optimal"]
        return cls(
            unit=str(d.get("unit", "")),
            description=str(d.get("description", "")),
            configurable=Bounds(float(conf["min"]), float(conf["max"])),
            optimal=Bounds(float(d["optimal"]["min"]), float(d["optimal"]["max"])),
        )

    def critical(self) -> Bounds:
        margin = self.optimal.width * CRITICAL_MARGIN_RATIO
        return Bounds(self.optimal.min - margin, self.optimal.max + margin)

    def classify(self, value: float) -> ParameterStatus:
        crit = self.critical()
        if value < crit.min or value > crit.max:
            return "alert"
        if value < self.optimal.min or value > self.optimal.max:
            return "warning"
        return "ok"


@dataclass
class PumpState:
    pumpSpeed: int = 0
    filterStatus: FilterStatus = "idle"
    filterHealth: float = 100.0
    lastCleaningTime: str = field(default_factory=utc_iso)


@dataclass
class ConnectionHealth:
    reachable: bool = False
    retry_delay_ms: int = 1000
    next_retry_at_ms: Optional[float] = None  # None -> always attempt
