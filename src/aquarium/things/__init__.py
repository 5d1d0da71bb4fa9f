from .base import ThingBase, UnknownInteractionError
from .pump import FilterPumpThing, PumpConfig
from .sensor import WaterQualitySensorThing
from .water import WaterConfig, WaterThing

__all__ = [
    "ThingBase",
    "UnknownInteractionError",
    "FilterPumpThing",
    "PumpConfig",
    "WaterQualitySensorThing",
    "WaterConfig",
    "WaterThing",
]
