"""Aquarium Web of Things simulator: water twin, filter pump, water-quality sensor."""

__version__ = "0.1.0"
