"""Common utility functions."""

from .geo import Coordinates, distance_km, parse_coordinates

__all__ = [
    "Coordinates",
    "distance_km",
    "parse_coordinates",
]
