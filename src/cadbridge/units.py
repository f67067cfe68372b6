"""
Unit/Value Codec

Converts between the caller's physical units and the host's internal units.
Callers speak millimetres and degrees; the host stores feet and radians.

Fixed constants:
- 1 foot = 304.8 mm (exact)
- 1 square foot = 304.8^2 mm^2
- 1 cubic foot = 304.8^3 mm^3
- angles: degrees <-> radians

Lengths are converted by dividing by the constant so that
to_host_length(304.8) is exactly 1.0.
"""

import logging
import math
from enum import Enum
from typing import Any, Dict, Optional, Union

logger = logging.getLogger(__name__)

MM_PER_FOOT = 304.8
MM2_PER_SQFT = MM_PER_FOOT**2
MM3_PER_CUFT = MM_PER_FOOT**3


class Quantity(str, Enum):
    """Semantic kind of a scalar value."""

    LENGTH = "length"
    ANGLE = "angle"
    AREA = "area"
    VOLUME = "volume"


# Caller units per host unit, for the kinds that scale linearly
_FACTORS = {
    Quantity.LENGTH: MM_PER_FOOT,
    Quantity.AREA: MM2_PER_SQFT,
    Quantity.VOLUME: MM3_PER_CUFT,
}


def to_host_length(mm: float) -> float:
    """Millimetres to feet."""
    return mm / MM_PER_FOOT


def from_host_length(feet: float) -> float:
    """Feet to millimetres."""
    return feet * MM_PER_FOOT


def to_host_angle(degrees: float) -> float:
    """Degrees to radians."""
    return math.radians(degrees)


def from_host_angle(radians: float) -> float:
    """Radians to degrees."""
    return math.degrees(radians)


def to_host_area(mm2: float) -> float:
    return mm2 / MM2_PER_SQFT


def from_host_area(sqft: float) -> float:
    return sqft * MM2_PER_SQFT


def to_host_volume(mm3: float) -> float:
    return mm3 / MM3_PER_CUFT


def from_host_volume(cuft: float) -> float:
    return cuft * MM3_PER_CUFT


def _quantity(kind: Union[Quantity, str, None]) -> Optional[Quantity]:
    if kind is None:
        return None
    if isinstance(kind, Quantity):
        return kind
    try:
        return Quantity(str(kind).lower())
    except ValueError:
        return None


def to_host_scalar(value: float, kind: Union[Quantity, str, None]) -> float:
    """Convert a caller-unit scalar to host units for the given quantity kind.

    Args:
        value: Value in caller units (mm, mm^2, mm^3 or degrees)
        kind: Quantity kind; anything unrecognised passes the value through

    Returns:
        Value in host units, or the raw value for unknown kinds
    """
    quantity = _quantity(kind)
    if quantity is None:
        logger.debug(f"No unit conversion for kind {kind!r}, passing {value!r} through")
        return value
    if quantity is Quantity.ANGLE:
        return to_host_angle(value)
    return value / _FACTORS[quantity]


def from_host_scalar(value: float, kind: Union[Quantity, str, None]) -> float:
    """Inverse of to_host_scalar. Unknown kinds pass through."""
    quantity = _quantity(kind)
    if quantity is None:
        return value
    if quantity is Quantity.ANGLE:
        return from_host_angle(value)
    return value * _FACTORS[quantity]


def to_host_point(point: Dict[str, Any]) -> Dict[str, float]:
    """Convert an {x, y, z} point in millimetres to feet."""
    return {axis: to_host_length(float(point.get(axis, 0.0))) for axis in ("x", "y", "z")}


def from_host_point(point: Dict[str, Any]) -> Dict[str, float]:
    return {axis: from_host_length(float(point.get(axis, 0.0))) for axis in ("x", "y", "z")}


def normalize_direction(direction: Dict[str, Any]) -> Dict[str, float]:
    """Normalize a unitless {x, y, z} direction vector.

    Raises:
        ValueError: If the vector has zero length
    """
    x, y, z = (float(direction.get(axis, 0.0)) for axis in ("x", "y", "z"))
    length = math.sqrt(x * x + y * y + z * z)
    if length == 0:
        raise ValueError("Direction vector must not be zero")
    return {"x": x / length, "y": y / length, "z": z / length}
