"""
Coordinate normalization

Detectors report boxes as fractions of the image size. Everything persisted
is in absolute pixels.
"""

import math
from dataclasses import dataclass, asdict
from typing import Dict, Iterable, Optional

BOX_KEYS = ('x_min', 'y_min', 'x_max', 'y_max')


class GeometryError(ValueError):
    """A box could not be turned into valid pixel coordinates."""


@dataclass(frozen=True)
class PixelBox:
    x_min: int
    y_min: int
    x_max: int
    y_max: int

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


def round_half_up(value: float) -> int:
    # round() would send exact halves to the even neighbour
    return math.floor(value + 0.5)


def normalize_box(box: Dict, width: int, height: int) -> PixelBox:
    """
    Convert a fractional box (0-1) into integer pixel coordinates.

    Each value becomes fraction * dimension rounded half up, so 2.5 -> 3
    and -2.5 -> -2. Nothing is clamped, so a
    malformed model box can come back outside the image; check it with
    is_valid_pixel_box.

    Args:
        box: Dict with x_min, y_min, x_max, y_max as fractions
        width: Image width in pixels
        height: Image height in pixels

    Raises:
        GeometryError: when a key is missing or not numeric
    """
    if not isinstance(box, dict):
        raise GeometryError(f"Box is not an object: {box!r}")

    missing = [key for key in BOX_KEYS if key not in box or box[key] is None]
    if missing:
        raise GeometryError(f"Box missing keys: {', '.join(missing)}")

    try:
        fractions = {key: float(box[key]) for key in BOX_KEYS}
    except (TypeError, ValueError) as e:
        raise GeometryError(f"Non-numeric box coordinate: {e}") from e

    if not all(math.isfinite(value) for value in fractions.values()):
        raise GeometryError(f"Non-finite box coordinate: {box!r}")

    return PixelBox(
        x_min=round_half_up(fractions['x_min'] * width),
        y_min=round_half_up(fractions['y_min'] * height),
        x_max=round_half_up(fractions['x_max'] * width),
        y_max=round_half_up(fractions['y_max'] * height),
    )


def is_valid_pixel_box(box: PixelBox, width: int, height: int) -> bool:
    """0 <= x_min < x_max <= width and 0 <= y_min < y_max <= height"""
    return 0 <= box.x_min < box.x_max <= width and 0 <= box.y_min < box.y_max <= height


def pixel_box_from_dict(data: Optional[Dict]) -> Optional[PixelBox]:
    """Read a pixel box a model proposed; None when unusable"""
    if not isinstance(data, dict):
        return None
    try:
        return PixelBox(**{key: round_half_up(float(data[key])) for key in BOX_KEYS})
    except (KeyError, TypeError, ValueError, OverflowError):
        return None


def union_box(boxes: Iterable[PixelBox]) -> Optional[PixelBox]:
    """Smallest box containing all given boxes"""
    boxes = list(boxes)
    if not boxes:
        return None

    return PixelBox(
        x_min=min(b.x_min for b in boxes),
        y_min=min(b.y_min for b in boxes),
        x_max=max(b.x_max for b in boxes),
        y_max=max(b.y_max for b in boxes),
    )
