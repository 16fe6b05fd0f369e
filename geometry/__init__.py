"""
Geometry module exports
"""

from geometry.normalize import (
    PixelBox,
    GeometryError,
    normalize_box,
    is_valid_pixel_box,
    pixel_box_from_dict,
    round_half_up,
    union_box
)
from geometry.grouping import determine_hierarchical_groups, split_label

__all__ = [
    'PixelBox', 'GeometryError',
    'normalize_box', 'is_valid_pixel_box',
    'pixel_box_from_dict', 'round_half_up', 'union_box',
    'determine_hierarchical_groups', 'split_label'
]
