"""Text utilities for edit instructions."""

from .outfit_filter import filter_outfit, parse_visible_zones

__all__ = ["filter_outfit", "parse_visible_zones"]
