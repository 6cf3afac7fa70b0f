"""Outfit editing pipeline."""

from .orchestrator import OutfitPipeline

__all__ = ["OutfitPipeline"]
