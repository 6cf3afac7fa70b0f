"""Outfit Studio: AI outfit change and background removal for character images."""

from .config import StudioConfig, load_config
from .models import AspectRatio, ModelTier, PipelineState, ReferenceImageIntent, TextIntent
from .pipeline import OutfitPipeline

__version__ = "1.0.0"

__all__ = [
    "StudioConfig",
    "load_config",
    "AspectRatio",
    "ModelTier",
    "PipelineState",
    "ReferenceImageIntent",
    "TextIntent",
    "OutfitPipeline",
]
