"""Data models for the outfit editing pipeline."""

from .analysis import (
    AnalysisArtifact,
    BackgroundRemovalResponse,
    GeneratedImage,
    OutfitChangeResponse,
    ReferenceOutfitResponse,
    VerificationResponse,
    VerificationResult,
)
from .job import (
    AspectRatio,
    ImageSource,
    Job,
    JobAction,
    ModelTier,
    OutfitIntent,
    PipelineSnapshot,
    PipelineState,
    ReferenceImageIntent,
    RetryContext,
    TextIntent,
)

__all__ = [
    "AnalysisArtifact",
    "BackgroundRemovalResponse",
    "GeneratedImage",
    "OutfitChangeResponse",
    "ReferenceOutfitResponse",
    "VerificationResponse",
    "VerificationResult",
    "AspectRatio",
    "ImageSource",
    "Job",
    "JobAction",
    "ModelTier",
    "OutfitIntent",
    "PipelineSnapshot",
    "PipelineState",
    "ReferenceImageIntent",
    "RetryContext",
    "TextIntent",
]
