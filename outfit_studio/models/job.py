"""Job, retry and pipeline state models."""

import uuid
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, computed_field

from .analysis import GeneratedImage, VerificationResult


class AspectRatio(str, Enum):
    """Aspect ratios accepted by the image-edit model."""
    SQUARE = "1:1"
    PORTRAIT = "3:4"
    LANDSCAPE = "4:3"
    TALL = "9:16"
    WIDE = "16:9"


class ModelTier(str, Enum):
    """Selects the analysis/verification model variants."""
    PRO = "pro"
    FLASH = "flash"


class PipelineState(str, Enum):
    IDLE = "idle"
    ANALYZING = "analyzing"
    GENERATING = "generating"
    COMPLETE = "complete"
    ERROR = "error"


class JobAction(str, Enum):
    GENERATE = "generate"
    EXTRACT = "extract"


# Caller-owned image: a file on disk or raw uploaded bytes
ImageSource = Union[Path, bytes]


class TextIntent(BaseModel):
    """Outfit described in words (typed or picked from a preset)."""
    kind: Literal["text"] = "text"
    text: str


class ReferenceImageIntent(BaseModel):
    """Outfit copied from a second photo."""
    kind: Literal["reference_image"] = "reference_image"
    image: ImageSource


OutfitIntent = Annotated[Union[TextIntent, ReferenceImageIntent], Field(discriminator="kind")]


class Job(BaseModel):
    """One generation or extraction attempt."""

    job_id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])
    action: JobAction
    source_image: ImageSource
    outfit_intent: OutfitIntent | None = None
    aspect_ratio: AspectRatio = AspectRatio.SQUARE
    model_tier: ModelTier = ModelTier.PRO
    created_at: datetime = Field(default_factory=datetime.now)


class RetryContext(BaseModel):
    """What the "regenerate" action needs to skip analysis."""

    last_action: JobAction | None = None
    last_edit_instruction: str | None = None

    @computed_field
    @property
    def ready(self) -> bool:
        return self.last_action is not None and bool(self.last_edit_instruction)

    def clear(self) -> None:
        self.last_action = None
        self.last_edit_instruction = None


class PipelineSnapshot(BaseModel):
    """Read-only view of the pipeline handed to the presentation layer."""

    model_config = ConfigDict(frozen=True)

    state: PipelineState
    job_id: str | None = None
    action: JobAction | None = None
    aspect_ratio: AspectRatio | None = None
    analysis_text: str = ""
    edit_instruction: str | None = None
    generated_image: GeneratedImage | None = None
    error_message: str | None = None
    warning_message: str | None = None
    verification: VerificationResult | None = None
    has_source: bool = False
    can_retry: bool = False

    @computed_field
    @property
    def busy(self) -> bool:
        """Job-starting actions must be disabled while this is true."""
        return self.state in (PipelineState.ANALYZING, PipelineState.GENERATING)
