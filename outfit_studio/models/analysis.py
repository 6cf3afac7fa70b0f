"""Analysis, verification and generated-image models."""

import base64

from pydantic import BaseModel, ConfigDict, Field, computed_field


class OutfitChangeResponse(BaseModel):
    """Response schema for the outfit-change analysis call."""

    yaml_analysis: str = Field(
        description="The strict YAML analysis including VISIBLE_ZONES, HAIR, FACE, POSE, BACKGROUND."
    )
    generation_prompt: str = Field(
        description="The editing prompt starting with '/* --- OUTFIT (New!) --- */...'"
    )


class BackgroundRemovalResponse(BaseModel):
    """Response schema for the background-removal analysis call."""

    yaml_analysis: str = Field(description="The strict YAML analysis.")
    generation_prompt: str = Field(
        description="The editing prompt starting with '/* --- BACKGROUND REMOVAL --- */...'"
    )


class ReferenceOutfitResponse(BaseModel):
    """Response schema for reference-outfit extraction."""

    outfit_keywords: str = Field(description="Comma-separated list of outfit keywords.")


class VerificationResponse(BaseModel):
    """Response schema for the match verifier."""

    match: bool
    reason: str


class AnalysisArtifact(BaseModel):
    """Human-readable analysis plus the machine edit instruction derived from it."""

    analysis: str
    edit_instruction: str
    visible_zones: list[str] | None = Field(
        default=None, description="Zones parsed from the analysis; None when unknown"
    )
    used_fallback: bool = False


class VerificationResult(BaseModel):
    """Advisory verdict on whether the generated outfit matches the request."""

    model_config = ConfigDict(frozen=True)

    matches: bool = True
    reason: str = ""


class GeneratedImage(BaseModel):
    """Image bytes returned by the edit model."""

    model_config = ConfigDict(frozen=True)

    data: bytes = Field(repr=False, exclude=True)
    mime_type: str = "image/png"

    @computed_field
    @property
    def base64_data(self) -> str:
        return base64.b64encode(self.data).decode("utf-8")

    @property
    def data_url(self) -> str:
        """Displayable ``data:`` reference."""
        return f"data:{self.mime_type};base64,{self.base64_data}"
