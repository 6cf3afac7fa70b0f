"""FastAPI server for Outfit Studio.

Thin presentation layer over one OutfitPipeline:
- source_image: Base64 data URL of the character photo
- outfit_text / preset_id / reference_image: what to dress the character in
- extract: background removal keeping the current outfit
"""

import logging

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from outfit_studio.config import StudioConfig, load_config
from outfit_studio.errors import CodecError, CredentialError, PipelineBusyError, PipelineStateError
from outfit_studio.models import ModelTier, OutfitIntent, PipelineSnapshot, ReferenceImageIntent, TextIntent
from outfit_studio.pipeline import OutfitPipeline
from outfit_studio.presets import CATEGORY_LABELS, get_preset, preset_intent, presets_by_category
from outfit_studio.services import CredentialStore, resolve_credential
from outfit_studio.services.image_codec import decode_data_url


logger = logging.getLogger(__name__)

app = FastAPI(
    title="Outfit Studio API",
    description="AI outfit change and background removal for character images",
    version="1.0.0",
)

# Enable CORS for the browser front end
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class CredentialRequest(BaseModel):
    api_key: str


class SourceRequest(BaseModel):
    """Request body for uploading the character photo."""
    source_image: str  # Base64 data URL


class GenerateRequest(BaseModel):
    """Request body for an outfit change. Exactly one intent field is used."""
    outfit_text: str | None = None
    preset_id: str | None = None
    reference_image: str | None = None  # Base64 data URL
    model_tier: ModelTier | None = None


class ExtractRequest(BaseModel):
    model_tier: ModelTier | None = None


class StudioResponse(BaseModel):
    """Pipeline state as seen by the front end."""
    state: str
    job_id: str | None = None
    aspect_ratio: str | None = None
    analysis_text: str = ""
    image_base64: str | None = None
    mime_type: str | None = None
    error: str | None = None
    warning: str | None = None
    can_retry: bool = False
    has_source: bool = False

    @classmethod
    def from_snapshot(cls, snapshot: PipelineSnapshot) -> "StudioResponse":
        image = snapshot.generated_image
        return cls(
            state=snapshot.state.value,
            job_id=snapshot.job_id,
            aspect_ratio=snapshot.aspect_ratio.value if snapshot.aspect_ratio else None,
            analysis_text=snapshot.analysis_text,
            image_base64=image.base64_data if image else None,
            mime_type=image.mime_type if image else None,
            error=snapshot.error_message,
            warning=snapshot.warning_message,
            can_retry=snapshot.can_retry,
            has_source=snapshot.has_source,
        )


# Initialize pipeline (will be done on first request that has a key)
_config: StudioConfig | None = None
_pipeline: OutfitPipeline | None = None


def get_config() -> StudioConfig:
    """Get or load the configuration."""
    global _config
    if _config is None:
        _config = load_config()  # Loads from .env automatically via pydantic-settings
        logging.basicConfig(
            level=_config.log_level,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )
    return _config


def get_credential_store() -> CredentialStore:
    return CredentialStore(get_config().credentials_path)


def get_pipeline() -> OutfitPipeline:
    """Get or create the pipeline instance; requires a resolvable API key."""
    global _pipeline
    if _pipeline is None:
        config = get_config()
        try:
            credential = resolve_credential(config, get_credential_store())
        except CredentialError as e:
            raise HTTPException(status_code=401, detail=str(e))
        _pipeline = OutfitPipeline(config, credential)
    return _pipeline


def _build_intent(request: GenerateRequest) -> OutfitIntent:
    if request.reference_image:
        try:
            return ReferenceImageIntent(image=decode_data_url(request.reference_image))
        except CodecError as e:
            raise HTTPException(status_code=400, detail=str(e))
    if request.preset_id:
        preset = get_preset(request.preset_id)
        if preset is None:
            raise HTTPException(status_code=404, detail=f"Unknown preset: {request.preset_id}")
        return preset_intent(preset)
    if request.outfit_text and request.outfit_text.strip():
        return TextIntent(text=request.outfit_text)
    raise HTTPException(status_code=400, detail="Describe an outfit, pick a preset or upload a reference image.")


def _state_error(e: PipelineStateError) -> HTTPException:
    status = 409 if isinstance(e, PipelineBusyError) else 400
    return HTTPException(status_code=status, detail=str(e))


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"status": "ok", "service": "Outfit Studio API", "version": "1.0.0"}


@app.get("/health")
async def health():
    """Detailed health check."""
    config = get_config()
    try:
        credential = resolve_credential(config, get_credential_store())
        credential_source = credential.source
    except CredentialError:
        credential_source = None

    return {
        "status": "ok" if credential_source else "degraded",
        "credential": credential_source or "missing",
        "pipeline": _pipeline.state.value if _pipeline else "not started",
    }


@app.get("/api/presets")
async def list_presets():
    """Preset outfits grouped by category."""
    return {
        category: {
            "label": CATEGORY_LABELS.get(category, category),
            "presets": [preset.model_dump() for preset in presets],
        }
        for category, presets in presets_by_category().items()
    }


@app.post("/api/credentials")
async def set_credentials(request: CredentialRequest):
    """Validate and store a user-entered API key; replaces the running pipeline."""
    global _pipeline
    if _pipeline is not None and _pipeline.busy:
        raise HTTPException(status_code=409, detail="A job is already running.")
    try:
        credential = resolve_credential(get_config(), get_credential_store(), user_key=request.api_key)
    except CredentialError as e:
        raise HTTPException(status_code=400, detail=str(e))

    _pipeline = OutfitPipeline(get_config(), credential)
    return {"status": "ok", "source": credential.source}


@app.delete("/api/credentials")
async def clear_credentials():
    """Forget the stored key and drop the pipeline."""
    global _pipeline
    get_credential_store().clear()
    _pipeline = None
    return {"status": "ok"}


@app.post("/api/source", response_model=StudioResponse)
async def upload_source(request: SourceRequest):
    """Load the character photo and report its aspect ratio bucket."""
    pipeline = get_pipeline()
    try:
        await pipeline.load_source(decode_data_url(request.source_image))
    except CodecError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except PipelineStateError as e:
        raise _state_error(e)
    return StudioResponse.from_snapshot(pipeline.snapshot())


@app.post("/api/generate", response_model=StudioResponse)
async def generate_outfit(request: GenerateRequest):
    """Change the outfit of the loaded character.

    Args:
        request: Outfit text, preset id or reference image, plus optional model tier

    Returns:
        Pipeline state once the job reached complete or error
    """
    pipeline = get_pipeline()
    intent = _build_intent(request)
    try:
        snapshot = await pipeline.generate(intent, request.model_tier)
    except PipelineStateError as e:
        raise _state_error(e)
    return StudioResponse.from_snapshot(snapshot)


@app.post("/api/extract", response_model=StudioResponse)
async def extract_character(request: ExtractRequest | None = None):
    """Remove the background, keeping the character as-is."""
    pipeline = get_pipeline()
    try:
        snapshot = await pipeline.extract(request.model_tier if request else None)
    except PipelineStateError as e:
        raise _state_error(e)
    return StudioResponse.from_snapshot(snapshot)


@app.post("/api/retry", response_model=StudioResponse)
async def retry_generation():
    """Regenerate with the last edit instruction."""
    pipeline = get_pipeline()
    try:
        snapshot = await pipeline.retry()
    except PipelineStateError as e:
        raise _state_error(e)
    return StudioResponse.from_snapshot(snapshot)


@app.post("/api/reset", response_model=StudioResponse)
async def reset_pipeline():
    pipeline = get_pipeline()
    pipeline.reset()
    return StudioResponse.from_snapshot(pipeline.snapshot())


@app.get("/api/state", response_model=StudioResponse)
async def get_state():
    """Current state, including any verification warning that arrived later."""
    return StudioResponse.from_snapshot(get_pipeline().snapshot())


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
