"""Error taxonomy for the outfit editing pipeline.

Every fatal error carries a message that is safe to show to the user as-is;
the orchestrator copies ``str(exc)`` onto the ``error`` state.
"""


class OutfitStudioError(Exception):
    """Base class for all pipeline errors."""


class TransientServiceError(OutfitStudioError):
    """A model call failed in a way that is worth retrying (rate limit, 5xx, timeout)."""


class CredentialError(OutfitStudioError):
    """No usable API key could be resolved."""


class CodecError(OutfitStudioError):
    """An image could not be read, decoded or measured."""


class MalformedResponseError(OutfitStudioError):
    """The model returned output that does not match the requested schema."""


class AnalysisError(OutfitStudioError):
    """Character analysis failed after all retries."""


class ExtractionError(OutfitStudioError):
    """Outfit extraction from a reference image failed."""


class EmptyExtractionError(ExtractionError):
    """Reference analysis produced no usable outfit keywords."""


class GenerationError(OutfitStudioError):
    """The image-edit call failed."""


class ApiPermissionError(GenerationError):
    """The edit model rejected the key (HTTP 403 / PERMISSION_DENIED)."""

    hint = (
        "Check that the API key belongs to a Google Cloud project with billing "
        "enabled and access to the image model, then enter the key again."
    )

    def __init__(self, message: str | None = None):
        super().__init__(message or f"Permission denied (403). {self.hint}")


class NoImageReturnedError(GenerationError):
    """The edit call succeeded but the response held no image part."""


class PipelineStateError(OutfitStudioError):
    """An operation was requested that the current pipeline state does not allow."""


class PipelineBusyError(PipelineStateError):
    """A job is already analyzing or generating."""
