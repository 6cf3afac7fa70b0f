"""External services: Gemini calls, image codec, retries and credentials."""

from .backoff import BackoffExecutor, is_transient
from .credentials import ApiCredential, CredentialStore, resolve_credential, validate_api_key
from .image_codec import ImageCodec, ImagePayload, aspect_ratio_for
from .image_editor import ImageEditService

__all__ = [
    "BackoffExecutor",
    "is_transient",
    "ApiCredential",
    "CredentialStore",
    "resolve_credential",
    "validate_api_key",
    "ImageCodec",
    "ImagePayload",
    "aspect_ratio_for",
    "ImageEditService",
]
