"""Gemini image-edit client for outfit and background edits."""

import logging

from google.genai import errors as genai_errors
from google.genai import types

from ..config import ModelConfig
from ..errors import ApiPermissionError, GenerationError, NoImageReturnedError
from ..models import AspectRatio, GeneratedImage
from .backoff import BackoffExecutor
from .gemini import ClientFactory, create_client, first_inline_image
from .image_codec import ImagePayload

logger = logging.getLogger(__name__)


def is_permission_denied(exc: BaseException) -> bool:
    """True for HTTP 403 / PERMISSION_DENIED failures."""
    if isinstance(exc, genai_errors.APIError):
        return exc.code == 403 or exc.status == "PERMISSION_DENIED"
    message = str(exc)
    return "403" in message or "PERMISSION_DENIED" in message


class ImageEditService:
    """Sends the original image plus an edit instruction to the fixed edit model."""

    def __init__(
        self,
        models: ModelConfig,
        executor: BackoffExecutor,
        client_factory: ClientFactory = create_client,
    ):
        self.models = models
        self.executor = executor
        self._client_factory = client_factory

    async def edit_image(
        self,
        api_key: str,
        original: ImagePayload,
        edit_instruction: str,
        aspect_ratio: AspectRatio,
    ) -> GeneratedImage:
        """Generate the edited image.

        Args:
            api_key: Gemini API key for this call
            original: Source photo as an inline payload
            edit_instruction: Instruction produced by the prompt synthesizer
            aspect_ratio: Output aspect ratio bucket

        Returns:
            The first image part of the response

        Raises:
            ApiPermissionError: The key lacks access to the edit model (403)
            NoImageReturnedError: The response held no image
            GenerationError: Any other failure
        """
        client = self._client_factory(api_key)
        config = types.GenerateContentConfig(
            image_config=types.ImageConfig(
                aspect_ratio=aspect_ratio.value,
                image_size=self.models.image_size,
            ),
        )

        try:
            response = await self.executor.execute(
                lambda: client.aio.models.generate_content(
                    model=self.models.image_edit,
                    contents=[original.to_part(), edit_instruction],
                    config=config,
                )
            )
        except Exception as e:
            logger.error("Image generation failed: %s", e)
            if is_permission_denied(e):
                raise ApiPermissionError() from e
            raise GenerationError("Image generation failed. Please try again.") from e

        image = first_inline_image(response)
        if image is None:
            raise NoImageReturnedError("The model returned no image data.")

        logger.info("Received %s image (%d bytes)", image.mime_type, len(image.data))
        return image
