"""Match Verifier - advisory check that the generated outfit resembles the request."""

import logging

from google.genai import types

from ..config import ModelConfig
from ..models import GeneratedImage, ModelTier, VerificationResponse, VerificationResult
from ..services.backoff import BackoffExecutor
from ..services.gemini import ClientFactory, create_client, parse_json_response, response_text

logger = logging.getLogger(__name__)


VERIFICATION_SYSTEM = """You are a Quality Assurance Judge for an AI Fashion Tool.
Your task is to compare the OUTFIT in the generated image against the USER'S TEXT DESCRIPTION.

INPUT:
- Image: The generated character image.
- Description: "{target_description}"

JUDGMENT RULES:
1. MATCH (true): The outfit generally resembles the description (e.g., correct item type, correct main color). Small details can be ignored.
2. MISMATCH (false): The outfit is completely different (e.g., the user asked for "Blue Dress" but got "Red Armor", or "Hoodie" but got "Suit").

Output JSON: {{"match": boolean, "reason": string}}
The "reason" must briefly explain why it matches or not."""


class MatchVerifier:
    """Judges generated images against the requested outfit.

    Never raises: any failure is logged and treated as a match, so the check
    can only ever add a warning to a result the user already sees.
    """

    def __init__(
        self,
        models: ModelConfig,
        executor: BackoffExecutor,
        client_factory: ClientFactory = create_client,
    ):
        self.models = models
        self.executor = executor
        self._client_factory = client_factory

    async def verify(
        self,
        api_key: str,
        image: GeneratedImage,
        target_description: str,
        model_tier: ModelTier = ModelTier.PRO,
    ) -> VerificationResult:
        """Ask the verification model whether ``image`` matches ``target_description``."""
        try:
            client = self._client_factory(api_key)
            response = await self.executor.execute(
                lambda: client.aio.models.generate_content(
                    model=self.models.verification_model(model_tier),
                    contents=[
                        types.Part.from_bytes(data=image.data, mime_type=image.mime_type),
                        f'Does the character\'s outfit in this image match the description: "{target_description}"?',
                    ],
                    config=types.GenerateContentConfig(
                        system_instruction=VERIFICATION_SYSTEM.format(target_description=target_description),
                        response_mime_type="application/json",
                        response_schema=VerificationResponse,
                    ),
                )
            )
        except Exception as e:
            logger.warning("Verification failed, assuming match to avoid blocking the user: %s", e)
            return VerificationResult(matches=True, reason="")

        data = parse_json_response(response_text(response))

        # Default to a match when the verdict is missing to avoid false alarms
        match = data.get("match")
        reason = data.get("reason")
        return VerificationResult(
            matches=match if isinstance(match, bool) else True,
            reason=reason if isinstance(reason, str) else "",
        )
