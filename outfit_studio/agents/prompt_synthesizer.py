"""Prompt Synthesizer - turns a photo plus outfit intent into a protected edit instruction."""

import logging
from typing import TypeVar

from google.genai import types
from pydantic import BaseModel, ValidationError

from ..config import ModelConfig
from ..errors import AnalysisError, EmptyExtractionError, ExtractionError, MalformedResponseError
from ..models import (
    AnalysisArtifact,
    BackgroundRemovalResponse,
    ModelTier,
    OutfitChangeResponse,
    ReferenceOutfitResponse,
)
from ..services.backoff import BackoffExecutor
from ..services.gemini import ClientFactory, create_client, response_text, strip_code_fence
from ..services.image_codec import ImagePayload
from ..utils.outfit_filter import filter_outfit, parse_visible_zones

logger = logging.getLogger(__name__)

SchemaT = TypeVar("SchemaT", bound=BaseModel)

OUTFIT_MARKER = "/* --- OUTFIT (New!) --- */"
BACKGROUND_MARKER = "/* --- BACKGROUND REMOVAL --- */"
MANDATES_HEADER = "*** PROTECTION MANDATES (STRICTLY ENFORCE) ***"

ANALYSIS_UNAVAILABLE = "Analysis unavailable: the model returned an unreadable response."

DEFAULT_OUTFIT_MANDATES = f"""{MANDATES_HEADER}
- BACKGROUND: Keep the background exactly unchanged. Do not regenerate the background.
- IDENTITY: Do not change the face, eyes, or expression. Keep the hair exactly as is.
- POSE: Maintain the exact pose.
- PHOTOGRAPHY: Keep the original camera angle, framing, lighting, and composition."""


OUTFIT_CHANGE_SYSTEM = """You are an expert Technical Artist specializing in AI Image Editing and Inpainting consistency.
Your GOAL is to write a precise "Edit Instruction Prompt" that tells the AI exactly what to change and what to PROTECT.
The user wants to change ONLY the outfit. The Face, Hair, Pose, and Background must remain PIXEL-PERFECTLY identical to the original.

## STEP 1: IMMUTABLE FEATURE EXTRACTION (YAML)
Analyze the image and extract these features into YAML.

1. **VISIBLE_ZONES**:
   - List EXPLICITLY visible body parts: ["HEAD", "NECK", "SHOULDERS", "CHEST", "ARMS", "WAIST", "HIPS", "LEGS", "FEET"].
   - If the image is a bust-up/portrait, do NOT list HIPS, LEGS, or FEET.
2. **HAIR_MASTER**:
   - Color & Style (e.g., "Silver twin-tails").
   - **LOCK_INSTRUCTION**: "Keep the [Color] [Style] hair exactly as is."
3. **FACE_MASTER**:
   - Expression & Features.
   - **LOCK_INSTRUCTION**: "Do not change the face, eyes, or expression."
4. **POSE_MASTER**:
   - Exact limb positions.
   - **LOCK_INSTRUCTION**: "Maintain the exact pose: [Description]."
5. **BACKGROUND_MASTER**:
   - Describe the background elements (lighting, setting, objects) briefly.
   - **LOCK_INSTRUCTION**: "Keep the [Description] background exactly unchanged."

## STEP 2: EDITING PROMPT GENERATION
Create a prompt for an Image-to-Image / Inpainting model.
The prompt must NOT describe the scene from scratch. It is a command to MODIFY.

Structure:
"{outfit_marker}
[TARGET_OUTFIT COPIED VERBATIM. See Rules below.]

{mandates_header}
- BACKGROUND: [BACKGROUND_MASTER LOCK_INSTRUCTION]. Do not regenerate the background.
- IDENTITY: [FACE_MASTER LOCK_INSTRUCTION]. [HAIR_MASTER LOCK_INSTRUCTION].
- POSE: [POSE_MASTER LOCK_INSTRUCTION].
- PHOTOGRAPHY: Keep the original camera angle, framing, lighting, and composition."

## STRICT RULES
- **VERBATIM OUTFIT RULE (CRITICAL)**:
  - The user's input "{target_outfit}" is the SOURCE OF TRUTH.
  - DO NOT SUMMARIZE. DO NOT TRANSLATE. DO NOT SIMPLIFY.
  - COPY the user's outfit description EXACTLY as provided into the outfit section.
  - PRESERVE all adjectives, parentheses, detailed cuts, trims, materials, and styles.
  - Example: If the user says "white halter bodysuit (heart cutout)", output MUST be "white halter bodysuit (heart cutout)".
- **SANITIZE TARGET OUTFIT (MINIMAL)**:
  - ONLY remove instructions that explicitly contradict the task, such as "change background to beach" or "change pose to sitting".
  - KEEP everything else, even if it seems complex or verbose.
- **VISIBILITY FILTER**:
  - If 'FEET' are missing in VISIBLE_ZONES -> REMOVE shoes, socks, boots from the target outfit.
  - If 'LEGS' are missing -> REMOVE pants, skirts, shorts, leggings.
  - If only 'HEAD/NECK' are visible -> REMOVE shirt, jacket, etc.; keep only headwear/neck accessories.
  - EXAMPLE: If the target is "Hoodie, Jeans, Sneakers" but the image is bust-up -> output only "Hoodie".
- **FORMATTING**: The prompt MUST start with "{outfit_marker}".
- NEVER describe the *original* outfit.
- EMPHASIZE: "Change ONLY the outfit."
"""


REFERENCE_OUTFIT_SYSTEM = """You are a Fashion Analyst expert.
Your task is to analyze the image and extract a precise, comma-separated description of the outfit/clothing shown.

RULES:
- IGNORE the person (face, hair, body type, pose).
- IGNORE the background.
- FOCUS ONLY on clothes, shoes, accessories (jewelry, hats, bags).
- OUTPUT a comma-separated list of English keywords describing items, materials, colors, and specific styles.
- FORMAT: "Item 1 (color/material), Item 2 (style), Item 3..."
"""


BACKGROUND_REMOVAL_SYSTEM = """You are an expert Technical Artist.
Your GOAL is to isolate the character by removing the background while keeping the character (including their CURRENT OUTFIT) exactly as is.

## STEP 1: IMMUTABLE FEATURE EXTRACTION (YAML)
Analyze the image and extract these features into YAML.

1. **HAIR_MASTER**:
   - Color & Style.
   - **LOCK_INSTRUCTION**: "Keep the [Color] [Style] hair exactly as is."
2. **FACE_MASTER**:
   - Expression & Features.
   - **LOCK_INSTRUCTION**: "Do not change the face, eyes, or expression."
3. **OUTFIT_MASTER**:
   - Describe the CURRENT outfit in detail.
   - **LOCK_INSTRUCTION**: "Keep the [Description] outfit exactly unchanged."
4. **POSE_MASTER**:
   - Exact limb positions.
   - **LOCK_INSTRUCTION**: "Maintain the exact pose."
5. **BACKGROUND_MASTER**:
   - Describe the current background that needs to be removed.
   - **LOCK_INSTRUCTION**: "Completely remove the [Description]. The character must be isolated on a solid white background."

## STEP 2: EDITING PROMPT GENERATION
Structure:
"{background_marker}
Solid white background, clean isolation, product shot style, no shadows, simple background.

{mandates_header}
- OUTFIT: [OUTFIT_MASTER LOCK_INSTRUCTION].
- IDENTITY: [FACE_MASTER LOCK_INSTRUCTION]. [HAIR_MASTER LOCK_INSTRUCTION].
- POSE: [POSE_MASTER LOCK_INSTRUCTION].
- ACTION: Remove the original background completely."
"""


class PromptSynthesisService:
    """Runs the three analysis flows against the vision-language model.

    Each flow sends the image with a fixed system instruction and a strict JSON
    schema, retries transient failures, and post-processes the result into an
    :class:`AnalysisArtifact` (or a keyword string for reference outfits).
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

    async def analyze_for_outfit_change(
        self,
        api_key: str,
        image: ImagePayload,
        target_outfit: str,
        model_tier: ModelTier = ModelTier.PRO,
    ) -> AnalysisArtifact:
        """Analyze the character and build the outfit-change edit instruction.

        Args:
            api_key: Gemini API key for this call
            image: Source photo
            target_outfit: Outfit text exactly as the user entered it
            model_tier: Selects the analysis model

        Returns:
            AnalysisArtifact; falls back to a minimal instruction on malformed output

        Raises:
            AnalysisError: The model call failed after retries
        """
        system = OUTFIT_CHANGE_SYSTEM.format(
            outfit_marker=OUTFIT_MARKER,
            mandates_header=MANDATES_HEADER,
            target_outfit=target_outfit,
        )
        user_message = (
            "Analyze this image and generate the strict outfit-change editing prompt.\n\n"
            f'TARGET OUTFIT COMMAND: "{target_outfit}"'
        )

        try:
            result = await self._request_structured(
                api_key, model_tier, system, image, user_message, OutfitChangeResponse
            )
        except MalformedResponseError as e:
            logger.warning("Outfit analysis malformed, using fallback instruction: %s", e)
            return AnalysisArtifact(
                analysis=ANALYSIS_UNAVAILABLE,
                edit_instruction=self.fallback_outfit_instruction(target_outfit),
                used_fallback=True,
            )
        except Exception as e:
            logger.error("Outfit analysis failed: %s", e)
            raise AnalysisError(f"Character analysis failed: {e}") from e

        analysis = result.yaml_analysis.strip() or ANALYSIS_UNAVAILABLE
        zones = parse_visible_zones(analysis)

        if not result.generation_prompt.strip():
            return AnalysisArtifact(
                analysis=analysis,
                edit_instruction=self.fallback_outfit_instruction(target_outfit),
                visible_zones=zones,
                used_fallback=True,
            )

        instruction = self.enforce_outfit_instruction(result.generation_prompt, zones, target_outfit)
        logger.info("Visible zones: %s", ", ".join(zones) if zones else "unknown")
        return AnalysisArtifact(analysis=analysis, edit_instruction=instruction, visible_zones=zones)

    async def analyze_reference_outfit(
        self,
        api_key: str,
        reference_image: ImagePayload,
        model_tier: ModelTier = ModelTier.PRO,
    ) -> str:
        """Extract comma-separated outfit keywords from a reference photo.

        Raises:
            ExtractionError: The model call failed after retries
            EmptyExtractionError: No keywords came back
        """
        try:
            result = await self._request_structured(
                api_key,
                model_tier,
                REFERENCE_OUTFIT_SYSTEM,
                reference_image,
                "Extract the outfit keywords from this reference image.",
                ReferenceOutfitResponse,
            )
        except MalformedResponseError as e:
            raise EmptyExtractionError(
                "Could not extract an outfit from the reference image. Please try again."
            ) from e
        except Exception as e:
            logger.error("Reference analysis failed: %s", e)
            raise ExtractionError("Failed to analyze the reference image.") from e

        keywords = result.outfit_keywords.strip()
        if not keywords:
            raise EmptyExtractionError(
                "Could not extract an outfit from the reference image. Please try again."
            )
        return keywords

    async def analyze_for_background_removal(
        self,
        api_key: str,
        image: ImagePayload,
        model_tier: ModelTier = ModelTier.PRO,
    ) -> AnalysisArtifact:
        """Analyze the character and build a background-removal instruction."""
        system = BACKGROUND_REMOVAL_SYSTEM.format(
            background_marker=BACKGROUND_MARKER,
            mandates_header=MANDATES_HEADER,
        )

        try:
            result = await self._request_structured(
                api_key,
                model_tier,
                system,
                image,
                "Analyze this image and generate the background removal prompt.",
                BackgroundRemovalResponse,
            )
        except MalformedResponseError as e:
            logger.warning("Extraction analysis malformed, using fallback instruction: %s", e)
            return AnalysisArtifact(
                analysis=ANALYSIS_UNAVAILABLE,
                edit_instruction=self.fallback_background_instruction(),
                used_fallback=True,
            )
        except Exception as e:
            logger.error("Extraction analysis failed: %s", e)
            raise AnalysisError(f"Character analysis failed: {e}") from e

        analysis = result.yaml_analysis.strip() or ANALYSIS_UNAVAILABLE
        instruction = result.generation_prompt.strip()
        if not instruction:
            return AnalysisArtifact(
                analysis=analysis,
                edit_instruction=self.fallback_background_instruction(),
                used_fallback=True,
            )
        if not instruction.startswith(BACKGROUND_MARKER):
            instruction = f"{BACKGROUND_MARKER}\n{instruction}"
        return AnalysisArtifact(analysis=analysis, edit_instruction=instruction)

    def enforce_outfit_instruction(
        self,
        instruction: str,
        visible_zones: list[str] | None,
        target_outfit: str = "",
    ) -> str:
        """Re-apply the marker, visibility filter and mandates to a model-written instruction.

        The outfit section is never left empty. When the visibility filter removes every
        garment, the section keeps the model's own text with only scene changes removed,
        falling back to the requested outfit.
        """
        text = instruction.strip()
        marker_at = text.find(OUTFIT_MARKER)
        if marker_at >= 0:
            text = text[marker_at + len(OUTFIT_MARKER):]

        # Outfit section runs from the marker to the mandates block
        split_at = text.find("***")
        outfit, mandates = (text[:split_at], text[split_at:]) if split_at >= 0 else (text, "")
        outfit = outfit.strip()

        filtered = filter_outfit(outfit, visible_zones)
        if not filtered:
            candidates = (
                filter_outfit(outfit, None),
                filter_outfit(target_outfit, None),
                target_outfit.strip(),
                outfit,
            )
            filtered = next((c for c in candidates if c), "")
            logger.warning("Visibility filter emptied the outfit section, keeping %r", filtered)
        elif filtered != outfit:
            logger.info("Filtered outfit section: %r -> %r", outfit, filtered)

        mandates = mandates.strip()
        if "PROTECTION MANDATES" not in mandates:
            mandates = f"{mandates}\n\n{DEFAULT_OUTFIT_MANDATES}".strip()

        return f"{OUTFIT_MARKER}\n{filtered}\n\n{mandates}"

    def fallback_outfit_instruction(self, target_outfit: str) -> str:
        """Minimal instruction used when the analysis output is unusable."""
        return (
            f"{OUTFIT_MARKER}\n{target_outfit}\n\n"
            "*** PROTECTION MANDATES ***\n"
            "Change ONLY the outfit. Keep everything else unchanged: face, hair, pose, "
            "background, and camera framing."
        )

    def fallback_background_instruction(self) -> str:
        return (
            f"{BACKGROUND_MARKER}\n"
            "Solid white background, clean isolation.\n\n"
            "Remove background, keep character exactly as is, including the current outfit and pose."
        )

    async def _request_structured(
        self,
        api_key: str,
        model_tier: ModelTier,
        system_instruction: str,
        image: ImagePayload,
        text: str,
        schema: type[SchemaT],
    ) -> SchemaT:
        """Send image + text with a JSON response schema and validate the reply.

        Raises:
            MalformedResponseError: The reply does not match ``schema``
        """
        client = self._client_factory(api_key)
        response = await self.executor.execute(
            lambda: client.aio.models.generate_content(
                model=self.models.analysis_model(model_tier),
                contents=[image.to_part(), text],
                config=types.GenerateContentConfig(
                    system_instruction=system_instruction,
                    response_mime_type="application/json",
                    response_schema=schema,
                ),
            )
        )

        raw = response_text(response)
        if not raw.strip():
            raise MalformedResponseError("Empty response from model")
        try:
            return schema.model_validate_json(strip_code_fence(raw))
        except ValidationError as e:
            raise MalformedResponseError(f"Response does not match {schema.__name__}") from e

