"""Integration tests for full pipeline execution."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from conftest import api_error, image_response, json_response
from outfit_studio.agents import MatchVerifier, PromptSynthesisService
from outfit_studio.errors import PipelineBusyError, PipelineStateError
from outfit_studio.models import (
    AnalysisArtifact,
    AspectRatio,
    GeneratedImage,
    JobAction,
    ModelTier,
    PipelineState,
    ReferenceImageIntent,
    TextIntent,
)
from outfit_studio.pipeline import OutfitPipeline
from outfit_studio.services import ImageEditService


GENERATED = b"\x89PNG\r\n\x1a\ngenerated-outfit"


@pytest.fixture
def pipeline(studio_config, credential, fake_gemini, executor):
    """Pipeline with real services talking to the fake Gemini client."""
    models = studio_config.models
    return OutfitPipeline(
        studio_config,
        credential,
        synthesizer=PromptSynthesisService(models, executor, client_factory=fake_gemini.factory),
        editor=ImageEditService(models, executor, client_factory=fake_gemini.factory),
        verifier=MatchVerifier(models, executor, client_factory=fake_gemini.factory),
    )


@pytest_asyncio.fixture
async def loaded_pipeline(pipeline, make_png):
    await pipeline.load_source(make_png(1080, 1080))
    return pipeline


class TestPipelineInitialization:
    """Tests for pipeline initialization."""

    def test_pipeline_creates_with_config(self, studio_config, credential):
        """Pipeline builds its own services from config."""
        pipeline = OutfitPipeline(studio_config, credential)

        assert pipeline.synthesizer is not None
        assert pipeline.editor is not None
        assert pipeline.verifier is not None
        assert pipeline.codec is not None
        assert pipeline.editor.executor.max_attempts == 3

    def test_starts_idle(self, pipeline):
        snapshot = pipeline.snapshot()

        assert snapshot.state == PipelineState.IDLE
        assert snapshot.has_source is False
        assert snapshot.can_retry is False
        assert snapshot.busy is False


class TestLoadSource:
    """Tests for loading the character photo."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("size,expected", [
        ((1920, 1080), AspectRatio.WIDE),
        ((1080, 1920), AspectRatio.TALL),
        ((800, 1000), AspectRatio.PORTRAIT),
    ])
    async def test_infers_aspect_ratio(self, pipeline, make_png, size, expected):
        ratio = await pipeline.load_source(make_png(*size))

        assert ratio == expected
        assert pipeline.snapshot().aspect_ratio == expected
        assert pipeline.snapshot().has_source is True

    @pytest.mark.asyncio
    async def test_from_path(self, pipeline, temp_image_file):
        assert await pipeline.load_source(temp_image_file) == AspectRatio.SQUARE

    @pytest.mark.asyncio
    async def test_new_source_clears_retry_context(
        self, loaded_pipeline, fake_gemini, make_png, outfit_analysis_payload
    ):
        pipeline = loaded_pipeline
        fake_gemini.queue("outfit", json_response(outfit_analysis_payload))
        fake_gemini.queue("edit", image_response(GENERATED))
        fake_gemini.queue("verify", json_response({"match": True, "reason": "ok"}))
        await pipeline.generate(TextIntent(text="white T-shirt and jeans"))
        await pipeline.wait_for_verification()

        await pipeline.load_source(make_png(1920, 1080))

        snapshot = pipeline.snapshot()
        assert snapshot.state == PipelineState.IDLE
        assert snapshot.can_retry is False
        assert snapshot.generated_image is None
        assert pipeline.retry_context.ready is False


class TestGenerate:
    """Tests for the outfit-change flow."""

    @pytest.mark.asyncio
    @pytest.mark.integration
    async def test_end_to_end_text_outfit(self, pipeline, fake_gemini, make_png, outfit_analysis_payload):
        """1080x1080 + 'white T-shirt and jeans' goes idle → analyzing → generating → complete."""
        await pipeline.load_source(make_png(1080, 1080))
        fake_gemini.queue("outfit", json_response(outfit_analysis_payload))
        fake_gemini.queue("edit", image_response(GENERATED))
        fake_gemini.queue("verify", json_response({"match": True, "reason": "Matches."}))

        snapshot = await pipeline.generate(TextIntent(text="white T-shirt and jeans"))
        await pipeline.wait_for_verification()

        assert pipeline.state_history == [
            PipelineState.IDLE,
            PipelineState.ANALYZING,
            PipelineState.GENERATING,
            PipelineState.COMPLETE,
        ]
        assert snapshot.state == PipelineState.COMPLETE
        assert snapshot.generated_image.data == GENERATED
        assert snapshot.can_retry is True
        assert snapshot.edit_instruction.startswith("/* --- OUTFIT (New!) --- */")

        edit_call = fake_gemini.calls_to("edit")[0]
        assert edit_call.config.image_config.aspect_ratio == "1:1"

        verify_call = fake_gemini.calls_to("verify")[0]
        assert verify_call.contents[0].inline_data.data == GENERATED
        assert '"white T-shirt and jeans"' in verify_call.contents[1]

        final = pipeline.snapshot()
        assert final.verification.matches is True
        assert final.warning_message is None

    @pytest.mark.asyncio
    async def test_completion_published_before_verification(
        self, loaded_pipeline, fake_gemini, outfit_analysis_payload
    ):
        """The image is visible while the verifier is still working."""
        pipeline = loaded_pipeline
        release = asyncio.Event()

        async def slow_verdict():
            await release.wait()
            return json_response({"match": False, "reason": "Got a suit instead."})

        fake_gemini.queue("outfit", json_response(outfit_analysis_payload))
        fake_gemini.queue("edit", image_response(GENERATED))
        fake_gemini.queue("verify", slow_verdict)

        snapshot = await pipeline.generate(TextIntent(text="white T-shirt and jeans"))

        assert snapshot.state == PipelineState.COMPLETE
        assert snapshot.verification is None

        release.set()
        await pipeline.wait_for_verification()

        final = pipeline.snapshot()
        assert final.state == PipelineState.COMPLETE
        assert final.warning_message == (
            "The generated image may not match the requested outfit.\nReason: Got a suit instead."
        )

    @pytest.mark.asyncio
    async def test_verification_failure_never_errors(
        self, loaded_pipeline, fake_gemini, outfit_analysis_payload
    ):
        pipeline = loaded_pipeline
        fake_gemini.queue("outfit", json_response(outfit_analysis_payload))
        fake_gemini.queue("edit", image_response(GENERATED))
        fake_gemini.queue("verify", api_error(400, "INVALID_ARGUMENT"))

        await pipeline.generate(TextIntent(text="white T-shirt and jeans"))
        await pipeline.wait_for_verification()

        snapshot = pipeline.snapshot()
        assert snapshot.state == PipelineState.COMPLETE
        assert snapshot.warning_message is None
        assert snapshot.error_message is None

    @pytest.mark.asyncio
    async def test_reference_image_intent(self, loaded_pipeline, fake_gemini, make_png, outfit_analysis_payload):
        """Reference keywords feed the outfit analysis and the verifier."""
        pipeline = loaded_pipeline
        keywords = "Denim jacket (light wash), White tee"
        fake_gemini.queue("reference", json_response({"outfit_keywords": keywords}))
        fake_gemini.queue("outfit", json_response(outfit_analysis_payload))
        fake_gemini.queue("edit", image_response(GENERATED))
        fake_gemini.queue("verify", json_response({"match": True, "reason": "ok"}))

        snapshot = await pipeline.generate(ReferenceImageIntent(image=make_png(600, 800)))
        await pipeline.wait_for_verification()

        assert snapshot.state == PipelineState.COMPLETE
        assert snapshot.analysis_text.startswith(f"Reference Analysis:\n{keywords}")
        assert "VISIBLE_ZONES" in snapshot.analysis_text
        assert f'"{keywords}"' in fake_gemini.calls_to("outfit")[0].contents[1]
        assert f'"{keywords}"' in fake_gemini.calls_to("verify")[0].contents[1]

    @pytest.mark.asyncio
    async def test_empty_reference_stops_before_outfit_analysis(self, loaded_pipeline, fake_gemini, make_png):
        pipeline = loaded_pipeline
        fake_gemini.queue("reference", json_response({"outfit_keywords": ""}))

        snapshot = await pipeline.generate(ReferenceImageIntent(image=make_png(600, 800)))

        assert snapshot.state == PipelineState.ERROR
        assert "reference image" in snapshot.error_message
        assert fake_gemini.calls_to("outfit") == []
        assert fake_gemini.calls_to("edit") == []
        assert snapshot.can_retry is False

    @pytest.mark.asyncio
    async def test_permission_denied_keeps_instruction_for_retry(
        self, loaded_pipeline, fake_gemini, outfit_analysis_payload
    ):
        pipeline = loaded_pipeline
        fake_gemini.queue("outfit", json_response(outfit_analysis_payload))
        fake_gemini.queue("edit", api_error(403, "PERMISSION_DENIED"))

        snapshot = await pipeline.generate(TextIntent(text="white T-shirt and jeans"))

        assert snapshot.state == PipelineState.ERROR
        assert "Permission denied (403)" in snapshot.error_message
        assert snapshot.can_retry is True
        assert pipeline.state_history[-2:] == [PipelineState.GENERATING, PipelineState.ERROR]

    @pytest.mark.asyncio
    async def test_analysis_failure(self, loaded_pipeline, fake_gemini):
        pipeline = loaded_pipeline
        fake_gemini.queue("outfit", api_error(400, "INVALID_ARGUMENT", "bad image"))

        snapshot = await pipeline.generate(TextIntent(text="red dress"))

        assert snapshot.state == PipelineState.ERROR
        assert snapshot.error_message.startswith("Character analysis failed")
        assert pipeline.state_history[-2:] == [PipelineState.ANALYZING, PipelineState.ERROR]
        assert snapshot.can_retry is False

    @pytest.mark.asyncio
    async def test_model_tier_selects_analysis_model(
        self, loaded_pipeline, fake_gemini, outfit_analysis_payload
    ):
        pipeline = loaded_pipeline
        fake_gemini.queue("outfit", json_response(outfit_analysis_payload))
        fake_gemini.queue("edit", image_response(GENERATED))
        fake_gemini.queue("verify", json_response({"match": True, "reason": "ok"}))

        await pipeline.generate(TextIntent(text="red dress"), model_tier=ModelTier.FLASH)
        await pipeline.wait_for_verification()

        assert fake_gemini.calls_to("outfit")[0].model == "gemini-2.5-flash"
        assert fake_gemini.calls_to("verify")[0].model == "gemini-2.5-flash"
        assert fake_gemini.calls_to("edit")[0].model == "gemini-3-pro-image-preview"

    @pytest.mark.asyncio
    async def test_requires_source(self, pipeline):
        with pytest.raises(PipelineStateError):
            await pipeline.generate(TextIntent(text="red dress"))

    @pytest.mark.asyncio
    async def test_requires_outfit_text(self, loaded_pipeline):
        with pytest.raises(PipelineStateError):
            await loaded_pipeline.generate(TextIntent(text="   "))
        assert loaded_pipeline.state == PipelineState.IDLE

    @pytest.mark.asyncio
    async def test_rejects_second_job_while_busy(self, loaded_pipeline, fake_gemini, outfit_analysis_payload):
        """Job-starting actions are refused while analyzing or generating."""
        pipeline = loaded_pipeline
        rejected = []

        async def edit_while_busy():
            assert pipeline.snapshot().busy is True
            for start in (
                lambda: pipeline.generate(TextIntent(text="other")),
                pipeline.extract,
                pipeline.retry,
            ):
                with pytest.raises(PipelineBusyError):
                    await start()
                rejected.append(start)
            return image_response(GENERATED)

        fake_gemini.queue("outfit", json_response(outfit_analysis_payload))
        fake_gemini.queue("edit", edit_while_busy)
        fake_gemini.queue("verify", json_response({"match": True, "reason": "ok"}))

        snapshot = await pipeline.generate(TextIntent(text="white T-shirt and jeans"))
        await pipeline.wait_for_verification()

        assert len(rejected) == 3
        assert snapshot.state == PipelineState.COMPLETE


class TestExtract:
    """Tests for background removal."""

    @pytest.mark.asyncio
    async def test_extract_skips_verification(self, loaded_pipeline, fake_gemini):
        pipeline = loaded_pipeline
        fake_gemini.queue("extract", json_response({
            "yaml_analysis": "OUTFIT_MASTER: school uniform",
            "generation_prompt": "/* --- BACKGROUND REMOVAL --- */\nSolid white background.",
        }))
        fake_gemini.queue("edit", image_response(GENERATED))

        snapshot = await pipeline.extract()
        await pipeline.wait_for_verification()

        assert snapshot.state == PipelineState.COMPLETE
        assert snapshot.action == JobAction.EXTRACT
        assert snapshot.analysis_text == "OUTFIT_MASTER: school uniform"
        assert fake_gemini.calls_to("verify") == []
        assert pipeline.retry_context.last_action == JobAction.EXTRACT


class TestRetry:
    """Tests for regenerate-with-last-prompt."""

    @pytest.mark.asyncio
    async def test_retry_reuses_instruction_without_analysis(
        self, loaded_pipeline, fake_gemini, outfit_analysis_payload
    ):
        pipeline = loaded_pipeline
        fake_gemini.queue("outfit", json_response(outfit_analysis_payload))
        fake_gemini.queue("verify", json_response({"match": True, "reason": "ok"}))
        fake_gemini.queue(
            "edit",
            image_response(b"first"),
            image_response(b"second"),
            image_response(b"third"),
        )

        first = await pipeline.generate(TextIntent(text="white T-shirt and jeans"))
        await pipeline.wait_for_verification()
        second = await pipeline.retry()
        third = await pipeline.retry()

        instructions = [call.contents[1] for call in fake_gemini.calls_to("edit")]
        assert len(instructions) == 3
        assert instructions[0] == instructions[1] == instructions[2]
        assert len(fake_gemini.calls_to("outfit")) == 1
        assert len(fake_gemini.calls_to("verify")) == 1
        assert third.generated_image.data == b"third"
        assert third.analysis_text == first.analysis_text
        assert second.state == third.state == PipelineState.COMPLETE

    @pytest.mark.asyncio
    async def test_retry_after_generation_failure(self, loaded_pipeline, fake_gemini, outfit_analysis_payload):
        pipeline = loaded_pipeline
        fake_gemini.queue("outfit", json_response(outfit_analysis_payload))
        fake_gemini.queue("edit", api_error(403, "PERMISSION_DENIED"), image_response(GENERATED))

        await pipeline.generate(TextIntent(text="white T-shirt and jeans"))
        snapshot = await pipeline.retry()

        assert snapshot.state == PipelineState.COMPLETE
        assert snapshot.error_message is None
        assert pipeline.state_history[-3:] == [
            PipelineState.ERROR,
            PipelineState.GENERATING,
            PipelineState.COMPLETE,
        ]

    @pytest.mark.asyncio
    async def test_retry_keeps_previous_warning(self, loaded_pipeline, fake_gemini, outfit_analysis_payload):
        pipeline = loaded_pipeline
        fake_gemini.queue("outfit", json_response(outfit_analysis_payload))
        fake_gemini.queue("verify", json_response({"match": False, "reason": "Got a suit."}))
        fake_gemini.queue("edit", image_response(b"first"), image_response(b"second"))

        await pipeline.generate(TextIntent(text="white T-shirt and jeans"))
        await pipeline.wait_for_verification()
        snapshot = await pipeline.retry()

        assert snapshot.warning_message is not None
        assert "Got a suit." in snapshot.warning_message

    @pytest.mark.asyncio
    async def test_stale_verification_is_dropped(self, loaded_pipeline, fake_gemini, outfit_analysis_payload):
        """A verdict for an image that a retry already replaced is ignored."""
        pipeline = loaded_pipeline
        release = asyncio.Event()

        async def slow_verdict():
            await release.wait()
            return json_response({"match": False, "reason": "Got a suit."})

        fake_gemini.queue("outfit", json_response(outfit_analysis_payload))
        fake_gemini.queue("verify", slow_verdict)
        fake_gemini.queue("edit", image_response(b"first"), image_response(b"second"))

        await pipeline.generate(TextIntent(text="white T-shirt and jeans"))
        await pipeline.retry()
        release.set()
        await pipeline.wait_for_verification()

        snapshot = pipeline.snapshot()
        assert snapshot.generated_image.data == b"second"
        assert snapshot.warning_message is None
        assert snapshot.verification is None

    @pytest.mark.asyncio
    async def test_retry_without_history(self, loaded_pipeline):
        with pytest.raises(PipelineStateError):
            await loaded_pipeline.retry()


class TestResetAndListeners:
    """Tests for reset and state subscriptions."""

    @pytest.mark.asyncio
    async def test_reset_clears_everything(self, loaded_pipeline, fake_gemini):
        pipeline = loaded_pipeline
        fake_gemini.queue("extract", json_response({
            "yaml_analysis": "OUTFIT_MASTER: armor",
            "generation_prompt": "/* --- BACKGROUND REMOVAL --- */\nWhite.",
        }))
        fake_gemini.queue("edit", image_response(GENERATED))
        await pipeline.extract()

        pipeline.reset()

        snapshot = pipeline.snapshot()
        assert snapshot.state == PipelineState.IDLE
        assert snapshot.has_source is False
        assert snapshot.generated_image is None
        assert snapshot.analysis_text == ""
        assert snapshot.can_retry is False

    @pytest.mark.asyncio
    async def test_reset_during_job_abandons_result(self, loaded_pipeline, fake_gemini, outfit_analysis_payload):
        pipeline = loaded_pipeline

        def reset_then_reply():
            pipeline.reset()
            return image_response(GENERATED)

        fake_gemini.queue("outfit", json_response(outfit_analysis_payload))
        fake_gemini.queue("edit", reset_then_reply)

        snapshot = await pipeline.generate(TextIntent(text="white T-shirt and jeans"))

        assert snapshot.state == PipelineState.IDLE
        assert snapshot.generated_image is None
        assert fake_gemini.calls_to("verify") == []

    @pytest.mark.asyncio
    async def test_listeners_receive_each_state(self, loaded_pipeline, fake_gemini, outfit_analysis_payload):
        pipeline = loaded_pipeline
        seen = []
        unsubscribe = pipeline.subscribe(lambda snapshot: seen.append(snapshot.state))
        fake_gemini.queue("outfit", json_response(outfit_analysis_payload))
        fake_gemini.queue("edit", image_response(GENERATED))
        fake_gemini.queue("verify", json_response({"match": True, "reason": "ok"}))

        await pipeline.generate(TextIntent(text="white T-shirt and jeans"))
        await pipeline.wait_for_verification()
        unsubscribe()
        pipeline.reset()

        assert seen[:3] == [PipelineState.ANALYZING, PipelineState.GENERATING, PipelineState.COMPLETE]
        assert PipelineState.IDLE not in seen

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_break_pipeline(self, loaded_pipeline, fake_gemini):
        pipeline = loaded_pipeline
        pipeline.subscribe(MagicMock(side_effect=RuntimeError("render failed")))
        fake_gemini.queue("extract", json_response({
            "yaml_analysis": "OUTFIT_MASTER: armor",
            "generation_prompt": "/* --- BACKGROUND REMOVAL --- */\nWhite.",
        }))
        fake_gemini.queue("edit", image_response(GENERATED))

        snapshot = await pipeline.extract()

        assert snapshot.state == PipelineState.COMPLETE


class TestPipelineWithMockedServices:
    """Tests for orchestration against mocked services."""

    @pytest.mark.asyncio
    async def test_services_receive_resolved_key(self, studio_config, credential, make_png):
        synthesizer = MagicMock()
        synthesizer.analyze_for_background_removal = AsyncMock(return_value=AnalysisArtifact(
            analysis="OUTFIT_MASTER: armor",
            edit_instruction="/* --- BACKGROUND REMOVAL --- */\nWhite.",
        ))
        editor = MagicMock()
        editor.edit_image = AsyncMock(return_value=GeneratedImage(data=GENERATED))

        pipeline = OutfitPipeline(studio_config, credential, synthesizer=synthesizer, editor=editor)
        await pipeline.load_source(make_png(1000, 800))
        await pipeline.extract(model_tier=ModelTier.FLASH)

        assert synthesizer.analyze_for_background_removal.await_args.args[0] == credential.value
        assert synthesizer.analyze_for_background_removal.await_args.args[2] == ModelTier.FLASH
        assert editor.edit_image.await_args.args[0] == credential.value
        assert editor.edit_image.await_args.args[3] == AspectRatio.LANDSCAPE
