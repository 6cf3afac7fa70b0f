"""Outfit editing pipeline: the job state machine behind generate, extract and retry."""

import asyncio
import logging
from typing import Callable

from ..agents import MatchVerifier, PromptSynthesisService
from ..config import StudioConfig
from ..errors import PipelineBusyError, PipelineStateError
from ..models import (
    AspectRatio,
    GeneratedImage,
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
    VerificationResult,
)
from ..services import ApiCredential, BackoffExecutor, ImageCodec, ImageEditService

logger = logging.getLogger(__name__)

Listener = Callable[[PipelineSnapshot], None]

# reset() and load_source() may return to IDLE from any settled state and bypass this table
ALLOWED_TRANSITIONS: dict[PipelineState, set[PipelineState]] = {
    PipelineState.IDLE: {PipelineState.ANALYZING, PipelineState.GENERATING},
    PipelineState.ANALYZING: {PipelineState.GENERATING, PipelineState.ERROR},
    PipelineState.GENERATING: {PipelineState.COMPLETE, PipelineState.ERROR},
    PipelineState.COMPLETE: {PipelineState.ANALYZING, PipelineState.GENERATING},
    PipelineState.ERROR: {PipelineState.ANALYZING, PipelineState.GENERATING},
}

BUSY_STATES = (PipelineState.ANALYZING, PipelineState.GENERATING)


class OutfitPipeline:
    """Drives one job at a time through analyze → generate → verify.

    Flow for an outfit change:
    1. (Reference image only) extract outfit keywords from the reference photo
    2. Analyze the character and synthesize a protected edit instruction
    3. Send the source photo + instruction to the image-edit model
    4. Publish the result, then verify it in a detached task (advisory only)

    All state lives on this object and changes only through the transition
    methods below; presentation code reads :meth:`snapshot` or subscribes.
    """

    def __init__(
        self,
        config: StudioConfig,
        credential: ApiCredential,
        synthesizer: PromptSynthesisService | None = None,
        editor: ImageEditService | None = None,
        verifier: MatchVerifier | None = None,
        codec: ImageCodec | None = None,
    ):
        self.config = config
        self.credential = credential

        # Initialize services
        executor = BackoffExecutor(
            max_attempts=config.retry.max_attempts,
            base_delay=config.retry.base_delay_seconds,
        )
        self.synthesizer = synthesizer or PromptSynthesisService(config.models, executor)
        self.editor = editor or ImageEditService(config.models, executor)
        self.verifier = verifier or MatchVerifier(config.models, executor)
        self.codec = codec or ImageCodec()

        self.retry_context = RetryContext()
        self.state_history: list[PipelineState] = [PipelineState.IDLE]

        self._state = PipelineState.IDLE
        self._source_image: ImageSource | None = None
        self._aspect_ratio: AspectRatio | None = None
        self._job: Job | None = None

        # Display artifacts
        self._analysis_text = ""
        self._generated_image: GeneratedImage | None = None
        self._image_serial = 0
        self._error_message: str | None = None
        self._warning_message: str | None = None
        self._verification: VerificationResult | None = None

        self._verification_task: asyncio.Task | None = None
        self._listeners: list[Listener] = []

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def busy(self) -> bool:
        return self._state in BUSY_STATES

    @property
    def current_job(self) -> Job | None:
        return self._job

    def snapshot(self) -> PipelineSnapshot:
        """Immutable view of the current state."""
        return PipelineSnapshot(
            state=self._state,
            job_id=self._job.job_id if self._job else None,
            action=self._job.action if self._job else None,
            aspect_ratio=self._aspect_ratio,
            analysis_text=self._analysis_text,
            edit_instruction=self.retry_context.last_edit_instruction,
            generated_image=self._generated_image,
            error_message=self._error_message,
            warning_message=self._warning_message,
            verification=self._verification,
            has_source=self._source_image is not None,
            can_retry=self.can_retry,
        )

    @property
    def can_retry(self) -> bool:
        return (
            not self.busy
            and self.retry_context.ready
            and self._source_image is not None
            and self._job is not None
        )

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a callback receiving a snapshot after every change.

        Returns a function that removes the listener.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ------------------------------------------------------------------
    # User actions
    # ------------------------------------------------------------------

    async def load_source(self, image: ImageSource) -> AspectRatio:
        """Take a new source photo; clears the previous job and retry context.

        Returns:
            The aspect ratio bucket the edit model will be asked for
        """
        if self.busy:
            raise PipelineBusyError("A job is already running.")

        aspect_ratio = await self.codec.infer_aspect_ratio(image)

        self._cancel_verification()
        self._source_image = image
        self._aspect_ratio = aspect_ratio
        self._job = None
        self.retry_context.clear()
        self._clear_display(keep_image=False)
        self._enter(PipelineState.IDLE)

        logger.info("Loaded source image (aspect ratio %s)", aspect_ratio.value)
        return aspect_ratio

    async def generate(
        self,
        intent: OutfitIntent,
        model_tier: ModelTier | None = None,
    ) -> PipelineSnapshot:
        """Change the outfit of the source photo.

        Args:
            intent: Outfit text or a reference outfit photo
            model_tier: Analysis/verification tier; defaults to the configured tier

        Returns:
            Snapshot after the job reached ``complete`` or ``error``
        """
        job = self._begin_job(JobAction.GENERATE, intent, model_tier)
        api_key = self.credential.value

        try:
            source = await self.codec.encode(job.source_image)
            target_outfit = intent.text if isinstance(intent, TextIntent) else ""

            # Reference image: turn the photo into outfit keywords first
            if isinstance(intent, ReferenceImageIntent):
                reference = await self.codec.encode(intent.image)
                target_outfit = await self.synthesizer.analyze_reference_outfit(
                    api_key, reference, job.model_tier
                )
                if not self._is_current(job):
                    return self.snapshot()
                self._analysis_text = (
                    f"Reference Analysis:\n{target_outfit}\n\n(Proceeding to character analysis...)"
                )
                self._publish()

            logger.info("Analyzing character for job %s", job.job_id)
            artifact = await self.synthesizer.analyze_for_outfit_change(
                api_key, source, target_outfit, job.model_tier
            )
            if not self._is_current(job):
                return self.snapshot()

            # Cached before generation so a failed edit can still be retried
            self.retry_context.last_edit_instruction = artifact.edit_instruction
            self._analysis_text = (
                f"{self._analysis_text}\n\n{artifact.analysis}" if self._analysis_text else artifact.analysis
            )
            self._transition(PipelineState.GENERATING)

            logger.info("Generating image for job %s", job.job_id)
            image = await self.editor.edit_image(
                api_key, source, artifact.edit_instruction, job.aspect_ratio
            )
            if not self._is_current(job):
                return self.snapshot()

            self._complete(image)
            self._dispatch_verification(job, image, target_outfit)

        except Exception as e:
            self._fail(job, e)

        return self.snapshot()

    async def extract(self, model_tier: ModelTier | None = None) -> PipelineSnapshot:
        """Remove the background while keeping the character and current outfit."""
        job = self._begin_job(JobAction.EXTRACT, None, model_tier)
        api_key = self.credential.value

        try:
            source = await self.codec.encode(job.source_image)

            logger.info("Analyzing character for background removal (job %s)", job.job_id)
            artifact = await self.synthesizer.analyze_for_background_removal(
                api_key, source, job.model_tier
            )
            if not self._is_current(job):
                return self.snapshot()

            self.retry_context.last_edit_instruction = artifact.edit_instruction
            self._analysis_text = artifact.analysis
            self._transition(PipelineState.GENERATING)

            image = await self.editor.edit_image(
                api_key, source, artifact.edit_instruction, job.aspect_ratio
            )
            if not self._is_current(job):
                return self.snapshot()

            # No verification: there is no target outfit to judge against
            self._complete(image)

        except Exception as e:
            self._fail(job, e)

        return self.snapshot()

    async def retry(self) -> PipelineSnapshot:
        """Regenerate with the cached edit instruction, skipping analysis."""
        if self.busy:
            raise PipelineBusyError("A job is already running.")
        if not self.can_retry:
            raise PipelineStateError("Nothing to retry yet. Generate or extract first.")

        job = self._job
        instruction = self.retry_context.last_edit_instruction
        api_key = self.credential.value

        # Analysis text and warning stay until new results replace them
        self._error_message = None
        self._transition(PipelineState.GENERATING)

        try:
            source = await self.codec.encode(job.source_image)
            logger.info("Retrying job %s with cached instruction", job.job_id)
            image = await self.editor.edit_image(api_key, source, instruction, job.aspect_ratio)
            if not self._is_current(job):
                return self.snapshot()
            self._complete(image)
        except Exception as e:
            self._fail(job, e)

        return self.snapshot()

    def reset(self) -> None:
        """Discard the job, retry context, source and display state."""
        self._cancel_verification()
        self._source_image = None
        self._aspect_ratio = None
        self._job = None
        self.retry_context.clear()
        self._clear_display(keep_image=False)
        self._enter(PipelineState.IDLE)

    async def wait_for_verification(self) -> None:
        """Wait for the pending advisory check, if any."""
        task = self._verification_task
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _begin_job(
        self,
        action: JobAction,
        intent: OutfitIntent | None,
        model_tier: ModelTier | None,
    ) -> Job:
        if self.busy:
            raise PipelineBusyError("A job is already running.")
        if self._source_image is None:
            raise PipelineStateError("Upload a source image first.")
        if action == JobAction.GENERATE:
            if intent is None or (isinstance(intent, TextIntent) and not intent.text.strip()):
                raise PipelineStateError("Describe an outfit or choose a reference image first.")

        self._cancel_verification()
        job = Job(
            action=action,
            source_image=self._source_image,
            outfit_intent=intent,
            aspect_ratio=self._aspect_ratio or AspectRatio.SQUARE,
            model_tier=model_tier or self.config.default_model_tier,
        )
        self._job = job

        # A new submission supersedes the previous retry context and artifacts
        self.retry_context.clear()
        self.retry_context.last_action = action
        self._clear_display(keep_image=True)
        self._transition(PipelineState.ANALYZING)

        logger.info("Started %s job %s (%s)", action.value, job.job_id, job.model_tier.value)
        return job

    def _complete(self, image: GeneratedImage) -> None:
        self._generated_image = image
        self._image_serial += 1
        self._transition(PipelineState.COMPLETE)

    def _fail(self, job: Job, exc: Exception) -> None:
        if not self._is_current(job):
            logger.info("Ignoring failure of superseded job %s: %s", job.job_id, exc)
            return
        logger.error("Job %s failed: %s", job.job_id, exc)
        self._error_message = str(exc) or "An unexpected error occurred."
        self._transition(PipelineState.ERROR)

    def _transition(self, new_state: PipelineState) -> None:
        if new_state not in ALLOWED_TRANSITIONS[self._state]:
            raise PipelineStateError(
                f"Invalid transition {self._state.value} -> {new_state.value}"
            )
        self._enter(new_state)

    def _enter(self, new_state: PipelineState) -> None:
        self._state = new_state
        if self.state_history[-1] != new_state:
            self.state_history.append(new_state)
        self._publish()

    def _publish(self) -> None:
        if not self._listeners:
            return
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Pipeline listener failed")

    def _clear_display(self, keep_image: bool) -> None:
        self._analysis_text = ""
        self._error_message = None
        self._warning_message = None
        self._verification = None
        if not keep_image:
            self._generated_image = None

    def _is_current(self, job: Job) -> bool:
        return self._job is job

    # ------------------------------------------------------------------
    # Advisory verification
    # ------------------------------------------------------------------

    def _dispatch_verification(self, job: Job, image: GeneratedImage, target_outfit: str) -> None:
        """Start verification without awaiting it; completion has already been published."""
        serial = self._image_serial
        self._verification_task = asyncio.create_task(
            self._run_verification(job, serial, image, target_outfit)
        )

    async def _run_verification(
        self,
        job: Job,
        serial: int,
        image: GeneratedImage,
        target_outfit: str,
    ) -> None:
        try:
            result = await self.verifier.verify(
                self.credential.value, image, target_outfit, job.model_tier
            )
        except Exception as e:
            logger.warning("Verification failed, assuming match: %s", e)
            result = VerificationResult(matches=True, reason="")
        self._apply_verification(job.job_id, serial, result)

    def _apply_verification(self, job_id: str, serial: int, result: VerificationResult) -> None:
        """Merge an advisory verdict; verdicts for replaced images are dropped."""
        if self._job is None or self._job.job_id != job_id or serial != self._image_serial:
            logger.info("Dropping stale verification for job %s", job_id)
            return

        self._verification = result
        if not result.matches:
            self._warning_message = (
                "The generated image may not match the requested outfit.\n"
                f"Reason: {result.reason}"
            )
            logger.info("Verification mismatch for job %s: %s", job_id, result.reason)
        self._publish()

    def _cancel_verification(self) -> None:
        task = self._verification_task
        if task is not None and not task.done():
            task.cancel()
        self._verification_task = None
