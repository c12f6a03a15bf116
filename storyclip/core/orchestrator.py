from __future__ import annotations

import logging
from typing import Optional, Sequence, Tuple

from pydantic import ValidationError

from storyclip.providers.base import GenerationProvider, parse_submit_response
from storyclip.utils.logging_setup import log_context

from .clip_types import ClipTypeLike, ClipTypeRouter
from .errors import InvalidDuration, InvalidPrompt, MissingRequiredReference, SubmissionFailed
from .models import GenerationJob, GenerationRequest, JobStatus, Modality, ReferenceSlot
from .resolver import ModelResolver
from .timeline import TimelineSlotManager

logger = logging.getLogger(__name__)


class GenerationOrchestrator:
    """
    Turns an authoring snapshot into exactly one provider submission.

    All authoring checks run before the provider is touched, and the
    provider is called once per submit(); nothing here retries.
    """

    def __init__(
        self,
        router: ClipTypeRouter,
        timeline: TimelineSlotManager,
        resolver: ModelResolver,
        provider: GenerationProvider,
        job_store=None,
        modality: Modality = Modality.VIDEO,
    ):
        self.router = router
        self.timeline = timeline
        self.resolver = resolver
        self.provider = provider
        self.job_store = job_store
        self.modality = modality

    def prepare(
        self,
        clip_type: ClipTypeLike,
        prompt: str,
        explicit_model_id: Optional[str] = None,
        slots: Sequence[ReferenceSlot] = (),
        seed: Optional[int] = None,
        duration_seconds: Optional[float] = None,
    ) -> GenerationRequest:
        descriptor = self.router.resolve(clip_type)
        slots = tuple(slots)

        prompt = (prompt or "").strip()
        if not prompt:
            raise InvalidPrompt("Prompt must not be empty")
        if len(prompt) > descriptor.prompt_max_length:
            raise InvalidPrompt(
                f"Prompt is {len(prompt)} characters; {descriptor.clip_type.value} allows {descriptor.prompt_max_length}"
            )

        if duration_seconds is None:
            duration = descriptor.default_duration_seconds
        else:
            options = self.router.duration_options(descriptor.clip_type)
            if duration_seconds not in options:
                raise InvalidDuration(
                    f"Duration {duration_seconds}s not offered for {descriptor.clip_type.value}; choose from {list(options)}"
                )
            duration = duration_seconds

        self.timeline.validate(slots)
        missing = self.timeline.missing_anchors(slots, self.router.reference_requirement(descriptor.clip_type))
        if missing:
            raise MissingRequiredReference(descriptor.clip_type.value, missing)

        model = self.resolver.resolve({descriptor.task}, self.modality, explicit_model_id)

        return GenerationRequest(
            clip_type=descriptor.clip_type,
            task=descriptor.task,
            prompt=prompt,
            model=model,
            reference_slots=tuple(self.timeline.active_slots(slots)),
            duration_seconds=duration,
            seed=seed,
        )

    async def submit(
        self,
        clip_type: ClipTypeLike,
        prompt: str,
        explicit_model_id: Optional[str] = None,
        slots: Sequence[ReferenceSlot] = (),
        seed: Optional[int] = None,
        duration_seconds: Optional[float] = None,
    ) -> GenerationJob:
        request = self.prepare(
            clip_type,
            prompt,
            explicit_model_id=explicit_model_id,
            slots=slots,
            seed=seed,
            duration_seconds=duration_seconds,
        )
        job_id, result_url = await self._submit_once(request)

        job = GenerationJob(id=job_id, status=JobStatus.QUEUED, request=request, result_url_hint=result_url)
        with log_context(job_id=job.id, clip_type=request.clip_type.value):
            logger.info(
                f"Submitted {request.task} job to {request.model.provider_id}/{request.model.id} "
                f"with {len(request.reference_slots)} reference(s)"
            )
        if self.job_store is not None:
            try:
                self.job_store.record_job(job)
            except Exception as exc:
                logger.warning(f"Failed to record job {job.id}: {exc}")
        return job

    async def _submit_once(self, request: GenerationRequest) -> Tuple[str, Optional[str]]:
        with log_context(clip_type=request.clip_type.value):
            try:
                raw = await self.provider.submit_generation(request)
            except Exception as exc:
                logger.warning(f"Provider rejected submission: {exc}")
                raise SubmissionFailed(f"Submission to {request.model.id} failed: {exc}", raw=str(exc)) from exc
            try:
                response = parse_submit_response(raw)
            except ValidationError as exc:
                raise SubmissionFailed(f"Provider returned no job id: {raw!r}") from exc
        if not response.job_id:
            raise SubmissionFailed(f"Provider returned an empty job id: {raw!r}")
        return response.job_id, response.result_url
