import asyncio

import pytest

from storyclip.core.clip_types import ClipTypeRouter
from storyclip.core.errors import (
    InvalidDuration,
    InvalidPrompt,
    InvalidTimeline,
    MissingRequiredReference,
    NoEligibleModel,
    SubmissionFailed,
    UnknownClipType,
)
from storyclip.core.models import ClipType, JobStatus, ReferenceSlot
from storyclip.core.orchestrator import GenerationOrchestrator
from storyclip.core.resolver import ModelResolver
from storyclip.core.timeline import TimelineSlotManager

START = ReferenceSlot(url="https://img.example.com/start.png", frame_num=0)
END = ReferenceSlot(url="https://img.example.com/end.png", frame_num=160)


def _orchestrator(provider, registry, job_store=None):
    return GenerationOrchestrator(
        router=ClipTypeRouter(),
        timeline=TimelineSlotManager(),
        resolver=ModelResolver(registry),
        provider=provider,
        job_store=job_store,
    )


def test_dialogue_with_no_references_is_queued(fake_provider_cls, registry):
    provider = fake_provider_cls(job_id="abc123")
    orch = _orchestrator(provider, registry)

    job = asyncio.run(orch.submit("dialogue", "Two friends argue about the map", slots=[]))

    assert job.id == "abc123"
    assert job.status == JobStatus.QUEUED
    assert job.progress == 10
    assert len(provider.submitted) == 1
    request = provider.submitted[0]
    assert request.task == "multi"
    assert request.model.id == "wan-i2v"
    assert request.reference_slots == ()
    assert request.duration_seconds == 5


def test_transition_without_end_anchor_never_reaches_provider(fake_provider_cls, registry):
    provider = fake_provider_cls()
    orch = _orchestrator(provider, registry)

    with pytest.raises(MissingRequiredReference) as exc:
        asyncio.run(orch.submit("transition", "She turns to the window", slots=[START]))

    assert exc.value.missing == ["end (frame 160)"]
    assert provider.submitted == []


def test_transition_with_both_anchors(fake_provider_cls, registry):
    provider = fake_provider_cls()
    orch = _orchestrator(provider, registry)

    placeholder = ReferenceSlot(url=None, frame_num=80)
    asyncio.run(orch.submit(ClipType.TRANSITION, "She turns", slots=[END, placeholder, START], seed=7))

    request = provider.submitted[0]
    assert request.model.id == "kling-keyframe"
    assert [s.frame_num for s in request.reference_slots] == [0, 160]
    payload = request.to_payload()
    assert payload["seed"] == 7
    assert payload["images"][0] == {"image_url": START.url, "start_frame_num": 0, "strength": 1.0}


def test_authoring_errors_block_submission(fake_provider_cls, registry):
    provider = fake_provider_cls()
    orch = _orchestrator(provider, registry)

    with pytest.raises(UnknownClipType):
        orch.prepare("montage", "x")
    with pytest.raises(InvalidPrompt):
        orch.prepare("establishing", "   ")
    with pytest.raises(InvalidPrompt):
        orch.prepare("reaction", "x" * 301, slots=[START])
    with pytest.raises(InvalidDuration):
        orch.prepare("reaction", "gasps", slots=[START], duration_seconds=10)
    with pytest.raises(InvalidTimeline):
        orch.prepare("action", "runs", slots=[ReferenceSlot(url=START.url, frame_num=7)])
    assert provider.submitted == []


def test_no_eligible_model(fake_provider_cls, make_model):
    provider = fake_provider_cls()
    orch = _orchestrator(provider, [make_model("t2v-only", {"t2v"})])
    with pytest.raises(NoEligibleModel):
        asyncio.run(orch.submit("closing", "fade out", slots=[START]))
    assert provider.submitted == []


def test_explicit_model_and_duration(fake_provider_cls, registry):
    orch = _orchestrator(fake_provider_cls(), registry)
    request = orch.prepare("action", "He jumps", explicit_model_id="seedance", slots=[START], duration_seconds=7)
    assert request.model.id == "seedance"
    assert request.duration_seconds == 7


def test_provider_error_becomes_submission_failed(fake_provider_cls, registry):
    provider = fake_provider_cls(submit_error=RuntimeError("Submit failed: 429 rate limit"))
    orch = _orchestrator(provider, registry)

    with pytest.raises(SubmissionFailed) as exc:
        asyncio.run(orch.submit("establishing", "A city at dawn"))

    assert "busy" in exc.value.user_message
    assert len(provider.submitted) == 1


def test_missing_job_id_is_submission_failed(fake_provider_cls, registry):
    class NoId(fake_provider_cls):
        async def submit_generation(self, request):
            self.submitted.append(request)
            return {"status": "queued"}

    provider = NoId()
    with pytest.raises(SubmissionFailed):
        asyncio.run(_orchestrator(provider, registry).submit("establishing", "A city at dawn"))
    assert len(provider.submitted) == 1


def test_submitted_job_is_recorded(fake_provider_cls, registry):
    recorded = []

    class Store:
        def record_job(self, job):
            recorded.append(job.id)

    orch = _orchestrator(fake_provider_cls(job_id="j9"), registry, job_store=Store())
    asyncio.run(orch.submit("establishing", "A city at dawn"))
    assert recorded == ["j9"]


def test_submit_keeps_result_url_hint(fake_provider_cls, registry):
    class WithResultUrl(fake_provider_cls):
        async def submit_generation(self, request):
            self.submitted.append(request)
            return {"job_id": "j10", "result_url": "https://api.example.com/predictions/j10/result"}

    job = asyncio.run(_orchestrator(WithResultUrl(), registry).submit("establishing", "A city at dawn"))
    assert job.id == "j10"
    assert job.result_url_hint == "https://api.example.com/predictions/j10/result"

    plain = asyncio.run(_orchestrator(fake_provider_cls(job_id="j11"), registry).submit("establishing", "A city at dawn"))
    assert plain.result_url_hint is None
