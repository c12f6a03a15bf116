import asyncio

import pytest

from storyclip.core.models import Modality, ModelDescriptor


class FakeProvider:
    """Scripted provider: submit returns job ids, status checks pop from a queue."""

    def __init__(self, statuses=None, job_id="job_1", submit_error=None):
        self.statuses = list(statuses or [])
        self.job_id = job_id
        self.submit_error = submit_error
        self.submitted = []
        self.status_calls = 0

    async def submit_generation(self, request):
        self.submitted.append(request)
        if self.submit_error is not None:
            raise self.submit_error
        return {"job_id": self.job_id}

    async def get_job_status(self, job_id):
        self.status_calls += 1
        if not self.statuses:
            return {"status": "processing"}
        item = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        if isinstance(item, Exception):
            raise item
        return item


class FakeSigner:
    def __init__(self, fail=False, delay=0.0):
        self.fail = fail
        self.delay = delay
        self.calls = []

    async def create_signed_url(self, bucket, path, ttl_seconds):
        self.calls.append((bucket, path, ttl_seconds))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise RuntimeError("storage unavailable")
        return f"https://cdn.example.com/{bucket}/{path}?token={len(self.calls)}"


class FakeClock:
    def __init__(self, now=1_000_000.0):
        self.now = now

    def __call__(self):
        return self.now


def video_model(model_id, tasks, is_default=False, priority=0, **kwargs):
    return ModelDescriptor(
        id=model_id,
        modality=Modality.VIDEO,
        tasks=frozenset(tasks),
        provider_id="wavespeed",
        is_default=is_default,
        priority=priority,
        **kwargs,
    )


@pytest.fixture
def fake_provider_cls():
    return FakeProvider


@pytest.fixture
def fake_signer_cls():
    return FakeSigner


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_model():
    return video_model


@pytest.fixture
def registry():
    return (
        video_model("wan-t2v", {"t2v"}, is_default=True, priority=80),
        video_model("wan-i2v", {"i2v", "multi"}, is_default=True, priority=80),
        video_model("seedance", {"i2v", "multi", "t2v"}, priority=70),
        video_model("kling-keyframe", {"keyframe", "i2v"}, is_default=True, priority=60),
        video_model("wan-extend", {"extend"}, priority=50),
    )
