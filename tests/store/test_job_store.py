from storyclip.core.errors import ErrorKind
from storyclip.core.models import (
    ClipType,
    GenerationJob,
    GenerationRequest,
    JobResult,
    JobStatus,
    Modality,
    ModelDescriptor,
    ReferenceSlot,
)
from storyclip.store.jobs import JobStore


def _job(job_id="job_1"):
    model = ModelDescriptor(id="wan-i2v", modality=Modality.VIDEO, tasks=frozenset({"i2v"}), provider_id="wavespeed")
    request = GenerationRequest(
        clip_type=ClipType.REACTION,
        task="i2v",
        prompt="she gasps",
        model=model,
        reference_slots=(ReferenceSlot(url="https://img.example.com/a.png", frame_num=0),),
        duration_seconds=3,
        seed=11,
    )
    return GenerationJob(id=job_id, request=request)


def test_record_and_update_job(tmp_path):
    store = JobStore.open(tmp_path / "jobs.db")
    try:
        job = _job()
        store.record_job(job)
        row = store.get_job("job_1")
        assert row["status"] == "queued"
        assert row["clip_type"] == "reaction"
        assert row["model_id"] == "wan-i2v"
        assert '"start_frame_num":0' in row["references_json"]

        job.status = JobStatus.COMPLETED
        job.progress = 100
        job.result = JobResult(asset_url="https://cdn.example.com/out.mp4")
        assert store.update_job(job)
        row = store.get_job("job_1")
        assert row["status"] == "completed"
        assert row["result_url"] == "https://cdn.example.com/out.mp4"
    finally:
        store.close()


def test_record_is_idempotent_and_failures_are_kept(tmp_path):
    store = JobStore.open(tmp_path / "jobs.db")
    try:
        job = _job()
        store.record_job(job)
        store.record_job(job)
        job.status = JobStatus.FAILED
        job.progress = 0
        job.error = ErrorKind.RATE_LIMITED
        job.error_message = "busy"
        store.update_job(job)
        assert len(store.list_jobs()) == 1
        failed = store.list_jobs(status="failed")
        assert failed[0]["error_kind"] == "rate_limited"
        assert failed[0]["error_message"] == "busy"
    finally:
        store.close()


def test_update_creates_record_for_untracked_job(tmp_path):
    store = JobStore.open(tmp_path / "jobs.db")
    try:
        job = GenerationJob(id="external", status=JobStatus.PROCESSING, progress=50)
        store.update_job(job)
        row = store.get_job("external")
        assert row["status"] == "processing"
        assert row["clip_type"] is None
        assert store.get_job("nope") is None
    finally:
        store.close()
