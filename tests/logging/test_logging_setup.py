import logging

from storyclip.utils.logging_setup import (
    LOG_BUCKET,
    LOG_CLIP_TYPE,
    LOG_FORMAT,
    LOG_JOB_ID,
    ContextFilter,
    log_context,
)


def _record():
    return logging.LogRecord("test.logger", logging.INFO, __file__, 1, "hello", (), None)


def test_context_filter_defaults():
    record = _record()
    ContextFilter().filter(record)
    assert record.job_id == "-"
    assert record.clip_type == "-"
    assert record.bucket == "-"


def test_context_filter_injects_values():
    job_token = LOG_JOB_ID.set("job_1")
    clip_token = LOG_CLIP_TYPE.set("transition")
    bucket_token = LOG_BUCKET.set("user-library")
    try:
        record = _record()
        ContextFilter().filter(record)
        assert record.job_id == "job_1"
        assert record.clip_type == "transition"
        assert record.bucket == "user-library"
    finally:
        LOG_BUCKET.reset(bucket_token)
        LOG_CLIP_TYPE.reset(clip_token)
        LOG_JOB_ID.reset(job_token)


def test_log_context_sets_and_restores():
    with log_context(job_id="job_2", clip_type="closing"):
        record = _record()
        ContextFilter().filter(record)
        assert record.job_id == "job_2"
        assert record.clip_type == "closing"
        assert record.bucket == "-"
    record = _record()
    ContextFilter().filter(record)
    assert record.job_id == "-"


def test_formatting_uses_expected_fields():
    record = _record()
    ContextFilter().filter(record)
    formatted = logging.Formatter(LOG_FORMAT).format(record)
    assert "test.logger" in formatted
    assert "hello" in formatted
    assert "|" in formatted
