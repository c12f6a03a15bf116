"""
Error taxonomy for clip generation.

Authoring errors are raised synchronously at submit time and block the
submission. Generation errors arrive later through the job poller and carry
a user-facing message picked from ERROR_MESSAGES.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import List, Optional, Sequence, Tuple


class ErrorKind(Enum):
    UNKNOWN_CLIP_TYPE = "unknown_clip_type"
    MISSING_REQUIRED_REFERENCE = "missing_required_reference"
    INVALID_TIMELINE = "invalid_timeline"
    INVALID_PROMPT = "invalid_prompt"
    INVALID_DURATION = "invalid_duration"
    NO_ELIGIBLE_MODEL = "no_eligible_model"
    SUBMISSION_FAILED = "submission_failed"
    RATE_LIMITED = "rate_limited"
    CONTENT_POLICY_VIOLATION = "content_policy_violation"
    TIMEOUT = "timeout"
    PROVIDER_FAILURE = "provider_failure"
    SIGNING_FAILED = "signing_failed"


GENERIC_FAILURE_MESSAGE = "Generation failed. Please try again or switch models."

# Substring (lower-case) -> (kind, user-facing message). First match wins.
# A needle never matches inside a longer number, so "429" ignores "job 84291".
ERROR_MESSAGES: Sequence[Tuple[str, ErrorKind, str]] = (
    ("rate limit", ErrorKind.RATE_LIMITED, "The provider is busy right now. Please wait a moment and try again."),
    ("too many requests", ErrorKind.RATE_LIMITED, "The provider is busy right now. Please wait a moment and try again."),
    ("429", ErrorKind.RATE_LIMITED, "The provider is busy right now. Please wait a moment and try again."),
    ("quota", ErrorKind.RATE_LIMITED, "Your generation quota is used up for now. Please try again later."),
    ("content policy", ErrorKind.CONTENT_POLICY_VIOLATION, "This request was blocked by the provider's content policy. Adjust the prompt or references."),
    ("nsfw", ErrorKind.CONTENT_POLICY_VIOLATION, "This request was blocked by the provider's content policy. Adjust the prompt or references."),
    ("safety", ErrorKind.CONTENT_POLICY_VIOLATION, "This request was flagged by a safety filter. Adjust the prompt or references."),
    ("moderation", ErrorKind.CONTENT_POLICY_VIOLATION, "This request was flagged by moderation. Adjust the prompt or references."),
    ("flagged", ErrorKind.CONTENT_POLICY_VIOLATION, "This request was flagged by moderation. Adjust the prompt or references."),
    ("timed out", ErrorKind.TIMEOUT, "Generation is taking too long. Please try again or switch models."),
    ("timeout", ErrorKind.TIMEOUT, "Generation is taking too long. Please try again or switch models."),
)


def classify_error(raw: Optional[str]) -> Tuple[ErrorKind, str]:
    text = (raw or "").lower()
    for needle, kind, message in ERROR_MESSAGES:
        if re.search(rf"(?<!\d){re.escape(needle)}(?!\d)", text):
            return kind, message
    return ErrorKind.PROVIDER_FAILURE, GENERIC_FAILURE_MESSAGE


def user_message_for(raw: Optional[str]) -> str:
    return classify_error(raw)[1]


class StoryClipError(Exception):
    kind: ErrorKind = ErrorKind.PROVIDER_FAILURE


class AuthoringError(StoryClipError):
    """Programming/authoring contract violation. Never retried."""


class UnknownClipType(AuthoringError):
    kind = ErrorKind.UNKNOWN_CLIP_TYPE

    def __init__(self, clip_type):
        self.clip_type = clip_type
        super().__init__(f"Unknown clip type: {clip_type!r}")


class MissingRequiredReference(AuthoringError):
    kind = ErrorKind.MISSING_REQUIRED_REFERENCE

    def __init__(self, clip_type, missing: List[str]):
        self.clip_type = clip_type
        self.missing = list(missing)
        super().__init__(f"Clip type {clip_type!r} requires a reference at: {', '.join(self.missing)}")


class InvalidTimeline(AuthoringError):
    kind = ErrorKind.INVALID_TIMELINE

    def __init__(self, problems: List[str]):
        self.problems = list(problems)
        super().__init__("Invalid timeline: " + "; ".join(self.problems))


class InvalidPrompt(AuthoringError):
    kind = ErrorKind.INVALID_PROMPT


class InvalidDuration(AuthoringError):
    kind = ErrorKind.INVALID_DURATION


class NoEligibleModel(AuthoringError):
    kind = ErrorKind.NO_ELIGIBLE_MODEL

    def __init__(self, required_tasks, modality):
        self.required_tasks = frozenset(required_tasks)
        self.modality = modality
        tasks = ", ".join(sorted(self.required_tasks)) or "<any>"
        super().__init__(f"No eligible {getattr(modality, 'value', modality)} model for tasks: {tasks}")


class SubmissionFailed(StoryClipError):
    kind = ErrorKind.SUBMISSION_FAILED

    def __init__(self, message: str, raw: Optional[str] = None):
        self.raw = raw if raw is not None else message
        self.cause_kind, self.user_message = classify_error(self.raw)
        super().__init__(message)


class GenerationError(StoryClipError):
    """Runtime failure reported for a submitted job."""

    def __init__(self, raw: Optional[str] = None, user_message: Optional[str] = None):
        self.raw = raw or ""
        self.user_message = user_message or classify_error(self.raw)[1]
        super().__init__(self.raw or self.user_message)


class RateLimited(GenerationError):
    kind = ErrorKind.RATE_LIMITED


class ContentPolicyViolation(GenerationError):
    kind = ErrorKind.CONTENT_POLICY_VIOLATION


class GenerationTimeout(GenerationError, TimeoutError):
    kind = ErrorKind.TIMEOUT


class ProviderFailure(GenerationError):
    kind = ErrorKind.PROVIDER_FAILURE


class SigningFailed(StoryClipError):
    kind = ErrorKind.SIGNING_FAILED

    def __init__(self, bucket: str, path: str, reason: str = ""):
        self.bucket = bucket
        self.path = path
        super().__init__(f"Failed to sign {bucket}/{path}" + (f": {reason}" if reason else ""))


_GENERATION_ERRORS = {
    ErrorKind.RATE_LIMITED: RateLimited,
    ErrorKind.CONTENT_POLICY_VIOLATION: ContentPolicyViolation,
    ErrorKind.TIMEOUT: GenerationTimeout,
    ErrorKind.PROVIDER_FAILURE: ProviderFailure,
}


def error_from_raw(raw: Optional[str]) -> GenerationError:
    kind, message = classify_error(raw)
    return _GENERATION_ERRORS[kind](raw, message)
