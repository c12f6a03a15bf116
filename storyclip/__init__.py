"""
Story clip generation.

Authoring snapshot in, one provider job out:
- clip types decide task, duration and required anchors
- the timeline validates reference slots
- the resolver picks a model, the poller tracks the job
- signed URLs for results come from a shared cache
"""

from .core.errors import AuthoringError, GenerationError, StoryClipError
from .core.models import ClipType, GenerationJob, JobResult, JobStatus, ReferenceSlot
from .studio import ClipStudio

__all__ = [
    "AuthoringError",
    "ClipStudio",
    "ClipType",
    "GenerationError",
    "GenerationJob",
    "JobResult",
    "JobStatus",
    "ReferenceSlot",
    "StoryClipError",
]
