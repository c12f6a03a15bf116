from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional, Tuple

from .errors import ErrorKind


class ClipType(Enum):
    ESTABLISHING = "establishing"
    DIALOGUE = "dialogue"
    ACTION = "action"
    REACTION = "reaction"
    TRANSITION = "transition"
    CLOSING = "closing"


class Modality(Enum):
    IMAGE = "image"
    VIDEO = "video"
    CHAT = "chat"


class JobStatus(Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


@dataclass(frozen=True)
class ClipTypeDescriptor:
    clip_type: ClipType
    task: str
    default_duration_seconds: float
    requires_start_reference: bool = False
    requires_end_reference: bool = False
    label: str = ""
    description: str = ""
    duration_options: Tuple[float, ...] = ()
    prompt_max_length: int = 500
    generation_seconds_per_second: float = 30.0


@dataclass(frozen=True)
class ReferenceSlot:
    url: Optional[str] = None
    is_video: bool = False
    frame_num: int = 0
    strength: float = 1.0

    @property
    def is_active(self) -> bool:
        return bool(self.url)

    def to_payload(self) -> Dict[str, Any]:
        key = "video_url" if self.is_video else "image_url"
        return {key: self.url, "start_frame_num": self.frame_num, "strength": self.strength}


@dataclass(frozen=True)
class ModelDescriptor:
    id: str
    modality: Modality
    tasks: FrozenSet[str]
    provider_id: str
    family_tag: Optional[str] = None
    is_default: bool = False
    priority: float = 0
    display_name: str = ""
    is_active: bool = True
    endpoint_path: Optional[str] = None
    input_defaults: Dict[str, Any] = field(default_factory=dict, hash=False, compare=False)

    @property
    def route(self) -> str:
        return self.endpoint_path or self.id


@dataclass(frozen=True)
class GenerationRequest:
    clip_type: ClipType
    task: str
    prompt: str
    model: ModelDescriptor
    reference_slots: Tuple[ReferenceSlot, ...]
    duration_seconds: float
    seed: Optional[int] = None

    def to_payload(self) -> Dict[str, Any]:
        """Provider input: model defaults first, then request fields and references."""
        payload: Dict[str, Any] = dict(self.model.input_defaults)
        payload.update(
            {
                "prompt": self.prompt,
                "duration": self.duration_seconds,
                "clip_type": self.clip_type.value,
                "task": self.task,
            }
        )
        if self.seed is not None:
            payload["seed"] = self.seed
        images = [s.to_payload() for s in self.reference_slots if not s.is_video]
        videos = [s.to_payload() for s in self.reference_slots if s.is_video]
        if images:
            payload["images"] = images
        if videos:
            payload["videos"] = videos
        return payload


@dataclass(frozen=True)
class JobResult:
    asset_url: str
    raw: Dict[str, Any] = field(default_factory=dict, hash=False, compare=False)


@dataclass
class GenerationJob:
    id: str
    status: JobStatus = JobStatus.QUEUED
    progress: int = 10
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    result: Optional[JobResult] = None
    error: Optional[ErrorKind] = None
    error_message: Optional[str] = None
    request: Optional[GenerationRequest] = None
    # Where the provider says the result can be fetched, when it says so at submit time.
    result_url_hint: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


@dataclass
class SignedUrlEntry:
    path: str
    bucket: str
    url: str
    expires_at: float
    refreshing: bool = False
