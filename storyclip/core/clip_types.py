from __future__ import annotations

from typing import Dict, Iterable, Optional, Tuple, Union

from .errors import UnknownClipType
from .models import ClipType, ClipTypeDescriptor

ClipTypeLike = Union[ClipType, str]

DEFAULT_CLIP_TYPES: Tuple[ClipTypeDescriptor, ...] = (
    ClipTypeDescriptor(
        clip_type=ClipType.ESTABLISHING,
        task="t2v",
        default_duration_seconds=5,
        label="Establishing (5s)",
        description="Sets the scene from text alone",
        duration_options=(3, 5, 7),
        prompt_max_length=600,
        generation_seconds_per_second=30,
    ),
    ClipTypeDescriptor(
        clip_type=ClipType.DIALOGUE,
        task="multi",
        default_duration_seconds=5,
        label="Dialogue (5s)",
        description="Character speaking, optional identity references",
        duration_options=(3, 5, 7),
        prompt_max_length=500,
        generation_seconds_per_second=40,
    ),
    ClipTypeDescriptor(
        clip_type=ClipType.ACTION,
        task="multi",
        default_duration_seconds=5,
        requires_start_reference=True,
        label="Action (5s)",
        description="Movement from an anchored start frame",
        duration_options=(3, 5, 7),
        prompt_max_length=400,
        generation_seconds_per_second=40,
    ),
    ClipTypeDescriptor(
        clip_type=ClipType.REACTION,
        task="i2v",
        default_duration_seconds=3,
        requires_start_reference=True,
        label="Reaction (3s)",
        description="Short response shot from a single keyframe",
        duration_options=(3, 5),
        prompt_max_length=300,
        generation_seconds_per_second=30,
    ),
    ClipTypeDescriptor(
        clip_type=ClipType.TRANSITION,
        task="keyframe",
        default_duration_seconds=5,
        requires_start_reference=True,
        requires_end_reference=True,
        label="Transition (5s)",
        description="Start and end pose defined",
        duration_options=(3, 5),
        prompt_max_length=400,
        generation_seconds_per_second=50,
    ),
    ClipTypeDescriptor(
        clip_type=ClipType.CLOSING,
        task="extend",
        default_duration_seconds=10,
        requires_start_reference=True,
        label="Closing (10s)",
        description="Continues from the previous clip",
        duration_options=(5, 10, 15),
        prompt_max_length=300,
        generation_seconds_per_second=20,
    ),
)


def to_clip_type(value: ClipTypeLike) -> ClipType:
    if isinstance(value, ClipType):
        return value
    try:
        return ClipType(str(value).strip().lower())
    except ValueError:
        raise UnknownClipType(value) from None


class ClipTypeRouter:
    """Static lookup from clip type to task, duration and anchor requirements."""

    def __init__(self, descriptors: Iterable[ClipTypeDescriptor] = DEFAULT_CLIP_TYPES):
        table: Dict[ClipType, ClipTypeDescriptor] = {}
        for desc in descriptors:
            if desc.clip_type in table:
                raise ValueError(f"Duplicate descriptor for clip type: {desc.clip_type.value}")
            table[desc.clip_type] = desc
        missing = [ct.value for ct in ClipType if ct not in table]
        if missing:
            raise ValueError(f"Missing descriptors for clip types: {', '.join(missing)}")
        self._table = table

    def resolve(self, clip_type: ClipTypeLike) -> ClipTypeDescriptor:
        ct = to_clip_type(clip_type)
        desc = self._table.get(ct)
        if desc is None:
            raise UnknownClipType(clip_type)
        return desc

    def reference_requirement(self, clip_type: ClipTypeLike) -> Dict[str, bool]:
        desc = self.resolve(clip_type)
        return {"start": desc.requires_start_reference, "end": desc.requires_end_reference}

    def duration_options(self, clip_type: ClipTypeLike) -> Tuple[float, ...]:
        desc = self.resolve(clip_type)
        return desc.duration_options or (desc.default_duration_seconds,)

    def prompt_max_length(self, clip_type: ClipTypeLike) -> int:
        return self.resolve(clip_type).prompt_max_length

    def estimate_generation_time(
        self, clip_type: ClipTypeLike, duration_seconds: Optional[float] = None
    ) -> Tuple[int, int]:
        """Rough (min, max) wall-clock seconds a provider needs for this clip."""
        desc = self.resolve(clip_type)
        duration = desc.default_duration_seconds if duration_seconds is None else duration_seconds
        base = duration * desc.generation_seconds_per_second
        return round(base * 0.7), round(base * 1.5)

    def __iter__(self):
        return iter(self._table.values())

    def recommend_clip_type(
        self,
        is_first_clip: bool,
        previous_clip_type: Optional[ClipTypeLike] = None,
        has_reference_video: bool = False,
    ) -> ClipType:
        """
        Suggest the next clip type for a sequence.

        The first clip establishes the scene; a clip continuing a reference
        video closes it out; after a scene-setting or dialogue clip the story
        moves to action, and action is answered with a reaction. Anything
        else, including no previous clip, gets a closing clip.
        """
        if is_first_clip:
            return ClipType.ESTABLISHING
        if has_reference_video:
            return ClipType.CLOSING
        previous = to_clip_type(previous_clip_type) if previous_clip_type else None
        return _NEXT_CLIP_TYPE.get(previous, ClipType.CLOSING)


_NEXT_CLIP_TYPE: Dict[Optional[ClipType], ClipType] = {
    ClipType.ESTABLISHING: ClipType.ACTION,
    ClipType.DIALOGUE: ClipType.ACTION,
    ClipType.ACTION: ClipType.REACTION,
}
