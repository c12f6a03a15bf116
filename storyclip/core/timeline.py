from __future__ import annotations

from dataclasses import replace
from typing import List, Sequence

from .errors import InvalidTimeline
from .models import ReferenceSlot

DEFAULT_MAX_FRAME = 160
DEFAULT_FRAME_STEP = 8
DEFAULT_MAX_SLOTS = 10


def auto_space(count: int, max_frame: int = DEFAULT_MAX_FRAME, frame_step: int = DEFAULT_FRAME_STEP) -> List[int]:
    """
    Spread `count` frame positions over [0, max_frame], quantized to frame_step.

    auto_space(1) == [0], auto_space(2) == [0, 160], auto_space(3) == [0, 80, 160].
    """
    if count <= 1:
        return [0]
    step = max_frame // ((count - 1) * frame_step) * frame_step
    return [min(i * step, max_frame) for i in range(count)]


class TimelineSlotManager:
    """Pure transforms and checks over lists of reference slots."""

    def __init__(
        self,
        max_frame: int = DEFAULT_MAX_FRAME,
        frame_step: int = DEFAULT_FRAME_STEP,
        max_slots: int = DEFAULT_MAX_SLOTS,
    ):
        if max_frame % frame_step:
            raise ValueError(f"max_frame ({max_frame}) must be a multiple of frame_step ({frame_step})")
        self.max_frame = max_frame
        self.frame_step = frame_step
        self.max_slots = max_slots

    @classmethod
    def from_config(cls, config: dict) -> "TimelineSlotManager":
        return cls(
            max_frame=int(config.get("max_frame", DEFAULT_MAX_FRAME)),
            frame_step=int(config.get("frame_step", DEFAULT_FRAME_STEP)),
            max_slots=int(config.get("max_slots", DEFAULT_MAX_SLOTS)),
        )

    def auto_space(self, count: int) -> List[int]:
        return auto_space(count, max_frame=self.max_frame, frame_step=self.frame_step)

    def problems(self, slots: Sequence[ReferenceSlot]) -> List[str]:
        found: List[str] = []
        if len(slots) > self.max_slots:
            found.append(f"too many slots: {len(slots)} > {self.max_slots}")
        seen = set()
        for idx, slot in enumerate(slots):
            if not isinstance(slot.frame_num, int) or isinstance(slot.frame_num, bool):
                found.append(f"slot {idx}: frame_num must be an integer, got {slot.frame_num!r}")
                continue
            if slot.frame_num % self.frame_step:
                found.append(f"slot {idx}: frame_num {slot.frame_num} is not a multiple of {self.frame_step}")
            if not 0 <= slot.frame_num <= self.max_frame:
                found.append(f"slot {idx}: frame_num {slot.frame_num} outside [0, {self.max_frame}]")
            if not 0.0 <= slot.strength <= 1.0:
                found.append(f"slot {idx}: strength {slot.strength} outside [0, 1]")
            if slot.is_active:
                if slot.frame_num in seen:
                    found.append(f"slot {idx}: duplicate frame_num {slot.frame_num}")
                seen.add(slot.frame_num)
        return found

    def validate(self, slots: Sequence[ReferenceSlot]) -> None:
        found = self.problems(slots)
        if found:
            raise InvalidTimeline(found)

    def is_valid(self, slots: Sequence[ReferenceSlot]) -> bool:
        return not self.problems(slots)

    def active_slots(self, slots: Sequence[ReferenceSlot]) -> List[ReferenceSlot]:
        return sorted((s for s in slots if s.is_active), key=lambda s: s.frame_num)

    def has_start_anchor(self, slots: Sequence[ReferenceSlot]) -> bool:
        return any(s.is_active and s.frame_num == 0 for s in slots)

    def has_end_anchor(self, slots: Sequence[ReferenceSlot]) -> bool:
        return any(s.is_active and s.frame_num == self.max_frame for s in slots)

    def missing_anchors(self, slots: Sequence[ReferenceSlot], requirement: dict) -> List[str]:
        missing = []
        if requirement.get("start") and not self.has_start_anchor(slots):
            missing.append("start (frame 0)")
        if requirement.get("end") and not self.has_end_anchor(slots):
            missing.append(f"end (frame {self.max_frame})")
        return missing

    def respace(self, slots: Sequence[ReferenceSlot]) -> List[ReferenceSlot]:
        """Move active slots onto evenly spaced frames, keeping their order. Placeholders are dropped."""
        active = self.active_slots(slots)
        if not active:
            return []
        positions = self.auto_space(len(active))
        return [replace(slot, frame_num=frame) for slot, frame in zip(active, positions)]

    def place(self, slots: Sequence[ReferenceSlot], slot: ReferenceSlot) -> List[ReferenceSlot]:
        """Return a new list with `slot` at its frame, replacing any slot already there."""
        kept = [s for s in slots if s.frame_num != slot.frame_num]
        updated = kept + [slot]
        self.validate(updated)
        return sorted(updated, key=lambda s: (not s.is_active, s.frame_num))
