from typing import Any, Dict, List, Optional, Union

from storyclip.core.errors import (
    AuthoringError,
    GenerationError,
    StoryClipError,
    SubmissionFailed,
)
from storyclip.core.models import ReferenceSlot
from storyclip.studio import ClipStudio
from storyclip.tools.base import ToolResponse, setup_logger

logger = setup_logger(__name__)

ReferenceLike = Union[str, Dict[str, Any]]

_STUDIO: Optional[ClipStudio] = None


def _get_studio() -> ClipStudio:
    """Studio built from config/.env on first use. WAVESPEED_API_KEY must be set."""
    global _STUDIO
    if _STUDIO is None:
        _STUDIO = ClipStudio.from_config()
    return _STUDIO


def build_slots(studio: ClipStudio, references: Optional[List[ReferenceLike]]) -> List[ReferenceSlot]:
    """
    Bare URLs are spread evenly over the timeline; dicts keep their own
    frame_num/strength.
    """
    references = list(references or [])
    if not references:
        return []
    frames = studio.orchestrator.timeline.auto_space(len(references))
    slots = []
    for ref, frame in zip(references, frames):
        if isinstance(ref, str):
            slots.append(ReferenceSlot(url=ref, is_video=_looks_like_video(ref), frame_num=frame))
        else:
            url = ref.get("url") or ref.get("image_url") or ref.get("video_url")
            slots.append(
                ReferenceSlot(
                    url=url,
                    is_video=bool(ref.get("is_video", "video_url" in ref)),
                    frame_num=int(ref.get("frame_num", frame)),
                    strength=float(ref.get("strength", 1.0)),
                )
            )
    return slots


def _looks_like_video(url: str) -> bool:
    return url.split("?", 1)[0].lower().endswith((".mp4", ".mov", ".webm"))


async def generate_clip(
    clip_type: str,
    prompt: str,
    references: Optional[List[ReferenceLike]] = None,
    model_id: str = "",
    duration_seconds: Optional[float] = None,
    seed: Optional[int] = None,
) -> ToolResponse:
    """
    Generates one story clip and waits for the finished video.

    Args:
        clip_type (str): establishing, dialogue, action, reaction, transition or closing.
        prompt (str): What happens in the clip.
        references (list, optional): Reference images/videos. Either URLs, which are
            spaced evenly from the first to the last frame, or dicts with
            url, is_video, frame_num and strength.
        model_id (str, optional): Pin a specific model; falls back to the best match
            if it cannot serve this clip type.
        duration_seconds (float, optional): One of the durations offered for the clip type.
        seed (int, optional): Seed for reproducible output.

    Returns:
        ToolResponse: success, a user-facing message, output_url and job_id on success,
        error_kind on failure.
    """
    try:
        studio = _get_studio()
    except RuntimeError as exc:
        return ToolResponse(success=False, message=str(exc), error_kind="configuration")

    try:
        slots = build_slots(studio, references)
        job = await studio.submit(
            clip_type,
            prompt,
            model_id=model_id or None,
            slots=slots,
            seed=seed,
            duration_seconds=duration_seconds,
        )
    except AuthoringError as exc:
        return ToolResponse(success=False, message=str(exc), error_kind=exc.kind.value)
    except SubmissionFailed as exc:
        return ToolResponse(success=False, message=exc.user_message, error_kind=exc.kind.value)

    try:
        result = await studio.track(job).result()
        output_url = await studio.display_url(result.asset_url)
    except GenerationError as exc:
        return ToolResponse(success=False, message=exc.user_message, job_id=job.id, error_kind=exc.kind.value)
    except StoryClipError as exc:
        logger.warning(f"Job {job.id} finished but could not be displayed: {exc}")
        return ToolResponse(success=False, message=str(exc), job_id=job.id, error_kind=exc.kind.value)

    return ToolResponse(
        success=True,
        message="Clip generated successfully.",
        output_url=output_url or result.asset_url,
        job_id=job.id,
        content=result.raw,
    )
