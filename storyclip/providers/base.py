"""
Collaborator contracts.

The core only talks to generation providers and storage through these
narrow async interfaces; concrete adapters live next to this module.
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Protocol, Union

from pydantic import BaseModel, Field

from storyclip.core.models import GenerationRequest


class SubmitResponse(BaseModel):
    job_id: str = Field(alias="jobId")
    result_url: Optional[str] = None

    class Config:
        extra = "allow"
        populate_by_name = True


class JobStatusReport(BaseModel):
    status: str
    progress: Optional[float] = None
    result_url: Optional[str] = Field(default=None, alias="resultUrl")
    error_details: Optional[str] = Field(default=None, alias="errorDetails")

    class Config:
        extra = "allow"
        populate_by_name = True


class GenerationProvider(Protocol):
    async def submit_generation(self, request: GenerationRequest) -> Union[SubmitResponse, Dict[str, Any]]:
        ...

    async def get_job_status(self, job_id: str) -> Union[JobStatusReport, Dict[str, Any]]:
        ...


class StorageSigner(Protocol):
    async def create_signed_url(self, bucket: str, path: str, ttl_seconds: int) -> str:
        ...


def parse_submit_response(raw: Union[SubmitResponse, Dict[str, Any]]) -> SubmitResponse:
    if isinstance(raw, SubmitResponse):
        return raw
    return SubmitResponse.model_validate(raw)


def parse_status_report(raw: Union[JobStatusReport, Dict[str, Any]]) -> JobStatusReport:
    if isinstance(raw, JobStatusReport):
        return raw
    return JobStatusReport.model_validate(raw)
