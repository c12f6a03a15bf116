import logging
from pydantic import BaseModel
from typing import Optional, Any

from storyclip.utils.logging_setup import configure_logging

class ToolResponse(BaseModel):
    success: bool
    message: Optional[str] = None
    content: Optional[Any] = None
    output_url: Optional[str] = None
    job_id: Optional[str] = None
    error_kind: Optional[str] = None

    class Config:
        extra = "allow"


def setup_logger(name: str) -> logging.Logger:
    configure_logging()
    return logging.getLogger(name)
