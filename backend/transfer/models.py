"""Pydantic models for queued send jobs."""

import time
import uuid
from enum import Enum

from pydantic import BaseModel, Field

from adapters.models import SendMeta


class JobKind(str, Enum):
    TEXT = "text"
    FILE = "file"


class JobStatus(str, Enum):
    """queued -> sent | error; both outcomes are terminal."""
    QUEUED = "queued"
    SENT = "sent"
    ERROR = "error"


def new_job_id() -> str:
    return f"job_{int(time.time() * 1000)}_{uuid.uuid4().hex[:6]}"


class Job(BaseModel):
    """One unit of work for the send queue."""
    id: str = Field(default_factory=new_job_id)
    kind: JobKind
    status: JobStatus = JobStatus.QUEUED
    payload: str | None = None  # text jobs
    payload_path: str | None = None  # file jobs
    filename: str | None = None
    size: int | None = None
    meta: SendMeta = Field(default_factory=SendMeta)
    received_at: float = Field(default_factory=time.time)
    finished_at: float | None = None
    error: str | None = None
