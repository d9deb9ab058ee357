"""Request/response bodies for the crawler-facing and operator endpoints."""

import uuid

from pydantic import BaseModel, Field

from app.models.subscription import NotifyChannel


class ClaimRequest(BaseModel):
    job_id: uuid.UUID


class TargetOut(BaseModel):
    hashed_dir: str
    canonical_id: str


class ClaimResponse(BaseModel):
    job_id: uuid.UUID
    slice_index: int
    targets: list[TargetOut]
    deadline_ts: int = Field(description="Advisory unix deadline for reporting back")


class ReadingIn(BaseModel):
    hashed_dir: str = Field(min_length=1, max_length=64)
    ts: int = Field(ge=0, description="Unix seconds of the observation")
    kwh: float
    ok: bool = True


class FailureIn(BaseModel):
    hashed_dir: str = Field(min_length=1, max_length=64)
    reason: str = Field(min_length=1)


class IngestRequest(BaseModel):
    job_id: uuid.UUID
    slice_index: int = Field(ge=0)
    readings: list[ReadingIn] = Field(default_factory=list)
    failures: list[FailureIn] = Field(default_factory=list)
    finished: bool = False


class IngestResponse(BaseModel):
    ok: bool = True
    job_status: str
    slice_closed: bool
    alerts_sent: int
    alerts_failed: int


class NotifyTestRequest(BaseModel):
    notify_channel: NotifyChannel
    notify_token: str = Field(min_length=1)
