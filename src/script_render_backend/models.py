from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class JobState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class ScriptType(str, Enum):
    SOCIAL_MEDIA = "social_media"
    INTERNAL = "internal"
    TV_COMMERCIAL = "tv_commercial"


class RenderRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    project_id: str = Field(min_length=1)
    version_id: str = Field(min_length=1)
    requesting_user_id: str = Field(min_length=1)


class ArtifactRef(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str
    size_bytes: int = Field(ge=0)
    mime_type: str = "application/pdf"


class Job(BaseModel):
    id: str
    payload: RenderRequest
    state: JobState = JobState.PENDING
    progress: int = Field(default=0, ge=0, le=100)
    attempt_count: int = Field(default=0, ge=0)
    result_ref: Optional[ArtifactRef] = None
    failure_reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @model_validator(mode="after")
    def _check_terminal_fields(self) -> "Job":
        if (self.result_ref is not None) != (self.state == JobState.COMPLETED):
            raise ValueError("result_ref must be set exactly when the job is completed")
        if (self.failure_reason is not None) != (self.state == JobState.FAILED):
            raise ValueError("failure_reason must be set exactly when the job has failed")
        return self

    @property
    def is_terminal(self) -> bool:
        return self.state in (JobState.COMPLETED, JobState.FAILED)

    def evolve(self, **changes: Any) -> "Job":
        """Return a validated copy of the job with ``changes`` applied."""
        data = self.model_dump()
        data.update(changes)
        return Job.model_validate(data)


class RenderInput(BaseModel):
    project_title: str
    script_type: str
    client_name: str
    client_logo_ref: Optional[str] = None
    owner_name: str
    owner_logo_ref: Optional[str] = None
    version_number: int
    content: str
    generated_at: datetime


class TimedBlock(BaseModel):
    label: Optional[str] = None
    start_seconds: Optional[int] = None
    end_seconds: Optional[int] = None
    body_lines: List[str] = Field(default_factory=list)


class CoverSection(BaseModel):
    title: str
    script_type: str
    client_name: str
    client_logo_ref: Optional[str] = None
    owner_name: str
    owner_logo_ref: Optional[str] = None
    version_number: int
    generated_on: str
    generated_at: datetime


class Layout(BaseModel):
    cover: CoverSection
    blocks: List[TimedBlock]

    def visible_text(self) -> str:
        parts: List[str] = []
        for block in self.blocks:
            if block.label:
                parts.append(block.label)
            parts.extend(block.body_lines)
        return "\n".join(parts)


# Collaborator records


class Owner(BaseModel):
    id: str
    name: str
    email: Optional[str] = None
    logo_url: Optional[str] = None


class Client(BaseModel):
    id: str
    name: str
    logo_url: Optional[str] = None


class Project(BaseModel):
    id: str
    title: str
    script_type: ScriptType = ScriptType.SOCIAL_MEDIA
    client_id: Optional[str] = None
    owner: Optional[Owner] = None


class ScriptVersion(BaseModel):
    id: str
    project_id: str
    version_number: int
    content: str
    generated_pdf_url: Optional[str] = None


# HTTP shapes


class ApiModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class RenderRequestBody(ApiModel):
    project_id: str = Field(alias="projectId", min_length=1)
    version_id: str = Field(alias="versionId", min_length=1)


class JobReceipt(ApiModel):
    status: str = "pending"
    job_id: str = Field(alias="jobId")


class JobStatusResponse(ApiModel):
    state: JobState
    progress: int
    result_ref: Optional[ArtifactRef] = Field(default=None, alias="resultRef")
    failure_reason: Optional[str] = Field(default=None, alias="failureReason")


class ErrorResponse(BaseModel):
    code: str
    message: str
    details: Optional[dict] = None


class JobNotification(ApiModel):
    job_id: str = Field(alias="jobId")
    version_id: str = Field(alias="versionId")
    outcome: JobState
    result_ref: Optional[ArtifactRef] = Field(default=None, alias="resultRef")
    download_url: Optional[str] = Field(default=None, alias="downloadUrl")
    message: Optional[str] = None
