"""Pydantic schemas for request/response validation."""
from datetime import datetime
from typing import Any, Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from contractflow.models.enums import (
    ApprovalStatus,
    AuditAction,
    AuditTargetType,
    DocumentStatus,
    DocumentType,
    DraftJobStatus,
    GenerationStatus,
    NotificationType,
)

T = TypeVar("T")


# Envelopes
class Envelope(BaseModel, Generic[T]):
    ok: bool = True
    data: T
    meta: Optional[Dict[str, Any]] = None


class ErrorBody(BaseModel):
    code: str
    message: str
    details: Optional[Any] = None


class ErrorEnvelope(BaseModel):
    """Response when an operation is rejected."""
    ok: bool = False
    error: ErrorBody


# Document schemas
class SectionInput(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    content: str = Field("", max_length=5000)
    order: int = Field(..., ge=1)


class DocumentCreate(BaseModel):
    title: str = Field(..., min_length=2, max_length=200)
    type: DocumentType = DocumentType.PROPOSAL
    status: DocumentStatus = DocumentStatus.DRAFT
    sections: List[SectionInput] = []


class SectionsReplace(BaseModel):
    sections: List[SectionInput] = Field(..., min_length=1)


class SectionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    content: str
    order: int


class DocumentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    organization_id: str
    title: str
    type: DocumentType
    status: DocumentStatus
    approval_status: ApprovalStatus
    generation_status: GenerationStatus
    version: int
    sections: List[SectionResponse]
    created_at: datetime
    updated_at: datetime


class ApprovalUpdate(BaseModel):
    status: ApprovalStatus
    note: Optional[str] = Field(None, max_length=500)


class ApprovalCommentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    document_id: str
    actor_user_id: Optional[str]
    status: ApprovalStatus
    note: str
    created_at: datetime


# Draft job schemas
class DraftJobResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    organization_id: str
    document_id: str
    status: DraftJobStatus
    attempts: int
    last_error: Optional[str]
    created_at: datetime
    updated_at: datetime


class EnqueueResponse(BaseModel):
    draft_job: DraftJobResponse
    queue_job_id: str
    document_id: str
    status: str


# Audit schemas
class AuditEventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    organization_id: str
    actor_user_id: Optional[str]
    action: AuditAction
    target_type: AuditTargetType
    target_id: Optional[str]
    metadata: Dict[str, Any] = Field(default_factory=dict, validation_alias="metadata_json")
    created_at: datetime


# Notification schemas
class NotificationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    organization_id: str
    user_id: str
    actor_user_id: Optional[str]
    type: NotificationType
    metadata: Dict[str, Any] = Field(default_factory=dict, validation_alias="metadata_json")
    read_at: Optional[datetime]
    created_at: datetime


class ReadAllResponse(BaseModel):
    count: int
