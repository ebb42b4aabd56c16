"""Domain models - documents, their sections, draft jobs, comments and notifications."""
import uuid
from datetime import datetime

from sqlalchemy import Column, String, Integer, Text, DateTime, ForeignKey, Enum as SQLEnum, JSON
from sqlalchemy.orm import relationship

from contractflow.database import Base
from contractflow.models.enums import (
    ApprovalStatus,
    DocumentStatus,
    DocumentType,
    DraftJobStatus,
    GenerationStatus,
    MembershipRole,
    NotificationType,
)


def _new_id() -> str:
    return str(uuid.uuid4())


class Organization(Base):
    """Tenant. Managed outside this service; read here to resolve members."""
    __tablename__ = "organizations"

    id = Column(String(36), primary_key=True, default=_new_id)
    name = Column(String, nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    memberships = relationship("Membership", back_populates="organization", cascade="all, delete-orphan")


class Membership(Base):
    __tablename__ = "memberships"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    organization_id = Column(String(36), ForeignKey("organizations.id"), nullable=False, index=True)
    user_id = Column(String, nullable=False, index=True)
    role = Column(SQLEnum(MembershipRole), nullable=False, default=MembershipRole.MEMBER)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    organization = relationship("Organization", back_populates="memberships")


class Document(Base):
    """
    A contract or proposal owned by one organization.

    Invariants:
    - approval_status and generation_status are independent state fields
    - generation_status reflects only the most recent generation attempt
    - version only grows, by exactly one per successful generation
    """
    __tablename__ = "documents"

    id = Column(String(36), primary_key=True, default=_new_id)
    organization_id = Column(String(36), ForeignKey("organizations.id"), nullable=False, index=True)
    created_by_id = Column(String, nullable=True)
    title = Column(String, nullable=False)
    type = Column(SQLEnum(DocumentType), nullable=False, default=DocumentType.PROPOSAL)
    status = Column(SQLEnum(DocumentStatus), nullable=False, default=DocumentStatus.DRAFT)
    approval_status = Column(SQLEnum(ApprovalStatus), nullable=False, default=ApprovalStatus.DRAFT)
    generation_status = Column(SQLEnum(GenerationStatus), nullable=False, default=GenerationStatus.IDLE)
    version = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    sections = relationship(
        "DocumentSection",
        back_populates="document",
        cascade="all, delete-orphan",
        order_by="DocumentSection.order",
    )
    approval_comments = relationship(
        "ApprovalComment",
        back_populates="document",
        cascade="all, delete-orphan",
        order_by=lambda: [ApprovalComment.created_at.desc(), ApprovalComment.id.desc()],
    )
    draft_jobs = relationship("DraftJob", back_populates="document", cascade="all, delete-orphan")


class DocumentSection(Base):
    """`order` is 1-based and dense; treat it as a position, not an identifier."""
    __tablename__ = "document_sections"

    id = Column(String(36), primary_key=True, default=_new_id)
    document_id = Column(String(36), ForeignKey("documents.id"), nullable=False, index=True)
    title = Column(String, nullable=False)
    content = Column(Text, nullable=False, default="")
    order = Column(Integer, nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    document = relationship("Document", back_populates="sections")


class DraftJob(Base):
    """
    One record per generation request, independent of broker bookkeeping.

    Invariants:
    - attempts counts manual retries only
    - A retry reuses this row, so the id stays stable for client polling
    """
    __tablename__ = "draft_jobs"

    id = Column(String(36), primary_key=True, default=_new_id)
    organization_id = Column(String(36), ForeignKey("organizations.id"), nullable=False, index=True)
    document_id = Column(String(36), ForeignKey("documents.id"), nullable=False, index=True)
    status = Column(SQLEnum(DraftJobStatus), nullable=False, default=DraftJobStatus.QUEUED, index=True)
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    document = relationship("Document", back_populates="draft_jobs")


class ApprovalComment(Base):
    """Immutable note written at the moment of an approval transition."""
    __tablename__ = "approval_comments"

    id = Column(String(36), primary_key=True, default=_new_id)
    document_id = Column(String(36), ForeignKey("documents.id"), nullable=False, index=True)
    actor_user_id = Column(String, nullable=True)
    status = Column(SQLEnum(ApprovalStatus), nullable=False)
    note = Column(Text, nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    document = relationship("Document", back_populates="approval_comments")


class Notification(Base):
    """Per-recipient record. Only the recipient may set read_at."""
    __tablename__ = "notifications"

    id = Column(String(36), primary_key=True, default=_new_id)
    organization_id = Column(String(36), ForeignKey("organizations.id"), nullable=False, index=True)
    user_id = Column(String, nullable=False, index=True)
    actor_user_id = Column(String, nullable=True)
    type = Column(SQLEnum(NotificationType), nullable=False)
    metadata_json = Column("metadata", JSON, nullable=False, default=dict)
    read_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
