"""Enums for ContractFlow - the closed sets of states, actions and roles."""
from enum import Enum


class DocumentType(str, Enum):
    CONTRACT = "CONTRACT"
    PROPOSAL = "PROPOSAL"


class DocumentStatus(str, Enum):
    """Business workflow tag. Orthogonal to approval status."""
    DRAFT = "DRAFT"
    REVIEW = "REVIEW"
    SENT = "SENT"
    SIGNED = "SIGNED"
    PAID = "PAID"


class ApprovalStatus(str, Enum):
    """The approval gate. APPROVED is terminal."""
    DRAFT = "DRAFT"
    REVIEW = "REVIEW"
    APPROVED = "APPROVED"


class GenerationStatus(str, Enum):
    """Lifecycle of the most recent background generation attempt only."""
    IDLE = "IDLE"
    QUEUED = "QUEUED"
    PROCESSING = "PROCESSING"
    FAILED = "FAILED"
    SUCCEEDED = "SUCCEEDED"


class DraftJobStatus(str, Enum):
    QUEUED = "QUEUED"
    PROCESSING = "PROCESSING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


class MembershipRole(str, Enum):
    OWNER = "OWNER"
    ADMIN = "ADMIN"
    MEMBER = "MEMBER"
    VIEWER = "VIEWER"


class AuditAction(str, Enum):
    DOCUMENT_CREATED = "DOCUMENT_CREATED"
    DOCUMENT_SECTIONS_UPDATED = "DOCUMENT_SECTIONS_UPDATED"
    DOCUMENT_APPROVAL_UPDATED = "DOCUMENT_APPROVAL_UPDATED"
    DRAFT_ENQUEUED = "DRAFT_ENQUEUED"
    DRAFT_RETRIED = "DRAFT_RETRIED"
    DRAFT_SUCCEEDED = "DRAFT_SUCCEEDED"
    DRAFT_FAILED = "DRAFT_FAILED"
    NOTIFICATIONS_READ = "NOTIFICATIONS_READ"


class AuditTargetType(str, Enum):
    ORGANIZATION = "ORGANIZATION"
    DOCUMENT = "DOCUMENT"
    DOCUMENT_SECTION = "DOCUMENT_SECTION"
    DRAFT = "DRAFT"
    NOTIFICATION = "NOTIFICATION"


class NotificationType(str, Enum):
    """One type per approval transition kind."""
    DOCUMENT_REVIEW_REQUESTED = "DOCUMENT_REVIEW_REQUESTED"
    DOCUMENT_APPROVED = "DOCUMENT_APPROVED"
    DOCUMENT_SENT_BACK = "DOCUMENT_SENT_BACK"
