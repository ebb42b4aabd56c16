"""
Operations exposed to the presentation layer.

Each operation follows the same shape: authorize -> validate -> commit the
authoritative change -> best-effort audit -> best-effort side effects.
Side effects run after the commit and never roll it back.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from contractflow.config import Settings
from contractflow.errors import RateLimitedError, ValidationError
from contractflow.models.audit import AuditEvent
from contractflow.models.domain import ApprovalComment, Document, DocumentSection, DraftJob, Notification
from contractflow.models.enums import (
    ApprovalStatus,
    AuditAction,
    AuditTargetType,
    DocumentStatus,
    DocumentType,
    DraftJobStatus,
    GenerationStatus,
)
from contractflow.queue.base import Queue
from contractflow.services.audit import AuditLedger
from contractflow.services.draft_jobs import DraftJobStore
from contractflow.services.notifications import NotificationService
from contractflow.services.pagination import page_meta
from contractflow.services.permissions import APPROVAL_CAPABILITY, Actor, Capability, require_capability
from contractflow.services.rate_limit import RateLimiter
from contractflow.services.state_machine import DocumentStateMachine
from contractflow.worker import DOCUMENT_QUEUE, GENERATE_DRAFT, draft_retry_policy

logger = logging.getLogger(__name__)


@dataclass
class EnqueueResult:
    draft_job: DraftJob
    queue_job_id: str
    document_id: str
    status: str = "queued"


@dataclass
class ApprovalResult:
    document: Document
    previous_status: ApprovalStatus
    changed: bool
    notified: int = 0


class DocumentWorkflow:

    def __init__(self, db: Session, queue: Queue, limiter: RateLimiter, settings: Settings, actor: Actor):
        self.db = db
        self.queue = queue
        self.limiter = limiter
        self.settings = settings
        self.actor = actor
        self.documents = DocumentStateMachine(db)
        self.jobs = DraftJobStore(db, max_manual_retries=settings.max_manual_retries)
        self.audit = AuditLedger(db)
        self.notifications = NotificationService(db)

    # Documents

    def create_document(
        self,
        title: str,
        type: DocumentType = DocumentType.PROPOSAL,
        status: DocumentStatus = DocumentStatus.DRAFT,
        sections: Optional[List[Dict[str, Any]]] = None,
    ) -> Document:
        require_capability(self.actor, Capability.CREATE_DOCUMENT)
        document = Document(
            organization_id=self.actor.organization_id,
            created_by_id=self.actor.user_id,
            title=title,
            type=type,
            status=status,
        )
        self.db.add(document)
        self.db.flush()
        for position, section in enumerate(sections or [], start=1):
            # Incoming order is re-indexed densely from 1
            self.db.add(DocumentSection(
                document_id=document.id,
                title=section["title"],
                content=section.get("content") or "",
                order=position,
            ))
        self.db.commit()
        self.db.refresh(document)

        self.audit.record_best_effort(
            self.actor.organization_id,
            AuditAction.DOCUMENT_CREATED,
            AuditTargetType.DOCUMENT,
            target_id=document.id,
            actor_user_id=self.actor.user_id,
            metadata={"title": document.title, "type": document.type.value},
        )
        return document

    def get_document(self, document_id: str) -> Document:
        require_capability(self.actor, Capability.READ_DOCUMENT)
        return self.documents.get_document(document_id, self.actor.organization_id)

    def list_documents(
        self,
        status: Optional[DocumentStatus] = None,
        type: Optional[DocumentType] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> Tuple[List[Document], Dict[str, int]]:
        require_capability(self.actor, Capability.READ_DOCUMENT)
        documents, total = self.documents.list_documents(
            self.actor.organization_id, status, type, page, page_size
        )
        return documents, page_meta(page, page_size, total)

    def replace_sections(self, document_id: str, sections: List[Dict[str, Any]]) -> List[DocumentSection]:
        require_capability(self.actor, Capability.UPDATE_DOCUMENT)
        if not sections:
            raise ValidationError("At least one section is required.")
        document = self.documents.get_document(document_id, self.actor.organization_id)

        replaced = self.documents.replace_sections(document, sections)

        self.audit.record_best_effort(
            self.actor.organization_id,
            AuditAction.DOCUMENT_SECTIONS_UPDATED,
            AuditTargetType.DOCUMENT_SECTION,
            target_id=document.id,
            actor_user_id=self.actor.user_id,
            metadata={"count": len(replaced)},
        )
        return replaced

    def list_approval_comments(self, document_id: str) -> List[ApprovalComment]:
        return list(self.get_document(document_id).approval_comments)

    # Draft generation

    def _admit(self) -> None:
        result = self.limiter.allow(
            f"generate-draft:{self.actor.user_id}",
            self.settings.rate_limit_generate_draft_max,
            self.settings.rate_limit_generate_draft_window_ms,
        )
        if not result.ok:
            raise RateLimitedError("Too many draft requests. Please try again later.", result)

    def _publish(self, draft_job_id: str, document_id: str, payload: Dict[str, Any]) -> str:
        """
        Publish a generateDraft message for a job already marked QUEUED.

        When the broker rejects the publish no worker will ever see the job,
        so the job and the document are moved to FAILED, where a manual retry
        can pick them up, and the error propagates.
        """
        try:
            return self.queue.enqueue(
                DOCUMENT_QUEUE, payload, draft_retry_policy(self.settings), name=GENERATE_DRAFT
            )
        except Exception as e:
            self.db.rollback()
            logger.error("Failed to publish draft job %s: %s", draft_job_id, e)
            self.jobs.mark_failed(draft_job_id, f"ENQUEUE_FAILED: {e}")
            self.documents.set_generation_status(document_id, self.actor.organization_id, GenerationStatus.FAILED)
            raise

    def enqueue_draft(self, document_id: str) -> EnqueueResult:
        require_capability(self.actor, Capability.GENERATE_DRAFT)
        self._admit()
        org_id = self.actor.organization_id
        self.documents.get_document(document_id, org_id)

        draft_job = self.jobs.create(org_id, document_id)
        # Written before publishing so a fast worker never sees its PROCESSING overwritten
        self.documents.set_generation_status(document_id, org_id, GenerationStatus.QUEUED)
        queue_job_id = self._publish(draft_job.id, document_id, {
            "document_id": document_id,
            "organization_id": org_id,
            "draft_job_id": draft_job.id,
            "actor_user_id": self.actor.user_id,
        })

        self.audit.record_best_effort(
            org_id,
            AuditAction.DRAFT_ENQUEUED,
            AuditTargetType.DRAFT,
            target_id=draft_job.id,
            actor_user_id=self.actor.user_id,
            metadata={"job_id": draft_job.id, "queue_job_id": queue_job_id, "document_id": document_id},
        )
        logger.info("Draft enqueued (document=%s, draft_job=%s)", document_id, draft_job.id)
        return EnqueueResult(draft_job=draft_job, queue_job_id=queue_job_id, document_id=document_id)

    def retry_draft_job(self, job_id: str) -> EnqueueResult:
        require_capability(self.actor, Capability.MANAGE_DRAFT_JOBS)
        self._admit()
        org_id = self.actor.organization_id

        result = self.jobs.retry(job_id, org_id, actor_user_id=self.actor.user_id)
        self.documents.set_generation_status(result.job.document_id, org_id, GenerationStatus.QUEUED)
        queue_job_id = self._publish(result.job.id, result.job.document_id, result.payload)

        self.audit.record_best_effort(
            org_id,
            AuditAction.DRAFT_RETRIED,
            AuditTargetType.DRAFT,
            target_id=result.job.id,
            actor_user_id=self.actor.user_id,
            metadata={
                "job_id": result.job.id,
                "queue_job_id": queue_job_id,
                "attempts": result.job.attempts,
            },
        )
        logger.info("Draft job %s retried (attempts=%d)", result.job.id, result.job.attempts)
        return EnqueueResult(draft_job=result.job, queue_job_id=queue_job_id,
                             document_id=result.job.document_id)

    def list_draft_jobs(
        self,
        document_id: Optional[str] = None,
        status: Optional[DraftJobStatus] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> Tuple[List[DraftJob], Dict[str, int]]:
        require_capability(self.actor, Capability.READ_DOCUMENT)
        jobs, total = self.jobs.list(self.actor.organization_id, document_id, status, page, page_size)
        return jobs, page_meta(page, page_size, total)

    # Approval

    def set_approval(self, document_id: str, status: ApprovalStatus, note: Optional[str] = None) -> ApprovalResult:
        require_capability(self.actor, APPROVAL_CAPABILITY[status])
        document = self.documents.get_document(document_id, self.actor.organization_id)

        previous, changed = self.documents.set_approval(
            document, status, actor_user_id=self.actor.user_id, note=note
        )
        result = ApprovalResult(document=document, previous_status=previous, changed=changed)
        if not changed:
            return result

        cleaned_note = (note or "").strip() or None
        self.audit.record_best_effort(
            self.actor.organization_id,
            AuditAction.DOCUMENT_APPROVAL_UPDATED,
            AuditTargetType.DOCUMENT,
            target_id=document.id,
            actor_user_id=self.actor.user_id,
            metadata={
                "previous_status": previous.value,
                "approval_status": status.value,
                "note": cleaned_note,
            },
        )

        try:
            result.notified = self.notifications.notify_approval(
                self.actor.organization_id, self.actor.user_id, document.id, document.title, status
            )
        except Exception as e:
            self.db.rollback()
            logger.warning("Approval notifications failed (document=%s): %s", document.id, e)
        return result

    # Audit

    def list_audit_events(
        self,
        action: Optional[AuditAction] = None,
        target_type: Optional[AuditTargetType] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> Tuple[List[AuditEvent], Dict[str, int]]:
        require_capability(self.actor, Capability.READ_AUDIT)
        events, total = self.audit.list(self.actor.organization_id, action, target_type, page, page_size)
        return events, page_meta(page, page_size, total)

    # Notifications

    def list_notifications(
        self, unread_only: bool = False, page: int = 1, page_size: int = 10
    ) -> Tuple[List[Notification], Dict[str, int]]:
        items, counts = self.notifications.list(
            self.actor.user_id, self.actor.organization_id, unread_only, page, page_size
        )
        meta = page_meta(page, page_size, counts["total"])
        meta["unread_count"] = counts["unread_count"]
        return items, meta

    def mark_notification_read(self, notification_id: str) -> None:
        self.notifications.mark_read(notification_id, self.actor.user_id)
        self.audit.record_best_effort(
            self.actor.organization_id,
            AuditAction.NOTIFICATIONS_READ,
            AuditTargetType.NOTIFICATION,
            target_id=notification_id,
            actor_user_id=self.actor.user_id,
            metadata={"count": 1},
        )

    def mark_all_notifications_read(self) -> int:
        count = self.notifications.mark_all_read(self.actor.user_id, self.actor.organization_id)
        if count:
            self.audit.record_best_effort(
                self.actor.organization_id,
                AuditAction.NOTIFICATIONS_READ,
                AuditTargetType.NOTIFICATION,
                actor_user_id=self.actor.user_id,
                metadata={"count": count},
            )
        return count
