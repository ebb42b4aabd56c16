"""
State machine for documents.

Each document carries two orthogonal state fields:
- approval_status: the business gate, moved synchronously by callers
- generation_status: the most recent background attempt, moved by the worker

All transitions of either field MUST go through here.
"""
import logging
from datetime import datetime
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from contractflow.errors import ConflictError, NotFoundError, ValidationError
from contractflow.models.domain import ApprovalComment, Document, DocumentSection
from contractflow.models.enums import ApprovalStatus, DocumentStatus, DocumentType, GenerationStatus
from contractflow.services.generation import DraftContext, GeneratedSection

logger = logging.getLogger(__name__)

MAX_APPROVAL_NOTE_LENGTH = 500

# Role-agnostic: who may *request* a transition is decided above this table
APPROVAL_TRANSITIONS: Dict[ApprovalStatus, FrozenSet[ApprovalStatus]] = {
    ApprovalStatus.DRAFT: frozenset({ApprovalStatus.REVIEW}),
    ApprovalStatus.REVIEW: frozenset({ApprovalStatus.APPROVED, ApprovalStatus.DRAFT}),
    ApprovalStatus.APPROVED: frozenset(),
}


def is_allowed_transition(current: ApprovalStatus, requested: ApprovalStatus) -> bool:
    """Self transitions count as allowed; they are no-ops."""
    return current == requested or requested in APPROVAL_TRANSITIONS[current]


class DocumentStateMachine:
    """Enforces approval and generation state transitions for documents."""

    def __init__(self, db: Session):
        self.db = db

    def get_document(self, document_id: str, organization_id: str) -> Document:
        document = self.db.query(Document).filter(
            Document.id == document_id,
            Document.organization_id == organization_id
        ).first()
        if not document:
            raise NotFoundError("Document not found.")
        return document

    def set_approval(
        self,
        document: Document,
        requested: ApprovalStatus,
        actor_user_id: Optional[str] = None,
        note: Optional[str] = None,
    ) -> Tuple[ApprovalStatus, bool]:
        """
        Move a document to `requested` approval status.

        Returns (previous_status, changed). `changed` is False for a
        self-transition, which writes nothing.

        Invariants:
        - Only transitions in APPROVAL_TRANSITIONS are accepted
        - APPROVED is terminal
        - A non-empty note yields exactly one ApprovalComment with the new status
        - The write only lands if approval_status is still the one checked
        """
        cleaned_note = (note or "").strip()
        if len(cleaned_note) > MAX_APPROVAL_NOTE_LENGTH:
            raise ValidationError(
                f"Approval note must be {MAX_APPROVAL_NOTE_LENGTH} characters or fewer."
            )

        current = document.approval_status or ApprovalStatus.DRAFT
        if current == requested:
            return current, False

        if not is_allowed_transition(current, requested):
            raise ConflictError(
                f"Invalid approval status transition: {current.value} -> {requested.value}.",
                details={"from": current.value, "to": requested.value},
            )

        # Compare-and-set: a concurrent transition out of `current` wins and this one conflicts
        updated = self.db.query(Document).filter(
            Document.id == document.id,
            Document.approval_status == current
        ).update(
            {Document.approval_status: requested, Document.updated_at: datetime.utcnow()},
            synchronize_session="fetch",
        )
        if not updated:
            self.db.rollback()
            raise ConflictError(
                "Approval status changed concurrently; reload the document and try again.",
                details={"from": current.value, "to": requested.value},
            )
        if cleaned_note:
            self.db.add(ApprovalComment(
                document_id=document.id,
                actor_user_id=actor_user_id,
                status=requested,
                note=cleaned_note,
            ))
        self.db.commit()
        self.db.refresh(document)

        logger.info(
            "Document %s approval %s -> %s", document.id, current.value, requested.value
        )
        return current, True

    def set_generation_status(self, document_id: str, organization_id: str,
                              status: GenerationStatus) -> Document:
        """Unconditional write; last one wins."""
        document = self.get_document(document_id, organization_id)
        document.generation_status = status
        document.updated_at = datetime.utcnow()
        self.db.commit()
        return document

    def begin_generation(self, document_id: str, organization_id: str) -> DraftContext:
        document = self.set_generation_status(document_id, organization_id, GenerationStatus.PROCESSING)
        return DraftContext.from_document(document)

    def complete_generation(self, document_id: str, organization_id: str,
                            generated: GeneratedSection) -> DocumentSection:
        """
        Apply a successful attempt in one commit.

        Invariants:
        - Exactly one section is appended at the next dense order
        - version grows by exactly one
        """
        document = self.get_document(document_id, organization_id)

        latest_order = self.db.query(func.max(DocumentSection.order)).filter(
            DocumentSection.document_id == document.id
        ).scalar() or 0

        section = DocumentSection(
            document_id=document.id,
            title=generated.title,
            content=generated.content,
            order=latest_order + 1,
        )
        self.db.add(section)

        document.version = document.version + 1
        document.status = DocumentStatus.REVIEW
        document.generation_status = GenerationStatus.SUCCEEDED
        document.updated_at = datetime.utcnow()

        self.db.commit()
        self.db.refresh(section)
        return section

    def replace_sections(self, document: Document, sections: List[Dict[str, Any]]) -> List[DocumentSection]:
        """
        Replace every section of `document` in one commit.

        Sections are sorted by their requested order and re-indexed densely
        from 1, so gaps and duplicates in the input never reach storage.
        """
        ordered = sorted(sections, key=lambda s: s["order"])
        self.db.query(DocumentSection).filter(
            DocumentSection.document_id == document.id
        ).delete(synchronize_session=False)

        for position, section in enumerate(ordered, start=1):
            self.db.add(DocumentSection(
                document_id=document.id,
                title=section["title"],
                content=section.get("content") or "",
                order=position,
            ))
        document.updated_at = datetime.utcnow()
        self.db.commit()
        self.db.refresh(document)
        return list(document.sections)

    def list_documents(
        self,
        organization_id: str,
        status: Optional[DocumentStatus] = None,
        type: Optional[DocumentType] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> Tuple[List[Document], int]:
        query = self.db.query(Document).filter(Document.organization_id == organization_id)
        if status is not None:
            query = query.filter(Document.status == status)
        if type is not None:
            query = query.filter(Document.type == type)

        total = query.count()
        documents = (
            query.order_by(Document.created_at.desc(), Document.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
            .all()
        )
        return documents, total
