"""API routes for documents, draft jobs, audit events and notifications."""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from contractflow.api.dependencies import get_workflow
from contractflow.api.schemas import (
    ApprovalCommentResponse,
    ApprovalUpdate,
    AuditEventResponse,
    DocumentCreate,
    DocumentResponse,
    DraftJobResponse,
    EnqueueResponse,
    Envelope,
    ErrorEnvelope,
    NotificationResponse,
    ReadAllResponse,
    SectionResponse,
    SectionsReplace,
)
from contractflow.models.enums import AuditAction, AuditTargetType, DocumentStatus, DocumentType, DraftJobStatus
from contractflow.services.workflow import DocumentWorkflow, EnqueueResult

router = APIRouter()

ERROR_RESPONSES = {
    403: {"model": ErrorEnvelope},
    404: {"model": ErrorEnvelope},
    409: {"model": ErrorEnvelope},
}


def _enqueue_envelope(result: EnqueueResult) -> Envelope[EnqueueResponse]:
    return Envelope(data=EnqueueResponse(
        draft_job=DraftJobResponse.model_validate(result.draft_job),
        queue_job_id=result.queue_job_id,
        document_id=result.document_id,
        status=result.status,
    ))


# Document endpoints
@router.post("/documents", response_model=Envelope[DocumentResponse], status_code=status.HTTP_201_CREATED)
def create_document(data: DocumentCreate, workflow: DocumentWorkflow = Depends(get_workflow)):
    """Create a document. Sections are re-indexed densely by their requested order."""
    sections = [s.model_dump() for s in sorted(data.sections, key=lambda s: s.order)]
    document = workflow.create_document(data.title, data.type, data.status, sections)
    return Envelope(data=DocumentResponse.model_validate(document))


@router.get("/documents", response_model=Envelope[List[DocumentResponse]])
def list_documents(
    status_filter: Optional[DocumentStatus] = Query(None, alias="status"),
    type_filter: Optional[DocumentType] = Query(None, alias="type"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    workflow: DocumentWorkflow = Depends(get_workflow),
):
    documents, meta = workflow.list_documents(status_filter, type_filter, page, page_size)
    return Envelope(data=[DocumentResponse.model_validate(d) for d in documents], meta=meta)


@router.get("/documents/{document_id}", response_model=Envelope[DocumentResponse], responses=ERROR_RESPONSES)
def get_document(document_id: str, workflow: DocumentWorkflow = Depends(get_workflow)):
    return Envelope(data=DocumentResponse.model_validate(workflow.get_document(document_id)))


@router.put("/documents/{document_id}/sections", response_model=Envelope[List[SectionResponse]],
            responses=ERROR_RESPONSES)
def replace_sections(document_id: str, data: SectionsReplace, workflow: DocumentWorkflow = Depends(get_workflow)):
    """Replace all sections. Order is re-indexed densely from 1."""
    sections = workflow.replace_sections(document_id, [s.model_dump() for s in data.sections])
    return Envelope(data=[SectionResponse.model_validate(s) for s in sections])


@router.post(
    "/documents/{document_id}/generate-draft",
    response_model=Envelope[EnqueueResponse],
    status_code=status.HTTP_202_ACCEPTED,
    responses={**ERROR_RESPONSES, 429: {"model": ErrorEnvelope, "description": "Rate limited"}},
)
def generate_draft(document_id: str, workflow: DocumentWorkflow = Depends(get_workflow)):
    """
    Queue background generation of a new draft section.
    Returns immediately; poll the draft job for the outcome.
    """
    return _enqueue_envelope(workflow.enqueue_draft(document_id))


@router.patch("/documents/{document_id}/approval", response_model=Envelope[DocumentResponse],
              responses=ERROR_RESPONSES)
def set_approval(document_id: str, data: ApprovalUpdate, workflow: DocumentWorkflow = Depends(get_workflow)):
    """
    Move the document through DRAFT -> REVIEW -> APPROVED (or back to DRAFT from REVIEW).
    Requesting the current status is a no-op.
    """
    result = workflow.set_approval(document_id, data.status, data.note)
    return Envelope(
        data=DocumentResponse.model_validate(result.document),
        meta={
            "previous_status": result.previous_status.value,
            "changed": result.changed,
            "notified": result.notified,
        },
    )


@router.get("/documents/{document_id}/approval-comments", response_model=Envelope[List[ApprovalCommentResponse]],
            responses=ERROR_RESPONSES)
def list_approval_comments(document_id: str, workflow: DocumentWorkflow = Depends(get_workflow)):
    comments = workflow.list_approval_comments(document_id)
    return Envelope(data=[ApprovalCommentResponse.model_validate(c) for c in comments])


# Draft job endpoints
@router.get("/jobs/drafts", response_model=Envelope[List[DraftJobResponse]])
def list_draft_jobs(
    document_id: Optional[str] = Query(None, min_length=1),
    status_filter: Optional[DraftJobStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    workflow: DocumentWorkflow = Depends(get_workflow),
):
    jobs, meta = workflow.list_draft_jobs(document_id, status_filter, page, page_size)
    return Envelope(data=[DraftJobResponse.model_validate(j) for j in jobs], meta=meta)


@router.post("/jobs/drafts/{job_id}/retry", response_model=Envelope[EnqueueResponse],
             status_code=status.HTTP_202_ACCEPTED, responses=ERROR_RESPONSES)
def retry_draft_job(job_id: str, workflow: DocumentWorkflow = Depends(get_workflow)):
    """Re-queue a FAILED draft job under the same id."""
    return _enqueue_envelope(workflow.retry_draft_job(job_id))


# Audit endpoints
@router.get("/audit/events", response_model=Envelope[List[AuditEventResponse]])
def list_audit_events(
    action: Optional[AuditAction] = None,
    target_type: Optional[AuditTargetType] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    workflow: DocumentWorkflow = Depends(get_workflow),
):
    events, meta = workflow.list_audit_events(action, target_type, page, page_size)
    return Envelope(data=[AuditEventResponse.model_validate(e) for e in events], meta=meta)


# Notification endpoints
@router.get("/notifications", response_model=Envelope[List[NotificationResponse]])
def list_notifications(
    unread_only: bool = False,
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=50),
    workflow: DocumentWorkflow = Depends(get_workflow),
):
    items, meta = workflow.list_notifications(unread_only, page, page_size)
    return Envelope(data=[NotificationResponse.model_validate(n) for n in items], meta=meta)


@router.post("/notifications/read-all", response_model=Envelope[ReadAllResponse])
def mark_all_notifications_read(workflow: DocumentWorkflow = Depends(get_workflow)):
    return Envelope(data=ReadAllResponse(count=workflow.mark_all_notifications_read()))


@router.post("/notifications/{notification_id}/read", response_model=Envelope[dict], responses=ERROR_RESPONSES)
def mark_notification_read(notification_id: str, workflow: DocumentWorkflow = Depends(get_workflow)):
    workflow.mark_notification_read(notification_id)
    return Envelope(data={"id": notification_id, "read": True})
