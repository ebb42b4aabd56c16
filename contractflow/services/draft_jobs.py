"""
Draft job store - durable records of generation requests.

A DraftJob outlives the queue message that carries it, so "what happened to
request X" can be answered after the broker has discarded the message.

Single-writer discipline: during an attempt the worker is the only caller of
`mark_processing`, `mark_succeeded` and `mark_failed`. Those writes are
unconditional and keyed by id, so replaying one (a redelivered message, two
workers racing on the same id) converges on the same row state.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from contractflow.errors import ConflictError, NotFoundError
from contractflow.models.domain import DraftJob
from contractflow.models.enums import DraftJobStatus

DEFAULT_MAX_MANUAL_RETRIES = 5


@dataclass
class RetryResult:
    job: DraftJob
    payload: Dict[str, Any]  # Body of the fresh queue message


class DraftJobStore:

    def __init__(self, db: Session, max_manual_retries: int = DEFAULT_MAX_MANUAL_RETRIES):
        self.db = db
        self.max_manual_retries = max_manual_retries

    def create(self, organization_id: str, document_id: str) -> DraftJob:
        job = DraftJob(
            organization_id=organization_id,
            document_id=document_id,
            status=DraftJobStatus.QUEUED,
            attempts=0,
        )
        self.db.add(job)
        self.db.commit()
        self.db.refresh(job)
        return job

    def get_for_org(self, job_id: str, organization_id: str) -> DraftJob:
        job = self.db.query(DraftJob).filter(
            DraftJob.id == job_id,
            DraftJob.organization_id == organization_id
        ).first()
        if not job:
            raise NotFoundError("Draft job not found.")
        return job

    def _write_status(self, job_id: str, status: DraftJobStatus, last_error: Optional[str]) -> None:
        updated = self.db.query(DraftJob).filter(DraftJob.id == job_id).update(
            {
                DraftJob.status: status,
                DraftJob.last_error: last_error,
                DraftJob.updated_at: datetime.utcnow(),
            },
            synchronize_session="fetch",
        )
        self.db.commit()
        if not updated:
            raise NotFoundError("Draft job not found.")

    def mark_processing(self, job_id: str) -> None:
        self._write_status(job_id, DraftJobStatus.PROCESSING, None)

    def mark_succeeded(self, job_id: str) -> None:
        self._write_status(job_id, DraftJobStatus.SUCCEEDED, None)

    def mark_failed(self, job_id: str, error: str) -> None:
        self._write_status(job_id, DraftJobStatus.FAILED, error)

    def retry(self, job_id: str, organization_id: str, actor_user_id: Optional[str] = None) -> RetryResult:
        """
        Re-queue a FAILED job under the same id.

        Invariants:
        - Only FAILED jobs may be retried
        - attempts grows by exactly one, last_error is cleared
        - Rejected retries write nothing
        """
        job = self.get_for_org(job_id, organization_id)

        if job.status != DraftJobStatus.FAILED:
            raise ConflictError(
                "Only failed jobs can be retried.",
                details={"status": job.status.value},
            )
        if job.attempts >= self.max_manual_retries:
            raise ConflictError(
                f"Draft job has reached the retry limit of {self.max_manual_retries}.",
                details={"attempts": job.attempts},
            )

        job.status = DraftJobStatus.QUEUED
        job.last_error = None
        job.attempts = job.attempts + 1
        job.updated_at = datetime.utcnow()
        self.db.commit()
        self.db.refresh(job)

        return RetryResult(
            job=job,
            payload={
                "document_id": job.document_id,
                "organization_id": organization_id,
                "draft_job_id": job.id,
                "actor_user_id": actor_user_id,
            },
        )

    def list(
        self,
        organization_id: str,
        document_id: Optional[str] = None,
        status: Optional[DraftJobStatus] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> Tuple[List[DraftJob], int]:
        query = self.db.query(DraftJob).filter(DraftJob.organization_id == organization_id)
        if document_id:
            query = query.filter(DraftJob.document_id == document_id)
        if status is not None:
            query = query.filter(DraftJob.status == status)

        total = query.count()
        jobs = (
            query.order_by(DraftJob.created_at.desc(), DraftJob.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
            .all()
        )
        return jobs, total
