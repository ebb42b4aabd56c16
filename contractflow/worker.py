"""
Draft generation worker.

Consumes `generateDraft` messages and is the only writer of attempt
outcomes: DraftJob PROCESSING/SUCCEEDED/FAILED and the matching document
generation status. Request handlers only ever create QUEUED records.

Transient errors are left to the broker's retry policy. FAILED is written
only once the broker reports the message exhausted.

Run with: contractflow-worker
"""
import logging
import signal
import threading
from typing import Callable, Optional

from pydantic import BaseModel, Field, ValidationError as PayloadValidationError
from sqlalchemy.orm import Session

from contractflow.config import Settings, get_settings
from contractflow.models.enums import AuditAction, AuditTargetType, GenerationStatus
from contractflow.queue.base import Queue, QueueMessage, RetryPolicy
from contractflow.services.audit import AuditLedger
from contractflow.services.draft_jobs import DraftJobStore
from contractflow.services.generation import DraftGenerator, TemplateDraftGenerator, run_with_deadline
from contractflow.services.state_machine import DocumentStateMachine

logger = logging.getLogger(__name__)

DOCUMENT_QUEUE = "document-jobs"
GENERATE_DRAFT = "generateDraft"


class GenerateDraftPayload(BaseModel):
    document_id: str = Field(..., min_length=1)
    organization_id: str = Field(..., min_length=1)
    draft_job_id: Optional[str] = Field(None, min_length=1)
    actor_user_id: Optional[str] = None


def draft_retry_policy(settings: Settings) -> RetryPolicy:
    return RetryPolicy(attempts=settings.draft_job_attempts, backoff_ms=settings.draft_job_backoff_ms)


class DraftWorker:
    """Message handlers for the document queue. One session per message."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        generator: Optional[DraftGenerator] = None,
        timeout_seconds: float = 60.0,
    ):
        self.session_factory = session_factory
        self.generator = generator or TemplateDraftGenerator()
        self.timeout_seconds = timeout_seconds

    def handle(self, message: QueueMessage) -> bool:
        if message.name != GENERATE_DRAFT:
            logger.warning("Unknown job received (name=%s, id=%s)", message.name, message.id)
            return False

        # A malformed payload raises here and goes through broker retry like any failure
        payload = GenerateDraftPayload(**message.payload)
        logger.info(
            "Generating draft (document=%s, organization=%s, message=%s, attempt=%d)",
            payload.document_id, payload.organization_id, message.id, message.attempts_made + 1,
        )

        db = self.session_factory()
        try:
            jobs = DraftJobStore(db)
            if payload.draft_job_id:
                try:
                    jobs.mark_processing(payload.draft_job_id)
                except Exception as e:
                    db.rollback()
                    logger.warning("Failed to mark draft job %s processing: %s", payload.draft_job_id, e)

            sm = DocumentStateMachine(db)
            context = sm.begin_generation(payload.document_id, payload.organization_id)
            generated = run_with_deadline(lambda: self.generator.generate(context), self.timeout_seconds)
            section = sm.complete_generation(payload.document_id, payload.organization_id, generated)

            AuditLedger(db).record_best_effort(
                payload.organization_id,
                AuditAction.DRAFT_SUCCEEDED,
                AuditTargetType.DOCUMENT,
                target_id=payload.document_id,
                actor_user_id=payload.actor_user_id,
                metadata={"section_id": section.id, "job_id": payload.draft_job_id},
            )

            if payload.draft_job_id:
                try:
                    jobs.mark_succeeded(payload.draft_job_id)
                except Exception as e:
                    db.rollback()
                    logger.warning("Failed to mark draft job %s succeeded: %s", payload.draft_job_id, e)

            logger.info("Draft generated (document=%s, section=%s)", payload.document_id, section.id)
            return True
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def on_failed(self, message: QueueMessage, error: BaseException) -> None:
        logger.error(
            "Job failed (id=%s, name=%s, attempts_made=%d): %s",
            message.id, message.name, message.attempts_made, error,
        )
        if not message.exhausted or message.name != GENERATE_DRAFT:
            return

        try:
            payload = GenerateDraftPayload(**message.payload)
        except PayloadValidationError:
            logger.warning("Failed job payload could not be parsed (id=%s)", message.id)
            return

        reason = str(error) or error.__class__.__name__
        db = self.session_factory()
        try:
            # Each outcome write stands alone; a missing document must not keep the job QUEUED
            try:
                DocumentStateMachine(db).set_generation_status(
                    payload.document_id, payload.organization_id, GenerationStatus.FAILED
                )
            except Exception as e:
                db.rollback()
                logger.error(
                    "Failed to mark document generation as failed (document=%s): %s",
                    payload.document_id, e,
                )
            AuditLedger(db).record_best_effort(
                payload.organization_id,
                AuditAction.DRAFT_FAILED,
                AuditTargetType.DOCUMENT,
                target_id=payload.document_id,
                actor_user_id=payload.actor_user_id,
                metadata={"reason": reason, "job_id": payload.draft_job_id},
            )
            if payload.draft_job_id:
                try:
                    DraftJobStore(db).mark_failed(payload.draft_job_id, reason)
                except Exception as e:
                    db.rollback()
                    logger.warning("Failed to mark draft job %s failed: %s", payload.draft_job_id, e)
        finally:
            db.close()

    def run(self, queue: Queue, stop_event: threading.Event, poll_interval: float = 1.0) -> None:
        queue.consume(DOCUMENT_QUEUE, self.handle, self.on_failed, stop_event, poll_interval)


def main() -> None:
    from contractflow.api.dependencies import build_queue
    from contractflow.database import SessionLocal, init_db
    from contractflow.observability import configure_logging

    settings = get_settings()
    configure_logging(settings.log_level)
    init_db()

    stop_event = threading.Event()

    def shutdown(signum, frame):
        logger.info("Shutting down worker")
        stop_event.set()

    signal.signal(signal.SIGINT, shutdown)
    signal.signal(signal.SIGTERM, shutdown)

    worker = DraftWorker(SessionLocal, timeout_seconds=settings.generation_timeout_seconds)
    worker.run(build_queue(settings), stop_event, settings.worker_poll_interval_seconds)


if __name__ == "__main__":
    main()
