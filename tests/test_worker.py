"""
Tests for the draft generation pipeline: enqueue -> worker -> outcome.

These tests prove:
- A successful attempt appends one section, bumps version and marks SUCCEEDED
- Transient failures are retried by the broker without writing FAILED
- FAILED is written once, after the retry policy is exhausted
- A manual retry reuses the DraftJob id and can then succeed
"""
import threading

import pytest

from contractflow.errors import ForbiddenError, NotFoundError, RateLimitedError
from contractflow.models.audit import AuditEvent
from contractflow.models.domain import Document, DocumentSection, DraftJob
from contractflow.models.enums import (
    ApprovalStatus,
    AuditAction,
    DocumentStatus,
    DraftJobStatus,
    GenerationStatus,
    MembershipRole,
)
from contractflow.queue.base import QueueMessage, RetryPolicy
from contractflow.services.generation import GeneratedSection
from contractflow.worker import DOCUMENT_QUEUE, GENERATE_DRAFT, DraftWorker


class FailingGenerator:
    """Raises for the first `failures` calls, then returns a section."""

    def __init__(self, failures=None, error="model unavailable"):
        self.failures = failures
        self.error = error
        self.calls = 0

    def generate(self, context):
        self.calls += 1
        if self.failures is None or self.calls <= self.failures:
            raise RuntimeError(self.error)
        return GeneratedSection(title="Recovered section", content=f"Draft for {context.title}")


class BlockingGenerator:

    def __init__(self):
        self.release = threading.Event()

    def generate(self, context):
        self.release.wait(5)
        return GeneratedSection(title="Too late", content="")


def unreachable_broker(*args, **kwargs):
    raise ConnectionError("broker unreachable")


def audit_actions(db_session):
    return [e.action for e in db_session.query(AuditEvent).order_by(AuditEvent.id).all()]


class TestEnqueue:

    def test_enqueue_creates_queued_job(self, db_session, make_workflow, queue, sample_document):
        workflow = make_workflow(user_id="member_1", role=MembershipRole.MEMBER)

        result = workflow.enqueue_draft(sample_document.id)

        assert result.status == "queued"
        assert result.draft_job.status == DraftJobStatus.QUEUED
        assert result.draft_job.attempts == 0
        assert queue.pending(DOCUMENT_QUEUE) == 1

        db_session.refresh(sample_document)
        assert sample_document.generation_status == GenerationStatus.QUEUED
        assert AuditAction.DRAFT_ENQUEUED in audit_actions(db_session)

    def test_viewer_cannot_enqueue(self, db_session, make_workflow, queue, sample_document):
        with pytest.raises(ForbiddenError):
            make_workflow(user_id="viewer_1", role=MembershipRole.VIEWER).enqueue_draft(sample_document.id)

        assert queue.pending(DOCUMENT_QUEUE) == 0
        assert db_session.query(DraftJob).count() == 0

    def test_other_organization_document_creates_nothing(self, db_session, make_workflow, queue,
                                                         other_organization, sample_document):
        workflow = make_workflow(user_id="outsider_1", role=MembershipRole.OWNER,
                                 organization_id=other_organization.id)

        with pytest.raises(NotFoundError):
            workflow.enqueue_draft(sample_document.id)

        assert queue.pending(DOCUMENT_QUEUE) == 0
        assert db_session.query(DraftJob).count() == 0

    def test_publish_failure_marks_job_failed(self, db_session, make_workflow, queue, monkeypatch,
                                              sample_document):
        """A job the broker never accepted is FAILED, not stuck QUEUED, and can be retried."""
        workflow = make_workflow()

        monkeypatch.setattr(queue, "enqueue", unreachable_broker)
        with pytest.raises(ConnectionError):
            workflow.enqueue_draft(sample_document.id)

        db_session.expire_all()
        job = db_session.query(DraftJob).one()
        assert job.status == DraftJobStatus.FAILED
        assert job.last_error.startswith("ENQUEUE_FAILED:")
        assert db_session.get(Document, sample_document.id).generation_status == GenerationStatus.FAILED
        assert AuditAction.DRAFT_ENQUEUED not in audit_actions(db_session)

        monkeypatch.undo()
        result = workflow.retry_draft_job(job.id)

        assert result.draft_job.status == DraftJobStatus.QUEUED
        assert result.draft_job.attempts == 1
        assert queue.pending(DOCUMENT_QUEUE) == 1

    def test_failed_retry_publish_stays_retryable(self, db_session, make_workflow, queue, monkeypatch,
                                                  sample_document):
        workflow = make_workflow()
        monkeypatch.setattr(queue, "enqueue", unreachable_broker)
        with pytest.raises(ConnectionError):
            workflow.enqueue_draft(sample_document.id)
        job_id = db_session.query(DraftJob).one().id

        with pytest.raises(ConnectionError):
            workflow.retry_draft_job(job_id)

        db_session.expire_all()
        job = db_session.get(DraftJob, job_id)
        assert job.status == DraftJobStatus.FAILED
        assert job.attempts == 1

        monkeypatch.undo()
        assert workflow.retry_draft_job(job_id).draft_job.attempts == 2

    def test_rate_limit_rejects_sixth_request(self, db_session, make_workflow, queue, sample_document):
        workflow = make_workflow(user_id="member_1", role=MembershipRole.MEMBER)
        for _ in range(5):
            workflow.enqueue_draft(sample_document.id)

        with pytest.raises(RateLimitedError) as exc_info:
            workflow.enqueue_draft(sample_document.id)

        assert exc_info.value.result.remaining == 0
        assert queue.pending(DOCUMENT_QUEUE) == 5
        assert db_session.query(DraftJob).count() == 5

    def test_rate_limit_is_per_user(self, make_workflow, sample_document):
        member = make_workflow(user_id="member_1", role=MembershipRole.MEMBER)
        for _ in range(5):
            member.enqueue_draft(sample_document.id)

        result = make_workflow(user_id="admin_1", role=MembershipRole.ADMIN).enqueue_draft(sample_document.id)
        assert result.draft_job.status == DraftJobStatus.QUEUED


class TestSuccessfulGeneration:

    def test_enqueue_then_process(self, db_session, make_workflow, queue, worker, sample_document):
        job_id = make_workflow().enqueue_draft(sample_document.id).draft_job.id

        deliveries = queue.drain(DOCUMENT_QUEUE, worker.handle, worker.on_failed)

        assert deliveries == 1
        db_session.expire_all()
        document = db_session.get(Document, sample_document.id)
        assert document.generation_status == GenerationStatus.SUCCEEDED
        assert document.status == DocumentStatus.REVIEW
        assert document.version == 2
        assert len(document.sections) == 1
        assert document.sections[0].order == 1
        assert document.sections[0].title == "AI Generated Draft Section"

        job = db_session.get(DraftJob, job_id)
        assert job.status == DraftJobStatus.SUCCEEDED
        assert job.last_error is None
        assert AuditAction.DRAFT_SUCCEEDED in audit_actions(db_session)

    def test_sections_append_at_next_order(self, db_session, make_workflow, queue, worker, sample_document):
        db_session.add(DocumentSection(document_id=sample_document.id, title="Scope", content="", order=1))
        db_session.add(DocumentSection(document_id=sample_document.id, title="Pricing", content="", order=2))
        db_session.commit()
        workflow = make_workflow()

        workflow.enqueue_draft(sample_document.id)
        workflow.enqueue_draft(sample_document.id)
        queue.drain(DOCUMENT_QUEUE, worker.handle, worker.on_failed)

        db_session.expire_all()
        document = db_session.get(Document, sample_document.id)
        assert [s.order for s in document.sections] == [1, 2, 3, 4]
        assert document.version == 3

    def test_approval_status_is_untouched(self, db_session, make_workflow, queue, worker, sample_document):
        make_workflow(user_id="member_1", role=MembershipRole.MEMBER).set_approval(
            sample_document.id, ApprovalStatus.REVIEW
        )
        make_workflow().enqueue_draft(sample_document.id)

        queue.drain(DOCUMENT_QUEUE, worker.handle, worker.on_failed)

        db_session.expire_all()
        assert db_session.get(Document, sample_document.id).approval_status == ApprovalStatus.REVIEW


class TestFailedGeneration:

    def test_exhausted_retries_mark_failed(self, db_session, session_factory, make_workflow, queue,
                                           clock, sample_document):
        generator = FailingGenerator()
        worker = DraftWorker(session_factory, generator=generator, timeout_seconds=5)
        job_id = make_workflow().enqueue_draft(sample_document.id).draft_job.id
        started = clock()

        deliveries = queue.drain(DOCUMENT_QUEUE, worker.handle, worker.on_failed)

        # attempts=3, backoff 1s then 2s
        assert deliveries == 3
        assert generator.calls == 3
        assert clock() - started == pytest.approx(3.0)

        db_session.expire_all()
        document = db_session.get(Document, sample_document.id)
        assert document.generation_status == GenerationStatus.FAILED
        assert document.version == 1
        assert document.sections == []

        job = db_session.get(DraftJob, job_id)
        assert job.status == DraftJobStatus.FAILED
        assert job.last_error == "model unavailable"

        failed = db_session.query(AuditEvent).filter(AuditEvent.action == AuditAction.DRAFT_FAILED).all()
        assert len(failed) == 1
        assert failed[0].metadata_json["reason"] == "model unavailable"
        assert failed[0].metadata_json["job_id"] == job_id

    def test_transient_failure_then_success(self, db_session, session_factory, make_workflow, queue,
                                            sample_document):
        worker = DraftWorker(session_factory, generator=FailingGenerator(failures=1), timeout_seconds=5)
        job_id = make_workflow().enqueue_draft(sample_document.id).draft_job.id

        deliveries = queue.drain(DOCUMENT_QUEUE, worker.handle, worker.on_failed)

        assert deliveries == 2
        db_session.expire_all()
        document = db_session.get(Document, sample_document.id)
        assert document.generation_status == GenerationStatus.SUCCEEDED
        assert [s.title for s in document.sections] == ["Recovered section"]
        assert db_session.get(DraftJob, job_id).status == DraftJobStatus.SUCCEEDED
        assert AuditAction.DRAFT_FAILED not in audit_actions(db_session)

    def test_failure_before_exhaustion_writes_nothing(self, db_session, session_factory, organization,
                                                      make_workflow, sample_document):
        worker = DraftWorker(session_factory, timeout_seconds=5)
        job_id = make_workflow().enqueue_draft(sample_document.id).draft_job.id
        message = QueueMessage(
            topic=DOCUMENT_QUEUE,
            name=GENERATE_DRAFT,
            payload={"document_id": sample_document.id, "organization_id": organization.id,
                     "draft_job_id": job_id},
            policy=RetryPolicy(attempts=3),
            attempts_made=1,
        )

        worker.on_failed(message, RuntimeError("transient"))

        db_session.expire_all()
        assert db_session.get(DraftJob, job_id).status == DraftJobStatus.QUEUED
        assert db_session.get(Document, sample_document.id).generation_status == GenerationStatus.QUEUED

    def test_missing_document_still_fails_job(self, db_session, session_factory, organization,
                                              make_workflow, sample_document):
        """The job leaves QUEUED even when the document write cannot happen."""
        worker = DraftWorker(session_factory, timeout_seconds=5)
        job_id = make_workflow().enqueue_draft(sample_document.id).draft_job.id
        message = QueueMessage(
            topic=DOCUMENT_QUEUE,
            name=GENERATE_DRAFT,
            payload={"document_id": "deleted-doc", "organization_id": organization.id,
                     "draft_job_id": job_id},
            policy=RetryPolicy(attempts=3),
            attempts_made=3,
        )

        worker.on_failed(message, RuntimeError("Document not found."))

        db_session.expire_all()
        job = db_session.get(DraftJob, job_id)
        assert job.status == DraftJobStatus.FAILED
        assert job.last_error == "Document not found."
        assert AuditAction.DRAFT_FAILED in audit_actions(db_session)

    def test_timeout_is_recorded_with_prefix(self, db_session, session_factory, make_workflow, queue,
                                             sample_document):
        generator = BlockingGenerator()
        worker = DraftWorker(session_factory, generator=generator, timeout_seconds=0.05)
        job_id = make_workflow().enqueue_draft(sample_document.id).draft_job.id

        try:
            queue.drain(DOCUMENT_QUEUE, worker.handle, worker.on_failed)
        finally:
            generator.release.set()

        db_session.expire_all()
        job = db_session.get(DraftJob, job_id)
        assert job.status == DraftJobStatus.FAILED
        assert job.last_error.startswith("TIMEOUT:")
        assert db_session.get(Document, sample_document.id).version == 1

    def test_malformed_payload_is_retried_then_dropped(self, db_session, queue, worker, sample_document):
        queue.enqueue(DOCUMENT_QUEUE, {"organization_id": "x"}, name=GENERATE_DRAFT)

        deliveries = queue.drain(DOCUMENT_QUEUE, worker.handle, worker.on_failed)

        assert deliveries == 3
        db_session.expire_all()
        assert db_session.get(Document, sample_document.id).generation_status == GenerationStatus.IDLE

    def test_unknown_message_is_skipped(self, db_session, queue, worker, organization, sample_document):
        queue.enqueue(
            DOCUMENT_QUEUE,
            {"document_id": sample_document.id, "organization_id": organization.id},
            name="summarizeDocument",
        )

        deliveries = queue.drain(DOCUMENT_QUEUE, worker.handle, worker.on_failed)

        assert deliveries == 1
        db_session.expire_all()
        document = db_session.get(Document, sample_document.id)
        assert document.generation_status == GenerationStatus.IDLE
        assert document.version == 1


class TestManualRetry:

    def test_retry_failed_job_then_succeed(self, db_session, session_factory, make_workflow, queue,
                                           worker, sample_document):
        workflow = make_workflow()
        failing = DraftWorker(session_factory, generator=FailingGenerator(), timeout_seconds=5)
        job_id = workflow.enqueue_draft(sample_document.id).draft_job.id
        queue.drain(DOCUMENT_QUEUE, failing.handle, failing.on_failed)

        db_session.expire_all()
        result = workflow.retry_draft_job(job_id)

        assert result.draft_job.id == job_id
        assert result.draft_job.status == DraftJobStatus.QUEUED
        assert result.draft_job.attempts == 1
        assert result.draft_job.last_error is None
        db_session.refresh(sample_document)
        assert sample_document.generation_status == GenerationStatus.QUEUED

        queue.drain(DOCUMENT_QUEUE, worker.handle, worker.on_failed)

        db_session.expire_all()
        assert db_session.get(DraftJob, job_id).status == DraftJobStatus.SUCCEEDED
        assert db_session.get(Document, sample_document.id).generation_status == GenerationStatus.SUCCEEDED
        assert db_session.query(DraftJob).count() == 1

        retried = db_session.query(AuditEvent).filter(AuditEvent.action == AuditAction.DRAFT_RETRIED).one()
        assert retried.metadata_json["attempts"] == 1

    def test_member_cannot_retry(self, session_factory, make_workflow, queue, sample_document):
        failing = DraftWorker(session_factory, generator=FailingGenerator(), timeout_seconds=5)
        job_id = make_workflow().enqueue_draft(sample_document.id).draft_job.id
        queue.drain(DOCUMENT_QUEUE, failing.handle, failing.on_failed)

        with pytest.raises(ForbiddenError):
            make_workflow(user_id="member_1", role=MembershipRole.MEMBER).retry_draft_job(job_id)
