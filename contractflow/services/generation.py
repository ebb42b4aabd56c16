"""
Draft content generation.

The generator is the slow, I/O-bound part of an attempt (an LLM call in
production). It is injected into the worker so tests and deployments can
swap it without touching the state machine.
"""
import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import Callable, Protocol

from contractflow.errors import GenerationTimeoutError
from contractflow.models.domain import Document
from contractflow.models.enums import DocumentType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GeneratedSection:
    title: str
    content: str


@dataclass(frozen=True)
class DraftContext:
    """Detached snapshot of what the generator may read."""
    document_id: str
    title: str
    type: DocumentType
    version: int
    section_titles: tuple

    @classmethod
    def from_document(cls, document: Document) -> "DraftContext":
        return cls(
            document_id=document.id,
            title=document.title,
            type=document.type,
            version=document.version,
            section_titles=tuple(s.title for s in document.sections),
        )


class DraftGenerator(Protocol):
    def generate(self, context: DraftContext) -> GeneratedSection: ...


class TemplateDraftGenerator:
    """Deterministic stand-in used until a model provider is configured."""

    def generate(self, context: DraftContext) -> GeneratedSection:
        kind = "contract" if context.type == DocumentType.CONTRACT else "proposal"
        return GeneratedSection(
            title="AI Generated Draft Section",
            content=(
                f"Generated summary of key terms and obligations for the {kind} "
                f"\"{context.title}\" (revision {context.version + 1}), based on the "
                "latest client requirements."
            ),
        )


def run_with_deadline(fn: Callable[[], GeneratedSection], timeout_seconds: float) -> GeneratedSection:
    """
    Run `fn` on a helper thread and give up after `timeout_seconds`.

    The helper thread cannot be killed; an overrunning call keeps running in
    the background but its result is discarded.
    """
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="draft-gen")
    future = executor.submit(fn)
    try:
        return future.result(timeout=timeout_seconds)
    except FutureTimeoutError:
        logger.warning("Draft generation exceeded %ss deadline", timeout_seconds)
        raise GenerationTimeoutError(timeout_seconds)
    finally:
        executor.shutdown(wait=False)
