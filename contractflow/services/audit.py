"""
Append-only audit ledger.

There is no update or delete path here. Writes are permissive: the ledger
describes primary operations and must never block them, so callers go
through `record_best_effort` after the primary change is committed.
"""
import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from contractflow.models.audit import AuditEvent
from contractflow.models.enums import AuditAction, AuditTargetType

logger = logging.getLogger(__name__)


class AuditLedger:

    def __init__(self, db: Session):
        self.db = db

    def record(
        self,
        organization_id: str,
        action: AuditAction,
        target_type: AuditTargetType,
        target_id: Optional[str] = None,
        actor_user_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> AuditEvent:
        event = AuditEvent(
            organization_id=organization_id,
            actor_user_id=actor_user_id,
            action=action,
            target_type=target_type,
            target_id=target_id,
            metadata_json=metadata or {},
        )
        self.db.add(event)
        self.db.commit()
        self.db.refresh(event)
        return event

    def record_best_effort(self, organization_id: str, action: AuditAction, target_type: AuditTargetType,
                           **kwargs) -> Optional[AuditEvent]:
        """Record an event; on failure log, roll back the audit write only, return None."""
        try:
            return self.record(organization_id, action, target_type, **kwargs)
        except Exception as e:
            self.db.rollback()
            logger.warning(
                "Failed to record audit event (action=%s, target=%s): %s",
                action.value, kwargs.get("target_id"), e,
            )
            return None

    def list(
        self,
        organization_id: str,
        action: Optional[AuditAction] = None,
        target_type: Optional[AuditTargetType] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> Tuple[List[AuditEvent], int]:
        """Newest first; id breaks created_at ties so repeated reads agree."""
        query = self.db.query(AuditEvent).filter(AuditEvent.organization_id == organization_id)
        if action is not None:
            query = query.filter(AuditEvent.action == action)
        if target_type is not None:
            query = query.filter(AuditEvent.target_type == target_type)

        total = query.count()
        events = (
            query.order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
            .all()
        )
        return events, total
