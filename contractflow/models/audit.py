"""
Audit ledger model.

Rows here are the system of record for "what happened, by whom, when".
The activity feed is built purely by reading them.
"""
from datetime import datetime

from sqlalchemy import Column, String, Integer, DateTime, Enum as SQLEnum, JSON

from contractflow.database import Base
from contractflow.models.enums import AuditAction, AuditTargetType


class AuditEvent(Base):
    """
    Immutable audit event.

    Invariants:
    - Once written, never edited or deleted
    - Append-only
    - actor_user_id is null for system-initiated events (worker outcomes)
    """
    __tablename__ = "audit_events"

    # Autoincrement id doubles as a tie-breaker for newest-first ordering
    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    organization_id = Column(String(36), nullable=False, index=True)
    actor_user_id = Column(String, nullable=True)
    action = Column(SQLEnum(AuditAction), nullable=False, index=True)
    target_type = Column(SQLEnum(AuditTargetType), nullable=False, index=True)
    target_id = Column(String, nullable=True, index=True)
    metadata_json = Column("metadata", JSON, nullable=False, default=dict)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
