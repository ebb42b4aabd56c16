"""Notification fan-out for approval changes, and per-recipient read state."""
import logging
from datetime import datetime
from typing import Any, Dict, List, Tuple

from sqlalchemy.orm import Session

from contractflow.errors import NotFoundError
from contractflow.models.domain import Membership, Notification
from contractflow.models.enums import ApprovalStatus, NotificationType

logger = logging.getLogger(__name__)

NOTIFICATION_TYPE_BY_STATUS: Dict[ApprovalStatus, NotificationType] = {
    ApprovalStatus.REVIEW: NotificationType.DOCUMENT_REVIEW_REQUESTED,
    ApprovalStatus.APPROVED: NotificationType.DOCUMENT_APPROVED,
    ApprovalStatus.DRAFT: NotificationType.DOCUMENT_SENT_BACK,
}


class NotificationService:

    def __init__(self, db: Session):
        self.db = db

    def member_ids(self, organization_id: str) -> List[str]:
        rows = self.db.query(Membership.user_id).filter(
            Membership.organization_id == organization_id
        ).all()
        return [user_id for (user_id,) in rows]

    def notify_approval(
        self,
        organization_id: str,
        actor_user_id: str,
        document_id: str,
        document_title: str,
        status: ApprovalStatus,
    ) -> int:
        """Create one notification per member except the actor. Zero recipients is fine."""
        recipients = [uid for uid in self.member_ids(organization_id) if uid != actor_user_id]
        if not recipients:
            return 0

        notification_type = NOTIFICATION_TYPE_BY_STATUS[status]
        self.db.add_all([
            Notification(
                organization_id=organization_id,
                user_id=user_id,
                actor_user_id=actor_user_id,
                type=notification_type,
                metadata_json={
                    "document_id": document_id,
                    "document_title": document_title,
                    "approval_status": status.value,
                },
            )
            for user_id in recipients
        ])
        self.db.commit()

        logger.info(
            "Sent %d %s notifications for document %s",
            len(recipients), notification_type.value, document_id,
        )
        return len(recipients)

    def list(
        self,
        user_id: str,
        organization_id: str,
        unread_only: bool = False,
        page: int = 1,
        page_size: int = 10,
    ) -> Tuple[List[Notification], Dict[str, Any]]:
        base = self.db.query(Notification).filter(
            Notification.user_id == user_id,
            Notification.organization_id == organization_id
        )
        unread = base.filter(Notification.read_at.is_(None))
        query = unread if unread_only else base

        items = (
            query.order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
            .all()
        )
        counts = {"total": base.count(), "unread_count": unread.count()}
        return items, counts

    def mark_read(self, notification_id: str, user_id: str) -> None:
        """Touches at most one row; another user's notification reads as missing."""
        updated = self.db.query(Notification).filter(
            Notification.id == notification_id,
            Notification.user_id == user_id
        ).update({Notification.read_at: datetime.utcnow()}, synchronize_session="fetch")
        self.db.commit()
        if updated == 0:
            raise NotFoundError("Notification not found.")

    def mark_all_read(self, user_id: str, organization_id: str) -> int:
        updated = self.db.query(Notification).filter(
            Notification.user_id == user_id,
            Notification.organization_id == organization_id,
            Notification.read_at.is_(None)
        ).update({Notification.read_at: datetime.utcnow()}, synchronize_session="fetch")
        self.db.commit()
        return updated
