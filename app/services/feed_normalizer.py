"""
Convert records from every feed source into UnifiedNotification items.
"""
from typing import Any, Dict, Optional

from pydantic import TypeAdapter

from app.config import settings
from app.models.invitation import InvitationStatus
from app.schemas.invitation import InvitationRecord
from app.schemas.notification import (
    FeedRecord,
    NotificationRecord,
    NotificationType,
    RelatedContext,
    SenderSummary,
    UnifiedNotification,
)

NOTIFICATION_SOURCE = "notification"
INVITATION_SOURCE = "invitation"

feed_record_adapter = TypeAdapter(FeedRecord)


def parse_feed_record(data: Dict[str, Any]) -> FeedRecord:
    """Validate a raw record dict, picking the variant from its `source` tag."""
    return feed_record_adapter.validate_python(data)


def notification_item_id(notification_id: str) -> str:
    return f"{NOTIFICATION_SOURCE}:{notification_id}"


def invitation_item_id(invitation_id: str) -> str:
    return f"{INVITATION_SOURCE}:{invitation_id}"


def invite_message(inviter_name: Optional[str], project_name: str, fallback: Optional[str] = None) -> str:
    sender = inviter_name or fallback or settings.INVITE_SENDER_FALLBACK
    return f"{sender} invited you to project {project_name}"


def normalize_notification(record: NotificationRecord) -> UnifiedNotification:
    return UnifiedNotification(
        id=notification_item_id(record.id),
        source_id=record.id,
        kind=record.kind,
        message=record.message,
        is_read=record.is_read,
        created_at=record.created_at,
        related=record.related,
        sender=record.sender,
        invitation_id=None,
    )


def normalize_invitation(record: InvitationRecord, fallback: Optional[str] = None) -> UnifiedNotification:
    """Map a pending invitation to an always-unread project_invite item."""
    if record.status != InvitationStatus.PENDING:
        raise ValueError(f"Invitation {record.id} is {record.status.value}, only pending invitations are shown")
    sender_name = record.inviter.name or fallback or settings.INVITE_SENDER_FALLBACK
    return UnifiedNotification(
        id=invitation_item_id(record.id),
        source_id=record.id,
        kind=NotificationType.PROJECT_INVITE,
        message=invite_message(record.inviter.name, record.project_name, fallback),
        is_read=False,
        created_at=record.created_at,
        related=RelatedContext(project_id=record.project_id, project_name=record.project_name),
        sender=SenderSummary(name=sender_name),
        invitation_id=record.id,
    )


def normalize(record: FeedRecord, fallback: Optional[str] = None) -> UnifiedNotification:
    if isinstance(record, NotificationRecord):
        return normalize_notification(record)
    if isinstance(record, InvitationRecord):
        return normalize_invitation(record, fallback)
    raise TypeError(f"Unsupported feed record: {type(record).__name__}")
