"""
Helper to create in-app notifications for task assignments and mentions.
"""
from typing import Optional
from sqlalchemy.orm import Session
from app.models.notification import Notification
from app.schemas.notification import NotificationType, RelatedContext, SenderSummary


def create_notification(
    db: Session,
    user_id: str,
    kind: NotificationType,
    message: str,
    related: RelatedContext,
    sender: Optional[SenderSummary] = None,
) -> Optional[Notification]:
    """
    Create an unread notification for a user. Commits the notification; caller may be inside a larger transaction.
    user_id: User.id of the recipient. An empty id creates nothing and returns None.
    kind: task_assigned or comment_mention.
    related: project (and optionally task) the notification points at.
    """
    if not user_id:
        return None
    notif = Notification(
        user_id=user_id,
        type=NotificationType(kind).value,
        message=message,
        is_read=False,
        sender_name=sender.name if sender else None,
        sender_avatar_url=sender.avatar_url if sender else None,
        project_id=related.project_id,
        project_name=related.project_name,
        task_id=related.task_id,
    )
    db.add(notif)
    db.commit()
    db.refresh(notif)
    return notif
