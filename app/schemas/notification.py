from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Annotated, Literal, Optional, Union
from datetime import datetime
import enum

from app.schemas.invitation import InvitationRecord


class NotificationType(str, enum.Enum):
    TASK_ASSIGNED = "task_assigned"
    COMMENT_MENTION = "comment_mention"
    # Display-only kind, never stored on a notification record
    PROJECT_INVITE = "project_invite"


def _stored_kind(value: NotificationType) -> NotificationType:
    if value == NotificationType.PROJECT_INVITE:
        raise ValueError("project_invite is not a stored notification kind")
    return value


class SenderSummary(BaseModel):
    name: Optional[str] = None
    avatar_url: Optional[str] = None


class RelatedContext(BaseModel):
    project_id: str
    project_name: str
    task_id: Optional[str] = None


class NotificationRecord(BaseModel):
    """A user-scoped notification as read from the store."""
    model_config = ConfigDict(frozen=True)

    source: Literal["notification"] = "notification"
    id: str
    user_id: str
    kind: NotificationType
    message: str
    is_read: bool = False
    created_at: datetime
    sender: Optional[SenderSummary] = None
    related: RelatedContext

    @field_validator("kind")
    @classmethod
    def check_kind(cls, v):
        return _stored_kind(v)

    @classmethod
    def from_model(cls, n) -> "NotificationRecord":
        return cls(
            id=n.id,
            user_id=n.user_id,
            kind=n.type,
            message=n.message or "",
            is_read=n.is_read,
            created_at=n.created_at,
            sender=SenderSummary(name=n.sender_name, avatar_url=n.sender_avatar_url) if n.sender_name else None,
            related=RelatedContext(project_id=n.project_id, project_name=n.project_name, task_id=n.task_id),
        )


# Tagged variant over every record shape that feeds the notification list
FeedRecord = Annotated[Union[NotificationRecord, InvitationRecord], Field(discriminator="source")]


class UnifiedNotification(BaseModel):
    """Common shape for one entry of the merged notification list.

    `id` is namespaced by source ("notification:<id>" / "invitation:<id>") so the
    two stores can never collide; `source_id` keeps the raw record id.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    source_id: str
    kind: NotificationType
    message: str
    is_read: bool
    created_at: datetime
    related: RelatedContext
    sender: Optional[SenderSummary] = None
    invitation_id: Optional[str] = None

    @property
    def is_invite(self) -> bool:
        return self.kind == NotificationType.PROJECT_INVITE


class NotificationCreate(BaseModel):
    user_id: str
    kind: NotificationType
    message: str = Field(..., min_length=1)
    related: RelatedContext
    sender: Optional[SenderSummary] = None

    @field_validator("kind")
    @classmethod
    def check_kind(cls, v):
        return _stored_kind(v)
