from pydantic import BaseModel, ConfigDict, EmailStr, field_validator
from typing import Literal, Optional
from datetime import datetime

from app.models.invitation import InvitationStatus
from app.models.project import MemberRole


class InviterSummary(BaseModel):
    uid: str
    name: Optional[str] = None


class InvitationRecord(BaseModel):
    """A project invitation as read from the store."""
    model_config = ConfigDict(frozen=True)

    source: Literal["invitation"] = "invitation"
    id: str
    project_id: str
    project_name: str
    recipient_email: str
    role: MemberRole = MemberRole.VIEWER
    status: InvitationStatus = InvitationStatus.PENDING
    inviter: InviterSummary
    created_at: datetime

    @classmethod
    def from_model(cls, inv) -> "InvitationRecord":
        return cls(
            id=inv.id,
            project_id=inv.project_id,
            project_name=inv.project_name,
            recipient_email=inv.recipient_email,
            role=inv.role,
            status=inv.status,
            inviter=InviterSummary(uid=inv.inviter_id, name=inv.inviter_name),
            created_at=inv.created_at,
        )


class InvitationCreate(BaseModel):
    project_id: str
    recipient_email: EmailStr
    role: MemberRole = MemberRole.VIEWER

    @field_validator("role")
    @classmethod
    def check_role(cls, v):
        if v == MemberRole.OWNER:
            raise ValueError("Invitations cannot grant the owner role")
        return v
