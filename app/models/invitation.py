from sqlalchemy import Column, String, DateTime, ForeignKey, Index
import uuid
import enum
from app.database import Base
from app.models._clock import utcnow
from app.models.project import MemberRole


class InvitationStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"


class Invitation(Base):
    __tablename__ = "invitations"
    __table_args__ = (Index("ix_invitations_recipient_status", "recipient_email", "status"),)

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    project_id = Column(String(36), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    project_name = Column(String(255), nullable=False)
    recipient_email = Column(String(255), nullable=False)
    role = Column(String(20), nullable=False, default=MemberRole.VIEWER.value)
    status = Column(String(20), nullable=False, default=InvitationStatus.PENDING.value)
    # Inviter summary
    inviter_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    inviter_name = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    responded_at = Column(DateTime, nullable=True)
