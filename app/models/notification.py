from sqlalchemy import Column, String, Text, Boolean, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship
import uuid
from app.database import Base
from app.models._clock import utcnow


class Notification(Base):
    __tablename__ = "notifications"
    __table_args__ = (Index("ix_notifications_user_unread", "user_id", "is_read", "created_at"),)

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(String(50), nullable=False)  # task_assigned, comment_mention
    message = Column(Text, nullable=False)
    is_read = Column(Boolean, default=False, nullable=False)
    # Sender summary
    sender_name = Column(String(255), nullable=True)
    sender_avatar_url = Column(String(500), nullable=True)
    # Related context
    project_id = Column(String(36), nullable=False)
    project_name = Column(String(255), nullable=False)
    task_id = Column(String(36), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    # Relationships
    user = relationship("User", back_populates="notifications")
