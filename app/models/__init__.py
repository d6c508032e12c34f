from app.models.user import User
from app.models.project import Project, ProjectMember, ProjectActivity, MemberRole
from app.models.notification import Notification
from app.models.invitation import Invitation, InvitationStatus

__all__ = [
    "User",
    "Project",
    "ProjectMember",
    "ProjectActivity",
    "MemberRole",
    "Notification",
    "Invitation",
    "InvitationStatus",
]
