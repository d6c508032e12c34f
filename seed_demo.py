"""
Script to seed a local database with two users, a shared project, a task
notification and a pending invitation, so the notification feed has data
"""
import sys
from app.database import SessionLocal
from app.models.user import User
from app.models.project import Project, ProjectMember, MemberRole
from app.models.invitation import Invitation, InvitationStatus
from app.schemas.notification import NotificationType, RelatedContext, SenderSummary
from app.utils.notification_helper import create_notification
from app.utils.security import get_password_hash

DEMO_PASSWORD = "demo1234"


def get_or_create_user(db, name: str, email: str) -> User:
    user = db.query(User).filter(User.email == email).first()
    if user:
        return user
    user = User(name=name, email=email, password_hash=get_password_hash(DEMO_PASSWORD))
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def seed_demo():
    """Create demo data; safe to run more than once"""
    db = SessionLocal()
    try:
        alice = get_or_create_user(db, "Alice", "alice@example.com")
        bob = get_or_create_user(db, "Bob", "bob@example.com")

        project = db.query(Project).filter(Project.name == "Alpha", Project.owner_id == alice.id).first()
        if not project:
            project = Project(name="Alpha", description="Demo project", owner_id=alice.id)
            db.add(project)
            db.commit()
            db.refresh(project)
            db.add(ProjectMember(project_id=project.id, user_id=alice.id, role=MemberRole.OWNER.value))
            db.commit()

        create_notification(
            db,
            user_id=alice.id,
            kind=NotificationType.TASK_ASSIGNED,
            message="You were assigned to \"Write the onboarding guide\"",
            related=RelatedContext(project_id=project.id, project_name=project.name),
            sender=SenderSummary(name=bob.name),
        )

        pending = db.query(Invitation).filter(
            Invitation.project_id == project.id,
            Invitation.recipient_email == bob.email,
            Invitation.status == InvitationStatus.PENDING.value
        ).first()
        if not pending:
            db.add(Invitation(
                project_id=project.id,
                project_name=project.name,
                recipient_email=bob.email,
                role=MemberRole.EDITOR.value,
                inviter_id=alice.id,
                inviter_name=alice.name,
            ))
            db.commit()

        print("[SUCCESS] Demo data ready")
        print(f"   Users: {alice.email}, {bob.email} (password: {DEMO_PASSWORD})")
        print(f"   Project: {project.name} ({project.id})")
        return True
    except Exception as e:
        db.rollback()
        print(f"[ERROR] Could not seed demo data: {e}")
        return False
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(0 if seed_demo() else 1)
