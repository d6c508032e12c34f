"""
SQLAlchemy-backed collaboration store.

Reads and writes run in the thread pool so the event loop only suspends while a
store round-trip is in flight. Every committed write publishes a change signal
for the collections it touched; live subscriptions listen for those signals and
re-run their query.
"""
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from app.config import settings
from app.database import SessionLocal
from app.models._clock import utcnow
from app.models.invitation import Invitation, InvitationStatus
from app.models.notification import Notification
from app.models.project import Project, ProjectMember, ProjectActivity
from app.models.user import User
from app.schemas.invitation import InvitationCreate, InvitationRecord
from app.schemas.notification import NotificationCreate, NotificationRecord
from app.services.errors import (
    InvitationRejectedError,
    InvitationStateError,
    PermissionDeniedError,
    RecordNotFoundError,
    StoreUnavailableError,
)
from app.services.identity import SessionIdentity
from app.utils.notification_helper import create_notification

logger = logging.getLogger(__name__)

NOTIFICATIONS = "notifications"
INVITATIONS = "invitations"
PROJECT_MEMBERS = "project_members"
PROJECT_ACTIVITY = "project_activity"

ChangeListener = Callable[[], None]


@dataclass(frozen=True)
class LiveQuery:
    """Description of a standing query: collection, owner scope, equality filters, ordering."""
    collection: str
    owner_id: Optional[str] = None
    filters: Tuple[Tuple[str, Any], ...] = ()
    order_by: Optional[str] = None
    descending: bool = True


def unread_notifications_query(user_id: str) -> LiveQuery:
    return LiveQuery(
        collection=NOTIFICATIONS,
        owner_id=user_id,
        filters=(("is_read", False),),
        order_by="created_at",
    )


def pending_invitations_query(email: str) -> LiveQuery:
    return LiveQuery(
        collection=INVITATIONS,
        filters=(("recipient_email", email.lower()), ("status", InvitationStatus.PENDING.value)),
    )


_COLLECTIONS = {
    NOTIFICATIONS: (Notification, NotificationRecord),
    INVITATIONS: (Invitation, InvitationRecord),
}


class CollaborationStore:
    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        self._session_factory = session_factory
        self._listeners: Dict[str, List[ChangeListener]] = defaultdict(list)

    # Change signals

    def listen(self, collection: str, listener: ChangeListener) -> Callable[[], None]:
        """Call `listener` after every committed write to `collection`. Returns the unlisten function."""
        self._listeners[collection].append(listener)

        def unlisten():
            if listener in self._listeners[collection]:
                self._listeners[collection].remove(listener)

        return unlisten

    def publish(self, *collections: str) -> None:
        for collection in collections:
            for listener in list(self._listeners[collection]):
                listener()

    async def _run(self, fn: Callable[..., Any], *args) -> Any:
        return await run_in_threadpool(self._in_session, fn, *args)

    def _in_session(self, fn: Callable[..., Any], *args) -> Any:
        db = self._session_factory()
        try:
            return fn(db, *args)
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error(f"Store operation {fn.__name__} failed: {exc}")
            raise StoreUnavailableError(str(exc)) from exc
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    # Reads

    async def fetch(self, query: LiveQuery) -> List[Any]:
        """Run a live query once and return the full matching set as records."""
        return await self._run(self._fetch, query)

    @staticmethod
    def _fetch(db: Session, query: LiveQuery) -> List[Any]:
        if query.collection not in _COLLECTIONS:
            raise ValueError(f"Unknown collection: {query.collection}")
        model, record_cls = _COLLECTIONS[query.collection]
        q = db.query(model)
        if query.owner_id is not None:
            q = q.filter(model.user_id == query.owner_id)
        for field, value in query.filters:
            q = q.filter(getattr(model, field) == value)
        if query.order_by:
            column = getattr(model, query.order_by)
            q = q.order_by(column.desc() if query.descending else column.asc())
        return [record_cls.from_model(row) for row in q.all()]

    # Notification writes

    async def mark_notification_read(self, user_id: str, notification_id: str) -> None:
        await self._run(self._mark_read, user_id, [notification_id], True)
        self.publish(NOTIFICATIONS)

    async def mark_notifications_read(self, user_id: str, notification_ids: Iterable[str]) -> int:
        """Mark a batch of the user's notifications read in one transaction. Unknown ids are skipped."""
        ids = list(notification_ids)
        if not ids:
            return 0
        updated = await self._run(self._mark_read, user_id, ids, False)
        self.publish(NOTIFICATIONS)
        return updated

    @staticmethod
    def _mark_read(db: Session, user_id: str, ids: List[str], strict: bool) -> int:
        rows = db.query(Notification).filter(
            Notification.user_id == user_id,
            Notification.id.in_(ids)
        ).all()
        if strict and not rows:
            raise RecordNotFoundError(NOTIFICATIONS, ids[0])
        for row in rows:
            row.is_read = True
        db.commit()
        return len(rows)

    async def send_notification(self, payload: NotificationCreate) -> Optional[NotificationRecord]:
        record = await self._run(self._send_notification, payload)
        if record is not None:
            self.publish(NOTIFICATIONS)
        return record

    @staticmethod
    def _send_notification(db: Session, payload: NotificationCreate) -> Optional[NotificationRecord]:
        notif = create_notification(
            db,
            user_id=payload.user_id,
            kind=payload.kind,
            message=payload.message,
            related=payload.related,
            sender=payload.sender,
        )
        return NotificationRecord.from_model(notif) if notif else None

    # Invitation writes

    async def accept_invitation(self, invitation: InvitationRecord, identity: SessionIdentity) -> None:
        """Accept a pending invitation and provision the project membership as one transaction."""
        await self._run(self._accept_invitation, invitation.id, identity)
        self.publish(INVITATIONS, PROJECT_MEMBERS, PROJECT_ACTIVITY)

    @staticmethod
    def _accept_invitation(db: Session, invitation_id: str, identity: SessionIdentity) -> None:
        inv = _pending_invitation_for(db, invitation_id, identity)

        member = db.query(ProjectMember).filter(
            ProjectMember.project_id == inv.project_id,
            ProjectMember.user_id == identity.user_id
        ).first()
        if member is None:
            db.add(ProjectMember(project_id=inv.project_id, user_id=identity.user_id, role=inv.role))

        inv.status = InvitationStatus.ACCEPTED.value
        inv.responded_at = utcnow()

        inviter = inv.inviter_name or settings.INVITE_SENDER_FALLBACK
        newcomer = identity.display_name or identity.email or identity.user_id
        db.add(ProjectActivity(
            project_id=inv.project_id,
            type="member_added",
            message=f"{inviter} added {newcomer} to the project.",
            user_id=identity.user_id,
            user_name=identity.display_name,
        ))
        db.commit()

    async def decline_invitation(self, invitation_id: str, identity: Optional[SessionIdentity] = None) -> None:
        await self._run(self._decline_invitation, invitation_id, identity)
        self.publish(INVITATIONS)

    @staticmethod
    def _decline_invitation(db: Session, invitation_id: str, identity: Optional[SessionIdentity]) -> None:
        inv = _pending_invitation_for(db, invitation_id, identity)
        inv.status = InvitationStatus.DECLINED.value
        inv.responded_at = utcnow()
        db.commit()

    async def send_invitation(self, inviter: SessionIdentity, payload: InvitationCreate) -> InvitationRecord:
        record = await self._run(self._send_invitation, inviter, payload)
        self.publish(INVITATIONS)
        return record

    @staticmethod
    def _send_invitation(db: Session, inviter: SessionIdentity, payload: InvitationCreate) -> InvitationRecord:
        recipient_email = str(payload.recipient_email).lower()
        if inviter.email and inviter.email.lower() == recipient_email:
            raise InvitationRejectedError("You cannot invite yourself.")

        project = db.query(Project).filter(Project.id == payload.project_id).first()
        if not project:
            raise RecordNotFoundError("projects", payload.project_id)
        if not _is_member(db, project.id, inviter.user_id):
            raise PermissionDeniedError("Only project members can send invitations")

        recipient = db.query(User).filter(User.email == recipient_email).first()
        if not recipient:
            raise InvitationRejectedError(f'User with e-mail "{recipient_email}" not found.')
        if _is_member(db, project.id, recipient.id):
            raise InvitationRejectedError("This user is already a member of the project.")

        existing = db.query(Invitation).filter(
            Invitation.project_id == project.id,
            Invitation.recipient_email == recipient_email,
            Invitation.status == InvitationStatus.PENDING.value
        ).first()
        if existing:
            raise InvitationRejectedError("An invitation was already sent to this e-mail address.")

        inv = Invitation(
            project_id=project.id,
            project_name=project.name,
            recipient_email=recipient_email,
            role=payload.role.value,
            status=InvitationStatus.PENDING.value,
            inviter_id=inviter.user_id,
            inviter_name=inviter.display_name,
        )
        db.add(inv)
        db.commit()
        db.refresh(inv)
        return InvitationRecord.from_model(inv)

    async def cancel_invitation(self, invitation_id: str, identity: SessionIdentity) -> None:
        await self._run(self._cancel_invitation, invitation_id, identity)
        self.publish(INVITATIONS)

    @staticmethod
    def _cancel_invitation(db: Session, invitation_id: str, identity: SessionIdentity) -> None:
        inv = db.query(Invitation).filter(Invitation.id == invitation_id).first()
        if not inv:
            raise RecordNotFoundError(INVITATIONS, invitation_id)
        if not _is_member(db, inv.project_id, identity.user_id):
            raise PermissionDeniedError("Only project members can cancel invitations")
        if inv.status != InvitationStatus.PENDING.value:
            raise InvitationStateError(f"Invitation {invitation_id} is already {inv.status}")
        db.delete(inv)
        db.commit()


def _is_member(db: Session, project_id: str, user_id: str) -> bool:
    return db.query(ProjectMember).filter(
        ProjectMember.project_id == project_id,
        ProjectMember.user_id == user_id
    ).first() is not None


def _pending_invitation_for(db: Session, invitation_id: str, identity: Optional[SessionIdentity]) -> Invitation:
    inv = db.query(Invitation).filter(Invitation.id == invitation_id).first()
    if not inv:
        raise RecordNotFoundError(INVITATIONS, invitation_id)
    if identity is not None and (identity.email or "").lower() != inv.recipient_email.lower():
        raise PermissionDeniedError("Invitation is addressed to another user")
    if inv.status != InvitationStatus.PENDING.value:
        raise InvitationStateError(f"Invitation {invitation_id} is already {inv.status}")
    return inv
