"""Tests for the SQLAlchemy collaboration store."""
from datetime import datetime, timedelta

import pytest

from app.models import Invitation, InvitationStatus, Notification, Project, ProjectActivity, ProjectMember, User
from app.models.project import MemberRole
from app.schemas.invitation import InvitationCreate
from app.schemas.notification import NotificationCreate, NotificationType, RelatedContext, SenderSummary
from app.services.action_coordinator import ActionCoordinator
from app.services.aggregator import NotificationAggregator
from app.services.errors import (
    InvitationRejectedError,
    InvitationStateError,
    PermissionDeniedError,
    RecordNotFoundError,
)
from app.services.identity import IdentityProvider, SessionIdentity
from app.services.store import (
    INVITATIONS,
    NOTIFICATIONS,
    PROJECT_ACTIVITY,
    PROJECT_MEMBERS,
    CollaborationStore,
    pending_invitations_query,
    unread_notifications_query,
)

T0 = datetime(2026, 3, 1, 12, 0, 0)

ALICE = SessionIdentity(user_id="alice", email="alice@example.com", display_name="Alice")
BOB = SessionIdentity(user_id="bob", email="bob@example.com", display_name="Bob")
CAROL = SessionIdentity(user_id="carol", email="carol@example.com", display_name="Carol")


@pytest.fixture
def db(session_factory):
    session = session_factory()
    for who in (ALICE, BOB, CAROL):
        session.add(User(id=who.user_id, name=who.display_name, email=who.email, password_hash="x"))
    session.add(Project(id="p1", name="Alpha", owner_id=CAROL.user_id))
    session.add(ProjectMember(project_id="p1", user_id=CAROL.user_id, role=MemberRole.OWNER.value))
    session.commit()
    yield session
    session.close()


@pytest.fixture
def store(session_factory, db):
    return CollaborationStore(session_factory)


def add_notification(db, id, user_id=ALICE.user_id, minutes=0, is_read=False):
    db.add(Notification(
        id=id,
        user_id=user_id,
        type=NotificationType.TASK_ASSIGNED.value,
        message=f"Task {id} assigned",
        is_read=is_read,
        sender_name="Carol",
        project_id="p1",
        project_name="Alpha",
        task_id="t1",
        created_at=T0 + timedelta(minutes=minutes),
    ))
    db.commit()


def add_invitation(db, id, email=ALICE.email, status=InvitationStatus.PENDING, minutes=0):
    db.add(Invitation(
        id=id,
        project_id="p1",
        project_name="Alpha",
        recipient_email=email,
        role=MemberRole.EDITOR.value,
        status=status.value,
        inviter_id=CAROL.user_id,
        inviter_name="Carol",
        created_at=T0 + timedelta(minutes=minutes),
    ))
    db.commit()


def recorder(store, *collections):
    fired = []
    for collection in collections:
        store.listen(collection, lambda c=collection: fired.append(c))
    return fired


class TestFetch:

    async def test_unread_notifications_newest_first(self, store, db):
        add_notification(db, "n1", minutes=1)
        add_notification(db, "n2", minutes=5)
        add_notification(db, "n3", minutes=3, is_read=True)
        add_notification(db, "n4", user_id=BOB.user_id)

        records = await store.fetch(unread_notifications_query(ALICE.user_id))
        assert [r.id for r in records] == ["n2", "n1"]
        assert records[0].sender.name == "Carol"
        assert records[0].related.task_id == "t1"

    async def test_pending_invitations_match_email_case_insensitively(self, store, db):
        add_invitation(db, "i1")
        add_invitation(db, "i2", status=InvitationStatus.ACCEPTED)
        add_invitation(db, "i3", email=BOB.email)

        records = await store.fetch(pending_invitations_query("Alice@Example.com"))
        assert [r.id for r in records] == ["i1"]
        assert records[0].inviter.uid == CAROL.user_id
        assert records[0].role == MemberRole.EDITOR


class TestMarkRead:

    async def test_mark_one(self, store, db):
        add_notification(db, "n1")
        fired = recorder(store, NOTIFICATIONS)
        await store.mark_notification_read(ALICE.user_id, "n1")
        assert await store.fetch(unread_notifications_query(ALICE.user_id)) == []
        assert fired == [NOTIFICATIONS]

    async def test_other_users_notification_not_found(self, store, db):
        add_notification(db, "n1", user_id=BOB.user_id)
        with pytest.raises(RecordNotFoundError):
            await store.mark_notification_read(ALICE.user_id, "n1")

    async def test_batch_skips_unknown_ids(self, store, db):
        add_notification(db, "n1")
        add_notification(db, "n2")
        add_notification(db, "n3", user_id=BOB.user_id)
        updated = await store.mark_notifications_read(ALICE.user_id, ["n1", "n2", "n3", "missing"])
        assert updated == 2
        assert await store.fetch(unread_notifications_query(ALICE.user_id)) == []
        assert len(await store.fetch(unread_notifications_query(BOB.user_id))) == 1

    async def test_empty_batch_is_a_noop(self, store, db):
        fired = recorder(store, NOTIFICATIONS)
        assert await store.mark_notifications_read(ALICE.user_id, []) == 0
        assert fired == []


class TestSendNotification:

    async def test_creates_unread_notification(self, store, db):
        record = await store.send_notification(NotificationCreate(
            user_id=ALICE.user_id,
            kind=NotificationType.COMMENT_MENTION,
            message="Carol mentioned you",
            related=RelatedContext(project_id="p1", project_name="Alpha"),
            sender=SenderSummary(name="Carol"),
        ))
        assert record.kind == NotificationType.COMMENT_MENTION
        assert record.is_read is False
        records = await store.fetch(unread_notifications_query(ALICE.user_id))
        assert [r.id for r in records] == [record.id]

    async def test_empty_recipient_creates_nothing(self, store, db):
        fired = recorder(store, NOTIFICATIONS)
        record = await store.send_notification(NotificationCreate(
            user_id="",
            kind=NotificationType.TASK_ASSIGNED,
            message="Nobody",
            related=RelatedContext(project_id="p1", project_name="Alpha"),
        ))
        assert record is None
        assert fired == []


class TestAcceptInvitation:

    async def test_accept_provisions_membership(self, store, db, session_factory):
        add_invitation(db, "i1")
        [invitation] = await store.fetch(pending_invitations_query(ALICE.email))
        fired = recorder(store, INVITATIONS, PROJECT_MEMBERS, PROJECT_ACTIVITY)

        await store.accept_invitation(invitation, ALICE)

        check = session_factory()
        try:
            inv = check.query(Invitation).filter(Invitation.id == "i1").one()
            assert inv.status == InvitationStatus.ACCEPTED.value
            assert inv.responded_at is not None
            member = check.query(ProjectMember).filter(
                ProjectMember.project_id == "p1", ProjectMember.user_id == ALICE.user_id
            ).one()
            assert member.role == MemberRole.EDITOR.value
            activity = check.query(ProjectActivity).filter(ProjectActivity.project_id == "p1").one()
            assert activity.type == "member_added"
            assert "Alice" in activity.message
        finally:
            check.close()
        assert fired == [INVITATIONS, PROJECT_MEMBERS, PROJECT_ACTIVITY]
        assert await store.fetch(pending_invitations_query(ALICE.email)) == []

    async def test_accept_twice_conflicts(self, store, db):
        add_invitation(db, "i1")
        [invitation] = await store.fetch(pending_invitations_query(ALICE.email))
        await store.accept_invitation(invitation, ALICE)
        with pytest.raises(InvitationStateError):
            await store.accept_invitation(invitation, ALICE)

    async def test_accept_by_other_user_denied(self, store, db):
        add_invitation(db, "i1")
        [invitation] = await store.fetch(pending_invitations_query(ALICE.email))
        with pytest.raises(PermissionDeniedError):
            await store.accept_invitation(invitation, BOB)

    async def test_decline(self, store, db):
        add_invitation(db, "i1")
        await store.decline_invitation("i1", ALICE)
        assert await store.fetch(pending_invitations_query(ALICE.email)) == []
        with pytest.raises(InvitationStateError):
            await store.decline_invitation("i1", ALICE)

    async def test_decline_unknown(self, store, db):
        with pytest.raises(RecordNotFoundError):
            await store.decline_invitation("missing", ALICE)


class TestSendInvitation:

    async def test_member_invites_user(self, store, db):
        fired = recorder(store, INVITATIONS)
        record = await store.send_invitation(
            CAROL, InvitationCreate(project_id="p1", recipient_email="ALICE@example.com", role=MemberRole.EDITOR)
        )
        assert record.recipient_email == ALICE.email
        assert record.status == InvitationStatus.PENDING
        assert record.inviter.name == "Carol"
        assert fired == [INVITATIONS]

    @pytest.mark.parametrize("inviter, email", [
        (CAROL, CAROL.email),
        (CAROL, "stranger@example.com"),
    ])
    async def test_rejected_recipients(self, store, db, inviter, email):
        with pytest.raises(InvitationRejectedError):
            await store.send_invitation(inviter, InvitationCreate(project_id="p1", recipient_email=email))

    async def test_duplicate_pending_rejected(self, store, db):
        add_invitation(db, "i1")
        with pytest.raises(InvitationRejectedError):
            await store.send_invitation(CAROL, InvitationCreate(project_id="p1", recipient_email=ALICE.email))

    async def test_existing_member_rejected(self, store, db):
        db.add(ProjectMember(project_id="p1", user_id=BOB.user_id))
        db.commit()
        with pytest.raises(InvitationRejectedError):
            await store.send_invitation(CAROL, InvitationCreate(project_id="p1", recipient_email=BOB.email))

    async def test_non_member_denied(self, store, db):
        with pytest.raises(PermissionDeniedError):
            await store.send_invitation(BOB, InvitationCreate(project_id="p1", recipient_email=ALICE.email))

    async def test_unknown_project(self, store, db):
        with pytest.raises(RecordNotFoundError):
            await store.send_invitation(CAROL, InvitationCreate(project_id="nope", recipient_email=ALICE.email))

    async def test_cancel_pending_invitation(self, store, db):
        add_invitation(db, "i1")
        with pytest.raises(PermissionDeniedError):
            await store.cancel_invitation("i1", BOB)
        await store.cancel_invitation("i1", CAROL)
        assert await store.fetch(pending_invitations_query(ALICE.email)) == []


class TestLiveFeed:

    async def test_accepted_invitation_leaves_the_feed(self, store, db):
        add_notification(db, "n1", minutes=20)
        add_invitation(db, "i1", minutes=10)
        agg = NotificationAggregator(store, IdentityProvider(ALICE))
        agg.start()
        try:
            state = await agg.wait_ready(timeout=5)
            assert [item.id for item in state.items] == ["notification:n1", "invitation:i1"]
            assert state.items[1].message == "Carol invited you to project Alpha"

            await store.accept_invitation(agg.find_invitation("i1"), ALICE)
            state = await agg.refresh()
            assert [item.id for item in state.items] == ["notification:n1"]
        finally:
            agg.close()

    async def test_repeated_actions_after_accept_are_noops(self, store, db):
        add_invitation(db, "i1")
        identity = IdentityProvider(ALICE)
        agg = NotificationAggregator(store, identity)
        agg.start()
        coordinator = ActionCoordinator(store, agg, identity)
        try:
            await agg.wait_ready(timeout=5)
            assert await coordinator.accept_invitation("i1") is True
            assert await coordinator.accept_invitation("i1") is False
            assert await coordinator.decline_invitation("i1") is False
            assert coordinator.error_for("invitation:i1") is None
            assert (await agg.refresh()).count == 0
        finally:
            coordinator.close()
            agg.close()

    async def test_decline_after_another_process_accepted(self, store, db, session_factory):
        add_invitation(db, "i1")
        identity = IdentityProvider(ALICE)
        agg = NotificationAggregator(store, identity)
        agg.start()
        coordinator = ActionCoordinator(store, agg, identity)
        try:
            await agg.wait_ready(timeout=5)
            # A second store instance stands in for another worker; its writes do
            # not signal this process's subscriptions
            other = CollaborationStore(session_factory)
            await other.accept_invitation(agg.find_invitation("i1"), ALICE)
            assert agg.find_invitation("i1") is not None

            assert await coordinator.decline_invitation("i1") is False
            assert coordinator.error_for("invitation:i1") is None
            assert not coordinator.is_busy("invitation:i1")
        finally:
            coordinator.close()
            agg.close()
