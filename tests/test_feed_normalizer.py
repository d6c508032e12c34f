"""Tests for converting feed records into unified notification items."""

import pytest
from pydantic import ValidationError

from app.models.invitation import InvitationStatus
from app.schemas.invitation import InvitationRecord
from app.schemas.notification import NotificationRecord, NotificationType
from app.services.feed_normalizer import (
    invitation_item_id,
    normalize,
    normalize_invitation,
    normalize_notification,
    notification_item_id,
    parse_feed_record,
)
from tests.fakes import T0, make_invitation, make_notification


class TestNotificationItems:

    def test_keeps_kind_and_read_flag(self):
        record = make_notification("n1", kind=NotificationType.COMMENT_MENTION)
        item = normalize_notification(record)
        assert item.id == "notification:n1"
        assert item.source_id == "n1"
        assert item.kind == NotificationType.COMMENT_MENTION
        assert item.is_read is False
        assert item.invitation_id is None
        assert item.related.task_id == "t-1"
        assert not item.is_invite

    def test_project_invite_is_not_a_stored_kind(self):
        with pytest.raises(ValidationError):
            make_notification("n1", kind=NotificationType.PROJECT_INVITE)


class TestInvitationItems:

    def test_synthesizes_message_and_routes_to_invitation(self):
        item = normalize_invitation(make_invitation("i1", inviter_name="Carol", project_name="Alpha"))
        assert item.id == "invitation:i1"
        assert item.kind == NotificationType.PROJECT_INVITE
        assert item.message == "Carol invited you to project Alpha"
        assert item.is_read is False
        assert item.invitation_id == "i1"
        assert item.sender.name == "Carol"
        assert item.related.project_name == "Alpha"
        assert item.related.task_id is None
        assert item.is_invite

    @pytest.mark.parametrize("name", [None, ""])
    def test_missing_inviter_name_uses_placeholder(self, name):
        item = normalize_invitation(make_invitation("i1", inviter_name=name))
        assert item.message == "Someone invited you to project Alpha"
        assert item.sender.name == "Someone"

    def test_custom_placeholder(self):
        item = normalize_invitation(make_invitation("i1", inviter_name=None), fallback="A teammate")
        assert item.message.startswith("A teammate invited you")

    @pytest.mark.parametrize("status", [InvitationStatus.ACCEPTED, InvitationStatus.DECLINED])
    def test_rejects_resolved_invitations(self, status):
        with pytest.raises(ValueError):
            normalize_invitation(make_invitation("i1", status=status))


class TestTaggedRecords:

    def test_same_raw_id_gives_distinct_identities(self):
        assert notification_item_id("x") != invitation_item_id("x")
        a = normalize(make_notification("x"))
        b = normalize(make_invitation("x"))
        assert a.id != b.id

    def test_parse_picks_variant_from_source_tag(self):
        notification = parse_feed_record({
            "source": "notification",
            "id": "n1",
            "user_id": "u1",
            "kind": "task_assigned",
            "message": "hi",
            "created_at": T0.isoformat(),
            "related": {"project_id": "p1", "project_name": "Alpha"},
        })
        invitation = parse_feed_record({
            "source": "invitation",
            "id": "i1",
            "project_id": "p1",
            "project_name": "Alpha",
            "recipient_email": "a@example.com",
            "inviter": {"uid": "u2", "name": None},
            "created_at": T0.isoformat(),
        })
        assert isinstance(notification, NotificationRecord)
        assert isinstance(invitation, InvitationRecord)
        assert invitation.status == InvitationStatus.PENDING
        assert normalize(invitation).message == "Someone invited you to project Alpha"

    def test_unknown_source_tag_is_rejected(self):
        with pytest.raises(ValidationError):
            parse_feed_record({"source": "comment", "id": "c1"})
