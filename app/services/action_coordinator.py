"""
User actions on the merged notification list.

Every action on a single item is guarded by a busy flag keyed by the item's
unified id: the flag is taken before the store write starts and released when
the write resolves, whatever the outcome. While an item is busy any further
action on it is a no-op. Mark-all-read is guarded by one coordinator-wide flag
instead, so per-item actions stay available during a bulk write.

Actions return True when a store write was issued and False when the call was a
no-op. Failed writes raise ActionFailedError to the caller and are also kept as
the item's last error until the next action on that item.

An invitation resolved here stays resolved for this coordinator until the live
feed drops it, so a stale snapshot never leads to a second accept or decline.
A write the store rejects because the invitation already left the pending
state (or is gone) is a no-op, not a failure.
"""
import logging
from typing import Awaitable, Callable, Dict, FrozenSet, Iterable, Optional, Set, Tuple, Type

from app.schemas.notification import UnifiedNotification
from app.schemas.invitation import InvitationRecord
from app.services.aggregator import NotificationAggregator
from app.services.errors import (
    ActionFailedError,
    InvitationStateError,
    NotAuthenticatedError,
    RecordNotFoundError,
)
from app.services.feed_normalizer import invitation_item_id
from app.services.identity import IdentityProvider, SessionIdentity
from app.services.store import CollaborationStore

logger = logging.getLogger(__name__)

BULK_KEY = "*"
# Store answers meaning the invitation was already handled elsewhere
ALREADY_RESOLVED: Tuple[Type[Exception], ...] = (InvitationStateError, RecordNotFoundError)


class ActionCoordinator:
    def __init__(self, store: CollaborationStore, aggregator: NotificationAggregator, identity: IdentityProvider):
        self._store = store
        self._aggregator = aggregator
        self._identity = identity
        self._busy: Set[str] = set()
        self._errors: Dict[str, ActionFailedError] = {}
        self._resolved: Set[str] = set()
        self._bulk_in_progress = False
        self._closed = False

    # State table

    def is_busy(self, item_id: str) -> bool:
        return item_id in self._busy

    @property
    def busy_ids(self) -> FrozenSet[str]:
        return frozenset(self._busy)

    @property
    def bulk_in_progress(self) -> bool:
        return self._bulk_in_progress

    def error_for(self, item_id: str) -> Optional[ActionFailedError]:
        return self._errors.get(item_id)

    @property
    def bulk_error(self) -> Optional[ActionFailedError]:
        return self._errors.get(BULK_KEY)

    def close(self) -> None:
        """Drop all action state. Writes still in flight finish without touching it."""
        self._closed = True
        self._busy.clear()
        self._errors.clear()
        self._resolved.clear()
        self._bulk_in_progress = False

    # Actions

    async def mark_read(self, item: UnifiedNotification) -> bool:
        if item.is_invite or self.is_busy(item.id) or self._closed:
            return False
        identity = self._require_identity()
        return await self._guarded(
            item.id,
            "mark_read",
            lambda: self._store.mark_notification_read(identity.user_id, item.source_id),
        )

    async def mark_all_read(self, items: Iterable[UnifiedNotification]) -> bool:
        ids = list(dict.fromkeys(item.source_id for item in items if not item.is_invite))
        if not ids or self._bulk_in_progress or self._closed:
            return False
        identity = self._require_identity()

        self._bulk_in_progress = True
        self._errors.pop(BULK_KEY, None)
        try:
            updated = await self._store.mark_notifications_read(identity.user_id, ids)
        except Exception as exc:
            error = ActionFailedError("mark_all_read", None, exc)
            logger.error(str(error), exc_info=True)
            if not self._closed:
                self._errors[BULK_KEY] = error
            raise error from exc
        finally:
            if not self._closed:
                self._bulk_in_progress = False
        logger.info(f"Marked {updated} of {len(ids)} notifications read for {identity.user_id}")
        return True

    async def accept_invitation(self, invitation_id: str) -> bool:
        invitation = self._held_invitation(invitation_id)
        if invitation is None:
            logger.info(f"Invitation {invitation_id} is no longer pending, nothing to accept")
            return False
        identity = self._require_identity()
        return await self._guarded(
            invitation_item_id(invitation_id),
            "accept_invitation",
            lambda: self._store.accept_invitation(invitation, identity),
            resolves=invitation_id,
        )

    async def decline_invitation(self, invitation_id: str) -> bool:
        invitation = self._held_invitation(invitation_id)
        if invitation is None:
            logger.info(f"Invitation {invitation_id} is no longer pending, nothing to decline")
            return False
        identity = self._require_identity()
        return await self._guarded(
            invitation_item_id(invitation_id),
            "decline_invitation",
            lambda: self._store.decline_invitation(invitation.id, identity),
            resolves=invitation_id,
        )

    def _held_invitation(self, invitation_id: str) -> Optional[InvitationRecord]:
        """The raw invitation from the live feed, unless this coordinator already resolved it."""
        # Forget resolutions the feed has caught up with
        self._resolved &= {inv.id for inv in self._aggregator.state.raw_invitations}
        if invitation_id in self._resolved:
            return None
        return self._aggregator.find_invitation(invitation_id)

    def _require_identity(self) -> SessionIdentity:
        identity = self._identity.current
        if identity is None:
            raise NotAuthenticatedError()
        return identity

    async def _guarded(
        self,
        item_id: str,
        action: str,
        write: Callable[[], Awaitable[None]],
        resolves: Optional[str] = None,
    ) -> bool:
        # Check-and-set happens before the first await, so two rapid calls
        # on the same item can never both reach the store
        if self._closed or item_id in self._busy:
            return False
        self._busy.add(item_id)
        self._errors.pop(item_id, None)

        error: Optional[ActionFailedError] = None
        issued = True
        try:
            await write()
        except Exception as exc:
            if resolves is None or not isinstance(exc, ALREADY_RESOLVED):
                error = ActionFailedError(action, item_id, exc)
                logger.error(str(error), exc_info=True)
                raise error from exc
            logger.info(f"{action} skipped for {item_id}: {exc}")
            issued = False
        finally:
            self._release(item_id, error, resolves)
        if issued:
            logger.info(f"{action} succeeded for {item_id}")
        return issued

    def _release(self, item_id: str, error: Optional[ActionFailedError], resolves: Optional[str]) -> None:
        if self._closed:
            return
        self._busy.discard(item_id)
        if error is not None:
            self._errors[item_id] = error
        elif resolves is not None:
            self._resolved.add(resolves)
