"""
Merge the notification and invitation feeds into one ordered list.

The aggregator owns one SubscriptionSource per feed and rebuilds its FeedState
from the latest snapshot of each source every time either one emits. Sources
are rebuilt whenever the identity changes and torn down on sign-out or close.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from functools import partial
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from app.config import settings
from app.models.invitation import InvitationStatus
from app.schemas.invitation import InvitationRecord
from app.schemas.notification import NotificationRecord, UnifiedNotification
from app.services.errors import SubscriptionError
from app.services.feed_normalizer import normalize_invitation, normalize_notification
from app.services.identity import IdentityProvider, SessionIdentity
from app.services.store import CollaborationStore, pending_invitations_query, unread_notifications_query
from app.services.subscriptions import SourceUpdate, SubscriptionSource

logger = logging.getLogger(__name__)

NOTIFICATION_FEED = "notifications"
INVITATION_FEED = "invitations"
# Registration order; also the tie-break order for equal timestamps and the
# precedence order for simultaneous errors
FEED_ORDER = (NOTIFICATION_FEED, INVITATION_FEED)


@dataclass
class SourceState:
    records: Tuple = ()
    delivered: bool = False
    error: Optional[SubscriptionError] = None
    version: int = 0


@dataclass(frozen=True)
class FeedState:
    items: Tuple[UnifiedNotification, ...] = ()
    loading: bool = True
    error: Optional[SubscriptionError] = None
    raw_invitations: Tuple[InvitationRecord, ...] = field(default=())

    @property
    def count(self) -> int:
        return len(self.items)


FeedListener = Callable[[FeedState], None]


def merge_feeds(
    notifications: Iterable[NotificationRecord],
    invitations: Iterable[InvitationRecord],
    fallback: Optional[str] = None,
) -> Tuple[UnifiedNotification, ...]:
    """Normalize both feeds and order them newest first.

    The sort is stable, so equal timestamps keep registration order
    (notifications before invitations). Duplicate identities keep the first
    occurrence.
    """
    combined: List[UnifiedNotification] = []
    seen = set()
    candidates = [normalize_notification(n) for n in notifications]
    candidates += [normalize_invitation(i, fallback) for i in invitations]
    for item in candidates:
        if item.id in seen:
            continue
        seen.add(item.id)
        combined.append(item)
    combined.sort(key=lambda item: item.created_at, reverse=True)
    return tuple(combined)


def build_feed_state(
    identity_resolved: bool,
    sources: Dict[str, SourceState],
    fallback: Optional[str] = None,
) -> FeedState:
    notifications = sources[NOTIFICATION_FEED]
    invitations = sources[INVITATION_FEED]
    pending = tuple(i for i in invitations.records if i.status == InvitationStatus.PENDING)
    if len(pending) != len(invitations.records):
        logger.warning("Dropped non-pending invitations from the invitation feed")

    error = None
    for name in FEED_ORDER:
        if sources[name].error is not None:
            error = sources[name].error
            break

    return FeedState(
        items=merge_feeds(notifications.records, pending, fallback),
        loading=not identity_resolved or not all(s.delivered for s in sources.values()),
        error=error,
        raw_invitations=pending,
    )


class NotificationAggregator:
    def __init__(
        self,
        store: CollaborationStore,
        identity: IdentityProvider,
        refresh_seconds: Optional[float] = None,
        sender_fallback: Optional[str] = None,
    ):
        self._store = store
        self._identity = identity
        self._refresh_seconds = refresh_seconds
        self._fallback = sender_fallback or settings.INVITE_SENDER_FALLBACK
        self._sources: Dict[str, SubscriptionSource] = {}
        self._source_states: Dict[str, SourceState] = {name: SourceState() for name in FEED_ORDER}
        self._state = FeedState()
        self._listeners: List[FeedListener] = []
        self._ready = asyncio.Event()
        self._generation = 0
        self._unsubscribe_identity: Optional[Callable[[], None]] = None
        self._started = False
        self._closed = False

    @property
    def state(self) -> FeedState:
        return self._state

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self) -> None:
        if self._started:
            return
        self._started = True
        self._unsubscribe_identity = self._identity.subscribe(self._bind)
        if self._identity.resolved:
            self._bind(self._identity.current)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._unsubscribe_identity is not None:
            self._unsubscribe_identity()
            self._unsubscribe_identity = None
        self._close_sources()
        self._listeners.clear()
        logger.info("Notification aggregation closed")

    def subscribe(self, listener: FeedListener) -> Callable[[], None]:
        """Call `listener` with the new FeedState after every recomputation."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def wait_ready(self, timeout: Optional[float] = None) -> FeedState:
        """Wait until every source has delivered its first snapshot (or error)."""
        await asyncio.wait_for(self._ready.wait(), timeout=timeout)
        return self._state

    async def refresh(self) -> FeedState:
        """Re-run both live queries and wait for their results to be merged."""
        await asyncio.gather(*(source.refresh() for source in list(self._sources.values())))
        return self._state

    def retry(self) -> None:
        for source in self._sources.values():
            source.retry()

    def find_invitation(self, invitation_id: str) -> Optional[InvitationRecord]:
        for invitation in self._state.raw_invitations:
            if invitation.id == invitation_id:
                return invitation
        return None

    def find_item(self, item_id: str) -> Optional[UnifiedNotification]:
        for item in self._state.items:
            if item.id == item_id:
                return item
        return None

    def _bind(self, identity: Optional[SessionIdentity]) -> None:
        if self._closed:
            return
        self._close_sources()
        self._generation += 1
        self._source_states = {name: SourceState() for name in FEED_ORDER}
        self._ready.clear()

        notifications_query = unread_notifications_query(identity.user_id) if identity else None
        invitations_query = pending_invitations_query(identity.email) if identity and identity.email else None
        queries = {NOTIFICATION_FEED: notifications_query, INVITATION_FEED: invitations_query}

        self._sources = {
            name: SubscriptionSource(
                name,
                self._store,
                queries[name],
                partial(self._on_update, self._generation),
                refresh_seconds=self._refresh_seconds,
            )
            for name in FEED_ORDER
        }
        logger.info(f"Notification feeds bound to {identity.user_id if identity else 'anonymous'}")
        self._recompute()
        for source in self._sources.values():
            source.open()

    def _close_sources(self) -> None:
        for source in self._sources.values():
            source.close()
        self._sources = {}

    def _on_update(self, generation: int, update: SourceUpdate) -> None:
        if self._closed or generation != self._generation:
            return
        state = self._source_states[update.source]
        state.delivered = True
        if update.error is not None:
            # A failing source contributes nothing until it recovers
            state.records = ()
            state.error = update.error
        else:
            state.records = update.snapshot.records
            state.version = update.snapshot.version
            state.error = None
        self._recompute()

    def _recompute(self) -> None:
        self._state = build_feed_state(self._identity.resolved, self._source_states, self._fallback)
        if self._state.loading:
            self._ready.clear()
        else:
            self._ready.set()
        logger.debug(
            f"Feed recomputed: {self._state.count} items, loading={self._state.loading}, "
            f"error={self._state.error}"
        )
        for listener in list(self._listeners):
            try:
                listener(self._state)
            except Exception:
                logger.exception("Feed listener failed")
