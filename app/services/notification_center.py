"""
Per-session notification engine and the process-wide registry of sessions.
"""
import asyncio
import logging
import time
from typing import Any, Callable, Dict, List, Optional

from app.config import settings
from app.services.action_coordinator import ActionCoordinator
from app.services.aggregator import FeedState, NotificationAggregator
from app.services.identity import IdentityProvider, SessionIdentity
from app.services.store import CollaborationStore

logger = logging.getLogger(__name__)


class NotificationCenter:
    """One aggregator plus the action coordinator that acts on its items."""

    def __init__(
        self,
        store: CollaborationStore,
        identity: IdentityProvider,
        refresh_seconds: Optional[float] = None,
        sender_fallback: Optional[str] = None,
    ):
        self.identity = identity
        self.aggregator = NotificationAggregator(
            store,
            identity,
            refresh_seconds=refresh_seconds,
            sender_fallback=sender_fallback,
        )
        self.coordinator = ActionCoordinator(store, self.aggregator, identity)

    @property
    def state(self) -> FeedState:
        return self.aggregator.state

    @property
    def closed(self) -> bool:
        return self.aggregator.closed

    def open(self) -> "NotificationCenter":
        self.aggregator.start()
        return self

    def close(self) -> None:
        self.coordinator.close()
        self.aggregator.close()

    async def wait_ready(self, timeout: Optional[float] = None) -> FeedState:
        return await self.aggregator.wait_ready(timeout)

    async def refresh(self) -> FeedState:
        return await self.aggregator.refresh()

    async def mark_read(self, item_id: str) -> bool:
        item = self.aggregator.find_item(item_id)
        if item is None:
            return False
        return await self.coordinator.mark_read(item)

    async def mark_all_read(self) -> bool:
        return await self.coordinator.mark_all_read(self.state.items)

    async def accept_invitation(self, invitation_id: str) -> bool:
        return await self.coordinator.accept_invitation(invitation_id)

    async def decline_invitation(self, invitation_id: str) -> bool:
        return await self.coordinator.decline_invitation(invitation_id)

    def is_busy(self, item_id: str) -> bool:
        return self.coordinator.is_busy(item_id)

    def to_dict(self) -> Dict[str, Any]:
        """Shape the feed for API responses: items, count, loading, error, busy."""
        state = self.state
        return {
            "items": [item.model_dump(mode="json") for item in state.items],
            "count": state.count,
            "loading": state.loading,
            "error": str(state.error) if state.error else None,
            "busy": sorted(self.coordinator.busy_ids),
            "bulkInProgress": self.coordinator.bulk_in_progress,
        }


class NotificationHub:
    """Keeps one open NotificationCenter per signed-in user.

    A center is closed on sign-out, at shutdown, or once it has gone
    `idle_seconds` without a request while no stream is attached to it.
    """

    def __init__(
        self,
        store: CollaborationStore,
        refresh_seconds: Optional[float] = None,
        sender_fallback: Optional[str] = None,
        idle_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self._refresh_seconds = (
            settings.SUBSCRIPTION_REFRESH_SECONDS if refresh_seconds is None else refresh_seconds
        )
        self._sender_fallback = sender_fallback
        self._idle_seconds = settings.CENTER_IDLE_SECONDS if idle_seconds is None else idle_seconds
        self._clock = clock
        self._centers: Dict[str, NotificationCenter] = {}
        self._last_seen: Dict[str, float] = {}
        self._streams: Dict[str, int] = {}
        self._sweeper: Optional[asyncio.Task] = None

    def __len__(self) -> int:
        return len(self._centers)

    def get(self, user_id: str) -> Optional[NotificationCenter]:
        return self._centers.get(user_id)

    def center_for(self, identity: SessionIdentity) -> NotificationCenter:
        self._last_seen[identity.user_id] = self._clock()
        center = self._centers.get(identity.user_id)
        if center is not None and not center.closed:
            # Email or display name may have changed since the center was opened
            center.identity.resolve(identity)
            return center

        center = NotificationCenter(
            self.store,
            IdentityProvider(identity),
            refresh_seconds=self._refresh_seconds,
            sender_fallback=self._sender_fallback,
        ).open()
        self._centers[identity.user_id] = center
        logger.info(f"Notification center opened for {identity.user_id}")
        return center

    def attach_stream(self, user_id: str) -> None:
        self._streams[user_id] = self._streams.get(user_id, 0) + 1

    def detach_stream(self, user_id: str) -> None:
        remaining = self._streams.get(user_id, 0) - 1
        if remaining > 0:
            self._streams[user_id] = remaining
        else:
            self._streams.pop(user_id, None)
        if user_id in self._centers:
            self._last_seen[user_id] = self._clock()

    def sign_out(self, user_id: str) -> None:
        self._last_seen.pop(user_id, None)
        center = self._centers.pop(user_id, None)
        if center is None:
            return
        center.identity.sign_out()
        center.close()
        logger.info(f"Notification center closed for {user_id}")

    def evict_idle(self) -> List[str]:
        """Close every idle center without an attached stream. Returns the evicted user ids."""
        if not self._idle_seconds:
            return []
        cutoff = self._clock() - self._idle_seconds
        idle = [
            user_id for user_id in self._centers
            if not self._streams.get(user_id) and self._last_seen.get(user_id, 0) <= cutoff
        ]
        for user_id in idle:
            logger.info(f"Notification center for {user_id} idle, closing")
            self.sign_out(user_id)
        return idle

    def start_sweeper(self, interval: Optional[float] = None) -> None:
        interval = settings.CENTER_SWEEP_SECONDS if interval is None else interval
        if self._sweeper is not None or not self._idle_seconds or not interval:
            return
        self._sweeper = asyncio.get_running_loop().create_task(self._sweep(interval), name="notification-hub-sweep")

    async def _sweep(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                self.evict_idle()
            except Exception:
                logger.exception("Idle center sweep failed")

    def close_all(self) -> None:
        if self._sweeper is not None:
            self._sweeper.cancel()
            self._sweeper = None
        for user_id in list(self._centers):
            self.sign_out(user_id)
