"""
Live subscriptions against the collaboration store.

A SubscriptionSource wraps one LiveQuery. While open it delivers the full
matching set (never a diff) every time the store signals a change to the
query's collection, tagged with a version counter that grows by one per
delivered snapshot. A source built without a query is inert: it delivers a
single empty snapshot and never touches the store.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional, Tuple

from app.services.errors import SubscriptionError
from app.services.store import CollaborationStore, LiveQuery

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Snapshot:
    records: Tuple[Any, ...]
    version: int


@dataclass(frozen=True)
class SourceUpdate:
    """One emission of a source: either a snapshot or an error."""
    source: str
    snapshot: Optional[Snapshot] = None
    error: Optional[SubscriptionError] = None


UpdateHandler = Callable[[SourceUpdate], None]


class SubscriptionSource:
    def __init__(
        self,
        name: str,
        store: CollaborationStore,
        query: Optional[LiveQuery],
        on_update: UpdateHandler,
        refresh_seconds: Optional[float] = None,
    ):
        self.name = name
        self.query = query
        self._store = store
        self._on_update = on_update
        self._refresh_seconds = refresh_seconds or None
        self._dirty = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self._unlisten: Optional[Callable[[], None]] = None
        self._opened = False
        self._closed = False
        self._version = 0
        # Fetches are numbered; a result older than the last delivered one is dropped
        self._tickets = 0
        self._delivered_ticket = 0

    @property
    def inert(self) -> bool:
        return self.query is None

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def version(self) -> int:
        return self._version

    def open(self) -> None:
        if self._opened:
            return
        self._opened = True
        if self.query is None:
            self._deliver(Snapshot(records=(), version=self._next_version()))
            return
        self._unlisten = self._store.listen(self.query.collection, self._dirty.set)
        self._task = asyncio.get_running_loop().create_task(self._run(), name=f"subscription:{self.name}")
        logger.debug(f"Subscription {self.name} opened on {self.query.collection}")

    def close(self) -> None:
        """Tear down the subscription. No emission happens after this returns."""
        if self._closed:
            return
        self._closed = True
        if self._unlisten is not None:
            self._unlisten()
            self._unlisten = None
        if self._task is not None:
            self._task.cancel()
            self._task = None
        logger.debug(f"Subscription {self.name} closed")

    def retry(self) -> None:
        """Re-run the query on the next loop iteration, e.g. after an error."""
        if not self._closed:
            self._dirty.set()

    async def refresh(self) -> None:
        """Re-run the query now and wait until its result has been delivered."""
        if not self._opened or self._closed or self.query is None:
            return
        await self._fetch_and_emit()

    async def _run(self) -> None:
        while not self._closed:
            self._dirty.clear()
            await self._fetch_and_emit()
            await self._wait_for_change()

    async def _wait_for_change(self) -> None:
        if self._refresh_seconds is None:
            await self._dirty.wait()
            return
        try:
            await asyncio.wait_for(self._dirty.wait(), timeout=self._refresh_seconds)
        except asyncio.TimeoutError:
            pass

    async def _fetch_and_emit(self) -> None:
        self._tickets += 1
        ticket = self._tickets
        try:
            records = await self._store.fetch(self.query)
        except Exception as exc:
            if self._is_stale(ticket):
                return
            self._delivered_ticket = ticket
            logger.warning(f"Subscription {self.name} failed: {exc}")
            self._deliver(error=SubscriptionError(self.name, exc))
            return
        if self._is_stale(ticket):
            return
        self._delivered_ticket = ticket
        self._deliver(Snapshot(records=tuple(records), version=self._next_version()))

    def _is_stale(self, ticket: int) -> bool:
        return self._closed or ticket < self._delivered_ticket

    def _next_version(self) -> int:
        self._version += 1
        return self._version

    def _deliver(self, snapshot: Optional[Snapshot] = None, error: Optional[SubscriptionError] = None) -> None:
        if self._closed:
            return
        self._on_update(SourceUpdate(source=self.name, snapshot=snapshot, error=error))
