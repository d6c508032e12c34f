"""
Session identity collaborator.

The identity starts unresolved, resolves to a signed-in user or to None, and may
change later (sign-in as another user, sign-out). Listeners are called
synchronously on every change so dependents can retract or rebuild
subscriptions before the next await.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionIdentity:
    user_id: str
    email: Optional[str] = None
    display_name: Optional[str] = None


IdentityListener = Callable[[Optional[SessionIdentity]], None]


class IdentityProvider:
    def __init__(self, identity: Optional[SessionIdentity] = None, resolved: bool = False):
        self._current = identity
        self._resolved = resolved or identity is not None
        self._listeners: List[IdentityListener] = []
        self._resolved_event = asyncio.Event()
        if self._resolved:
            self._resolved_event.set()

    @property
    def resolved(self) -> bool:
        return self._resolved

    @property
    def current(self) -> Optional[SessionIdentity]:
        return self._current

    async def wait_resolved(self) -> Optional[SessionIdentity]:
        await self._resolved_event.wait()
        return self._current

    def resolve(self, identity: Optional[SessionIdentity]) -> None:
        changed = not self._resolved or identity != self._current
        self._current = identity
        self._resolved = True
        self._resolved_event.set()
        if not changed:
            return
        logger.info("Identity resolved to %s", identity.user_id if identity else None)
        for listener in list(self._listeners):
            listener(identity)

    def sign_out(self) -> None:
        self.resolve(None)

    def subscribe(self, listener: IdentityListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe
