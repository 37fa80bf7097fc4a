import asyncio
import logging
from typing import Any, Callable, Optional

from vaultchat.core.store import ListenerRegistration

logger = logging.getLogger(__name__)


class Subscription:
    """
    Disposable handle over one or more store listeners.

    `publish()` records the newest snapshot and hands it to the optional
    callback. Iterating with `async for` yields snapshots as they change;
    iteration is conflating (a slow reader only sees the latest one) and
    stops once the subscription is closed.

    Child listeners are kept by key so the owner can add and drop them as
    the watched set changes without ever stacking two on the same key.
    """

    def __init__(self, key: str, callback: Optional[Callable[[Any], None]] = None):
        self.key = key
        self.latest = None
        self.closed = False
        self._callback = callback
        self._registrations: list[ListenerRegistration] = []
        self._children: dict[str, ListenerRegistration] = {}
        self._version = 0
        self._seen = 0
        self._changed = asyncio.Event()

    def attach(self, registration: ListenerRegistration):
        if self.closed:
            registration.remove()
            return
        self._registrations.append(registration)

    def attach_child(self, key: str, registration: ListenerRegistration):
        if self.closed:
            registration.remove()
            return
        previous = self._children.pop(key, None)
        if previous:
            previous.remove()
        self._children[key] = registration

    def has_child(self, key: str) -> bool:
        return key in self._children

    def child_keys(self) -> set:
        return set(self._children)

    def drop_child(self, key: str):
        registration = self._children.pop(key, None)
        if registration:
            registration.remove()

    def publish(self, snapshot):
        if self.closed:
            return
        self.latest = snapshot
        self._version += 1
        self._changed.set()
        if self._callback:
            self._callback(snapshot)

    def close(self):
        if self.closed:
            return
        self.closed = True
        for registration in self._registrations:
            registration.remove()
        for registration in self._children.values():
            registration.remove()
        self._registrations.clear()
        self._children.clear()
        self._changed.set()
        logger.debug(f"subscription_closed key={self.key}")

    def __aiter__(self):
        return self

    async def __anext__(self):
        while True:
            if self.closed:
                raise StopAsyncIteration
            if self._version != self._seen:
                self._seen = self._version
                return self.latest
            self._changed.clear()
            await self._changed.wait()


class SubscriptionRegistry:
    """Open subscriptions by resource key. Opening a key again replaces the old handle."""

    def __init__(self):
        self._open: dict[str, Subscription] = {}

    def replace(self, subscription: Subscription) -> Subscription:
        previous = self._open.pop(subscription.key, None)
        if previous:
            previous.close()
        self._open[subscription.key] = subscription
        return subscription

    def get(self, key: str) -> Optional[Subscription]:
        subscription = self._open.get(key)
        if subscription and subscription.closed:
            del self._open[key]
            return None
        return subscription

    def close(self, key: str):
        subscription = self._open.pop(key, None)
        if subscription:
            subscription.close()

    def close_all(self):
        for subscription in self._open.values():
            subscription.close()
        self._open.clear()

    def __len__(self):
        return sum(1 for s in self._open.values() if not s.closed)
