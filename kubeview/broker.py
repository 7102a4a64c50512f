"""
In-memory publish/subscribe broker for change events.

The Broker keeps a registry of subscriptions keyed by namespace and fans every
published ChangeEvent out to the subscriptions of that namespace, plus any
subscription registered under the all-namespaces scope. It also runs the
heartbeat loop that pings every subscriber at a fixed interval.

Key Components:
- Subscription: One viewer's bounded event queue plus its namespace scope
- Broker: Registry, delivery and heartbeat

Delivery never waits on a subscriber. Each subscription queue is bounded; when
it is full the oldest queued event is dropped to make room for the new one and
the subscription's ``dropped`` counter is incremented. All Broker methods are
meant to be called from the event loop thread; the registry itself is guarded
by a lock and delivery happens outside of it.

Example:
    ```python
    broker = Broker(queue_size=256)
    broker.start_heartbeat()
    sub = broker.register("default", client_id="abc123")
    broker.publish("default", ChangeEvent(EventKind.ADDED, Resource(pod)))
    event = await sub.get()
    broker.unregister(sub)
    ```
"""

import asyncio
import logging
import threading
import uuid
from typing import Dict, Any, Optional, Set, List

from .constants import ALL_NAMESPACES, DEFAULT_SUBSCRIBER_QUEUE_SIZE, HEARTBEAT_INTERVAL_SECONDS
from .models import ChangeEvent

log = logging.getLogger('kubeview')


class Subscription:
    """
    A registered viewer's delivery queue and namespace scope.

    Subscriptions are created by Broker.register and must be released with
    Broker.unregister. Once closed, get() returns None and iteration stops.

    Attributes:
        id: Unique subscription id
        scope: Namespace the subscription receives events for, or "*" for all
        client_id: Optional viewer identifier, at most one subscription per id
        dropped: Number of events discarded because the queue was full
    """

    def __init__(self, scope: str, client_id: Optional[str] = None, maxsize: int = DEFAULT_SUBSCRIBER_QUEUE_SIZE):
        self.id = uuid.uuid4().hex
        self.scope = scope
        self.client_id = client_id
        self.dropped = 0
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    def __repr__(self) -> str:
        return f"Subscription(id={self.id[:8]}, scope={self.scope!r}, client_id={self.client_id!r})"

    @property
    def closed(self) -> bool:
        return self._closed

    def pending(self) -> int:
        # a closed subscription only holds the wake-up sentinel
        return 0 if self._closed else self._queue.qsize()

    def offer(self, event: ChangeEvent) -> bool:
        """Enqueue without waiting, dropping the oldest queued event if full."""
        if self._closed:
            return False
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                pass
            self.dropped += 1
            self._queue.put_nowait(event)
            log.debug(f"[broker] queue full for {self!r}, dropped oldest event (total dropped={self.dropped})")
        return True

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        # discard anything buffered and wake a waiting reader
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(None)

    async def get(self) -> Optional[ChangeEvent]:
        """Wait for the next event; None once the subscription is closed."""
        if self._closed and self._queue.empty():
            return None
        return await self._queue.get()

    def __aiter__(self):
        return self

    async def __anext__(self) -> ChangeEvent:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event


class Broker:
    """
    Publish/subscribe registry for change events.

    A namespace may have any number of subscriptions. Registering with a
    client_id that already has a subscription replaces the old one, which is
    closed so its reader stops.

    Attributes:
        queue_size: Capacity of each subscription queue
        heartbeat_interval: Seconds between heartbeat pings

    Example:
        ```python
        broker = Broker()
        sub = broker.register("kube-system")
        delivered = broker.publish("kube-system", event)  # 1
        broker.unregister(sub)
        broker.unregister(sub)  # no-op
        ```
    """

    def __init__(self, queue_size: int = DEFAULT_SUBSCRIBER_QUEUE_SIZE,
                 heartbeat_interval: float = HEARTBEAT_INTERVAL_SECONDS):
        self.queue_size = queue_size
        self.heartbeat_interval = heartbeat_interval
        self._lock = threading.Lock()
        self._scopes: Dict[str, Set[Subscription]] = {}
        self._clients: Dict[str, Subscription] = {}
        self._heartbeat_task: Optional[asyncio.Task] = None
        self._closed = False

    def register(self, scope: Optional[str], client_id: Optional[str] = None) -> Subscription:
        """
        Register a new subscription for a namespace.

        Args:
            scope: Namespace to receive events for; empty or "*" receives all namespaces
            client_id: Optional viewer id, an existing subscription with the same id is replaced

        Returns:
            Subscription: Handle to read events from and to pass to unregister. Once the broker is
                closed the subscription comes back already closed
        """
        scope = scope or ALL_NAMESPACES
        sub = Subscription(scope, client_id, self.queue_size)
        replaced = None
        with self._lock:
            if self._closed:
                sub.close()
                log.debug(f"[broker] closed, refused {sub!r}")
                return sub
            if client_id:
                replaced = self._clients.get(client_id)
                if replaced is not None:
                    self._remove(replaced)
                self._clients[client_id] = sub
            self._scopes.setdefault(scope, set()).add(sub)
        if replaced is not None:
            replaced.close()
            log.info(f"[broker] client {client_id} re-subscribed, replaced {replaced!r}")
        log.debug(f"[broker] registered {sub!r}")
        return sub

    def unregister(self, sub: Subscription) -> bool:
        """Remove a subscription and close it. Returns False if it was already gone."""
        with self._lock:
            removed = self._remove(sub)
        sub.close()
        if removed:
            log.debug(f"[broker] unregistered {sub!r}")
        return removed

    def _remove(self, sub: Subscription) -> bool:
        # caller holds the lock
        subs = self._scopes.get(sub.scope)
        if not subs or sub not in subs:
            return False
        subs.discard(sub)
        if not subs:
            del self._scopes[sub.scope]
        if sub.client_id and self._clients.get(sub.client_id) is sub:
            del self._clients[sub.client_id]
        return True

    def publish(self, scope: str, event: ChangeEvent) -> int:
        """
        Deliver an event to the subscriptions of a namespace and to all-namespace subscriptions.

        Returns:
            int: Number of subscriptions the event was queued on
        """
        with self._lock:
            targets: List[Subscription] = list(self._scopes.get(scope, ()))
            if scope != ALL_NAMESPACES:
                targets.extend(self._scopes.get(ALL_NAMESPACES, ()))
        return self._deliver(targets, event)

    def publish_to_all(self, event: ChangeEvent) -> int:
        """Deliver an event to every subscription regardless of scope."""
        with self._lock:
            targets = [sub for subs in self._scopes.values() for sub in subs]
        return self._deliver(targets, event)

    @staticmethod
    def _deliver(targets: List[Subscription], event: ChangeEvent) -> int:
        delivered = 0
        for sub in targets:
            if sub.offer(event):
                delivered += 1
        return delivered

    def subscriber_count(self, scope: Optional[str] = None) -> int:
        with self._lock:
            if scope is not None:
                return len(self._scopes.get(scope, ()))
            return sum(len(subs) for subs in self._scopes.values())

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            subs = [sub for scoped in self._scopes.values() for sub in scoped]
            scopes = {scope: len(scoped) for scope, scoped in self._scopes.items()}
        return {
            'subscribers': len(subs),
            'scopes': scopes,
            'dropped': sum(sub.dropped for sub in subs),
        }

    def start_heartbeat(self) -> asyncio.Task:
        """Start the heartbeat task on the running loop (no-op if already running)."""
        if self._heartbeat_task is None or self._heartbeat_task.done():
            self._heartbeat_task = asyncio.get_running_loop().create_task(self._heartbeat_loop())
            log.info(f"[broker] heartbeat every {self.heartbeat_interval}s")
        return self._heartbeat_task

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            count = self.publish_to_all(ChangeEvent.heartbeat())
            log.debug(f"[broker] heartbeat delivered to {count} subscriber(s)")

    async def stop_heartbeat(self) -> None:
        task, self._heartbeat_task = self._heartbeat_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    def close(self) -> None:
        """Unregister every subscription, waking all readers. Used on shutdown."""
        with self._lock:
            self._closed = True
            subs = [sub for scoped in self._scopes.values() for sub in scoped]
            self._scopes.clear()
            self._clients.clear()
        for sub in subs:
            sub.close()
        if subs:
            log.info(f"[broker] closed {len(subs)} subscription(s)")
