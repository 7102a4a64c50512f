"""
Cluster watch pipeline.

One ResourceWatcher per resource kind turns Kubernetes watch notifications
into redacted ChangeEvents, and the WatchPipeline forwards each watcher's
events to the Broker under the resource's namespace.

Key Components:
- ResourceWatcher: list+watch loop for one kind with add/update/delete callbacks
- WatchPipeline: Starts all watchers and forwards their events to the Broker

Each watcher runs the blocking kubernetes client in its own daemon thread. The
thread keeps a local store of the objects it has seen (so a MODIFIED
notification can be paired with the previous object, and a relist can be
diffed into add/update/delete callbacks) and hands finished events to the
event loop, where they wait in a bounded per-watcher queue. A forwarder task
per watcher drains that queue in order into Broker.publish, so events from one
watcher reach subscribers in the order the cluster reported them.

Resources without a namespace (cluster-scoped kinds such as Namespace) never
produce events. The namespaces watcher is still run, to track which
namespaces exist.

Example:
    ```python
    pipeline = WatchPipeline.from_config(kube, broker, config)
    await pipeline.start()
    ...
    await pipeline.stop()
    ```
"""

import asyncio
import logging
import threading
from typing import Dict, Any, Optional, List, Pattern, Tuple, AsyncIterator, Callable

from kubernetes.client import ApiException

from .broker import Broker
from .constants import WATCH_QUEUE_SIZE, WATCH_BACKOFF_INITIAL_SECONDS, WATCH_BACKOFF_MAX_SECONDS
from .exceptions import KubernetesConnectionError
from .kube import KubeContext, list_resources, watch_events
from .models import ChangeEvent, EventKind, Resource, ResourceType, ServerConfig, NAMESPACES, namespaced_resource_types
from .redaction import RedactionPolicy, redact, build_policy

log = logging.getLogger('kubeview')

StoreKey = Tuple[str, str]


def _key(obj: Dict[str, Any]) -> StoreKey:
    res = Resource(obj)
    return res.namespace, res.name


class ResourceWatcher:
    """
    Watches one resource kind and produces ChangeEvents.

    The callbacks on_add, on_update and on_delete drop cluster-scoped objects
    and names not matching name_pattern, redact the object and queue a
    ChangeEvent. They may be called from the watch thread or from the event
    loop itself.

    When the outbound queue is full the oldest queued event is dropped.

    Attributes:
        rtype: Resource kind being watched
        namespace: Namespace filter (None watches all namespaces)
        name_pattern: Optional compiled regex names must match
        resource_version: Last resourceVersion seen, where the next watch resumes
        dropped: Events discarded because the outbound queue was full

    Example:
        ```python
        watcher = ResourceWatcher(kube, pods_type, namespace="default")
        watcher.prime()           # initial list, blocking
        watcher.start(loop)       # watch thread
        event = await watcher.get()
        ```
    """

    def __init__(self, kube: Optional[KubeContext], rtype: ResourceType, namespace: Optional[str] = None,
                 name_pattern: Optional[Pattern[str]] = None, policy: Optional[RedactionPolicy] = None,
                 queue_size: int = WATCH_QUEUE_SIZE,
                 lister: Callable[..., Tuple[List[Dict[str, Any]], str]] = list_resources,
                 streamer: Callable[..., Any] = watch_events):
        self.kube = kube
        self.rtype = rtype
        self.namespace = namespace
        self.name_pattern = name_pattern
        self.policy = policy
        self.resource_version = ''
        self.dropped = 0
        self._lister = lister
        self._streamer = streamer
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self._store: Dict[StoreKey, Dict[str, Any]] = {}
        self._store_lock = threading.Lock()
        self._stop = threading.Event()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._primed = False

    def __repr__(self) -> str:
        return f"ResourceWatcher({self.rtype.plural}, namespace={self.namespace!r})"

    # -- callbacks ---------------------------------------------------------

    def on_add(self, obj: Dict[str, Any]) -> None:
        self._publish(EventKind.ADDED, obj)

    def on_update(self, old: Dict[str, Any], new: Dict[str, Any]) -> None:
        self._publish(EventKind.UPDATED, new)

    def on_delete(self, obj: Dict[str, Any]) -> None:
        self._publish(EventKind.DELETED, obj)

    def _publish(self, kind: EventKind, obj: Dict[str, Any]) -> None:
        res = Resource(obj)
        if not res.namespace:
            return
        if self.name_pattern is not None and not self.name_pattern.search(res.name):
            return
        self._submit(ChangeEvent(kind, Resource(redact(obj, self.policy))))

    def _submit(self, event: ChangeEvent) -> None:
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is not None and (self._loop is None or running is self._loop):
            self._enqueue(event)
            return
        if self._loop is None:
            log.warning(f"[watch] {self.rtype.plural}: no event loop attached, event dropped")
            return
        try:
            self._loop.call_soon_threadsafe(self._enqueue, event)
        except RuntimeError:
            # loop closed during shutdown
            self._stop.set()

    def _enqueue(self, event: ChangeEvent) -> None:
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                pass
            self.dropped += 1
            self._queue.put_nowait(event)
            log.warning(f"[watch] {self.rtype.plural}: outbound queue full, dropped oldest event")

    # -- store -------------------------------------------------------------

    def handle(self, etype: str, obj: Dict[str, Any]) -> None:
        """Apply one watch notification to the store and fire the matching callback."""
        key = _key(obj)
        version = Resource(obj).resource_version
        if version:
            self.resource_version = version
        if etype == 'DELETED':
            with self._store_lock:
                self._store.pop(key, None)
            self.on_delete(obj)
            return
        with self._store_lock:
            old = self._store.get(key)
            self._store[key] = obj
        if old is None:
            self.on_add(obj)
        else:
            self.on_update(old, obj)

    def resync(self, items: List[Dict[str, Any]], notify: bool = True) -> None:
        """Replace the store with a fresh listing, firing callbacks for the differences."""
        fresh = {_key(obj): obj for obj in items}
        with self._store_lock:
            previous, self._store = self._store, fresh
        if not notify:
            return
        for key, obj in fresh.items():
            old = previous.get(key)
            if old is None:
                self.on_add(obj)
            elif Resource(old).resource_version != Resource(obj).resource_version:
                self.on_update(old, obj)
        for key, old in previous.items():
            if key not in fresh:
                self.on_delete(old)

    def names(self) -> List[str]:
        with self._store_lock:
            return sorted(name for _, name in self._store)

    def __len__(self) -> int:
        with self._store_lock:
            return len(self._store)

    # -- lifecycle ---------------------------------------------------------

    def prime(self) -> None:
        """Initial list (blocking). Seeds the store without firing callbacks."""
        items, self.resource_version = self._lister(self.kube, self.rtype, self.namespace)
        self.resync(items, notify=False)
        self._primed = True
        log.debug(f"[watch] {self.rtype.plural}: listed {len(items)} object(s)")

    def start(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name=f"watch-{self.rtype.plural}", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive() and not self._stop.is_set()

    def _run(self) -> None:
        backoff = WATCH_BACKOFF_INITIAL_SECONDS
        synced = self._primed
        while not self._stop.is_set():
            try:
                if not synced:
                    items, version = self._lister(self.kube, self.rtype, self.namespace)
                    self.resync(items)
                    self.resource_version = version
                    synced = True
                for etype, obj in self._streamer(self.kube, self.rtype, self.namespace, self.resource_version, self._stop):
                    if self._stop.is_set():
                        break
                    self.handle(etype, obj)
                    backoff = WATCH_BACKOFF_INITIAL_SECONDS
            except ApiException as e:
                if e.status == 410:
                    log.info(f"[watch] {self.rtype.plural}: resourceVersion expired, relisting")
                    synced = False
                    continue
                if e.status in (403, 404):
                    log.warning(f"[watch] {self.rtype.plural}: not available ({e.status} {e.reason}), watcher stopped")
                    return
                log.warning(f"[watch] {self.rtype.plural}: watch failed: {e.status} {e.reason}, retrying in {backoff}s")
                synced = False
                self._stop.wait(backoff)
                backoff = min(backoff * 2, WATCH_BACKOFF_MAX_SECONDS)
            except Exception as e:
                log.warning(f"[watch] {self.rtype.plural}: watch failed: {e.__class__.__name__}: {e}, retrying in {backoff}s")
                synced = False
                self._stop.wait(backoff)
                backoff = min(backoff * 2, WATCH_BACKOFF_MAX_SECONDS)
        log.debug(f"[watch] {self.rtype.plural}: stopped")

    # -- outbound ----------------------------------------------------------

    def pending(self) -> int:
        return self._queue.qsize()

    async def get(self) -> ChangeEvent:
        return await self._queue.get()

    async def events(self) -> AsyncIterator[ChangeEvent]:
        while True:
            yield await self._queue.get()


class WatchPipeline:
    """
    Runs every resource watcher and forwards their events to the Broker.

    A watcher whose initial list fails (kind not served, no permission, API
    unreachable) is skipped and the others keep running. Starting fails only
    when no resource watcher can be started at all.

    Attributes:
        broker: Broker events are published to
        watchers: Watchers for namespaced kinds
        namespace_watcher: Watcher tracking namespaces (None in single-namespace mode)

    Example:
        ```python
        pipeline = WatchPipeline(broker, [ResourceWatcher(kube, pods_type)])
        await pipeline.start()
        ```
    """

    def __init__(self, broker: Broker, watchers: List[ResourceWatcher],
                 namespace_watcher: Optional[ResourceWatcher] = None):
        self.broker = broker
        self.watchers = watchers
        self.namespace_watcher = namespace_watcher
        self.started: List[ResourceWatcher] = []
        self._tasks: List[asyncio.Task] = []

    @classmethod
    def from_config(cls, kube: KubeContext, broker: Broker, config: ServerConfig) -> "WatchPipeline":
        """Build one watcher per watched kind according to the server configuration."""
        policy = build_policy(config.redact_configmaps)
        watchers = [
            ResourceWatcher(kube, rtype, namespace=config.namespace, name_pattern=config.name_filter, policy=policy)
            for rtype in namespaced_resource_types(config.use_endpoint_slices)
        ]
        namespace_watcher = None
        if not config.namespace:
            namespace_watcher = ResourceWatcher(kube, NAMESPACES)
        return cls(broker, watchers, namespace_watcher)

    async def start(self) -> None:
        """
        Prime and start all watchers.

        Raises:
            KubernetesConnectionError: If none of the resource watchers could be started
        """
        loop = asyncio.get_running_loop()
        candidates = list(self.watchers)
        if self.namespace_watcher is not None:
            candidates.append(self.namespace_watcher)

        results = await asyncio.gather(
            *(loop.run_in_executor(None, w.prime) for w in candidates),
            return_exceptions=True,
        )
        for watcher, result in zip(candidates, results):
            if isinstance(result, BaseException):
                log.warning(f"[watch] {watcher.rtype.plural}: cannot start: {result.__class__.__name__}: {result}")
                continue
            watcher.start(loop)
            self.started.append(watcher)

        forwarded = [w for w in self.started if w is not self.namespace_watcher]
        if not forwarded:
            for watcher in self.started:
                watcher.stop()
            self.started = []
            raise KubernetesConnectionError("No resource watcher could be started")
        for watcher in forwarded:
            self._tasks.append(loop.create_task(self._forward(watcher), name=f"forward-{watcher.rtype.plural}"))
        log.info(f"[watch] watching {len(forwarded)}/{len(self.watchers)} resource kinds")

    async def _forward(self, watcher: ResourceWatcher) -> None:
        async for event in watcher.events():
            try:
                self.broker.publish(event.namespace, event)
            except Exception as e:
                log.warning(f"[watch] {watcher.rtype.plural}: publish failed: {e.__class__.__name__}: {e}")

    async def stop(self) -> None:
        """Stop producing events. Queued events are not drained."""
        for watcher in self.started:
            watcher.stop()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        log.info("[watch] stopped")

    def known_namespaces(self) -> List[str]:
        if self.namespace_watcher is None or self.namespace_watcher not in self.started:
            return []
        return self.namespace_watcher.names()

    def status(self) -> Dict[str, bool]:
        return {w.rtype.plural: w.running for w in self.watchers}
