"""Tests for resource watchers and the watch pipeline.

Watchers are driven through fake list/watch callables, so no cluster or
kubernetes client configuration is needed.
"""

from __future__ import annotations

import asyncio
import re
import time

import pytest
from kubernetes.client import ApiException

from kubeview.broker import Broker
from kubeview.constants import ALL_NAMESPACES, REDACTED
from kubeview.exceptions import KubernetesConnectionError
from kubeview.models import NAMESPACES, ChangeEvent, EventKind, ServerConfig
from kubeview.redaction import build_policy
from kubeview.watch import ResourceWatcher, WatchPipeline

from .conftest import PODS, SECRETS, make_obj, make_secret, scripted_streamer, static_lister


def _drain(watcher: ResourceWatcher) -> list[ChangeEvent]:
    events = []
    while watcher.pending():
        events.append(watcher._queue.get_nowait())
    return events


async def _wait_until(predicate, timeout: float = 2.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


# ---------------------------------------------------------------------------
# Callbacks
# ---------------------------------------------------------------------------


class TestCallbacks:
    async def test_add_update_delete(self) -> None:
        watcher = ResourceWatcher(None, PODS)
        watcher.on_add(make_obj(name="web-1"))
        watcher.on_update(make_obj(name="web-1"), make_obj(name="web-1", resource_version="2"))
        watcher.on_delete(make_obj(name="web-1", resource_version="3"))
        events = _drain(watcher)
        assert [e.kind for e in events] == [EventKind.ADDED, EventKind.UPDATED, EventKind.DELETED]
        assert events[1].resource.resource_version == "2"
        assert all(e.namespace == "default" for e in events)

    async def test_cluster_scoped_object_dropped(self) -> None:
        watcher = ResourceWatcher(None, NAMESPACES)
        watcher.on_add(make_obj("Namespace", "prod", namespace=None))
        assert watcher.pending() == 0

    async def test_name_filter(self) -> None:
        watcher = ResourceWatcher(None, PODS, name_pattern=re.compile(r"^api-"))
        watcher.on_add(make_obj(name="web-1"))
        watcher.on_add(make_obj(name="api-7d9f"))
        events = _drain(watcher)
        assert [e.resource.name for e in events] == ["api-7d9f"]

    async def test_secret_redacted_before_queueing(self) -> None:
        watcher = ResourceWatcher(None, SECRETS, policy=build_policy())
        secret = make_secret(password="czNjcjN0")
        watcher.on_add(secret)
        [event] = _drain(watcher)
        assert event.resource.obj["data"] == {"password": REDACTED}
        assert "czNjcjN0" not in event.to_sse()
        assert secret["data"]["password"] == "czNjcjN0"

    async def test_full_outbound_queue_drops_oldest(self) -> None:
        watcher = ResourceWatcher(None, PODS, queue_size=2)
        for name in ("a", "b", "c"):
            watcher.on_add(make_obj(name=name))
        assert watcher.dropped == 1
        assert [e.resource.name for e in _drain(watcher)] == ["b", "c"]


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class TestStore:
    async def test_handle_pairs_modified_with_previous(self) -> None:
        watcher = ResourceWatcher(None, PODS)
        watcher.handle("ADDED", make_obj(name="web-1", resource_version="5"))
        watcher.handle("MODIFIED", make_obj(name="web-1", resource_version="6"))
        watcher.handle("DELETED", make_obj(name="web-1", resource_version="7"))
        assert [e.kind for e in _drain(watcher)] == [EventKind.ADDED, EventKind.UPDATED, EventKind.DELETED]
        assert watcher.resource_version == "7"
        assert len(watcher) == 0

    async def test_modified_unknown_object_is_add(self) -> None:
        watcher = ResourceWatcher(None, PODS)
        watcher.handle("MODIFIED", make_obj(name="web-1"))
        [event] = _drain(watcher)
        assert event.kind is EventKind.ADDED

    async def test_same_name_in_two_namespaces(self) -> None:
        watcher = ResourceWatcher(None, PODS)
        watcher.handle("ADDED", make_obj(name="web-1", namespace="a"))
        watcher.handle("ADDED", make_obj(name="web-1", namespace="b"))
        assert len(watcher) == 2
        assert [e.kind for e in _drain(watcher)] == [EventKind.ADDED, EventKind.ADDED]

    async def test_prime_is_silent(self) -> None:
        lister = static_lister([make_obj(name="a"), make_obj(name="b")], version="42")
        watcher = ResourceWatcher(None, PODS, namespace="default", lister=lister)
        watcher.prime()
        assert watcher.pending() == 0
        assert watcher.names() == ["a", "b"]
        assert watcher.resource_version == "42"
        assert lister.calls == [("pods", "default")]

    async def test_resync_diff(self) -> None:
        watcher = ResourceWatcher(None, PODS)
        watcher.resync([make_obj(name="a"), make_obj(name="b"), make_obj(name="c")], notify=False)
        watcher.resync([
            make_obj(name="a", resource_version="2"),  # changed
            make_obj(name="c"),                        # unchanged
            make_obj(name="d"),                        # new
        ])
        seen = {(e.kind, e.resource.name) for e in _drain(watcher)}
        assert seen == {
            (EventKind.UPDATED, "a"),
            (EventKind.ADDED, "d"),
            (EventKind.DELETED, "b"),
        }
        assert watcher.names() == ["a", "c", "d"]


# ---------------------------------------------------------------------------
# Watch thread
# ---------------------------------------------------------------------------


class TestWatchLoop:
    async def test_events_delivered_from_thread(self) -> None:
        streamer = scripted_streamer([("ADDED", make_obj(name="web-1", resource_version="101"))])
        watcher = ResourceWatcher(None, PODS, lister=static_lister(), streamer=streamer)
        watcher.prime()
        watcher.start(asyncio.get_running_loop())
        try:
            event = await asyncio.wait_for(watcher.get(), timeout=2.0)
        finally:
            watcher.stop()
        assert event.kind is EventKind.ADDED
        assert streamer.versions == ["100"]

    async def test_expired_version_relists(self) -> None:
        lister = static_lister([make_obj(name="web-1")], version="200")
        streamer = scripted_streamer(ApiException(status=410, reason="Gone"))
        watcher = ResourceWatcher(None, PODS, lister=lister, streamer=streamer)
        watcher.prime()
        watcher.start(asyncio.get_running_loop())
        try:
            await _wait_until(lambda: len(streamer.versions) == 2)
        finally:
            watcher.stop()
        assert len(lister.calls) == 2
        # relist of an unchanged store fires nothing
        assert watcher.pending() == 0

    async def test_forbidden_stops_watcher(self) -> None:
        streamer = scripted_streamer(ApiException(status=403, reason="Forbidden"))
        watcher = ResourceWatcher(None, PODS, lister=static_lister(), streamer=streamer)
        watcher.prime()
        watcher.start(asyncio.get_running_loop())
        await _wait_until(lambda: not watcher.running)
        assert streamer.versions == ["100"]


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


class TestPipeline:
    async def test_events_published_under_their_namespace(self, broker: Broker) -> None:
        streamer = scripted_streamer([
            ("ADDED", make_obj(name="web-1", namespace="prod")),
            ("ADDED", make_obj(name="web-2", namespace="default")),
        ])
        watcher = ResourceWatcher(None, PODS, lister=static_lister(), streamer=streamer)
        pipeline = WatchPipeline(broker, [watcher])
        sub = broker.register("default")
        everything = broker.register(ALL_NAMESPACES)
        await pipeline.start()
        try:
            event = await asyncio.wait_for(sub.get(), timeout=2.0)
            first = await asyncio.wait_for(everything.get(), timeout=2.0)
            second = await asyncio.wait_for(everything.get(), timeout=2.0)
        finally:
            await pipeline.stop()
        assert event.resource.name == "web-2"
        assert [first.resource.name, second.resource.name] == ["web-1", "web-2"]

    async def test_secret_redacted_end_to_end(self, broker: Broker) -> None:
        streamer = scripted_streamer([("ADDED", make_secret(password="czNjcjN0"))])
        watcher = ResourceWatcher(None, SECRETS, policy=build_policy(), lister=static_lister(), streamer=streamer)
        pipeline = WatchPipeline(broker, [watcher])
        sub = broker.register("default")
        await pipeline.start()
        try:
            event = await asyncio.wait_for(sub.get(), timeout=2.0)
        finally:
            await pipeline.stop()
        assert event.to_message()["data"]["data"] == {"password": REDACTED}

    async def test_failed_kind_is_skipped(self, broker: Broker) -> None:
        def forbidden(kube, rtype, namespace):
            raise ApiException(status=403, reason="Forbidden")

        ok = ResourceWatcher(None, PODS, lister=static_lister(), streamer=scripted_streamer())
        denied = ResourceWatcher(None, SECRETS, lister=forbidden, streamer=scripted_streamer())
        pipeline = WatchPipeline(broker, [ok, denied])
        await pipeline.start()
        try:
            assert pipeline.started == [ok]
            assert pipeline.status() == {"pods": True, "secrets": False}
        finally:
            await pipeline.stop()

    async def test_no_watcher_started_raises(self, broker: Broker) -> None:
        def unreachable(kube, rtype, namespace):
            raise ConnectionError("connection refused")

        pipeline = WatchPipeline(broker, [ResourceWatcher(None, PODS, lister=unreachable)])
        with pytest.raises(KubernetesConnectionError):
            await pipeline.start()

    async def test_failed_start_stops_namespace_watcher(self, broker: Broker) -> None:
        def unreachable(kube, rtype, namespace):
            raise ConnectionError("connection refused")

        ns_watcher = ResourceWatcher(None, NAMESPACES, lister=static_lister(), streamer=scripted_streamer())
        pods = ResourceWatcher(None, PODS, lister=unreachable)
        pipeline = WatchPipeline(broker, [pods], namespace_watcher=ns_watcher)
        with pytest.raises(KubernetesConnectionError):
            await pipeline.start()
        assert not ns_watcher.running
        ns_watcher._thread.join(timeout=2.0)
        assert not ns_watcher._thread.is_alive()
        assert pipeline.started == []

    async def test_known_namespaces(self, broker: Broker) -> None:
        namespaces = [make_obj("Namespace", name, namespace=None) for name in ("prod", "default")]
        ns_watcher = ResourceWatcher(None, NAMESPACES, lister=static_lister(namespaces), streamer=scripted_streamer())
        pods = ResourceWatcher(None, PODS, lister=static_lister(), streamer=scripted_streamer())
        pipeline = WatchPipeline(broker, [pods], namespace_watcher=ns_watcher)
        await pipeline.start()
        try:
            assert pipeline.known_namespaces() == ["default", "prod"]
            assert "namespaces" not in pipeline.status()
        finally:
            await pipeline.stop()

    def test_from_config_single_namespace(self, broker: Broker) -> None:
        config = ServerConfig(namespace="prod", name_filter=re.compile("^api-"), use_endpoint_slices=True)
        pipeline = WatchPipeline.from_config(None, broker, config)
        plurals = [w.rtype.plural for w in pipeline.watchers]
        assert pipeline.namespace_watcher is None
        assert "endpointslices" in plurals
        assert "endpoints" not in plurals
        assert all(w.namespace == "prod" for w in pipeline.watchers)
        assert pipeline.known_namespaces() == []

    def test_from_config_all_namespaces(self, broker: Broker) -> None:
        pipeline = WatchPipeline.from_config(None, broker, ServerConfig())
        assert pipeline.namespace_watcher is not None
        assert pipeline.namespace_watcher.rtype is NAMESPACES
        assert "secrets" in [w.rtype.plural for w in pipeline.watchers]
