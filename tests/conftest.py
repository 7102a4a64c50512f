"""Shared fixtures and object factories for KubeView tests.

Objects are built as the raw JSON trees the Kubernetes API returns, so tests
never need a cluster.
"""

from __future__ import annotations

import threading
from typing import Any, Callable, Iterator

import pytest

from kubeview.broker import Broker
from kubeview.models import ResourceType

PODS = ResourceType("pods", "Pod", "v1", "core", "pod")
SECRETS = ResourceType("secrets", "Secret", "v1", "core", "secret")


# ---------------------------------------------------------------------------
# Object factories
# ---------------------------------------------------------------------------


def make_obj(
    kind: str = "Pod",
    name: str = "web-1",
    namespace: str | None = "default",
    resource_version: str = "1",
    **fields: Any,
) -> dict[str, Any]:
    """Create a raw Kubernetes object with sensible defaults."""
    metadata: dict[str, Any] = {"name": name, "resourceVersion": resource_version}
    if namespace is not None:
        metadata["namespace"] = namespace
    obj: dict[str, Any] = {"apiVersion": "v1", "kind": kind, "metadata": metadata}
    obj.update(fields)
    return obj


def make_secret(name: str = "db-creds", namespace: str = "default", **data: str) -> dict[str, Any]:
    return make_obj(
        "Secret",
        name,
        namespace,
        type="Opaque",
        data=data or {"username": "YWRtaW4=", "password": "czNjcjN0"},
    )


# ---------------------------------------------------------------------------
# Fake Kubernetes list/watch callables
# ---------------------------------------------------------------------------


def static_lister(items: list[dict[str, Any]] | None = None, version: str = "100") -> Callable[..., Any]:
    """Lister returning a fixed listing; records every call in ``.calls``."""
    calls: list[tuple[Any, ...]] = []

    def lister(kube: Any, rtype: ResourceType, namespace: str | None) -> tuple[list[dict[str, Any]], str]:
        calls.append((rtype.plural, namespace))
        return [dict(item) for item in (items or [])], version

    lister.calls = calls  # type: ignore[attr-defined]
    return lister


def scripted_streamer(*rounds: list[tuple[str, dict[str, Any]]] | BaseException) -> Callable[..., Any]:
    """Streamer replaying one round per watch call, then blocking until stopped.

    A round is either a list of (type, object) notifications or an exception
    to raise. Resource versions the watch was started from are kept in
    ``.versions``.
    """
    versions: list[str] = []

    def streamer(
        kube: Any,
        rtype: ResourceType,
        namespace: str | None,
        resource_version: str,
        stop_event: threading.Event,
    ) -> Iterator[tuple[str, dict[str, Any]]]:
        index = len(versions)
        versions.append(resource_version)
        if index < len(rounds):
            current = rounds[index]
            if isinstance(current, BaseException):
                raise current
            yield from current
        stop_event.wait()

    streamer.versions = versions  # type: ignore[attr-defined]
    return streamer


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def broker() -> Broker:
    return Broker(queue_size=8, heartbeat_interval=10.0)
