"""
Data models for KubeView.

This module defines the data structures used throughout the KubeView service.
Resources are kept as the generic JSON trees returned by the Kubernetes API so
that every watched kind is handled the same way; typed accessors are layered on
top for the handful of fields the service itself needs.

Key Models:
- EventKind: Kind of change pushed to viewers (add, update, delete, ping)
- Resource: Generic Kubernetes object with typed accessors
- ChangeEvent: A change (or heartbeat) ready to be delivered to subscribers
- ResourceType: Description of one watched resource kind
- ServerConfig: Server configuration parameters

Example:
    ```python
    pod = Resource({"kind": "Pod", "metadata": {"name": "web-1", "namespace": "default"}})
    event = ChangeEvent(EventKind.ADDED, pod)
    print(event.to_sse())
    ```
"""

import enum
import json
from dataclasses import dataclass, field
from typing import Dict, Any, Optional, List, Pattern

from .constants import (
    DEFAULT_HOST, DEFAULT_PORT, HEARTBEAT_INTERVAL_SECONDS, DEFAULT_SUBSCRIBER_QUEUE_SIZE,
    DEFAULT_LOG_LEVEL, DEFAULT_UVICORN_LOG_LEVEL
)


class EventKind(enum.Enum):
    """
    Kind of change event.

    The value of each member is the tag used on the wire, both as the SSE
    ``event:`` field and as the ``type`` of WebSocket messages.
    """
    ADDED = "add"
    UPDATED = "update"
    DELETED = "delete"
    HEARTBEAT = "ping"


@dataclass(frozen=True)
class Resource:
    """
    Generic Kubernetes resource.

    Wraps the raw object tree (``apiVersion``, ``kind``, ``metadata`` and any
    kind-specific fields) without imposing a per-kind schema. Missing or
    malformed metadata reads as empty strings rather than raising.

    Attributes:
        obj: The raw object as decoded from the Kubernetes API JSON

    Example:
        ```python
        res = Resource(raw_object)
        if res.namespace:
            print(f"{res.kind} {res.namespace}/{res.name}")
        ```
    """
    obj: Dict[str, Any] = field(default_factory=dict)

    @property
    def metadata(self) -> Dict[str, Any]:
        meta = self.obj.get('metadata')
        return meta if isinstance(meta, dict) else {}

    @property
    def kind(self) -> str:
        return self.obj.get('kind') or ''

    @property
    def api_version(self) -> str:
        return self.obj.get('apiVersion') or ''

    @property
    def name(self) -> str:
        return self.metadata.get('name') or ''

    @property
    def namespace(self) -> str:
        return self.metadata.get('namespace') or ''

    @property
    def uid(self) -> str:
        return self.metadata.get('uid') or ''

    @property
    def resource_version(self) -> str:
        return self.metadata.get('resourceVersion') or ''

    def to_dict(self) -> Dict[str, Any]:
        return self.obj


@dataclass(frozen=True)
class ChangeEvent:
    """
    A change event delivered to subscribers.

    Attributes:
        kind: What happened to the resource, or HEARTBEAT for liveness pings
        resource: The (already redacted) resource; None for heartbeats

    Example:
        ```python
        event = ChangeEvent(EventKind.UPDATED, Resource(new_obj))
        frame = event.to_sse()        # "event: update\\ndata: {...}\\n\\n"
        message = event.to_message()  # {"type": "update", "data": {...}}
        ```
    """
    kind: EventKind
    resource: Optional[Resource] = None

    @classmethod
    def heartbeat(cls) -> "ChangeEvent":
        return cls(EventKind.HEARTBEAT)

    @property
    def namespace(self) -> str:
        return self.resource.namespace if self.resource else ''

    def payload(self) -> str:
        """Serialized resource, empty for heartbeats."""
        if self.resource is None:
            return ''
        return json.dumps(self.resource.to_dict(), separators=(',', ':'), default=str)

    def to_sse(self) -> str:
        """Render the event as one server-sent events frame."""
        return f"event: {self.kind.value}\ndata: {self.payload()}\n\n"

    def to_message(self) -> Dict[str, Any]:
        """Render the event as a WebSocket message."""
        return {
            'type': self.kind.value,
            'data': self.resource.to_dict() if self.resource else None,
        }


@dataclass(frozen=True)
class ResourceType:
    """
    A watched Kubernetes resource kind.

    Attributes:
        plural: Resource name as used in API paths and snapshots (e.g. "pods")
        kind: Object kind (e.g. "Pod")
        api_version: Group/version string set on listed objects (e.g. "apps/v1")
        api: Name of the KubeContext attribute holding the typed API client
        singular: snake_case name used by the typed client list functions
        namespaced: Whether the kind lives inside a namespace

    Example:
        ```python
        pods = ResourceType("pods", "Pod", "v1", "core", "pod")
        pods.list_function_name(namespace="default")  # "list_namespaced_pod"
        ```
    """
    plural: str
    kind: str
    api_version: str
    api: str
    singular: str
    namespaced: bool = True

    def list_function_name(self, namespace: Optional[str] = None) -> str:
        if not self.namespaced:
            return f"list_{self.singular}"
        if namespace:
            return f"list_namespaced_{self.singular}"
        return f"list_{self.singular}_for_all_namespaces"


NAMESPACES = ResourceType("namespaces", "Namespace", "v1", "core", "namespace", namespaced=False)
ENDPOINTS = ResourceType("endpoints", "Endpoints", "v1", "core", "endpoints")
ENDPOINT_SLICES = ResourceType("endpointslices", "EndpointSlice", "discovery.k8s.io/v1", "discovery", "endpoint_slice")

WATCHED_RESOURCES: List[ResourceType] = [
    ResourceType("pods", "Pod", "v1", "core", "pod"),
    ResourceType("services", "Service", "v1", "core", "service"),
    ENDPOINTS,
    ResourceType("configmaps", "ConfigMap", "v1", "core", "config_map"),
    ResourceType("secrets", "Secret", "v1", "core", "secret"),
    ResourceType("persistentvolumeclaims", "PersistentVolumeClaim", "v1", "core", "persistent_volume_claim"),
    ResourceType("events", "Event", "v1", "core", "event"),
    ResourceType("deployments", "Deployment", "apps/v1", "apps", "deployment"),
    ResourceType("replicasets", "ReplicaSet", "apps/v1", "apps", "replica_set"),
    ResourceType("statefulsets", "StatefulSet", "apps/v1", "apps", "stateful_set"),
    ResourceType("daemonsets", "DaemonSet", "apps/v1", "apps", "daemon_set"),
    ResourceType("jobs", "Job", "batch/v1", "batch", "job"),
    ResourceType("cronjobs", "CronJob", "batch/v1", "batch", "cron_job"),
    ResourceType("ingresses", "Ingress", "networking.k8s.io/v1", "networking", "ingress"),
    ResourceType("horizontalpodautoscalers", "HorizontalPodAutoscaler", "autoscaling/v2", "autoscaling",
                 "horizontal_pod_autoscaler"),
]


def namespaced_resource_types(use_endpoint_slices: bool = False) -> List[ResourceType]:
    """Namespaced kinds to watch and snapshot, with endpoints swapped for endpoint slices if requested."""
    if not use_endpoint_slices:
        return list(WATCHED_RESOURCES)
    return [ENDPOINT_SLICES if rt is ENDPOINTS else rt for rt in WATCHED_RESOURCES]


@dataclass
class ServerConfig:
    """
    Server configuration parameters.

    Contains all configuration parameters for the KubeView server, including
    network settings, cluster selection, watch filtering and broker tuning.

    Attributes:
        host: Server bind host
        port: Server port
        namespace: Single namespace to watch (None watches all namespaces)
        name_filter: Compiled regex; only resources whose name matches are published
        kubeconfig: Path to kubeconfig file
        context: Kubeconfig context override
        heartbeat_interval: Seconds between heartbeat pings
        queue_size: Capacity of each subscriber queue
        use_endpoint_slices: Watch EndpointSlices instead of Endpoints
        redact_configmaps: Also redact ConfigMap data
        log_level: Application log level
        uvicorn_log_level: Uvicorn server log level

    Example:
        ```python
        config = ServerConfig(host="0.0.0.0", port=8000, namespace="prod")
        ```
    """
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    namespace: Optional[str] = None
    name_filter: Optional[Pattern[str]] = None
    kubeconfig: Optional[str] = None
    context: Optional[str] = None
    heartbeat_interval: float = HEARTBEAT_INTERVAL_SECONDS
    queue_size: int = DEFAULT_SUBSCRIBER_QUEUE_SIZE
    use_endpoint_slices: bool = False
    redact_configmaps: bool = False
    log_level: str = DEFAULT_LOG_LEVEL
    uvicorn_log_level: str = DEFAULT_UVICORN_LOG_LEVEL
