"""
Kubernetes client and API interactions for KubeView.

This module provides the interface between KubeView and the Kubernetes API.
It handles configuration loading, generic listing and watching of any watched
resource kind, namespace discovery, namespace snapshots and pod log retrieval.

Key Components:
- KubeContext: Container for Kubernetes API clients and cluster details
- load_kube: Initialize Kubernetes clients with config loading
- list_resources: List one resource kind as raw JSON objects (blocking)
- watch_events: Stream watch notifications for one resource kind (blocking)
- list_namespaces / namespace_exists: Namespace discovery
- fetch_namespace: Redacted snapshot of every watched kind in a namespace
- fetch_pod_logs: Tail of a pod's container logs

Objects are always handled as the raw JSON trees returned by the API server
(camelCase keys), never as the typed client models, so that every kind flows
through the rest of the service the same way.

Example:
    ```python
    kube = await load_kube(kubeconfig=None, context=None)
    snapshot = await fetch_namespace(kube, "default", namespaced_resource_types())
    print(len(snapshot["pods"]))
    ```
"""

from __future__ import annotations
import asyncio
import json
import logging
import os
import threading
from typing import Optional, Dict, Any, List, Tuple, Iterator, Callable, Pattern

from kubernetes import client, config, watch
from kubernetes.client import ApiException

from .constants import IN_CLUSTER_ENV, DEFAULT_LOG_LINES, MAX_LOG_LINES, WATCH_TIMEOUT_SECONDS
from .exceptions import InvalidRequestError, PodNotFoundError
from .models import Resource, ResourceType
from .redaction import RedactionPolicy, redact_all

log = logging.getLogger('kubeview')


class KubeContext:
    """
    Container for Kubernetes API clients.

    Provides a unified interface to the typed API clients needed to list and
    watch every resource kind KubeView follows, together with details about the
    connected cluster.

    Attributes:
        core: CoreV1Api client (pods, services, secrets, namespaces, ...)
        apps: AppsV1Api client (deployments, replica sets, ...)
        batch: BatchV1Api client (jobs, cron jobs)
        networking: NetworkingV1Api client (ingresses)
        autoscaling: AutoscalingV2Api client (horizontal pod autoscalers)
        discovery: DiscoveryV1Api client (endpoint slices)
        cluster_host: API server URL
        kube_version: API server version string
        mode: "in-cluster" or "out-of-cluster"
        namespace: Single namespace KubeView is restricted to, if any

    Example:
        ```python
        kube = await load_kube(kubeconfig, context)
        print(kube.info())
        ```
    """

    def __init__(self, core: client.CoreV1Api, apps: client.AppsV1Api, batch: client.BatchV1Api,
                 networking: client.NetworkingV1Api, autoscaling: client.AutoscalingV2Api,
                 discovery: client.DiscoveryV1Api, cluster_host: str = '', kube_version: str = '',
                 mode: str = '', namespace: Optional[str] = None):
        self.core = core
        self.apps = apps
        self.batch = batch
        self.networking = networking
        self.autoscaling = autoscaling
        self.discovery = discovery
        self.cluster_host = cluster_host
        self.kube_version = kube_version
        self.mode = mode
        self.namespace = namespace

    def info(self) -> Dict[str, Any]:
        return {
            'clusterHost': self.cluster_host,
            'kubeVersion': self.kube_version,
            'mode': self.mode,
            'namespace': self.namespace,
        }


def in_cluster() -> bool:
    """True when running inside a pod (the service host variable is injected by Kubernetes)."""
    return bool(os.getenv(IN_CLUSTER_ENV))


async def load_kube(kubeconfig: Optional[str], context: Optional[str], namespace: Optional[str] = None) -> KubeContext:
    """
    Load and initialize Kubernetes API clients.

    An explicit kubeconfig or context always wins. Otherwise in-cluster
    configuration is used when running in a pod, and the default kubeconfig
    when not, falling back to in-cluster config if no kubeconfig is found.
    The API server version is read as a connectivity check.

    Args:
        kubeconfig: Path to kubeconfig file (optional, uses default if None)
        context: Kubernetes context name (optional, uses current context if None)
        namespace: Restrict KubeView to this namespace (optional)

    Returns:
        KubeContext: Initialized context with all API clients

    Raises:
        Exception: If Kubernetes configuration cannot be loaded or the API server is unreachable

    Example:
        ```python
        kube = await load_kube(None, None)
        kube = await load_kube("/path/to/config", "my-context", namespace="prod")
        ```
    """
    def _load():
        mode = 'out-of-cluster'
        if kubeconfig or context:
            config.load_kube_config(config_file=kubeconfig, context=context)
        elif in_cluster():
            config.load_incluster_config()
            mode = 'in-cluster'
        else:
            try:
                config.load_kube_config()
            except Exception:
                config.load_incluster_config()
                mode = 'in-cluster'
        api_client = client.ApiClient()
        version = client.VersionApi(api_client).get_code().git_version
        return KubeContext(
            core=client.CoreV1Api(api_client),
            apps=client.AppsV1Api(api_client),
            batch=client.BatchV1Api(api_client),
            networking=client.NetworkingV1Api(api_client),
            autoscaling=client.AutoscalingV2Api(api_client),
            discovery=client.DiscoveryV1Api(api_client),
            cluster_host=api_client.configuration.host,
            kube_version=version,
            mode=mode,
            namespace=namespace,
        )
    loop = asyncio.get_event_loop()
    kube = await loop.run_in_executor(None, _load)
    log.info(f"[kube] connected to {kube.cluster_host} ({kube.kube_version}, {kube.mode})")
    return kube


def _list_call(kube: KubeContext, rtype: ResourceType, namespace: Optional[str]) -> Tuple[Callable[..., Any], tuple]:
    api = getattr(kube, rtype.api)
    fn = getattr(api, rtype.list_function_name(namespace))
    args = (namespace,) if rtype.namespaced and namespace else ()
    return fn, args


def _fill_type(obj: Dict[str, Any], rtype: ResourceType) -> Dict[str, Any]:
    # list items come back without kind/apiVersion
    obj.setdefault('kind', rtype.kind)
    obj.setdefault('apiVersion', rtype.api_version)
    return obj


def list_resources(kube: KubeContext, rtype: ResourceType, namespace: Optional[str] = None) -> Tuple[List[Dict[str, Any]], str]:
    """
    List all objects of one kind (blocking).

    Args:
        kube: Kubernetes context
        rtype: Kind to list
        namespace: Namespace to list in; None lists across all namespaces

    Returns:
        Tuple of (raw objects, list resourceVersion to start a watch from)

    Raises:
        ApiException: On API errors
    """
    fn, args = _list_call(kube, rtype, namespace)
    resp = fn(*args, _preload_content=False)
    data = json.loads(resp.data)
    items = [_fill_type(item, rtype) for item in data.get('items') or []]
    resource_version = (data.get('metadata') or {}).get('resourceVersion') or ''
    return items, resource_version


def watch_events(kube: KubeContext, rtype: ResourceType, namespace: Optional[str], resource_version: str,
                 stop_event: threading.Event, timeout_seconds: int = WATCH_TIMEOUT_SECONDS) -> Iterator[Tuple[str, Dict[str, Any]]]:
    """
    Stream watch notifications for one kind (blocking generator).

    Yields (type, raw object) pairs where type is ADDED, MODIFIED or DELETED.
    Returns when the server closes the watch after timeout_seconds or when
    stop_event is set (checked as each notification arrives).

    Raises:
        ApiException: On API errors, including status 410 when resource_version is too old
    """
    fn, args = _list_call(kube, rtype, namespace)
    w = watch.Watch()
    try:
        for event in w.stream(fn, *args, resource_version=resource_version, timeout_seconds=timeout_seconds):
            if stop_event.is_set():
                break
            etype = event.get('type')
            obj = event.get('raw_object') or {}
            if etype == 'ERROR':
                raise ApiException(status=obj.get('code'), reason=obj.get('reason') or obj.get('message'))
            if etype not in ('ADDED', 'MODIFIED', 'DELETED'):
                continue
            yield etype, _fill_type(obj, rtype)
    finally:
        w.stop()


async def list_namespaces(kube: KubeContext) -> List[str]:
    """Names of all namespaces, or just the configured one in single-namespace mode."""
    if kube.namespace:
        return [kube.namespace]
    loop = asyncio.get_event_loop()
    resp = await loop.run_in_executor(None, kube.core.list_namespace)
    return sorted(ns.metadata.name for ns in resp.items)


async def namespace_exists(kube: KubeContext, namespace: str) -> bool:
    """
    Check whether a namespace exists.

    In single-namespace mode only the configured namespace exists; no
    cluster-scoped read is made since the service account may lack access.
    """
    if not namespace:
        return False
    if kube.namespace:
        return namespace == kube.namespace
    loop = asyncio.get_event_loop()
    def _get():
        try:
            kube.core.read_namespace(name=namespace)
            return True
        except ApiException as e:
            if e.status == 404:
                return False
            raise
    return await loop.run_in_executor(None, _get)


async def fetch_namespace(kube: KubeContext, namespace: str, resource_types: List[ResourceType],
                          policy: Optional[RedactionPolicy] = None,
                          name_pattern: Optional[Pattern[str]] = None) -> Dict[str, List[Dict[str, Any]]]:
    """
    Fetch a redacted snapshot of every watched kind in a namespace.

    Kinds the API server does not serve, or that the service account may not
    list (404/403), come back as empty lists so one missing kind does not fail
    the whole snapshot.

    Args:
        kube: Kubernetes context
        namespace: Namespace to snapshot
        resource_types: Kinds to include
        policy: Redaction policy applied to every object
        name_pattern: Only objects whose name matches are included, as for watch events

    Returns:
        Dict[str, List[Dict[str, Any]]]: Objects keyed by plural resource name

    Raises:
        InvalidRequestError: If namespace is empty
        ApiException: For other API errors

    Example:
        ```python
        data = await fetch_namespace(kube, "default", namespaced_resource_types())
        for secret in data["secrets"]:
            print(sorted(secret["data"]))
        ```
    """
    if not namespace:
        raise InvalidRequestError("Namespace is required")
    loop = asyncio.get_event_loop()

    async def _one(rtype: ResourceType) -> Tuple[str, List[Dict[str, Any]]]:
        try:
            items, _ = await loop.run_in_executor(None, list_resources, kube, rtype, namespace)
        except ApiException as e:
            if e.status in (403, 404):
                log.warning(f"[kube] cannot list {rtype.plural} in {namespace}: {e.status} {e.reason}")
                return rtype.plural, []
            raise
        if name_pattern is not None:
            items = [item for item in items if name_pattern.search(Resource(item).name)]
        return rtype.plural, redact_all(items, policy)

    results = await asyncio.gather(*(_one(rt) for rt in resource_types))
    return dict(results)


async def fetch_pod_logs(kube: KubeContext, namespace: str, pod: str, lines: int = DEFAULT_LOG_LINES,
                         container: Optional[str] = None) -> str:
    """
    Fetch the last lines of a pod's logs.

    Args:
        kube: Kubernetes context
        namespace: Namespace containing the pod
        pod: Name of the pod
        lines: Number of lines from the end; values <= 0 use the default
        container: Container name, required by the API for multi-container pods

    Returns:
        str: Log text

    Raises:
        InvalidRequestError: If namespace or pod is empty
        PodNotFoundError: If the pod does not exist
        ApiException: For other API errors
    """
    if not namespace:
        raise InvalidRequestError("Namespace is required")
    if not pod:
        raise InvalidRequestError("Pod name is required")
    if not lines or lines <= 0:
        lines = DEFAULT_LOG_LINES
    lines = min(lines, MAX_LOG_LINES)

    loop = asyncio.get_event_loop()
    def _get():
        try:
            return kube.core.read_namespaced_pod_log(name=pod, namespace=namespace, tail_lines=lines, container=container)
        except ApiException as e:
            if e.status == 404:
                raise PodNotFoundError(f"Pod {namespace}/{pod} not found") from e
            raise
    return await loop.run_in_executor(None, _get)
