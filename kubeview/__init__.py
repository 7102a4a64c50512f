"""
KubeView - Real-time Kubernetes namespace event service.

KubeView keeps remote viewers synchronized with the live state of the resources
in a Kubernetes namespace. It watches pods, services, workloads, config and
secrets (with secret values redacted), and pushes every change to subscribed
viewers over server-sent events or WebSockets, with a periodic heartbeat so
dead connections are noticed.

Key Features:
- One watcher per resource kind with automatic relist and reconnect
- Namespace-scoped publish/subscribe broker with bounded, non-blocking delivery
- Secret (and optionally ConfigMap) values redacted before leaving the process
- Namespace snapshots, namespace listing and pod log tailing over REST
- Single-namespace mode for restricted service accounts

Example:
    Basic usage:
    ```bash
    kubeview serve
    ```

    Restricted to one namespace:
    ```bash
    kubeview serve --namespace prod --port 8000
    ```
"""

__all__ = ["__version__"]
__version__ = "0.1.0"
