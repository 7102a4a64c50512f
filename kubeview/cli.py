"""
Command-line interface for KubeView.

This module provides the command-line interface for the KubeView service,
handling argument parsing, input validation, and server startup. Every option
can also be set through a KUBEVIEW_* environment variable, which is convenient
when running in a container.

Key Functions:
- build_parser: Create and configure the argument parser
- main: Main entry point for the CLI application

Example:
    ```bash
    # Watch every namespace
    kubeview serve

    # Single namespace, only resources whose name starts with "api-"
    kubeview serve --namespace prod --filter '^api-' --port 8080
    ```
"""

import argparse
import asyncio
import sys

from .config import build_config, env_defaults
from .exceptions import InvalidPatternError, ConfigurationError
from .server import run_server


def build_parser() -> argparse.ArgumentParser:
    """
    Build and configure the command-line argument parser.

    Creates an ArgumentParser with all supported command-line options for KubeView,
    including server configuration, Kubernetes connection settings, watch filtering
    and broker tuning. Environment variables are used as defaults where set.

    Returns:
        argparse.ArgumentParser: Configured argument parser with all options

    Raises:
        ConfigurationError: If a numeric environment variable cannot be parsed

    Environment Variables:
        KUBEVIEW_HOST: Default host to bind to (default: localhost)
        KUBEVIEW_PORT: Default port to bind to (default: 8000)
        KUBEVIEW_SINGLE_NAMESPACE: Only watch this namespace
        KUBEVIEW_NAME_FILTER: Regex resource names must match
        KUBEVIEW_HEARTBEAT_SEC: Heartbeat interval in seconds (default: 10)
        KUBEVIEW_QUEUE_SIZE: Per-subscriber queue capacity (default: 256)
        KUBEVIEW_USE_ENDPOINT_SLICES: Watch EndpointSlices instead of Endpoints
        KUBEVIEW_REDACT_CONFIGMAPS: Redact ConfigMap data as well as Secrets
    """
    d = env_defaults()

    p = argparse.ArgumentParser("kubeview", description="Real-time Kubernetes namespace event service")
    p.add_argument("command", choices=['serve'], help="Subcommand to run (only 'serve' supported)")
    p.add_argument("--namespace", default=d['namespace'], help="Only watch this namespace (env: KUBEVIEW_SINGLE_NAMESPACE, default: all)")
    p.add_argument("--filter", default=d['filter'], help="Regex resource names must match (env: KUBEVIEW_NAME_FILTER)")
    p.add_argument("--kubeconfig", default=None, help="Path to kubeconfig (defaults to kube rules)")
    p.add_argument("--context", default=None, help="Kubecontext override")
    p.add_argument("--host", default=d['host'], help="Host to bind (env: KUBEVIEW_HOST)")
    p.add_argument("--port", type=int, default=d['port'], help="Port for HTTP server (env: KUBEVIEW_PORT)")
    p.add_argument("--heartbeat-interval", type=float, default=d['heartbeat_interval'], help="Heartbeat interval seconds (env: KUBEVIEW_HEARTBEAT_SEC)")
    p.add_argument("--queue-size", type=int, default=d['queue_size'], help="Per-subscriber event queue size (env: KUBEVIEW_QUEUE_SIZE)")
    p.add_argument("--endpoint-slices", action="store_true", default=d['endpoint_slices'], help="Watch EndpointSlices instead of Endpoints")
    p.add_argument("--redact-configmaps", action="store_true", default=d['redact_configmaps'], help="Redact ConfigMap data as well as Secrets")
    return p


def main() -> None:
    """
    Main entry point for the KubeView CLI application.

    Parses command-line arguments, validates configuration, and starts the
    KubeView server. Handles input validation, error reporting, and graceful
    shutdown on interruption.

    Raises:
        SystemExit: On configuration errors (exit code 2) or server errors (exit code 1)
    """
    try:
        parser = build_parser()
        args = parser.parse_args()
        config = build_config(args)
    except (InvalidPatternError, ConfigurationError) as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(2)

    try:
        asyncio.run(run_server(config))
    except KeyboardInterrupt:
        print("\nShutting down...", file=sys.stderr)
    except Exception as e:
        print(f"Server error: {e}", file=sys.stderr)
        sys.exit(1)

if __name__ == "__main__":  # pragma: no cover
    main()
