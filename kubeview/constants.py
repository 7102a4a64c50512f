"""
Constants and configuration for KubeView.

This module contains all the configuration constants used throughout the KubeView
service, including heartbeat timing, subscriber queue limits, watch reconnect
settings, redaction values, and default server settings.

Constants are organized by category:
- Broker: Heartbeat interval, queue sizes and the all-namespaces scope
- Watch: Watch timeouts and reconnect back-off
- Redaction: Sentinel value for scrubbed fields
- Logs: Default number of log lines returned
- Logging: Default log levels
- Server defaults: Default host and port configurations
"""

# Broker
HEARTBEAT_INTERVAL_SECONDS = 10.0
DEFAULT_SUBSCRIBER_QUEUE_SIZE = 256
ALL_NAMESPACES = "*"

# Watch
WATCH_TIMEOUT_SECONDS = 300
WATCH_QUEUE_SIZE = 1024
WATCH_BACKOFF_INITIAL_SECONDS = 1.0
WATCH_BACKOFF_MAX_SECONDS = 30.0

# Redaction
REDACTED = "*REDACTED*"
LAST_APPLIED_ANNOTATION = "kubectl.kubernetes.io/last-applied-configuration"

# Logs
DEFAULT_LOG_LINES = 100
MAX_LOG_LINES = 10000

# Logging
DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_UVICORN_LOG_LEVEL = "info"

# Server defaults
DEFAULT_HOST = "localhost"
DEFAULT_PORT = 8000

# Kubernetes
IN_CLUSTER_ENV = "KUBERNETES_SERVICE_HOST"
