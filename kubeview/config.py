"""Configuration loading from KUBEVIEW_* environment variables and command-line options."""

import argparse
import os
from typing import Optional

from .constants import (
    DEFAULT_HOST, DEFAULT_PORT, HEARTBEAT_INTERVAL_SECONDS, DEFAULT_SUBSCRIBER_QUEUE_SIZE,
    DEFAULT_LOG_LEVEL, DEFAULT_UVICORN_LOG_LEVEL
)
from .exceptions import ConfigurationError
from .models import ServerConfig
from .validation import (
    validate_regex_pattern, validate_port, validate_host, validate_namespace,
    validate_heartbeat_interval, validate_queue_size
)


def env(key: str, default: Optional[str] = None) -> Optional[str]:
    return os.environ.get(f"KUBEVIEW_{key}", default)


def env_bool(key: str, default: bool = False) -> bool:
    val = env(key, str(default).lower())
    return val.lower() in ("true", "1", "yes")


def env_int(key: str, default: int) -> int:
    val = env(key, str(default))
    try:
        return int(val)
    except ValueError:
        raise ConfigurationError(f"KUBEVIEW_{key} must be an integer, got: {val!r}")


def env_float(key: str, default: float) -> float:
    val = env(key, str(default))
    try:
        return float(val)
    except ValueError:
        raise ConfigurationError(f"KUBEVIEW_{key} must be a number, got: {val!r}")


def build_config(args: argparse.Namespace) -> ServerConfig:
    """
    Validate parsed command-line options into a ServerConfig.

    Log levels are only configurable through the environment
    (KUBEVIEW_LOG_LEVEL, KUBEVIEW_UVICORN_LEVEL).

    Raises:
        ConfigurationError: On invalid host, port, namespace, interval or queue size
        InvalidPatternError: On an invalid name filter regex
    """
    name_filter = None
    if args.filter:
        name_filter = validate_regex_pattern(args.filter)

    return ServerConfig(
        host=validate_host(args.host),
        port=validate_port(args.port),
        namespace=validate_namespace(args.namespace),
        name_filter=name_filter,
        kubeconfig=args.kubeconfig,
        context=args.context,
        heartbeat_interval=validate_heartbeat_interval(args.heartbeat_interval),
        queue_size=validate_queue_size(args.queue_size),
        use_endpoint_slices=args.endpoint_slices,
        redact_configmaps=args.redact_configmaps,
        log_level=(env("LOG_LEVEL", DEFAULT_LOG_LEVEL) or DEFAULT_LOG_LEVEL).upper(),
        uvicorn_log_level=(env("UVICORN_LEVEL", DEFAULT_UVICORN_LOG_LEVEL) or DEFAULT_UVICORN_LOG_LEVEL).lower(),
    )


def env_defaults() -> dict:
    """Defaults for the command-line options, taken from the environment where set."""
    return {
        'host': env("HOST", DEFAULT_HOST),
        'port': env_int("PORT", DEFAULT_PORT),
        'namespace': env("SINGLE_NAMESPACE"),
        'filter': env("NAME_FILTER"),
        'heartbeat_interval': env_float("HEARTBEAT_SEC", HEARTBEAT_INTERVAL_SECONDS),
        'queue_size': env_int("QUEUE_SIZE", DEFAULT_SUBSCRIBER_QUEUE_SIZE),
        'endpoint_slices': env_bool("USE_ENDPOINT_SLICES", False),
        'redact_configmaps': env_bool("REDACT_CONFIGMAPS", False),
    }
