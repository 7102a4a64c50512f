"""
Input validation and sanitization for KubeView.

This module provides validation functions for all user inputs and configuration
values in the KubeView service: name filter patterns, network configuration,
namespace names, broker tuning and log request sizes.

Key Functions:
- validate_regex_pattern: Validates and compiles regex patterns
- validate_port: Validates port numbers (1-65535)
- validate_host: Validates host strings
- validate_namespace: Validates Kubernetes namespace names
- validate_heartbeat_interval: Validates the heartbeat interval
- validate_queue_size: Validates subscriber queue capacity

All validation functions raise appropriate exceptions (InvalidPatternError,
ConfigurationError) with descriptive error messages when validation fails.

Example:
    ```python
    try:
        pattern = validate_regex_pattern("^api-")
        port = validate_port(8000)
        namespace = validate_namespace("prod")
    except (InvalidPatternError, ConfigurationError) as e:
        print(f"Validation failed: {e}")
    ```
"""

import re
from typing import Optional

from .exceptions import InvalidPatternError, ConfigurationError

# RFC 1123 label, as required for namespace names
NAMESPACE_RE = re.compile(r'^[a-z0-9]([-a-z0-9]*[a-z0-9])?$')
NAMESPACE_MAX_LENGTH = 63


def validate_regex_pattern(pattern: str) -> re.Pattern:
    """
    Validate and compile a regex pattern for resource name matching.

    Validates that the provided pattern is a valid regular expression and compiles
    it for use in name filtering. The pattern is trimmed of whitespace before
    validation.

    Args:
        pattern: The regex pattern string to validate and compile

    Returns:
        re.Pattern: Compiled regex pattern ready for use

    Raises:
        InvalidPatternError: If the pattern is empty or invalid regex syntax

    Example:
        ```python
        pattern = validate_regex_pattern("^api-")
        pattern.search("api-7d9f")  # match
        ```
    """
    if not pattern or not pattern.strip():
        raise InvalidPatternError("Pattern cannot be empty")

    try:
        return re.compile(pattern.strip())
    except re.error as e:
        raise InvalidPatternError(f"Invalid regex pattern: {e}")


def validate_port(port: int) -> int:
    """
    Validate port number for server binding.

    Args:
        port: Port number to validate (must be integer)

    Returns:
        int: The validated port number (unchanged if valid)

    Raises:
        ConfigurationError: If port is not an integer or outside valid range
    """
    if not isinstance(port, int) or isinstance(port, bool) or port < 1 or port > 65535:
        raise ConfigurationError(f"Port must be an integer between 1 and 65535, got: {port}")
    return port


def validate_host(host: str) -> str:
    """
    Validate host string for server binding.

    Ensures the host string is not empty and not longer than a DNS name.
    Whitespace is trimmed.

    Raises:
        ConfigurationError: If host is empty or too long
    """
    if not host or not host.strip():
        raise ConfigurationError("Host cannot be empty")

    host = host.strip()

    if len(host) > 253:  # DNS name length limit
        raise ConfigurationError("Host name too long")

    return host


def validate_namespace(namespace: Optional[str]) -> Optional[str]:
    """
    Validate a Kubernetes namespace name.

    Empty values mean "all namespaces" and are returned as None.

    Args:
        namespace: Namespace name or None

    Returns:
        Optional[str]: The trimmed namespace, or None

    Raises:
        ConfigurationError: If the name is not a valid RFC 1123 label

    Example:
        ```python
        validate_namespace("kube-system")  # "kube-system"
        validate_namespace("")             # None
        validate_namespace("Bad_NS")       # raises ConfigurationError
        ```
    """
    if namespace is None or not namespace.strip():
        return None
    namespace = namespace.strip()
    if len(namespace) > NAMESPACE_MAX_LENGTH or not NAMESPACE_RE.match(namespace):
        raise ConfigurationError(f"Invalid namespace name: {namespace!r}")
    return namespace


def validate_heartbeat_interval(interval: float) -> float:
    """
    Validate the heartbeat interval.

    Raises:
        ConfigurationError: If interval is not a positive number, or below 1 second
    """
    if not isinstance(interval, (int, float)) or isinstance(interval, bool) or interval <= 0:
        raise ConfigurationError(f"Heartbeat interval must be a positive number, got: {interval}")

    if interval < 1.0:
        raise ConfigurationError("Heartbeat interval should be at least 1 second")

    return float(interval)


def validate_queue_size(size: int) -> int:
    """Validate subscriber queue capacity (1-100000)."""
    if not isinstance(size, int) or isinstance(size, bool) or size < 1 or size > 100000:
        raise ConfigurationError(f"Queue size must be an integer between 1 and 100000, got: {size}")
    return size
