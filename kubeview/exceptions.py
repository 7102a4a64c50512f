"""
Custom exceptions for KubeView.

This module defines custom exception classes used throughout the KubeView service
to provide more specific error handling and better error messages for different
failure scenarios.

Exception Hierarchy:
- KubeviewError: Base exception for all KubeView-specific errors
  - KubernetesConnectionError: Raised when unable to connect to the cluster or start any watcher
  - InvalidPatternError: Raised when an invalid regex pattern is provided
  - ConfigurationError: Raised when there's a configuration issue
  - PodNotFoundError: Raised when a requested pod is not found
  - NamespaceNotFoundError: Raised when a requested namespace is not found
  - InvalidRequestError: Raised when a request is missing required values

Example:
    ```python
    try:
        await fetch_pod_logs(kube, "", "web-1")
    except InvalidRequestError as e:
        print(f"Bad request: {e}")
    ```
"""


class KubeviewError(Exception):
    """Base exception for KubeView errors."""
    pass


class KubernetesConnectionError(KubeviewError):
    """Raised when unable to connect to Kubernetes cluster."""
    pass


class InvalidPatternError(KubeviewError):
    """Raised when an invalid regex pattern is provided."""
    pass


class ConfigurationError(KubeviewError):
    """Raised when there's a configuration issue."""
    pass


class PodNotFoundError(KubeviewError):
    """Raised when a requested pod is not found."""
    pass


class NamespaceNotFoundError(KubeviewError):
    """Raised when a requested namespace is not found."""
    pass


class InvalidRequestError(KubeviewError):
    """Raised when a request is missing a namespace, pod name or other required value."""
    pass
