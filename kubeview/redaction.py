"""
Redaction of sensitive resource fields.

Secrets (and optionally ConfigMaps) are pushed to viewers with their keys intact
but every value replaced by a fixed sentinel, so the UI can still list which keys
a secret holds without the plaintext ever leaving the process.

A policy maps a resource kind to field paths. A path is a tuple of keys walked
from the top of the object; ``"*"`` matches every key of the mapping at that
level. Missing or non-mapping fields along a path are skipped.

Example:
    ```python
    secret = {"kind": "Secret", "data": {"user": "YWRtaW4=", "pass": "czNjcjN0"}}
    redact(secret)["data"]  # {"user": "*REDACTED*", "pass": "*REDACTED*"}
    ```
"""

from typing import Dict, Any, Iterable, List, Optional, Tuple

from .constants import REDACTED, LAST_APPLIED_ANNOTATION

FieldPath = Tuple[str, ...]
RedactionPolicy = Dict[str, Tuple[FieldPath, ...]]

WILDCARD = "*"

SECRET_PATHS: Tuple[FieldPath, ...] = (
    ('data', WILDCARD),
    ('stringData', WILDCARD),
    # kubectl apply keeps the full manifest, plaintext values included
    ('metadata', 'annotations', LAST_APPLIED_ANNOTATION),
)

CONFIGMAP_PATHS: Tuple[FieldPath, ...] = (
    ('data', WILDCARD),
    ('binaryData', WILDCARD),
    ('metadata', 'annotations', LAST_APPLIED_ANNOTATION),
)

DEFAULT_POLICY: RedactionPolicy = {'Secret': SECRET_PATHS}


def build_policy(redact_configmaps: bool = False) -> RedactionPolicy:
    """Return the redaction policy, optionally extended to ConfigMaps."""
    policy = dict(DEFAULT_POLICY)
    if redact_configmaps:
        policy['ConfigMap'] = CONFIGMAP_PATHS
    return policy


def _redact_path(node: Dict[str, Any], path: FieldPath) -> None:
    # node is always a private copy owned by the caller
    key, rest = path[0], path[1:]
    keys = list(node) if key == WILDCARD else [key]
    for k in keys:
        if k not in node:
            continue
        if not rest:
            node[k] = REDACTED
            continue
        child = node[k]
        if not isinstance(child, dict):
            continue
        child = dict(child)
        node[k] = child
        _redact_path(child, rest)


def redact(resource: Dict[str, Any], policy: Optional[RedactionPolicy] = None) -> Dict[str, Any]:
    """
    Scrub sensitive values from a resource.

    Kinds not covered by the policy are returned as-is (the same object). For
    covered kinds a new object is returned; only the containers along the
    redacted paths are copied, so the input is never mutated.

    Args:
        resource: Raw resource object (as decoded from the API JSON)
        policy: Redaction policy, DEFAULT_POLICY when omitted

    Returns:
        Dict[str, Any]: The redacted resource

    Example:
        ```python
        safe = redact(raw_secret, build_policy(redact_configmaps=True))
        ```
    """
    if not isinstance(resource, dict):
        return resource
    paths = (DEFAULT_POLICY if policy is None else policy).get(resource.get('kind') or '')
    if not paths:
        return resource

    out = dict(resource)
    for path in paths:
        if path:
            _redact_path(out, path)
    return out


def redact_all(resources: Iterable[Dict[str, Any]], policy: Optional[RedactionPolicy] = None) -> List[Dict[str, Any]]:
    return [redact(r, policy) for r in resources]
