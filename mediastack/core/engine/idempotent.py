"""
Idempotent apply — list existing, compare by identity, create if absent.

Every cross-service configuration step has the same shape regardless
of backend: fetch the current resources of one kind, look for one
whose identity (usually its name) matches what we want, and create it
only when it is missing.  Re-running against a configured stack
therefore issues zero writes.

``ensure_resource`` never raises for backend failures: a failed list,
a failed descriptor build, or a failed create each become a failed
ActionOutcome.  Only OperationCancelledError propagates.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from mediastack.adapters.base import ApiError, ResourceCollection
from mediastack.core.models.outcome import ActionOutcome
from mediastack.core.reliability.cancel import CancelToken
from mediastack.core.reliability.errors import TransportError

logger = logging.getLogger(__name__)

# Failures a backend call is expected to produce
BACKEND_ERRORS: tuple[type[Exception], ...] = (ApiError, TransportError)


def by_name(resource: dict[str, Any]) -> str:
    return str(resource.get("name") or "")


def by_path(resource: dict[str, Any]) -> str:
    return str(resource.get("path") or "").rstrip("/")


@dataclass(frozen=True)
class DesiredResource:
    """A resource that should exist on a backend.

    Args:
        service: Backend the resource lives on (ledger ``service``).
        action: Ledger ``action`` label, e.g. 'create root folder'.
        identity: Value that identifies the resource, e.g. its name.
        collection: Where to list and create.
        build: Produces the create descriptor; only called when missing.
        identify: Extracts the identity from a listed resource.
    """

    service: str
    action: str
    identity: str
    collection: ResourceCollection
    build: Callable[[], dict[str, Any]]
    identify: Callable[[dict[str, Any]], str] = by_name


def ensure_resource(
    desired: DesiredResource,
    cancel: CancelToken | None = None,
) -> ActionOutcome:
    """Make sure ``desired`` exists, creating it at most once."""
    service, action = desired.service, desired.action
    kind = desired.collection.kind

    try:
        existing = desired.collection.list(cancel)
    except BACKEND_ERRORS as e:
        logger.error("%s: failed to list %s resources: %s", service, kind, e)
        return ActionOutcome.failure(service, action, f"list {kind}: {e}")

    for resource in existing:
        if isinstance(resource, dict) and desired.identify(resource) == desired.identity:
            logger.info("%s: %s %r already exists", service, kind, desired.identity)
            return ActionOutcome.success(service, action)

    try:
        descriptor = desired.build()
    except (TypeError, ValueError) as e:
        logger.error("%s: cannot build %s %r: %s", service, kind, desired.identity, e)
        return ActionOutcome.failure(service, action, f"build {kind}: {e}")

    try:
        desired.collection.create(descriptor, cancel)
    except BACKEND_ERRORS as e:
        logger.error("%s: failed to create %s %r: %s", service, kind, desired.identity, e)
        return ActionOutcome.failure(service, action, f"create {kind}: {e}")

    logger.info("%s: created %s %r", service, kind, desired.identity)
    return ActionOutcome.success(service, action)
