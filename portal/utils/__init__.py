"""Shared utility functions for the portal client.

This package provides convenience re-exports so that consumers can import
directly from ``portal.utils`` (e.g. ``from portal.utils import normalize_keys``)
while full absolute imports remain supported.

``portal.utils.validators`` depends on the models layer and is imported
by its full path only.
"""

from portal.utils.audit import AuditEvent, log_audit_event
from portal.utils.string_helpers import (
    denormalize_keys,
    normalize_keys,
    to_camel_case,
    to_snake_case,
)

__all__ = [
    "AuditEvent",
    "denormalize_keys",
    "log_audit_event",
    "normalize_keys",
    "to_camel_case",
    "to_snake_case",
]
