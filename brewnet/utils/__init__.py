"""Shared utility functions and models for the BrewNet auth engine.

This package provides convenience re-exports so that consumers can import
directly from ``brewnet.utils`` (e.g. ``from brewnet.utils import
parse_pro_end``) while full absolute imports (e.g. ``from
brewnet.utils.validators import validate_email``) remain supported.

Only leaf modules are re-exported here: ``brewnet.models`` imports
``brewnet.utils.pro_expiry``, so nothing in this package may import the
models package at module level.
"""

from brewnet.utils.audit import AuditEvent, log_audit_event
from brewnet.utils.pro_expiry import can_like, is_pro_active, parse_pro_end

__all__ = [
    "AuditEvent",
    "can_like",
    "is_pro_active",
    "log_audit_event",
    "parse_pro_end",
]
