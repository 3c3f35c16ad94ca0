"""Audit trail for certificate lifecycle events.

Every change to the live certificate (replace, import, restore, removal) and
every failed renewal is recorded as a single structured log line.
"""

import time
import uuid
from typing import Any, Dict

from .logger import get_logger

logger = get_logger(__name__)

# Key fields rendered first, in this order
FIELD_ORDER = [
    "status",
    "domain",
    "source",
    "label",
    "backup",
    "ssl_path",
    "days_left",
    "error_message",
    "correlation_id",
]


def log_audit_event(event_type: str, details: Dict[str, Any]) -> None:
    """Log an audit trail event.

    Audit events are logged at INFO level, WARNING level when
    ``details["status"] == "degraded"`` (a non-fatal failure such as a missed
    renewal), or ERROR level when ``details["status"] == "failure"``. Fields
    whose value is None are omitted.

    Args:
        event_type: Event name (e.g. "CERTIFICATE_REPLACED",
                   "CERTIFICATE_RENEWAL_FAILED", "CERTIFICATE_IMPORTED")
        details: Event details. Common fields include status, domain, source,
                 backup, error_message and an optional correlation_id.

    Example:
        >>> log_audit_event("CERTIFICATE_REPLACED", {
        ...     "status": "success",
        ...     "domain": "app.example.com",
        ...     "source": "letsencrypt",
        ...     "backup": "20240101_120000",
        ... })
    """
    details = dict(details)
    details.setdefault("timestamp", time.time())
    details.setdefault("correlation_id", str(uuid.uuid4()))

    message_parts = [f"AUDIT [{event_type}]"]

    for field in FIELD_ORDER:
        if details.get(field) is not None:
            message_parts.append(f"{field}={details[field]}")

    for key, value in details.items():
        if key not in FIELD_ORDER and key != "timestamp" and value is not None:
            message_parts.append(f"{key}={value}")

    audit_message = " | ".join(message_parts)

    if details.get("status") == "failure":
        logger.error(audit_message)
    elif details.get("status") == "degraded":
        logger.warning(audit_message)
    else:
        logger.info(audit_message)
