"""Structured audit logging of remote identity changes."""

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from tapcon_monitor.utils.logging import get_logger


class AuditEventType(str, Enum):
    """Types of audit events."""

    # Principal events
    PRINCIPAL_CREATE = "principal_create"
    PRINCIPAL_DELETE = "principal_delete"
    PRINCIPAL_GC = "principal_gc"

    # Namespace events
    NS_JOIN = "ns_join"
    NS_LEAVE = "ns_leave"

    # Provenance events
    IMAGE_PROOF = "image_proof"

    # Static port events
    STATIC_PORTS_ASSIGN = "static_ports_assign"
    STATIC_PORTS_RELEASE = "static_ports_release"

    # System events
    SYSTEM_STARTUP = "system_startup"
    SYSTEM_SHUTDOWN = "system_shutdown"
    SYSTEM_RESCAN = "system_rescan"


class AuditLogger:
    """Structured audit logger for changes pushed to the metadata service."""

    def __init__(self):
        """Initialize the audit logger."""
        self._logger = get_logger("audit")
        # Audit events are kept regardless of the root level
        self._logger.setLevel(logging.INFO)

    def log_event(
        self,
        event_type: AuditEventType,
        principal: Optional[str] = None,
        ns_name: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        """
        Log an audit event.

        Args:
            event_type: Type of event being logged
            principal: Principal the event concerns, if any
            ns_name: Namespace the event concerns, if any
            details: Additional event-specific details
        """
        event = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event_type": event_type.value,
        }

        if principal:
            event["principal"] = principal
        if ns_name:
            event["ns_name"] = ns_name
        if details:
            event["details"] = details

        self._logger.info("audit_event", extra=event)


# Global audit logger instance
_audit_logger: Optional[AuditLogger] = None


def get_audit_logger() -> AuditLogger:
    """
    Get the global audit logger instance.

    Returns:
        AuditLogger instance
    """
    global _audit_logger
    if _audit_logger is None:
        _audit_logger = AuditLogger()
    return _audit_logger
