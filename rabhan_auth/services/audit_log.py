"""Compliance audit trail for authentication activity.

Successful sensitive state changes go through :func:`log_auth_event`; failures
that a reviewer should see go through :func:`log_security_event` with a
severity tier. Both write to the ``rabhan_auth.audit`` logger so deployments
can route the trail to its own sink.
"""
from __future__ import annotations

import logging
from datetime import datetime
from enum import Enum
from typing import Any

audit_logger = logging.getLogger("rabhan_auth.audit")

AUTH_COMPLIANCE_TAG = "SAMA_CSF_3.3.5"
SECURITY_COMPLIANCE_TAG = "SAMA_CSF_3.3.14"


class Severity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


def log_auth_event(event_type: str, identity_id: str | None = None, **data: Any) -> None:
    audit_logger.info(
        "AUTH_EVENT %s",
        event_type,
        extra={
            "component": "audit",
            "event_type": event_type,
            "context": {
                "identity_id": identity_id or "unknown",
                "data": data,
                "timestamp": datetime.utcnow().isoformat() + "Z",
                "compliance": AUTH_COMPLIANCE_TAG,
            },
        },
    )


def log_security_event(event_type: str, severity: Severity, **data: Any) -> None:
    audit_logger.warning(
        "SECURITY_EVENT %s severity=%s",
        event_type,
        severity.value,
        extra={
            "component": "audit",
            "event_type": event_type,
            "severity": severity.value,
            "context": {
                "data": data,
                "timestamp": datetime.utcnow().isoformat() + "Z",
                "compliance": SECURITY_COMPLIANCE_TAG,
            },
        },
    )


def mask_token(token: str) -> str:
    return f"{token[:8]}..." if token else ""
