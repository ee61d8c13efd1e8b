"""Structured logging setup for the service process."""
from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Dict

_EXTRA_FIELDS = ("component", "event_type", "severity")


class StructuredFormatter(logging.Formatter):
    """Formatter that emits JSON or plain logs with shared context."""

    def __init__(self, service: str, as_json: bool = True) -> None:
        super().__init__()
        self.service = service
        self.as_json = as_json

    def format(self, record: logging.LogRecord) -> str:
        payload = self._payload(record)
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        if self.as_json:
            return json.dumps(payload, ensure_ascii=False, default=str)
        return _format_plain(payload)

    def _payload(self, record: logging.LogRecord) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "ts": datetime.utcnow().isoformat() + "Z",
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "service": self.service,
        }
        for attr in _EXTRA_FIELDS:
            value = getattr(record, attr, None)
            if value is not None:
                payload[attr] = value
        context = getattr(record, "context", None)
        if context:
            payload["context"] = context
        return payload


def _format_plain(payload: Dict[str, Any]) -> str:
    parts = [payload["ts"], f"[{payload['level']}]", payload["logger"], payload.get("msg", "").strip()]
    for attr in _EXTRA_FIELDS:
        if attr in payload:
            parts.append(f"{attr}={payload[attr]}")
    if "context" in payload:
        parts.append(json.dumps(payload["context"], ensure_ascii=False, default=str))
    if "exception" in payload:
        parts.append("\n" + payload["exception"])
    return " ".join(parts)


def configure_logging(level_name: str, log_format: str, service: str) -> None:
    level = getattr(logging, level_name.upper(), logging.INFO)
    handler = logging.StreamHandler()
    handler.setFormatter(StructuredFormatter(service, as_json=log_format.lower() == "json"))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)
