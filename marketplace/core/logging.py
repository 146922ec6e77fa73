"""
Logging for the marketplace engine.

Every record is written as one JSON line. Marketplace identifiers passed
through ``extra`` (rfq, supplier, bid, actor) are grouped under "ids" so
log queries can follow one RFQ or supplier across services. Event
payloads travel as ``extra={"payload": ...}`` and are attached with the
parties' private details masked.
"""
import json
import logging
import re
import sys
from datetime import datetime, timezone
from typing import Optional, TextIO

from marketplace.core.config import settings

_ID_FIELDS = ("rfq_id", "supplier_id", "bid_id", "actor_id")

# Contact details and bid notes stay between customer and supplier
_PRIVATE_KEYS = frozenset({"contact_email", "notes", "authorization"})

_EMAIL = re.compile(r"\b([\w+-])[\w.+-]*@([\w-]+(?:\.[\w-]+)+)")
_BEARER = re.compile(r"(bearer\s+)\S+", re.IGNORECASE)

_HANDLER_NAME = "marketplace-json"


def mask_text(text: str) -> str:
    """Hide bearer tokens and all but the first letter of email mailboxes."""
    text = _BEARER.sub(r"\1[token]", text)
    return _EMAIL.sub(r"\1***@\2", text)


def mask_payload(value):
    if isinstance(value, dict):
        return {
            k: "[private]" if k in _PRIVATE_KEYS else mask_payload(v)
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [mask_payload(v) for v in value]
    if isinstance(value, str):
        return mask_text(value)
    return value


class MarketplaceFormatter(logging.Formatter):
    """One JSON object per record: level, logger, message, ids, event and payload."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": mask_text(record.getMessage()),
        }

        event_type = getattr(record, "event_type", None)
        if event_type:
            entry["event"] = event_type

        ids = {
            field: getattr(record, field)
            for field in _ID_FIELDS
            if getattr(record, field, None) is not None
        }
        if ids:
            entry["ids"] = ids

        payload = getattr(record, "payload", None)
        if payload:
            entry["payload"] = mask_payload(payload)

        if record.exc_info:
            entry["error"] = mask_text(self.formatException(record.exc_info))

        return json.dumps(entry, default=str)


def setup_logging(level: Optional[int] = None, stream: Optional[TextIO] = None) -> logging.Handler:
    """
    Install the JSON handler on the root logger.

    Safe to call repeatedly: the handler is installed once and returned on
    later calls, even when other handlers (uvicorn, pytest) are present.
    """
    root_logger = logging.getLogger()
    for handler in root_logger.handlers:
        if handler.get_name() == _HANDLER_NAME:
            return handler

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(MarketplaceFormatter())
    root_logger.addHandler(handler)

    if level is None:
        level = logging.DEBUG if settings.DEBUG else logging.INFO
    root_logger.setLevel(level)

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    return handler


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


class EventLogger:
    """Mirrors marketplace domain events into the structured log."""

    def __init__(self, name: str = "marketplace.events"):
        self.logger = get_logger(name)

    def log(
        self,
        event_type: str,
        rfq_id: Optional[int] = None,
        actor_id: Optional[int] = None,
        supplier_id: Optional[int] = None,
        bid_id: Optional[int] = None,
        details: Optional[dict] = None,
    ):
        message = event_type if rfq_id is None else f"{event_type} rfq={rfq_id}"
        self.logger.info(message, extra={
            "event_type": event_type,
            "rfq_id": rfq_id,
            "actor_id": actor_id,
            "supplier_id": supplier_id,
            "bid_id": bid_id,
            "payload": details or {},
        })


event_logger = EventLogger()
