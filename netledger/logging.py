"""
netledger Structured Logging

Log records carry the ledger's correlation fields (request, network, task,
artifact, revision, agent). Fields come from ``extra=`` or from the
contextvars-based log context; JSON output redacts secrets.
"""

import json
import logging
import os
import re
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Dict, Iterator, Optional


STANDARD_FIELDS = ("request_id", "network_id", "task_id", "artifact_id", "revision_id", "agent_id")

# Attributes every LogRecord already has; never overwritten or re-emitted as extras.
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"asctime", "message"}

_SECRET_KEY = re.compile(r"token|secret|passw(or)?d|api_?key|private_key|credential|bearer", re.IGNORECASE)
_URL_USERINFO = re.compile(r"(?P<scheme>[a-z][a-z0-9+.-]*://)[^/@\s]+@", re.IGNORECASE)
_REDACTED = "[REDACTED]"


def redact(key: str, value: Any) -> Any:
    """Mask secret-looking keys and strip ``user:pass@`` from URLs, recursively."""
    if _SECRET_KEY.search(key or ""):
        return _REDACTED
    if isinstance(value, str):
        return _URL_USERINFO.sub(r"\g<scheme>", value)
    if isinstance(value, dict):
        return {k: redact(str(k), v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [redact(key, item) for item in value]
    return value


_LOG_CONTEXT: ContextVar[Dict[str, Any]] = ContextVar("netledger_log_context", default={})


def get_log_context() -> Dict[str, Any]:
    return dict(_LOG_CONTEXT.get())


def set_log_context(**fields: Any) -> None:
    """Bind fields for every record logged from the current context."""
    _LOG_CONTEXT.set({**_LOG_CONTEXT.get(), **{k: v for k, v in fields.items() if v is not None}})


def clear_log_context() -> None:
    _LOG_CONTEXT.set({})


@contextmanager
def log_context(**fields: Any) -> Iterator[Dict[str, Any]]:
    """Bind fields for the duration of a ``with`` block."""
    token = _LOG_CONTEXT.set({**_LOG_CONTEXT.get(), **{k: v for k, v in fields.items() if v is not None}})
    try:
        yield get_log_context()
    finally:
        _LOG_CONTEXT.reset(token)


class RequestIdFilter(logging.Filter):
    """
    Copy the bound log context onto records and default the standard fields.

    Values passed through ``extra=`` win over the bound context; missing
    standard fields become ``"-"`` so text formats can always reference them.
    """

    def __init__(self, default: str = "-") -> None:
        super().__init__()
        self.default = default

    def filter(self, record: logging.LogRecord) -> bool:
        bound = _LOG_CONTEXT.get()
        for key in set(bound) | set(STANDARD_FIELDS):
            if key in _RECORD_ATTRS or hasattr(record, key):
                continue
            setattr(record, key, bound.get(key, self.default))
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per record: standard fields, then any extras."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update({name: getattr(record, name, "-") for name in STANDARD_FIELDS})
        payload.update({
            key: value
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRS and key not in payload
        })
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps({key: redact(key, value) for key, value in payload.items()}, default=str)


TEXT_FORMAT = (
    "%(asctime)s %(levelname)s %(name)s %(message)s "
    "req=%(request_id)s network=%(network_id)s task=%(task_id)s "
    "artifact=%(artifact_id)s revision=%(revision_id)s agent=%(agent_id)s"
)


def setup_logging(level: Optional[str] = None, json_output: bool = False) -> logging.Logger:
    """
    Replace the root handlers with one stderr handler.

    Args:
        level: Log level name (default: NETLEDGER_LOG_LEVEL or INFO)
        json_output: Emit JSON lines instead of the text format

    Returns:
        The ``netledger`` logger
    """
    handler = logging.StreamHandler()
    handler.addFilter(RequestIdFilter())
    handler.setFormatter(JsonFormatter() if json_output else logging.Formatter(TEXT_FORMAT))

    level_name = str(level or os.environ.get("NETLEDGER_LOG_LEVEL") or "INFO").upper()
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(getattr(logging, level_name, logging.INFO))
    return logging.getLogger("netledger")


def get_logger(name: str = "netledger") -> logging.Logger:
    return logging.getLogger(name)


def init_cli_logging(level: Optional[str] = None, json_output: bool = False) -> logging.Logger:
    """CLI entry point: explicit level, else NETLEDGER_LOG_LEVEL."""
    return setup_logging(level, json_output=json_output)


def json_logging_from_env() -> bool:
    return os.environ.get("NETLEDGER_LOG_JSON", "").lower() in ("1", "true", "yes", "on")


def log_extra(*, request_id: Optional[str] = None, **fields: Any) -> Dict[str, Any]:
    """
    Build the ``extra=`` dict for a log call, dropping ``None`` values.

    Example:
        logger.info("task_started", extra=log_extra(network_id="n1", task_id="t1"))
    """
    fields["request_id"] = request_id
    return {key: value for key, value in fields.items() if value is not None}


# CLI exit codes
EXIT_OK = 0
EXIT_RUNTIME_ERROR = 1
EXIT_CONFIG_ERROR = 2
EXIT_STATE_REJECTED = 4
