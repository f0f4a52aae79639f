from __future__ import annotations

import hashlib
import logging
import os
import re
import uuid
from contextvars import ContextVar
from typing import Any, Dict, Optional

import structlog

correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

# Substrings of event keys whose values never reach the log verbatim
_SENSITIVE_KEYS = ("password", "secret", "token", "authorization", "email", "code")
# Keys that contain a sensitive substring but carry no secret
_SAFE_KEYS = frozenset({"error_code", "status_code"})
_BEARER_RE = re.compile(r"(?i)\bbearer\s+\S+")


def get_correlation_id() -> Optional[str]:
    return correlation_id_var.get()


def set_correlation_id(correlation_id: Optional[str] = None) -> str:
    """Bind ``correlation_id`` (or a fresh UUID) to the current request context."""
    cid = correlation_id or str(uuid.uuid4())
    correlation_id_var.set(cid)
    return cid


def hash_email(email: str) -> str:
    """Stable digest for correlating log lines about one address."""
    return hashlib.sha256(email.strip().lower().encode()).hexdigest()[:16]


def _mask(value: Any) -> Any:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return "***"
    if isinstance(value, str) and len(value) > 4:
        return value[:2] + "***" + value[-2:]
    return value


def _add_correlation_id(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    cid = get_correlation_id()
    if cid:
        event_dict["correlation_id"] = cid
    return event_dict


def _redact_pii(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Mask credentials, one-time codes and addresses in log entries.

    Keys ending in ``_hash`` are digests and pass through. Free-text values
    that embed a bearer header are scrubbed regardless of their key.
    """
    for key, value in list(event_dict.items()):
        lower_key = key.lower()
        if lower_key.endswith("_hash") or lower_key in _SAFE_KEYS:
            continue
        if any(marker in lower_key for marker in _SENSITIVE_KEYS):
            event_dict[key] = _mask(value)
        elif isinstance(value, str) and _BEARER_RE.search(value):
            event_dict[key] = _BEARER_RE.sub("Bearer ***", value)
    return event_dict


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes", "on"}


def configure_logging(
    log_level: str = "INFO",
    json_output: bool = True,
    development_mode: bool = False,
) -> None:
    """Install the structlog pipeline.

    Args:
        log_level: Minimum level name (DEBUG, INFO, WARNING, ERROR)
        json_output: Render one JSON object per line
        development_mode: Render colored console output instead of JSON
    """
    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        _add_correlation_id,
        _redact_pii,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]
    if development_mode or not json_output:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))
    else:
        processors.extend([structlog.processors.format_exc_info, structlog.processors.JSONRenderer()])

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_logging(
    log_level=os.getenv("LOG_LEVEL", "INFO"),
    json_output=_env_flag("LOG_JSON", "true"),
    development_mode=_env_flag("LOG_DEV_MODE", "false"),
)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
