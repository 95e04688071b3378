"""Per-request correlation IDs carried through logs and X-Request-ID."""

import contextvars
import logging
import re
import uuid
from typing import Any, MutableMapping, Optional

ROOT_LOGGER_NAME = "catd"
NO_CORRELATION_ID = "-"

# Client-supplied IDs end up in logs and response headers.
_CLIENT_ID_PATTERN = re.compile(r"[A-Za-z0-9._:-]{1,128}")

_correlation_id_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "correlation_id", default=None
)


def generate_correlation_id() -> str:
    return uuid.uuid4().hex


def get_correlation_id() -> Optional[str]:
    return _correlation_id_var.get()


def set_correlation_id(correlation_id: str) -> None:
    _correlation_id_var.set(correlation_id)


def clear_correlation_id() -> None:
    _correlation_id_var.set(None)


def adopt_correlation_id(candidate: Optional[str]) -> Optional[str]:
    """Use a client-supplied request ID when it is well formed.

    Malformed or missing values leave the current ID in place. Returns the
    ID now in effect.
    """
    if candidate and _CLIENT_ID_PATTERN.fullmatch(candidate):
        _correlation_id_var.set(candidate)
    return _correlation_id_var.get()


def component_name(logger_name: str) -> str:
    """Logger name relative to the ``catd`` root, e.g. ``handlers.file``."""
    prefix = f"{ROOT_LOGGER_NAME}."
    if logger_name.startswith(prefix):
        return logger_name[len(prefix) :]
    return logger_name


class CorrelationLoggerAdapter(logging.LoggerAdapter):
    """Adds ``correlation_id`` and ``component`` to every record's extra."""

    def process(
        self, msg: str, kwargs: MutableMapping[str, Any]
    ) -> tuple[str, MutableMapping[str, Any]]:
        extra = dict(kwargs.get("extra") or {})
        correlation_id = get_correlation_id()
        extra["correlation_id"] = correlation_id or NO_CORRELATION_ID
        extra["component"] = component_name(self.logger.name)
        kwargs["extra"] = extra
        return msg, kwargs
