"""Shared HTTP type definitions to avoid circular imports."""

from dataclasses import dataclass
from typing import Iterable, Optional

BODYLESS_STATUSES = {204, 304}


@dataclass
class HttpRequest:
    """Represents a parsed HTTP request.

    ``target`` is the raw request-target from the request line and ``path``
    is its path component, neither percent-decoded nor normalized.
    """

    method: str
    path: str
    headers: dict[str, str]
    body: bytes = b""
    target: str = ""
    version: str = "HTTP/1.1"

    def __post_init__(self) -> None:
        if not self.target:
            self.target = self.path


@dataclass
class HttpResponse:
    """Represents an HTTP response to be sent to a client."""

    status_line: str
    headers: dict[str, str]
    body: bytes
    close_connection: bool
    body_iter: Optional[Iterable[bytes]] = None
    omit_body: bool = False

    @property
    def status_code(self) -> int:
        """Numeric status parsed from the status line."""
        return int(self.status_line.split(" ", 2)[1])

    @property
    def allows_body(self) -> bool:
        """Return False for statuses that never carry a message body."""
        code = self.status_code
        return code >= 200 and code not in BODYLESS_STATUSES

    def close(self) -> None:
        """Release resources held by a streaming body."""
        closer = getattr(self.body_iter, "close", None)
        if closer is not None:
            closer()


def should_close(headers: dict[str, str], version: str = "HTTP/1.1") -> bool:
    """Determine whether the connection should be closed after responding."""
    connection = headers.get("connection", "").lower()
    if version == "HTTP/1.0":
        return connection != "keep-alive"
    return connection == "close"
