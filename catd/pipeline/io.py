"""HTTP Input/Output operations."""

import logging
import socket
import urllib.parse
from typing import Optional, Tuple

from catd.bootstrap.config import HEADER_DELIMITER, MAX_HEADER_BYTES
from catd.domain.correlation_id import (
    CorrelationLoggerAdapter,
    adopt_correlation_id,
    get_correlation_id,
)
from catd.domain.http_types import HttpRequest, HttpResponse

IO_LOGGER = CorrelationLoggerAdapter(logging.getLogger("catd.io"), {})

MAX_BODY_BYTES = 1024 * 1024
SUPPORTED_VERSIONS = {"HTTP/1.0", "HTTP/1.1"}


def parse_headers(lines: list[str]) -> dict[str, str]:
    """Convert raw header lines into a lowercase-keyed dictionary."""
    parsed = {}
    for line in lines:
        name, separator, value = line.partition(":")
        if not separator or not name or name != name.strip():
            continue
        parsed[name.lower()] = value.strip()
    return parsed


def parse_request_line(request_line: str) -> Tuple[str, str, str, str]:
    """Split the request line into method, raw target, raw path and version.

    The path is taken verbatim from the request-target: it is neither
    percent-decoded nor normalized.
    """
    try:
        method, target, version = request_line.split(" ", 2)
    except ValueError as exc:
        raise ValueError("Invalid request line") from exc
    if not method or not target or version not in SUPPORTED_VERSIONS:
        raise ValueError("Invalid request line")

    if target.startswith("/"):
        path = target.split("?", 1)[0]
    elif "://" in target:
        path = urllib.parse.urlsplit(target).path or "/"
    else:
        raise ValueError("Invalid request target")
    return method, target, path, version


def determine_content_length(headers: dict[str, str]) -> int:
    """Validate and return the declared Content-Length for the request."""
    if "transfer-encoding" in headers:
        raise ValueError("Request bodies with Transfer-Encoding are not supported")
    header_value = headers.get("content-length")
    if header_value is None:
        return 0
    try:
        content_length = int(header_value)
    except ValueError as exc:
        raise ValueError("Invalid Content-Length") from exc
    if content_length < 0:
        raise ValueError("Negative Content-Length")
    if content_length > MAX_BODY_BYTES:
        raise ValueError("Request body too large")
    return content_length


def receive_request(
    client_socket: socket.socket, buffer: bytes
) -> Tuple[Optional[HttpRequest], bytes]:
    """Read bytes from the socket until a complete request is available.

    Returns ``(None, b"")`` when the peer closes the connection first.
    """
    while HEADER_DELIMITER not in buffer:
        if len(buffer) > MAX_HEADER_BYTES:
            raise ValueError("Request header too large")
        chunk = client_socket.recv(4096)
        if not chunk:
            return None, b""
        buffer += chunk

    header_block, remainder = buffer.split(HEADER_DELIMITER, 1)
    header_lines = header_block.decode("latin-1").split("\r\n")
    method, target, path, version = parse_request_line(header_lines[0])
    headers = parse_headers(header_lines[1:])

    adopt_correlation_id(headers.get("x-request-id"))

    content_length = determine_content_length(headers)

    while len(remainder) < content_length:
        chunk = client_socket.recv(4096)
        if not chunk:
            return None, b""
        remainder += chunk

    body = remainder[:content_length]
    leftover = remainder[content_length:]
    IO_LOGGER.debug(
        "Parsed request", extra={"event": "request_parsed", "method": method}
    )
    return HttpRequest(method, path, headers, body, target, version), leftover


def send_response(client_socket: socket.socket, response: HttpResponse) -> int:
    """Serialize and send the HTTP response over the socket.

    Returns the number of body bytes written. A streaming body is always
    closed, even when sending fails. A streamed body that ends before its
    declared Content-Length marks the response for connection close, since
    the client can no longer find the end of the message.
    """
    try:
        headers = dict(response.headers)

        correlation_id = get_correlation_id()
        if correlation_id:
            headers["X-Request-ID"] = correlation_id

        if response.allows_body:
            headers.setdefault("Content-Length", str(len(response.body)))
        if response.close_connection:
            headers["Connection"] = "close"
        header_lines = [response.status_line]
        header_lines.extend(f"{name}: {value}" for name, value in headers.items())
        header_block = "\r\n".join(header_lines).encode("latin-1") + b"\r\n\r\n"

        sent = 0
        if response.omit_body or not response.allows_body:
            client_socket.sendall(header_block)
        elif response.body_iter is not None:
            client_socket.sendall(header_block)
            for chunk in response.body_iter:
                client_socket.sendall(chunk)
                sent += len(chunk)
            declared = headers.get("Content-Length")
            if declared is not None and sent < int(declared):
                IO_LOGGER.warning(
                    "Response body shorter than Content-Length",
                    extra={"event": "response_truncated", "bytes_out": sent},
                )
                response.close_connection = True
        else:
            client_socket.sendall(header_block + response.body)
            sent = len(response.body)
    finally:
        response.close()
    IO_LOGGER.debug(
        "Sent response",
        extra={
            "event": "response_sent",
            "status_code": response.status_code,
            "bytes_out": sent,
        },
    )
    return sent
