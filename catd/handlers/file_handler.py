"""Access-gated handler serving one file.

Every request re-reads the file's metadata and opens a fresh handle, so the
file may be replaced or modified while the server runs. When a key is
configured the request path must be exactly ``/<key>``; every other path gets
the same 404.
"""

import hmac
import logging
import mimetypes
import os
import secrets
import stat
from pathlib import Path
from typing import BinaryIO, Iterable, Iterator, Optional

from catd.bootstrap.config import ALLOWED_METHODS, SECURITY_HEADERS
from catd.bootstrap.logging_setup import REDACTED
from catd.domain.conditional import (
    ByteRange,
    InvalidRange,
    RangeNotSatisfiable,
    evaluate_preconditions,
    format_http_date,
    parse_range,
    range_is_applicable,
    total_length,
)
from catd.domain.correlation_id import CorrelationLoggerAdapter
from catd.domain.http_types import HttpRequest, HttpResponse, should_close
from catd.domain.response_builders import (
    internal_error_response,
    method_not_allowed_response,
    not_found_response,
    not_modified_response,
    precondition_failed_response,
    range_not_satisfiable_response,
)

FILE_LOGGER = CorrelationLoggerAdapter(logging.getLogger("catd.handlers.file"), {})

STAT_FAILED_MESSAGE = "couldn't read file stats"
OPEN_FAILED_MESSAGE = "couldn't open file"

STATUS_LINES = {
    200: "HTTP/1.1 200 OK",
    206: "HTTP/1.1 206 Partial Content",
}


class FileStream:
    """Streams spans of an open file, closing the handle when done.

    ``segments`` pairs a literal prefix with the file span that follows it;
    ``trailer`` is written after the last span.
    """

    def __init__(
        self,
        file_handle: BinaryIO,
        segments: list[tuple[bytes, ByteRange]],
        trailer: bytes = b"",
        chunk_size: int = 65536,
    ) -> None:
        self._file_handle = file_handle
        self._segments = segments
        self._trailer = trailer
        self._chunk_size = chunk_size

    def __iter__(self) -> Iterator[bytes]:
        try:
            for prefix, span in self._segments:
                if prefix:
                    yield prefix
                yield from self._read_span(span)
            if self._trailer:
                yield self._trailer
        finally:
            self.close()

    def _read_span(self, span: ByteRange) -> Iterator[bytes]:
        self._file_handle.seek(span.start)
        remaining = span.length
        while remaining > 0:
            chunk = self._file_handle.read(min(self._chunk_size, remaining))
            if not chunk:
                FILE_LOGGER.warning(
                    "File shrank while streaming",
                    extra={"event": "file_truncated", "bytes_out": span.length - remaining},
                )
                return
            remaining -= len(chunk)
            yield chunk

    def close(self) -> None:
        if not self._file_handle.closed:
            self._file_handle.close()

    @property
    def closed(self) -> bool:
        return self._file_handle.closed


def _content_type_for_path(filepath: Path) -> str:
    mime_type, _ = mimetypes.guess_type(filepath.as_posix())
    return mime_type or "application/octet-stream"


def _multipart_segments(
    ranges: list[ByteRange], content_type: str, size: int, boundary: str
) -> tuple[list[tuple[bytes, ByteRange]], bytes]:
    segments = []
    for index, byte_range in enumerate(ranges):
        part_header = (
            f"--{boundary}\r\n"
            f"Content-Range: {byte_range.content_range(size)}\r\n"
            f"Content-Type: {content_type}\r\n\r\n"
        ).encode("latin-1")
        if index:
            part_header = b"\r\n" + part_header
        segments.append((part_header, byte_range))
    trailer = f"\r\n--{boundary}--\r\n".encode("latin-1")
    return segments, trailer


class SingleFileHandler:
    """Authorizes requests and serves the configured file."""

    def __init__(
        self,
        file_path: str,
        key: Optional[str] = None,
        security_headers: Optional[dict[str, str]] = None,
        allowed_methods: Iterable[str] = ALLOWED_METHODS,
    ) -> None:
        self.file_path = Path(file_path)
        self._key = key or None
        self._expected_path = f"/{self._key}".encode() if self._key else None
        self.security_headers = (
            SECURITY_HEADERS if security_headers is None else security_headers
        )
        self.allowed_methods = frozenset(allowed_methods)

    @property
    def key_protected(self) -> bool:
        return self._expected_path is not None

    def is_authorized(self, request: HttpRequest) -> bool:
        """Return True when no key is set or the path is exactly ``/<key>``."""
        if self._expected_path is None:
            return True
        return hmac.compare_digest(request.path.encode("latin-1"), self._expected_path)

    def _loggable_target(self, request: HttpRequest) -> str:
        if self._key and self._key in request.target:
            return request.target.replace(self._key, REDACTED)
        return request.target

    def __call__(self, request: HttpRequest) -> HttpResponse:
        FILE_LOGGER.info(
            "New request",
            extra={
                "event": "request_received",
                "method": request.method,
                "route": self._loggable_target(request),
            },
        )

        if not self.is_authorized(request):
            return not_found_response(request, self.security_headers)

        if request.method not in self.allowed_methods:
            return method_not_allowed_response(
                request, self.security_headers, self.allowed_methods
            )

        try:
            stat_result = os.stat(self.file_path)
        except OSError as error:
            FILE_LOGGER.error(
                "Couldn't read file stats",
                extra={
                    "event": "file_stat_failed",
                    "error_type": type(error).__name__,
                    "errno": error.errno,
                },
            )
            return internal_error_response(
                request, STAT_FAILED_MESSAGE, self.security_headers
            )
        if not stat.S_ISREG(stat_result.st_mode):
            FILE_LOGGER.error(
                "Served path is not a regular file",
                extra={"event": "file_stat_failed", "error_type": "NotRegularFile"},
            )
            return internal_error_response(
                request, STAT_FAILED_MESSAGE, self.security_headers
            )

        try:
            file_handle = open(self.file_path, "rb")  # pylint: disable=consider-using-with
        except OSError as error:
            FILE_LOGGER.error(
                "Couldn't open file",
                extra={
                    "event": "file_open_failed",
                    "error_type": type(error).__name__,
                    "errno": error.errno,
                },
            )
            return internal_error_response(
                request, OPEN_FAILED_MESSAGE, self.security_headers
            )

        try:
            return self._serve_content(request, file_handle, stat_result)
        except BaseException:
            file_handle.close()
            raise

    def _serve_content(
        self, request: HttpRequest, file_handle: BinaryIO, stat_result: os.stat_result
    ) -> HttpResponse:
        mtime = int(stat_result.st_mtime)
        size = stat_result.st_size
        last_modified = format_http_date(mtime)

        precondition = evaluate_preconditions(request.method, request.headers, mtime)
        if precondition == 412:
            file_handle.close()
            return precondition_failed_response(request, self.security_headers)
        if precondition == 304:
            file_handle.close()
            return not_modified_response(request, last_modified, self.security_headers)

        ranges: list[ByteRange] = []
        if range_is_applicable(request.headers, mtime):
            try:
                ranges = parse_range(request.headers.get("range"), size)
            except RangeNotSatisfiable:
                file_handle.close()
                return range_not_satisfiable_response(
                    request, size, self.security_headers
                )
            except InvalidRange:
                file_handle.close()
                return range_not_satisfiable_response(
                    request, None, self.security_headers
                )
            if total_length(ranges) > size:
                ranges = []

        content_type = _content_type_for_path(self.file_path)
        headers = {
            "Content-Type": content_type,
            "Last-Modified": last_modified,
            "Accept-Ranges": "bytes",
            **self.security_headers,
        }
        trailer = b""
        if not ranges:
            status = 200
            segments = [(b"", ByteRange(0, size))]
            headers["Content-Length"] = str(size)
        elif len(ranges) == 1:
            status = 206
            segments = [(b"", ranges[0])]
            headers["Content-Range"] = ranges[0].content_range(size)
            headers["Content-Length"] = str(ranges[0].length)
        else:
            status = 206
            boundary = secrets.token_hex(15)
            segments, trailer = _multipart_segments(
                ranges, content_type, size, boundary
            )
            headers["Content-Type"] = f"multipart/byteranges; boundary={boundary}"
            headers["Content-Length"] = str(
                sum(len(prefix) + span.length for prefix, span in segments)
                + len(trailer)
            )

        close_connection = should_close(request.headers, request.version)
        if request.method == "HEAD":
            file_handle.close()
            return HttpResponse(
                STATUS_LINES[status], headers, b"", close_connection, omit_body=True
            )

        FILE_LOGGER.debug(
            "Streaming file",
            extra={"event": "file_streaming_started", "status_code": status},
        )
        return HttpResponse(
            STATUS_LINES[status],
            headers,
            b"",
            close_connection,
            body_iter=FileStream(file_handle, segments, trailer),
        )
