"""Pure HTTP response builders."""

from typing import Iterable, Optional

from catd.domain.http_types import HttpRequest, HttpResponse, should_close

TEXT_CONTENT_TYPE = "text/plain; charset=utf-8"


def _closes(request: Optional[HttpRequest]) -> bool:
    if request is None:
        return True
    return should_close(request.headers, request.version)


def error_response(
    status_line: str,
    message: str,
    request: Optional[HttpRequest],
    security_headers: dict[str, str],
) -> HttpResponse:
    """Return a short plain-text error whose body never carries internal detail."""
    headers = {"Content-Type": TEXT_CONTENT_TYPE, **security_headers}
    body = f"{message}\n".encode()
    return HttpResponse(status_line, headers, body, _closes(request))


def not_found_response(
    request: Optional[HttpRequest], security_headers: dict[str, str]
) -> HttpResponse:
    """Return the single 404 used for every unauthorized or unknown path."""
    return error_response("HTTP/1.1 404 Not Found", "Not Found", request, security_headers)


def internal_error_response(
    request: HttpRequest, message: str, security_headers: dict[str, str]
) -> HttpResponse:
    """Return a 500 with a fixed, generic message."""
    return error_response(
        "HTTP/1.1 500 Internal Server Error", message, request, security_headers
    )


def bad_request_response(
    request: Optional[HttpRequest], security_headers: dict[str, str]
) -> HttpResponse:
    """Produce a 400 response honoring the caller's connection preference."""
    return error_response(
        "HTTP/1.1 400 Bad Request", "Bad Request", request, security_headers
    )


def method_not_allowed_response(
    request: HttpRequest,
    security_headers: dict[str, str],
    allowed_methods: Iterable[str],
) -> HttpResponse:
    """Produce a 405 response enumerating the supported HTTP methods."""
    response = error_response(
        "HTTP/1.1 405 Method Not Allowed",
        "Method Not Allowed",
        request,
        security_headers,
    )
    response.headers["Allow"] = ", ".join(sorted(allowed_methods))
    return response


def precondition_failed_response(
    request: HttpRequest, security_headers: dict[str, str]
) -> HttpResponse:
    """Produce a 412 for a failed If-Unmodified-Since."""
    return error_response(
        "HTTP/1.1 412 Precondition Failed",
        "Precondition Failed",
        request,
        security_headers,
    )


def range_not_satisfiable_response(
    request: HttpRequest, size: Optional[int], security_headers: dict[str, str]
) -> HttpResponse:
    """Produce a 416, advertising the current size when ranges missed the file."""
    response = error_response(
        "HTTP/1.1 416 Range Not Satisfiable",
        "Range Not Satisfiable",
        request,
        security_headers,
    )
    if size is not None:
        response.headers["Content-Range"] = f"bytes */{size}"
    return response


def not_modified_response(
    request: HttpRequest, last_modified: str, security_headers: dict[str, str]
) -> HttpResponse:
    """Produce a bodyless 304 carrying the validator."""
    headers = {"Last-Modified": last_modified, **security_headers}
    return HttpResponse("HTTP/1.1 304 Not Modified", headers, b"", _closes(request))


def draining_response(security_headers: dict[str, str]) -> HttpResponse:
    """Produce a 503 response indicating the server is draining."""
    headers = {"Connection": "close", **security_headers}
    return HttpResponse(
        "HTTP/1.1 503 Service Unavailable",
        headers,
        b"draining",
        True,
    )
