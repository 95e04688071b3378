"""Integration tests exercising the served file over real HTTP."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

import pytest
import requests

from tests.utils.files import SERVED_CONTENT
from tests.utils.http import raw_request

pytestmark = pytest.mark.integration

if TYPE_CHECKING:
    from tests.conftest import ServerProcessInfo


@pytest.mark.parametrize("path", ["/", "/cat.txt", "/deeply/nested/path"])
def test_any_path_serves_the_file(base_url: str, path: str) -> None:
    """Without a key every path returns the file."""

    response = requests.get(f"{base_url}{path}", timeout=5)
    assert response.status_code == 200
    assert response.content == SERVED_CONTENT
    assert response.headers["Content-Type"].startswith("text/plain")
    assert response.headers["Accept-Ranges"] == "bytes"
    assert response.headers["X-Content-Type-Options"] == "nosniff"


def test_range_request_returns_partial_content(base_url: str) -> None:
    """Byte ranges are honored."""

    response = requests.get(
        f"{base_url}/", headers={"Range": "bytes=4-8"}, timeout=5
    )
    assert response.status_code == 206
    assert response.content == SERVED_CONTENT[4:9]
    assert response.headers["Content-Range"] == f"bytes 4-8/{len(SERVED_CONTENT)}"


def test_conditional_get_returns_not_modified(base_url: str) -> None:
    """Replaying Last-Modified as If-Modified-Since yields 304."""

    first = requests.get(f"{base_url}/", timeout=5)
    response = requests.get(
        f"{base_url}/",
        headers={"If-Modified-Since": first.headers["Last-Modified"]},
        timeout=5,
    )
    assert response.status_code == 304
    assert response.content == b""


def test_head_reports_length_without_body(base_url: str) -> None:
    """HEAD mirrors GET headers."""

    response = requests.head(f"{base_url}/", timeout=5)
    assert response.status_code == 200
    assert response.headers["Content-Length"] == str(len(SERVED_CONTENT))
    assert response.content == b""


def test_post_is_not_allowed(base_url: str) -> None:
    """Only GET and HEAD are served."""

    response = requests.post(f"{base_url}/", data=b"hello", timeout=5)
    assert response.status_code == 405
    assert response.headers["Allow"] == "GET, HEAD"


def test_keep_alive_serves_sequential_requests(base_url: str) -> None:
    """A session reuses one connection for several requests."""

    with requests.Session() as session:
        for _ in range(3):
            response = session.get(f"{base_url}/", timeout=5)
            assert response.status_code == 200
            assert response.content == SERVED_CONTENT


def test_file_replaced_while_running(server_process: "ServerProcessInfo") -> None:
    """Changes to the file are visible on the next request."""

    server_process["file_path"].write_bytes(b"new contents")
    response = requests.get(f"{server_process['base_url']}/", timeout=5)
    assert response.content == b"new contents"


def test_missing_file_is_internal_error(server_process: "ServerProcessInfo") -> None:
    """A deleted file yields a generic 500 and the server keeps running."""

    server_process["file_path"].unlink()
    response = requests.get(f"{server_process['base_url']}/", timeout=5)
    assert response.status_code == 500
    assert response.text == "couldn't read file stats\n"
    assert str(server_process["file_path"]) not in response.text

    server_process["file_path"].write_bytes(SERVED_CONTENT)
    response = requests.get(f"{server_process['base_url']}/", timeout=5)
    assert response.status_code == 200


def test_malformed_request_line_gets_bad_request(
    server_process: "ServerProcessInfo",
) -> None:
    """Garbage request lines are rejected with 400."""

    response = raw_request(
        server_process["host"], server_process["port"], b"BROKEN\r\n\r\n"
    )
    assert response.status_line == "HTTP/1.1 400 Bad Request"


def test_requests_are_logged_as_json(server_process: "ServerProcessInfo") -> None:
    """The access log is structured JSON with correlation IDs."""

    requests.get(
        f"{server_process['base_url']}/logged",
        headers={"X-Request-ID": "integration-check"},
        timeout=5,
    )
    log_file = server_process["log_file"]
    assert log_file is not None
    entries = [json.loads(line) for line in log_file.read_text().splitlines() if line]
    received = [e for e in entries if e.get("event") == "request_received"]
    assert any(e["correlation_id"] == "integration-check" for e in received)
    assert any(e["route"] == "/logged" for e in received)
