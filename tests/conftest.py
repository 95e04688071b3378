"""Shared pytest fixtures for integration and unit tests."""

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import TYPE_CHECKING, Generator, TypedDict

import pytest

from tests.utils.files import SERVED_CONTENT
from tests.utils.http import read_random_key, reserve_port, wait_for_port
from tests.utils.process import PROJECT_ROOT, server_command

if TYPE_CHECKING:
    from _pytest.tmpdir import TempPathFactory


def _launch_server(
    host: str,
    port: int,
    file_path: Path,
    extra_args: list[str] | None = None,
    log_file: Path | None = None,
) -> Generator[ServerProcessInfo, None, None]:
    args = server_command(file_path, host, port, extra_args)
    if log_file:
        args.extend(["--log-destination", str(log_file)])
    random_key = bool(extra_args and "--random-key" in extra_args)

    with subprocess.Popen(
        args,
        cwd=PROJECT_ROOT,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
    ) as process:
        try:
            key = read_random_key(process.stdout) if random_key else None
            wait_for_port(host, port)
        except Exception:
            process.terminate()
            stdout, stderr = process.communicate(timeout=5)
            print(f"\nServer stdout:\n{stdout}")
            print(f"\nServer stderr:\n{stderr}")
            raise

        service_url = f"http://{host}:{port}"
        yield {
            "base_url": service_url,
            "host": host,
            "port": port,
            "file_path": file_path,
            "process": process,
            "log_file": log_file,
            "key": key,
        }

        if process.poll() is None:
            process.terminate()
            try:
                process.wait(timeout=5)
            except subprocess.TimeoutExpired:
                process.kill()


class ServerProcessInfo(TypedDict):
    """Metadata describing a running server fixture instance."""

    base_url: str
    host: str
    port: int
    file_path: Path
    process: subprocess.Popen[str]
    log_file: Path | None
    key: str | None


@pytest.fixture(name="server_process")
def _server_process(
    tmp_path_factory: "TempPathFactory",
) -> Generator[ServerProcessInfo, None, None]:
    """Launch the server without a key for integration tests."""

    host = "127.0.0.1"
    port = reserve_port(host)
    directory = tmp_path_factory.mktemp("server-files")
    file_path = directory / "served.txt"
    file_path.write_bytes(SERVED_CONTENT)
    log_file = directory / "server.log"
    yield from _launch_server(host, port, file_path, log_file=log_file)


@pytest.fixture(name="key_server_process")
def _key_server_process(
    tmp_path_factory: "TempPathFactory",
) -> Generator[ServerProcessInfo, None, None]:
    """Launch the server behind a generated random key."""

    host = "127.0.0.1"
    port = reserve_port(host)
    directory = tmp_path_factory.mktemp("server-files-keyed")
    file_path = directory / "served.txt"
    file_path.write_bytes(SERVED_CONTENT)
    log_file = directory / "server.log"
    yield from _launch_server(
        host, port, file_path, ["--random-key"], log_file=log_file
    )


@pytest.fixture()
def base_url(server_process: ServerProcessInfo) -> str:
    """Expose the running server base URL to integration tests."""

    return server_process["base_url"]
