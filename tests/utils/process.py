"""Helpers for launching the server as a subprocess."""

from __future__ import annotations

import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
SERVER_ENTRYPOINT = PROJECT_ROOT / "main.py"


def cli_command(*args: str) -> list[str]:
    """Build a command line invoking the entry point with ``args``."""
    return [sys.executable, str(SERVER_ENTRYPOINT), *args]


def server_command(
    file_path: Path, host: str, port: int, extra_args: list[str] | None = None
) -> list[str]:
    """Build the command line that serves ``file_path`` on ``host:port``."""
    args = cli_command("--file", str(file_path), "--host", host, "--port", str(port))
    if extra_args:
        args.extend(extra_args)
    return args
