"""Context object shared across worker threads."""

from dataclasses import dataclass
from typing import Callable

from catd.bootstrap.config import ServerConfig
from catd.domain.http_types import HttpRequest, HttpResponse
from catd.lifecycle.state import ServerLifecycle

RequestHandler = Callable[[HttpRequest], HttpResponse]


@dataclass
class WorkerContext:
    """Dependencies shared across handler threads."""

    handler: RequestHandler
    lifecycle: ServerLifecycle
    config: ServerConfig
