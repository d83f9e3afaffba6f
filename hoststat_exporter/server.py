"""Background thread serving the exposition endpoint with Uvicorn."""
from __future__ import annotations

import logging
import threading
import time
from typing import Optional

import uvicorn
from fastapi import FastAPI

from .config import STARTUP_TIMEOUT_SECONDS
from .errors import ServerStartFailure

logger = logging.getLogger(__name__)


class ExpositionServer(threading.Thread):
    """Runs a Uvicorn server for the lifetime of the process."""

    def __init__(self, app: FastAPI, host: str, port: int, log_level: str = "info") -> None:
        super().__init__(name="exposition-server", daemon=True)
        self.host = host
        self.requested_port = port
        config = uvicorn.Config(app, host=host, port=port, log_level=log_level, access_log=False)
        self.server = uvicorn.Server(config)
        self.error: Optional[BaseException] = None

    def run(self) -> None:
        try:
            self.server.run()
        # Uvicorn calls sys.exit(1) when it cannot bind.
        except (SystemExit, Exception) as exc:  # pylint: disable=broad-except
            self.error = exc

    @property
    def port(self) -> int:
        """The bound port, which differs from the requested one when that was 0."""
        for server in getattr(self.server, "servers", None) or []:
            for sock in server.sockets:
                return sock.getsockname()[1]
        return self.requested_port

    def start_and_wait(self, timeout: float = STARTUP_TIMEOUT_SECONDS) -> None:
        self.start()
        deadline = time.monotonic() + timeout
        while not self.server.started:
            if not self.is_alive():
                raise ServerStartFailure(f"exposition server on {self.host}:{self.requested_port} exited: {self.error!r}")
            if time.monotonic() >= deadline:
                self.stop(timeout=1.0)
                raise ServerStartFailure(f"exposition server did not start within {timeout:.1f}s")
            time.sleep(0.05)
        logger.info("Serving metrics on http://%s:%d/metrics", self.host, self.port)

    def stop(self, timeout: Optional[float] = None) -> None:
        self.server.should_exit = True
        if self.is_alive():
            self.join(timeout)
