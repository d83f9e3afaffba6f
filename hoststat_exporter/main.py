"""CLI entrypoint: start the exposition server and sample forever."""
from __future__ import annotations

import logging
import threading
from typing import Optional

from .api import create_app
from .config import get_settings
from .errors import RegistrationFailure, ServerStartFailure
from .registry import ExporterContext
from .sampler import Sampler
from .server import ExpositionServer
from .sources import build_source

logger = logging.getLogger(__name__)


def run(stop_event: Optional[threading.Event] = None) -> int:
    settings = get_settings()
    context = ExporterContext()
    try:
        context.register_metrics()
    except RegistrationFailure as exc:
        logger.error("Metric registration failed: %s", exc)
        return 1

    source = build_source(settings)
    server = ExpositionServer(create_app(context), settings.host, settings.port, settings.log_level)
    try:
        server.start_and_wait()
    except ServerStartFailure as exc:
        logger.error("Cannot start exposition server: %s", exc)
        return 1

    sampler = Sampler(context, source)
    try:
        sampler.run(stop_event)
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
    finally:
        server.stop(timeout=5.0)
    return 0


def main() -> None:
    settings = get_settings()
    logging.basicConfig(level=settings.log_level.upper(), format="%(asctime)s %(levelname)s %(message)s")
    raise SystemExit(run())


if __name__ == "__main__":
    main()
