"""Runtime configuration helpers."""
from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

DEFAULT_PORT = 8000
SAMPLE_INTERVAL_SECONDS = 1.0
DEVICE_EVICTION_TICKS = 5
STARTUP_TIMEOUT_SECONDS = 10.0


@dataclass(frozen=True)
class Settings:
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    log_level: str = "info"
    proc_root: str = "/proc"
    source: str = "procfs"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings from environment variables with sensible defaults."""
    host = os.getenv("HOSTSTAT_HOST", "0.0.0.0")
    port = int(os.getenv("HOSTSTAT_PORT", str(DEFAULT_PORT)))
    if not 0 < port < 65536:
        raise ValueError(f"HOSTSTAT_PORT out of range: {port}")
    log_level = os.getenv("HOSTSTAT_LOG_LEVEL", "info").lower()
    proc_root = os.getenv("HOSTSTAT_PROC_ROOT", "/proc")
    source = os.getenv("HOSTSTAT_SOURCE", "procfs").lower()
    return Settings(host=host, port=port, log_level=log_level, proc_root=proc_root, source=source)
