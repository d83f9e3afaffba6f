"""Host stats Prometheus exporter."""
from importlib.metadata import version

from .api import create_app
from .registry import ExporterContext
from .sampler import Sampler
from .sources import CounterSource, ProcfsSource, PsutilSource

__all__ = [
    "CounterSource",
    "ExporterContext",
    "ProcfsSource",
    "PsutilSource",
    "Sampler",
    "create_app",
    "__version__",
]

try:
    __version__ = version("hoststat-exporter")
except Exception:  # pragma: no cover - fallback when package metadata missing
    __version__ = "0.1.0"
