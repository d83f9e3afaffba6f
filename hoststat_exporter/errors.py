"""Exceptions raised while sampling and exposing host metrics."""
from __future__ import annotations

from typing import Optional


class ExporterError(Exception):
    """Base class for exporter errors."""


class SourceUnavailable(ExporterError):
    """A kernel counter source is missing or cannot be read."""

    def __init__(self, domain: str, path: Optional[str] = None, reason: str = "") -> None:
        self.domain = domain
        self.path = path
        self.reason = reason
        where = f" ({path})" if path else ""
        super().__init__(f"{domain} source unavailable{where}: {reason}")


class ParseError(ExporterError):
    """A counter source returned content that does not have the expected shape."""

    def __init__(self, domain: str, detail: str) -> None:
        self.domain = domain
        self.detail = detail
        super().__init__(f"cannot parse {domain} source: {detail}")


class RegistrationFailure(ExporterError):
    """A metric descriptor could not be created at startup."""


class ServerStartFailure(ExporterError):
    """The exposition server did not come up."""
