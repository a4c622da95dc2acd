"""Relay error taxonomy."""

from __future__ import annotations


class RelayError(Exception):
    """Base class for errors raised while relaying a webhook event."""


class ParseError(RelayError):
    """Inbound body or headers could not be turned into an event."""


class ConfigurationError(RelayError):
    """A required credential or URL is not configured."""


class UpstreamError(RelayError):
    """An external API failed or answered with an unexpected shape."""

    def __init__(self, message: str, service: str = "", status_code: int | None = None) -> None:
        self.message = message
        self.service = service
        self.status_code = status_code
        super().__init__(message)
