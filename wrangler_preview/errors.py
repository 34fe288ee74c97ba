from __future__ import annotations

from typing import Optional


class PreviewError(Exception):
    """Base class for all errors raised by wrangler_preview."""


class InvalidTemplate(PreviewError, ValueError):
    pass


class MissingContext(PreviewError):
    pass


class ConfigError(PreviewError, ValueError):
    pass


class WranglerTomlError(PreviewError):
    pass


class WranglerFileNotFound(WranglerTomlError, FileNotFoundError):
    pass


class SectionNotFound(WranglerTomlError):
    pass


class WranglerCommandError(PreviewError):
    pass


class UpstreamApiError(PreviewError):
    """
    A Cloudflare API call returned a non-success response.

    The message is the first upstream error message when the response body
    carried one, otherwise the HTTP status text.
    """

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RateLimited(UpstreamApiError):
    pass
