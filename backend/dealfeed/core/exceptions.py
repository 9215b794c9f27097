"""Custom exception classes for the application."""

from typing import Optional


class DealFeedException(Exception):
    """Base exception for all deal feed errors."""

    def __init__(self, message: str = "An unexpected error occurred"):
        self.message = message
        super().__init__(self.message)


class AdapterError(DealFeedException):
    """Raised when a source adapter cannot produce deals."""

    def __init__(self, source: str, message: str):
        self.source = source
        super().__init__(f"Adapter error for {source}: {message}")


class CredentialsMissingError(AdapterError):
    """Raised when an adapter is invoked without its API credentials."""

    def __init__(self, source: str):
        super().__init__(source, "credentials not configured")


class UpstreamAPIError(AdapterError):
    """Raised when a vendor API answers with a business-level error code.

    These are never retried: the request reached the vendor and was rejected.
    """

    def __init__(self, source: str, message: str, code: Optional[str] = None):
        self.code = code
        detail = f"{message} (code: {code})" if code is not None else message
        super().__init__(source, detail)


class InvalidRedirectTarget(DealFeedException):
    """Raised when a redirect target is missing or not an absolute http(s) URL."""
