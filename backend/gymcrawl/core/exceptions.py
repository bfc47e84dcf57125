from typing import Any, Dict, Optional


class CrawlerException(Exception):
    """Base exception for the crawler."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "error_code": self.error_code,
            "details": self.details
        }


class TransientNetworkError(CrawlerException):
    """Network failure, 5xx, 429 or 408. Safe to retry."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, error_code="TRANSIENT_NETWORK_ERROR", details=details)
        self.status_code = status_code


class BlockedError(CrawlerException):
    """Source answered 403; escalate to cooldown and fallback."""

    def __init__(
        self,
        message: str,
        source: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, error_code="SOURCE_BLOCKED", details=details)
        self.status_code = 403
        self.source = source


class SourceRequestError(CrawlerException):
    """Non-retryable HTTP failure."""

    def __init__(
        self,
        message: str,
        status_code: int,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, error_code="SOURCE_REQUEST_ERROR", details=details)
        self.status_code = status_code


class RetryExhaustedError(CrawlerException):
    """Exception raised when every retry attempt failed."""
    pass


class ValidationException(CrawlerException):
    """Exception for data validation errors."""
    pass


class PhaseTimeoutError(CrawlerException):
    """A crawl phase exceeded its deadline."""
    pass


class AlreadyRunningError(CrawlerException):
    """A crawl run is already in progress."""
    pass


class ConfigurationException(CrawlerException):
    """Exception for configuration-related errors."""
    pass
