"""
Base classes for facility data sources
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import httpx
import structlog

from gymcrawl.core.config import AdapterSettings
from gymcrawl.core.exceptions import BlockedError, SourceRequestError, TransientNetworkError
from gymcrawl.crawling.discovery.rate_limiter import RateLimitConfig, RateLimiter
from gymcrawl.crawling.extraction.retry_handler import RetryHandler
from gymcrawl.models import Observation

logger = structlog.get_logger(__name__)

DEFAULT_MAX_RESPONSE_BYTES = 2 * 1024 * 1024
TRANSIENT_STATUS_CODES = (408, 429)


class SourceAdapter(ABC):
    """One source that turns a facility name into at most one observation"""

    name: str = "source"
    priority: int = 100
    base_confidence: float = 0.5

    def __init__(self):
        self.enabled = True
        self.timeout_seconds = 30.0
        self.delay_seconds = 2.0

    def is_available(self) -> bool:
        return self.enabled

    @abstractmethod
    async def search(self, name: str, address: Optional[str] = None) -> Optional[Observation]:
        """
        Look up one facility

        Returns None when nothing useful was found. Raises only for
        transport-level failures.
        """
        pass

    def apply_settings(self, settings: AdapterSettings):
        """Apply per-adapter overrides"""
        self.priority = settings.priority
        self.enabled = settings.enabled
        self.timeout_seconds = settings.timeout_seconds
        self.delay_seconds = settings.delay_seconds
        if settings.base_confidence is not None:
            self.base_confidence = settings.base_confidence

    def current_settings(self) -> AdapterSettings:
        return AdapterSettings(
            name=self.name,
            priority=self.priority,
            enabled=self.enabled,
            timeout_seconds=self.timeout_seconds,
            delay_seconds=self.delay_seconds,
            base_confidence=self.base_confidence
        )

    async def close(self):
        """Release any held resources"""
        pass

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, priority={self.priority})"


class HttpSourceAdapter(SourceAdapter):
    """Source reached over HTTP, paced by the rate limiter and wrapped in retries"""

    max_response_bytes: int = DEFAULT_MAX_RESPONSE_BYTES

    def __init__(
        self,
        rate_limiter: Optional[RateLimiter] = None,
        retry_handler: Optional[RetryHandler] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout_seconds: float = 30.0
    ):
        super().__init__()
        self.rate_limiter = rate_limiter or RateLimiter()
        self.retry_handler = retry_handler or RetryHandler()
        self.timeout_seconds = timeout_seconds
        self._client = client
        self._owns_client = client is None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout_seconds, follow_redirects=True)
            self._owns_client = True
        return self._client

    def apply_settings(self, settings: AdapterSettings):
        super().apply_settings(settings)
        config = self.rate_limiter.configs.get(self.name) or self.rate_limiter.default_config
        self.rate_limiter.configure_rate_limit(
            self.name,
            RateLimitConfig(**{**config.model_dump(), "min_interval_seconds": settings.delay_seconds})
        )

    async def _get(
        self,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        max_bytes: Optional[int] = None
    ) -> str:
        """Fetch with retries; BlockedError and non-retryable errors pass straight through"""
        return await self.retry_handler.execute_with_retry(
            self._fetch,
            operation_args=(url, params, max_bytes),
            request_id=self.name
        )

    async def _fetch(
        self,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        max_bytes: Optional[int] = None
    ) -> str:
        """
        One paced HTTP GET

        Args:
            url: Target URL
            params: Query parameters
            max_bytes: Response size cap, defaults to the adapter cap

        Returns:
            Decoded response body

        Raises:
            BlockedError: On 403
            TransientNetworkError: On 408, 429, 5xx or a transport failure
            SourceRequestError: On any other 4xx or an oversized body
        """
        limit = max_bytes or self.max_response_bytes
        await self.rate_limiter.wait_if_needed(self.name)

        try:
            async with self.client.stream(
                "GET",
                url,
                params=params,
                headers=self.rate_limiter.get_headers(),
                timeout=self.timeout_seconds
            ) as response:
                status = response.status_code
                await self.rate_limiter.record_request(self.name, status)

                if status == 403:
                    raise BlockedError(
                        f"{self.name} refused the request",
                        source=self.name,
                        details={"url": url}
                    )
                if status in TRANSIENT_STATUS_CODES or status >= 500:
                    raise TransientNetworkError(
                        f"{self.name} answered {status}",
                        status_code=status,
                        details={"url": url}
                    )
                if status >= 400:
                    raise SourceRequestError(
                        f"{self.name} answered {status}",
                        status_code=status,
                        details={"url": url}
                    )

                chunks = []
                size = 0
                async for chunk in response.aiter_bytes():
                    size += len(chunk)
                    if size > limit:
                        raise SourceRequestError(
                            f"{self.name} response exceeds {limit} bytes",
                            status_code=status,
                            details={"url": url, "max_bytes": limit}
                        )
                    chunks.append(chunk)

                encoding = response.encoding or "utf-8"
                return b"".join(chunks).decode(encoding, errors="replace")

        except httpx.TransportError as e:
            await self.rate_limiter.record_request(self.name, None)
            logger.warning("Transport error",
                           source=self.name,
                           url=url,
                           error=str(e),
                           error_type=type(e).__name__)
            raise TransientNetworkError(
                f"{self.name} transport error: {e}",
                details={"url": url, "error_type": type(e).__name__}
            ) from e

    async def close(self):
        """Close the HTTP client if this adapter created it"""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None
