"""
Rate Limiter - Request spacing, header rotation and block cooldown per source
"""

import asyncio
import random
import time
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

import structlog
from pydantic import BaseModel

logger = structlog.get_logger(__name__)

USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/119.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.1 Safari/605.1.15",
]

BASE_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8",
    "Accept-Language": "ko-KR,ko;q=0.9,en-US;q=0.8,en;q=0.7",
    "Accept-Encoding": "gzip, deflate",
    "Connection": "keep-alive",
    "Upgrade-Insecure-Requests": "1",
    "Sec-Fetch-Dest": "document",
    "Sec-Fetch-Mode": "navigate",
    "Sec-Fetch-Site": "none",
    "Sec-Fetch-User": "?1",
    "Cache-Control": "max-age=0",
}


class RateLimitConfig(BaseModel):
    """Rate limit configuration for one source"""
    min_interval_seconds: float = 2.0
    jitter_seconds: float = 1.0
    requests_per_minute: int = 30
    backoff_factor: float = 1.5
    max_backoff: float = 300.0  # 5 minutes
    block_cooldown_seconds: float = 30.0
    cooldown_multiplier: float = 2.0
    max_cooldown_seconds: float = 600.0


class RateLimitState(BaseModel):
    """Current rate limit state"""
    requests_made: int = 0
    window_start: float = 0.0
    next_allowed_time: float = 0.0
    blocked_until: float = 0.0
    current_backoff: float = 0.0
    current_cooldown: float = 0.0
    consecutive_429s: int = 0
    consecutive_blocks: int = 0
    total_requests: int = 0
    blocked_requests: int = 0
    last_request_at: Optional[datetime] = None


class RateLimiter:
    """Per-source request pacing with anti-detection headers and block escalation"""

    def __init__(
        self,
        default_config: Optional[RateLimitConfig] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    ):
        self.default_config = default_config or RateLimitConfig()
        self.configs: Dict[str, RateLimitConfig] = {}
        self.local_state: Dict[str, RateLimitState] = {}
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._agent_index = random.randrange(len(USER_AGENTS))

    def configure_rate_limit(
        self,
        source: str,
        config: Optional[RateLimitConfig] = None
    ) -> RateLimitConfig:
        """
        Configure rate limiting for a source

        Args:
            source: Source name
            config: Rate limit configuration, defaults to the limiter default

        Returns:
            Configured RateLimitConfig
        """
        config = config or self.default_config.model_copy()
        self.configs[source] = config
        self.local_state.setdefault(source, RateLimitState(window_start=self._clock()))

        logger.info("Rate limit configured",
                    source=source,
                    min_interval=config.min_interval_seconds,
                    rpm=config.requests_per_minute)
        return config

    def update_configs(self, **changes: Any):
        """Apply the same changes to the default and every configured source"""
        self.default_config = self.default_config.model_copy(update=changes)
        for source, config in self.configs.items():
            self.configs[source] = config.model_copy(update=changes)

    def _get(self, source: str) -> Tuple[RateLimitConfig, RateLimitState]:
        if source not in self.configs:
            self.configure_rate_limit(source)
        return self.configs[source], self.local_state[source]

    def get_headers(self) -> Dict[str, str]:
        """Browser-like headers with a rotated User-Agent"""
        self._agent_index = (self._agent_index + 1) % len(USER_AGENTS)
        headers = dict(BASE_HEADERS)
        headers["User-Agent"] = USER_AGENTS[self._agent_index]
        return headers

    def _check(self, source: str, now: float) -> Tuple[bool, float]:
        config, state = self._get(source)

        if state.blocked_until > now:
            return False, state.blocked_until - now

        if now - state.window_start >= 60.0:
            state.window_start = now
            state.requests_made = 0

        if state.requests_made >= config.requests_per_minute:
            return False, max(state.window_start + 60.0 - now, 0.0)

        if state.next_allowed_time > now:
            return False, state.next_allowed_time - now

        return True, 0.0

    async def check_rate_limit(self, source: str) -> Tuple[bool, float]:
        """
        Check if a request is allowed right now

        Returns:
            Tuple of (is_allowed, wait_time_seconds)
        """
        async with self._lock:
            return self._check(source, self._clock())

    async def wait_if_needed(self, source: str) -> float:
        """
        Wait until the source may be called and reserve the slot

        Returns:
            Total seconds spent waiting
        """
        waited = 0.0
        while True:
            async with self._lock:
                now = self._clock()
                allowed, wait_time = self._check(source, now)
                if allowed:
                    config, state = self._get(source)
                    interval = config.min_interval_seconds + random.uniform(0, config.jitter_seconds)
                    state.next_allowed_time = now + max(interval, state.current_backoff)
                    state.requests_made += 1
                    state.total_requests += 1
                    state.last_request_at = datetime.utcnow()
                    return waited

            logger.debug("Rate limit wait required", source=source, wait_time=wait_time)
            await self._sleep(wait_time)
            waited += wait_time

    async def record_request(self, source: str, status_code: Optional[int] = None):
        """
        Record a request outcome and update backoff state

        Args:
            source: Source name
            status_code: HTTP status code, None for transport failures
        """
        async with self._lock:
            config, state = self._get(source)

            if status_code == 429:
                state.consecutive_429s += 1
                state.current_backoff = min(
                    config.min_interval_seconds * (config.backoff_factor ** state.consecutive_429s),
                    config.max_backoff
                )
                logger.warning("Rate limit exceeded",
                               source=source,
                               consecutive_429s=state.consecutive_429s,
                               backoff=state.current_backoff)
            elif status_code is not None and status_code < 400:
                state.consecutive_429s = 0
                state.consecutive_blocks = 0
                state.current_backoff = 0.0

    async def record_block(self, source: str) -> float:
        """
        Escalate a block signal into a cooldown window

        Repeated blocks multiply the cooldown up to the configured cap.

        Returns:
            Cooldown length in seconds
        """
        async with self._lock:
            config, state = self._get(source)
            state.consecutive_blocks += 1
            state.blocked_requests += 1
            cooldown = min(
                config.block_cooldown_seconds * (config.cooldown_multiplier ** (state.consecutive_blocks - 1)),
                config.max_cooldown_seconds
            )
            state.current_cooldown = cooldown
            state.blocked_until = max(state.blocked_until, self._clock() + cooldown)

        logger.warning("Source blocked, cooling down",
                       source=source,
                       cooldown_seconds=cooldown,
                       consecutive_blocks=state.consecutive_blocks)
        return cooldown

    def is_cooling_down(self, source: str) -> bool:
        state = self.local_state.get(source)
        return bool(state and state.blocked_until > self._clock())

    def get_rate_limit_status(self, source: str) -> Dict[str, Any]:
        """Get current rate limit status for a source"""
        state = self.local_state.get(source)
        config = self.configs.get(source)

        if not state or not config:
            return {"status": "not_configured"}

        now = self._clock()
        return {
            "status": "cooling_down" if state.blocked_until > now else "active",
            "requests_made": state.requests_made,
            "total_requests": state.total_requests,
            "blocked_requests": state.blocked_requests,
            "current_backoff": state.current_backoff,
            "cooldown_remaining": max(state.blocked_until - now, 0.0),
            "consecutive_429s": state.consecutive_429s,
            "consecutive_blocks": state.consecutive_blocks,
            "configured_limit": config.requests_per_minute,
        }
