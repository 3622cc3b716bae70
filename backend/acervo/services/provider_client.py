"""
OpenAI-compatible provider client shared by embeddings, answer generation and
auto-tagging.

Classifies non-success responses into the error taxonomy and retries transient
failures (429, 5xx, transport errors) with bounded exponential backoff.
"""

import asyncio
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx
import structlog

from acervo.core.config import settings
from acervo.core.exceptions import (
    AuthInvalidError,
    ParseError,
    ProviderError,
    RateLimitedError,
)

logger = structlog.get_logger(__name__)


@dataclass
class RetryConfig:
    """Retry policy for provider calls"""
    max_retries: int = 3
    initial_delay: float = 1.0
    max_delay: float = 20.0
    backoff_multiplier: float = 2.0
    jitter: bool = True

    @classmethod
    def from_settings(cls) -> "RetryConfig":
        return cls(
            max_retries=settings.PROVIDER_MAX_RETRIES,
            initial_delay=settings.PROVIDER_RETRY_DELAY,
            max_delay=settings.PROVIDER_MAX_RETRY_DELAY,
        )


def calculate_retry_delay(config: RetryConfig, retry_count: int) -> float:
    """Exponential backoff capped at ``max_delay``, with optional jitter"""
    delay = config.initial_delay * (config.backoff_multiplier ** retry_count)
    delay = min(delay, config.max_delay)
    if config.jitter and delay > 0:
        delay = delay * (0.5 + random.random() * 0.5)
    return delay


def classify_response(response: httpx.Response) -> ProviderError:
    """Map a non-success provider response to an error instance"""
    status = response.status_code
    if status == 429:
        return RateLimitedError()
    if status in (401, 403):
        return AuthInvalidError(provider_status=status)
    return ProviderError(
        f"AI provider request failed with status {status}",
        provider_status=status,
        retryable=status >= 500,
    )


def _retry_after_seconds(response: Optional[httpx.Response]) -> Optional[float]:
    if response is None:
        return None
    value = response.headers.get("retry-after")
    if not value:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None


class ProviderClient:
    """Async JSON client for an OpenAI-compatible API"""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        retry_config: Optional[RetryConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.api_key = api_key if api_key is not None else settings.OPENAI_API_KEY
        self.base_url = (base_url or settings.OPENAI_BASE_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.PROVIDER_TIMEOUT_SECONDS
        self.retry_config = retry_config or RetryConfig.from_settings()
        self._transport = transport
        self._sleep = sleep

    async def post_json(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """POST ``payload`` to ``path`` and return the decoded JSON body.

        Raises:
            AuthInvalidError: missing key, 401 or 403
            RateLimitedError: 429 after all retries
            ProviderError: any other non-success status or transport failure
            ParseError: success status with a body that is not JSON
        """
        if not self.api_key:
            raise AuthInvalidError("OPENAI_API_KEY not configured")

        url = f"{self.base_url}/{path.lstrip('/')}"
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        attempt = 0
        while True:
            response: Optional[httpx.Response] = None
            cause: Optional[Exception] = None
            try:
                async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                    response = await client.post(url, headers=headers, json=payload)
            except httpx.HTTPError as e:
                cause = e
                error: ProviderError = ProviderError(
                    "AI provider could not be reached", retryable=True
                )
            else:
                if response.is_success:
                    try:
                        return response.json()
                    except ValueError as e:
                        raise ParseError("AI provider returned a malformed response") from e
                error = classify_response(response)
                logger.warning(
                    "Provider request failed",
                    path=path,
                    status=response.status_code,
                    body=response.text[:500],
                )

            if not error.retryable or attempt >= self.retry_config.max_retries:
                if cause is not None:
                    raise error from cause
                raise error

            delay = calculate_retry_delay(self.retry_config, attempt)
            retry_after = _retry_after_seconds(response)
            if retry_after is not None:
                delay = max(delay, min(retry_after, self.retry_config.max_delay))
            attempt += 1
            logger.info(
                "Retrying provider request",
                path=path,
                retry_count=attempt,
                delay=delay,
                max_retries=self.retry_config.max_retries,
                error=str(cause) if cause else error.message,
            )
            await self._sleep(delay)
