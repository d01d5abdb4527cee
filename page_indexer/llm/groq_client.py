"""
Groq Client - the single reasoning capability used by indexing and search

Transient failures (connection errors, timeouts, 429, 5xx) are retried with
exponential backoff, honoring Retry-After. The whole call, retries included,
runs under one deadline. Anything else surfaces immediately as LlmUnavailable.
"""

from typing import Optional
import asyncio

import groq
from groq import AsyncGroq

from ..core.config import settings
from ..core.errors import ConfigurationError, LlmTimeout, LlmUnavailable
from ..observability.logging import get_logger

logger = get_logger(__name__)

SYSTEM_DOCUMENT_ANALYZER = (
    "You are an expert document analyzer. You extract document structure and "
    "reason about which sections answer a question. Always reply with the "
    "exact JSON format requested and nothing else."
)

_TRANSIENT_STATUS_CODES = {408, 409, 429}


class GroqClient:
    """
    Async client for the Groq chat-completions API.

    The SDK's own retry layer is disabled so that backoff, logging and the
    overall deadline are all handled here.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        *,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        max_retries: Optional[int] = None,
        retry_base_delay: Optional[float] = None,
        retry_max_delay: Optional[float] = None,
    ):
        api_key = api_key or settings.groq_api_key
        if not api_key:
            raise ConfigurationError("GROQ_API_KEY not set")

        self.model = model or settings.llm_model
        self.timeout_seconds = timeout_seconds or settings.llm_timeout_seconds
        self.max_retries = settings.llm_max_retries if max_retries is None else max_retries
        self.retry_base_delay = (
            settings.llm_retry_base_delay if retry_base_delay is None else retry_base_delay
        )
        self.retry_max_delay = (
            settings.llm_retry_max_delay if retry_max_delay is None else retry_max_delay
        )

        self.async_client = AsyncGroq(
            api_key=api_key,
            base_url=base_url or settings.llm_base_url,
            max_retries=0,
        )

    async def agenerate(
        self,
        prompt: str,
        model: str = None,
        max_tokens: int = None,
        temperature: float = None,
        system_prompt: Optional[str] = None,
    ) -> str:
        """
        Generate a completion for ``prompt``.

        Args:
            prompt: User prompt
            model: Model to use (default from settings)
            max_tokens: Maximum tokens to generate (default from settings)
            temperature: Sampling temperature (default from settings)
            system_prompt: Optional system prompt

        Returns:
            Generated text ("" if the model returned no content)

        Raises:
            LlmTimeout: The overall deadline expired.
            LlmUnavailable: A non-transient error, or retries were exhausted.
        """
        model = model or self.model
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        kwargs = {
            "model": model,
            "messages": messages,
            "max_tokens": max_tokens or settings.llm_max_tokens,
            "temperature": settings.llm_temperature if temperature is None else temperature,
        }

        try:
            return await asyncio.wait_for(
                self._create_with_retry(kwargs), timeout=self.timeout_seconds
            )
        except asyncio.TimeoutError as exc:
            logger.error("groq.timeout", model=model, timeout_s=self.timeout_seconds)
            raise LlmTimeout(
                f"LLM call did not complete within {self.timeout_seconds:g}s"
            ) from exc

    async def _create_with_retry(self, kwargs: dict) -> str:
        for attempt in range(self.max_retries + 1):
            try:
                response = await self.async_client.chat.completions.create(**kwargs)
                return response.choices[0].message.content or ""
            except groq.GroqError as exc:
                if _is_transient_error(exc) and attempt < self.max_retries:
                    delay = self._get_retry_delay(exc, attempt)
                    logger.warning(
                        "groq.transient_error",
                        attempt=attempt + 1,
                        delay_s=delay,
                        model=kwargs["model"],
                        error=type(exc).__name__,
                    )
                    await asyncio.sleep(delay)
                    continue
                logger.error(
                    "groq.request_failed",
                    attempts=attempt + 1,
                    model=kwargs["model"],
                    error=str(exc),
                )
                raise LlmUnavailable(f"{type(exc).__name__}: {exc}") from exc
        # Unreachable: the final attempt either returns or raises.
        raise LlmUnavailable("LLM retries exhausted")

    async def health_check(self) -> tuple[bool, str]:
        """Ask the model to say hello; returns (ok, reply)."""
        reply = await self.agenerate(
            "Say 'hello' and nothing else.",
            max_tokens=10,
            temperature=0.0,
        )
        return "hello" in reply.lower(), reply.strip()

    def _get_retry_delay(self, exc: Exception, attempt: int) -> float:
        """Calculate retry delay with exponential backoff, respecting Retry-After."""
        retry_after = None
        response = getattr(exc, "response", None)
        if response is not None and hasattr(response, "headers"):
            retry_after = response.headers.get("retry-after")

        if retry_after:
            try:
                return min(float(retry_after), self.retry_max_delay)
            except (ValueError, TypeError):
                pass

        # Exponential backoff: 2s, 4s, 8s, capped at 30s
        return min(self.retry_base_delay * (2 ** attempt), self.retry_max_delay)


def _is_transient_error(exc: Exception) -> bool:
    """Connection problems, timeouts, rate limits and server errors are retryable."""
    if isinstance(exc, (groq.APIConnectionError, groq.RateLimitError, groq.InternalServerError)):
        return True
    status = getattr(exc, "status_code", None)
    return status in _TRANSIENT_STATUS_CODES or (status is not None and status >= 500)
