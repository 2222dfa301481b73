"""Completion service clients with rate limiting and cost tracking.

A completion service takes an ordered transcript of system/assistant/user
messages, plus an optional JSON schema constraining the reply, and returns
a single string. Transport failures surface as ``TransportError``.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Protocol

import anthropic
import httpx
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from backend.config import Settings, settings
from backend.errors import TransportError

logger = logging.getLogger(__name__)

# Sent as the opening user turn for providers that require one
KICKOFF_MESSAGE = "I'm ready for my review."
RESPONSE_TOOL_NAME = "tutor_turn"
# Longest provider error body carried into a TransportError
ERROR_BODY_LIMIT = 500


@dataclass(frozen=True)
class Message:
    """One transcript entry sent to a completion service."""

    role: str  # "system", "assistant" or "user"
    text: str


class CompletionClient(Protocol):
    async def complete(
        self, messages: list[Message], response_schema: dict | None = None
    ) -> str: ...


class RateLimiter:
    """Sliding one-minute window of request timestamps."""

    def __init__(self, max_rpm: int) -> None:
        self.max_rpm = max_rpm
        self._request_timestamps: deque[float] = deque()

    async def acquire(self) -> None:
        now = time.monotonic()
        # Remove timestamps older than 60 seconds
        while self._request_timestamps and now - self._request_timestamps[0] > 60:
            self._request_timestamps.popleft()
        if len(self._request_timestamps) >= self.max_rpm:
            sleep_time = 60 - (now - self._request_timestamps[0])
            if sleep_time > 0:
                logger.info("Rate limit reached, sleeping %.1fs", sleep_time)
                await asyncio.sleep(sleep_time)
        self._request_timestamps.append(time.monotonic())


class UsageTracker:
    """Token counters and cost estimate shared by the clients."""

    def __init__(self, config: Settings) -> None:
        self.config = config
        self.total_input_tokens = 0
        self.total_output_tokens = 0

    def record(self, input_tokens: int, output_tokens: int) -> None:
        self.total_input_tokens += input_tokens
        self.total_output_tokens += output_tokens
        logger.debug("Tokens used: %d in, %d out", input_tokens, output_tokens)

    def get_cost_estimate(self) -> dict[str, float]:
        """Return token counts and estimated cost in USD."""
        input_cost = self.total_input_tokens * self.config.llm_input_price_per_million / 1_000_000
        output_cost = (
            self.total_output_tokens * self.config.llm_output_price_per_million / 1_000_000
        )
        return {
            "input_tokens": self.total_input_tokens,
            "output_tokens": self.total_output_tokens,
            "estimated_cost_usd": round(input_cost + output_cost, 4),
        }


def _is_retryable(exc: BaseException) -> bool:
    """Connection failures and rate limiting; nothing that reached the model."""
    if isinstance(exc, (anthropic.APIConnectionError, anthropic.RateLimitError)):
        return True
    if isinstance(exc, httpx.TransportError):
        return True
    return isinstance(exc, httpx.HTTPStatusError) and exc.response.status_code == 429


_transport_retry = retry(
    retry=retry_if_exception(_is_retryable),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=30),
    reraise=True,
)


class AnthropicClient:
    """Completion service backed by the Anthropic Messages API.

    A response schema is enforced with a forced tool call; the tool input is
    returned as a JSON string.
    """

    def __init__(self, config: Settings = settings, client: anthropic.AsyncAnthropic | None = None) -> None:
        self.config = config
        self._requires_key = client is None
        self.client = client or anthropic.AsyncAnthropic(
            api_key=config.anthropic_api_key,
            timeout=config.llm_timeout_seconds,
            max_retries=0,
        )
        self.model = config.anthropic_model
        self.rate_limiter = RateLimiter(config.llm_rate_limit_rpm)
        self.usage = UsageTracker(config)

    async def complete(self, messages: list[Message], response_schema: dict | None = None) -> str:
        if self._requires_key and not self.config.anthropic_api_key:
            raise TransportError("Anthropic API key not configured")
        try:
            return await self._create(messages, response_schema)
        except anthropic.APIError as exc:
            raise TransportError(f"Anthropic API error: {exc}") from exc

    @_transport_retry
    async def _create(self, messages: list[Message], response_schema: dict | None) -> str:
        await self.rate_limiter.acquire()
        system = "\n\n".join(m.text for m in messages if m.role == "system")
        turns = [{"role": m.role, "content": m.text} for m in messages if m.role != "system"]
        if not turns or turns[0]["role"] != "user":
            turns.insert(0, {"role": "user", "content": KICKOFF_MESSAGE})

        kwargs: dict = {
            "model": self.model,
            "max_tokens": self.config.llm_max_tokens,
            "temperature": self.config.llm_temperature,
            "messages": turns,
        }
        if system:
            kwargs["system"] = system
        if response_schema is not None:
            kwargs["tools"] = [
                {
                    "name": RESPONSE_TOOL_NAME,
                    "description": "Record the tutor's reply for this turn.",
                    "input_schema": response_schema,
                }
            ]
            kwargs["tool_choice"] = {"type": "tool", "name": RESPONSE_TOOL_NAME}

        response = await self.client.messages.create(**kwargs)
        self.usage.record(response.usage.input_tokens, response.usage.output_tokens)

        for block in response.content:
            if block.type == "tool_use":
                return json.dumps(block.input)
        return "".join(block.text for block in response.content if block.type == "text")

    def get_cost_estimate(self) -> dict[str, float]:
        return self.usage.get_cost_estimate()


class OpenRouterClient:
    """Completion service backed by OpenRouter's chat completions endpoint."""

    def __init__(
        self,
        config: Settings = settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config
        self.model = config.openrouter_model
        self.http = httpx.AsyncClient(
            base_url=config.openrouter_base_url,
            timeout=config.llm_timeout_seconds,
            transport=transport,
        )
        self.rate_limiter = RateLimiter(config.llm_rate_limit_rpm)
        self.usage = UsageTracker(config)

    async def complete(self, messages: list[Message], response_schema: dict | None = None) -> str:
        if not self.config.openrouter_api_key:
            raise TransportError("OpenRouter API key not configured")
        try:
            data = await self._post(messages, response_schema)
        except httpx.HTTPStatusError as exc:
            detail = exc.response.text[:ERROR_BODY_LIMIT]
            raise TransportError(
                f"OpenRouter API error: {exc.response.status_code} {detail}".rstrip()
            ) from exc
        except httpx.HTTPError as exc:
            raise TransportError(f"OpenRouter request failed: {exc}") from exc
        except ValueError as exc:
            raise TransportError("OpenRouter returned a non-JSON response body") from exc

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise TransportError("OpenRouter returned an unexpected response body") from exc

        usage = data.get("usage") or {}
        self.usage.record(usage.get("prompt_tokens", 0), usage.get("completion_tokens", 0))
        return content or ""

    @_transport_retry
    async def _post(self, messages: list[Message], response_schema: dict | None) -> dict:
        await self.rate_limiter.acquire()
        body: dict = {
            "model": self.model,
            "max_tokens": self.config.llm_max_tokens,
            "temperature": self.config.llm_temperature,
            "messages": [{"role": m.role, "content": m.text} for m in messages],
        }
        if response_schema is not None:
            body["response_format"] = {
                "type": "json_schema",
                "json_schema": {"name": RESPONSE_TOOL_NAME, "strict": True, "schema": response_schema},
            }

        response = await self.http.post(
            "/chat/completions",
            json=body,
            headers={
                "Authorization": f"Bearer {self.config.openrouter_api_key}",
                "X-Title": self.config.app_name,
            },
        )
        response.raise_for_status()
        return response.json()

    def get_cost_estimate(self) -> dict[str, float]:
        return self.usage.get_cost_estimate()

    async def aclose(self) -> None:
        await self.http.aclose()


def create_llm_client(config: Settings = settings) -> AnthropicClient | OpenRouterClient:
    """Build the completion client selected by ``config.llm_provider``."""
    if config.llm_provider == "openrouter":
        return OpenRouterClient(config)
    return AnthropicClient(config)
