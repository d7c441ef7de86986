"""
LLM Service - Streaming text completion against the configured provider

The session manager only sees `CompletionClient.stream()`: an async iterator of
text increments with token usage collected along the way.
"""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Optional, Protocol

import aiohttp

from models.settings import Provider, Settings, TokenUsage

from .errors import ProviderFailure

logger = logging.getLogger(__name__)

OPENAI_URL = "https://api.openai.com/v1/chat/completions"
ANTHROPIC_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"
GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/models"


class CompletionStream(Protocol):
    usage: TokenUsage

    def __aiter__(self) -> AsyncIterator[str]: ...


class CompletionClient(Protocol):
    def stream(self, system_prompt: str, messages: list[dict[str, str]]) -> CompletionStream: ...


CompletionFactory = Callable[[Settings], CompletionClient]


def parse_sse_line(line_text: str) -> Optional[dict[str, Any]]:
    """Parse one `data:` line of a server-sent event stream"""
    if not line_text.startswith("data:"):
        return None
    data_str = line_text[5:].strip()
    if not data_str or data_str == "[DONE]":
        return None
    try:
        data = json.loads(data_str)
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


def _raise_for_error_payload(data: dict[str, Any], provider: str) -> None:
    error = data.get("error")
    if error:
        message = error.get("message") if isinstance(error, dict) else str(error)
        raise ProviderFailure(f"{provider} API error: {message}")


class ProviderStream:
    """One streaming completion call; iterate it once"""

    def __init__(
        self,
        service: "LLMService",
        url: str,
        payload: dict[str, Any],
        headers: dict[str, str],
        extractor: Callable[["ProviderStream", dict[str, Any]], Optional[str]],
    ):
        self.usage = TokenUsage()
        self._service = service
        self._url = url
        self._payload = payload
        self._headers = headers
        self._extractor = extractor

    def __aiter__(self) -> AsyncIterator[str]:
        return self._iterate()

    def update_usage(self, **counts: int) -> None:
        self.usage = self.usage.model_copy(update=counts)

    async def _iterate(self) -> AsyncIterator[str]:
        provider = self._service.provider.value
        try:
            async with self._service._request(self._url, self._payload, self._headers) as response:
                async for line in response.content:
                    data = parse_sse_line(line.decode("utf-8").strip())
                    if data is None:
                        continue
                    _raise_for_error_payload(data, provider)
                    content = self._extractor(self, data)
                    if content:
                        yield content
        except aiohttp.ClientError as e:
            raise ProviderFailure(f"{provider} network error: {e}") from e
        except asyncio.TimeoutError as e:
            raise ProviderFailure(f"{provider} request timed out") from e


class LLMService:
    """Service for streaming completions from openai, anthropic or gemini"""

    def __init__(self, settings: Settings, timeout_seconds: float = 120.0):
        self.settings = settings
        self.provider = settings.provider
        self.timeout_seconds = timeout_seconds

    # ========== Config Helpers ==========

    def _get_openai_config(self) -> tuple[str, dict[str, str]]:
        headers = {
            "Authorization": f"Bearer {self.settings.api_key}",
            "Content-Type": "application/json",
        }
        return OPENAI_URL, headers

    def _get_anthropic_config(self) -> tuple[str, dict[str, str]]:
        headers = {
            "x-api-key": self.settings.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "Content-Type": "application/json",
        }
        return ANTHROPIC_URL, headers

    def _get_gemini_config(self) -> tuple[str, dict[str, str]]:
        url = f"{GEMINI_BASE_URL}/{self.settings.model}:streamGenerateContent?alt=sse"
        headers = {"x-goog-api-key": self.settings.api_key, "Content-Type": "application/json"}
        return url, headers

    # ========== Payload Builders ==========

    def _build_openai_payload(self, system_prompt: str, messages: list[dict[str, str]]) -> dict[str, Any]:
        """Build OpenAI chat-completions payload"""
        return {
            "model": self.settings.model,
            "messages": [{"role": "system", "content": system_prompt}, *messages] if system_prompt else messages,
            "max_tokens": self.settings.max_tokens,
            "temperature": self.settings.temperature,
            "stream": True,
            "stream_options": {"include_usage": True},
        }

    def _build_anthropic_payload(self, system_prompt: str, messages: list[dict[str, str]]) -> dict[str, Any]:
        """Build Anthropic messages payload"""
        payload: dict[str, Any] = {
            "model": self.settings.model,
            "messages": messages,
            "max_tokens": self.settings.max_tokens,
            "temperature": self.settings.temperature,
            "stream": True,
        }
        if system_prompt:
            payload["system"] = system_prompt
        return payload

    def _build_gemini_payload(self, system_prompt: str, messages: list[dict[str, str]]) -> dict[str, Any]:
        """Build Gemini generateContent payload"""
        contents = [
            {
                "role": "model" if message["role"] == "assistant" else "user",
                "parts": [{"text": message["content"]}],
            }
            for message in messages
        ]
        payload: dict[str, Any] = {
            "contents": contents,
            "generationConfig": {
                "temperature": self.settings.temperature,
                "maxOutputTokens": self.settings.max_tokens,
            },
        }
        if system_prompt:
            payload["systemInstruction"] = {"role": "system", "parts": [{"text": system_prompt}]}
        return payload

    # ========== Stream Extractors ==========

    @staticmethod
    def _extract_openai_delta(stream: ProviderStream, data: dict[str, Any]) -> Optional[str]:
        """Extract content delta (and final usage) from OpenAI stream data"""
        usage = data.get("usage")
        if isinstance(usage, dict):
            stream.update_usage(
                prompt_tokens=usage.get("prompt_tokens") or 0,
                completion_tokens=usage.get("completion_tokens") or 0,
                total_tokens=usage.get("total_tokens") or 0,
            )
        choices = data.get("choices") or []
        if choices:
            delta = choices[0].get("delta") or {}
            content = delta.get("content")
            return content if isinstance(content, str) and content else None
        return None

    @staticmethod
    def _extract_anthropic_delta(stream: ProviderStream, data: dict[str, Any]) -> Optional[str]:
        """Extract text delta from Anthropic stream events"""
        event_type = data.get("type")
        if event_type == "message_start":
            usage = (data.get("message") or {}).get("usage") or {}
            stream.update_usage(prompt_tokens=usage.get("input_tokens") or 0)
        elif event_type == "message_delta":
            usage = data.get("usage") or {}
            stream.update_usage(completion_tokens=usage.get("output_tokens") or 0)
        elif event_type == "content_block_delta":
            delta = data.get("delta") or {}
            if delta.get("type") == "text_delta":
                return delta.get("text") or None
        return None

    @staticmethod
    def _extract_gemini_delta(stream: ProviderStream, data: dict[str, Any]) -> Optional[str]:
        """Extract text from a Gemini stream chunk"""
        usage = data.get("usageMetadata")
        if isinstance(usage, dict):
            stream.update_usage(
                prompt_tokens=usage.get("promptTokenCount") or 0,
                completion_tokens=usage.get("candidatesTokenCount") or 0,
                total_tokens=usage.get("totalTokenCount") or 0,
            )
        candidates = data.get("candidates") or []
        if not candidates:
            return None
        parts = (candidates[0].get("content") or {}).get("parts") or []
        text = "".join(part.get("text", "") for part in parts if isinstance(part, dict))
        return text or None

    # ========== Transport ==========

    @asynccontextmanager
    async def _request(self, url: str, payload: dict[str, Any], headers: dict[str, str]):
        """Context manager for a streaming POST with automatic session cleanup"""
        provider = self.provider.value
        timeout = aiohttp.ClientTimeout(total=None, sock_connect=30, sock_read=self.timeout_seconds)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.post(url, json=payload, headers=headers) as response:
                if response.status != 200:
                    error_text = await response.text()
                    logger.warning("[LLMService] %s API error (%s): %s", provider, response.status, error_text[:200])
                    raise ProviderFailure(f"API request failed ({response.status}): {error_text}")
                yield response

    def stream(self, system_prompt: str, messages: list[dict[str, str]]) -> ProviderStream:
        """Start a streaming completion for the configured provider"""
        if self.provider == Provider.OPENAI:
            url, headers = self._get_openai_config()
            payload = self._build_openai_payload(system_prompt, messages)
            extractor = self._extract_openai_delta
        elif self.provider == Provider.ANTHROPIC:
            url, headers = self._get_anthropic_config()
            payload = self._build_anthropic_payload(system_prompt, messages)
            extractor = self._extract_anthropic_delta
        elif self.provider == Provider.GEMINI:
            url, headers = self._get_gemini_config()
            payload = self._build_gemini_payload(system_prompt, messages)
            extractor = self._extract_gemini_delta
        else:
            raise ProviderFailure(f"Unsupported provider: {self.provider}")

        logger.info("[LLMService] Streaming from %s with model: %s", self.provider.value, self.settings.model)
        return ProviderStream(self, url, payload, headers, extractor)


def default_completion_factory(timeout_seconds: float = 120.0) -> CompletionFactory:
    """Factory producing an LLMService for the current settings"""

    def factory(settings: Settings) -> CompletionClient:
        return LLMService(settings, timeout_seconds=timeout_seconds)

    return factory


async def generate_response(client: CompletionClient, prompt: str, system_prompt: str = "") -> str:
    """Collect a whole single-turn completion into one string"""
    parts = [chunk async for chunk in client.stream(system_prompt, [{"role": "user", "content": prompt}])]
    return "".join(parts).strip()
