from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

import anthropic

from character_agent.config import Settings

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = {408, 429, 500, 502, 503, 504}


@dataclass(slots=True)
class LLMResponse:
    text: str
    stop_reason: str | None
    raw: Any


class LLMService:
    """Claude (Anthropic Messages API) 服务包装器。

    - 直接使用 `anthropic` SDK
    - 传输层重试由 `max_retries` 控制（默认取 settings.llm_max_retries）
    """

    def __init__(self, settings: Settings, *, max_retries: int | None = None):
        self.settings = settings
        self.max_retries = settings.llm_max_retries if max_retries is None else max_retries
        self._client: anthropic.AsyncAnthropic | None = None

    def _get_client(self) -> Any:
        if self._client is not None:
            return self._client

        api_key = self.settings.anthropic_api_key or self.settings.anthropic_auth_token
        if not api_key:
            raise ValueError("Anthropic credentials missing: set `anthropic_api_key` or `anthropic_auth_token`.")

        default_headers: dict[str, str] = {}
        if self.settings.anthropic_auth_token:
            # 兼容使用 Bearer Token 鉴权的中转站
            default_headers["Authorization"] = f"Bearer {self.settings.anthropic_auth_token}"

        kwargs: dict[str, Any] = {
            "api_key": api_key,
            "timeout": self.settings.request_timeout_s,
            # 我们在外层自己做重试，避免双重重试导致等待过长
            "max_retries": 0,
        }
        if self.settings.anthropic_base_url:
            kwargs["base_url"] = self.settings.anthropic_base_url
        if default_headers:
            kwargs["default_headers"] = default_headers

        self._client = anthropic.AsyncAnthropic(**kwargs)
        return self._client

    def _parse_message(self, message: Any) -> LLMResponse:
        text_parts: list[str] = []
        for block in getattr(message, "content", []) or []:
            if getattr(block, "type", None) == "text":
                text_parts.append(getattr(block, "text", ""))
        return LLMResponse(
            text="".join(text_parts),
            stop_reason=getattr(message, "stop_reason", None),
            raw=message,
        )

    def _is_retryable_error(self, exc: Exception) -> bool:
        if isinstance(exc, (anthropic.RateLimitError, anthropic.APIConnectionError, anthropic.APITimeoutError)):
            return True
        status_code = getattr(exc, "status_code", None)
        return isinstance(status_code, int) and status_code in RETRYABLE_STATUS

    async def generate(
        self,
        *,
        messages: list[dict[str, Any]],
        system: str | None = None,
        model: str | None = None,
        max_tokens: int = 1024,
        temperature: float | None = None,
        **kwargs: Any,
    ) -> LLMResponse:
        client = self._get_client()

        payload: dict[str, Any] = {
            "model": model or self.settings.anthropic_model,
            "max_tokens": max_tokens,
            "messages": messages,
            **kwargs,
        }
        if system is not None:
            payload["system"] = system
        if temperature is not None:
            payload["temperature"] = temperature

        delay_s = 0.5
        for attempt in range(self.max_retries + 1):
            try:
                message = await client.messages.create(**payload)
                return self._parse_message(message)
            except Exception as exc:
                if attempt >= self.max_retries or not self._is_retryable_error(exc):
                    raise
                logger.warning("LLM call failed (attempt %d), retrying in %.1fs: %s", attempt + 1, delay_s, exc)
                await asyncio.sleep(delay_s)
                delay_s = min(delay_s * 2, 8.0)

        raise RuntimeError("unreachable")  # pragma: no cover
