from __future__ import annotations

import logging
import time
from typing import Any

import httpx

from zero_invoice.core.config import Settings
from zero_invoice.core.logging import get_logger, log_event, monotonic_ms
from zero_invoice.modules.ai.ratelimit import RateLimitedCaller

logger = get_logger(__name__)

_ACCEPTED_FINISH_REASONS = {"STOP", "MAX_TOKENS"}


class TextGenerationError(RuntimeError):
    pass


class GeminiClient:
    """Minimal Gemini `generateContent` client; every call goes through one rate limiter."""

    def __init__(
        self,
        *,
        api_key: str | None,
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        model: str = "gemini-pro",
        timeout: float = 30.0,
        min_interval: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = (api_key or "").strip() or None
        self.base_url = base_url
        self.model = model
        self.timeout = timeout
        self.caller = RateLimitedCaller(min_interval=min_interval)
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> GeminiClient:
        return cls(
            api_key=settings.gemini_api_key,
            base_url=settings.gemini_base_url,
            model=settings.gemini_model,
            timeout=float(settings.gemini_timeout_seconds or 30.0),
            min_interval=float(settings.ai_min_interval_seconds),
        )

    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def generate(
        self,
        prompt: str,
        *,
        temperature: float = 0.7,
        top_k: int = 40,
        top_p: float = 0.95,
        max_output_tokens: int = 1024,
    ) -> str:
        if not self.is_configured():
            raise TextGenerationError("Gemini API key not configured")

        payload = {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": temperature,
                "topK": top_k,
                "topP": top_p,
                "maxOutputTokens": max_output_tokens,
            },
        }
        return await self.caller.enqueue(lambda: self._post(payload))

    async def _post(self, payload: dict[str, Any]) -> str:
        url = f"{self.base_url.rstrip('/')}/models/{self.model}:generateContent"
        start = time.monotonic()
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                transport=self._transport,
                follow_redirects=True,
            ) as client:
                resp = await client.post(url, params={"key": self.api_key}, json=payload)
        except httpx.HTTPError as e:
            log_event(
                logger,
                "ai.request.error",
                level=logging.WARNING,
                model=self.model,
                error=type(e).__name__,
                duration_ms=monotonic_ms(start),
            )
            raise TextGenerationError(f"Gemini API request failed: {e}") from e

        if resp.is_error:
            log_event(
                logger,
                "ai.request.error",
                level=logging.WARNING,
                model=self.model,
                status_code=resp.status_code,
                duration_ms=monotonic_ms(start),
            )
            raise TextGenerationError(
                f"Gemini API request failed: {resp.status_code} {resp.reason_phrase}. "
                f"{_error_message(resp)}".strip()
            )

        try:
            data = resp.json()
        except ValueError as e:
            raise TextGenerationError("Gemini API returned a non-JSON response") from e

        candidates = data.get("candidates") if isinstance(data, dict) else None
        if not isinstance(candidates, list) or not candidates:
            raise TextGenerationError("No response generated from Gemini API")

        candidate = candidates[0] if isinstance(candidates[0], dict) else {}
        finish_reason = candidate.get("finishReason")
        if finish_reason not in _ACCEPTED_FINISH_REASONS:
            raise TextGenerationError(
                f"Response generation stopped unexpectedly: {finish_reason}"
            )

        try:
            text = candidate["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError) as e:
            raise TextGenerationError("Gemini API response has no text part") from e

        log_event(
            logger,
            "ai.request.finish",
            model=self.model,
            finish_reason=finish_reason,
            response_chars=len(str(text)),
            duration_ms=monotonic_ms(start),
        )
        return str(text)


def _error_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return ""
    err = body.get("error") if isinstance(body, dict) else None
    if isinstance(err, dict) and isinstance(err.get("message"), str):
        return err["message"]
    return ""
