from __future__ import annotations

import http.client
import json
import logging
import time
from typing import Any, Protocol
from urllib import error, request

from .config import GEMINI_OPENAI_BASE_URL, Settings
from .errors import UpstreamError

logger = logging.getLogger(__name__)

# Statuses surfaced as-is; anything else non-2xx becomes 502.
_PASSTHROUGH_STATUSES = {401, 403, 429}
_RETRYABLE_STATUSES = {429, 500, 502, 503, 504}


class LLMAdapter(Protocol):
    """Interface for raw-text chat completions."""

    def complete(self, *, system_prompt: str, user_prompt: str) -> str: ...

    def list_models(self) -> list[dict[str, Any]]: ...


class OpenAIChatCompletionsAdapter:
    """Small adapter for OpenAI-compatible chat completions REST APIs.

    Defaults target Gemini's OpenAI-compatible endpoint. The call blocks for the
    whole round trip; timeout and retries are opt-in.
    """

    def __init__(
        self,
        *,
        api_key: str,
        model: str = "gemini-2.5-flash",
        base_url: str = GEMINI_OPENAI_BASE_URL,
        temperature: float = 0.7,
        max_tokens: int = 3000,
        timeout_s: float | None = None,
        max_retries: int = 0,
        backoff_s: float = 0.0,
        trace: bool = False,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout_s = timeout_s
        self.max_retries = max(0, max_retries)
        self.backoff_s = max(0.0, backoff_s)
        self.trace = trace

    def complete(self, *, system_prompt: str, user_prompt: str) -> str:
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
        }
        response_json = self._request_with_retry("POST", "/chat/completions", payload)
        content = self._extract_content(response_json)
        if self.trace:
            logger.warning("LLM trace completion model=%s content=%r", self.model, content)
        return content

    def list_models(self) -> list[dict[str, Any]]:
        response_json = self._request_with_retry("GET", "/models", None)
        data = response_json.get("data", [])
        if not isinstance(data, list):
            raise UpstreamError("Model listing response did not contain a data array")
        return [item for item in data if isinstance(item, dict)]

    def _request_with_retry(
        self, method: str, path: str, payload: dict[str, Any] | None
    ) -> dict[str, Any]:
        if not self.api_key:
            raise UpstreamError("API key not configured", status_code=401)

        last_error: UpstreamError | None = None
        for attempt in range(self.max_retries + 1):
            try:
                return self._request(method, path, payload)
            except UpstreamError as exc:
                last_error = exc
                logger.warning(
                    "LLM request failed attempt=%d/%d model=%s status=%d reason=%s",
                    attempt + 1,
                    self.max_retries + 1,
                    self.model,
                    exc.status_code,
                    exc.message,
                )
                if not exc.retryable:
                    break
                if attempt < self.max_retries and self.backoff_s > 0:
                    time.sleep(self.backoff_s)
        if last_error is None:
            raise UpstreamError("LLM request failed with unknown error")
        raise last_error

    def _request(self, method: str, path: str, payload: dict[str, Any] | None) -> dict[str, Any]:
        url = f"{self.base_url}{path}"
        if self.trace:
            logger.warning(
                "LLM trace request model=%s method=%s url=%s timeout_s=%s",
                self.model,
                method,
                url,
                self.timeout_s,
            )
        req = request.Request(
            url=url,
            data=json.dumps(payload).encode("utf-8") if payload is not None else None,
            method=method,
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
        )
        open_kwargs: dict[str, Any] = {}
        if self.timeout_s is not None:
            open_kwargs["timeout"] = self.timeout_s
        try:
            with request.urlopen(req, **open_kwargs) as response:
                raw_body = response.read()
        except error.HTTPError as exc:
            raw_error = exc.read().decode("utf-8", errors="replace")
            status = exc.code if exc.code in _PASSTHROUGH_STATUSES or exc.code >= 500 else 502
            raise UpstreamError(
                f"LLM API request failed with status {exc.code}: {raw_error}",
                status_code=status,
                retryable=exc.code in _RETRYABLE_STATUSES,
            ) from exc
        except (error.URLError, TimeoutError, OSError, http.client.HTTPException) as exc:
            raise UpstreamError(f"LLM API unreachable: {exc}", retryable=True) from exc

        if self.trace:
            logger.warning("LLM trace response model=%s status=ok", self.model)
        try:
            parsed = json.loads(raw_body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise UpstreamError("LLM API returned a non-JSON body") from exc
        if not isinstance(parsed, dict):
            raise UpstreamError("LLM API returned an unexpected body")
        return parsed

    @staticmethod
    def _extract_content(response_json: dict[str, Any]) -> str:
        choices = response_json.get("choices") or []
        if not choices or not isinstance(choices[0], dict):
            raise UpstreamError("LLM response did not contain choices")

        message = choices[0].get("message") or {}
        content = message.get("content", "")
        if isinstance(content, str):
            return content
        if isinstance(content, list):
            text_segments: list[str] = []
            for item in content:
                if isinstance(item, dict):
                    text = item.get("text")
                    if isinstance(text, str):
                        text_segments.append(text)
            merged = "".join(text_segments).strip()
            if merged:
                return merged
        raise UpstreamError("LLM response content could not be parsed as text")


def build_llm_adapter(settings: Settings) -> OpenAIChatCompletionsAdapter:
    # A missing key is not fatal at startup; each call fails with UpstreamError.
    return OpenAIChatCompletionsAdapter(
        api_key=settings.resolved_llm_api_key(),
        model=settings.llm_model,
        base_url=settings.llm_base_url,
        temperature=settings.llm_temperature,
        max_tokens=settings.llm_max_tokens,
        timeout_s=settings.llm_timeout_s,
        max_retries=settings.llm_max_retries,
        backoff_s=settings.llm_backoff_s,
        trace=settings.llm_trace,
    )
