from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Dict, List, Optional

import httpx

from simgraph.core.errors import TextGenerationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TextGeneratorSettings:
    provider: str
    api_key: str | None
    model: str
    endpoint: str
    enabled: bool
    timeout: float


@lru_cache(maxsize=1)
def _get_settings() -> TextGeneratorSettings:
    api_key = os.getenv("LLM_API_KEY") or os.getenv("OPENAI_API_KEY")
    raw_provider = os.getenv("LLM_PROVIDER", "openai").strip().lower()
    if raw_provider not in {"openai", "gemini"}:
        logger.warning(
            "Unsupported LLM_PROVIDER '%s'; falling back to 'openai'.", raw_provider
        )
        provider = "openai"
    else:
        provider = raw_provider

    if provider == "gemini":
        default_model = "gemini-2.0-flash-lite"
        default_endpoint = "https://generativelanguage.googleapis.com/v1beta/models"
    else:
        default_model = "gpt-4o-mini"
        default_endpoint = "https://api.openai.com/v1/chat/completions"

    model = os.getenv("LLM_MODEL", default_model)
    endpoint = os.getenv("LLM_ENDPOINT", default_endpoint)
    enabled_value = os.getenv("LLM_ENABLED", "1").strip().lower()
    enabled = bool(api_key) and enabled_value not in {"0", "false", "no"}
    timeout = 12.0
    raw_timeout = os.getenv("LLM_TIMEOUT")
    if raw_timeout:
        try:
            timeout = max(1.0, float(raw_timeout))
        except ValueError:
            logger.warning("Invalid LLM_TIMEOUT value '%s'; using default.", raw_timeout)
    return TextGeneratorSettings(
        provider=provider,
        api_key=api_key,
        model=model,
        endpoint=endpoint,
        enabled=enabled,
        timeout=timeout,
    )


class HttpTextGenerator:
    """Prompt -> text over the OpenAI or Gemini HTTP APIs."""

    def __init__(self, settings: TextGeneratorSettings):
        self.settings = settings

    def generate(
        self, prompt: str, *, max_tokens: int = 512, temperature: float = 0.2
    ) -> str:
        if not self.settings.api_key:
            raise TextGenerationError("Missing API key for text generation provider.")
        if self.settings.provider == "gemini":
            return self._call_gemini(prompt, max_tokens, temperature)
        return self._call_openai(prompt, max_tokens, temperature)

    def _call_openai(self, prompt: str, max_tokens: int, temperature: float) -> str:
        headers = {
            "Authorization": f"Bearer {self.settings.api_key}",
            "Content-Type": "application/json",
        }
        project = os.getenv("OPENAI_PROJECT")
        if project:
            headers["OpenAI-Project"] = project
        body = {
            "model": self.settings.model,
            "messages": [{"role": "user", "content": prompt}],
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        try:
            with httpx.Client(timeout=self.settings.timeout) as client:
                response = client.post(self.settings.endpoint, headers=headers, json=body)
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise TextGenerationError(
                f"OpenAI API responded with status {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise TextGenerationError(f"OpenAI request failed: {exc}") from exc

        data = _json_body(response, "OpenAI")
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise TextGenerationError(
                "Unexpected response structure from OpenAI."
            ) from exc
        return str(content or "")

    def _call_gemini(self, prompt: str, max_tokens: int, temperature: float) -> str:
        endpoint = self.settings.endpoint.rstrip("/")
        if endpoint.endswith(":generateContent"):
            url = endpoint
        else:
            url = f"{endpoint}/{self.settings.model}:generateContent"

        payload: Dict[str, Any] = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": temperature,
                "maxOutputTokens": max_tokens,
            },
        }
        try:
            with httpx.Client(timeout=self.settings.timeout) as client:
                response = client.post(
                    url,
                    params={"key": self.settings.api_key},
                    headers={"Content-Type": "application/json"},
                    json=payload,
                )
        except httpx.HTTPError as exc:
            raise TextGenerationError(f"Gemini request failed: {exc}") from exc
        if response.status_code >= 400:
            logger.warning("Gemini generation HTTP %s", response.status_code)
            raise TextGenerationError(
                f"Gemini API responded with status {response.status_code}"
            )

        data = _json_body(response, "Gemini")
        candidates = data.get("candidates") if isinstance(data, dict) else None
        if not isinstance(candidates, list) or not candidates:
            return ""
        content = candidates[0].get("content") if isinstance(candidates[0], dict) else None
        parts: List[Dict[str, Any]] = []
        if isinstance(content, dict) and isinstance(content.get("parts"), list):
            parts = [part for part in content["parts"] if isinstance(part, dict)]
        elif isinstance(content, list):
            parts = [part for part in content if isinstance(part, dict)]

        chunks = [
            part["text"].strip()
            for part in parts
            if isinstance(part.get("text"), str) and part["text"].strip()
        ]
        return "\n".join(chunks)


def _json_body(response: httpx.Response, provider: str) -> Any:
    try:
        return response.json()
    except ValueError as exc:
        raise TextGenerationError(f"{provider} returned a non-JSON body.") from exc


def get_text_generator() -> Optional[HttpTextGenerator]:
    """The configured generator, or None when no provider is enabled."""
    settings = _get_settings()
    if not settings.enabled:
        logger.info(
            "Text generation disabled (no API key or LLM_ENABLED=0); AI features off."
        )
        return None
    return HttpTextGenerator(settings)
