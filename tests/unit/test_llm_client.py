from __future__ import annotations

import json
import logging

import httpx
import pytest

from simgraph.core import llm_client
from simgraph.core.errors import TextGenerationError
from simgraph.core.llm_client import HttpTextGenerator, TextGeneratorSettings


def _settings(provider="openai", **overrides):
    values = dict(
        provider=provider,
        api_key="key",
        model="model-test",
        endpoint="https://example.com",
        enabled=True,
        timeout=2.0,
    )
    values.update(overrides)
    return TextGeneratorSettings(**values)


class DummyResponse:
    def __init__(self, payload, status_code=200, error=None):
        self._payload = payload
        self.status_code = status_code
        self._error = error

    def json(self):
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload

    def raise_for_status(self):
        if self._error is not None:
            raise self._error


def _install_client(monkeypatch, response=None, error=None):
    calls = []

    class DummyClient:
        def __init__(self, *args, **kwargs):
            calls.append({"client": kwargs})

        def __enter__(self):
            return self

        def __exit__(self, *args):
            return False

        def post(self, url, **kwargs):
            calls.append({"url": url, **kwargs})
            if error is not None:
                raise error
            return response

    monkeypatch.setattr(llm_client.httpx, "Client", DummyClient)
    return calls


def test_settings_default_to_openai(monkeypatch):
    monkeypatch.setenv("LLM_API_KEY", "secret")
    monkeypatch.delenv("LLM_PROVIDER", raising=False)
    monkeypatch.delenv("LLM_MODEL", raising=False)
    monkeypatch.delenv("LLM_ENDPOINT", raising=False)
    monkeypatch.delenv("LLM_ENABLED", raising=False)
    monkeypatch.delenv("LLM_TIMEOUT", raising=False)

    settings = llm_client._get_settings()

    assert settings.provider == "openai"
    assert settings.model == "gpt-4o-mini"
    assert settings.endpoint.endswith("/chat/completions")
    assert settings.enabled is True
    assert settings.timeout == 12.0


def test_settings_fall_back_on_bad_values(monkeypatch, caplog):
    monkeypatch.setenv("LLM_API_KEY", "secret")
    monkeypatch.setenv("LLM_PROVIDER", "claude-ish")
    monkeypatch.setenv("LLM_TIMEOUT", "soon")

    with caplog.at_level(logging.WARNING):
        settings = llm_client._get_settings()

    assert settings.provider == "openai"
    assert settings.timeout == 12.0
    assert "Unsupported LLM_PROVIDER" in caplog.text
    assert "Invalid LLM_TIMEOUT" in caplog.text


def test_gemini_settings_and_timeout_floor(monkeypatch):
    monkeypatch.setenv("LLM_API_KEY", "secret")
    monkeypatch.setenv("LLM_PROVIDER", "Gemini")
    monkeypatch.delenv("LLM_MODEL", raising=False)
    monkeypatch.delenv("LLM_ENDPOINT", raising=False)
    monkeypatch.setenv("LLM_TIMEOUT", "0.1")

    settings = llm_client._get_settings()

    assert settings.provider == "gemini"
    assert settings.model.startswith("gemini-")
    assert settings.timeout == 1.0


def test_get_text_generator_disabled_without_key(monkeypatch):
    monkeypatch.delenv("LLM_API_KEY", raising=False)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    assert llm_client.get_text_generator() is None


def test_get_text_generator_disabled_by_flag(monkeypatch):
    monkeypatch.setenv("LLM_API_KEY", "secret")
    monkeypatch.setenv("LLM_ENABLED", "false")

    assert llm_client.get_text_generator() is None


def test_get_text_generator_enabled(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "secret")
    monkeypatch.delenv("LLM_API_KEY", raising=False)
    monkeypatch.delenv("LLM_ENABLED", raising=False)

    generator = llm_client.get_text_generator()

    assert isinstance(generator, HttpTextGenerator)
    assert generator.settings.api_key == "secret"


def test_openai_generation_returns_message_content(monkeypatch):
    monkeypatch.setenv("OPENAI_PROJECT", "proj-test")
    response = DummyResponse({"choices": [{"message": {"content": "Dune\nAlien"}}]})
    calls = _install_client(monkeypatch, response)

    text = HttpTextGenerator(_settings()).generate("prompt", max_tokens=50, temperature=0.7)

    assert text == "Dune\nAlien"
    post = calls[1]
    assert post["url"] == "https://example.com"
    assert post["headers"]["Authorization"] == "Bearer key"
    assert post["headers"]["OpenAI-Project"] == "proj-test"
    assert post["json"]["max_tokens"] == 50
    assert post["json"]["temperature"] == 0.7
    assert post["json"]["messages"] == [{"role": "user", "content": "prompt"}]
    assert calls[0]["client"] == {"timeout": 2.0}


def test_openai_status_error_is_wrapped(monkeypatch):
    request = httpx.Request("POST", "https://example.com")
    failure = httpx.HTTPStatusError(
        "boom", request=request, response=httpx.Response(502, request=request)
    )
    _install_client(monkeypatch, DummyResponse({}, 502, error=failure))

    with pytest.raises(TextGenerationError, match="status 502"):
        HttpTextGenerator(_settings()).generate("prompt")


def test_openai_transport_error_is_wrapped(monkeypatch):
    _install_client(monkeypatch, error=httpx.ConnectError("refused"))

    with pytest.raises(TextGenerationError, match="OpenAI request failed"):
        HttpTextGenerator(_settings()).generate("prompt")


def test_openai_unexpected_payload(monkeypatch):
    _install_client(monkeypatch, DummyResponse({"choices": []}))

    with pytest.raises(TextGenerationError, match="Unexpected response"):
        HttpTextGenerator(_settings()).generate("prompt")


def test_missing_api_key_raises():
    with pytest.raises(TextGenerationError):
        HttpTextGenerator(_settings(api_key=None)).generate("prompt")


def test_gemini_generation_joins_parts(monkeypatch):
    payload = {
        "candidates": [
            {"content": {"parts": [{"text": " Dune "}, {"text": ""}, {"text": "Alien"}]}}
        ]
    }
    calls = _install_client(monkeypatch, DummyResponse(payload))

    text = HttpTextGenerator(_settings("gemini", model="gemini-test")).generate(
        "prompt", max_tokens=20
    )

    assert text == "Dune\nAlien"
    post = calls[1]
    assert post["url"] == "https://example.com/gemini-test:generateContent"
    assert post["params"] == {"key": "key"}
    assert post["json"]["generationConfig"]["maxOutputTokens"] == 20


def test_gemini_full_endpoint_and_empty_candidates(monkeypatch):
    endpoint = "https://example.com/models/x:generateContent"
    calls = _install_client(monkeypatch, DummyResponse({"candidates": []}))

    text = HttpTextGenerator(_settings("gemini", endpoint=endpoint)).generate("prompt")

    assert text == ""
    assert calls[1]["url"] == endpoint


def test_gemini_http_error_status(monkeypatch):
    _install_client(monkeypatch, DummyResponse({}, status_code=429))

    with pytest.raises(TextGenerationError, match="status 429"):
        HttpTextGenerator(_settings("gemini")).generate("prompt")


def _html_body():
    return json.JSONDecodeError("Expecting value", "<html>bad gateway</html>", 0)


@pytest.mark.parametrize("provider", ["openai", "gemini"])
def test_non_json_body_is_wrapped(monkeypatch, provider):
    _install_client(monkeypatch, DummyResponse(_html_body()))

    with pytest.raises(TextGenerationError, match="non-JSON body"):
        HttpTextGenerator(_settings(provider)).generate("prompt")
