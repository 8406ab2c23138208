"""Capability client tests: OpenAI JSON handling and Tavily error mapping.

HTTP is mocked with httpx.MockTransport; no network access.
"""

import os
import sys

# Ensure the backend package is importable
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import asyncio
import json
from unittest.mock import patch

import httpx
import pytest

from idea_viability.errors import ConfigurationError, GenerationError, RetrievalError
from idea_viability.services import openai_client, web_search
from idea_viability.services.openai_client import (
    build_payload,
    call_openai_chat_async,
    sanitize_json,
)
from idea_viability.services.retry import RetryPolicy
from idea_viability.services.web_search import search_web

_NO_WAIT = RetryPolicy(max_attempts=2, initial_delay=0)


def _mock_client(module, handler):
    """Patch ``module.httpx.AsyncClient`` to route through *handler*."""
    real_client = httpx.AsyncClient

    def factory(*args, **kwargs):
        kwargs["transport"] = httpx.MockTransport(handler)
        return real_client(*args, **kwargs)

    return patch.object(module.httpx, "AsyncClient", side_effect=factory)


def _chat_response(content):
    return httpx.Response(200, json={"choices": [{"message": {"content": content}}]})


# ---------------------------------------------------------------------------
# sanitize_json
# ---------------------------------------------------------------------------

class TestSanitizeJson:
    def test_markdown_fence(self):
        assert json.loads(sanitize_json('```json\n{"a": 1}\n```')) == {"a": 1}

    def test_prose_around_object(self):
        assert json.loads(sanitize_json('Here you go: {"a": [1, 2]} hope it helps')) == {"a": [1, 2]}

    def test_trailing_commas(self):
        assert json.loads(sanitize_json('{"a": [1, 2,], "b": 3,}')) == {"a": [1, 2], "b": 3}

    def test_bom(self):
        assert json.loads(sanitize_json("\ufeff" + '{"a": 1}')) == {"a": 1}

    def test_no_object(self):
        with pytest.raises(ValueError):
            sanitize_json("no json here")


def test_build_payload_json_mode():
    payload = build_payload(model="m", messages=[], max_completion_tokens=10, temperature=0.1, json_mode=True)
    assert payload["response_format"] == {"type": "json_object"}
    payload = build_payload(model="m", messages=[], max_completion_tokens=10, temperature=0.1, json_mode=False)
    assert "response_format" not in payload


# ---------------------------------------------------------------------------
# call_openai_chat_async
# ---------------------------------------------------------------------------

def test_openai_missing_key(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    with pytest.raises(ConfigurationError):
        asyncio.run(call_openai_chat_async(messages=[]))


def test_openai_parses_fenced_json():
    with _mock_client(openai_client, lambda request: _chat_response('```json\n{"ok": true}\n```')):
        result = asyncio.run(call_openai_chat_async(messages=[], api_key="k", model="m"))
    assert result == {"ok": True}


def test_openai_free_text_mode():
    with _mock_client(openai_client, lambda request: _chat_response("plain answer")):
        result = asyncio.run(call_openai_chat_async(messages=[], json_mode=False, api_key="k", model="m"))
    assert result == "plain answer"


def test_openai_retries_invalid_json_then_succeeds():
    replies = iter([_chat_response("not json"), _chat_response('{"ok": 1}')])
    with _mock_client(openai_client, lambda request: next(replies)):
        result = asyncio.run(call_openai_chat_async(messages=[], api_key="k", model="m", policy=_NO_WAIT))
    assert result == {"ok": 1}


def test_openai_client_error_not_retried():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(400, json={"error": "bad request"})

    with _mock_client(openai_client, handler):
        with pytest.raises(GenerationError):
            asyncio.run(call_openai_chat_async(messages=[], api_key="k", model="m", policy=_NO_WAIT))
    assert len(calls) == 1


def test_openai_server_error_exhausts_retries():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(503)

    with _mock_client(openai_client, handler):
        with pytest.raises(GenerationError):
            asyncio.run(call_openai_chat_async(messages=[], api_key="k", model="m", policy=_NO_WAIT))
    assert len(calls) == 2


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(200, json={"error": {"message": "proxy says no"}}),
        httpx.Response(200, text="<html>gateway</html>"),
        httpx.Response(200, json={"choices": []}),
        httpx.Response(200, json=[{"message": "not an object"}]),
        httpx.Response(200, json={"choices": [{"message": {"content": {"nested": True}}}]}),
    ],
)
def test_openai_malformed_success_body_raises_generation_error(response):
    calls = []

    def handler(request):
        calls.append(request)
        return response

    with _mock_client(openai_client, handler):
        with pytest.raises(GenerationError, match="Malformed OpenAI response"):
            asyncio.run(call_openai_chat_async(messages=[], api_key="k", model="m", policy=_NO_WAIT))
    assert len(calls) == 1


# ---------------------------------------------------------------------------
# search_web
# ---------------------------------------------------------------------------

def test_search_returns_hits(monkeypatch):
    monkeypatch.setenv("TAVILY_API_KEY", "t")
    body = {"results": [{"url": "https://a.io", "title": "A", "content": "text"}]}
    with _mock_client(web_search, lambda request: httpx.Response(200, json=body)):
        hits = asyncio.run(search_web("query", policy=_NO_WAIT))
    assert [h.url for h in hits] == ["https://a.io"]


def test_search_empty_is_valid(monkeypatch):
    monkeypatch.setenv("TAVILY_API_KEY", "t")
    with _mock_client(web_search, lambda request: httpx.Response(200, json={"results": []})):
        assert asyncio.run(search_web("query", policy=_NO_WAIT)) == []


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(200, text="Service temporarily unavailable"),
        httpx.Response(200, json=[{"url": "https://a.io"}]),
        httpx.Response(200, json={"results": "none"}),
    ],
)
def test_search_malformed_success_body_raises_retrieval_error(monkeypatch, response):
    monkeypatch.setenv("TAVILY_API_KEY", "t")
    with _mock_client(web_search, lambda request: response):
        with pytest.raises(RetrievalError, match="Malformed Tavily response"):
            asyncio.run(search_web("query", policy=_NO_WAIT))


def test_search_skips_non_object_results(monkeypatch):
    monkeypatch.setenv("TAVILY_API_KEY", "t")
    body = {"results": ["stray", {"url": "https://a.io"}]}
    with _mock_client(web_search, lambda request: httpx.Response(200, json=body)):
        hits = asyncio.run(search_web("query", policy=_NO_WAIT))
    assert [h.url for h in hits] == ["https://a.io"]


def test_search_auth_failure_raises_retrieval_error(monkeypatch):
    monkeypatch.setenv("TAVILY_API_KEY", "t")
    with _mock_client(web_search, lambda request: httpx.Response(401)):
        with pytest.raises(RetrievalError, match="401"):
            asyncio.run(search_web("query", policy=_NO_WAIT))


def test_search_missing_key(monkeypatch):
    monkeypatch.delenv("TAVILY_API_KEY", raising=False)
    with pytest.raises(ConfigurationError):
        asyncio.run(search_web("query"))
