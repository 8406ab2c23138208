"""Tavily integration: the web-search capability.

Returns plain ``SearchHit`` records.  An empty list is a valid result;
transport and HTTP failures raise ``RetrievalError`` once the retry policy
is exhausted.
"""

from __future__ import annotations

import logging
import os
from typing import Any, List

import httpx
from pydantic import BaseModel

from ..errors import ConfigurationError, RetrievalError
from .retry import SEARCH_RETRY_POLICY, RetryPolicy, run_with_retry

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Tavily API configuration
# ---------------------------------------------------------------------------
_TAVILY_API_URL = "https://api.tavily.com/search"
_REQUEST_TIMEOUT = 15.0  # seconds
_NON_RETRYABLE_CODES = {400, 401, 403, 404, 422}


class SearchHit(BaseModel):
    url: str
    title: str = ""
    snippet: str = ""


class _TransientSearchError(RetrievalError):
    """A failure worth another attempt."""


def _get_tavily_key() -> str:
    """Read the Tavily API key from the environment."""
    key = os.getenv("TAVILY_API_KEY", "").strip()
    if not key:
        print("⚠️  [TAVILY] API key missing (TAVILY_API_KEY)")
        raise ConfigurationError(
            "TAVILY_API_KEY environment variable not set",
            missing_keys=["TAVILY_API_KEY"],
        )
    return key


def parse_search_results(data: Any) -> List[SearchHit]:
    """Convert a Tavily response body into SearchHits, skipping entries without a URL.

    Raises RetrievalError when the body is not a Tavily results object.
    """
    if not isinstance(data, dict):
        raise RetrievalError(f"Malformed Tavily response: expected object, got {type(data).__name__}")
    results = data.get("results") or []
    if not isinstance(results, list):
        raise RetrievalError("Malformed Tavily response: results is not a list")

    hits: List[SearchHit] = []
    for item in results:
        if not isinstance(item, dict):
            continue
        url = (item.get("url") or "").strip()
        if not url:
            continue
        hits.append(
            SearchHit(
                url=url,
                title=(item.get("title") or "").strip(),
                snippet=(item.get("content") or "").strip(),
            )
        )
    return hits


async def search_web(
    query: str,
    max_results: int = 3,
    *,
    policy: RetryPolicy = SEARCH_RETRY_POLICY,
) -> List[SearchHit]:
    """Execute one Tavily search and return up to *max_results* hits."""
    api_key = _get_tavily_key()
    payload = {
        "api_key": api_key,
        "query": query,
        "search_depth": "advanced",
        "max_results": max_results,
        "include_answer": False,
    }

    async def _attempt() -> List[SearchHit]:
        try:
            async with httpx.AsyncClient(timeout=_REQUEST_TIMEOUT) as client:
                response = await client.post(_TAVILY_API_URL, json=payload)
        except httpx.TimeoutException as exc:
            print(f"⚠️ [TAVILY] Timeout for {query!r}")
            raise _TransientSearchError(f"Tavily timeout for {query!r}") from exc
        except httpx.HTTPError as exc:
            raise _TransientSearchError(f"Tavily transport error: {exc}") from exc

        if response.status_code == 200:
            try:
                body = response.json()
            except ValueError as exc:
                print(f"⚠️ [TAVILY] Non-JSON body for {query!r}")
                raise RetrievalError("Malformed Tavily response: body is not JSON") from exc
            hits = parse_search_results(body)
            print(f"📦 [TAVILY] {len(hits)} results for {query!r}")
            return hits[:max_results]

        print(f"⚠️ [TAVILY] HTTP {response.status_code} for {query!r}")
        if response.status_code in _NON_RETRYABLE_CODES:
            raise RetrievalError(
                f"Tavily HTTP {response.status_code}",
                context={"status_code": response.status_code, "query": query},
            )
        raise _TransientSearchError(f"Tavily HTTP {response.status_code}")

    return await run_with_retry(_attempt, policy, retry_on=(_TransientSearchError,))
