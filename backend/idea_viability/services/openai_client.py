"""Centralized OpenAI client: the text-generation capability.

Every stage MUST use `call_openai_chat_async()` from this module.
This ensures:
  - Model, temperature, timeout, and token limits are read from env.
  - JSON response format is enforced via response_format in schema mode.
  - Transient failures (timeouts, 429/5xx, invalid JSON) are retried
    through OPENAI_RETRY_POLICY; anything else fails fast.
  - Failures surface as GenerationError, never as None.
"""

from __future__ import annotations

import json
import logging
import os
import re
import time
from typing import Any, Dict, List, Optional, Union

import httpx

from ..config import env_float, env_int
from ..errors import ConfigurationError, GenerationError
from .retry import OPENAI_RETRY_POLICY, RetryPolicy, run_with_retry

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants: all read from environment with safe defaults
# ---------------------------------------------------------------------------
_OPENAI_API_URL = "https://api.openai.com/v1/chat/completions"
_RETRYABLE_STATUS = {429, 500, 502, 503, 504}


class _TransientGenerationError(GenerationError):
    """A failure worth another attempt."""


def get_openai_key() -> str:
    """Read OPENAI_API_KEY from the environment. Raises ConfigurationError if missing."""
    key = os.getenv("OPENAI_API_KEY", "").strip()
    if not key:
        print("⚠️  [OPENAI] API key missing (OPENAI_API_KEY)")
        raise ConfigurationError(
            "OPENAI_API_KEY environment variable not set",
            missing_keys=["OPENAI_API_KEY"],
        )
    return key


def get_openai_model() -> str:
    """Read OPENAI_MODEL from the environment (default: gpt-4.1)."""
    return os.getenv("OPENAI_MODEL", "gpt-4.1").strip()


def _get_temperature() -> float:
    return env_float("OPENAI_TEMPERATURE", 0.3)


def _get_timeout() -> float:
    return env_float("OPENAI_REQUEST_TIMEOUT", 40.0)


def _get_default_max_tokens() -> int:
    return env_int("OPENAI_MAX_COMPLETION_TOKENS", 4000)


# ---------------------------------------------------------------------------
# JSON sanitizer: extracts valid JSON from LLM output
# ---------------------------------------------------------------------------
def sanitize_json(raw: str) -> str:
    """Extract a JSON object from raw LLM output.

    Handles:
      - Markdown fences (```json ... ```)
      - Leading/trailing whitespace and BOM
      - Prose before/after JSON
      - Trailing commas before } or ]

    Raises ValueError if no JSON object is found.
    """
    text = raw.strip().lstrip("\ufeff")

    if text.startswith("```"):
        parts = text.split("```")
        text = parts[1] if len(parts) >= 3 else text[3:]

    text = text.strip()
    if text.lower().startswith("json"):
        text = text[4:].strip()

    brace_idx = text.find("{")
    if brace_idx == -1:
        raise ValueError("LLM did not return a JSON object: no '{' found")
    text = text[brace_idx:]

    rbrace_idx = text.rfind("}")
    if rbrace_idx == -1:
        raise ValueError("LLM did not return a JSON object: no '}' found")
    text = text[: rbrace_idx + 1]

    return re.sub(r",\s*([}\]])", r"\1", text)


def build_payload(
    *,
    model: str,
    messages: List[Dict[str, str]],
    max_completion_tokens: int,
    temperature: float,
    json_mode: bool,
) -> Dict[str, Any]:
    """Build an OpenAI chat completions payload."""
    payload: Dict[str, Any] = {
        "model": model,
        "messages": messages,
        "max_tokens": max_completion_tokens,
        "temperature": temperature,
    }
    if json_mode:
        payload["response_format"] = {"type": "json_object"}
    return payload


def _extract_content(response: httpx.Response) -> str:
    """Pull the first choice's message text out of a 200 response."""
    try:
        data = response.json()
        content = data["choices"][0]["message"]["content"]
    except (ValueError, KeyError, IndexError, TypeError) as exc:
        print(f"❌ [OPENAI] Malformed response body: {response.text[:400]}")
        raise GenerationError(
            f"Malformed OpenAI response: {exc!r}",
            context={"body": response.text[:400]},
        ) from exc

    usage = data.get("usage")
    if isinstance(usage, dict):
        logger.debug(
            "OpenAI tokens: prompt=%s completion=%s",
            usage.get("prompt_tokens"),
            usage.get("completion_tokens"),
        )

    if content is not None and not isinstance(content, str):
        raise GenerationError(f"Malformed OpenAI response: content is {type(content).__name__}")
    return (content or "").strip()


def _parse_content(raw_content: str, json_mode: bool) -> Union[Dict[str, Any], str]:
    if not json_mode:
        return raw_content
    try:
        parsed = json.loads(sanitize_json(raw_content))
    except (ValueError, json.JSONDecodeError) as exc:
        print(f"❌ [OPENAI] JSON parse failed: {exc}")
        raise _TransientGenerationError(f"Invalid JSON from model: {exc}") from exc
    if not isinstance(parsed, dict):
        raise GenerationError("Model returned JSON that is not an object")
    return parsed


async def call_openai_chat_async(
    *,
    messages: List[Dict[str, str]],
    json_mode: bool = True,
    max_completion_tokens: int = 0,
    temperature: Optional[float] = None,
    api_key: Optional[str] = None,
    model: Optional[str] = None,
    policy: RetryPolicy = OPENAI_RETRY_POLICY,
) -> Union[Dict[str, Any], str]:
    """Call OpenAI chat completions.

    Parameters
    ----------
    messages : list[dict]
        The messages array (system + user).
    json_mode : bool
        True → parsed JSON object (dict); False → free text.
    max_completion_tokens : int
        Token limit for the response. 0 = use env default.

    Raises
    ------
    ConfigurationError
        OPENAI_API_KEY is not set.
    GenerationError
        All attempts failed or the response could not be parsed.
    """
    if api_key is None:
        api_key = get_openai_key()
    if model is None:
        model = get_openai_model()
    if max_completion_tokens <= 0:
        max_completion_tokens = _get_default_max_tokens()

    timeout = _get_timeout()
    headers = {
        "Authorization": f"Bearer {api_key}",
        "Content-Type": "application/json",
    }
    payload = build_payload(
        model=model,
        messages=messages,
        max_completion_tokens=max_completion_tokens,
        temperature=_get_temperature() if temperature is None else temperature,
        json_mode=json_mode,
    )

    async def _attempt() -> Union[Dict[str, Any], str]:
        t0 = time.time()
        print(f"🧠 [OPENAI] Calling {model} (json_mode={json_mode})")
        try:
            async with httpx.AsyncClient(timeout=timeout) as client:
                response = await client.post(_OPENAI_API_URL, headers=headers, json=payload)
        except httpx.TimeoutException as exc:
            print(f"❌ [OPENAI] Timeout ({time.time() - t0:.1f}s)")
            raise _TransientGenerationError("OpenAI request timed out") from exc
        except httpx.HTTPError as exc:
            raise _TransientGenerationError(f"OpenAI transport error: {exc}") from exc

        print(f"📦 [OPENAI] HTTP {response.status_code} ({time.time() - t0:.1f}s)")
        if response.status_code != 200:
            body = response.text[:400]
            print(f"⚠️  [OPENAI] Error response: {body}")
            if response.status_code in _RETRYABLE_STATUS:
                raise _TransientGenerationError(f"OpenAI HTTP {response.status_code}")
            raise GenerationError(
                f"OpenAI HTTP {response.status_code}",
                context={"status_code": response.status_code},
            )

        raw_content = _extract_content(response)
        if not raw_content:
            print("⚠️  [OPENAI] Empty response")
            raise _TransientGenerationError("OpenAI returned an empty response")

        result = _parse_content(raw_content, json_mode)
        print("🧠 [OPENAI] Success")
        return result

    return await run_with_retry(
        _attempt,
        policy,
        retry_on=(_TransientGenerationError,),
        on_retry=lambda attempt, exc: print(f"🔄 [OPENAI] Retrying after attempt {attempt}: {exc}"),
    )
