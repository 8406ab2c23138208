"""OKR alignment branch.

Answers "how does this idea line up with our objectives?" from a local
reference document (text or markdown at OKR_DOCUMENT_PATH).  The document
is loaded once per process into a ``ReferenceDocumentCache`` and shared by
every concurrent run:

  - first reader loads it under an ``asyncio.Lock``; later readers hit memory
  - ``invalidate()`` drops the whole cache; the next reader reloads
"""

from __future__ import annotations

import asyncio
import logging
import re
from pathlib import Path
from typing import Callable, List, Optional

from ..config import get_okr_document_path
from ..constants import FETCH_LIMITS
from ..errors import ConfigurationError, RetrievalError
from .openai_client import call_openai_chat_async

logger = logging.getLogger(__name__)

_WORD_PATTERN = re.compile(r"[a-z0-9]+")
_MIN_KEYWORD_LENGTH = 3

_SYSTEM_PROMPT = """You are an OKR analyst. You answer questions about how an idea, initiative or
product direction aligns with the company's Objectives and Key Results.

Use ONLY the OKR context provided. For each relevant objective, state the objective,
the key results it touches, how strongly the idea aligns (High, Medium, Low or None),
the reasoning, and any reported progress. If nothing in the context applies, say so plainly."""


# ===================================================================== #
#  Chunking and relevance                                                 #
# ===================================================================== #

def split_into_chunks(
    text: str,
    chunk_size: int = FETCH_LIMITS["okr_chunk_size"],
    overlap: int = FETCH_LIMITS["okr_chunk_overlap"],
) -> List[str]:
    """Split text into overlapping fixed-size chunks."""
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    if not 0 <= overlap < chunk_size:
        raise ValueError("overlap must be in [0, chunk_size)")

    text = text.strip()
    if not text:
        return []

    step = chunk_size - overlap
    chunks = []
    for start in range(0, len(text), step):
        chunk = text[start:start + chunk_size].strip()
        if chunk:
            chunks.append(chunk)
        if start + chunk_size >= len(text):
            break
    return chunks


def _keywords(question: str) -> List[str]:
    words = _WORD_PATTERN.findall(question.lower())
    return [w for w in dict.fromkeys(words) if len(w) >= _MIN_KEYWORD_LENGTH]


def score_chunk(chunk: str, keywords: List[str]) -> int:
    """Keyword hits, plus bonuses for OKR vocabulary."""
    lowered = chunk.lower()
    score = sum(lowered.count(k) for k in keywords)
    if "objective" in lowered or "key result" in lowered:
        score += 2
    if "target" in lowered or "metric" in lowered:
        score += 1
    return score


def select_relevant_chunks(
    chunks: List[str],
    question: str,
    top_k: int = FETCH_LIMITS["okr_top_chunks"],
) -> List[str]:
    """The *top_k* chunks most relevant to *question*, in document order.

    Short documents (at most ``okr_full_text_max_chunks`` chunks) are used
    whole.
    """
    if len(chunks) <= FETCH_LIMITS["okr_full_text_max_chunks"]:
        return list(chunks)

    keywords = _keywords(question)
    ranked = sorted(
        range(len(chunks)),
        key=lambda i: score_chunk(chunks[i], keywords),
        reverse=True,
    )
    keep = sorted(ranked[:top_k])
    return [chunks[i] for i in keep]


# ===================================================================== #
#  Shared reference document                                              #
# ===================================================================== #

def load_reference_document(path: Optional[str] = None) -> str:
    """Read the OKR document from disk."""
    path = path or get_okr_document_path()
    if not path:
        raise ConfigurationError(
            "OKR_DOCUMENT_PATH environment variable not set",
            missing_keys=["OKR_DOCUMENT_PATH"],
        )
    document = Path(path)
    try:
        text = document.read_text(encoding="utf-8")
    except OSError as exc:
        raise RetrievalError(
            f"Could not read OKR document: {exc}",
            context={"path": str(document)},
        ) from exc
    if not text.strip():
        raise RetrievalError("OKR document is empty", context={"path": str(document)})
    return text


class ReferenceDocumentCache:
    """Process-wide cache of the chunked OKR document.

    Single writer (the loader, under the lock), many readers.  Invalidation
    is whole-cache only.
    """

    def __init__(self, loader: Callable[[], str] = load_reference_document):
        self._loader = loader
        self._chunks: Optional[List[str]] = None
        self._lock = asyncio.Lock()

    @property
    def is_loaded(self) -> bool:
        return self._chunks is not None

    async def get(self) -> List[str]:
        """Chunks of the document, loading them on first use."""
        if self._chunks is not None:
            return self._chunks
        async with self._lock:
            if self._chunks is None:
                print("📄 [OKR] Loading reference document")
                text = await asyncio.to_thread(self._loader)
                self._chunks = split_into_chunks(text)
                print(f"✅ [OKR] Cached {len(self._chunks)} chunks")
        return self._chunks

    def invalidate(self) -> None:
        if self._chunks is not None:
            print("🗑️  [OKR] Cache cleared")
        self._chunks = None


# ===================================================================== #
#  Branch entry point                                                     #
# ===================================================================== #

async def analyze_okr(question: str, cache: ReferenceDocumentCache) -> str:
    """Answer an OKR-alignment question from the cached document.

    Raises whatever the loader or the generation capability raises; the
    dispatcher isolates this branch.
    """
    chunks = await cache.get()
    relevant = select_relevant_chunks(chunks, question)
    context = "\n\n---\n\n".join(relevant)
    logger.debug("OKR context: %d of %d chunks", len(relevant), len(chunks))

    messages = [
        {"role": "system", "content": _SYSTEM_PROMPT},
        {"role": "user", "content": f"OKR context:\n{context}\n\nQuestion: {question}"},
    ]
    answer = await call_openai_chat_async(messages=messages, json_mode=False, max_completion_tokens=1500)
    return str(answer).strip()
