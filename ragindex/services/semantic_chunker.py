"""LLM-driven semantic chunking with a deterministic paragraph fallback.

The primary path asks the LLM to split text at topic boundaries and answer
with ``{"chunks": [{"content": ..., "index": ...}]}``.  The answer goes
through the tolerant JSON parser, empty chunks are dropped and indices are
reassigned ``0..n-1`` regardless of what the model returned.

When the LLM is unavailable, or every attempt fails or yields nothing
usable, :func:`split_paragraphs` splits on blank lines.  Chunking therefore
never fails for non-empty input.
"""

from __future__ import annotations

import re
from typing import Any

import structlog

from ragindex.interfaces.llm_provider import ILLMProvider
from ragindex.models.rag import TextChunk
from ragindex.utils.llm_json import parse_llm_json
from ragindex.utils.retry import RetryPolicy, retry_all

logger = structlog.get_logger(logger_name=__name__)

_PARAGRAPH_BREAK_RE = re.compile(r"\n\s*\n")

_CHUNKING_TEMPERATURE = 0.1
_CHUNKING_MAX_TOKENS = 4000

_CHUNKING_PROMPT = """\
Split the following text into chunks at natural semantic boundaries.

Requirements:
- Each chunk must be self-contained and make sense on its own.
- Split where the topic or subject changes.
- Split so that each chunk is as useful as possible for search.
- Respect the sentence structure of {language}.
- Keep each chunk under roughly {max_chunk_size} characters.
- Never produce empty chunks.
- Copy the text verbatim; do not summarise or rewrite it.

Answer with JSON only, in this format:
{{
  "chunks": [
    {{"content": "first chunk", "index": 0}},
    {{"content": "second chunk", "index": 1}}
  ]
}}

Text:
{text}"""


def split_paragraphs(text: str) -> list[TextChunk]:
    """Split on blank lines; the whole trimmed text if no paragraph survives.

    Returns ``[]`` for empty or whitespace-only input.
    """
    paragraphs = [p.strip() for p in _PARAGRAPH_BREAK_RE.split(text)]
    paragraphs = [p for p in paragraphs if p]
    if not paragraphs:
        stripped = text.strip()
        return [TextChunk(content=stripped, index=0)] if stripped else []
    return [TextChunk(content=p, index=i) for i, p in enumerate(paragraphs)]


def _normalize_chunks(raw_chunks: list[Any]) -> list[TextChunk]:
    """Keep non-empty string contents in model order and reindex them."""
    contents: list[str] = []
    for item in raw_chunks:
        if isinstance(item, dict):
            content = item.get("content")
        elif isinstance(item, str):
            content = item
        else:
            continue
        if isinstance(content, str) and content.strip():
            contents.append(content.strip())
    return [TextChunk(content=c, index=i) for i, c in enumerate(contents)]


def _validate_chunk_response(value: Any) -> None:
    if not isinstance(value, dict):
        raise TypeError(f"expected a JSON object, got {type(value).__name__}")
    chunks = value.get("chunks")
    if not isinstance(chunks, list):
        raise ValueError("missing list field 'chunks'")
    if not _normalize_chunks(chunks):
        raise ValueError("no non-empty chunks in response")


class SemanticChunker:
    """Split text into semantically coherent chunks.

    Parameters
    ----------
    llm:
        Provider for the primary path; ``None`` always uses the fallback.
    retry_policy:
        Attempts for the LLM path.  Parse failures count as failed
        attempts.  Defaults to 2 attempts with a 1 second pause.
    """

    def __init__(
        self,
        llm: ILLMProvider | None,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self._llm = llm
        self._retry = retry_policy or RetryPolicy(
            max_attempts=2,
            base_delay=1.0,
            classifier=retry_all,
        )

    async def chunk(
        self,
        text: str,
        max_chunk_size: int = 1000,
        language: str = "English",
    ) -> list[TextChunk]:
        """Return the chunks of ``text``; empty only for blank input."""
        if not text or not text.strip():
            return []

        llm = self._llm
        if llm is None:
            return split_paragraphs(text)

        try:
            chunks = await self._retry.run(
                lambda: self._chunk_with_llm(llm, text, max_chunk_size, language),
                operation="semantic_chunking",
                logger=logger,
                text_length=len(text),
            )
        except Exception as exc:
            logger.warning(
                "semantic_chunking_fallback",
                error=str(exc),
                text_length=len(text),
            )
            return split_paragraphs(text)

        logger.debug("semantic_chunking_done", chunks=len(chunks), text_length=len(text))
        return chunks

    async def _chunk_with_llm(
        self,
        llm: ILLMProvider,
        text: str,
        max_chunk_size: int,
        language: str,
    ) -> list[TextChunk]:
        prompt = _CHUNKING_PROMPT.format(
            language=language,
            max_chunk_size=max_chunk_size,
            text=text,
        )
        response = await llm.generate(
            prompt,
            temperature=_CHUNKING_TEMPERATURE,
            max_tokens=_CHUNKING_MAX_TOKENS,
        )
        parsed = parse_llm_json(response, _validate_chunk_response)
        data = parsed.unwrap(provider_name=llm.get_provider_name())
        return _normalize_chunks(data["chunks"])
