"""Unit tests for SemanticChunker and the paragraph fallback."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock

import pytest

from ragindex.services.semantic_chunker import SemanticChunker, split_paragraphs
from ragindex.utils.errors import ExternalApiError, LLMResponseParseError
from ragindex.utils.retry import ErrorClass, RetryPolicy, retry_all


def _policy(no_sleep, attempts: int = 2) -> RetryPolicy:
    return RetryPolicy(max_attempts=attempts, base_delay=1.0, classifier=retry_all, sleep=no_sleep)


class TestSplitParagraphs:
    def test_blank_lines_split(self) -> None:
        chunks = split_paragraphs("A.\n\nB.\n\nC.")
        assert [c.content for c in chunks] == ["A.", "B.", "C."]
        assert [c.index for c in chunks] == [0, 1, 2]

    def test_whitespace_only_lines_count_as_breaks(self) -> None:
        chunks = split_paragraphs("  First.  \n   \n\tSecond.\n")
        assert [c.content for c in chunks] == ["First.", "Second."]

    def test_single_paragraph(self) -> None:
        assert [c.content for c in split_paragraphs("  one line  ")] == ["one line"]

    def test_empty_input(self) -> None:
        assert split_paragraphs("") == []
        assert split_paragraphs(" \n\n ") == []


class TestSemanticChunker:
    @pytest.mark.asyncio
    async def test_blank_input_returns_empty(self, mock_llm_provider) -> None:
        chunker = SemanticChunker(mock_llm_provider)
        assert await chunker.chunk("   ") == []
        mock_llm_provider.generate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_llm_path(self, mock_llm_provider, sample_article_text, no_sleep) -> None:
        chunker = SemanticChunker(mock_llm_provider, retry_policy=_policy(no_sleep))

        chunks = await chunker.chunk(sample_article_text, max_chunk_size=500)

        assert len(chunks) == 3
        assert chunks[0].content.startswith("PostgreSQL")
        prompt = mock_llm_provider.generate.await_args.args[0]
        assert "500 characters" in prompt
        assert "English" in prompt

    @pytest.mark.asyncio
    async def test_indices_reassigned_and_empties_dropped(
        self, mock_llm_provider, no_sleep
    ) -> None:
        mock_llm_provider.generate = AsyncMock(
            return_value=json.dumps(
                {
                    "chunks": [
                        {"content": "second topic", "index": 7},
                        {"content": "   ", "index": 8},
                        {"content": "third topic", "index": 2},
                    ]
                }
            )
        )
        chunker = SemanticChunker(mock_llm_provider, retry_policy=_policy(no_sleep))

        chunks = await chunker.chunk("second topic third topic")

        assert [(c.index, c.content) for c in chunks] == [(0, "second topic"), (1, "third topic")]

    @pytest.mark.asyncio
    async def test_unparseable_response_falls_back(self, mock_llm_provider, no_sleep) -> None:
        mock_llm_provider.generate = AsyncMock(return_value="I cannot do that.")
        chunker = SemanticChunker(mock_llm_provider, retry_policy=_policy(no_sleep))

        chunks = await chunker.chunk("A.\n\nB.\n\nC.")

        assert [c.content for c in chunks] == ["A.", "B.", "C."]
        assert mock_llm_provider.generate.await_count == 2
        assert no_sleep.delays == [1.0]

    @pytest.mark.asyncio
    async def test_parse_failure_names_the_provider(self, mock_llm_provider, no_sleep) -> None:
        mock_llm_provider.generate = AsyncMock(return_value="no json here")
        seen: list[BaseException] = []

        def _record(exc: BaseException) -> ErrorClass:
            seen.append(exc)
            return ErrorClass.FATAL

        policy = RetryPolicy(max_attempts=2, classifier=_record, sleep=no_sleep)
        chunks = await SemanticChunker(mock_llm_provider, retry_policy=policy).chunk("A.\n\nB.")

        assert [c.content for c in chunks] == ["A.", "B."]
        assert len(seen) == 1
        assert isinstance(seen[0], LLMResponseParseError)
        assert seen[0].provider_name == "mock-llm"

    @pytest.mark.asyncio
    async def test_provider_error_then_success(self, mock_llm_provider, no_sleep) -> None:
        good = json.dumps({"chunks": [{"content": "whole text", "index": 0}]})
        mock_llm_provider.generate = AsyncMock(side_effect=[ExternalApiError(), good])
        chunker = SemanticChunker(mock_llm_provider, retry_policy=_policy(no_sleep))

        chunks = await chunker.chunk("whole text")

        assert [c.content for c in chunks] == ["whole text"]

    @pytest.mark.asyncio
    async def test_empty_chunk_list_falls_back(self, mock_llm_provider, no_sleep) -> None:
        mock_llm_provider.generate = AsyncMock(return_value='{"chunks": []}')
        chunker = SemanticChunker(mock_llm_provider, retry_policy=_policy(no_sleep, attempts=1))

        chunks = await chunker.chunk("only paragraph")

        assert [c.content for c in chunks] == ["only paragraph"]

    @pytest.mark.asyncio
    async def test_no_llm_uses_fallback(self) -> None:
        chunks = await SemanticChunker(None).chunk("A.\n\nB.")
        assert [c.content for c in chunks] == ["A.", "B."]
