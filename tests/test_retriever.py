from __future__ import annotations

import pytest

from core.errors import AugmentationFailure
from core.models import RetrievedSnippet, Role, Standpoint, create_message
from retrieval.retriever import (
    CONTEXT_HEADER,
    ChromaContextRetriever,
    filter_snippets_by_score,
    filter_snippets_by_standpoint,
    format_snippets_for_prompt,
)
from tests.fakes import FakeCollection


def history(system_text: str = "You are helpful.", user_text: str = "Are phones bad?"):
    return [create_message(Role.SYSTEM, system_text), create_message(Role.USER, user_text)]


class TestSnippetHelpers:
    def test_filter_by_score(self):
        snippets = [RetrievedSnippet(content="a", score=0.2), RetrievedSnippet(content="b", score=0.5)]
        assert [s.content for s in filter_snippets_by_score(snippets, 0.3)] == ["b"]

    def test_filter_by_standpoint_keeps_untagged(self):
        tagged = [
            (RetrievedSnippet(content="pro"), "supporting"),
            (RetrievedSnippet(content="con"), "opposing"),
            (RetrievedSnippet(content="neutral"), ""),
        ]
        kept = filter_snippets_by_standpoint(tagged, Standpoint.SUPPORTING)
        assert [s.content for s in kept] == ["pro", "neutral"]
        assert len(filter_snippets_by_standpoint(tagged, Standpoint.UNSET)) == 3

    def test_format(self):
        text = format_snippets_for_prompt([RetrievedSnippet(content="Fact one", source="doc.pdf")])
        assert text.startswith(CONTEXT_HEADER)
        assert "[1] (source: doc.pdf)\nFact one" in text


class TestChromaContextRetriever:
    @pytest.mark.asyncio
    async def test_enhances_system_message(self, settings):
        collection = FakeCollection(
            documents=["Phones distract.", "Irrelevant."],
            metadatas=[{"source": "study"}, {"source": "noise"}],
            distances=[0.1, 0.95],
        )
        retriever = ChromaContextRetriever(settings, collection=collection)
        result = await retriever.retrieve("Are phones bad?", history())

        assert result.should_enhance is True
        assert [s.content for s in result.snippets] == ["Phones distract."]
        assert result.snippets[0].score == pytest.approx(0.9)
        assert result.enhanced_system_message.startswith("You are helpful.\n\n" + CONTEXT_HEADER)
        assert collection.queries[0]["query_texts"] == ["Are phones bad?"]
        assert collection.queries[0]["n_results"] == 2

    @pytest.mark.asyncio
    async def test_snippets_truncated(self, settings):
        settings.RETRIEVAL_SNIPPET_SIZE = 5
        retriever = ChromaContextRetriever(settings, collection=FakeCollection(documents=["abcdefghij"]))
        result = await retriever.retrieve("q", history())
        assert result.snippets[0].content == "abcde"

    @pytest.mark.asyncio
    async def test_standpoint_filtering(self, settings):
        collection = FakeCollection(
            documents=["pro", "con"],
            metadatas=[{"standpoint": "supporting"}, {"standpoint": "opposing"}],
        )
        retriever = ChromaContextRetriever(settings, collection=collection)
        result = await retriever.retrieve("q", history(), standpoint=Standpoint.OPPOSING)
        assert [s.content for s in result.snippets] == ["con"]

    @pytest.mark.asyncio
    async def test_nothing_relevant(self, settings):
        retriever = ChromaContextRetriever(settings, collection=FakeCollection(documents=["x"], distances=[0.99]))
        result = await retriever.retrieve("q", history())
        assert result.should_enhance is False
        assert result.enhanced_system_message is None

    @pytest.mark.asyncio
    async def test_empty_collection(self, settings):
        retriever = ChromaContextRetriever(settings, collection=FakeCollection())
        assert (await retriever.retrieve("q", history())).should_enhance is False

    @pytest.mark.asyncio
    async def test_query_falls_back_to_last_user_text(self, settings):
        collection = FakeCollection(documents=["doc"])
        retriever = ChromaContextRetriever(settings, collection=collection)
        await retriever.retrieve("  ", history(user_text="fallback query"))
        assert collection.queries[0]["query_texts"] == ["fallback query"]

    @pytest.mark.asyncio
    async def test_query_error_raises_augmentation_failure(self, settings):
        retriever = ChromaContextRetriever(settings, collection=FakeCollection(documents=["x"], error=RuntimeError("down")))
        with pytest.raises(AugmentationFailure):
            await retriever.retrieve("q", history())

    @pytest.mark.asyncio
    async def test_not_initialized(self, settings):
        retriever = ChromaContextRetriever(settings)
        assert (await retriever.retrieve("q", history())).should_enhance is False

    def test_init_missing_collection(self, settings):
        retriever = ChromaContextRetriever(settings)
        assert retriever.init() is False
