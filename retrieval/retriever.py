"""ContextRetriever — optional grounding of the system prompt with indexed snippets.

The index itself lives outside this project; ChromaContextRetriever only
queries an existing ChromaDB collection. Failures surface as
AugmentationFailure and the turn falls back to the plain composed prompt.
"""

from __future__ import annotations

import logging
from typing import Optional, Protocol

import chromadb
from pydantic import BaseModel, Field

from config.settings import Settings
from core.errors import AugmentationFailure
from core.models import Message, RetrievedSnippet, Role, Standpoint, last_user_text

logger = logging.getLogger(__name__)

CONTEXT_HEADER = "## Grounding context\nUse the following sources where relevant. Do not cite them by number."


class RetrievalResult(BaseModel):
    should_enhance: bool = False
    enhanced_system_message: Optional[str] = None
    snippets: list[RetrievedSnippet] = Field(default_factory=list)


class ContextRetriever(Protocol):
    async def retrieve(
        self,
        query: str,
        history: list[Message],
        standpoint: Standpoint = Standpoint.UNSET,
    ) -> RetrievalResult: ...


def filter_snippets_by_score(snippets: list[RetrievedSnippet], min_score: float) -> list[RetrievedSnippet]:
    return [s for s in snippets if s.score >= min_score]


def filter_snippets_by_standpoint(
    snippets: list[tuple[RetrievedSnippet, str]],
    standpoint: Standpoint,
) -> list[RetrievedSnippet]:
    """Drop snippets tagged with the opposite standpoint; untagged ones stay."""
    if standpoint == Standpoint.UNSET:
        return [s for s, _ in snippets]
    kept = []
    for snippet, tag in snippets:
        resolved = Standpoint.parse(tag)
        if resolved == Standpoint.UNSET or resolved == standpoint:
            kept.append(snippet)
    return kept


def format_snippets_for_prompt(snippets: list[RetrievedSnippet]) -> str:
    lines = [CONTEXT_HEADER]
    for i, snippet in enumerate(snippets, start=1):
        source = f" (source: {snippet.source})" if snippet.source else ""
        lines.append(f"[{i}]{source}\n{snippet.content}")
    return "\n\n".join(lines)


class ChromaContextRetriever:
    """Queries a ChromaDB collection for snippets relevant to the user's turn."""

    def __init__(self, settings: Settings | None = None, collection=None):
        self.settings = settings or Settings()
        self._collection = collection

    def init(self) -> bool:
        """Open the configured collection. Returns False if it does not exist."""
        if self._collection is not None:
            return True
        try:
            client = chromadb.PersistentClient(path=self.settings.CHROMA_PATH)
            self._collection = client.get_collection(name=self.settings.RETRIEVAL_COLLECTION)
        except Exception as e:
            logger.warning("Retrieval collection %s unavailable: %s", self.settings.RETRIEVAL_COLLECTION, e)
            return False
        logger.info("Retrieval collection opened: %s", self.settings.RETRIEVAL_COLLECTION)
        return True

    async def retrieve(
        self,
        query: str,
        history: list[Message],
        standpoint: Standpoint = Standpoint.UNSET,
    ) -> RetrievalResult:
        query = query.strip() or last_user_text(history)
        if not query or self._collection is None:
            return RetrievalResult()

        try:
            count = self._collection.count()
            if count == 0:
                return RetrievalResult()
            results = self._collection.query(
                query_texts=[query],
                n_results=min(self.settings.RETRIEVAL_TOP_K, count),
                include=["documents", "metadatas", "distances"],
            )
        except Exception as e:
            raise AugmentationFailure(f"retrieval query failed: {e}") from e

        documents = (results.get("documents") or [[]])[0]
        metadatas = (results.get("metadatas") or [[]])[0] or [{}] * len(documents)
        distances = (results.get("distances") or [[]])[0] or [0.0] * len(documents)

        tagged: list[tuple[RetrievedSnippet, str]] = []
        for document, metadata, distance in zip(documents, metadatas, distances):
            if not document:
                continue
            metadata = metadata or {}
            snippet = RetrievedSnippet(
                content=document[: self.settings.RETRIEVAL_SNIPPET_SIZE],
                score=max(0.0, 1.0 - float(distance)),
                source=str(metadata.get("source", "")),
            )
            tagged.append((snippet, str(metadata.get("standpoint", ""))))

        snippets = filter_snippets_by_standpoint(tagged, standpoint)
        snippets = filter_snippets_by_score(snippets, self.settings.RETRIEVAL_MIN_SCORE)
        logger.debug("Retrieved %d/%d snippets for query %r", len(snippets), len(documents), query[:60])
        if not snippets:
            return RetrievalResult()

        system_text = next((m.text for m in history if m.role == Role.SYSTEM), "")
        enhanced = "\n\n".join(p for p in (system_text, format_snippets_for_prompt(snippets)) if p)
        return RetrievalResult(
            should_enhance=True,
            enhanced_system_message=enhanced,
            snippets=snippets,
        )
