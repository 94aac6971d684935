from retrieval.retriever import (
    ChromaContextRetriever,
    ContextRetriever,
    RetrievalResult,
    filter_snippets_by_score,
    filter_snippets_by_standpoint,
    format_snippets_for_prompt,
)

__all__ = [
    "ChromaContextRetriever",
    "ContextRetriever",
    "RetrievalResult",
    "filter_snippets_by_score",
    "filter_snippets_by_standpoint",
    "format_snippets_for_prompt",
]
