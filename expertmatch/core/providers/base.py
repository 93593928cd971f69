"""
Signal Provider Contracts

The four evidence sources consumed by the retrieval pipeline. Providers are
leaves: they know nothing about normalization, fusion or ranking. Every
method is a coroutine so the collector can bound it with a deadline.
"""
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, runtime_checkable

from expertmatch.core.domain import ExperienceRecord


@runtime_checkable
class EmbeddingProvider(Protocol):
    """Text to dense vector."""

    async def embed(self, text: str) -> List[float]:
        ...

    async def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        """Vectors in input order; len(result) == len(texts)."""
        ...


@runtime_checkable
class GraphProvider(Protocol):
    """Cypher-style traversal over doctor/case/specialty/facility nodes."""

    async def graph_exists(self) -> bool:
        ...

    async def query(self, statement: str, params: Optional[Mapping[str, Any]] = None) -> List[Dict[str, Any]]:
        ...


@runtime_checkable
class LexicalIndex(Protocol):
    """Keyword relevance of each document to a query, on the index's native scale."""

    async def score(self, query: str, documents: Mapping[str, str]) -> Dict[str, float]:
        ...


@runtime_checkable
class ExperienceStore(Protocol):
    """Historical clinical experience keyed by doctor id."""

    async def find_by_doctor_ids(self, doctor_ids: Sequence[str]) -> Dict[str, List[ExperienceRecord]]:
        ...
