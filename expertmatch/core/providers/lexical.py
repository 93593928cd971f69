"""
Keyword Lexical Index

Fuzzy keyword overlap between a case and doctor profiles using rapidfuzz's
token_set_ratio. Scores stay on rapidfuzz's native 0-100 scale; the
normalizer rescales them against the candidate batch.
"""
import asyncio
import re
from typing import Dict, FrozenSet, Mapping

from rapidfuzz import fuzz

from expertmatch.utils import get_logger

logger = get_logger(__name__)

STOP_WORDS: FrozenSet[str] = frozenset({
    "a", "an", "and", "are", "as", "at", "be", "by", "for", "from", "has", "have",
    "in", "is", "it", "of", "on", "or", "patient", "the", "to", "with", "without",
    "was", "were", "case", "history", "presents", "presenting",
})

_TOKEN = re.compile(r"[a-z0-9][a-z0-9.\-]*")


def keywords(text: str) -> str:
    """Lower-cased, de-duplicated keyword string with stop words removed."""
    seen = []
    for token in _TOKEN.findall((text or "").lower()):
        token = token.strip(".-")
        if len(token) < 2 or token in STOP_WORDS or token in seen:
            continue
        seen.append(token)
    return " ".join(seen)


class KeywordLexicalIndex:
    """LexicalIndex implementation scoring documents on the fly."""

    def __init__(self, scorer=fuzz.token_set_ratio):
        self.scorer = scorer

    def score_sync(self, query: str, documents: Mapping[str, str]) -> Dict[str, float]:
        query_terms = keywords(query)
        if not query_terms:
            return {doc_id: 0.0 for doc_id in documents}
        scores = {}
        for doc_id, document in documents.items():
            doc_terms = keywords(document)
            scores[doc_id] = float(self.scorer(query_terms, doc_terms)) if doc_terms else 0.0
        return scores

    async def score(self, query: str, documents: Mapping[str, str]) -> Dict[str, float]:
        # CPU-bound, kept off the event loop
        scores = await asyncio.to_thread(self.score_sync, query, dict(documents))
        logger.debug(f"Lexical scores computed for {len(scores)} documents")
        return scores
