"""
Signal Providers

Leaf evidence sources: embeddings, graph traversal, lexical overlap and
historical experience. Providers must not depend on retrieval code.
"""
from .base import EmbeddingProvider, GraphProvider, LexicalIndex, ExperienceStore
from .embedding import GeminiEmbeddingProvider, EmbeddingConfig
from .graph import (
    AgeGraphProvider,
    GraphProbe,
    GraphSignalQueries,
    DEFAULT_PROBES,
    build_cypher_sql,
    count_return_columns,
    embed_parameters,
    format_cypher_value,
    parse_agtype,
)
from .lexical import KeywordLexicalIndex, keywords

__all__ = [
    "EmbeddingProvider",
    "GraphProvider",
    "LexicalIndex",
    "ExperienceStore",
    "GeminiEmbeddingProvider",
    "EmbeddingConfig",
    "AgeGraphProvider",
    "GraphProbe",
    "GraphSignalQueries",
    "DEFAULT_PROBES",
    "build_cypher_sql",
    "count_return_columns",
    "embed_parameters",
    "format_cypher_value",
    "parse_agtype",
    "KeywordLexicalIndex",
    "keywords",
]
