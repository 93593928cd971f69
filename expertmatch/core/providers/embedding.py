"""
Gemini Embedding Provider

Dense vectors for case descriptions and doctor profiles via LangChain's
GoogleGenerativeAIEmbeddings. Calls share the EMBEDDING permits of the
process-wide CallLimiter.
"""
import os
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence

from langchain_google_genai import GoogleGenerativeAIEmbeddings

from expertmatch.core.resilience import CallLimiter, LlmClientType
from expertmatch.utils import get_logger
from expertmatch.utils.exceptions import ProviderUnavailable

logger = get_logger(__name__)


@dataclass
class EmbeddingConfig:
    api_key: Optional[str] = field(default_factory=lambda: os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY"))
    model: str = field(default_factory=lambda: os.getenv("EMBEDDING_MODEL", "models/text-embedding-004"))
    task_type: str = "retrieval_document"


class GeminiEmbeddingProvider:
    """EmbeddingProvider backed by Google Generative AI embeddings."""

    def __init__(
        self,
        config: Optional[EmbeddingConfig] = None,
        limiter: Optional[CallLimiter] = None,
        embeddings: Any = None,
    ):
        self.config = config or EmbeddingConfig()
        self.limiter = limiter or CallLimiter()
        self._embeddings = embeddings

        if self._embeddings is None and self.config.api_key:
            self._embeddings = GoogleGenerativeAIEmbeddings(
                model=self.config.model,
                google_api_key=self.config.api_key,
                task_type=self.config.task_type,
            )
            logger.info(f"Embedding provider initialized with model: {self.config.model}")
        elif self._embeddings is None:
            logger.warning("No Gemini API key provided - embedding signal disabled")

    @property
    def is_available(self) -> bool:
        return self._embeddings is not None

    def _require_client(self):
        if self._embeddings is None:
            raise ProviderUnavailable("embedding", "no embedding model configured")
        return self._embeddings

    async def embed(self, text: str) -> List[float]:
        client = self._require_client()
        async with self.limiter.slot(LlmClientType.EMBEDDING):
            return list(await client.aembed_query(text))

    async def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        if not texts:
            return []
        client = self._require_client()
        async with self.limiter.slot(LlmClientType.EMBEDDING):
            vectors = await client.aembed_documents(list(texts))
        if len(vectors) != len(texts):
            raise ProviderUnavailable(
                "embedding",
                f"batch size mismatch: sent {len(texts)}, received {len(vectors)}",
            )
        return [list(v) for v in vectors]
