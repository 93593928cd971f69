"""
LLM Call Limiter

Bounds the number of in-flight calls per LLM client type so concurrent
matching requests cannot overwhelm the model endpoint.
"""
import asyncio
from contextlib import asynccontextmanager
from enum import Enum
from typing import Awaitable, Callable, Dict, Optional, TypeVar

from expertmatch.config import LimiterSettings
from expertmatch.utils import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class LlmClientType(str, Enum):
    CHAT = "chat"
    EMBEDDING = "embedding"
    RERANKING = "reranking"
    TOOL_CALLING = "tool_calling"


class CallLimiter:
    """
    One semaphore per client type. A limit <= 0 means unlimited.

    Semaphores are created lazily inside the running event loop.
    """

    def __init__(self, limits: Optional[Dict[LlmClientType, int]] = None):
        self._limits: Dict[LlmClientType, int] = {t: 0 for t in LlmClientType}
        self._limits.update(limits or {})
        self._semaphores: Dict[LlmClientType, asyncio.Semaphore] = {}
        logger.info(
            "CallLimiter initialized - "
            + ", ".join(f"{t.name}: {self._limits[t] or 'unlimited'}" for t in LlmClientType)
        )

    @classmethod
    def from_settings(cls, settings: LimiterSettings) -> "CallLimiter":
        return cls({
            LlmClientType.CHAT: settings.chat_max_concurrent,
            LlmClientType.EMBEDDING: settings.embedding_max_concurrent,
            LlmClientType.RERANKING: settings.reranking_max_concurrent,
            LlmClientType.TOOL_CALLING: settings.tool_calling_max_concurrent,
        })

    def max_concurrent(self, client_type: LlmClientType) -> int:
        return self._limits.get(client_type, 0)

    def _semaphore(self, client_type: LlmClientType) -> Optional[asyncio.Semaphore]:
        limit = self._limits.get(client_type, 0)
        if limit <= 0:
            return None
        semaphore = self._semaphores.get(client_type)
        if semaphore is None:
            semaphore = asyncio.Semaphore(limit)
            self._semaphores[client_type] = semaphore
        return semaphore

    @asynccontextmanager
    async def slot(self, client_type: LlmClientType):
        """Hold one permit for `client_type` for the duration of the block."""
        semaphore = self._semaphore(client_type)
        if semaphore is None:
            yield
            return
        async with semaphore:
            logger.debug(f"Acquired {client_type.value} permit")
            yield
        logger.debug(f"Released {client_type.value} permit")

    async def run(self, client_type: LlmClientType, operation: Callable[[], Awaitable[T]]) -> T:
        async with self.slot(client_type):
            return await operation()
