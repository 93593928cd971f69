"""
Gemini API Client

Wrapper for Google Gemini chat models (via LangChain) used to phrase match
rationales and case descriptions. The LLM never scores or ranks; it only
rewrites text the engine has already produced.
"""
from dataclasses import dataclass, field
from typing import Dict, Any, Optional
from enum import Enum
import hashlib
import os
from datetime import datetime

from langchain_core.messages import HumanMessage, SystemMessage
from langchain_google_genai import ChatGoogleGenerativeAI

from expertmatch.core.resilience.retry import is_retryable
from expertmatch.utils import get_logger
from expertmatch.utils.exceptions import LlmCallError

logger = get_logger(__name__)


class GeminiModel(str, Enum):
    """Supported Gemini chat models."""
    FLASH_2_5 = "gemini-2.5-flash"  # Stable standard
    FLASH_2_5_LITE = "gemini-2.5-flash-lite"
    FLASH_2_0 = "gemini-2.0-flash"
    PRO_2_5 = "gemini-2.5-pro"


@dataclass
class GeminiConfig:
    """Configuration for Gemini client."""
    api_key: Optional[str] = field(default_factory=lambda: os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY"))
    model: GeminiModel = GeminiModel.FLASH_2_5
    temperature: float = 0.2

    max_output_tokens: int = 256
    top_p: float = 0.8
    top_k: int = 40

    request_timeout_seconds: int = 30

    # Response cache
    cache_ttl_seconds: int = 900
    cache_max_entries: int = 500


@dataclass
class GeminiResponse:
    """Structured response from Gemini."""
    text: str
    model: str
    finish_reason: str = "STOP"
    prompt_tokens: int = 0
    completion_tokens: int = 0
    latency_ms: float = 0.0
    is_mock: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "model": self.model,
            "finish_reason": self.finish_reason,
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "latency_ms": round(self.latency_ms, 2),
            "is_mock": self.is_mock
        }


def _status_code(exc: Exception) -> Optional[int]:
    for attr in ("status_code", "code"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
    return None


class GeminiClient:
    """
    Client for Google Gemini API.

    Without an API key the client runs in mock mode: every call returns a
    response flagged `is_mock` and callers fall back to their templates.
    Real failures raise LlmCallError so the retry layer can classify them.
    """

    def __init__(self, config: Optional[GeminiConfig] = None, llm: Any = None):
        """
        Initialize Gemini client.

        Args:
            config: Optional configuration, uses defaults if not provided
            llm: Optional pre-built chat model (anything with `ainvoke`)
        """
        self.config = config or GeminiConfig()
        self._llm = llm
        self._request_count = 0
        self._last_request_time = None
        self._initialized = llm is not None
        self._cache: Dict[str, Any] = {}  # {cache_key: (timestamp, response_text)}

        if self._llm is None:
            self._initialize()

    def _initialize(self):
        """Initialize the Gemini model using LangChain."""
        if not self.config.api_key:
            logger.warning("No Gemini API key provided - mock mode enabled")
            self._initialized = False
            return

        self._llm = ChatGoogleGenerativeAI(
            model=self._model_name,
            temperature=self.config.temperature,
            max_output_tokens=self.config.max_output_tokens,
            top_p=self.config.top_p,
            top_k=self.config.top_k,
            timeout=self.config.request_timeout_seconds,
            max_retries=0,  # retries are owned by RetryWithBackoff
            google_api_key=self.config.api_key,
        )
        self._initialized = True
        logger.info(f"LangChain Gemini client initialized with model: {self._model_name}")

    @property
    def is_available(self) -> bool:
        """Check if Gemini is available for use."""
        return self._initialized

    @property
    def _model_name(self) -> str:
        """Resolve model name whether config.model is an enum or a plain string."""
        m = self.config.model
        return m.value if hasattr(m, "value") else str(m)

    async def generate_async(
        self,
        prompt: str,
        system_instruction: Optional[str] = None,
        use_cache: bool = True
    ) -> GeminiResponse:
        """
        Generate a response with LangChain's ainvoke.

        Raises:
            LlmCallError: the model call failed; `retryable` tells the
                backoff policy whether another attempt makes sense.
        """
        if not self.is_available:
            return self._mock_response(prompt)

        cache_key = None
        if use_cache:
            cache_key = self._get_cache_key(prompt, system_instruction)
            cached = self._get_from_cache(cache_key)
            if cached is not None:
                logger.debug(f"Cache hit for prompt {cache_key[:8]}")
                return GeminiResponse(
                    text=cached,
                    model=f"{self._model_name} (cached)",
                    finish_reason="CACHED",
                    latency_ms=0.0,
                )

        start_time = datetime.now()
        messages = [HumanMessage(content=prompt)]
        if system_instruction:
            messages.insert(0, SystemMessage(content=system_instruction))
        try:
            response = await self._llm.ainvoke(messages)
        except Exception as e:
            status = _status_code(e)
            logger.warning(f"Gemini generation failed (status={status}): {e}")
            raise LlmCallError(
                f"Gemini generation failed: {e}",
                status_code=status,
                retryable=is_retryable(e),
            ) from e

        latency = (datetime.now() - start_time).total_seconds() * 1000
        text = response.content if hasattr(response, "content") else str(response)
        if not isinstance(text, str):
            text = str(text)

        prompt_tokens = 0
        completion_tokens = 0
        usage = getattr(response, "usage_metadata", None)
        if usage:
            prompt_tokens = usage.get("input_tokens", 0)
            completion_tokens = usage.get("output_tokens", 0)

        self._request_count += 1
        self._last_request_time = datetime.now()

        if use_cache and cache_key:
            self._add_to_cache(cache_key, text)

        return GeminiResponse(
            text=text,
            model=self._model_name,
            finish_reason="STOP",
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            latency_ms=latency,
        )

    def _mock_response(self, prompt: str) -> GeminiResponse:
        """Response returned when no model is configured."""
        return GeminiResponse(
            text="",
            model="mock",
            finish_reason="MOCK",
            prompt_tokens=len(prompt.split()),
            is_mock=True
        )

    def _get_cache_key(self, prompt: str, system_instruction: Optional[str]) -> str:
        normalized = " ".join(prompt.split())
        content = f"{system_instruction or ''}|||{normalized}"
        return hashlib.md5(content.encode()).hexdigest()

    def _get_from_cache(self, cache_key: str) -> Optional[str]:
        """Retrieve from cache if still valid."""
        if cache_key in self._cache:
            cached_time, cached_text = self._cache[cache_key]
            age = (datetime.now() - cached_time).total_seconds()
            if age < self.config.cache_ttl_seconds:
                return cached_text
            del self._cache[cache_key]
        return None

    def _add_to_cache(self, cache_key: str, text: str):
        self._cache[cache_key] = (datetime.now(), text)
        if len(self._cache) > self.config.cache_max_entries:
            oldest_key = min(self._cache.keys(), key=lambda k: self._cache[k][0])
            del self._cache[oldest_key]

    def get_stats(self) -> Dict[str, Any]:
        """Get client statistics."""
        return {
            "is_available": self.is_available,
            "model": self._model_name,
            "request_count": self._request_count,
            "cached_entries": len(self._cache),
            "last_request": self._last_request_time.isoformat() if self._last_request_time else None
        }
