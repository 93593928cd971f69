"""
Resilience Layer

Rate limiting and retry-with-backoff wrapped around provider and LLM calls.
Providers never depend on this package; it wraps them.
"""
from .retry import RetryWithBackoff, retrying, is_retryable
from .limiter import CallLimiter, LlmClientType

__all__ = [
    "RetryWithBackoff",
    "retrying",
    "is_retryable",
    "CallLimiter",
    "LlmClientType",
]
