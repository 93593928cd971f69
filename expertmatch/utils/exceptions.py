"""
Custom Exception Hierarchy

Typed failures for the matching engine. Each carries a stable code plus
structured details (case id, failing provider) so callers can diagnose a
failure without retrying blindly.
"""
from typing import Optional, Dict, Any


class MatchingError(Exception):
    """Base exception for all matching engine errors."""

    def __init__(
        self,
        message: str,
        code: str = "MATCHING_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details
        }


class StructuralError(MatchingError):
    """
    Marker base for errors caused by configuration or malformed input.

    Structural errors are never retried and never degraded into a missing
    signal; they surface to the caller as-is.
    """


class ProviderUnavailable(MatchingError):
    """A single signal source failed or timed out. Degrades that signal only."""

    def __init__(
        self,
        provider: str,
        reason: str,
        case_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=f"Signal provider '{provider}' unavailable: {reason}",
            code="PROVIDER_UNAVAILABLE",
            details={"provider": provider, "case_id": case_id, "reason": reason, **(details or {})}
        )
        self.provider = provider
        self.reason = reason
        self.case_id = case_id


class NoCandidatesError(MatchingError):
    """A hard filter eliminated the entire candidate pool."""

    def __init__(
        self,
        case_id: str,
        filter_name: str,
        value: Any = None,
    ):
        super().__init__(
            message=f"No candidates satisfy {filter_name}={value!r} for case {case_id}",
            code="NO_CANDIDATES",
            details={"case_id": case_id, "filter": filter_name, "value": value}
        )
        self.case_id = case_id
        self.filter_name = filter_name
        self.value = value


class FusionConfigError(StructuralError):
    """Fusion weights or engine limits are misconfigured. Fatal at startup."""

    def __init__(
        self,
        message: str,
        field: str = "unknown",
        value: Any = None
    ):
        super().__init__(
            message=message,
            code="FUSION_CONFIG_ERROR",
            details={"field": field, "value": value}
        )
        self.field = field
        self.value = value


class QueryStructureError(StructuralError):
    """A graph or SQL statement is malformed and cannot be executed."""

    def __init__(
        self,
        message: str,
        provider: str = "unknown",
        statement: Optional[str] = None
    ):
        super().__init__(
            message=message,
            code="QUERY_STRUCTURE_ERROR",
            details={"provider": provider, "statement": (statement or "")[:200]}
        )
        self.provider = provider


class SignalCollectionError(MatchingError):
    """A structural provider failure aborted signal collection for a case."""

    def __init__(
        self,
        case_id: str,
        provider: str,
        cause: Exception
    ):
        super().__init__(
            message=f"Signal collection failed for case {case_id} at provider '{provider}': {cause}",
            code="SIGNAL_COLLECTION_ERROR",
            details={
                "case_id": case_id,
                "provider": provider,
                "cause": type(cause).__name__,
            }
        )
        self.case_id = case_id
        self.provider = provider
        self.__cause__ = cause


class PersistenceError(MatchingError):
    """Replacing a case ranking failed. The previous ranking stays intact."""

    def __init__(
        self,
        case_id: str,
        operation: str,
        reason: str = ""
    ):
        super().__init__(
            message=f"Failed to {operation} for case {case_id}: {reason}",
            code="PERSISTENCE_ERROR",
            details={"case_id": case_id, "operation": operation}
        )
        self.case_id = case_id
        self.operation = operation


class LlmCallError(MatchingError):
    """An LLM request failed. `retryable` drives the backoff policy."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        retryable: bool = True
    ):
        super().__init__(
            message=message,
            code="LLM_CALL_ERROR",
            details={"status_code": status_code, "retryable": retryable}
        )
        self.status_code = status_code
        self.retryable = retryable
