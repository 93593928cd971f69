"""
Utilities Package - Logging and Exception Handling
"""
from .logging import get_logger, setup_logging
from .exceptions import (
    MatchingError,
    StructuralError,
    ProviderUnavailable,
    NoCandidatesError,
    FusionConfigError,
    QueryStructureError,
    SignalCollectionError,
    PersistenceError,
    LlmCallError,
)

__all__ = [
    "get_logger",
    "setup_logging",
    "MatchingError",
    "StructuralError",
    "ProviderUnavailable",
    "NoCandidatesError",
    "FusionConfigError",
    "QueryStructureError",
    "SignalCollectionError",
    "PersistenceError",
    "LlmCallError",
]
