"""
LLM Enhancement Module

Uses Gemini to phrase rationales and case descriptions.
LLM is NON-DECISIONAL - it rewrites text, it never scores or ranks.
"""
from .gemini_client import GeminiClient, GeminiConfig, GeminiModel, GeminiResponse
from .rationale import RationaleEnhancer, clip_rationale
from .description import CaseDescriptionService, template_description

__all__ = [
    "GeminiClient",
    "GeminiConfig",
    "GeminiModel",
    "GeminiResponse",
    "RationaleEnhancer",
    "clip_rationale",
    "CaseDescriptionService",
    "template_description",
]
