"""
Case Description Service

Produces the free-text description of a case that is embedded for the
semantic signal. Preference order:

1. the case abstract, when one was already written
2. an LLM-generated clinical summary
3. a deterministic template built from the structured fields
"""
from typing import Optional

from expertmatch.core.domain import MedicalCase
from expertmatch.core.llm.gemini_client import GeminiClient
from expertmatch.core.resilience import CallLimiter, LlmClientType, RetryWithBackoff
from expertmatch.utils import get_logger

logger = get_logger(__name__)


def template_description(case: MedicalCase) -> str:
    """Deterministic description used when no LLM text is available."""
    parts = []
    if case.chief_complaint:
        parts.append(f"Chief Complaint: {case.chief_complaint.strip()}")
    if case.symptoms:
        parts.append(f"Symptoms: {case.symptoms.strip()}")
    if case.current_diagnosis:
        parts.append(f"Diagnosis: {case.current_diagnosis.strip()}")
    if case.icd10_codes:
        parts.append(f"ICD-10: {', '.join(case.icd10_codes)}")
    if case.required_specialty:
        parts.append(f"Specialty: {case.required_specialty}")
    return ". ".join(parts)


class CaseDescriptionService:
    """
    Stateless between requests. Repeated prompts are answered from the
    GeminiClient response cache, which is keyed on the prompt text.
    """

    SYSTEM_INSTRUCTION = """You write concise clinical case summaries used for specialist search.

CONSTRAINTS:
1. Use only the facts provided - do NOT infer diagnoses
2. Three sentences at most, plain text
"""

    def __init__(
        self,
        client: Optional[GeminiClient] = None,
        limiter: Optional[CallLimiter] = None,
        retry: Optional[RetryWithBackoff] = None,
    ):
        self.client = client
        self.limiter = limiter or CallLimiter()
        self.retry = retry or RetryWithBackoff()

    def _build_prompt(self, case: MedicalCase) -> str:
        lines = [f"Urgency: {case.urgency_level.value}"]
        if case.patient_age is not None:
            lines.append(f"Patient age: {case.patient_age}")
        lines.append(template_description(case) or "No structured details recorded.")
        return "\n".join(lines) + "\nSummarise this case for matching it to a specialist."

    async def generate(self, case: MedicalCase) -> str:
        """LLM description, or the template when the LLM cannot answer."""
        fallback = template_description(case)
        if self.client is None or not self.client.is_available:
            return fallback

        prompt = self._build_prompt(case)

        async def call():
            async with self.limiter.slot(LlmClientType.CHAT):
                return await self.client.generate_async(prompt, system_instruction=self.SYSTEM_INSTRUCTION)

        try:
            response = await self.retry.execute(call, name=f"description[{case.id}]")
        except Exception as e:
            logger.warning(f"Description generation failed for case {case.id}, using template: {e}")
            return fallback

        text = (response.text or "").strip()
        return fallback if response.is_mock or not text else text

    async def get_or_generate(self, case: MedicalCase) -> str:
        if case.abstract_text and case.abstract_text.strip():
            return case.abstract_text.strip()
        description = await self.generate(case)
        return description or case.search_text()
