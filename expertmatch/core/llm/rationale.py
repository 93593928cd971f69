"""
Rationale Enhancer

Rewrites the template rationale of a match into one fluent clinical
sentence. The LLM is NON-DECISIONAL: it receives the already computed
clauses and score, never the raw signals, and cannot change the ranking.

Every call passes through the CHAT limiter and the retry policy; when the
model is unavailable or attempts run out, the template is returned.
"""
import re
from typing import Optional, Tuple

from expertmatch.config import RankingSettings
from expertmatch.core.domain import Doctor, MedicalCase
from expertmatch.core.llm.gemini_client import GeminiClient
from expertmatch.core.resilience import CallLimiter, LlmClientType, RetryWithBackoff
from expertmatch.utils import get_logger

logger = get_logger(__name__)


def clip_rationale(text: str, max_length: int) -> str:
    """Single-line text no longer than `max_length`, cut on a word boundary."""
    text = " ".join(text.split())
    if len(text) <= max_length:
        return text
    cut = text[: max_length - 3].rsplit(" ", 1)[0].rstrip(",;:.")
    return f"{cut}..."


_PARTIAL_EVIDENCE = re.compile(r";\s*partial evidence \([^)]*\)$")


def split_partial_evidence(template: str) -> Tuple[str, str]:
    """Split a template rationale into its clauses and the partial-evidence note."""
    found = _PARTIAL_EVIDENCE.search(template)
    if not found:
        return template, ""
    return template[: found.start()], found.group(0)


class RationaleEnhancer:
    """LLM rewrite of match rationales with a deterministic fallback."""

    SYSTEM_INSTRUCTION = """You rewrite specialist-match explanations for clinicians.

CONSTRAINTS:
1. Use only the evidence clauses given - do NOT add qualifications or facts
2. Do NOT mention numeric scores
3. Output ONE plain sentence, no markdown, at most 180 characters
"""

    def __init__(
        self,
        client: GeminiClient,
        limiter: CallLimiter,
        retry: RetryWithBackoff,
        settings: Optional[RankingSettings] = None,
    ):
        self.client = client
        self.limiter = limiter
        self.retry = retry
        self.settings = settings or RankingSettings()

    def _build_prompt(self, case: MedicalCase, doctor: Doctor, template: str) -> str:
        specialty = case.required_specialty or "unspecified"
        return (
            f"Case: {case.chief_complaint or 'n/a'} (urgency {case.urgency_level.value}, "
            f"required specialty {specialty}).\n"
            f"Specialist: {doctor.name or doctor.id}, specialties: {', '.join(doctor.specialties) or 'n/a'}.\n"
            f"Evidence: {template}\n"
            "Rewrite the evidence as one sentence explaining the match."
        )

    async def enhance(self, case: MedicalCase, doctor: Doctor, template: str) -> str:
        """
        Return an LLM-phrased rationale, or `template` on any failure.

        The result is always at most `rationale_max_length` characters.
        """
        max_length = self.settings.rationale_max_length
        if not self.client.is_available:
            return clip_rationale(template, max_length)

        clauses, partial = split_partial_evidence(template)
        prompt = self._build_prompt(case, doctor, clauses)

        async def call():
            async with self.limiter.slot(LlmClientType.CHAT):
                return await self.client.generate_async(prompt, system_instruction=self.SYSTEM_INSTRUCTION)

        try:
            response = await self.retry.execute(call, name=f"rationale[{case.id}/{doctor.id}]")
        except Exception as e:
            logger.warning(f"Rationale enhancement failed for {case.id}/{doctor.id}, using template: {e}")
            return clip_rationale(template, max_length)

        text = (response.text or "").strip()
        if response.is_mock or not text:
            return clip_rationale(template, max_length)
        if not partial:
            return clip_rationale(text, max_length)
        # kept out of the prompt, re-attached verbatim
        return clip_rationale(text.rstrip(" ."), max_length - len(partial)) + partial
