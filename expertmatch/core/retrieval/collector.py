"""
Signal Collector

Fetches raw evidence for every candidate from the four providers in
parallel. A provider failure or timeout never aborts the request: the
affected candidates get a SignalUnavailable marker and the pipeline runs in
degraded mode. Structural failures (malformed query, bad configuration)
abort with SignalCollectionError naming the provider.

Concurrency model:
- all provider calls of one invocation share a semaphore sized by
  CollectorSettings.max_concurrency
- every call is bounded by min(provider timeout, time left until the
  shared request deadline); expiry cancels the call
- transient errors are retried while the deadline allows

The collector holds no per-request state between invocations.
"""
import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np

from expertmatch.config import CollectorSettings
from expertmatch.core.domain import Doctor, MedicalCase
from expertmatch.core.llm.description import CaseDescriptionService
from expertmatch.core.providers.base import EmbeddingProvider, ExperienceStore, GraphProvider, LexicalIndex
from expertmatch.core.providers.graph import GraphSignalQueries
from expertmatch.core.resilience import RetryWithBackoff
from expertmatch.core.retrieval.signals import (
    EMBEDDING, EXPERIENCE, GRAPH, LEXICAL,
    CandidateSignals, CollectedSignals, SignalUnavailable, is_unavailable,
)
from expertmatch.utils import get_logger
from expertmatch.utils.exceptions import SignalCollectionError, StructuralError

logger = get_logger(__name__)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine of two vectors; 0.0 when either has zero norm."""
    va = np.asarray(a, dtype=float)
    vb = np.asarray(b, dtype=float)
    if va.shape != vb.shape:
        raise ValueError(f"Vector dimension mismatch: {va.shape} vs {vb.shape}")
    denom = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if denom == 0.0:
        return 0.0
    return float(np.clip(np.dot(va, vb) / denom, -1.0, 1.0))


class _Invocation:
    """Deadline and permits of a single collect() call."""

    def __init__(self, case_id: str, settings: CollectorSettings):
        self.case_id = case_id
        self.loop = asyncio.get_running_loop()
        self.deadline = self.loop.time() + settings.request_timeout_seconds
        self.semaphore = asyncio.Semaphore(settings.max_concurrency)

    def remaining(self) -> float:
        return self.deadline - self.loop.time()


class SignalCollector:
    """Concurrent, deadline-bounded evidence gathering for one case."""

    def __init__(
        self,
        embedding: Optional[EmbeddingProvider] = None,
        graph: Optional[GraphProvider] = None,
        lexical: Optional[LexicalIndex] = None,
        experience: Optional[ExperienceStore] = None,
        settings: Optional[CollectorSettings] = None,
        retry: Optional[RetryWithBackoff] = None,
        describer: Optional[CaseDescriptionService] = None,
        graph_queries: Optional[GraphSignalQueries] = None,
    ):
        self.embedding = embedding
        self.graph = graph
        self.lexical = lexical
        self.experience = experience
        self.settings = settings or CollectorSettings()
        self.retry = retry or RetryWithBackoff(
            max_attempts=self.settings.provider_retry_attempts,
            base_delay=0.1,
            max_delay=1.0,
        )
        self.describer = describer
        self.graph_queries = graph_queries or (GraphSignalQueries(graph) if graph is not None else None)

    # -------------------------------------------------------------------------
    # Guarded call
    # -------------------------------------------------------------------------

    async def _guarded(
        self,
        inv: _Invocation,
        provider: str,
        factory: Callable[[], Awaitable[Any]],
        label: Optional[str] = None,
    ) -> Any:
        """
        Run `factory` under the provider timeout, shared deadline, retry
        policy and concurrency permits.

        Returns the provider result or a SignalUnavailable marker.
        Raises SignalCollectionError for structural failures.
        """
        per_call = self.settings.timeout_for(provider)

        async def attempt():
            remaining = inv.remaining()
            if remaining <= 0:
                raise asyncio.TimeoutError("request deadline expired")
            async with inv.semaphore:
                return await asyncio.wait_for(factory(), timeout=min(per_call, remaining))

        name = f"{provider}[{label or inv.case_id}]"
        remaining = inv.remaining()
        if remaining <= 0:
            return SignalUnavailable(provider, "request deadline expired")
        try:
            return await asyncio.wait_for(self.retry.execute(attempt, name=name), timeout=remaining)
        except StructuralError as e:
            raise SignalCollectionError(inv.case_id, provider, e) from e
        except asyncio.TimeoutError:
            logger.warning(f"{name}: timed out, signal unavailable")
            return SignalUnavailable(provider, "timed out")
        except Exception as e:
            logger.warning(f"{name}: unavailable ({type(e).__name__}: {e})")
            return SignalUnavailable(provider, f"{type(e).__name__}: {e}")

    @staticmethod
    def _not_configured(provider: str, count: int) -> List[SignalUnavailable]:
        return [SignalUnavailable(provider, "provider not configured")] * count

    # -------------------------------------------------------------------------
    # Per-provider tasks
    # -------------------------------------------------------------------------

    async def _case_text(self, case: MedicalCase) -> str:
        if self.describer is not None:
            return await self.describer.get_or_generate(case)
        return case.search_text()

    async def _collect_embedding(self, inv: _Invocation, case: MedicalCase,
                                 candidates: Sequence[Doctor]) -> List[Any]:
        if self.embedding is None:
            return self._not_configured(EMBEDDING, len(candidates))

        async def call():
            case_text = await self._case_text(case)
            texts = [case_text] + [d.document() for d in candidates]
            vectors = await self.embedding.embed_batch(texts)
            if len(vectors) != len(texts):
                raise ValueError(f"embedding batch returned {len(vectors)} vectors for {len(texts)} texts")
            return [cosine_similarity(vectors[0], v) for v in vectors[1:]]

        result = await self._guarded(inv, EMBEDDING, call)
        if is_unavailable(result):
            return [result] * len(candidates)
        return result

    async def _collect_graph(self, inv: _Invocation, case: MedicalCase,
                             candidates: Sequence[Doctor]) -> List[Any]:
        if self.graph is None or self.graph_queries is None:
            return self._not_configured(GRAPH, len(candidates))

        exists = await self._guarded(inv, GRAPH, self.graph.graph_exists, label=f"{case.id}:exists")
        if is_unavailable(exists):
            return [exists] * len(candidates)
        if not exists:
            logger.warning(f"Graph does not exist, graph signal unavailable for case {case.id}")
            return [SignalUnavailable(GRAPH, "graph does not exist")] * len(candidates)

        async def probe(doctor: Doctor):
            return await self._guarded(
                inv, GRAPH,
                lambda: self.graph_queries.edge_weight(case, doctor.id),
                label=f"{case.id}:{doctor.id}",
            )

        results = await asyncio.gather(*(probe(d) for d in candidates), return_exceptions=True)
        for r in results:
            if isinstance(r, BaseException):
                raise r
        return list(results)

    async def _collect_lexical(self, inv: _Invocation, case: MedicalCase,
                               candidates: Sequence[Doctor]) -> List[Any]:
        if self.lexical is None:
            return self._not_configured(LEXICAL, len(candidates))

        documents = {d.id: d.document() for d in candidates}
        result = await self._guarded(inv, LEXICAL, lambda: self.lexical.score(case.search_text(), documents))
        if is_unavailable(result):
            return [result] * len(candidates)
        return [float(result.get(d.id, 0.0)) for d in candidates]

    async def _collect_experience(self, inv: _Invocation, case: MedicalCase,
                                  candidates: Sequence[Doctor]) -> List[Any]:
        if self.experience is None:
            return self._not_configured(EXPERIENCE, len(candidates))

        ids = [d.id for d in candidates]
        result = await self._guarded(inv, EXPERIENCE, lambda: self.experience.find_by_doctor_ids(ids))
        if is_unavailable(result):
            return [result] * len(candidates)
        return [list(result.get(d.id, [])) for d in candidates]

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    async def collect(self, case: MedicalCase, candidates: Sequence[Doctor]) -> CollectedSignals:
        """
        Gather raw signals for every candidate of `case`.

        Args:
            case: the case being matched
            candidates: doctors that already passed the hard filters

        Returns:
            CollectedSignals with one CandidateSignals per candidate, in
            input order, plus a provider -> reason map of failures.

        Raises:
            SignalCollectionError: a provider failed structurally.
        """
        started = time.perf_counter()
        candidates = list(candidates)
        if not candidates:
            return CollectedSignals(case=case, candidates=[])

        inv = _Invocation(case.id, self.settings)
        tasks: Tuple[Any, ...] = (
            self._collect_embedding(inv, case, candidates),
            self._collect_graph(inv, case, candidates),
            self._collect_lexical(inv, case, candidates),
            self._collect_experience(inv, case, candidates),
        )
        results = await asyncio.gather(*tasks, return_exceptions=True)
        for r in results:
            if isinstance(r, BaseException):
                raise r
        embedding, graph, lexical, experience = results

        collected = [
            CandidateSignals(doctor=d, embedding=e, graph=g, lexical=l, experience=x)
            for d, e, g, l, x in zip(candidates, embedding, graph, lexical, experience)
        ]

        failures: Dict[str, str] = {}
        for name, values in ((EMBEDDING, embedding), (GRAPH, graph), (LEXICAL, lexical), (EXPERIENCE, experience)):
            missing = [v for v in values if is_unavailable(v)]
            if missing:
                reason = missing[0].reason
                if len(missing) < len(values):
                    reason = f"{reason} ({len(missing)}/{len(values)} candidates)"
                failures[name] = reason

        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.info(
            f"Collected signals for case {case.id}: {len(collected)} candidates, "
            f"unavailable={sorted(failures) or 'none'}, {elapsed_ms:.0f}ms"
        )
        return CollectedSignals(case=case, candidates=collected, failures=failures, elapsed_ms=elapsed_ms)
