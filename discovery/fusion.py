"""
Fusion module.
Issues one fused-search request to the datastore and merges the vector and lexical rank lists
with weighted Reciprocal Rank Fusion:

	score = vector_weight / (k + vector_rank) + lexical_weight / (k + lexical_rank)

A candidate missing from a list contributes nothing for that term. Ranks are 1-indexed.
"""

import asyncio
import math
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from loguru import logger  # console logger

from .datastore import Datastore, call_datastore, matches_filters
from .embeddings import EmbeddingProvider
from .models import Query, RankedCandidate, RankedId, SearchFilters

DEFAULT_RRF_K = 60


@dataclass
class FusionResult:
	"""Ordered candidates plus the weights that were actually applied."""
	candidates: List[RankedCandidate]
	vector_weight: float
	lexical_weight: float
	embedding_failed: bool = False
	counts: Dict[str, int] = field(default_factory=dict)  # raw list sizes, for diagnostics


def _best_ranks(ranked: Iterable[RankedId]) -> Dict[str, int]:
	ranks: Dict[str, int] = {}
	for item in ranked:
		if item.rank < 1:
			continue
		if item.id not in ranks or item.rank < ranks[item.id]:
			ranks[item.id] = item.rank
	return ranks


def rrf_fuse(
	vector: Sequence[RankedId],
	lexical: Sequence[RankedId],
	vector_weight: float,
	lexical_weight: float,
	k: int = DEFAULT_RRF_K,
	limit: Optional[int] = None,
) -> List[RankedCandidate]:
	"""
	Merge two rank lists into one ordered candidate list.
	Ties go to the better vector rank, then the better lexical rank, then the identifier.
	"""
	vector_ranks = _best_ranks(vector)
	lexical_ranks = _best_ranks(lexical)

	candidates = []
	for candidate_id in set(vector_ranks) | set(lexical_ranks):
		v_rank = vector_ranks.get(candidate_id)
		l_rank = lexical_ranks.get(candidate_id)
		score = 0.0
		if v_rank is not None:
			score += vector_weight * (1.0 / (k + v_rank))
		if l_rank is not None:
			score += lexical_weight * (1.0 / (k + l_rank))
		candidates.append(RankedCandidate(id=candidate_id, score=score, vector_rank=v_rank, lexical_rank=l_rank))

	candidates.sort(key=lambda c: (
		-c.score,
		c.vector_rank if c.vector_rank is not None else math.inf,
		c.lexical_rank if c.lexical_rank is not None else math.inf,
		c.id,
	))
	return candidates if limit is None else candidates[:limit]


class FusionExecutor:
	"""
	Runs embedding -> fused search -> RRF -> post-filters -> enrichment for one query.
	Embedding failures degrade to lexical-only ranking; datastore failures abort.
	"""

	def __init__(
		self,
		datastore: Datastore,
		embedder: Optional[EmbeddingProvider] = None,
		k: int = DEFAULT_RRF_K,
		candidate_limit: int = 50,
		timeout_s: float = 10.0,
	):
		self.datastore = datastore
		self.embedder = embedder
		self.k = k
		self.candidate_limit = candidate_limit
		self.timeout_s = timeout_s

	async def fuse(
		self,
		query: Query,
		weights: Tuple[float, float],
		filters: Optional[SearchFilters] = None,
		limit: int = 10,
		expansions: Sequence[str] = (),
	) -> FusionResult:
		"""Return at most `limit` candidates ordered by descending fused score."""
		filters = filters or SearchFilters(category=query.category)
		vector_weight, lexical_weight = weights
		text = query.text.strip()

		embedding, embedding_failed = await self._embed(text) if vector_weight > 0 else (None, False)
		if embedding is None and vector_weight > 0:
			logger.warning(f"[Fusion] No query embedding for '{text}', falling back to lexical-only ranking")
			vector_weight, lexical_weight = 0.0, 1.0

		# Translations widen the lexical side only; the embedding stays on the original text
		lexical_text = ' '.join([text, *[e for e in expansions if e and e.strip().lower() != text.lower()]])
		fetch = max(limit, self.candidate_limit)

		hits = await call_datastore(
			"fused_search",
			self.datastore.fused_search(
				lexical_text, embedding, query.language, vector_weight, lexical_weight, filters.category, fetch,
			),
			self.timeout_s,
		)
		logger.debug(f"[Fusion] Datastore returned vector={len(hits.vector)} lexical={len(hits.lexical)}")

		ranked = rrf_fuse(hits.vector, hits.lexical, vector_weight, lexical_weight, k=self.k)
		ranked = await self._filter_and_attach(ranked, filters, limit)
		await self.attach_profiles(ranked)

		logger.info(
			f"[Fusion] '{text}' -> {len(ranked)} candidates | weights=({vector_weight}, {lexical_weight}) k={self.k}"
		)
		return FusionResult(
			candidates=ranked,
			vector_weight=vector_weight,
			lexical_weight=lexical_weight,
			embedding_failed=embedding_failed,
			counts={'vector': len(hits.vector), 'lexical': len(hits.lexical)},
		)

	async def _embed(self, text: str):
		"""Returns (embedding or None, failed flag). Never raises for provider problems."""
		if self.embedder is None:
			return None, False
		try:
			vector = await asyncio.wait_for(asyncio.to_thread(self.embedder.embed, text), self.timeout_s)
		except asyncio.TimeoutError:
			logger.warning(f"[Fusion] Embedding provider timed out after {self.timeout_s}s")
			return None, True
		except Exception as e:
			logger.warning(f"[Fusion] Embedding provider failed: {e}")
			return None, True
		if vector is None or len(vector) == 0:
			return None, True
		return vector, False

	async def _filter_and_attach(
		self, ranked: List[RankedCandidate], filters: SearchFilters, limit: int
	) -> List[RankedCandidate]:
		if not ranked:
			return []
		records = await call_datastore(
			"get_experiences", self.datastore.get_experiences([c.id for c in ranked]), self.timeout_s
		)
		kept = []
		for candidate in ranked:
			experience = records.get(candidate.id)
			if experience is None:
				logger.debug(f"[Fusion] Dropping {candidate.id}: record no longer available")
				continue
			if not filters.is_empty() and not matches_filters(experience, filters):
				continue
			candidate.experience = experience
			kept.append(candidate)
			if len(kept) >= limit:
				break
		return kept

	async def attach_profiles(self, ranked: List[RankedCandidate]) -> None:
		"""Join author metadata onto the survivors. Order is left untouched."""
		user_ids = sorted({c.experience.user_id for c in ranked if c.experience and c.experience.user_id})
		if not user_ids:
			return
		profiles = await call_datastore("get_profiles", self.datastore.get_profiles(user_ids), self.timeout_s)
		for candidate in ranked:
			if candidate.experience and candidate.experience.user_id:
				candidate.profile = profiles.get(candidate.experience.user_id)
