"""
Datastore module.
Defines the primitives the discovery service consumes from the record store and provides
a local implementation over a JSONL corpus: FAISS for vector order, rapidfuzz for lexical order.
"""

import asyncio
from typing import Awaitable, Dict, Iterable, List, Optional, Protocol, Sequence, TypeVar

from rapidfuzz import fuzz, process, utils  # lexical relevance and prefix matching

from loguru import logger  # console logger

from .errors import DatastoreError, DiscoveryError
from .models import Experience, FusedSearchHits, Profile, RankedId, SearchFilters
from .vector_store import VectorStore


class Datastore(Protocol):
	"""Everything the service needs from the storage layer. All calls are I/O bound."""

	async def fused_search(
		self,
		query_text: str,
		query_embedding: Optional[Sequence[float]],
		language: Optional[str],
		vector_weight: float,
		lexical_weight: float,
		category: Optional[str],
		limit: int,
	) -> FusedSearchHits:
		...

	async def get_experience(self, experience_id: str) -> Optional[Experience]:
		...

	async def get_experiences(self, experience_ids: Iterable[str]) -> Dict[str, Experience]:
		...

	async def get_profiles(self, user_ids: Iterable[str]) -> Dict[str, Profile]:
		...

	async def similarity_candidates(self, source: Experience, limit: int) -> List[Experience]:
		...

	async def list_experiences(self, filters: SearchFilters, limit: int) -> List[Experience]:
		...

	async def autocomplete(self, prefix: str, limit: int) -> List[str]:
		...


T = TypeVar('T')


async def call_datastore(operation: str, awaitable: Awaitable[T], timeout_s: float) -> T:
	"""Await one datastore call with a hard timeout; every failure becomes a DatastoreError."""
	try:
		return await asyncio.wait_for(awaitable, timeout_s)
	except asyncio.TimeoutError as e:
		logger.error(f"[Datastore] {operation} timed out after {timeout_s}s")
		raise DatastoreError(f"Datastore {operation} timed out") from e
	except DiscoveryError:
		raise
	except Exception as e:
		logger.error(f"[Datastore] {operation} failed: {e}")
		raise DatastoreError(f"Datastore {operation} failed: {e}") from e


def matches_filters(experience: Experience, filters: SearchFilters) -> bool:
	"""True when the record passes every restriction in `filters`."""
	if filters.category and experience.category != filters.category:
		return False
	tags = {t.lower() for t in experience.tags}
	if filters.tags and not any(t.lower() in tags for t in filters.tags):
		return False
	if filters.exclude_tags and any(t.lower() in tags for t in filters.exclude_tags):
		return False
	if filters.location:
		if not experience.location_text or filters.location.lower() not in experience.location_text.lower():
			return False
	if filters.date_from or filters.date_to:
		if experience.date_occurred is None:
			return False
		if filters.date_from and experience.date_occurred < filters.date_from:
			return False
		if filters.date_to and experience.date_occurred > filters.date_to:
			return False
	if filters.witnesses_only and experience.witness_count() <= 0:
		return False
	return True


class LocalDatastore:
	"""
	In-process datastore over a loaded corpus.
	Vector order comes from the FAISS index, lexical order from rapidfuzz token-set matching.
	"""

	def __init__(
		self,
		experiences: List[Experience],
		vector_store: Optional[VectorStore] = None,
		profiles: Iterable[Profile] = (),
		lexical_cutoff: float = 60.0,
	):
		self.experiences = {e.id: e for e in experiences}
		self.vector_store = vector_store
		self.profiles = {p.id: p for p in profiles}
		self.lexical_cutoff = lexical_cutoff
		# Pre-build the lexical corpus to avoid recreating it on each search
		self._lexical_corpus = {e.id: (e.searchable_text or e.title) for e in experiences}
		logger.info(
			f"[Datastore] Local store ready | experiences={len(self.experiences)} profiles={len(self.profiles)} "
			f"vectors={vector_store.size() if vector_store else 0}"
		)

	async def fused_search(
		self,
		query_text: str,
		query_embedding: Optional[Sequence[float]],
		language: Optional[str],
		vector_weight: float,
		lexical_weight: float,
		category: Optional[str],
		limit: int,
	) -> FusedSearchHits:
		logger.debug(
			f"[Datastore] fused_search q='{query_text}' lang={language} weights=({vector_weight}, {lexical_weight}) "
			f"category={category} limit={limit} embedding={'yes' if query_embedding else 'no'}"
		)
		vector_ids: List[str] = []
		if query_embedding is not None and vector_weight > 0 and self.vector_store is not None:
			# Retrieve more than limit so the category filter still leaves enough rows
			fetch = limit * 4 if category else limit
			for experience_id, _sim in self.vector_store.search(query_embedding, top_k=fetch):
				if self._in_category(experience_id, category):
					vector_ids.append(experience_id)
				if len(vector_ids) >= limit:
					break

		lexical_ids: List[str] = []
		if lexical_weight > 0 and query_text.strip():
			matches = process.extract(
				query_text,
				self._lexical_corpus,
				scorer=fuzz.token_set_ratio,
				processor=utils.default_process,
				score_cutoff=self.lexical_cutoff,
				limit=None,
			)
			# rapidfuzz returns (text, score, key); order by score, then id for stable ranks
			ranked = sorted(matches, key=lambda m: (-m[1], m[2]))
			lexical_ids = [m[2] for m in ranked if self._in_category(m[2], category)][:limit]

		return FusedSearchHits(
			vector=[RankedId(eid, rank) for rank, eid in enumerate(vector_ids, 1)],
			lexical=[RankedId(eid, rank) for rank, eid in enumerate(lexical_ids, 1)],
		)

	async def get_experience(self, experience_id: str) -> Optional[Experience]:
		return self.experiences.get(experience_id)

	async def get_experiences(self, experience_ids: Iterable[str]) -> Dict[str, Experience]:
		return {eid: self.experiences[eid] for eid in experience_ids if eid in self.experiences}

	async def get_profiles(self, user_ids: Iterable[str]) -> Dict[str, Profile]:
		return {uid: self.profiles[uid] for uid in user_ids if uid in self.profiles}

	async def similarity_candidates(self, source: Experience, limit: int) -> List[Experience]:
		"""
		Candidate pool for similarity scoring: same-category records first, then the
		source's nearest vector neighbours, never the source itself.
		"""
		pool: List[Experience] = []
		seen = {source.id}
		for experience in self.experiences.values():
			if experience.category == source.category and experience.id not in seen:
				pool.append(experience)
				seen.add(experience.id)
				if len(pool) >= limit:
					return pool

		if self.vector_store is not None:
			vector = self.vector_store.get_embedding(source.id)
			if vector is not None:
				for experience_id, _sim in self.vector_store.search(vector, top_k=limit + 1):
					if experience_id not in seen and experience_id in self.experiences:
						pool.append(self.experiences[experience_id])
						seen.add(experience_id)
					if len(pool) >= limit:
						break
		return pool

	async def list_experiences(self, filters: SearchFilters, limit: int) -> List[Experience]:
		rows = [e for e in self.experiences.values() if matches_filters(e, filters)]
		return rows[:limit]

	async def autocomplete(self, prefix: str, limit: int) -> List[str]:
		"""Titles and tags starting with the prefix, then close fuzzy matches."""
		prefix = prefix.strip().lower()
		if not prefix:
			return []
		vocabulary = sorted({e.title for e in self.experiences.values() if e.title}
			| {t for e in self.experiences.values() for t in e.tags})
		starts = [v for v in vocabulary if v.lower().startswith(prefix)]
		if len(starts) >= limit:
			return starts[:limit]
		fuzzy = process.extract(prefix, vocabulary, scorer=fuzz.partial_ratio, processor=utils.default_process,
			score_cutoff=80, limit=limit * 2)
		for match, _score, _idx in fuzzy:
			if match not in starts:
				starts.append(match)
			if len(starts) >= limit:
				break
		return starts

	def _in_category(self, experience_id: str, category: Optional[str]) -> bool:
		experience = self.experiences.get(experience_id)
		if experience is None:
			return False
		return not category or experience.category == category
