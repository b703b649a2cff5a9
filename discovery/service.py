"""
Discovery service module.
Wires governor, intent classification, optional expansion, fusion, enrichment and analytics
together for each request.
"""

import dataclasses
import time
from typing import List, Optional

from loguru import logger  # console logger

from .analytics import AnalyticsRecorder, AnalyticsSink, LogAnalyticsSink
from .config import Settings
from .datastore import Datastore, call_datastore
from .embeddings import EmbeddingProvider
from .errors import NotFoundError, ProviderError, RateLimitError, ValidationError
from .facets import FacetAggregator, FacetCache
from .fusion import FusionExecutor
from .intent import IntentClassifier, WeightPolicy, intent_feedback
from .models import (
	FacetResponse,
	Query,
	RateLimitResult,
	SearchEvent,
	SearchFilters,
	SearchResponse,
	SimilarResponse,
)
from .query_expander import GenerationProvider, QueryExpander, TranslationCache, TranslationResult
from .rate_governor import GovernorRegistry
from .similarity import SimilarityScorer, similarity_stats

MAX_LIMIT = 100


def validate_query(query: Query) -> Query:
	"""Reject malformed queries before anything external is touched."""
	if query.text is None or not query.text.strip():
		raise ValidationError("Query text must not be empty")
	if query.vector_weight is not None and not 0.0 <= query.vector_weight <= 1.0:
		raise ValidationError("vector_weight must lie in [0, 1]")
	if query.limit < 1 or query.limit > MAX_LIMIT:
		raise ValidationError(f"limit must lie in [1, {MAX_LIMIT}]")
	return query


class DiscoveryService:
	"""
	High-level API combining rate governing, intent detection, fusion and scoring.
	Order within a search: governor check, then intent, then fusion, then analytics
	dispatched in the background.
	"""

	def __init__(
		self,
		datastore: Datastore,
		governors: GovernorRegistry,
		fusion: FusionExecutor,
		analytics: AnalyticsRecorder,
		classifier: Optional[IntentClassifier] = None,
		scorer: Optional[SimilarityScorer] = None,
		facet_aggregator: Optional[FacetAggregator] = None,
		facet_cache: Optional[FacetCache] = None,
		expander: Optional[QueryExpander] = None,
		candidate_pool: int = 50,
		max_facet_records: int = 1000,
		timeout_s: float = 10.0,
	):
		self.datastore = datastore
		self.governors = governors
		self.fusion = fusion
		self.analytics = analytics
		self.classifier = classifier or IntentClassifier()
		self.scorer = scorer or SimilarityScorer()
		self.facet_aggregator = facet_aggregator or FacetAggregator()
		self.facet_cache = facet_cache
		self.expander = expander
		self.candidate_pool = candidate_pool
		self.max_facet_records = max_facet_records
		self.timeout_s = timeout_s

	def govern(self, endpoint_class: str, identifier: str) -> RateLimitResult:
		"""Count the request against its endpoint class, raising RateLimitError when exhausted."""
		result = self.governors.check(endpoint_class, identifier)
		if not result.allowed:
			raise RateLimitError(
				f"Too many {endpoint_class} requests, retry after {result.reset_at}",
				limit=result.limit,
				remaining=result.remaining,
				reset_at=result.reset_at,
			)
		return result

	async def search(self, query: Query, identifier: str, user_id: Optional[str] = None) -> SearchResponse:
		"""Run one governed, intent-weighted fused search."""
		start = time.perf_counter()
		rate = self.govern('search', identifier)
		validate_query(query)

		intent = self.classifier.classify(query.text)

		if query.vector_weight is not None:
			weights = (query.vector_weight, 1.0 - query.vector_weight)
		else:
			weights = (intent.vector_weight, intent.lexical_weight)
		logger.debug(f"[Service] search '{query.text}' | type={intent.search_type} weights={weights}")

		degraded = False
		translations = {}
		expansion_texts: List[str] = []
		if query.expand and self.expander is not None:
			try:
				translations, expansion_texts = await self.expander.expansions(query.text, query.language)
			except ProviderError as e:
				logger.warning(f"[Service] Query expansion skipped: {e.message}")
				degraded = True

		filters = dataclasses.replace(query.filters, category=query.category or query.filters.category)
		result = await self.fusion.fuse(query, weights, filters, query.limit, expansion_texts)
		degraded = degraded or result.embedding_failed

		suggestions: List[str] = []
		if not result.candidates and self.expander is not None:
			try:
				suggestions = await self.expander.suggest(query.text)
			except ProviderError as e:
				logger.warning(f"[Service] No-result suggestions unavailable: {e.message}")
				degraded = True

		execution_ms = (time.perf_counter() - start) * 1000
		response = SearchResponse(
			query=query.text,
			results=result.candidates,
			intent=intent,
			vector_weight=result.vector_weight,
			lexical_weight=result.lexical_weight,
			execution_ms=execution_ms,
			feedback=intent_feedback(intent, query.text),
			expansions=translations,
			suggestions=suggestions,
			degraded=degraded,
			rate_limit=rate,
		)
		self._record(SearchEvent(
			query=query.text,
			result_count=len(result.candidates),
			execution_ms=execution_ms,
			vector_weight=result.vector_weight,
			lexical_weight=result.lexical_weight,
			search_type=intent.search_type,
			user_id=user_id,
			language=query.language,
			filters=dataclasses.asdict(filters),
		))
		logger.info(f"[Service] search served {len(result.candidates)} results in {execution_ms:.2f} ms")
		return response

	async def find_similar(
		self,
		experience_id: str,
		identifier: str,
		limit: Optional[int] = None,
		min_score: Optional[float] = None,
	) -> SimilarResponse:
		"""Rank records similar to `experience_id` with per-factor match reasons."""
		start = time.perf_counter()
		rate = self.govern('discovery', identifier)
		if limit is not None and not 1 <= limit <= MAX_LIMIT:
			raise ValidationError(f"limit must lie in [1, {MAX_LIMIT}]")
		if min_score is not None and not 0.0 <= min_score <= 1.0:
			raise ValidationError("min_score must lie in [0, 1]")

		source = await call_datastore("get_experience", self.datastore.get_experience(experience_id), self.timeout_s)
		if source is None:
			raise NotFoundError(f"Experience {experience_id} not found")

		pool = await call_datastore(
			"similarity_candidates", self.datastore.similarity_candidates(source, self.candidate_pool), self.timeout_s
		)
		ranked = self.scorer.rank_similar(source, pool, min_score=min_score, top_n=limit)
		await self.fusion.attach_profiles(ranked)

		execution_ms = (time.perf_counter() - start) * 1000
		return SimilarResponse(
			source_id=experience_id,
			results=ranked,
			stats=similarity_stats(ranked, len(pool)),
			execution_ms=execution_ms,
			rate_limit=rate,
		)

	async def facets(self, filters: SearchFilters, identifier: str) -> FacetResponse:
		"""Facet counts for a filter context, reused for a short TTL."""
		start = time.perf_counter()
		rate = self.govern('search', identifier)
		key = repr(filters)

		if self.facet_cache is not None:
			cached = self.facet_cache.get(key)
			if cached is not None:
				return FacetResponse(cached, True, (time.perf_counter() - start) * 1000, rate)

		rows = await call_datastore(
			"list_experiences", self.datastore.list_experiences(filters, self.max_facet_records), self.timeout_s
		)
		counts = self.facet_aggregator.aggregate(rows)
		if self.facet_cache is not None:
			self.facet_cache.put(key, counts)
		return FacetResponse(counts, False, (time.perf_counter() - start) * 1000, rate)

	async def autocomplete(self, prefix: str, identifier: str, limit: int = 8):
		"""Prefix suggestions; returns (suggestions, rate limit result)."""
		rate = self.govern('autocomplete', identifier)
		if not prefix or not prefix.strip():
			return [], rate
		suggestions = await call_datastore("autocomplete", self.datastore.autocomplete(prefix, limit), self.timeout_s)
		return suggestions, rate

	async def translate(
		self,
		query: str,
		identifier: str,
		source_language: str = 'auto',
		target_languages: Optional[List[str]] = None,
	):
		"""Cross-lingual expansion on its own; returns (TranslationResult, rate limit result)."""
		rate = self.govern('search', identifier)
		if self.expander is None:
			raise ProviderError("No translation provider configured")
		result: TranslationResult = await self.expander.translate(query, source_language, target_languages)
		return result, rate

	def analytics_summary(self, identifier: str, limit: int = 10):
		"""Top and zero-result queries plus mean latency; returns (summary, rate limit result)."""
		rate = self.govern('search', identifier)
		if not 1 <= limit <= MAX_LIMIT:
			raise ValidationError(f"limit must lie in [1, {MAX_LIMIT}]")
		summary = self.analytics.summary(limit)
		if summary is None:
			raise NotFoundError("No in-memory analytics sink configured")
		return summary, rate

	def _record(self, event: SearchEvent) -> None:
		"""Fire-and-forget analytics; nothing here may reach the caller."""
		try:
			self.analytics.dispatch(event)
		except Exception as e:
			logger.warning(f"[Service] Analytics dispatch failed: {e}")

	async def shutdown(self) -> None:
		await self.analytics.drain()
		self.governors.destroy()


def build_service(
	settings: Settings,
	datastore: Datastore,
	embedder: Optional[EmbeddingProvider] = None,
	generator: Optional[GenerationProvider] = None,
	sinks: Optional[List[AnalyticsSink]] = None,
) -> DiscoveryService:
	"""Assemble a DiscoveryService from settings and the collaborators chosen at startup."""
	providers = settings.providers
	fusion = FusionExecutor(
		datastore,
		embedder=embedder,
		k=settings.fusion.rrf_k,
		candidate_limit=settings.fusion.candidate_limit,
		timeout_s=providers.timeout_s,
	)
	expander = None
	if generator is not None:
		expander = QueryExpander(
			generator,
			target_languages=providers.target_languages,
			cache=TranslationCache(providers.translation_cache_size, providers.translation_cache_ttl_s),
			timeout_s=providers.timeout_s,
		)
	similarity = settings.similarity
	vector_weight = settings.fusion.default_vector_weight
	return DiscoveryService(
		datastore=datastore,
		governors=GovernorRegistry(settings.rate_limits.limits, settings.rate_limits.sweep_interval_s),
		fusion=fusion,
		analytics=AnalyticsRecorder(sinks if sinks is not None else [LogAnalyticsSink()]),
		classifier=IntentClassifier(default_weights=WeightPolicy(vector_weight, 1.0 - vector_weight)),
		scorer=SimilarityScorer(
			nearby_km=similarity.nearby_km,
			region_km=similarity.region_km,
			min_score=similarity.min_score,
			top_n=similarity.top_n,
		),
		facet_aggregator=FacetAggregator(settings.facets.top_locations, settings.facets.top_tags),
		facet_cache=FacetCache(settings.facets.cache_ttl_s),
		expander=expander,
		candidate_pool=similarity.candidate_pool,
		max_facet_records=settings.facets.max_records,
		timeout_s=providers.timeout_s,
	)
