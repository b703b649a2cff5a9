"""
Data models for the Experience Discovery service.
Defines the value objects passed between the classifier, fusion, scoring and faceting stages.
"""

# Import dataclass to define simple "record-like" classes without boilerplate
from dataclasses import dataclass, field  # auto-generates __init__, __repr__, etc.
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

WITNESS_KEYS = ('witness_count', 'witnesses')  # legacy synonyms, checked in order


@dataclass
class Experience:
	"""
	A single narrative record as the datastore hands it to us.
	Only the fields used for ranking, similarity and faceting are modelled.
	"""
	id: str  # unique identifier
	title: str  # short headline
	story_text: str  # free-form narrative
	category: str  # category slug (e.g. "ufo-uap")
	tags: List[str] = field(default_factory=list)  # free-form tags
	location_text: Optional[str] = None  # human readable place
	latitude: Optional[float] = None
	longitude: Optional[float] = None
	date_occurred: Optional[date] = None  # when it happened (not when it was posted)
	duration: Optional[str] = None  # bucketed duration label, compared verbatim
	user_id: Optional[str] = None  # author, joined against profiles
	attributes: Dict[str, Any] = field(default_factory=dict)  # nested category-specific attributes
	searchable_text: Optional[str] = None  # generated text used for embeddings and lexical ranking

	def has_coordinates(self) -> bool:
		return self.latitude is not None and self.longitude is not None

	def witness_count(self) -> int:
		"""
		Number of witnesses. Older records store it as `witnesses` (a count or a list of
		names), newer ones as `witness_count`; both keys mean the same thing.
		"""
		for key in WITNESS_KEYS:
			value = self.attributes.get(key)
			if value is None:
				continue
			if isinstance(value, (list, tuple)):
				return len(value)
			try:
				return max(0, int(value))
			except (TypeError, ValueError):
				return 0
		return 0


@dataclass
class Profile:
	"""Lightweight author metadata attached to results after ranking."""
	id: str
	username: str
	display_name: Optional[str] = None
	avatar_url: Optional[str] = None


@dataclass
class SearchFilters:
	"""
	Restrictions applied to a search or facet request.
	`category` is pushed down to the datastore; the rest are applied after fusion.
	"""
	category: Optional[str] = None
	tags: List[str] = field(default_factory=list)  # keep records carrying any of these
	exclude_tags: List[str] = field(default_factory=list)  # drop records carrying any of these
	location: Optional[str] = None  # case-insensitive substring of location_text
	date_from: Optional[date] = None
	date_to: Optional[date] = None
	witnesses_only: bool = False

	def is_empty(self) -> bool:
		return not (
			self.category or self.tags or self.exclude_tags or self.location
			or self.date_from or self.date_to or self.witnesses_only
		)


@dataclass
class Query:
	"""
	A search request as it enters the service.
	Invariant (checked by `validate_query`): text is non-empty after trimming and
	the optional weight override lies in [0, 1].
	"""
	text: str  # raw user text
	language: Optional[str] = None  # declared source language, e.g. "en"
	category: Optional[str] = None  # category filter
	vector_weight: Optional[float] = None  # explicit override of the intent weights
	limit: int = 10  # maximum number of results
	expand: bool = False  # ask the expander for translations before searching
	filters: SearchFilters = field(default_factory=SearchFilters)


@dataclass(frozen=True)
class IntentResult:
	"""
	Heuristic reading of a query. Immutable once produced.
	vector_weight + lexical_weight is always exactly 1.0.
	"""
	is_question: bool
	is_natural_language: bool
	is_keyword: bool
	confidence: float  # 0..1, 0 means "do not search"
	vector_weight: float
	lexical_weight: float
	concepts: Tuple[str, ...] = ()  # detected concept tags, in table order

	@property
	def search_type(self) -> str:
		if self.is_question:
			return 'question'
		if self.is_natural_language:
			return 'natural_language'
		if self.is_keyword:
			return 'keyword'
		return 'mixed'


@dataclass(frozen=True)
class RankedId:
	"""One entry of a ranked list returned by the datastore (ranks are 1-indexed)."""
	id: str
	rank: int


@dataclass
class FusedSearchHits:
	"""Both rank lists produced by one fused-search round trip."""
	vector: List[RankedId] = field(default_factory=list)
	lexical: List[RankedId] = field(default_factory=list)


@dataclass
class SimilarityBreakdown:
	"""Per-factor contributions and the human readable reasons behind a similarity score."""
	score: float
	factors: Dict[str, float] = field(default_factory=dict)
	reasons: List[str] = field(default_factory=list)
	distance_km: Optional[float] = None


@dataclass
class RankedCandidate:
	"""
	A result row. `score` is derived (fused or similarity score) and never persisted.
	Ranks are None when the candidate is absent from that list.
	"""
	id: str
	score: float
	vector_rank: Optional[int] = None
	lexical_rank: Optional[int] = None
	similarity: Optional[SimilarityBreakdown] = None
	experience: Optional[Experience] = None  # attached during enrichment
	profile: Optional[Profile] = None  # attached during enrichment


@dataclass
class RateLimitResult:
	"""Outcome of one governor check. reset_at is epoch milliseconds."""
	allowed: bool
	limit: int
	remaining: int
	reset_at: int


@dataclass
class FacetCounts:
	"""Counts per facet dimension computed over one filtered result set."""
	total: int = 0
	categories: Dict[str, int] = field(default_factory=dict)
	locations: List[Tuple[str, int]] = field(default_factory=list)  # ranked, descending
	tags: List[Tuple[str, int]] = field(default_factory=list)  # ranked, descending
	witnesses: Dict[str, int] = field(default_factory=dict)  # "none" / "any"
	date_ranges: Dict[str, int] = field(default_factory=dict)  # "7d", "30d", "90d", "365d", "older"


@dataclass
class SearchEvent:
	"""A single analytics record written after a search has been answered."""
	query: str
	result_count: int
	execution_ms: float
	vector_weight: float
	lexical_weight: float
	search_type: str
	user_id: Optional[str] = None
	language: Optional[str] = None
	filters: Dict[str, Any] = field(default_factory=dict)


@dataclass
class SearchResponse:
	"""What DiscoveryService.search hands back to the HTTP layer."""
	query: str
	results: List[RankedCandidate]
	intent: IntentResult
	vector_weight: float  # weights actually used (after override / fallback)
	lexical_weight: float
	execution_ms: float
	feedback: str = ''
	expansions: Dict[str, str] = field(default_factory=dict)
	suggestions: List[str] = field(default_factory=list)
	degraded: bool = False  # a provider failed and the answer is best-effort
	rate_limit: Optional[RateLimitResult] = None


@dataclass
class SimilarResponse:
	"""Ranked similar records for one source record."""
	source_id: str
	results: List[RankedCandidate]
	stats: Dict[str, float]
	execution_ms: float
	rate_limit: Optional[RateLimitResult] = None


@dataclass
class FacetResponse:
	facets: FacetCounts
	cached: bool
	execution_ms: float
	rate_limit: Optional[RateLimitResult] = None
