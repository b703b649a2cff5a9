"""
Shared fixtures and fakes for the discovery test suites.
Every external collaborator (embedder, generator, datastore, analytics sink) has an
in-process stand-in here so no test touches a model, the network or the disk.
"""

import sys
from datetime import date
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
	sys.path.insert(0, str(ROOT))

from discovery.analytics import AnalyticsRecorder, InMemoryAnalyticsSink
from discovery.datastore import matches_filters
from discovery.facets import FacetAggregator, FacetCache
from discovery.fusion import FusionExecutor
from discovery.models import Experience, FusedSearchHits, Profile, RankedId, SearchFilters
from discovery.query_expander import QueryExpander, TranslationCache
from discovery.rate_governor import GovernorRegistry
from discovery.service import DiscoveryService


class FakeClock:
	"""Manually advanced millisecond clock for governors and caches."""

	def __init__(self, now: float = 1_700_000_000_000):
		self.now = now

	def __call__(self):
		return self.now

	def advance(self, amount: float):
		self.now += amount


class FakeEmbedder:
	def __init__(self, vector: Optional[List[float]] = None, error: Optional[Exception] = None):
		self.vector = vector if vector is not None else [0.1, 0.2, 0.3]
		self.error = error
		self.calls: List[str] = []

	def embed(self, text: str) -> List[float]:
		self.calls.append(text)
		if self.error is not None:
			raise self.error
		return self.vector


class FakeGenerator:
	"""Returns canned JSON payloads, or raises `error`."""

	def __init__(self, payload: Optional[Dict] = None, error: Optional[Exception] = None):
		self.payload = payload if payload is not None else {}
		self.error = error
		self.calls: List[str] = []

	async def generate(self, system: str, prompt: str) -> Dict:
		self.calls.append(prompt)
		if self.error is not None:
			raise self.error
		return self.payload


class FakeDatastore:
	"""
	Returns fixed rank lists and looks records up from a dict.
	Set `error` to make every call fail.
	"""

	def __init__(
		self,
		experiences: Iterable[Experience] = (),
		vector: Sequence[str] = (),
		lexical: Sequence[str] = (),
		profiles: Iterable[Profile] = (),
		error: Optional[Exception] = None,
	):
		self.experiences = {e.id: e for e in experiences}
		self.vector = list(vector)
		self.lexical = list(lexical)
		self.profiles = {p.id: p for p in profiles}
		self.error = error
		self.fused_calls: List[dict] = []

	def _check(self):
		if self.error is not None:
			raise self.error

	async def fused_search(self, query_text, query_embedding, language, vector_weight, lexical_weight, category, limit):
		self._check()
		self.fused_calls.append({
			'query_text': query_text,
			'query_embedding': query_embedding,
			'vector_weight': vector_weight,
			'lexical_weight': lexical_weight,
			'category': category,
			'limit': limit,
		})
		vector = self.vector if query_embedding is not None and vector_weight > 0 else []
		return FusedSearchHits(
			vector=[RankedId(eid, rank) for rank, eid in enumerate(vector[:limit], 1)],
			lexical=[RankedId(eid, rank) for rank, eid in enumerate(self.lexical[:limit], 1)],
		)

	async def get_experience(self, experience_id):
		self._check()
		return self.experiences.get(experience_id)

	async def get_experiences(self, experience_ids):
		self._check()
		return {eid: self.experiences[eid] for eid in experience_ids if eid in self.experiences}

	async def get_profiles(self, user_ids):
		self._check()
		return {uid: self.profiles[uid] for uid in user_ids if uid in self.profiles}

	async def similarity_candidates(self, source, limit):
		self._check()
		return [e for e in self.experiences.values() if e.id != source.id][:limit]

	async def list_experiences(self, filters: SearchFilters, limit):
		self._check()
		return [e for e in self.experiences.values() if matches_filters(e, filters)][:limit]

	async def autocomplete(self, prefix, limit):
		self._check()
		titles = sorted(e.title for e in self.experiences.values())
		return [t for t in titles if t.lower().startswith(prefix.lower())][:limit]


def make_experience(experience_id: str, **overrides) -> Experience:
	fields = dict(
		id=experience_id,
		title=f"Experience {experience_id}",
		story_text="Something happened.",
		category='ufo-uap',
		tags=[],
	)
	fields.update(overrides)
	return Experience(**fields)


@pytest.fixture
def corpus() -> List[Experience]:
	return [
		make_experience(
			'e1', title='Orange lights over the lake', tags=['lights', 'lake'], user_id='u1',
			location_text='Konstanz, Germany', latitude=47.66, longitude=9.18,
			date_occurred=date(2024, 8, 14), duration='5-15min', attributes={'witness_count': 3},
		),
		make_experience(
			'e2', title='Triangle near the shore', tags=['triangle', 'lake'], user_id='u2',
			location_text='Friedrichshafen, Germany', latitude=47.65, longitude=9.48,
			date_occurred=date(2024, 9, 2), duration='1-5min', attributes={'witnesses': ['Anna']},
		),
		make_experience(
			'e3', title='Footsteps in the attic', category='ghosts-spirits', tags=['haunted'],
			user_id='u1', location_text='Black Forest, Germany', date_occurred=date(2022, 1, 17),
		),
		make_experience(
			'e4', title='Orbs above the Alps', tags=['orbs'], location_text='Innsbruck, Austria',
			latitude=47.27, longitude=11.40,
		),
	]


@pytest.fixture
def profiles() -> List[Profile]:
	return [Profile('u1', 'skywatcher', 'Lena'), Profile('u2', 'nightowl')]


@pytest.fixture
def clock() -> FakeClock:
	return FakeClock()


@pytest.fixture
def sink() -> InMemoryAnalyticsSink:
	return InMemoryAnalyticsSink()


@pytest.fixture
def make_service(corpus, profiles, clock, sink):
	"""Factory building a DiscoveryService around fakes; keyword overrides replace collaborators."""
	services = []

	def _make(
		datastore=None,
		embedder=None,
		generator=None,
		limits=None,
	) -> DiscoveryService:
		datastore = datastore or FakeDatastore(
			corpus, vector=['e1', 'e2', 'e4'], lexical=['e2', 'e1', 'e3'], profiles=profiles,
		)
		expander = QueryExpander(generator, ('de', 'en'), TranslationCache(), timeout_s=1.0) if generator else None
		service = DiscoveryService(
			datastore=datastore,
			governors=GovernorRegistry(
				limits or {'search': (60, 60_000), 'discovery': (20, 60_000), 'autocomplete': (100, 60_000)},
				clock=clock,
			),
			fusion=FusionExecutor(datastore, embedder=embedder or FakeEmbedder(), timeout_s=1.0),
			analytics=AnalyticsRecorder([sink]),
			facet_aggregator=FacetAggregator(today=lambda: date(2024, 9, 9)),
			facet_cache=FacetCache(30.0),
			expander=expander,
			timeout_s=1.0,
		)
		services.append(service)
		return service

	yield _make
	for service in services:
		service.governors.destroy()
