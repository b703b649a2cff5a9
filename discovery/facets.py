"""
Facet aggregation module.
Counts categories, locations, tags, witness presence and date ranges over an already-fetched
result set. No datastore round trips happen here.
"""

import threading
import time
from collections import Counter
from datetime import date
from typing import Callable, Dict, Hashable, List, Optional, Tuple

from loguru import logger  # console logger

from .models import Experience, FacetCounts

# Ascending thresholds in whole days; the first one that fits wins.
DATE_BUCKETS: Tuple[Tuple[int, str], ...] = (
	(7, '7d'),
	(30, '30d'),
	(90, '90d'),
	(365, '365d'),
)
OLDER_BUCKET = 'older'
UNDATED_BUCKET = 'unknown'


def date_bucket(occurred: Optional[date], today: date) -> str:
	if occurred is None:
		return UNDATED_BUCKET
	days = (today - occurred).days
	for threshold, label in DATE_BUCKETS:
		if days <= threshold:
			return label
	return OLDER_BUCKET


def _ranked(counter: Counter, top: int) -> List[Tuple[str, int]]:
	# Descending count, then name for a stable order between equal counts
	return sorted(counter.items(), key=lambda item: (-item[1], item[0]))[:top]


class FacetAggregator:
	"""Computes FacetCounts for one filtered set of experiences."""

	def __init__(self, top_locations: int = 20, top_tags: int = 30, today: Callable[[], date] = date.today):
		self.top_locations = top_locations
		self.top_tags = top_tags
		self._today = today

	def aggregate(self, experiences: List[Experience]) -> FacetCounts:
		today = self._today()
		categories: Counter = Counter()
		locations: Counter = Counter()
		tags: Counter = Counter()
		witnesses = {'none': 0, 'any': 0}
		date_ranges = {label: 0 for _, label in DATE_BUCKETS}
		date_ranges[OLDER_BUCKET] = 0
		date_ranges[UNDATED_BUCKET] = 0

		for experience in experiences:
			if experience.category:
				categories[experience.category] += 1
			if experience.location_text and experience.location_text.strip():
				locations[experience.location_text.strip()] += 1
			tags.update(t for t in experience.tags if t)
			witnesses['any' if experience.witness_count() > 0 else 'none'] += 1
			bucket = date_bucket(experience.date_occurred, today)
			date_ranges[bucket] += 1

		facets = FacetCounts(
			total=len(experiences),
			categories=dict(categories),
			locations=_ranked(locations, self.top_locations),
			tags=_ranked(tags, self.top_tags),
			witnesses=witnesses,
			date_ranges=date_ranges,
		)
		logger.debug(
			f"[Facets] Aggregated {facets.total} records | categories={len(facets.categories)} "
			f"locations={len(locations)} tags={len(tags)}"
		)
		return facets


class FacetCache:
	"""Keeps facet counts for a short TTL per filter context."""

	def __init__(self, ttl_s: float = 30.0, clock: Callable[[], float] = time.monotonic):
		self.ttl_s = ttl_s
		self._clock = clock
		self._entries: Dict[Hashable, Tuple[float, FacetCounts]] = {}
		self._lock = threading.Lock()

	def get(self, key: Hashable) -> Optional[FacetCounts]:
		with self._lock:
			entry = self._entries.get(key)
			if entry is None:
				return None
			stored_at, facets = entry
			if self._clock() - stored_at > self.ttl_s:
				del self._entries[key]
				return None
			return facets

	def put(self, key: Hashable, facets: FacetCounts) -> None:
		with self._lock:
			now = self._clock()
			# Drop anything stale while we hold the lock, keeps the map bounded
			for stale in [k for k, (t, _) in self._entries.items() if now - t > self.ttl_s]:
				del self._entries[stale]
			self._entries[key] = (now, facets)
