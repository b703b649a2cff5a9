"""
Similarity module.
Scores how alike two experiences are from category, tags, duration and geographic distance.
"""

import math
from typing import Dict, List, Optional

from loguru import logger  # console logger

from .models import Experience, RankedCandidate, SimilarityBreakdown

EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
	"""Great-circle distance in kilometres between two latitude/longitude points."""
	phi1 = math.radians(lat1)
	phi2 = math.radians(lat2)
	d_phi = math.radians(lat2 - lat1)
	d_lambda = math.radians(lon2 - lon1)

	a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
	a = min(1.0, a)  # rounding can push antipodal points just above 1
	return 2 * EARTH_RADIUS_KM * math.atan2(math.sqrt(a), math.sqrt(1 - a))


class SimilarityScorer:
	"""
	Computes final similarity scores from independent, bounded factors:
	- category: exact match (0.4)
	- tags: overlap relative to the larger tag set (up to 0.3)
	- duration: exact match (0.1)
	- geo: 0.2 when closer than nearby_km, 0.1 when closer than region_km
	The sum is clamped to 1.0.
	"""

	def __init__(
		self,
		category_weight: float = 0.4,
		tag_weight: float = 0.3,
		duration_weight: float = 0.1,
		nearby_weight: float = 0.2,
		region_weight: float = 0.1,
		nearby_km: float = 50.0,
		region_km: float = 200.0,
		min_score: float = 0.2,
		top_n: int = 5,
	):
		self.category_weight = category_weight
		self.tag_weight = tag_weight
		self.duration_weight = duration_weight
		self.nearby_weight = nearby_weight
		self.region_weight = region_weight
		self.nearby_km = nearby_km
		self.region_km = region_km
		self.min_score = min_score
		self.top_n = top_n

	def score_similarity(self, source: Experience, candidate: Experience) -> SimilarityBreakdown:
		"""Score one pair. Returns the total, per-factor contributions and match reasons."""
		factors: Dict[str, float] = {}
		reasons: List[str] = []
		distance: Optional[float] = None

		if source.category and source.category == candidate.category:
			factors['category'] = self.category_weight
			reasons.append("same category")

		source_tags = {t.lower() for t in source.tags}
		candidate_tags = {t.lower() for t in candidate.tags}
		shared = source_tags & candidate_tags
		if shared:
			factors['tags'] = self.tag_weight * (len(shared) / max(len(source_tags), len(candidate_tags)))
			reasons.append(f"{len(shared)} matching tags")

		if source.duration and source.duration == candidate.duration:
			factors['duration'] = self.duration_weight
			reasons.append("same duration")

		if source.has_coordinates() and candidate.has_coordinates():
			distance = haversine_km(source.latitude, source.longitude, candidate.latitude, candidate.longitude)
			if distance < self.nearby_km:
				factors['geo'] = self.nearby_weight
				reasons.append("nearby location")
			elif distance < self.region_km:
				factors['geo'] = self.region_weight
				reasons.append("same region")

		score = min(1.0, max(0.0, sum(factors.values())))
		return SimilarityBreakdown(score=score, factors=factors, reasons=reasons, distance_km=distance)

	def rank_similar(
		self,
		source: Experience,
		candidate_pool: List[Experience],
		min_score: Optional[float] = None,
		top_n: Optional[int] = None,
	) -> List[RankedCandidate]:
		"""Score every candidate, drop those at or below min_score, best first, capped to top_n."""
		min_score = self.min_score if min_score is None else min_score
		top_n = self.top_n if top_n is None else top_n

		ranked: List[RankedCandidate] = []
		for candidate in candidate_pool:
			if candidate.id == source.id:
				continue
			breakdown = self.score_similarity(source, candidate)
			if breakdown.score <= min_score:
				logger.debug(f"[Similarity] Dropped {candidate.id} | score={breakdown.score:.3f} <= {min_score}")
				continue
			ranked.append(RankedCandidate(
				id=candidate.id,
				score=breakdown.score,
				similarity=breakdown,
				experience=candidate,
			))

		ranked.sort(key=lambda c: (-c.score, c.id))
		logger.info(
			f"[Similarity] source={source.id} | pool={len(candidate_pool)} kept={len(ranked)} returning={min(top_n, len(ranked))}"
		)
		return ranked[:top_n]


def similarity_stats(ranked: List[RankedCandidate], pool_size: int) -> Dict[str, float]:
	"""Summary shown alongside a similar-records response."""
	average = sum(c.score for c in ranked) / len(ranked) if ranked else 0.0
	return {'totalCandidates': pool_size, 'returned': len(ranked), 'averageScore': round(average, 3)}

