"""
Configuration for the discovery service.
All settings support environment variable overrides with the DISCOVERY_ prefix,
nested groups use a double underscore (e.g. DISCOVERY_FUSION__RRF_K=60).
Values are read once at startup; nothing mutates them at request time.
"""

from functools import lru_cache
from typing import Dict, List, Tuple

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class FusionSettings(BaseModel):
	"""Settings for reciprocal rank fusion."""

	rrf_k: int = Field(default=60, description="RRF smoothing constant")
	candidate_limit: int = Field(default=50, description="Rows requested per list from the datastore")
	default_vector_weight: float = Field(default=0.6, description="Vector weight when intent is undecided")


class SimilaritySettings(BaseModel):
	"""Settings for pairwise similarity ranking."""

	min_score: float = Field(default=0.2, description="Candidates at or below this score are dropped")
	top_n: int = Field(default=5, description="Default number of similar records returned")
	candidate_pool: int = Field(default=50, description="Candidates fetched before scoring")
	nearby_km: float = Field(default=50.0, description="Distance for the 'nearby location' bonus")
	region_km: float = Field(default=200.0, description="Distance for the 'same region' bonus")


class RateLimitSettings(BaseModel):
	"""Per endpoint class (limit, window_ms) pairs and the sweep interval."""

	limits: Dict[str, Tuple[int, int]] = Field(
		default={
			"discovery": (20, 60_000),
			"search": (60, 60_000),
			"autocomplete": (100, 60_000),
		},
		description="Independent limiter per endpoint class",
	)
	sweep_interval_s: float = Field(default=60.0, description="Seconds between expired-record sweeps")


class ProviderSettings(BaseModel):
	"""Settings for the embedding and generation collaborators."""

	timeout_s: float = Field(default=10.0, description="Hard timeout on every provider / datastore call")
	embedding_model: str = Field(default="all-MiniLM-L6-v2")
	generation_model: str = Field(default="gpt-4o-mini")
	target_languages: List[str] = Field(default=["de", "en", "fr", "es"])
	translation_cache_size: int = Field(default=1000)
	translation_cache_ttl_s: float = Field(default=24 * 60 * 60)


class FacetSettings(BaseModel):
	"""Settings for facet aggregation."""

	cache_ttl_s: float = Field(default=30.0, description="Facet counts are reused for at most this long")
	top_locations: int = Field(default=20)
	top_tags: int = Field(default=30)
	max_records: int = Field(default=1000, description="Upper bound of records aggregated per request")


class Settings(BaseSettings):
	"""Root settings object."""

	model_config = SettingsConfigDict(
		env_prefix="DISCOVERY_",
		env_nested_delimiter="__",
		env_file=".env",
		extra="ignore",
	)

	data_path: str = Field(default="data/experiences.jsonl")
	profiles_path: str = Field(default="data/profiles.jsonl")
	index_path: str = Field(default="models/faiss_index")
	analytics_path: str = Field(default="logs/search_events.jsonl")
	log_level: str = Field(default="INFO")

	fusion: FusionSettings = Field(default_factory=FusionSettings)
	similarity: SimilaritySettings = Field(default_factory=SimilaritySettings)
	rate_limits: RateLimitSettings = Field(default_factory=RateLimitSettings)
	providers: ProviderSettings = Field(default_factory=ProviderSettings)
	facets: FacetSettings = Field(default_factory=FacetSettings)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
	"""Load settings once per process."""
	return Settings()
