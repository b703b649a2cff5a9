"""
FastAPI server exposing the experience discovery API.
Endpoints:
- GET /health: basic health check
- POST /search: intent-weighted hybrid search with ranked results and timing metadata
- GET /experiences/{id}/similar: ranked similar experiences with match reasons
- POST /facets: facet counts for a filter context
- POST /search/translate: cross-lingual query expansion
- GET /search/autocomplete?q=...: prefix suggestions
- GET /analytics/summary: top queries, zero-result queries and mean latency

Startup loads a saved FAISS index if available (models/faiss_index.*),
otherwise builds embeddings and indexes on the fly.
"""

import time  # measure startup and request latencies
from datetime import date
from typing import Dict, List, Optional

from fastapi import FastAPI, Header, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from discovery import models
from discovery.analytics import InMemoryAnalyticsSink, JsonlAnalyticsSink, LogAnalyticsSink
from discovery.config import Settings, get_settings
from discovery.data_loader import DataLoader
from discovery.datastore import LocalDatastore
from discovery.embeddings import EmbeddingGenerator
from discovery.errors import DatastoreError, DiscoveryError, RateLimitError, ValidationError
from discovery.logging_setup import configure_logging
from discovery.query_expander import OpenAIGenerator
from discovery.service import DiscoveryService, build_service
from discovery.vector_store import VectorStore

from loguru import logger  # convenient console logger

app = FastAPI(title="Experience Discovery API", version="1.0.0")

# Globals that hold the service instance and measured startup time
SERVICE: Optional[DiscoveryService] = None
STARTUP_TIME_S: float = 0.0


class FiltersIn(BaseModel):
	category: Optional[str] = None
	tags: List[str] = Field(default_factory=list)
	exclude_tags: List[str] = Field(default_factory=list)
	location: Optional[str] = None
	date_from: Optional[date] = None
	date_to: Optional[date] = None
	witnesses_only: bool = False

	def to_filters(self) -> models.SearchFilters:
		return models.SearchFilters(**self.model_dump())


class SearchRequest(BaseModel):
	text: str
	language: Optional[str] = None
	category: Optional[str] = None
	vector_weight: Optional[float] = None
	limit: int = 10
	expand: bool = False
	filters: FiltersIn = Field(default_factory=FiltersIn)


class TranslateRequest(BaseModel):
	query: str
	source_language: str = 'auto'
	target_languages: Optional[List[str]] = None


class ProfileOut(BaseModel):
	id: str
	username: str
	display_name: Optional[str] = None
	avatar_url: Optional[str] = None


class ExperienceOut(BaseModel):
	id: str
	title: str
	category: str
	tags: List[str]
	location_text: Optional[str] = None
	date_occurred: Optional[date] = None
	duration: Optional[str] = None
	excerpt: Optional[str] = None  # first part of the story
	author: Optional[ProfileOut] = None


class ResultItem(BaseModel):
	experience: ExperienceOut
	score: float
	vector_rank: Optional[int] = None
	lexical_rank: Optional[int] = None
	reasons: List[str] = Field(default_factory=list)
	factors: Dict[str, float] = Field(default_factory=dict)
	distance_km: Optional[float] = None


def _client_identifier(request: Request, user_id: Optional[str]) -> str:
	if user_id:
		return f"user:{user_id}"
	host = request.client.host if request.client else 'unknown'
	return f"ip:{host}"


def _rate_headers(response: Response, rate: Optional[models.RateLimitResult]) -> None:
	if rate is None:
		return
	response.headers['X-RateLimit-Limit'] = str(rate.limit)
	response.headers['X-RateLimit-Remaining'] = str(rate.remaining)
	response.headers['X-RateLimit-Reset'] = str(rate.reset_at)


def _result_item(candidate: models.RankedCandidate) -> ResultItem:
	e = candidate.experience
	p = candidate.profile
	similarity = candidate.similarity
	return ResultItem(
		experience=ExperienceOut(
			id=e.id,
			title=e.title,
			category=e.category,
			tags=e.tags,
			location_text=e.location_text,
			date_occurred=e.date_occurred,
			duration=e.duration,
			excerpt=e.story_text[:300] if e.story_text else None,
			author=ProfileOut(id=p.id, username=p.username, display_name=p.display_name, avatar_url=p.avatar_url) if p else None,
		),
		score=round(candidate.score, 6),
		vector_rank=candidate.vector_rank,
		lexical_rank=candidate.lexical_rank,
		reasons=similarity.reasons if similarity else [],
		factors=similarity.factors if similarity else {},
		distance_km=round(similarity.distance_km, 1) if similarity and similarity.distance_km is not None else None,
	)


def _service() -> DiscoveryService:
	if SERVICE is None:
		logger.warning("[API] Request received before the service was initialized")
		raise DatastoreError("Service is not ready")
	return SERVICE


@app.exception_handler(DiscoveryError)
async def discovery_error_handler(request: Request, exc: DiscoveryError):
	"""Map every DiscoveryError onto its status code and machine-readable payload."""
	headers = {}
	if isinstance(exc, RateLimitError):
		retry_after = max(0, (exc.reset_at - int(time.time() * 1000) + 999) // 1000)
		headers = {
			'Retry-After': str(retry_after),
			'X-RateLimit-Limit': str(exc.limit),
			'X-RateLimit-Remaining': str(exc.remaining),
			'X-RateLimit-Reset': str(exc.reset_at),
		}
	logger.info(f"[API] {request.method} {request.url.path} -> {exc.status_code} {exc.code}: {exc.message}")
	return JSONResponse(status_code=exc.status_code, content=exc.to_payload(), headers=headers)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
	"""Malformed bodies and query parameters get the same error payload as every other rejection."""
	details = "; ".join(
		f"{'.'.join(str(part) for part in err.get('loc', ()))}: {err.get('msg', 'invalid')}" for err in exc.errors()
	)
	error = ValidationError(f"Invalid request: {details}")
	logger.info(f"[API] {request.method} {request.url.path} -> {error.status_code} {error.code}: {error.message}")
	return JSONResponse(status_code=error.status_code, content=error.to_payload())


def create_service(settings: Settings) -> DiscoveryService:
	"""Load the corpus, the FAISS index (or build one) and the providers."""
	loader = DataLoader()
	experiences = loader.load_experiences_from_jsonl(settings.data_path)
	profiles = loader.load_profiles_from_jsonl(settings.profiles_path)
	logger.info(f"[API] Loaded {len(experiences)} experiences for indexing/search")

	embedder = EmbeddingGenerator(settings.providers.embedding_model)
	if VectorStore.index_files_exist(settings.index_path):
		store = VectorStore.load_index(settings.index_path)
	else:
		logger.info("[API] No saved index found, building embeddings now")
		store = VectorStore(embedder.get_embedding_dimension())
		store.add_experiences(experiences, embedder.generate_experience_embeddings(experiences, show_progress=False))

	try:
		generator = OpenAIGenerator(settings.providers.generation_model)
	except Exception as e:
		# The openai client refuses to start without an API key; translation is optional
		logger.warning(f"[API] Generation provider unavailable, expansion disabled: {e}")
		generator = None

	return build_service(
		settings,
		LocalDatastore(experiences, store, profiles),
		embedder=embedder,
		generator=generator,
		sinks=[LogAnalyticsSink(), JsonlAnalyticsSink(settings.analytics_path), InMemoryAnalyticsSink()],
	)


@app.on_event("startup")
async def startup_event():
	"""Initialize the discovery service once, unless one was injected already."""
	global SERVICE, STARTUP_TIME_S
	if SERVICE is not None:
		return
	start = time.time()
	settings = get_settings()
	configure_logging(settings.log_level)
	logger.info("[API] Startup: loading experiences and initializing service...")
	SERVICE = create_service(settings)
	STARTUP_TIME_S = time.time() - start
	logger.info(f"[API] Startup complete in {STARTUP_TIME_S:.2f}s.")


@app.on_event("shutdown")
async def shutdown_event():
	if SERVICE is not None:
		await SERVICE.shutdown()
		logger.info("[API] Shutdown complete")


@app.get("/health")
async def health():
	"""Return minimal health info for liveness/readiness probes."""
	return {
		"status": "ok",
		"service_ready": SERVICE is not None,
		"startup_seconds": round(STARTUP_TIME_S, 2),
	}


@app.post("/search")
async def search(
	body: SearchRequest,
	request: Request,
	response: Response,
	x_user_id: Optional[str] = Header(default=None),
):
	"""Execute a hybrid search and return ranked results plus a meta block."""
	service = _service()
	query = models.Query(
		text=body.text,
		language=body.language,
		category=body.category,
		vector_weight=body.vector_weight,
		limit=body.limit,
		expand=body.expand,
		filters=body.filters.to_filters(),
	)
	logger.debug(f"[API] /search q='{body.text}' limit={body.limit}")
	result = await service.search(query, _client_identifier(request, x_user_id), user_id=x_user_id)
	_rate_headers(response, result.rate_limit)

	return {
		"query": result.query,
		"results": [_result_item(c).model_dump() for c in result.results],
		"suggestions": result.suggestions,
		"meta": {
			"executionTime": round(result.execution_ms, 2),
			"resultCount": len(result.results),
			"searchType": result.intent.search_type,
			"weights": {"vector": result.vector_weight, "lexical": result.lexical_weight},
			"intent": {
				"isQuestion": result.intent.is_question,
				"isNaturalLanguage": result.intent.is_natural_language,
				"isKeyword": result.intent.is_keyword,
				"confidence": result.intent.confidence,
				"concepts": list(result.intent.concepts),
			},
			"feedback": result.feedback,
			"translations": result.expansions,
			"degraded": result.degraded,
		},
	}


@app.get("/experiences/{experience_id}/similar")
async def similar(
	experience_id: str,
	request: Request,
	response: Response,
	limit: Optional[int] = Query(default=None),
	min_score: Optional[float] = Query(default=None),
	x_user_id: Optional[str] = Header(default=None),
):
	"""Return experiences similar to the given one, with the reasons they matched."""
	result = await _service().find_similar(experience_id, _client_identifier(request, x_user_id), limit, min_score)
	_rate_headers(response, result.rate_limit)
	return {
		"sourceId": result.source_id,
		"results": [_result_item(c).model_dump() for c in result.results],
		"meta": {"executionTime": round(result.execution_ms, 2), "searchType": "similar", **result.stats},
	}


@app.post("/facets")
async def facets(
	body: FiltersIn,
	request: Request,
	response: Response,
	x_user_id: Optional[str] = Header(default=None),
):
	"""Facet counts over the records matching the filter context."""
	result = await _service().facets(body.to_filters(), _client_identifier(request, x_user_id))
	_rate_headers(response, result.rate_limit)
	counts = result.facets
	return {
		"facets": {
			"total": counts.total,
			"categories": counts.categories,
			"locations": [{"name": name, "count": n} for name, n in counts.locations],
			"tags": [{"name": name, "count": n} for name, n in counts.tags],
			"witnesses": counts.witnesses,
			"dateRanges": counts.date_ranges,
		},
		"meta": {"executionTime": round(result.execution_ms, 2), "cached": result.cached},
	}


@app.post("/search/translate")
async def translate(
	body: TranslateRequest,
	request: Request,
	response: Response,
	x_user_id: Optional[str] = Header(default=None),
):
	"""Translate a query into the configured languages for cross-lingual search."""
	start = time.time()
	service = _service()
	result, rate = await service.translate(
		body.query, _client_identifier(request, x_user_id), body.source_language, body.target_languages
	)
	_rate_headers(response, rate)
	return {
		"original": result.original,
		"translations": result.translations,
		"detectedLanguage": result.detected_language,
		"meta": {
			"executionTime": round((time.time() - start) * 1000, 2),
			"cached": result.cached,
			"cacheStats": service.expander.cache.stats(),
		},
	}


@app.get("/search/autocomplete")
async def autocomplete(
	request: Request,
	response: Response,
	q: str = Query(default='', description="Prefix typed so far"),
	limit: int = Query(default=8, ge=1, le=20),
	x_user_id: Optional[str] = Header(default=None),
):
	"""Prefix suggestions over titles and tags."""
	suggestions, rate = await _service().autocomplete(q, _client_identifier(request, x_user_id), limit)
	_rate_headers(response, rate)
	return {"query": q, "suggestions": suggestions}


@app.get("/analytics/summary")
async def analytics_summary(
	request: Request,
	response: Response,
	limit: int = Query(default=10),
	x_user_id: Optional[str] = Header(default=None),
):
	"""Most frequent queries, queries that found nothing, and mean latency since startup."""
	summary, rate = _service().analytics_summary(_client_identifier(request, x_user_id), limit)
	_rate_headers(response, rate)
	return summary
