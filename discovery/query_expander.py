"""
Query expansion module.
Translates a query into the other supported languages for cross-lingual search and asks for
alternative phrasings when a search comes back empty. Both go through a text-generation provider.
"""

import asyncio
import json
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, Tuple

from openai import AsyncOpenAI  # generation provider client

from loguru import logger  # console logger

from .errors import DiscoveryError, ProviderError, ValidationError

TRANSLATION_PROMPT = """You are a translation assistant for a search system.
Translate the given search query into the requested languages while preserving search intent and key terms.
- Keep names and specific keywords in their original form where appropriate
- Use natural, commonly used search phrases in each target language
- For location names, use the local variant
- Keep abbreviations such as UFO or NDE, or use the usual local abbreviation
Return a JSON object with one key per requested language."""

SUGGESTION_PROMPT = """You help users of a search engine for personal extraordinary experiences.
The user's query returned no results. Propose short alternative search queries that are broader
or use more common wording. Return a JSON object: {"suggestions": ["...", "..."]}."""


class GenerationProvider(Protocol):
	async def generate(self, system: str, prompt: str) -> Dict[str, Any]:
		...


class OpenAIGenerator:
	"""JSON-mode chat completions. Reads OPENAI_API_KEY from the environment when no key is given."""

	def __init__(self, model: str = 'gpt-4o-mini', api_key: Optional[str] = None, temperature: float = 0.3):
		self.model = model
		self.temperature = temperature
		self._client = AsyncOpenAI(api_key=api_key) if api_key else AsyncOpenAI()

	async def generate(self, system: str, prompt: str) -> Dict[str, Any]:
		completion = await self._client.chat.completions.create(
			model=self.model,
			response_format={'type': 'json_object'},
			messages=[
				{'role': 'system', 'content': system},
				{'role': 'user', 'content': prompt},
			],
			temperature=self.temperature,
		)
		return json.loads(completion.choices[0].message.content or '{}')


@dataclass
class CacheEntry:
	translations: Dict[str, str]
	detected_language: Optional[str]
	stored_at: float


class TranslationCache:
	"""LRU cache with a TTL, keyed by lowercased query and the sorted target languages."""

	def __init__(self, max_size: int = 1000, ttl_s: float = 24 * 60 * 60, clock: Callable[[], float] = time.monotonic):
		self.max_size = max_size
		self.ttl_s = ttl_s
		self._clock = clock
		self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()

	@staticmethod
	def key(query: str, target_languages: Sequence[str]) -> str:
		return f"{query.strip().lower()}_{'_'.join(sorted(target_languages))}"

	def get(self, query: str, target_languages: Sequence[str]) -> Optional[CacheEntry]:
		key = self.key(query, target_languages)
		entry = self._entries.get(key)
		if entry is None:
			return None
		if self._clock() - entry.stored_at > self.ttl_s:
			del self._entries[key]
			return None
		self._entries.move_to_end(key)  # most recently used
		return entry

	def set(self, query: str, target_languages: Sequence[str], translations: Dict[str, str], detected_language: Optional[str]):
		key = self.key(query, target_languages)
		if key not in self._entries and len(self._entries) >= self.max_size:
			self._entries.popitem(last=False)  # evict least recently used
		self._entries[key] = CacheEntry(translations, detected_language, self._clock())
		self._entries.move_to_end(key)

	def stats(self) -> Dict[str, float]:
		return {'size': len(self._entries), 'maxSize': self.max_size, 'ttl': self.ttl_s}


@dataclass
class TranslationResult:
	original: str
	translations: Dict[str, str] = field(default_factory=dict)
	detected_language: Optional[str] = None
	cached: bool = False


class QueryExpander:
	"""Translation and suggestion front-end over a generation provider."""

	def __init__(
		self,
		generator: GenerationProvider,
		target_languages: Sequence[str] = ('de', 'en', 'fr', 'es'),
		cache: Optional[TranslationCache] = None,
		timeout_s: float = 10.0,
	):
		self.generator = generator
		self.target_languages = tuple(target_languages)
		self.cache = cache or TranslationCache()
		self.timeout_s = timeout_s

	async def translate(
		self,
		query: str,
		source_language: str = 'auto',
		target_languages: Optional[Sequence[str]] = None,
	) -> TranslationResult:
		"""Translate `query` into every target language. Raises ProviderError when the provider fails."""
		if not query or not query.strip():
			raise ValidationError("Query is required and must be a non-empty string")
		targets = list(target_languages or self.target_languages)
		if not targets:
			raise ValidationError("target_languages must be a non-empty list")

		cached = self.cache.get(query, targets)
		if cached is not None:
			logger.debug(f"[Expander] Translation cache hit for '{query}'")
			return TranslationResult(query, dict(cached.translations), cached.detected_language or source_language, True)

		prompt = (
			f"Translate the following search query into {', '.join(targets)}:\n\n"
			f"Query: \"{query.strip()}\"\n"
			+ (f"Source Language: {source_language}\n" if source_language != 'auto' else '')
			+ f"\nReturn only a JSON object with keys: {', '.join(targets)}"
		)
		payload = await self._generate(TRANSLATION_PROMPT, prompt)
		translations = {
			lang: str(text).strip() for lang, text in payload.items()
			if lang in targets and isinstance(text, str) and text.strip()
		}

		detected = None
		if source_language == 'auto':
			# The language whose translation equals the input is most likely the source
			lowered = query.strip().lower()
			detected = next((lang for lang, text in translations.items() if text.lower() == lowered), None)

		self.cache.set(query, targets, translations, detected)
		logger.info(f"[Expander] Translated '{query}' into {sorted(translations)}")
		return TranslationResult(query, translations, detected or source_language, False)

	async def expansions(self, query: str, language: Optional[str] = None) -> Tuple[Dict[str, str], List[str]]:
		"""Translations plus the distinct texts worth adding to a lexical search."""
		result = await self.translate(query, source_language=language or 'auto')
		lowered = query.strip().lower()
		texts = []
		for text in result.translations.values():
			if text.lower() != lowered and text not in texts:
				texts.append(text)
		return result.translations, texts

	async def suggest(self, query: str, limit: int = 3) -> List[str]:
		"""Alternative queries for an empty result set. Raises ProviderError when the provider fails."""
		payload = await self._generate(SUGGESTION_PROMPT, f"Query: \"{query.strip()}\"\nReturn up to {limit} suggestions.")
		suggestions = payload.get('suggestions') or []
		cleaned = [s.strip() for s in suggestions if isinstance(s, str) and s.strip()]
		return [s for s in cleaned if s.lower() != query.strip().lower()][:limit]

	async def _generate(self, system: str, prompt: str) -> Dict[str, Any]:
		try:
			payload = await asyncio.wait_for(self.generator.generate(system, prompt), self.timeout_s)
		except asyncio.TimeoutError as e:
			raise ProviderError(f"Generation provider timed out after {self.timeout_s}s") from e
		except DiscoveryError:
			raise
		except Exception as e:
			raise ProviderError(f"Generation provider failed: {e}") from e
		if not isinstance(payload, dict):
			raise ProviderError("Generation provider returned a non-object payload")
		return payload
