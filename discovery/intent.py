"""
Query intent module.
Reads a free-text query and decides how much to trust semantic (vector) versus lexical
(full-text) retrieval for it. Pure heuristics over fixed rule tables, no I/O.
"""

import re  # regex for question openers and sentence separators
from dataclasses import dataclass
from typing import Optional, Tuple

from loguru import logger  # console logging

from .models import IntentResult


@dataclass(frozen=True)
class PhraseRule:
	"""A conversational pattern; `kind` only documents why the pattern is in the table."""
	kind: str
	pattern: str


@dataclass(frozen=True)
class ConceptRule:
	"""A concept tag flagged when any keyword appears as a substring of the query."""
	tag: str
	keywords: Tuple[str, ...]


@dataclass(frozen=True)
class WeightPolicy:
	vector: float
	lexical: float


# Conversational patterns. New patterns are additive data.
PHRASE_RULES: Tuple[PhraseRule, ...] = (
	PhraseRule('request', 'looking for'),
	PhraseRule('request', 'tell me about'),
	PhraseRule('request', 'show me'),
	PhraseRule('request', 'i want to'),
	PhraseRule('request', 'find me'),
	PhraseRule('request', 'searching for'),
	PhraseRule('first_person', 'i saw'),
	PhraseRule('first_person', 'has anyone'),
	PhraseRule('first_person', 'did anyone'),
	PhraseRule('descriptive', 'experiences with'),
	PhraseRule('descriptive', 'something like'),
	PhraseRule('locative', 'near the'),
	PhraseRule('locative', 'close to'),
	PhraseRule('locative', 'over the'),
)

# Category -> keyword table used for concept detection.
CONCEPT_RULES: Tuple[ConceptRule, ...] = (
	ConceptRule('ufo', ('ufo', 'uap', 'flying saucer', 'alien', 'lights in the sky', 'orbs')),
	ConceptRule('nde', ('near death', 'near-death', 'tunnel of light', 'out of body')),
	ConceptRule('paranormal', ('ghost', 'haunted', 'apparition', 'poltergeist', 'spirit')),
	ConceptRule('dreams', ('dream', 'lucid', 'nightmare')),
	ConceptRule('synchronicity', ('synchronicity', 'coincidence', 'deja vu', 'déjà vu')),
	ConceptRule('psychedelics', ('ayahuasca', 'dmt', 'psilocybin', 'mushroom', 'lsd')),
)

QUESTION_OPENERS: Tuple[str, ...] = (
	'what', 'how', 'why', 'when', 'where', 'who', 'which',
	'is there', 'are there', 'can', 'could', 'would', 'should',
)

FUNCTION_WORDS = frozenset({
	'the', 'a', 'an', 'of', 'in', 'on', 'at', 'to', 'with', 'about', 'near', 'and', 'my', 'i', 'was',
})

# Natural-language score weights
NL_LONG_QUERY_WEIGHT = 0.3
NL_PHRASE_WEIGHT = 0.4
NL_MULTI_SENTENCE_WEIGHT = 0.2
NL_FUNCTION_WORD_WEIGHT = 0.1
# Inclusive: exactly 0.5 (one phrase match plus function words, as in
# "tell me about the ghost" or "UFO sighting near the lake") is natural language
NL_THRESHOLD = 0.5
NL_MIN_WORDS = 5  # strictly more words than this counts as "long"
KEYWORD_MAX_WORDS = 3

# Calibration constants, tunable; not derived from data.
CONFIDENCE_BASE = 0.5
CONFIDENCE_KEYWORD = 0.9
CONFIDENCE_NATURAL_LANGUAGE = 0.7
CONFIDENCE_QUESTION = 0.95

# Weight policy table, not learned.
NATURAL_LANGUAGE_WEIGHTS = WeightPolicy(vector=0.8, lexical=0.2)
KEYWORD_WEIGHTS = WeightPolicy(vector=0.3, lexical=0.7)
DEFAULT_WEIGHTS = WeightPolicy(vector=0.6, lexical=0.4)


class IntentClassifier:
	"""
	Classifies queries as question, natural-language description or keyword lookup
	and maps that reading onto a vector/lexical weight split for fusion.
	"""

	RE_QUESTION_OPENER = re.compile(r"^(?:" + "|".join(re.escape(o) for o in QUESTION_OPENERS) + r")\b")
	RE_SENTENCE_SEPARATOR = re.compile(r"[.!?;]+")

	def __init__(
		self,
		phrase_rules: Tuple[PhraseRule, ...] = PHRASE_RULES,
		concept_rules: Tuple[ConceptRule, ...] = CONCEPT_RULES,
		default_weights: WeightPolicy = DEFAULT_WEIGHTS,
	):
		self.phrase_rules = phrase_rules
		self.concept_rules = concept_rules
		self.default_weights = default_weights

	def classify(self, query: Optional[str]) -> IntentResult:
		"""Main entry: produce an IntentResult from raw text."""
		q = (query or '').strip().lower()
		if not q:
			# Neutral reading; callers must not run a fused search on it
			logger.debug("[Intent] Empty query -> neutral intent")
			return IntentResult(
				is_question=False,
				is_natural_language=False,
				is_keyword=False,
				confidence=0.0,
				vector_weight=self.default_weights.vector,
				lexical_weight=self.default_weights.lexical,
			)

		words = q.split()
		word_count = len(words)

		is_question = '?' in q or bool(self.RE_QUESTION_OPENER.match(q))
		phrase_match = self._match_phrase(q)
		nl_score = self._natural_language_score(q, words, phrase_match is not None)
		is_natural_language = nl_score >= NL_THRESHOLD or is_question
		is_keyword = word_count <= KEYWORD_MAX_WORDS and not is_question and phrase_match is None

		confidence = CONFIDENCE_BASE
		if is_keyword:
			confidence = CONFIDENCE_KEYWORD
		if is_natural_language and not is_question:
			confidence = CONFIDENCE_NATURAL_LANGUAGE
		if is_question:
			confidence = CONFIDENCE_QUESTION

		if is_natural_language:
			weights = NATURAL_LANGUAGE_WEIGHTS
		elif is_keyword:
			weights = KEYWORD_WEIGHTS
		else:
			weights = self.default_weights

		concepts = self._detect_concepts(q)
		logger.debug(
			f"[Intent] '{q}' | words={word_count} question={is_question} phrase={phrase_match} "
			f"nl_score={nl_score:.2f} keyword={is_keyword} concepts={concepts} weights=({weights.vector}, {weights.lexical})"
		)
		return IntentResult(
			is_question=is_question,
			is_natural_language=is_natural_language,
			is_keyword=is_keyword,
			confidence=confidence,
			vector_weight=weights.vector,
			lexical_weight=weights.lexical,
			concepts=concepts,
		)

	def _match_phrase(self, q: str) -> Optional[PhraseRule]:
		for rule in self.phrase_rules:
			if rule.pattern in q:
				return rule
		return None

	def _natural_language_score(self, q: str, words, phrase_matched: bool) -> float:
		score = 0.0
		if len(words) > NL_MIN_WORDS:
			score += NL_LONG_QUERY_WEIGHT
		if phrase_matched:
			score += NL_PHRASE_WEIGHT
		if len(self.RE_SENTENCE_SEPARATOR.findall(q)) > 1:
			score += NL_MULTI_SENTENCE_WEIGHT
		if any(w.strip('.,!?;:') in FUNCTION_WORDS for w in words):
			score += NL_FUNCTION_WORD_WEIGHT
		return round(score, 6)

	def _detect_concepts(self, q: str) -> Tuple[str, ...]:
		return tuple(rule.tag for rule in self.concept_rules if any(k in q for k in rule.keywords))


def intent_feedback(intent: IntentResult, query: str) -> str:
	"""Short hint shown next to the results explaining how the query was read."""
	if intent.is_question:
		return "This looks like a question. Try Ask mode for a generated answer."
	if intent.is_natural_language and intent.concepts:
		return f"Understanding: {', '.join(intent.concepts)} experiences"
	if intent.is_natural_language:
		return "Finding semantically similar experiences..."
	if intent.is_keyword:
		return f'Searching for: "{query.strip()}"'
	return "Finding relevant experiences..."
