"""
Data loading and preprocessing module.
Handles loading experiences from JSONL and cleaning/normalizing the records.
"""

# Standard libs for JSON parsing, dates, typing, and paths
import json  # read JSON lines
from datetime import date, datetime  # parse occurrence dates
from typing import Any, Dict, List, Optional  # type hints
from pathlib import Path  # filesystem-safe paths

# Import our Experience data class used across the project
from .models import Experience, Profile  # structured records

# Console logging
from loguru import logger  # console logger


class DataLoader:
	"""
	Handles loading and preprocessing of experience data.
	"""

	# Category synonym mapping: common user phrasings -> canonical category slug
	CATEGORY_SYNONYMS = {
		'ufo': 'ufo-uap',
		'uap': 'ufo-uap',
		'ufo/uap': 'ufo-uap',
		'nde': 'nde-obe',
		'obe': 'nde-obe',
		'near death': 'nde-obe',
		'ghost': 'ghosts-spirits',
		'ghosts': 'ghosts-spirits',
		'spirits': 'ghosts-spirits',
		'dream': 'dreams',
		'lucid dream': 'dreams',
		'synchronicity': 'synchronicity',
		'psychedelic': 'psychedelics',
	}

	def __init__(self):
		"""Initialize the data loader and expose the synonyms mapping."""
		self.category_synonyms = self.CATEGORY_SYNONYMS  # store mapping for reuse

	def load_experiences_from_jsonl(self, filepath: str) -> List[Experience]:
		"""
		Load experiences from a JSON Lines (JSONL) file where each line is one JSON object.
		Returns a list of Experience objects.
		"""
		experiences = []  # accumulator for parsed records
		filepath = Path(filepath)  # normalize path

		# Validate the file presence early to give clear error messages
		if not filepath.exists():
			raise FileNotFoundError(f"Experience data file not found: {filepath}")

		# Read line-by-line to handle large datasets efficiently
		with open(filepath, 'r', encoding='utf-8') as f:
			for line_num, line in enumerate(f, 1):  # keep track of line number for diagnostics
				if not line.strip():
					continue  # tolerate blank lines
				try:
					data = json.loads(line.strip())  # parse JSON object per line
					experiences.append(self.parse_experience(data))  # dict -> Experience
				except json.JSONDecodeError as e:
					logger.warning(f"[DataLoader] Skipping invalid JSON at line {line_num}: {e}")  # malformed line
					continue
				except (TypeError, ValueError) as e:
					logger.warning(f"[DataLoader] Error parsing experience at line {line_num}: {e}")  # bad field
					continue

		logger.info(f"[DataLoader] Successfully loaded {len(experiences)} experiences.")  # summary
		return experiences

	def load_profiles_from_jsonl(self, filepath: str) -> List[Profile]:
		"""Load author profiles (one JSON object per line). A missing file yields no profiles."""
		filepath = Path(filepath)
		if not filepath.exists():
			logger.info(f"[DataLoader] No profile file at {filepath}; results will carry no author metadata")
			return []
		profiles = []
		with open(filepath, 'r', encoding='utf-8') as f:
			for line_num, line in enumerate(f, 1):
				if not line.strip():
					continue
				try:
					data = json.loads(line)
					profiles.append(Profile(
						id=str(data['id']),
						username=data.get('username', ''),
						display_name=data.get('display_name'),
						avatar_url=data.get('avatar_url'),
					))
				except json.JSONDecodeError as e:
					logger.warning(f"[DataLoader] Skipping invalid profile JSON at line {line_num}: {e}")
					continue
				except (KeyError, TypeError, AttributeError) as e:
					logger.warning(f"[DataLoader] Error parsing profile at line {line_num}: {e!r}")
					continue
		logger.info(f"[DataLoader] Loaded {len(profiles)} profiles.")
		return profiles

	def parse_experience(self, data: Dict[str, Any]) -> Experience:
		"""
		Convert a raw dictionary into a strongly-typed Experience.
		Performs normalization and safe defaults.
		"""
		if not data.get('id'):
			raise ValueError("experience without id")

		tags = [self._normalize_text(t) for t in self._parse_comma_separated(data.get('tags', []))]

		experience = Experience(
			id=str(data['id']),
			title=(data.get('title') or '').strip(),
			story_text=(data.get('story_text') or data.get('description') or '').strip(),
			category=self._normalize_category(data.get('category') or data.get('category_slug') or ''),
			tags=[t for t in tags if t],
			location_text=(data.get('location_text') or data.get('location') or None),
			latitude=self._parse_float(data.get('location_lat', data.get('latitude'))),
			longitude=self._parse_float(data.get('location_lng', data.get('longitude'))),
			date_occurred=self._parse_date(data.get('date_occurred') or data.get('experience_date')),
			duration=data.get('duration') or None,
			user_id=str(data['user_id']) if data.get('user_id') else None,
			attributes=dict(data.get('attributes') or {}),
		)

		# Build a single weighted text string used for embeddings and lexical ranking
		experience.searchable_text = self._create_searchable_text(experience)
		return experience

	def _parse_comma_separated(self, value) -> List[str]:
		"""
		Normalize a value that may be None, a list, or a comma-separated string
		into a list of clean strings.
		"""
		if value is None:  # missing field
			return []
		if isinstance(value, list):  # already a list
			return [str(item).strip() for item in value if item]
		if isinstance(value, str):  # comma-separated string
			return [item.strip() for item in value.split(',') if item.strip()]
		return []

	def _normalize_text(self, text: str) -> str:
		"""Lowercase and trim whitespace; handle None safely by returning empty string."""
		if not text:
			return ''
		return text.strip().lower()

	def _normalize_category(self, category: str) -> str:
		"""Map a raw category to its canonical slug using synonyms; fall back to a slugified form."""
		category_lower = self._normalize_text(category)
		if category_lower in self.category_synonyms:
			return self.category_synonyms[category_lower]
		return category_lower.replace(' ', '-')

	def _parse_float(self, value) -> Optional[float]:
		if value is None or value == '':
			return None
		return float(value)

	def _parse_date(self, value) -> Optional[date]:
		"""Accept ISO dates or ISO timestamps; anything else is treated as unknown."""
		if not value:
			return None
		if isinstance(value, date):
			return value
		try:
			return datetime.fromisoformat(str(value).replace('Z', '+00:00')).date()
		except ValueError:
			logger.debug(f"[DataLoader] Unparseable date '{value}', leaving it empty")
			return None

	def _create_searchable_text(self, experience: Experience) -> str:
		"""
		Create a weighted combined text that emphasizes the most important fields.
		Weights: title (3x), tags (2x), category (1x), location (1x), story (1x).
		"""
		parts = []
		if experience.title:
			parts.extend([experience.title] * 3)
		for tag in experience.tags:
			parts.extend([tag] * 2)
		if experience.category:
			parts.append(experience.category.replace('-', ' '))
		if experience.location_text:
			parts.append(experience.location_text)
		if experience.story_text:
			parts.append(experience.story_text)
		return ' '.join(parts)

	def get_all_categories(self, experiences: List[Experience]) -> List[str]:
		"""Return a sorted list of all unique categories in the dataset."""
		return sorted({e.category for e in experiences if e.category})
