"""
Unit tests for DataLoader: parsing, normalization and the bundled sample corpus.
Run: pytest tests/test_data_loader.py
"""

import json
from datetime import date

import pytest

from discovery.data_loader import DataLoader

from conftest import ROOT


@pytest.fixture
def loader():
	return DataLoader()


def write_jsonl(path, rows):
	path.write_text('\n'.join(r if isinstance(r, str) else json.dumps(r) for r in rows), encoding='utf-8')
	return str(path)


def test_parse_experience_normalizes_fields(loader):
	experience = loader.parse_experience({
		'id': 42,
		'title': '  Lights over the lake ',
		'description': 'They hovered.',
		'category_slug': 'UFO/UAP',
		'tags': 'Lake, Lights ,',
		'location': 'Konstanz',
		'latitude': '47.66',
		'longitude': 9.18,
		'experience_date': '2024-08-14T21:30:00Z',
		'attributes': {'witnesses': ['Anna']},
	})

	assert experience.id == '42'
	assert experience.title == 'Lights over the lake'
	assert experience.story_text == 'They hovered.'
	assert experience.category == 'ufo-uap'
	assert experience.tags == ['lake', 'lights']
	assert experience.location_text == 'Konstanz'
	assert experience.latitude == 47.66
	assert experience.has_coordinates()
	assert experience.date_occurred == date(2024, 8, 14)
	assert experience.witness_count() == 1


def test_searchable_text_weights_title_and_tags(loader):
	experience = loader.parse_experience({'id': 'x', 'title': 'Orbs', 'tags': ['alps'], 'category': 'ufo'})
	text = experience.searchable_text
	assert text.count('Orbs') == 3
	assert text.count('alps') == 2
	assert 'ufo uap' in text


def test_unknown_category_is_slugified(loader):
	assert loader.parse_experience({'id': 'x', 'category': 'Time Slip'}).category == 'time-slip'


def test_bad_dates_are_left_empty(loader):
	assert loader.parse_experience({'id': 'x', 'date_occurred': 'last summer'}).date_occurred is None


def test_load_skips_invalid_lines(loader, tmp_path):
	path = write_jsonl(tmp_path / 'experiences.jsonl', [
		{'id': 'a', 'title': 'One'},
		'{not json',
		'',
		{'title': 'no id'},
		{'id': 'b', 'title': 'Two', 'latitude': 'north'},
		{'id': 'c', 'title': 'Three'},
	])
	experiences = loader.load_experiences_from_jsonl(path)
	assert [e.id for e in experiences] == ['a', 'c']


def test_missing_file_raises(loader, tmp_path):
	with pytest.raises(FileNotFoundError):
		loader.load_experiences_from_jsonl(str(tmp_path / 'nope.jsonl'))


def test_missing_profile_file_yields_nothing(loader, tmp_path):
	assert loader.load_profiles_from_jsonl(str(tmp_path / 'profiles.jsonl')) == []


def test_load_profiles_skips_invalid_lines(loader, tmp_path):
	path = write_jsonl(tmp_path / 'profiles.jsonl', [
		{'id': 'u1', 'username': 'skywatcher'},
		'{broken',
		{'username': 'no id'},
		'["not", "an", "object"]',
		{'id': 7, 'username': 'nightowl', 'display_name': 'Nora'},
	])
	profiles = loader.load_profiles_from_jsonl(path)
	assert [p.id for p in profiles] == ['u1', '7']
	assert profiles[1].display_name == 'Nora'


def test_sample_corpus(loader):
	experiences = loader.load_experiences_from_jsonl(str(ROOT / 'data' / 'experiences.jsonl'))
	profiles = loader.load_profiles_from_jsonl(str(ROOT / 'data' / 'profiles.jsonl'))

	assert len(experiences) == 12
	assert len(profiles) == 5
	assert all(e.searchable_text for e in experiences)
	assert loader.get_all_categories(experiences) == [
		'dreams', 'ghosts-spirits', 'nde-obe', 'psychedelics', 'synchronicity', 'ufo-uap',
	]
	assert {e.user_id for e in experiences} <= {p.id for p in profiles}
