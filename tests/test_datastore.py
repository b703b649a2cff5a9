"""
Unit tests for the local datastore: FAISS vector order, rapidfuzz lexical order,
post-filters, similarity candidate pool and autocomplete.
Run: pytest tests/test_datastore.py
"""

import asyncio
from datetime import date

import numpy as np
import pytest

from discovery.datastore import LocalDatastore, call_datastore, matches_filters
from discovery.errors import DatastoreError, NotFoundError
from discovery.models import SearchFilters
from discovery.vector_store import VectorStore

from conftest import make_experience


@pytest.fixture
def experiences():
	return [
		make_experience('lake-lights', title='Orange lights over the lake', tags=['lights', 'lake'],
			searchable_text='orange lights over the lake lights lake'),
		make_experience('triangle', title='Black triangle', tags=['triangle'],
			searchable_text='black triangle craft triangle'),
		make_experience('attic', title='Footsteps in the attic', category='ghosts-spirits', tags=['haunted'],
			searchable_text='footsteps in the attic haunted house'),
	]


@pytest.fixture
def store(experiences):
	vectors = np.array([
		[1.0, 0.0, 0.0, 0.0],
		[0.8, 0.6, 0.0, 0.0],
		[0.0, 0.0, 1.0, 0.0],
	], dtype='float32')
	vector_store = VectorStore(4)
	vector_store.add_experiences(experiences, vectors)
	return vector_store


@pytest.fixture
def datastore(experiences, store):
	return LocalDatastore(experiences, store)


@pytest.mark.asyncio
async def test_fused_search_returns_both_rank_lists(datastore):
	hits = await datastore.fused_search('lights over the lake', [1.0, 0.1, 0.0, 0.0], 'en', 0.8, 0.2, None, 10)
	assert [h.id for h in hits.vector] == ['lake-lights', 'triangle', 'attic']
	assert [h.rank for h in hits.vector] == [1, 2, 3]
	assert hits.lexical[0].id == 'lake-lights'
	assert hits.lexical[0].rank == 1


@pytest.mark.asyncio
async def test_fused_search_respects_category_and_missing_embedding(datastore):
	hits = await datastore.fused_search('footsteps attic', None, None, 0.0, 1.0, 'ghosts-spirits', 10)
	assert hits.vector == []
	assert [h.id for h in hits.lexical] == ['attic']

	hits = await datastore.fused_search('lights', [0.0, 0.0, 1.0, 0.0], None, 1.0, 0.0, 'ufo-uap', 10)
	assert 'attic' not in [h.id for h in hits.vector]
	assert hits.lexical == []


@pytest.mark.asyncio
async def test_similarity_candidates_exclude_source(datastore, experiences):
	pool = await datastore.similarity_candidates(experiences[0], 10)
	ids = [e.id for e in pool]
	assert 'lake-lights' not in ids
	assert ids[0] == 'triangle'  # same category first
	assert set(ids) == {'triangle', 'attic'}


@pytest.mark.asyncio
async def test_autocomplete_prefix_then_fuzzy(datastore):
	assert await datastore.autocomplete('Foot', 5) == ['Footsteps in the attic']
	suggestions = await datastore.autocomplete('triangl', 5)
	assert 'triangle' in suggestions
	assert await datastore.autocomplete('   ', 5) == []


@pytest.mark.asyncio
async def test_list_experiences_applies_filters(datastore):
	rows = await datastore.list_experiences(SearchFilters(category='ufo-uap'), 10)
	assert {e.id for e in rows} == {'lake-lights', 'triangle'}
	rows = await datastore.list_experiences(SearchFilters(), 1)
	assert len(rows) == 1


def test_matches_filters_rules():
	experience = make_experience(
		'x', tags=['Lake', 'lights'], location_text='Konstanz, Germany',
		date_occurred=date(2024, 8, 14), attributes={'witnesses': 2},
	)
	assert matches_filters(experience, SearchFilters(tags=['lake', 'triangle']))
	assert not matches_filters(experience, SearchFilters(exclude_tags=['LIGHTS']))
	assert matches_filters(experience, SearchFilters(location='konstanz'))
	assert not matches_filters(experience, SearchFilters(location='zurich'))
	assert matches_filters(experience, SearchFilters(date_from=date(2024, 8, 14), date_to=date(2024, 8, 14)))
	assert not matches_filters(experience, SearchFilters(date_to=date(2024, 1, 1)))
	assert matches_filters(experience, SearchFilters(witnesses_only=True))
	assert not matches_filters(make_experience('y'), SearchFilters(witnesses_only=True))
	assert not matches_filters(make_experience('y'), SearchFilters(date_from=date(2020, 1, 1)))


@pytest.mark.asyncio
async def test_call_datastore_wraps_failures():
	async def boom():
		raise KeyError('row')

	async def slow():
		await asyncio.sleep(1)

	async def missing():
		raise NotFoundError('gone')

	with pytest.raises(DatastoreError):
		await call_datastore('boom', boom(), 1.0)
	with pytest.raises(DatastoreError):
		await call_datastore('slow', slow(), 0.05)
	with pytest.raises(NotFoundError):
		await call_datastore('missing', missing(), 1.0)


def test_vector_store_round_trip(store, tmp_path):
	base = str(tmp_path / 'faiss_index')
	store.save_index(base)
	assert VectorStore.index_files_exist(base)

	loaded = VectorStore.load_index(base)
	assert loaded.size() == 3
	assert loaded.search([0.0, 0.0, 1.0, 0.0], top_k=1)[0][0] == 'attic'
	assert np.allclose(loaded.get_embedding('attic'), [0.0, 0.0, 1.0, 0.0])
	assert loaded.get_embedding('unknown') is None
