"""
Unit tests for weighted Reciprocal Rank Fusion and the FusionExecutor pipeline.
Ranks are 1-indexed, k defaults to 60.
Run: pytest tests/test_fusion.py
"""

import asyncio
import time

import pytest

from discovery.errors import DatastoreError
from discovery.fusion import FusionExecutor, rrf_fuse
from discovery.models import Query, RankedId, SearchFilters

from conftest import FakeDatastore, FakeEmbedder


def ranked(*ids):
	return [RankedId(eid, rank) for rank, eid in enumerate(ids, 1)]


def test_rrf_score_formula():
	result = rrf_fuse(ranked('a', 'b'), ranked('b'), 0.6, 0.4, k=60)
	scores = {c.id: c.score for c in result}
	assert scores['a'] == pytest.approx(0.6 / 61)
	assert scores['b'] == pytest.approx(0.6 / 62 + 0.4 / 61)


def test_absent_list_contributes_nothing():
	result = rrf_fuse(ranked('a'), ranked('b'), 0.5, 0.5)
	by_id = {c.id: c for c in result}
	assert by_id['a'].lexical_rank is None
	assert by_id['b'].vector_rank is None
	assert by_id['a'].score == pytest.approx(0.5 / 61)
	assert by_id['b'].score == pytest.approx(0.5 / 61)


def test_result_is_union_sorted_descending():
	result = rrf_fuse(ranked('a', 'b', 'c'), ranked('d', 'c', 'a'), 0.6, 0.4)
	assert {c.id for c in result} == {'a', 'b', 'c', 'd'}
	scores = [c.score for c in result]
	assert scores == sorted(scores, reverse=True)


def test_limit_truncates():
	result = rrf_fuse(ranked('a', 'b', 'c'), ranked('d', 'e'), 0.5, 0.5, limit=2)
	assert len(result) == 2


def test_fusion_is_deterministic():
	vector = ranked('x', 'y', 'z', 'w')
	lexical = ranked('w', 'z', 'q')
	first = [(c.id, c.score) for c in rrf_fuse(vector, lexical, 0.7, 0.3)]
	second = [(c.id, c.score) for c in rrf_fuse(vector, lexical, 0.7, 0.3)]
	assert first == second


@pytest.mark.parametrize('vector_weight', [0.05, 0.3, 0.5, 0.8, 0.95])
def test_top_of_both_lists_beats_single_list_candidates(vector_weight):
	vector = ranked('both', 'v1', 'v2')
	lexical = ranked('both', 'l1', 'l2')
	result = rrf_fuse(vector, lexical, vector_weight, 1 - vector_weight)
	assert result[0].id == 'both'
	assert all(result[0].score >= c.score for c in result)


def test_ties_prefer_better_vector_rank_then_lexical_then_id():
	# 'a' only in vector at rank 1, 'b' only in lexical at rank 1: equal scores at 0.5/0.5
	result = rrf_fuse(ranked('a'), ranked('b'), 0.5, 0.5)
	assert [c.id for c in result] == ['a', 'b']

	# Neither in the vector list: the better lexical rank wins, then the identifier
	result = rrf_fuse([], [RankedId('z', 1), RankedId('m', 1)], 0.0, 1.0)
	assert [c.id for c in result] == ['m', 'z']


def test_duplicate_ids_keep_best_rank():
	result = rrf_fuse([RankedId('a', 3), RankedId('a', 1)], [], 1.0, 0.0)
	assert result[0].vector_rank == 1


@pytest.mark.asyncio
async def test_fuse_returns_limited_ordered_candidates_with_profiles(corpus, profiles):
	datastore = FakeDatastore(corpus, vector=['e1', 'e2', 'e4'], lexical=['e2', 'e1', 'e3'], profiles=profiles)
	executor = FusionExecutor(datastore, embedder=FakeEmbedder(), timeout_s=1.0)

	result = await executor.fuse(Query("lights over the lake"), (0.8, 0.2), limit=2)

	assert [c.id for c in result.candidates] == ['e1', 'e2']
	assert (result.vector_weight, result.lexical_weight) == (0.8, 0.2)
	assert not result.embedding_failed
	assert result.candidates[0].experience.title == 'Orange lights over the lake'
	assert result.candidates[0].profile.username == 'skywatcher'
	assert result.candidates[1].profile.username == 'nightowl'
	assert datastore.fused_calls[0]['limit'] == 50


@pytest.mark.asyncio
async def test_embedding_failure_falls_back_to_lexical_only(corpus):
	datastore = FakeDatastore(corpus, vector=['e4'], lexical=['e3', 'e1'])
	executor = FusionExecutor(datastore, embedder=FakeEmbedder(error=RuntimeError("model down")), timeout_s=1.0)

	result = await executor.fuse(Query("haunted attic"), (0.8, 0.2))

	assert result.embedding_failed
	assert (result.vector_weight, result.lexical_weight) == (0.0, 1.0)
	assert [c.id for c in result.candidates] == ['e3', 'e1']
	assert datastore.fused_calls[0]['query_embedding'] is None


@pytest.mark.asyncio
async def test_slow_embedder_times_out_into_fallback(corpus):
	class SlowEmbedder:
		def embed(self, text):
			time.sleep(0.3)
			return [1.0]

	datastore = FakeDatastore(corpus, lexical=['e1'])
	executor = FusionExecutor(datastore, embedder=SlowEmbedder(), timeout_s=0.05)
	result = await executor.fuse(Query("lights"), (0.3, 0.7))
	assert result.embedding_failed
	assert result.lexical_weight == 1.0


@pytest.mark.asyncio
async def test_datastore_failure_aborts(corpus):
	datastore = FakeDatastore(corpus, error=ConnectionError("db gone"))
	executor = FusionExecutor(datastore, embedder=FakeEmbedder(), timeout_s=1.0)
	with pytest.raises(DatastoreError) as info:
		await executor.fuse(Query("lights"), (0.6, 0.4))
	assert info.value.retryable


@pytest.mark.asyncio
async def test_datastore_timeout_is_retryable(corpus):
	class HangingDatastore(FakeDatastore):
		async def fused_search(self, *args):
			await asyncio.sleep(1)

	executor = FusionExecutor(HangingDatastore(corpus), embedder=FakeEmbedder(), timeout_s=0.05)
	with pytest.raises(DatastoreError):
		await executor.fuse(Query("lights"), (0.6, 0.4))


@pytest.mark.asyncio
async def test_post_filters_and_category_push_down(corpus):
	datastore = FakeDatastore(corpus, vector=['e1', 'e2', 'e3'], lexical=['e3', 'e2', 'e1'])
	executor = FusionExecutor(datastore, embedder=FakeEmbedder(), timeout_s=1.0)

	result = await executor.fuse(Query("lake"), (0.5, 0.5), SearchFilters(category='ufo-uap', tags=['triangle']))

	assert [c.id for c in result.candidates] == ['e2']
	assert datastore.fused_calls[0]['category'] == 'ufo-uap'


@pytest.mark.asyncio
async def test_expansions_widen_lexical_text_only(corpus):
	datastore = FakeDatastore(corpus, lexical=['e1'])
	embedder = FakeEmbedder()
	executor = FusionExecutor(datastore, embedder=embedder, timeout_s=1.0)

	await executor.fuse(Query("lights"), (0.6, 0.4), expansions=['Lichter', 'lights', 'lumières'])

	assert embedder.calls == ['lights']
	assert datastore.fused_calls[0]['query_text'] == 'lights Lichter lumières'


@pytest.mark.asyncio
async def test_enrichment_keeps_ranking_order(corpus, profiles):
	datastore = FakeDatastore(corpus, vector=['e3', 'e2', 'e1'], lexical=['e3', 'e2', 'e1'], profiles=profiles)
	executor = FusionExecutor(datastore, embedder=FakeEmbedder(), timeout_s=1.0)
	result = await executor.fuse(Query("anything"), (0.6, 0.4))
	bare = rrf_fuse(ranked('e3', 'e2', 'e1'), ranked('e3', 'e2', 'e1'), 0.6, 0.4)
	assert [c.id for c in result.candidates] == [c.id for c in bare]
