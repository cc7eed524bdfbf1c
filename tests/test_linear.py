import math

import numpy as np
import pytest

from conftest import ScriptedComparator, drive
from robust_bisect.config import SearchConfig
from robust_bisect.errors import PreconditionError
from robust_bisect.linear import LinearSearcher
from robust_bisect.results import SearchStatus
from robust_bisect.simulate import NoisyComparator


def test_first_queries_split_the_range(noiseless):
    searcher = LinearSearcher(8, noiseless)
    assert searcher.next_query() == 3
    # Asking twice does not change the answer.
    assert searcher.next_query() == 3
    assert len(searcher) == 8
    assert searcher.total() == pytest.approx(1.0)


def test_noiseless_search_walkthrough(noiseless):
    searcher = LinearSearcher(8, noiseless)
    history = drive(searcher, ScriptedComparator(lambda x: x >= 5))
    assert history == [(3, False), (5, True), (4, False)]
    assert searcher.status is SearchStatus.CONVERGED
    assert searcher.leading() == (5, pytest.approx(1.0))
    assert searcher.iterations == 3
    assert searcher.next_query() is None


@pytest.mark.parametrize("size", range(1, 41))
def test_noiseless_search_finds_every_target(noiseless, size):
    bound = math.ceil(math.log2(size)) if size > 1 else 0
    for target in range(size):
        searcher = LinearSearcher(size, noiseless)
        drive(searcher, ScriptedComparator(lambda x: x >= target))
        assert searcher.status is SearchStatus.CONVERGED
        assert searcher.leading()[0] == target
        assert searcher.iterations <= bound


def test_single_position_converges_immediately(noisy):
    searcher = LinearSearcher(1, noisy)
    assert searcher.terminal
    assert searcher.status is SearchStatus.CONVERGED
    assert searcher.next_query() is None
    assert searcher.result().position == 0
    assert searcher.result().iterations == 0


def test_same_answers_give_same_queries(noisy):
    flips = {2, 5}
    first = LinearSearcher(50, noisy)
    second = LinearSearcher(50, noisy)
    assert drive(first, ScriptedComparator(lambda x: x >= 17, flips)) == drive(
        second, ScriptedComparator(lambda x: x >= 17, flips)
    )
    assert first.weights() == second.weights()


def test_weights_stay_normalized(noisy):
    searcher = LinearSearcher(30, noisy)
    comparator = ScriptedComparator(lambda x: x >= 11, flips={1, 4, 9})
    while not searcher.terminal:
        position = searcher.next_query()
        searcher.report(position, comparator(position))
        assert sum(searcher.weights()) == pytest.approx(1.0)
        assert all(w >= 0.0 for w in searcher.weights())


def test_recovers_from_a_lie(noisy):
    searcher = LinearSearcher(16, noisy)
    drive(searcher, ScriptedComparator(lambda x: x >= 9, flips={1}))
    assert searcher.status is SearchStatus.CONVERGED
    assert searcher.leading()[0] == 9


def test_report_after_termination_raises(noiseless):
    searcher = LinearSearcher(4, noiseless)
    drive(searcher, ScriptedComparator(lambda x: x >= 2))
    with pytest.raises(PreconditionError):
        searcher.report(1, True)


@pytest.mark.parametrize("position", [-1, 8, 2.5, "3", True])
def test_invalid_positions(noisy, position):
    searcher = LinearSearcher(8, noisy)
    with pytest.raises(PreconditionError):
        searcher.report(position, True)
    with pytest.raises(PreconditionError):
        searcher.likelihood(position)
    assert searcher.iterations == 0


@pytest.mark.parametrize("size", [0, -3, 2.0, True])
def test_invalid_size(noisy, size):
    with pytest.raises(PreconditionError):
        LinearSearcher(size, noisy)


def test_config_must_be_search_config():
    with pytest.raises(PreconditionError):
        LinearSearcher(8, {"error_rate": 0.1})


def test_iteration_limit_stops_search():
    config = SearchConfig(error_rate=0.05, max_iterations=2)
    searcher = LinearSearcher(64, config)
    drive(searcher, ScriptedComparator(lambda x: x >= 40))
    assert searcher.status is SearchStatus.ITERATION_LIMIT
    assert searcher.iterations == 2
    result = searcher.result()
    assert not result.converged
    assert result.confidence < config.target_confidence


def test_contradiction_exhausts_noiseless_search(noiseless):
    searcher = LinearSearcher(8, noiseless)
    searcher.report(3, True)
    before = searcher.weights()
    searcher.report(3, False)
    assert searcher.status is SearchStatus.EXHAUSTED
    assert searcher.weights() == before
    assert searcher.result().position == 0
    assert searcher.result().confidence == pytest.approx(0.25)


def test_excluded_positions_are_never_queried(noiseless):
    searcher = LinearSearcher(8, noiseless)
    searcher.exclude(3)
    history = drive(searcher, ScriptedComparator(lambda x: x >= 5))
    assert [position for position, _ in history] == [2, 4, 5]
    assert searcher.leading()[0] == 5
    with pytest.raises(PreconditionError):
        searcher.exclude(99)


def test_excluding_every_split_exhausts(noisy):
    searcher = LinearSearcher(2, noisy)
    searcher.exclude(0)
    assert searcher.status is SearchStatus.EXHAUSTED
    assert searcher.likelihood(0) == pytest.approx(0.5)


def test_abort_keeps_leader(noisy):
    searcher = LinearSearcher(8, noisy)
    searcher.report(3, True)
    searcher.abort()
    assert searcher.status is SearchStatus.ABORTED
    result = searcher.result()
    assert result.position == 0
    assert result.iterations == 1


def test_belief_in_target_grows_on_average():
    size, target, steps, trials = 64, 41, 4, 300
    config = SearchConfig(error_rate=0.05)
    rng = np.random.default_rng(7)
    totals = np.zeros(steps + 1)
    for _ in range(trials):
        searcher = LinearSearcher(size, config)
        comparator = NoisyComparator(lambda x: x >= target, 0.05, rng)
        totals[0] += searcher.likelihood(target)
        for step in range(1, steps + 1):
            position = searcher.next_query()
            searcher.report(position, comparator(position))
            totals[step] += searcher.likelihood(target)
    means = totals / trials
    assert np.all(np.diff(means) > 0)


def test_noisy_search_is_usually_right():
    config = SearchConfig(error_rate=0.05)
    rng = np.random.default_rng(2024)
    trials, correct = 100, 0
    for _ in range(trials):
        searcher = LinearSearcher(100, config)
        drive(searcher, NoisyComparator(lambda x: x >= 37, 0.05, rng))
        result = searcher.result()
        correct += (
            result.position == 37
            and result.status is SearchStatus.CONVERGED
            and result.confidence >= 0.99
        )
    assert correct >= 90


def test_leading_on_a_range_of_billions():
    searcher = LinearSearcher(4 * 10**9, SearchConfig(error_rate=0.05))
    assert searcher.leading()[0] == 0
    searcher.report(1999999995, False)
    position, weight = searcher.leading()
    assert position == 1999999996
    assert weight == searcher.likelihood(1999999996)
    assert weight == pytest.approx(4.75e-10, rel=1e-6)
    assert searcher.likelihood(0) == pytest.approx(2.5e-11, rel=1e-6)
