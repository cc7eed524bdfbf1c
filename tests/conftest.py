import pytest

from robust_bisect.config import SearchConfig


class ScriptedComparator:
    """
    Truthful comparator that lies on chosen call numbers.

    `flips` holds 1-based call indices whose answer is inverted, so two
    searchers that issue the same queries see exactly the same lies.
    """

    def __init__(self, truth, flips=()):
        self.truth = truth
        self.flips = set(flips)
        self.calls = []

    def __call__(self, position):
        self.calls.append(position)
        answer = bool(self.truth(position))
        if len(self.calls) in self.flips:
            return not answer
        return answer


def drive(searcher, comparator):
    """Run `searcher` to completion; returns the list of (position, response) pairs."""
    history = []
    while not searcher.terminal:
        position = searcher.next_query()
        response = comparator(position)
        history.append((position, response))
        searcher.report(position, response)
    return history


@pytest.fixture
def noiseless():
    return SearchConfig(error_rate=0.0, target_confidence=0.99)


@pytest.fixture
def noisy():
    return SearchConfig(error_rate=0.05, target_confidence=0.99)
