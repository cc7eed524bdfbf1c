"""
Empirical estimate of the comparator's error rate from the votes it cast.

With a perfect comparator every "good" (False) vote sits strictly before
every "bad" (True) vote. An inversion is a False vote at or after a True
vote. Comparing the inversion count with the number expected from votes
cast at random gives the flakiness estimate

    flakiness = 1 - sqrt(max(0, 1 - (inversions + 1) / (random / 4 + 4/3)))

which is 0.5 for an empty tracker and tends to 0 for consistent votes.
A comparator that lies with probability `p` has flakiness `2p`, so the
estimated error rate is half the flakiness.
"""

from __future__ import annotations

import math
from collections import defaultdict
from typing import Dict, Hashable, List, Tuple

from robust_bisect.dag import CommitDAG


def flakiness_from_inversions(inversions: int, random_inversions: int) -> float:
    tmp = 1.0 - (inversions + 1) / (random_inversions / 4.0 + 4.0 / 3.0)
    return 1.0 - math.sqrt(max(tmp, 0.0))


class FlakinessTracker:
    """Votes over a linear range, keyed by index."""

    def __init__(self) -> None:
        # index -> [tails, heads]
        self._votes: Dict[int, List[int]] = defaultdict(lambda: [0, 0])
        self.total_heads = 0
        self.total_tails = 0

    @property
    def total_votes(self) -> int:
        return self.total_heads + self.total_tails

    def report(self, index: int, heads: bool) -> None:
        vote = self._votes[int(index)]
        if heads:
            vote[1] += 1
            self.total_heads += 1
        else:
            vote[0] += 1
            self.total_tails += 1

    def inversions(self) -> Tuple[int, int]:
        """Return `(inversions, random_inversions)`."""
        heads_before = 0
        votes_before = 0
        inverted = 0
        random_inversions = 0
        for index in sorted(self._votes):
            tails, heads = self._votes[index]
            votes = tails + heads
            random_inversions += votes * votes + votes * votes_before
            inverted += tails * heads_before + tails * heads
            heads_before += heads
            votes_before += votes
        return inverted, random_inversions

    def flakiness(self) -> float:
        return flakiness_from_inversions(*self.inversions())

    def error_rate(self) -> float:
        return self.flakiness() / 2.0


class DAGFlakinessTracker:
    """
    Votes over a commit DAG, keyed by node.

    A vote at a strict ancestor counts as "before": a False vote below a True
    vote at one of its ancestors is an inversion.
    """

    def __init__(self, dag: CommitDAG) -> None:
        self.dag = dag
        self._votes: Dict[int, List[int]] = defaultdict(lambda: [0, 0])
        self.total_heads = 0
        self.total_tails = 0

    @property
    def total_votes(self) -> int:
        return self.total_heads + self.total_tails

    def report(self, node: Hashable, heads: bool) -> None:
        vote = self._votes[self.dag.rank(node)]
        if heads:
            vote[1] += 1
            self.total_heads += 1
        else:
            vote[0] += 1
            self.total_tails += 1

    def inversions(self) -> Tuple[int, int]:
        inverted = 0
        random_inversions = 0
        for rank, (tails, heads) in self._votes.items():
            votes = tails + heads
            heads_before = 0
            votes_before = 0
            for ancestor in self.dag.ancestors(rank):
                if ancestor in self._votes:
                    a_tails, a_heads = self._votes[ancestor]
                    heads_before += a_heads
                    votes_before += a_tails + a_heads
            random_inversions += votes * votes + votes * votes_before
            inverted += tails * heads_before + tails * heads
        return inverted, random_inversions

    def flakiness(self) -> float:
        return flakiness_from_inversions(*self.inversions())

    def error_rate(self) -> float:
        return self.flakiness() / 2.0
