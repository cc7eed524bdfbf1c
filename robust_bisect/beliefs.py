"""
Belief store: a normalized probability distribution over candidate positions.

Positions are grouped into ordered blocks (one block for a linear range, one
per segment for a compressed DAG). Each block keeps its members' weights in a
`RangeWeights`. The update is the multiplicative-weights rule for a comparator
with a fixed error rate `p`: every position consistent with the answer is
multiplied by `(1 - p)`, every inconsistent one by `p`, and the vector is
renormalized.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Collection, Dict, Hashable, Iterable, Iterator, Mapping, Optional

from robust_bisect.errors import ExhaustedDomain, PreconditionError
from robust_bisect.ranges import TIE_TOLERANCE, RangeWeights

logger = logging.getLogger(__name__)

Handle = Hashable
RankFn = Callable[[Handle, int], int]


@dataclass(frozen=True)
class SplitChoice:
    """A candidate query: member `index` of block `handle`, whose closed down-set weighs `down`."""

    handle: Handle
    index: int
    down: float
    distance: float


@dataclass(frozen=True)
class Leader:
    handle: Handle
    index: int
    weight: float


class BeliefStore:
    """
    Normalized weights over positions grouped into ordered blocks.

    Blocks are addressed by handles; iteration follows insertion order, which
    callers keep topological. Ranks used for tie-breaking are supplied by the
    caller through a `rank_of(handle, index)` function.
    """

    def __init__(self, sizes: Optional[Mapping[Handle, int]] = None) -> None:
        self._blocks: Dict[Handle, RangeWeights] = {}
        if sizes is not None:
            self.initialize(sizes)

    def initialize(self, sizes: Mapping[Handle, int]) -> None:
        """Reset to a uniform distribution over `sum(sizes.values())` positions."""
        n = sum(int(size) for size in sizes.values())
        self._blocks = {}
        if n <= 0:
            return
        weight = 1.0 / n
        for handle, size in sizes.items():
            self._blocks[handle] = RangeWeights(int(size), weight)

    def __len__(self) -> int:
        return sum(len(block) for block in self._blocks.values())

    def __contains__(self, handle: Handle) -> bool:
        return handle in self._blocks

    def handles(self) -> Iterator[Handle]:
        return iter(self._blocks)

    def block(self, handle: Handle) -> RangeWeights:
        return self._blocks[handle]

    def block_total(self, handle: Handle) -> float:
        return self._blocks[handle].total()

    def totals(self) -> Dict[Handle, float]:
        return {handle: block.total() for handle, block in self._blocks.items()}

    def total(self) -> float:
        return sum(block.total() for block in self._blocks.values())

    def weight(self, handle: Handle, index: int) -> float:
        return self._blocks[handle].weight(index)

    def reorder(self, order: Iterable[Handle]) -> None:
        """Re-sequence blocks to follow `order`, which must list every handle exactly once."""
        order = list(order)
        if len(order) != len(self._blocks) or set(order) != set(self._blocks):
            raise PreconditionError("reorder() must list every block handle exactly once")
        self._blocks = {handle: self._blocks[handle] for handle in order}

    def merge(self, first: Handle, second: Handle, into: Handle) -> None:
        """Concatenate block `second` after block `first` and store the result under `into`."""
        if first == second:
            raise PreconditionError(f"Cannot merge block {first!r} with itself")
        head = self._blocks.pop(first)
        tail = self._blocks.pop(second)
        head.extend(tail)
        self._blocks[into] = head

    def update(
        self,
        handle: Handle,
        index: int,
        response: bool,
        error_rate: float,
        below: Collection[Handle] = (),
    ) -> float:
        """
        Apply one multiplicative-weights step for a query at member `index` of `handle`.

        The closed down-set of the query is every block in `below` plus members
        `[0, index]` of `handle`. A True response asserts the target is in the
        down-set, a False response asserts it is in the complement.

        Returns the normalization constant. Raises `ExhaustedDomain`, leaving
        the weights untouched, when the domain is empty or the update would
        collapse all mass to zero.
        """
        if not self._blocks:
            raise ExhaustedDomain("update() on an empty domain")
        if handle not in self._blocks:
            raise PreconditionError(f"Unknown block handle {handle!r}")
        block = self._blocks[handle]
        if index < 0 or index >= len(block):
            raise PreconditionError(f"index {index} out of range for block of length {len(block)}")

        totals = self.totals()
        total = sum(totals.values())
        down = block.prefix(index) + sum(totals[h] for h in below if h != handle)
        up = max(total - down, 0.0)
        p = float(error_rate)
        keep, drop = 1.0 - p, p
        new_total = keep * down + drop * up if response else keep * up + drop * down
        if not new_total > 0.0 or new_total == float("inf"):
            raise ExhaustedDomain(
                f"Belief mass collapsed (down={down}, up={up}, response={response}, p={p})"
            )

        down_factor = (keep if response else drop) / new_total
        up_factor = (drop if response else keep) / new_total
        below_set = set(below)
        for h, other in self._blocks.items():
            if h == handle:
                other.scale(0, index + 1, down_factor)
                other.scale(index + 1, len(other), up_factor)
            elif h in below_set:
                other.scale_all(down_factor)
            else:
                other.scale_all(up_factor)
        logger.debug(
            "update handle=%r index=%d response=%s down=%.6g new_total=%.6g",
            handle,
            index,
            response,
            down,
            new_total,
        )
        return new_total

    def leading(self, rank_of: RankFn) -> Leader:
        """
        Return the heaviest position.

        Positions within a `TIE_TOLERANCE` fraction of the maximum weight are
        tied and the lowest rank wins.
        """
        if not self._blocks:
            raise ExhaustedDomain("leading() on an empty domain")
        top = max(block.max_weight() for block in self._blocks.values())
        threshold = top - TIE_TOLERANCE * top
        best: Optional[Leader] = None
        best_rank = 0
        for handle, block in self._blocks.items():
            index = block.first_at_least(threshold)
            if index is None:
                continue
            rank = rank_of(handle, index)
            if best is None or rank < best_rank:
                best, best_rank = Leader(handle, index, block.weight(index)), rank
        assert best is not None
        return best

    def nearest_split(
        self,
        bases: Mapping[Handle, float],
        rank_of: RankFn,
        excluded: Optional[Mapping[Handle, Collection[int]]] = None,
    ) -> Optional[SplitChoice]:
        """
        Pick the query whose closed down-set weight is closest to half the total mass.

        `bases[h]` is the mass of the strict predecessors of block `h`.
        Candidates within `TIE_TOLERANCE` of the closest distance are tied and
        the lowest rank wins. Returns None when every position is excluded.
        """
        if not self._blocks:
            return None
        half = self.total() / 2.0
        skips = {h: (excluded.get(h, ()) if excluded else ()) for h in self._blocks}
        distances = [
            block.min_distance(bases[h], half, skips[h]) for h, block in self._blocks.items()
        ]
        found = [d for d in distances if d is not None]
        if not found:
            return None
        bound = min(found) + TIE_TOLERANCE

        best: Optional[SplitChoice] = None
        best_rank = 0
        for handle, block in self._blocks.items():
            candidate = block.first_within(bases[handle], half, bound, skips[handle])
            if candidate is None:
                continue
            rank = rank_of(handle, candidate.index)
            if best is None or rank < best_rank:
                best = SplitChoice(handle, candidate.index, candidate.prefix, candidate.distance)
                best_rank = rank
        return best
