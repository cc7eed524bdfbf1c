"""
Run-length encoded weight vectors.

A `RangeWeights` is a fixed-length vector of per-member weights stored as
contiguous runs of equal weight. Multiplicative updates only ever scale whole
prefixes or suffixes, so members that were never separated by a query keep
identical weights and stay in one run: the cost of an update or of a
weighted-median lookup is proportional to the number of runs, not to the
number of members.

Example, for runs

    WeightRun(offset=0, length=1, weight=0.1)
    WeightRun(offset=1, length=3, weight=0.2)
    WeightRun(offset=4, length=2, weight=0.05)

the represented vector is `[0.1, 0.2, 0.2, 0.2, 0.05, 0.05]`.
"""

from __future__ import annotations

import bisect
from dataclasses import dataclass
from typing import Collection, Iterator, List, Optional, Tuple

from robust_bisect.errors import PreconditionError

# Split distances within this of the best one, and weights within this
# fraction of the heaviest, are tied; ties go to the lowest rank.
# Summation-order noise is far below it.
TIE_TOLERANCE = 1e-9


@dataclass
class WeightRun:
    """A run of `length` members starting at `offset`, each with weight `weight`."""

    offset: int
    length: int
    weight: float

    @property
    def end(self) -> int:
        return self.offset + self.length

    @property
    def mass(self) -> float:
        return self.length * self.weight


@dataclass(frozen=True)
class PrefixCandidate:
    """Best member of a vector for a prefix-mass lookup."""

    index: int
    prefix: float
    distance: float


class RangeWeights:
    """
    Fixed-length weight vector optimized for long stretches of equal values.

    Invariants on `_runs`:
      1. non-empty, `_runs[0].offset == 0`;
      2. `_runs[i - 1].end == _runs[i].offset`;
      3. every run has a positive length.
    """

    def __init__(self, size: int, weight: float) -> None:
        if int(size) <= 0:
            raise PreconditionError(f"RangeWeights size must be positive, got {size}")
        self._runs: List[WeightRun] = [WeightRun(0, int(size), float(weight))]

    def __len__(self) -> int:
        return self._runs[-1].end

    def __repr__(self) -> str:
        return f"RangeWeights(len={len(self)}, runs={len(self._runs)})"

    def runs(self) -> Iterator[WeightRun]:
        return iter(self._runs)

    def num_runs(self) -> int:
        return len(self._runs)

    def to_list(self) -> List[float]:
        """Expand to one weight per member (debugging and tests)."""
        out: List[float] = []
        for run in self._runs:
            out.extend([run.weight] * run.length)
        return out

    def _run_index(self, index: int) -> int:
        if index < 0 or index >= len(self):
            raise IndexError(f"index {index} out of range for length {len(self)}")
        return bisect.bisect_right(self._runs, index, key=lambda r: r.offset) - 1

    def split(self, index: int) -> int:
        """
        Ensure a run boundary sits right before `index`.

        Returns the position in the run list of the run starting at `index`
        (`num_runs()` when `index == len(self)`).
        """
        if index == len(self):
            return len(self._runs)
        pos = self._run_index(index)
        run = self._runs[pos]
        if run.offset == index:
            return pos
        head = index - run.offset
        self._runs.insert(pos + 1, WeightRun(index, run.length - head, run.weight))
        run.length = head
        return pos + 1

    def scale(self, start: int, end: int, factor: float) -> None:
        """Multiply the weights of members in `[start, end)` by `factor`."""
        if start < 0 or end > len(self) or start > end:
            raise IndexError(f"Invalid range [{start},{end}) for length={len(self)}")
        if start == end:
            return
        first = self.split(start)
        last = self.split(end)
        for run in self._runs[first:last]:
            run.weight *= factor

    def scale_all(self, factor: float) -> None:
        for run in self._runs:
            run.weight *= factor

    def total(self) -> float:
        return sum(run.mass for run in self._runs)

    def weight(self, index: int) -> float:
        return self._runs[self._run_index(index)].weight

    def prefix(self, index: int) -> float:
        """Return the summed weight of members `[0, index]` (inclusive)."""
        pos = self._run_index(index)
        acc = 0.0
        for run in self._runs[:pos]:
            acc += run.mass
        run = self._runs[pos]
        return acc + (index - run.offset + 1) * run.weight

    def extend(self, other: "RangeWeights") -> None:
        """Append the members of `other` after the members of this vector."""
        shift = len(self)
        for run in other.runs():
            last = self._runs[-1]
            if last.weight == run.weight:
                last.length += run.length
            else:
                self._runs.append(WeightRun(run.offset + shift, run.length, run.weight))

    def max_weight(self) -> float:
        return max(run.weight for run in self._runs)

    def first_at_least(self, threshold: float) -> Optional[int]:
        """Lowest index whose weight is at least `threshold`."""
        for run in self._runs:
            if run.weight >= threshold:
                return run.offset
        return None

    def leading(self) -> Tuple[int, float]:
        """Return `(index, weight)` of the heaviest member; near-ties go to the lowest index."""
        top = self.max_weight()
        index = self.first_at_least(top - TIE_TOLERANCE * top)
        assert index is not None
        return index, self.weight(index)

    def min_distance(self, base: float, target: float, excluded: Collection[int] = ()) -> Optional[float]:
        """
        Smallest `|base + prefix(index) - target|` over members not in `excluded`.

        `base` is the mass that precedes the whole vector. Returns None when
        every member is excluded.
        """
        best: Optional[float] = None
        cum = base
        for run in self._runs:
            if best is not None and cum - target > best:
                # Every later prefix only moves further above the target.
                break
            if excluded and any(run.offset <= e < run.end for e in excluded):
                ks = [k for k in range(run.length) if run.offset + k not in excluded]
            else:
                k = self._first_reaching(run, cum, target)
                ks = [k - 1, k] if k > 0 else [k]
                ks = [k for k in ks if k < run.length]
            for k in ks:
                d = abs(cum + (k + 1) * run.weight - target)
                if best is None or d < best:
                    best = d
            cum += run.mass
        return best

    def first_within(
        self, base: float, target: float, bound: float, excluded: Collection[int] = ()
    ) -> Optional[PrefixCandidate]:
        """Lowest member, not in `excluded`, with `|base + prefix(index) - target| <= bound`."""
        cum = base
        for run in self._runs:
            if cum - target > bound:
                break
            if excluded and any(run.offset <= e < run.end for e in excluded):
                for k in range(run.length):
                    prefix = cum + (k + 1) * run.weight
                    if run.offset + k not in excluded and abs(prefix - target) <= bound:
                        return PrefixCandidate(run.offset + k, prefix, abs(prefix - target))
            else:
                k = self._first_within_run(run, cum, target, bound)
                if k is not None:
                    prefix = cum + (k + 1) * run.weight
                    return PrefixCandidate(run.offset + k, prefix, abs(prefix - target))
            cum += run.mass
        return None

    def nearest_prefix(
        self, base: float, target: float, excluded: Collection[int] = ()
    ) -> Optional[PrefixCandidate]:
        """
        Find the member whose cumulative mass `base + prefix(index)` is closest to `target`.

        Members within `TIE_TOLERANCE` of the closest distance are tied and the
        lowest index wins. Returns None when every member is excluded.
        """
        best = self.min_distance(base, target, excluded)
        if best is None:
            return None
        return self.first_within(base, target, best + TIE_TOLERANCE, excluded)

    @staticmethod
    def _first_reaching(run: WeightRun, cum: float, target: float) -> int:
        """Lowest k with `cum + (k + 1) * weight >= target`, or `run.length` if none."""
        lo, hi = 0, run.length
        while lo < hi:
            mid = (lo + hi) // 2
            if cum + (mid + 1) * run.weight >= target:
                hi = mid
            else:
                lo = mid + 1
        return lo

    @staticmethod
    def _first_within_run(run: WeightRun, cum: float, target: float, bound: float) -> Optional[int]:
        # Prefixes grow with k, so "at or past the target, or within bound of it"
        # is monotone in k.
        lo, hi = 0, run.length
        while lo < hi:
            mid = (lo + hi) // 2
            prefix = cum + (mid + 1) * run.weight
            if prefix >= target or target - prefix <= bound:
                hi = mid
            else:
                lo = mid + 1
        if lo < run.length and abs(cum + (lo + 1) * run.weight - target) <= bound:
            return lo
        return None
