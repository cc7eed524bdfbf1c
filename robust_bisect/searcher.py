"""
Noisy bisection state machine shared by the linear and DAG searchers.

A searcher never calls the comparator itself. Callers alternate
`next_query()` and `report(position, response)` until `terminal` is True and
then read `leading()`. Query selection is a pure function of the belief
state: the candidate whose closed down-set mass is nearest half the total,
ties to the lowest rank, so identical inputs always replay identically.
"""

from __future__ import annotations

import logging
from typing import Any, Collection, Dict, Hashable, Mapping, Optional, Set, Tuple

from robust_bisect.beliefs import BeliefStore, SplitChoice
from robust_bisect.config import SearchConfig
from robust_bisect.errors import ExhaustedDomain, PreconditionError
from robust_bisect.ranges import TIE_TOLERANCE
from robust_bisect.results import SearchResult, SearchStatus

Position = Any
Handle = Hashable


class NoisySearcher:
    """
    Base class: beliefs grouped in blocks, plus the query/update/stop loop.

    Subclasses describe their domain through a handful of hooks:

      - `_locate(position)` -> `(handle, index)`;
      - `_position(handle, index)` -> position;
      - `_rank_of(handle, index)` -> canonical tie-break rank;
      - `_below(handle)` -> handles of every block strictly below `handle`;
      - `_bases()` -> mass strictly below each block;
      - `_prepare()` / `_after_update()` -> optional restructuring.

    A response of True for position `x` means the target lies in the closed
    down-set of `x` (x is at or above the threshold); False means it lies in
    the complement.
    """

    def __init__(self, config: SearchConfig, *, logger: Optional[logging.Logger] = None) -> None:
        if not isinstance(config, SearchConfig):
            raise PreconditionError(f"config must be a SearchConfig, got {type(config).__name__}")
        self.config = config
        self.log = logger if logger is not None else logging.getLogger(type(self).__module__)
        self._beliefs = BeliefStore()
        self._iterations = 0
        self._limit = 0
        self._status: Optional[SearchStatus] = None
        self._excluded: Set[Position] = set()
        self._pending: Optional[SplitChoice] = None
        self._pending_valid = False

    def _start(self, sizes: Mapping[Handle, int], domain_size: int) -> None:
        self._beliefs.initialize(sizes)
        self._limit = self.config.iteration_limit(domain_size)
        self._prepare()
        self.log.debug(
            "Starting search over %d position(s), p=%s, tau=%s, limit=%d",
            domain_size,
            self.config.error_rate,
            self.config.target_confidence,
            self._limit,
        )
        self._evaluate()

    # -- hooks ----------------------------------------------------------------

    def _locate(self, position: Position) -> Tuple[Handle, int]:
        raise NotImplementedError

    def _position(self, handle: Handle, index: int) -> Position:
        raise NotImplementedError

    def _rank_of(self, handle: Handle, index: int) -> int:
        raise NotImplementedError

    def _below(self, handle: Handle) -> Collection[Handle]:
        raise NotImplementedError

    def _bases(self) -> Mapping[Handle, float]:
        raise NotImplementedError

    def _prepare(self) -> None:
        pass

    def _after_update(self) -> None:
        pass

    # -- public surface -------------------------------------------------------

    @property
    def status(self) -> Optional[SearchStatus]:
        """Terminal status, or None while the search is running."""
        return self._status

    @property
    def terminal(self) -> bool:
        return self._status is not None

    @property
    def iterations(self) -> int:
        return self._iterations

    @property
    def iteration_limit(self) -> int:
        return self._limit

    def __len__(self) -> int:
        return len(self._beliefs)

    def total(self) -> float:
        return self._beliefs.total()

    def leading(self) -> Tuple[Position, float]:
        """Current best estimate and its belief weight."""
        leader = self._beliefs.leading(self._rank_of)
        return self._position(leader.handle, leader.index), leader.weight

    def likelihood(self, position: Position) -> float:
        handle, index = self._locate(position)
        return self._beliefs.weight(handle, index)

    def next_query(self) -> Optional[Position]:
        """Position to test next, or None once the search is terminal."""
        if self.terminal:
            return None
        choice = self._choose()
        if choice is None:
            return None
        return self._position(choice.handle, choice.index)

    def report(self, position: Position, response: bool) -> None:
        """Feed back the comparator's answer for `position`."""
        if self.terminal:
            raise PreconditionError(f"search already terminated ({self._status.value})")
        handle, index = self._locate(position)
        self._iterations += 1
        try:
            self._beliefs.update(
                handle, index, bool(response), self.config.error_rate, below=self._below(handle)
            )
        except ExhaustedDomain as exc:
            self.log.info("Belief mass collapsed at iteration %d: %s", self._iterations, exc)
            self._finish(SearchStatus.EXHAUSTED)
            return
        self._invalidate()
        self._after_update()
        if self.log.isEnabledFor(logging.DEBUG):
            best, weight = self.leading()
            self.log.debug(
                "iteration %d: %r -> %s; leader %r (%.6f)",
                self._iterations,
                position,
                "bad" if response else "good",
                best,
                weight,
            )
        self._evaluate()

    def exclude(self, position: Position) -> None:
        """Never propose `position` as a query again; its belief weight is kept."""
        self._locate(position)
        if self.terminal or position in self._excluded:
            return
        self._excluded.add(position)
        self._invalidate()
        self._evaluate()

    def abort(self) -> None:
        if not self.terminal:
            self._finish(SearchStatus.ABORTED)

    def result(self, **extra: Any) -> SearchResult:
        """Snapshot of the current leader; `extra` fills the driver-side fields."""
        position, weight = self.leading()
        status = self._status if self._status is not None else SearchStatus.ABORTED
        return SearchResult(
            position=position,
            confidence=weight,
            iterations=self._iterations,
            status=status,
            **extra,
        )

    # -- internals ------------------------------------------------------------

    def _invalidate(self) -> None:
        self._pending = None
        self._pending_valid = False

    def _excluded_by_handle(self) -> Dict[Handle, Set[int]]:
        out: Dict[Handle, Set[int]] = {}
        for position in self._excluded:
            handle, index = self._locate(position)
            out.setdefault(handle, set()).add(index)
        return out

    def _choose(self) -> Optional[SplitChoice]:
        if self._pending_valid:
            return self._pending
        choice = self._beliefs.nearest_split(
            self._bases(), self._rank_of, self._excluded_by_handle() if self._excluded else None
        )
        # A split no better than "everything on one side" tells us nothing.
        if choice is not None and choice.distance >= self._beliefs.total() / 2.0 - TIE_TOLERANCE:
            choice = None
        self._pending = choice
        self._pending_valid = True
        return choice

    def _evaluate(self) -> None:
        if self.terminal:
            return
        _, weight = self.leading()
        if weight >= self.config.target_confidence:
            self._finish(SearchStatus.CONVERGED)
        elif self._iterations >= self._limit:
            self._finish(SearchStatus.ITERATION_LIMIT)
        elif self._choose() is None:
            self._finish(SearchStatus.EXHAUSTED)

    def _finish(self, status: SearchStatus) -> None:
        self._status = status
        self._invalidate()
        position, weight = self.leading()
        self.log.info(
            "Search %s after %d iteration(s): %r with confidence %.6f",
            status.value,
            self._iterations,
            position,
            weight,
        )
