"""
Drivers that run a searcher against a comparator until it terminates.

These are the only place the comparator is called. A comparator maps a
position to True ("bad": the position is at or above the threshold) or False
("good"), and may raise `ComparatorFailure` when it cannot answer at all. What
happens then is the caller's choice of `FailurePolicy`; there is no default.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, List, Optional, Tuple, Union

from robust_bisect.config import SearchConfig
from robust_bisect.dag import CommitDAG
from robust_bisect.dag_searcher import CompressedDAGSearcher
from robust_bisect.errors import ComparatorFailure, PreconditionError, SearchAborted
from robust_bisect.flakiness import DAGFlakinessTracker, FlakinessTracker
from robust_bisect.linear import LinearSearcher
from robust_bisect.results import SearchResult
from robust_bisect.searcher import NoisySearcher

logger = logging.getLogger(__name__)

Comparator = Callable[[Any], bool]


class FailurePolicy(str, Enum):
    """Reaction to a `ComparatorFailure`."""

    ABORT = "abort"  # stop and report the current leader
    EXCLUDE = "exclude"  # never query that position again, keep searching
    RAISE = "raise"  # propagate as SearchAborted


@dataclass(frozen=True)
class SearchStep:
    """Progress after one answered query, passed to `on_report` callbacks."""

    iteration: int
    position: Any
    response: bool
    leader: Any
    confidence: float
    estimated_error_rate: float


class _AutoDriver:
    def __init__(
        self,
        searcher: NoisySearcher,
        tracker: Union[FlakinessTracker, DAGFlakinessTracker],
        comparator: Comparator,
        on_failure: Union[FailurePolicy, str],
        on_report: Optional[Callable[[SearchStep], None]],
        log: Optional[logging.Logger],
    ) -> None:
        if not callable(comparator):
            raise PreconditionError(f"comparator must be callable, got {type(comparator).__name__}")
        try:
            self.on_failure = FailurePolicy(on_failure)
        except ValueError:
            choices = ", ".join(p.value for p in FailurePolicy)
            raise PreconditionError(f"on_failure must be one of {choices}, got {on_failure!r}") from None
        self.searcher = searcher
        self.tracker = tracker
        self.comparator = comparator
        self.on_report = on_report
        self.log = log if log is not None else logger
        self._queries: List[Tuple[Any, bool]] = []
        self._failures: List[Any] = []

    def run(self) -> SearchResult:
        """Query until the searcher is terminal and return the final result."""
        searcher = self.searcher
        while not searcher.terminal:
            position = searcher.next_query()
            if position is None:
                break
            try:
                response = bool(self.comparator(position))
            except ComparatorFailure as exc:
                self._failures.append(position)
                self.log.warning("Comparator failed at %r: %s", position, exc)
                if self.on_failure is FailurePolicy.RAISE:
                    raise SearchAborted(f"Comparator failed at {position!r}; search aborted") from exc
                if self.on_failure is FailurePolicy.ABORT:
                    searcher.abort()
                    break
                searcher.exclude(position)
                continue

            self._queries.append((position, response))
            self.tracker.report(position, response)
            searcher.report(position, response)
            if self.on_report is not None:
                leader, confidence = searcher.leading()
                self.on_report(
                    SearchStep(
                        iteration=searcher.iterations,
                        position=position,
                        response=response,
                        leader=leader,
                        confidence=confidence,
                        estimated_error_rate=self.tracker.error_rate(),
                    )
                )
        return self.result()

    def result(self) -> SearchResult:
        return self.searcher.result(
            queries=tuple(self._queries),
            failures=tuple(self._failures),
            estimated_error_rate=self.tracker.error_rate(),
        )


class AutoSearcher(_AutoDriver):
    """Runs a `LinearSearcher` over `[0, size)` against `comparator`."""

    def __init__(
        self,
        size: int,
        comparator: Comparator,
        config: SearchConfig,
        *,
        on_failure: Union[FailurePolicy, str],
        on_report: Optional[Callable[[SearchStep], None]] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        super().__init__(
            LinearSearcher(size, config, logger=logger),
            FlakinessTracker(),
            comparator,
            on_failure,
            on_report,
            logger,
        )


class AutoCompressedDAGSearcher(_AutoDriver):
    """Runs a `CompressedDAGSearcher` over `dag` against `comparator`."""

    def __init__(
        self,
        dag: CommitDAG,
        comparator: Comparator,
        config: SearchConfig,
        *,
        on_failure: Union[FailurePolicy, str],
        on_report: Optional[Callable[[SearchStep], None]] = None,
        compress: bool = True,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        super().__init__(
            CompressedDAGSearcher(dag, config, compress=compress, logger=logger),
            DAGFlakinessTracker(dag),
            comparator,
            on_failure,
            on_report,
            logger,
        )
