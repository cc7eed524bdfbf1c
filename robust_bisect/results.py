"""Terminal states and the result record returned by the drivers."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class SearchStatus(str, Enum):
    CONVERGED = "converged"
    ITERATION_LIMIT = "iteration_limit"
    EXHAUSTED = "exhausted"
    ABORTED = "aborted"


@dataclass(frozen=True)
class SearchResult:
    """
    Outcome of one noisy search.

    `confidence` is the belief weight of `position` at termination; it is
    below the configured target unless `status` is CONVERGED.
    """

    position: Any
    confidence: float
    iterations: int
    status: SearchStatus
    queries: Tuple[Tuple[Any, bool], ...] = field(default_factory=tuple)
    failures: Tuple[Any, ...] = field(default_factory=tuple)
    estimated_error_rate: Optional[float] = None

    @property
    def converged(self) -> bool:
        return self.status is SearchStatus.CONVERGED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "position": self.position,
            "confidence": self.confidence,
            "iterations": self.iterations,
            "status": self.status.value,
            "queries": [[pos, resp] for pos, resp in self.queries],
            "failures": list(self.failures),
            "estimated_error_rate": self.estimated_error_rate,
        }
