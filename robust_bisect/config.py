"""
Search configuration.

Everything a search needs is carried by a `SearchConfig` that is passed into
the searcher explicitly. Only the command-line entry points read defaults from
the environment (`load_search_config`), so independent searches never share
ambient state.
"""

from __future__ import annotations

import math
import os
from dataclasses import dataclass, replace
from typing import Any, Optional

from dotenv import load_dotenv

from robust_bisect.errors import PreconditionError

DEFAULT_ERROR_RATE = 0.01
DEFAULT_TARGET_CONFIDENCE = 0.99
# Relative mass below which a down-set or up-set is considered decided.
DEFAULT_FOLD_THRESHOLD = 1e-15
# Folds shift down-set masses by up to the threshold; keep that far below the
# query tie tolerance (1e-9).
MAX_FOLD_THRESHOLD = 1e-12

ENV_ERROR_RATE = "ROBUST_BISECT_ERROR_RATE"
ENV_TARGET_CONFIDENCE = "ROBUST_BISECT_TARGET_CONFIDENCE"
ENV_MAX_ITERATIONS = "ROBUST_BISECT_MAX_ITERATIONS"


def binary_entropy(p: float) -> float:
    """Return H(p) in bits, with H(0) == 0."""
    if p <= 0.0 or p >= 1.0:
        return 0.0
    return -(p * math.log2(p) + (1.0 - p) * math.log2(1.0 - p))


@dataclass(frozen=True)
class SearchConfig:
    """
    Parameters of a single noisy search.

    Fields:
      - `error_rate`: assumed probability `p` that the comparator lies, in [0, 0.5).
      - `target_confidence`: leading belief weight `tau` that ends the search, in (0, 1).
      - `max_iterations`: optional hard cap on comparator calls. When None, a cap
        is derived from the domain size, `p` and `tau` (see `iteration_limit`).
      - `fold_threshold`: relative belief mass under which the DAG searcher folds
        a down-set or up-set into a single decided segment, in [0, 1e-12].    """

    error_rate: float = DEFAULT_ERROR_RATE
    target_confidence: float = DEFAULT_TARGET_CONFIDENCE
    max_iterations: Optional[int] = None
    fold_threshold: float = DEFAULT_FOLD_THRESHOLD

    def __post_init__(self) -> None:
        p = float(self.error_rate)
        if math.isnan(p) or p < 0.0 or p >= 0.5:
            raise PreconditionError(f"error_rate must be in [0, 0.5), got {self.error_rate}")
        tau = float(self.target_confidence)
        if math.isnan(tau) or tau <= 0.0 or tau >= 1.0:
            raise PreconditionError(
                f"target_confidence must be in (0, 1), got {self.target_confidence}"
            )
        if self.max_iterations is not None and int(self.max_iterations) <= 0:
            raise PreconditionError(f"max_iterations must be positive, got {self.max_iterations}")
        fold = float(self.fold_threshold)
        if math.isnan(fold) or fold < 0.0 or fold > MAX_FOLD_THRESHOLD:
            raise PreconditionError(
                f"fold_threshold must be in [0, {MAX_FOLD_THRESHOLD}], got {self.fold_threshold}"
            )

    def iteration_limit(self, domain_size: int) -> int:
        """
        Return the maximum number of comparator calls for a domain of `domain_size`.

        A noisy answer carries at most `1 - H(p)` bits, and locating one of `N`
        positions to confidence `tau` needs roughly `log2(N) + log2(1/(1-tau))`
        bits; the limit allows four times that many.
        """
        if self.max_iterations is not None:
            return int(self.max_iterations)
        bits = math.log2(max(int(domain_size), 2)) + math.log2(1.0 / (1.0 - self.target_confidence))
        capacity = max(1.0 - binary_entropy(self.error_rate), 1e-3)
        return int(math.ceil(4.0 * bits / capacity))

    def with_overrides(self, **overrides: Any) -> "SearchConfig":
        """Return a copy with every non-None override applied."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})


def load_search_config(env_path: Optional[str] = None, **overrides: Any) -> SearchConfig:
    """
    Build a `SearchConfig` from environment variables, then apply overrides.

    Variables (optionally loaded from a `.env` file at `env_path`):
      - ROBUST_BISECT_ERROR_RATE
      - ROBUST_BISECT_TARGET_CONFIDENCE
      - ROBUST_BISECT_MAX_ITERATIONS
    """
    if env_path:
        load_dotenv(dotenv_path=env_path)
    else:
        load_dotenv()

    def _env(name: str, cast: Any) -> Any:
        raw = os.getenv(name)
        if raw is None or raw.strip() == "":
            return None
        try:
            return cast(raw)
        except ValueError as exc:
            raise PreconditionError(f"Invalid value for {name}: {raw!r}") from exc

    error_rate = _env(ENV_ERROR_RATE, float)
    target_confidence = _env(ENV_TARGET_CONFIDENCE, float)
    base = SearchConfig(
        error_rate=DEFAULT_ERROR_RATE if error_rate is None else error_rate,
        target_confidence=DEFAULT_TARGET_CONFIDENCE if target_confidence is None else target_confidence,
        max_iterations=_env(ENV_MAX_ITERATIONS, int),
    )
    return base.with_overrides(**overrides)
