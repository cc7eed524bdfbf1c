"""Noisy binary search over the index range `[0, size)`."""

from __future__ import annotations

import logging
import numbers
from typing import Mapping, Optional, Tuple

from robust_bisect.config import SearchConfig
from robust_bisect.errors import PreconditionError
from robust_bisect.searcher import NoisySearcher

_BLOCK = 0


class LinearSearcher(NoisySearcher):
    """
    Deterministic noisy bisection over a totally ordered range.

    The whole range is a single belief block, so the query is the index whose
    inclusive prefix mass is nearest half the total (ties to the lower index),
    and `report(x, True)` reinforces `[0, x]`.

    Example:
        searcher = LinearSearcher(8, SearchConfig(error_rate=0.0))
        while not searcher.terminal:
            x = searcher.next_query()
            searcher.report(x, x >= 5)
        searcher.leading()  # (5, 1.0)
    """

    def __init__(
        self, size: int, config: SearchConfig, *, logger: Optional[logging.Logger] = None
    ) -> None:
        if isinstance(size, bool) or not isinstance(size, numbers.Integral) or size <= 0:
            raise PreconditionError(f"size must be a positive integer, got {size!r}")
        super().__init__(config, logger=logger)
        self.size = int(size)
        self._start({_BLOCK: self.size}, self.size)

    def _locate(self, position: int) -> Tuple[int, int]:
        if isinstance(position, bool) or not isinstance(position, numbers.Integral):
            raise PreconditionError(f"position must be an integer, got {position!r}")
        if position < 0 or position >= self.size:
            raise PreconditionError(f"position {position} out of range [0, {self.size})")
        return _BLOCK, int(position)

    def _position(self, handle: int, index: int) -> int:
        return index

    def _rank_of(self, handle: int, index: int) -> int:
        return index

    def _below(self, handle: int) -> Tuple[int, ...]:
        return ()

    def _bases(self) -> Mapping[int, float]:
        return {_BLOCK: 0.0}

    def weights(self):
        """Expanded belief vector (one weight per index)."""
        return self._beliefs.block(_BLOCK).to_list()
