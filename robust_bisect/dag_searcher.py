"""Noisy bisection over a commit DAG, with segment compression."""

from __future__ import annotations

import logging
from typing import Dict, FrozenSet, List, Mapping, Optional, Tuple

from robust_bisect.config import SearchConfig
from robust_bisect.compressor import SegmentCompressor
from robust_bisect.dag import CommitDAG, Node
from robust_bisect.errors import PreconditionError
from robust_bisect.searcher import NoisySearcher


class CompressedDAGSearcher(NoisySearcher):
    """
    Generalizes `LinearSearcher` to a partial order.

    Each live segment is one belief block. A query at member `i` of segment
    `h` splits the mass into the closed down-set (every ancestor segment plus
    members `[0, i]` of `h`) and its complement. After every update the
    compressor folds decided down-sets (and up-sets entered from a single
    segment) and the chains they expose, so the per-iteration cost follows the
    number of live segments.

    With `compress=False` every node stays its own segment; answers and query
    sequences are the same for any sequence of responses, only slower. On a
    chain the whole domain becomes one segment and the searcher behaves
    exactly like `LinearSearcher`.
    """

    def __init__(
        self,
        dag: CommitDAG,
        config: SearchConfig,
        *,
        compress: bool = True,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        if not isinstance(dag, CommitDAG):
            raise PreconditionError(f"dag must be a CommitDAG, got {type(dag).__name__}")
        super().__init__(config, logger=logger)
        self.dag = dag
        self.compress = compress
        self._segments = SegmentCompressor(dag)
        self._segments.on_merge(self._on_merge)
        self._start({rank: 1 for rank in range(len(dag))}, len(dag))

    @property
    def compressor(self) -> SegmentCompressor:
        return self._segments

    def segment_count(self) -> int:
        return len(self._segments)

    def _on_merge(self, first: int, second: int, merged: int) -> None:
        self._beliefs.merge(first, second, merged)
        self._invalidate()

    def _prepare(self) -> None:
        if self.compress:
            self._segments.compress_chains()
            self.log.debug("%d node(s) compressed into %d segment(s)", len(self.dag), len(self._segments))

    def _after_update(self) -> None:
        if not self.compress or self.config.fold_threshold <= 0.0:
            return
        threshold = self.config.fold_threshold * self._beliefs.total()
        if self._segments.fold(self._beliefs.totals, threshold):
            self.log.debug("%d live segment(s) after folding", len(self._segments))

    def _locate(self, position: Node) -> Tuple[int, int]:
        return self._segments.locate_rank(self.dag.rank(position))

    def _position(self, handle: int, index: int) -> Node:
        return self.dag.node(self._segments.member_rank(handle, index))

    def _rank_of(self, handle: int, index: int) -> int:
        return self._segments.member_rank(handle, index)

    def _below(self, handle: int) -> FrozenSet[int]:
        return self._segments.ancestors(handle)

    def _bases(self) -> Mapping[int, float]:
        return self._segments.down_bases(self._beliefs.totals())

    def weights(self) -> Dict[Node, float]:
        """Belief weight of every domain node."""
        out: Dict[Node, float] = {}
        for handle in self._segments.order():
            members: List[Node] = self._segments.members(handle)
            for node, weight in zip(members, self._beliefs.block(handle).to_list()):
                out[node] = weight
        return out
