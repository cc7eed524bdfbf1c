"""
Segment compression for the DAG searcher.

Domain nodes are grouped into segments: ordered runs of nodes the searcher
treats as a single unit. A segment is a union-find class over node ranks and
is addressed by a small integer handle (the rank of its union-find root).
Members keep a fixed order inside the segment; every union appends the second
segment's members after the first's, and a weighted union-find (each node
stores its offset relative to its parent) turns `member_index(node)` into a
near-constant-time lookup.

Segments are only ever merged. Two triggers exist:

  - structural: `h -> s` where `s` is the only successor of `h` and `h` the
    only predecessor of `s` (a query between them can never be useful);
  - evidential: a down-set whose belief mass fell below a threshold is folded
    into one "already decided" segment (`fold_down`). An up-set is folded the
    same way (`fold_up`), but only when every edge into it comes from a single
    segment, so no member gains an ancestor it did not have.

The segment-level graph is kept as explicit predecessor/successor sets. The
topological order of live segments and the ancestor sets derived from it are a
cache, rebuilt lazily after merges.
"""

from __future__ import annotations

import heapq
import logging
from typing import Callable, Dict, FrozenSet, List, Mapping, Optional, Sequence, Set, Tuple

from robust_bisect.dag import CommitDAG, Node
from robust_bisect.errors import PreconditionError

logger = logging.getLogger(__name__)

MergeListener = Callable[[int, int, int], None]


class SegmentCompressor:
    """
    Disjoint-set arena of segments over a `CommitDAG`.

    Every domain node starts as its own segment; call `compress_chains()` to
    apply structural compression. Registered listeners are called as
    `listener(first, second, merged)` after every union, so that per-segment
    data kept elsewhere (belief weights) can follow.
    """

    def __init__(self, dag: CommitDAG) -> None:
        n = len(dag)
        self.dag = dag
        self._parent: List[int] = list(range(n))
        # Offset of a node's member index relative to its union-find parent; for
        # a root, its own member index.
        self._delta: List[int] = [0] * n
        self._members: Dict[int, List[int]] = {r: [r] for r in range(n)}
        self._min_rank: Dict[int, int] = {r: r for r in range(n)}
        self._preds: Dict[int, Set[int]] = {r: set(dag.parents(r)) for r in range(n)}
        self._succs: Dict[int, Set[int]] = {r: set(dag.children(r)) for r in range(n)}
        self._listeners: List[MergeListener] = []

        self._order: Optional[List[int]] = None
        self._position: Dict[int, int] = {}
        self._ancestors: Dict[int, FrozenSet[int]] = {}
        self._first_pred: Dict[int, Optional[int]] = {}
        self._remainder: Dict[int, List[int]] = {}

    def __len__(self) -> int:
        return len(self._members)

    def on_merge(self, listener: MergeListener) -> None:
        self._listeners.append(listener)

    # -- union-find -----------------------------------------------------------

    def _find(self, x: int) -> int:
        path = []
        while self._parent[x] != x:
            path.append(x)
            x = self._parent[x]
        root = x
        acc = 0
        for node in reversed(path):
            acc += self._delta[node]
            self._delta[node] = acc
            self._parent[node] = root
        return root

    def _index_of_rank(self, rank: int) -> int:
        root = self._find(rank)
        if root == rank:
            return self._delta[root]
        return self._delta[rank] + self._delta[root]

    def representative(self, node: Node) -> int:
        """Handle of the live segment that owns `node`."""
        return self._find(self.dag.rank(node))

    def member_index(self, node: Node) -> int:
        """Position of `node` inside its segment."""
        return self._index_of_rank(self.dag.rank(node))

    def locate_rank(self, rank: int) -> Tuple[int, int]:
        return self._find(rank), self._index_of_rank(rank)

    def handles(self) -> List[int]:
        return list(self._members)

    def members(self, handle: int) -> List[Node]:
        return [self.dag.node(r) for r in self._members[handle]]

    def member_rank(self, handle: int, index: int) -> int:
        return self._members[handle][index]

    def segment_size(self, handle: int) -> int:
        return len(self._members[handle])

    def preds(self, handle: int) -> FrozenSet[int]:
        return frozenset(self._preds[handle])

    def succs(self, handle: int) -> FrozenSet[int]:
        return frozenset(self._succs[handle])

    def _check_live(self, handle: int) -> None:
        if handle not in self._members:
            raise PreconditionError(f"{handle!r} is not a live segment handle")

    def merge(self, a: int, b: int) -> int:
        """
        Merge segment `b` into segment `a`, with `b`'s members placed after `a`'s.

        `b` must be an immediate successor of `a` with no other path from `a`
        to `b`; otherwise the merge would lose ordering information (or create
        a cycle) and a `PreconditionError` is raised. Returns the handle of the
        merged segment.
        """
        self._check_live(a)
        self._check_live(b)
        if b not in self._succs[a]:
            raise PreconditionError(f"segment {b} is not an immediate successor of segment {a}")
        self._ensure_order()
        for p in self._preds[b]:
            if p != a and a in self._ancestors[p]:
                raise PreconditionError(
                    f"segments {a} and {b} are connected through segment {p}; merging them would create a cycle"
                )
        return self._union(a, b)

    def _union(self, a: int, b: int) -> int:
        len_a = len(self._members[a])
        if len_a >= len(self._members[b]):
            root, child = a, b
            self._parent[b] = a
            self._delta[b] = self._delta[b] + len_a - self._delta[a]
            self._members[a].extend(self._members.pop(b))
        else:
            root, child = b, a
            self._parent[a] = b
            self._delta[b] = self._delta[b] + len_a
            self._delta[a] = self._delta[a] - self._delta[b]
            self._members[b][:0] = self._members.pop(a)
        self._min_rank[root] = min(self._min_rank.pop(child), self._min_rank[root])

        preds = (self._preds.pop(a) | self._preds.pop(b)) - {a, b}
        succs = (self._succs.pop(a) | self._succs.pop(b)) - {a, b}
        self._preds[root] = preds
        self._succs[root] = succs
        for p in preds:
            self._succs[p].discard(child)
            self._succs[p].add(root)
        for s in succs:
            self._preds[s].discard(child)
            self._preds[s].add(root)

        self._order = None
        for listener in self._listeners:
            listener(a, b, root)
        return root

    # -- derived order --------------------------------------------------------

    def _ensure_order(self) -> None:
        if self._order is not None:
            return
        indegree = {h: len(p) for h, p in self._preds.items()}
        heap = [(self._min_rank[h], h) for h, d in indegree.items() if d == 0]
        heapq.heapify(heap)
        order: List[int] = []
        while heap:
            _, h = heapq.heappop(heap)
            order.append(h)
            for s in self._succs[h]:
                indegree[s] -= 1
                if indegree[s] == 0:
                    heapq.heappush(heap, (self._min_rank[s], s))
        if len(order) != len(self._members):
            raise PreconditionError("segment graph is no longer acyclic")

        position = {h: i for i, h in enumerate(order)}
        ancestors: Dict[int, FrozenSet[int]] = {}
        first_pred: Dict[int, Optional[int]] = {}
        remainder: Dict[int, List[int]] = {}
        for h in order:
            preds = sorted(self._preds[h], key=position.__getitem__, reverse=True)
            if not preds:
                ancestors[h] = frozenset()
                first_pred[h] = None
                remainder[h] = []
                continue
            # The latest predecessor usually covers most of the ancestry.
            first = preds[0]
            acc = set(ancestors[first])
            acc.add(first)
            extra: List[int] = []
            stack = list(preds[1:])
            while stack:
                p = stack.pop()
                if p in acc:
                    continue
                acc.add(p)
                extra.append(p)
                stack.extend(self._preds[p])
            ancestors[h] = frozenset(acc)
            first_pred[h] = first
            remainder[h] = sorted(extra, key=position.__getitem__)

        self._order = order
        self._position = position
        self._ancestors = ancestors
        self._first_pred = first_pred
        self._remainder = remainder

    def order(self) -> List[int]:
        """Live segment handles in topological order."""
        self._ensure_order()
        assert self._order is not None
        return list(self._order)

    def ancestors(self, handle: int) -> FrozenSet[int]:
        """Handles of every strict ancestor segment."""
        self._ensure_order()
        return self._ancestors[handle]

    def first_pred(self, handle: int) -> Optional[int]:
        self._ensure_order()
        return self._first_pred[handle]

    def remainder(self, handle: int) -> List[int]:
        """Strict ancestors not covered by `first_pred(handle)` and its ancestors."""
        self._ensure_order()
        return self._remainder[handle]

    def down_bases(self, totals: Mapping[int, float]) -> Dict[int, float]:
        """
        Mass of the strict ancestors of every segment, in one topological pass.

        `base(h) = base(f) + totals[f] + sum(totals[r] for r in remainder(h))`
        where `f = first_pred(h)`.
        """
        self._ensure_order()
        assert self._order is not None
        bases: Dict[int, float] = {}
        for h in self._order:
            first = self._first_pred[h]
            if first is None:
                bases[h] = 0.0
                continue
            base = bases[first] + totals[first]
            for r in self._remainder[h]:
                base += totals[r]
            bases[h] = base
        return bases

    # -- compression ----------------------------------------------------------

    def compress_chains(self) -> int:
        """Merge every single-successor/single-predecessor pair. Returns the number of unions."""
        unions = 0
        for h in self.order():
            if h not in self._members:
                continue
            while len(self._succs[h]) == 1:
                (s,) = self._succs[h]
                if len(self._preds[s]) != 1:
                    break
                h = self._union(h, s)
                unions += 1
        if unions:
            logger.debug("Compressed %d chain link(s); %d segment(s) remain", unions, len(self))
        return unions

    def _fold(self, handles: Sequence[int], reverse: bool) -> Optional[int]:
        if len(handles) < 2:
            return None
        if reverse:
            merged = handles[-1]
            for h in reversed(handles[:-1]):
                merged = self._union(h, merged)
        else:
            merged = handles[0]
            for h in handles[1:]:
                merged = self._union(merged, h)
        return merged

    def fold_down(self, totals: Mapping[int, float], threshold: float) -> Optional[int]:
        """
        Fold every segment whose closed down-set mass is at most `threshold` into one.

        The folded set is closed under ancestors and contains the unique
        source, so merging it in topological order only ever merges a segment
        into its sole remaining predecessor. Returns the merged handle, or None
        when fewer than two segments qualify.
        """
        bases = self.down_bases(totals)
        decided: List[int] = []
        closed: Set[int] = set()
        for h in self.order():
            if bases[h] + totals[h] <= threshold and self._preds[h] <= closed:
                decided.append(h)
                closed.add(h)
        merged = self._fold(decided, reverse=False)
        if merged is not None:
            logger.debug("Folded %d decided down-set segment(s) into %d", len(decided), merged)
        return merged

    def fold_up(self, totals: Mapping[int, float], threshold: float) -> Optional[int]:
        """
        Fold every segment whose closed up-set mass is at most `threshold` into one.

        Up-set mass is bounded from above by `w(h) + sum(bound(s) for s in succs(h))`,
        which overcounts shared descendants, so only segments that are certainly
        below the threshold are folded.

        The merged segment inherits the predecessors of every folded segment.
        The fold is skipped unless all edges into the set come from one
        segment: then every member already had that segment and its ancestors
        below it, and the merge moves no outside mass into any down-set.
        """
        order = self.order()
        bound: Dict[int, float] = {}
        closed: Set[int] = set()
        decided: List[int] = []
        for h in reversed(order):
            bound[h] = totals[h] + sum(bound[s] for s in self._succs[h])
            if bound[h] <= threshold and self._succs[h] <= closed:
                decided.append(h)
                closed.add(h)
        if len(decided) < 2:
            return None
        entries = set().union(*(self._preds[h] for h in decided)) - closed
        if len(entries) != 1:
            logger.debug("Up-set of %d segment(s) has %d entries; not folded", len(decided), len(entries))
            return None
        decided.reverse()
        merged = self._fold(decided, reverse=True)
        if merged is not None:
            logger.debug("Folded %d decided up-set segment(s) into %d", len(decided), merged)
        return merged

    def fold(self, totals: Callable[[], Mapping[int, float]], threshold: float) -> bool:
        """
        Apply both evidential folds, then re-compress the chains they expose.

        A fold moves at most `threshold` of mass into or out of any down-set,
        so `threshold` must stay well below the tie tolerance of the query
        ranking for the folded search to issue the same queries.

        `totals` is called for fresh per-segment masses before each fold, since
        the first fold changes the set of live handles. Returns True if
        anything was merged.
        """
        changed = self.fold_down(totals(), threshold) is not None
        changed = self.fold_up(totals(), threshold) is not None or changed
        if changed:
            self.compress_chains()
        return changed
