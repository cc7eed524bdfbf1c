"""
Commit ancestry graph restricted to the span between a start and an end node.

An edge `u -> v` means `u` precedes `v` (u is an ancestor of v). The search
domain is every node that is reachable from `start` and from which `end` is
reachable; everything else handed to the constructor is dropped. Domain nodes
are numbered by a canonical topological rank: among nodes whose predecessors
are all placed, the one listed first in the input goes next. Ranks are the
deterministic tie-break used everywhere downstream.
"""

from __future__ import annotations

import heapq
import logging
from collections import deque
from typing import Any, Dict, Hashable, Iterable, List, Mapping, Sequence, Set, Tuple

from robust_bisect.errors import CycleError, PreconditionError

logger = logging.getLogger(__name__)

Node = Hashable


class CommitDAG:
    def __init__(
        self,
        nodes: Iterable[Node],
        edges: Iterable[Tuple[Node, Node]],
        start: Node,
        end: Node,
    ) -> None:
        order: Dict[Node, int] = {}
        for node in nodes:
            order.setdefault(node, len(order))
        if start not in order:
            raise PreconditionError(f"start node {start!r} is not in the graph")
        if end not in order:
            raise PreconditionError(f"end node {end!r} is not in the graph")

        succs: Dict[Node, Set[Node]] = {node: set() for node in order}
        preds: Dict[Node, Set[Node]] = {node: set() for node in order}
        for u, v in edges:
            if u not in order or v not in order:
                missing = u if u not in order else v
                raise PreconditionError(f"edge ({u!r}, {v!r}) references unknown node {missing!r}")
            if u == v:
                raise CycleError([u])
            succs[u].add(v)
            preds[v].add(u)

        self._check_acyclic(order, succs, preds)

        forward = self._reach(start, succs)
        if end not in forward:
            raise PreconditionError(f"end node {end!r} is not reachable from start node {start!r}")
        backward = self._reach(end, preds)
        domain = {node for node in forward if node in backward}
        dropped = len(order) - len(domain)
        if dropped:
            logger.debug("Dropped %d node(s) outside the %r..%r span", dropped, start, end)

        self._nodes: List[Node] = self._rank_nodes(order, domain, succs, preds)
        self._rank: Dict[Node, int] = {node: i for i, node in enumerate(self._nodes)}
        self._parents: List[Tuple[int, ...]] = []
        self._children: List[Tuple[int, ...]] = []
        for node in self._nodes:
            self._parents.append(tuple(sorted(self._rank[p] for p in preds[node] if p in domain)))
            self._children.append(tuple(sorted(self._rank[c] for c in succs[node] if c in domain)))
        self.start = start
        self.end = end

    @staticmethod
    def _check_acyclic(
        order: Mapping[Node, int], succs: Mapping[Node, Set[Node]], preds: Mapping[Node, Set[Node]]
    ) -> None:
        indegree = {node: len(preds[node]) for node in order}
        queue = deque(node for node in order if indegree[node] == 0)
        seen = 0
        while queue:
            node = queue.popleft()
            seen += 1
            for child in succs[node]:
                indegree[child] -= 1
                if indegree[child] == 0:
                    queue.append(child)
        if seen != len(order):
            stuck = sorted((n for n in order if indegree[n] > 0), key=order.__getitem__)
            raise CycleError(stuck)

    @staticmethod
    def _reach(origin: Node, adjacency: Mapping[Node, Set[Node]]) -> Set[Node]:
        seen = {origin}
        stack = [origin]
        while stack:
            for nxt in adjacency[stack.pop()]:
                if nxt not in seen:
                    seen.add(nxt)
                    stack.append(nxt)
        return seen

    @staticmethod
    def _rank_nodes(
        order: Mapping[Node, int],
        domain: Set[Node],
        succs: Mapping[Node, Set[Node]],
        preds: Mapping[Node, Set[Node]],
    ) -> List[Node]:
        indegree = {node: sum(1 for p in preds[node] if p in domain) for node in domain}
        heap = [(order[node], node) for node in domain if indegree[node] == 0]
        heapq.heapify(heap)
        ranked: List[Node] = []
        while heap:
            _, node = heapq.heappop(heap)
            ranked.append(node)
            for child in succs[node]:
                if child not in domain:
                    continue
                indegree[child] -= 1
                if indegree[child] == 0:
                    heapq.heappush(heap, (order[child], child))
        return ranked

    @classmethod
    def linear(cls, size: int) -> "CommitDAG":
        """A chain `0 -> 1 -> ... -> size-1`."""
        if int(size) <= 0:
            raise PreconditionError(f"size must be positive, got {size}")
        size = int(size)
        return cls(range(size), ((i, i + 1) for i in range(size - 1)), 0, size - 1)

    @classmethod
    def from_parents(
        cls, parents: Mapping[Node, Sequence[Node]], start: Node, end: Node
    ) -> "CommitDAG":
        """
        Build from a `child -> [parents]` mapping, as produced by `git log --format=%H %P`.

        Parents that never appear as keys are added as nodes too; they are
        dropped again unless they lie between `start` and `end`.
        """
        nodes: List[Node] = [start]
        edges: List[Tuple[Node, Node]] = []
        for child, child_parents in parents.items():
            nodes.append(child)
            for parent in child_parents:
                nodes.append(parent)
                edges.append((parent, child))
        nodes.append(end)
        return cls(nodes, edges, start, end)

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, node: Any) -> bool:
        try:
            return node in self._rank
        except TypeError:
            return False

    def __repr__(self) -> str:
        return f"CommitDAG(nodes={len(self)}, start={self.start!r}, end={self.end!r})"

    def nodes(self) -> List[Node]:
        """Domain nodes in rank order."""
        return list(self._nodes)

    def rank(self, node: Node) -> int:
        try:
            return self._rank[node]
        except (KeyError, TypeError):
            raise PreconditionError(f"{node!r} is not in the search domain") from None

    def node(self, rank: int) -> Node:
        return self._nodes[rank]

    def parents(self, rank: int) -> Tuple[int, ...]:
        return self._parents[rank]

    def children(self, rank: int) -> Tuple[int, ...]:
        return self._children[rank]

    def edges(self) -> List[Tuple[Node, Node]]:
        return [
            (self._nodes[rank], self._nodes[child])
            for rank in range(len(self._nodes))
            for child in self._children[rank]
        ]

    def ancestors(self, rank: int) -> Set[int]:
        """Ranks of the strict ancestors of `rank`."""
        seen: Set[int] = set()
        stack = list(self._parents[rank])
        while stack:
            r = stack.pop()
            if r not in seen:
                seen.add(r)
                stack.extend(self._parents[r])
        return seen
