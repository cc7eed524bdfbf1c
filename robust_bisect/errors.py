"""
Exception taxonomy for robust bisection.

Precondition violations are fatal at construction time and never leave a
partially built search behind. `ExhaustedDomain` is raised by the belief
store when an update cannot keep a usable distribution; searchers catch it
and terminate early. `ComparatorFailure` is raised by comparators (the I/O
layer) when an oracle call could not produce an answer at all.
"""

from typing import Any, Optional


class RobustBisectError(Exception):
    """Base class for every error raised by this package."""


class PreconditionError(RobustBisectError, ValueError):
    """Invalid configuration, graph, or call arguments."""


class CycleError(PreconditionError):
    """The edge set handed to the DAG builder contains a cycle."""

    def __init__(self, nodes: Any) -> None:
        self.nodes = list(nodes)
        preview = ", ".join(str(n) for n in self.nodes[:5])
        more = "" if len(self.nodes) <= 5 else f" (+{len(self.nodes) - 5} more)"
        super().__init__(f"Edge set contains a cycle through nodes: {preview}{more}")


class ExhaustedDomain(RobustBisectError):
    """The belief mass collapsed; no further progress is possible."""


class ComparatorFailure(RobustBisectError):
    """The oracle could not answer a query for `position`."""

    def __init__(self, position: Any, message: str = "", cause: Optional[BaseException] = None) -> None:
        self.position = position
        self.cause = cause
        super().__init__(message or f"Comparator failed for position {position!r}")


class SearchAborted(RobustBisectError):
    """A driver stopped because of a comparator failure under the RAISE policy."""
