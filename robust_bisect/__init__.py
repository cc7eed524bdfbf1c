"""Binary search under an unreliable comparator, over linear ranges and commit DAGs."""

from robust_bisect.auto import AutoCompressedDAGSearcher, AutoSearcher, FailurePolicy, SearchStep
from robust_bisect.beliefs import BeliefStore
from robust_bisect.compressor import SegmentCompressor
from robust_bisect.config import SearchConfig, load_search_config
from robust_bisect.dag import CommitDAG
from robust_bisect.dag_searcher import CompressedDAGSearcher
from robust_bisect.errors import (
    ComparatorFailure,
    CycleError,
    ExhaustedDomain,
    PreconditionError,
    RobustBisectError,
    SearchAborted,
)
from robust_bisect.flakiness import DAGFlakinessTracker, FlakinessTracker
from robust_bisect.linear import LinearSearcher
from robust_bisect.ranges import RangeWeights
from robust_bisect.results import SearchResult, SearchStatus

__all__ = [
    "AutoCompressedDAGSearcher",
    "AutoSearcher",
    "BeliefStore",
    "CommitDAG",
    "ComparatorFailure",
    "CompressedDAGSearcher",
    "CycleError",
    "DAGFlakinessTracker",
    "ExhaustedDomain",
    "FailurePolicy",
    "FlakinessTracker",
    "LinearSearcher",
    "PreconditionError",
    "RangeWeights",
    "RobustBisectError",
    "SearchAborted",
    "SearchConfig",
    "SearchResult",
    "SearchStatus",
    "SearchStep",
    "SegmentCompressor",
    "load_search_config",
]
