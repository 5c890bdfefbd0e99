"""
beamtree: tree exploration for autoregressive token generation.

Explores the most probable continuations of a prompt by snapshotting and
restoring a steppable model's state around every branch, with depth-first
and breadth-first strategies, and ranks the finished sequences by
accumulated probability.
"""

__version__ = "0.1.0"

from .common import (
    AbstractModel,
    AllocationError,
    BeamTreeError,
    Candidate,
    EvaluationFailure,
    NoResults,
    Result,
    SearchConfig,
    StateSizeMismatch,
)
from .ranking import CandidateRanker
from .search import (
    BreadthFirstSearch,
    DepthFirstSearch,
    ResultCollector,
    SearchSession,
    run_breadth_first,
    run_depth_first,
)
from .snapshots import SearchFrame, Snapshot, SnapshotStore

__all__ = [
    # Interface
    "AbstractModel",
    # Values
    "Candidate",
    "Result",
    "SearchConfig",
    "SearchFrame",
    "Snapshot",
    # Errors
    "AllocationError",
    "BeamTreeError",
    "EvaluationFailure",
    "NoResults",
    "StateSizeMismatch",
    # Components
    "BreadthFirstSearch",
    "CandidateRanker",
    "DepthFirstSearch",
    "ResultCollector",
    "SearchSession",
    "SnapshotStore",
    # Entry points
    "run_breadth_first",
    "run_depth_first",
]
