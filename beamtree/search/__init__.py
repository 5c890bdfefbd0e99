"""
Search strategies, result collection and sessions.
"""

from .base import AbstractSearch
from .breadth_first import BreadthFirstSearch, trim_queue
from .collector import ResultCollector
from .depth_first import DepthFirstSearch
from .session import SearchSession, run_breadth_first, run_depth_first

__all__ = [
    "AbstractSearch",
    "BreadthFirstSearch",
    "DepthFirstSearch",
    "ResultCollector",
    "SearchSession",
    "run_breadth_first",
    "run_depth_first",
    "trim_queue",
]
