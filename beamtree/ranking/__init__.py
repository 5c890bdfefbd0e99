"""Next-token candidate ranking."""

from .ranker import CandidateRanker

__all__ = ["CandidateRanker"]
