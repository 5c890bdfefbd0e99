"""
Value types shared by the search strategies.

- Candidate: one ranked next-token option
- Result: a finished (or stalled) candidate sequence
- SearchConfig: every tunable of a search run
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from .schema_utils import SchemaClass


@dataclass(frozen=True)
class Candidate:
    """
    Next-token candidate.

    Attributes:
        token: Vocabulary id
        probability: Normalized probability of the token at this step
    """

    token: int
    probability: float


@dataclass(frozen=True)
class Result:
    """
    Terminal candidate sequence.

    Attributes:
        text: Generated text (start text plus every chosen token)
        prob_sum: Sum of the per-step probabilities along the path
        depth: Depth at which the sequence ended
    """

    text: str
    prob_sum: float
    depth: int

    def to_dict(self) -> Dict[str, Any]:
        return {"text": self.text, "prob_sum": float(self.prob_sum), "depth": self.depth}


@dataclass
class SearchConfig(SchemaClass):
    """
    Search parameters.

    Attributes:
        beam_width: Maximum candidates expanded from one frame
        max_depth: Deepest level explored (depth 1 holds the first token)
        p_threshold: Breadth-first minimum candidate probability
        cutoff: Depth-first minimum candidate probability
        min_branching: Depth-first fallback width when few candidates qualify
        max_width: Breadth-first queue size kept by trim (None = beam_width)
        trim_warmup_depth: Trim only once the search is past this depth
        trim_every: Trim on depths divisible by this
        n_threads: Thread hint passed to every model step
        max_snapshot_bytes: Budget for live snapshot buffers (None = unbounded)
        fail_fast: Propagate the first evaluation failure instead of
            abandoning the branch
        verbose: Print every accepted candidate
    """

    beam_width: int = 8
    max_depth: int = 16
    p_threshold: float = 0.1
    cutoff: float = 0.1
    min_branching: int = 2
    max_width: Optional[int] = None
    trim_warmup_depth: int = 10
    trim_every: int = 3
    n_threads: int = 1
    max_snapshot_bytes: Optional[int] = None
    fail_fast: bool = False
    verbose: bool = False

    def __post_init__(self):
        super().__post_init__()
        if self.beam_width < 1:
            raise ValueError(f"beam_width must be >= 1, got {self.beam_width}")
        if self.max_depth < 1:
            raise ValueError(f"max_depth must be >= 1, got {self.max_depth}")
        for name in ("p_threshold", "cutoff"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be in [0, 1], got {value}")
        if self.min_branching < 1:
            raise ValueError(f"min_branching must be >= 1, got {self.min_branching}")
        if self.max_width is not None and self.max_width < 1:
            raise ValueError(f"max_width must be >= 1, got {self.max_width}")
        if self.trim_every < 1:
            raise ValueError(f"trim_every must be >= 1, got {self.trim_every}")

    @property
    def trim_width(self) -> int:
        return self.max_width if self.max_width is not None else self.beam_width

    def should_trim(self, depth: int) -> bool:
        """Whether the breadth-first queue is trimmed after reaching depth."""
        return depth > self.trim_warmup_depth and depth % self.trim_every == 0
