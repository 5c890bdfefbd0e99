"""Queued exploration unit for breadth-first search."""

from __future__ import annotations

from dataclasses import dataclass

from .store import Snapshot


@dataclass
class SearchFrame:
    """
    Snapshot plus the partial sequence it belongs to.

    Attributes:
        snapshot: Model state right after the frame's last token
        text: Generated text so far
        depth: Depth at which the frame will be expanded
        prob_sum: Accumulated per-step probability
    """

    snapshot: Snapshot
    text: str
    depth: int
    prob_sum: float
