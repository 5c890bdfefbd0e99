"""
Candidate ranking.

Turns the model's current logits into next-token candidates ordered by
probability (descending, ties by token id ascending).
"""

from __future__ import annotations

from itertools import islice
from typing import Iterator, List

from beamtree.common.model import AbstractModel
from beamtree.common.schemas import Candidate


class CandidateRanker:
    """
    Ranks next-token candidates from a model's logits.

    Normalization is delegated to the model. Ranking never changes the
    model's state, so it can be called any number of times at one frame.
    """

    def rank(self, model: AbstractModel) -> Iterator[Candidate]:
        """
        Lazily yield candidates, most probable first.

        The iterator is finite (one entry per vocabulary id) and cannot be
        restarted; call rank() again for a fresh one.
        """
        ranked = model.normalize_to_probabilities(model.current_logits())
        return (Candidate(token=int(t), probability=float(p)) for t, p in ranked)

    def top(self, model: AbstractModel, k: int) -> List[Candidate]:
        """First k candidates."""
        return list(islice(self.rank(model), k))
