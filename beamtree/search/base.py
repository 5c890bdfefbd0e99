"""
Abstract search strategy.

Holds the plumbing both strategies share: stepping the model, abandoning a
failed branch, and recording results into the owning session.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from beamtree.common.errors import EvaluationFailure
from beamtree.common.schemas import Candidate, Result, SearchConfig

if TYPE_CHECKING:
    from .session import SearchSession

logger = logging.getLogger(__name__)


class AbstractSearch(ABC):
    """
    Base class for exploration strategies.

    A strategy is bound to one session and one config. The session's model
    must already hold the start state (prompt evaluated) when search() runs.
    Depth-first hands that state back on return; breadth-first leaves the
    state of the last frame it expanded.
    """

    name = "abstract"

    def __init__(self, session: SearchSession, config: SearchConfig):
        self.session = session
        self.config = config
        self.model = session.model
        self.store = session.store
        self.ranker = session.ranker

    @abstractmethod
    def search(self, start_position: int, start_text: str) -> None:
        """Explore from the model's current state; results land in the session."""

    def _step(self, token: int, n_past: int) -> None:
        if not self.model.step(token, n_past, self.config.n_threads):
            raise EvaluationFailure(token, n_past)

    def _abandon(self, failure: EvaluationFailure) -> None:
        if self.config.fail_fast:
            raise failure
        logger.warning(f"Abandoning branch: {failure}")
        self.session.failures.append(failure)

    def _record(self, text: str, prob_sum: float, depth: int) -> None:
        self.session.results.record(Result(text=text, prob_sum=prob_sum, depth=depth))

    def _announce(self, text: str, prob_sum: float) -> None:
        if self.config.verbose:
            print(f" ({prob_sum:.2f}) {text}")

    def _token_text(self, candidate: Candidate) -> str:
        return self.model.detokenize(candidate.token)
