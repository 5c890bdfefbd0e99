"""
Depth-first exploration.

Recurses into every accepted candidate down to max_depth. Before each child
the model state is captured; after the child's subtree is done it is
restored, so every sibling starts from the same parent state. Live snapshots
never exceed the recursion depth.
"""

from __future__ import annotations

import logging

from beamtree.common.errors import EvaluationFailure

from .base import AbstractSearch

logger = logging.getLogger(__name__)


class DepthFirstSearch(AbstractSearch):
    """
    Recursive depth-first strategy.

    At each frame the leading candidates with probability >= cutoff are
    accepted (at most beam_width). When fewer than min_branching qualify the
    accepted set is widened to min_branching so the search does not dead-end.
    """

    name = "dfs"

    def search(self, start_position: int, start_text: str) -> None:
        self._expand(start_position, 0.0, 1, start_text)

    def _expand(self, n_past: int, prob_sum: float, depth: int, text: str) -> None:
        cfg = self.config

        if self.session.cancelled:
            self._record(text, prob_sum, depth)
            return

        ranked = self.ranker.top(self.model, cfg.beam_width)
        qualifying = 0
        for candidate in ranked:
            if candidate.probability < cfg.cutoff:
                break
            qualifying += 1
        n_accept = min(len(ranked), max(qualifying, cfg.min_branching))

        is_leaf_level = depth >= cfg.max_depth or cfg.beam_width == 1

        for candidate in ranked[:n_accept]:
            if self.session.cancelled:
                break

            child_text = text + self._token_text(candidate)
            child_sum = prob_sum + candidate.probability
            self._announce(child_text, child_sum)

            if is_leaf_level:
                self._record(child_text, child_sum, depth)
                continue

            try:
                with self.store.scoped(self.model, n_past) as snapshot:
                    self.session.stack.append(snapshot)
                    try:
                        self._step(candidate.token, n_past)
                        self._expand(n_past + 1, child_sum, depth + 1, child_text)
                    finally:
                        self.session.stack.pop()
            except EvaluationFailure as e:
                self._abandon(e)
