"""
Search runner.

Evaluates the prompt once, then hands the model's state to a search
strategy and returns the ranked results.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Optional

from beamtree.common import AbstractModel, EvaluationFailure, SearchConfig
from beamtree.search import ResultCollector, SearchSession

logger = logging.getLogger(__name__)

STRATEGIES = ("bfs", "dfs")


class Runner:
    """
    Prompt evaluation plus strategy dispatch.

    Args:
        model: Model implementing the capability interface
        config: Search parameters
        debug: Whether to print debug info
    """

    def __init__(
        self,
        model: AbstractModel,
        config: Optional[SearchConfig] = None,
        debug: bool = False,
    ):
        self.model = model
        self.config = config if config is not None else SearchConfig()
        self.debug = debug
        self.prompt_token_count = 0
        self.session: Optional[SearchSession] = None

    def evaluate_prompt(self, prompt: str) -> int:
        """
        Tokenize and evaluate the prompt.

        Returns:
            Number of prompt tokens (the search's start position)

        Raises:
            ValueError: If the prompt produces no tokens
            EvaluationFailure: If the model fails on the prompt
        """
        token_ids = self.model.tokenize(prompt)
        if not token_ids:
            raise ValueError("Failed to tokenize prompt")

        if self.debug:
            print(f"[DEBUG] prompt token ids: {token_ids}")

        if not self.model.eval_prompt(token_ids, self.config.n_threads):
            raise EvaluationFailure(token_ids[0], 0, "prompt evaluation failed")

        self.prompt_token_count = len(token_ids)
        logger.info(f"Prompt evaluated: {self.prompt_token_count} tokens")
        return self.prompt_token_count

    def run(
        self,
        prompt: str,
        strategy: str = "bfs",
        start_text: str = "",
        **overrides,
    ) -> ResultCollector:
        """
        Evaluate prompt and search.

        Args:
            prompt: Prompt text
            strategy: "bfs" (breadth-first) or "dfs" (depth-first)
            start_text: Text every result starts with
            **overrides: SearchConfig fields for this run only

        Returns:
            Results of the search
        """
        if strategy not in STRATEGIES:
            raise ValueError(f"Unknown strategy '{strategy}', expected one of {STRATEGIES}")

        config = replace(self.config, **overrides) if overrides else self.config
        n_past = self.evaluate_prompt(prompt)

        self.session = SearchSession(self.model, config)
        with self.session as session:
            if strategy == "dfs":
                return session.run_depth_first(n_past, start_text=start_text)
            return session.run_breadth_first(n_past, start_text=start_text)

    def cancel(self) -> None:
        """Cancel the running search, if any."""
        if self.session is not None:
            self.session.cancel()
