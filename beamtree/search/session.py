"""
Search session.

One session per search invocation. It owns everything the search mutates
besides the model itself: the result collection, the snapshot store, the
breadth-first queue, the depth-first snapshot stack and the cancellation
flag. Closing the session disposes any snapshot still owned by it.

Usage:
    with SearchSession(model, SearchConfig(beam_width=4)) as session:
        session.run_breadth_first(start_position=n_prompt, max_depth=20)
        print(session.best().text)
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import replace
from typing import Deque, List, Optional, Type

from beamtree.common.errors import EvaluationFailure
from beamtree.common.model import AbstractModel
from beamtree.common.schemas import Result, SearchConfig
from beamtree.ranking import CandidateRanker
from beamtree.snapshots import SearchFrame, Snapshot, SnapshotStore

from .base import AbstractSearch
from .breadth_first import BreadthFirstSearch
from .collector import ResultCollector
from .depth_first import DepthFirstSearch

logger = logging.getLogger(__name__)


class SearchSession:
    """
    Owner of one search's mutable state.

    Args:
        model: Model holding the evaluated prompt state
        config: Default search parameters (per-run arguments override them)
        store: Snapshot store (a fresh one bounded by
            config.max_snapshot_bytes if None)
        ranker: Candidate ranker (default CandidateRanker)
    """

    def __init__(
        self,
        model: AbstractModel,
        config: Optional[SearchConfig] = None,
        store: Optional[SnapshotStore] = None,
        ranker: Optional[CandidateRanker] = None,
    ):
        self.model = model
        self.config = config if config is not None else SearchConfig()
        self.store = (
            store
            if store is not None
            else SnapshotStore(max_bytes=self.config.max_snapshot_bytes)
        )
        self.ranker = ranker if ranker is not None else CandidateRanker()
        self.results = ResultCollector()
        self.queue: Deque[SearchFrame] = deque()
        self.stack: List[Snapshot] = []
        self.failures: List[EvaluationFailure] = []
        self._cancel = threading.Event()

    # -------------------------------------------------------------------------
    # Entry points
    # -------------------------------------------------------------------------

    def run_depth_first(
        self,
        start_position: int,
        beam_width: Optional[int] = None,
        max_depth: Optional[int] = None,
        start_text: str = "",
    ) -> ResultCollector:
        """
        Depth-first search from the model's current state.

        Args:
            start_position: Tokens already processed by the model (n_past)
            beam_width: Overrides config.beam_width
            max_depth: Overrides config.max_depth
            start_text: Text every result starts with

        Returns:
            The session's result collector
        """
        config = self._config_for(beam_width=beam_width, max_depth=max_depth)
        return self._run(DepthFirstSearch, config, start_position, start_text)

    def run_breadth_first(
        self,
        start_position: int,
        beam_width: Optional[int] = None,
        max_depth: Optional[int] = None,
        start_text: str = "",
        probability_threshold: Optional[float] = None,
    ) -> ResultCollector:
        """
        Breadth-first search from the model's current state.

        Args:
            start_position: Tokens already processed by the model (n_past)
            beam_width: Overrides config.beam_width
            max_depth: Overrides config.max_depth
            start_text: Text every result starts with
            probability_threshold: Overrides config.p_threshold

        Returns:
            The session's result collector
        """
        config = self._config_for(
            beam_width=beam_width,
            max_depth=max_depth,
            p_threshold=probability_threshold,
        )
        return self._run(BreadthFirstSearch, config, start_position, start_text)

    # -------------------------------------------------------------------------
    # Results
    # -------------------------------------------------------------------------

    def best(self) -> Result:
        return self.results.best()

    def sorted_all(self) -> List[Result]:
        return self.results.sorted_all()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def cancel(self) -> None:
        """
        Ask the running search to stop expanding (safe from any thread).

        The request covers the current run, or the next one if none is
        running; it is cleared when that run returns.
        """
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def close(self) -> None:
        """Dispose every snapshot the session still owns."""
        while self.queue:
            self.store.dispose(self.queue.popleft().snapshot)
        for snapshot in self.stack:
            if not snapshot.released:
                self.store.dispose(snapshot)
        self.stack.clear()
        if self.store.live_count:
            logger.warning(f"{self.store.live_count} snapshots still live at close")

    def __enter__(self) -> SearchSession:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _config_for(self, **overrides) -> SearchConfig:
        overrides = {k: v for k, v in overrides.items() if v is not None}
        return replace(self.config, **overrides) if overrides else self.config

    def _run(
        self,
        strategy_cls: Type[AbstractSearch],
        config: SearchConfig,
        start_position: int,
        start_text: str,
    ) -> ResultCollector:
        strategy = strategy_cls(self, config)
        n_before = len(self.results)
        n_failures = len(self.failures)
        logger.info(
            f"Starting {strategy.name} search {config.get_id()} "
            f"(beam_width={config.beam_width}, max_depth={config.max_depth}, "
            f"n_past={start_position})"
        )
        try:
            strategy.search(start_position, start_text)
        finally:
            # A cancel request ends this run only
            self._cancel.clear()
            # Frames left behind by a fatal error
            while self.queue:
                self.store.dispose(self.queue.popleft().snapshot)

        new_failures = self.failures[n_failures:]
        n_new = len(self.results) - n_before
        logger.info(
            f"Finished {strategy.name} search: {n_new} results, "
            f"{len(new_failures)} abandoned branches, "
            f"peak snapshot memory {self.store.peak_bytes} bytes"
        )
        if n_new == 0 and new_failures:
            raise new_failures[0]
        return self.results

    def __repr__(self) -> str:
        return (
            f"SearchSession(results={len(self.results)}, queue={len(self.queue)}, "
            f"stack={len(self.stack)}, {self.store!r})"
        )


def run_depth_first(
    model: AbstractModel,
    start_position: int,
    beam_width: Optional[int] = None,
    max_depth: Optional[int] = None,
    start_text: str = "",
    config: Optional[SearchConfig] = None,
) -> ResultCollector:
    """Depth-first search in a fresh session; None arguments come from config."""
    with SearchSession(model, config) as session:
        return session.run_depth_first(start_position, beam_width, max_depth, start_text)


def run_breadth_first(
    model: AbstractModel,
    start_position: int,
    beam_width: Optional[int] = None,
    max_depth: Optional[int] = None,
    start_text: str = "",
    probability_threshold: Optional[float] = None,
    config: Optional[SearchConfig] = None,
) -> ResultCollector:
    """Breadth-first search in a fresh session; None arguments come from config."""
    with SearchSession(model, config) as session:
        return session.run_breadth_first(
            start_position, beam_width, max_depth, start_text, probability_threshold
        )
