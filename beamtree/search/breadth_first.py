"""
Breadth-first exploration.

Frames (snapshot + partial text + depth + prob_sum) wait in a FIFO queue.
Each dequeued frame is restored into the model, ranked, and every candidate
above p_threshold becomes either a result (at max_depth) or a new queued
frame. Past a warm-up depth the queue is periodically trimmed to the
highest-scoring max_width frames, which bounds memory at the cost of
optimality.
"""

from __future__ import annotations

import logging
from itertools import islice
from typing import Deque

from beamtree.common.errors import EvaluationFailure
from beamtree.snapshots import SearchFrame, SnapshotStore

from .base import AbstractSearch

logger = logging.getLogger(__name__)


def trim_queue(queue: Deque[SearchFrame], max_width: int, store: SnapshotStore) -> int:
    """
    Keep the max_width frames with the highest prob_sum.

    Kept frames are requeued best first (queue order among equal scores).
    Dropped frames have their snapshots disposed.

    Returns:
        Number of frames dropped
    """
    if len(queue) <= max_width:
        return 0
    ranked = sorted(queue, key=lambda f: f.prob_sum, reverse=True)
    queue.clear()
    queue.extend(ranked[:max_width])
    dropped = ranked[max_width:]
    for frame in dropped:
        store.dispose(frame.snapshot)
    logger.debug(
        f"trim kept={len(queue)} dropped={len(dropped)} "
        f"floor={queue[-1].prob_sum:.4f}"
    )
    return len(dropped)


class BreadthFirstSearch(AbstractSearch):
    """
    Queue-based breadth-first strategy.

    A frame is a leaf iff it produced no continuation; a leaf records its own
    text/prob_sum/depth as a result.
    """

    name = "bfs"

    def search(self, start_position: int, start_text: str) -> None:
        cfg = self.config
        queue = self.session.queue

        queue.append(
            SearchFrame(
                snapshot=self.store.capture(self.model, start_position),
                text=start_text,
                depth=1,
                prob_sum=0.0,
            )
        )

        depth = 1
        while queue:
            if self.session.cancelled:
                self._drain(queue)
                break

            if cfg.should_trim(depth):
                trim_queue(queue, cfg.trim_width, self.store)

            frame = queue.popleft()
            try:
                n_past = self.store.restore(self.model, frame.snapshot)
            except BaseException:
                if not frame.snapshot.released:
                    self.store.dispose(frame.snapshot)
                raise
            depth = frame.depth

            if self._expand(frame, n_past) == 0:
                self._record(frame.text, frame.prob_sum, frame.depth)

        # Model still holds the state of the last expanded frame
        logger.debug(f"bfs finished at depth {depth}")

    def _expand(self, frame: SearchFrame, n_past: int) -> int:
        cfg = self.config
        queue = self.session.queue
        produced = 0

        for candidate in islice(self.ranker.rank(self.model), cfg.beam_width):
            if candidate.probability < cfg.p_threshold:
                break

            child_text = frame.text + self._token_text(candidate)
            child_sum = frame.prob_sum + candidate.probability
            self._announce(child_text, child_sum)

            if frame.depth >= cfg.max_depth:
                self._record(child_text, child_sum, frame.depth)
                produced += 1
                continue

            try:
                with self.store.scoped(self.model, n_past):
                    self._step(candidate.token, n_past)
                    queue.append(
                        SearchFrame(
                            snapshot=self.store.capture(self.model, n_past + 1),
                            text=child_text,
                            depth=frame.depth + 1,
                            prob_sum=child_sum,
                        )
                    )
            except EvaluationFailure as e:
                self._abandon(e)
                continue
            produced += 1

        return produced

    def _drain(self, queue: Deque[SearchFrame]) -> None:
        logger.info(f"Search cancelled, draining {len(queue)} queued frames")
        while queue:
            frame = queue.popleft()
            self.store.dispose(frame.snapshot)
            self._record(frame.text, frame.prob_sum, frame.depth)
