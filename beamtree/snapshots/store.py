"""
Snapshot store for model state.

A Snapshot is a byte-exact copy of the model's mutable state taken at one
point of the search. Every snapshot is released exactly once: either it is
restored into the model or it is disposed. The store keeps live counts so a
leaked snapshot shows up immediately.

Usage:
    store = SnapshotStore()

    # Scoped: restored on every exit path
    with store.scoped(model, n_past):
        model.step(token, n_past)
        ...

    # Owned by a queued frame
    snap = store.capture(model, n_past)
    ...
    n_past = store.restore(model, snap)   # or store.dispose(snap)
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator, Optional

import numpy as np

from beamtree.common.errors import AllocationError, BeamTreeError, StateSizeMismatch
from beamtree.common.model import AbstractModel

logger = logging.getLogger(__name__)


class Snapshot:
    """
    Captured model state.

    Attributes:
        n_past: Tokens processed by the model at capture time
        nbytes: Length of the state buffer
    """

    __slots__ = ("_buffer", "n_past", "nbytes")

    def __init__(self, buffer: np.ndarray, n_past: int):
        self._buffer: Optional[np.ndarray] = buffer
        self.n_past = n_past
        self.nbytes = int(buffer.nbytes)

    @property
    def released(self) -> bool:
        return self._buffer is None

    @property
    def buffer(self) -> np.ndarray:
        if self._buffer is None:
            raise BeamTreeError("Snapshot has already been released")
        return self._buffer

    def _release(self) -> None:
        if self._buffer is None:
            raise BeamTreeError("Snapshot released twice")
        self._buffer = None

    def __repr__(self) -> str:
        state = "released" if self.released else "live"
        return f"Snapshot(n_past={self.n_past}, nbytes={self.nbytes}, {state})"


class SnapshotStore:
    """
    Allocates, restores and disposes snapshots.

    Args:
        max_bytes: Budget for the combined size of live snapshots.
            Capturing past it raises AllocationError.
    """

    def __init__(self, max_bytes: Optional[int] = None):
        self.max_bytes = max_bytes
        self.live_count = 0
        self.live_bytes = 0
        self.peak_bytes = 0
        self.peak_count = 0
        self.captured = 0
        self.released = 0

    def capture(self, model: AbstractModel, n_past: int) -> Snapshot:
        """
        Copy the model's full state into a new snapshot.

        Raises:
            AllocationError: If the buffer cannot be allocated
        """
        size = model.state_size()
        if self.max_bytes is not None and self.live_bytes + size > self.max_bytes:
            raise AllocationError(
                f"Snapshot of {size} bytes exceeds budget "
                f"({self.live_bytes}/{self.max_bytes} bytes live)"
            )
        try:
            buffer = np.empty(size, dtype=np.uint8)
        except MemoryError as e:
            raise AllocationError(f"Cannot allocate {size} byte snapshot") from e

        model.copy_state_out(buffer)

        self.live_count += 1
        self.live_bytes += size
        self.peak_bytes = max(self.peak_bytes, self.live_bytes)
        self.peak_count = max(self.peak_count, self.live_count)
        self.captured += 1
        logger.debug(f"capture n_past={n_past} size={size} live={self.live_count}")
        return Snapshot(buffer, n_past)

    def restore(self, model: AbstractModel, snapshot: Snapshot) -> int:
        """
        Load a snapshot back into the model and release it.

        Returns:
            The n_past recorded at capture

        Raises:
            StateSizeMismatch: If the model's state size changed since capture
        """
        expected = model.state_size()
        if expected != snapshot.nbytes:
            raise StateSizeMismatch(expected, snapshot.nbytes)
        model.load_state_in(snapshot.buffer)
        self._release(snapshot)
        logger.debug(f"restore n_past={snapshot.n_past} live={self.live_count}")
        return snapshot.n_past

    def dispose(self, snapshot: Snapshot) -> None:
        """Release a snapshot without restoring it."""
        self._release(snapshot)
        logger.debug(f"dispose n_past={snapshot.n_past} live={self.live_count}")

    def _release(self, snapshot: Snapshot) -> None:
        nbytes = snapshot.nbytes
        snapshot._release()
        self.live_count -= 1
        self.live_bytes -= nbytes
        self.released += 1

    @contextmanager
    def scoped(self, model: AbstractModel, n_past: int) -> Iterator[Snapshot]:
        """
        Capture on entry, restore on exit.

        The snapshot is restored whichever way the block exits, unless the
        block already released it. If the restore itself fails the snapshot
        is disposed and the restore error propagates.
        """
        snapshot = self.capture(model, n_past)
        try:
            yield snapshot
        finally:
            if not snapshot.released:
                try:
                    self.restore(model, snapshot)
                finally:
                    if not snapshot.released:
                        self.dispose(snapshot)

    def __repr__(self) -> str:
        return (
            f"SnapshotStore(live={self.live_count}, live_bytes={self.live_bytes}, "
            f"peak_bytes={self.peak_bytes})"
        )
