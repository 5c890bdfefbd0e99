"""
Pytest configuration and shared fixtures for beamtree tests.

Provides a deterministic in-memory model implementing the capability
interface, so searches can be run without loading any weights.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Callable, Iterable, Optional, Sequence

import numpy as np
import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from beamtree.common import AbstractModel, SearchConfig

# Probabilities of the reference scenario: same distribution at every step
SCENARIO_PROBS = [0.6, 0.3, 0.08, 0.02]

LogitsFn = Callable[[Sequence[int]], np.ndarray]


def constant_logits(probs: Sequence[float]) -> LogitsFn:
    """Logits giving the same distribution whatever the history."""
    logits = np.log(np.asarray(probs, dtype=np.float64))
    return lambda history: logits


# =============================================================================
# Table Model
# =============================================================================


class TableModel(AbstractModel):
    """
    Deterministic model whose logits are a function of the token history.

    State layout (int64 words): [n_past, history[0..n_ctx), logits bits...].
    Tokens map to lowercase letters: 0 -> "a", 1 -> "b", ...

    Args:
        vocab: Vocabulary size
        logits_fn: history -> logits (default: uniform)
        n_ctx: Context capacity
        fail_tokens: Tokens whose evaluation fails
    """

    def __init__(
        self,
        vocab: int = 4,
        logits_fn: Optional[LogitsFn] = None,
        n_ctx: int = 64,
        fail_tokens: Iterable[int] = (),
    ):
        self._vocab = vocab
        self.logits_fn = logits_fn or (lambda history: np.zeros(vocab))
        self.n_ctx = n_ctx
        self.fail_tokens = set(fail_tokens)
        self.history: list[int] = []
        self.logits = np.asarray(self.logits_fn(()), dtype=np.float64)
        self.step_calls = 0
        self.loads = 0

    @property
    def vocab_size(self) -> int:
        return self._vocab

    @property
    def n_past(self) -> int:
        return len(self.history)

    def state_size(self) -> int:
        return 8 * (1 + self.n_ctx + self._vocab)

    def copy_state_out(self, buffer: np.ndarray) -> None:
        words = np.zeros(1 + self.n_ctx, dtype=np.int64)
        words[0] = len(self.history)
        words[1 : 1 + len(self.history)] = self.history
        state = np.concatenate([words.view(np.uint8), self.logits.view(np.uint8)])
        buffer[:] = state

    def load_state_in(self, buffer: np.ndarray) -> None:
        words = buffer[: 8 * (1 + self.n_ctx)].view(np.int64)
        n = int(words[0])
        self.history = [int(t) for t in words[1 : 1 + n]]
        self.logits = buffer[8 * (1 + self.n_ctx) :].view(np.float64).copy()
        self.loads += 1

    def step(self, token: int, position: int, n_threads: int = 1) -> bool:
        if position != len(self.history) or position >= self.n_ctx:
            return False
        if token in self.fail_tokens or not 0 <= token < self._vocab:
            return False
        self.history.append(token)
        self.logits = np.asarray(self.logits_fn(tuple(self.history)), dtype=np.float64)
        self.step_calls += 1
        return True

    def current_logits(self) -> np.ndarray:
        return self.logits

    def detokenize(self, token: int) -> str:
        return chr(ord("a") + token)

    def tokenize(self, text: str) -> list[int]:
        return [ord(c) - ord("a") for c in text]


# =============================================================================
# Model Fixtures
# =============================================================================


@pytest.fixture
def make_model() -> Callable[..., TableModel]:
    """Factory for table models."""
    return TableModel


@pytest.fixture
def make_scenario_model() -> Callable[..., TableModel]:
    """Factory for vocab 4 models with probabilities [0.6, 0.3, 0.08, 0.02]."""

    def _make(**kwargs) -> TableModel:
        return TableModel(vocab=4, logits_fn=constant_logits(SCENARIO_PROBS), **kwargs)

    return _make


@pytest.fixture
def scenario_model(make_scenario_model) -> TableModel:
    """Vocab 4 with probabilities [0.6, 0.3, 0.08, 0.02] at every step."""
    return make_scenario_model()


@pytest.fixture
def history_model() -> TableModel:
    """Distribution that shifts with the last token and the position."""

    def logits_fn(history):
        logits = np.zeros(6)
        if history:
            logits[(history[-1] + 1) % 6] = 3.0
            logits[(history[-1] + len(history)) % 6] += 1.5
        else:
            logits[0] = 2.0
            logits[1] = 1.0
        return logits

    return TableModel(vocab=6, logits_fn=logits_fn)


@pytest.fixture
def scenario_config() -> SearchConfig:
    """Config of the reference scenario."""
    return SearchConfig(beam_width=2, max_depth=2, p_threshold=0.1)


# =============================================================================
# Numpy Test Utilities
# =============================================================================


@pytest.fixture
def assert_array_close():
    """Fixture for array comparison with tolerance."""

    def _assert_close(actual, expected, rtol=1e-5, atol=1e-8):
        np.testing.assert_allclose(actual, expected, rtol=rtol, atol=atol)

    return _assert_close


# =============================================================================
# Markers
# =============================================================================


def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
