"""
Capability interface the search engine needs from a generative model.

The engine never touches weights, tokenizers or the forward pass directly.
It only needs to read and write the model's full mutable state as bytes,
step one token, and read the next-token logits.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Sequence, Tuple

import numpy as np


class AbstractModel(ABC):
    """
    Steppable model with snapshot-able state.

    Implementations hold a single mutable state (KV cache, logits, position).
    state_size() must stay constant for a given model configuration so that
    any captured buffer can be loaded back.
    """

    @abstractmethod
    def state_size(self) -> int:
        """Size in bytes of the full mutable state."""

    @abstractmethod
    def copy_state_out(self, buffer: np.ndarray) -> None:
        """Write the full state into buffer (uint8, length state_size())."""

    @abstractmethod
    def load_state_in(self, buffer: np.ndarray) -> None:
        """Replace the full state with the contents of buffer."""

    @abstractmethod
    def step(self, token: int, position: int, n_threads: int = 1) -> bool:
        """
        Advance the model by one token.

        Args:
            token: Token id to evaluate
            position: Number of tokens already processed (n_past)
            n_threads: Compute thread hint

        Returns:
            True on success, False on a fatal evaluation error
        """

    @abstractmethod
    def current_logits(self) -> np.ndarray:
        """Next-token logits, one float per vocabulary id."""

    @property
    @abstractmethod
    def vocab_size(self) -> int:
        """Number of vocabulary ids."""

    @abstractmethod
    def detokenize(self, token: int) -> str:
        """Text fragment for a single token id."""

    @abstractmethod
    def tokenize(self, text: str) -> List[int]:
        """Token ids for text."""

    def normalize_to_probabilities(
        self, logits: np.ndarray
    ) -> Sequence[Tuple[int, float]]:
        """
        Softmax over logits, sorted by probability.

        Returns:
            (token id, probability) pairs, probability descending,
            ties broken by token id ascending
        """
        logits = np.asarray(logits, dtype=np.float64)
        # Numerical stability: subtract max
        exp = np.exp(logits - np.max(logits))
        probs = exp / np.sum(exp)
        # Stable sort on -p keeps ascending ids among equal probabilities
        order = np.argsort(-probs, kind="stable")
        return [(int(i), float(probs[i])) for i in order]

    def eval_prompt(self, token_ids: Sequence[int], n_threads: int = 1) -> bool:
        """
        Evaluate a whole prompt starting from an empty state.

        The default steps token by token; adapters with a batched forward
        pass override this.
        """
        for position, token in enumerate(token_ids):
            if not self.step(int(token), position, n_threads):
                return False
        return True
