"""
Model wrapper for Transformers models.

Exposes a causal LM through the beamtree capability interface: one token
per step, KV-cached, with the full mutable state (position, last logits and
the KV cache) serialisable into a fixed-size byte buffer.

State buffer layout:
    int64    n_past
    float32  logits[vocab_size]
    dtype    kv[n_layers, 2, n_kv_heads, n_ctx, head_dim]

The KV block is padded to n_ctx positions so the state size never changes
while the model is stepped.
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np
import torch
import torch.nn.functional as F
from transformers import AutoModelForCausalLM, AutoTokenizer, DynamicCache

from beamtree.common import AbstractModel, StateSizeMismatch

logger = logging.getLogger(__name__)

_HEADER_BYTES = 8


def cache_layers(cache) -> List[Tuple[torch.Tensor, torch.Tensor]]:
    """(keys, values) per layer for any cache flavour transformers returns."""
    if cache is None:
        return []
    if hasattr(cache, "layers"):
        return [(layer.keys, layer.values) for layer in cache.layers]
    if hasattr(cache, "key_cache"):
        return list(zip(cache.key_cache, cache.value_cache))
    return [(k, v) for k, v in cache]


class ModelWrapper(AbstractModel):
    """
    Wrapper for Hugging Face transformers models.

    Handles model loading, tokenization and single-token inference with a
    snapshot-able KV cache.
    """

    def __init__(
        self,
        model_name: str,
        device: Optional[str] = None,
        dtype: Optional[torch.dtype] = None,
        n_ctx: int = 512,
        use_chat_template: bool = False,
    ):
        """
        Initialize model wrapper.

        Args:
            model_name: HuggingFace model name
            device: Device to use (auto-detected if None)
            dtype: Data type for model (auto-detected if None)
            n_ctx: Context capacity in tokens; fixes the state size
            use_chat_template: Whether tokenize() applies the chat template
        """
        self.model_name = model_name
        self.n_ctx = n_ctx
        self.use_chat_template = use_chat_template

        # Auto-detect device
        if device is None:
            if torch.backends.mps.is_available():
                device = "mps"
            elif torch.cuda.is_available():
                device = "cuda"
            else:
                device = "cpu"
        self.device = device

        # Auto-detect dtype
        if dtype is None:
            if device in ["mps", "cuda"]:
                dtype = torch.float16
            else:
                dtype = torch.float32
        self.dtype = dtype

        logger.info(f"Loading {model_name} on {device}...")
        self.tokenizer = AutoTokenizer.from_pretrained(model_name)
        self.model = AutoModelForCausalLM.from_pretrained(
            model_name,
            dtype=dtype,
            device_map=device,
        )
        self.model.eval()

        config = self.model.config
        n_heads = config.num_attention_heads
        self.n_layers = config.num_hidden_layers
        self.n_kv_heads = getattr(config, "num_key_value_heads", None) or n_heads
        self.head_dim = getattr(config, "head_dim", None) or config.hidden_size // n_heads
        self._itemsize = torch.empty((), dtype=dtype).element_size()

        self.n_past = 0
        self._cache = None
        self._logits: Optional[torch.Tensor] = None

        logger.info(
            f"Model loaded: {model_name} (n_ctx={n_ctx}, "
            f"state_size={self.state_size()} bytes)"
        )

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def _kv_shape(self) -> Tuple[int, int, int, int, int]:
        return (self.n_layers, 2, self.n_kv_heads, self.n_ctx, self.head_dim)

    @property
    def _kv_offset(self) -> int:
        return _HEADER_BYTES + 4 * self.vocab_size

    def state_size(self) -> int:
        kv_bytes = int(np.prod(self._kv_shape)) * self._itemsize
        return self._kv_offset + kv_bytes

    def _check_buffer(self, buffer: np.ndarray) -> None:
        expected = self.state_size()
        if buffer.nbytes != expected:
            raise StateSizeMismatch(expected, int(buffer.nbytes))

    def _kv_view(self, buffer: np.ndarray) -> torch.Tensor:
        raw = torch.from_numpy(buffer[self._kv_offset :])
        return raw.view(self.dtype).view(self._kv_shape)

    def copy_state_out(self, buffer: np.ndarray) -> None:
        self._check_buffer(buffer)
        buffer[:_HEADER_BYTES].view(np.int64)[0] = self.n_past

        logits = buffer[_HEADER_BYTES : self._kv_offset].view(np.float32)
        if self._logits is None:
            logits[:] = 0.0
        else:
            logits[:] = self._logits.numpy()

        kv = self._kv_view(buffer)
        kv.zero_()
        for i, (k, v) in enumerate(cache_layers(self._cache)):
            n = k.shape[-2]
            kv[i, 0, :, :n] = k[0].to("cpu", self.dtype)
            kv[i, 1, :, :n] = v[0].to("cpu", self.dtype)

    def load_state_in(self, buffer: np.ndarray) -> None:
        self._check_buffer(buffer)
        n_past = int(buffer[:_HEADER_BYTES].view(np.int64)[0])
        if not 0 <= n_past <= self.n_ctx:
            raise ValueError(f"Corrupt state buffer: n_past={n_past}")

        logits = buffer[_HEADER_BYTES : self._kv_offset].view(np.float32)
        self._logits = torch.from_numpy(logits.copy()) if n_past else None

        cache = None
        if n_past:
            kv = self._kv_view(buffer)
            cache = DynamicCache()
            for i in range(self.n_layers):
                k = kv[i, 0, :, :n_past].unsqueeze(0).to(self.device).clone()
                v = kv[i, 1, :, :n_past].unsqueeze(0).to(self.device).clone()
                cache.update(k, v, i)
        self._cache = cache
        self.n_past = n_past

    def reset(self) -> None:
        """Drop all state (empty context)."""
        self.n_past = 0
        self._cache = None
        self._logits = None

    # -------------------------------------------------------------------------
    # Inference
    # -------------------------------------------------------------------------

    def _set_threads(self, n_threads: int) -> None:
        if self.device == "cpu" and n_threads and n_threads != torch.get_num_threads():
            torch.set_num_threads(n_threads)

    def _forward(self, input_ids: torch.Tensor) -> bool:
        try:
            with torch.no_grad():
                out = self.model(
                    input_ids=input_ids,
                    past_key_values=self._cache,
                    use_cache=True,
                )
        except (RuntimeError, IndexError, ValueError) as e:
            logger.error(f"Forward pass failed at n_past={self.n_past}: {e}")
            return False

        self._cache = out.past_key_values
        self._logits = out.logits[0, -1, : self.vocab_size].float().cpu()
        self.n_past += input_ids.shape[1]
        return True

    def step(self, token: int, position: int, n_threads: int = 1) -> bool:
        if position != self.n_past:
            logger.error(f"Step at position {position} but model is at {self.n_past}")
            return False
        if position >= self.n_ctx:
            logger.error(f"Context full ({self.n_ctx} tokens)")
            return False
        if not 0 <= token < self.vocab_size:
            logger.error(f"Token {token} outside vocabulary")
            return False

        self._set_threads(n_threads)
        input_ids = torch.tensor([[token]], device=self.device)
        return self._forward(input_ids)

    def eval_prompt(self, token_ids: Sequence[int], n_threads: int = 1) -> bool:
        """Evaluate the whole prompt in one forward pass from an empty state."""
        self.reset()
        if not token_ids:
            return False
        if len(token_ids) > self.n_ctx:
            logger.error(f"Prompt of {len(token_ids)} tokens exceeds n_ctx={self.n_ctx}")
            return False

        self._set_threads(n_threads)
        input_ids = torch.tensor([list(token_ids)], device=self.device)
        return self._forward(input_ids)

    def current_logits(self) -> np.ndarray:
        if self._logits is None:
            raise ValueError("No logits available. Call eval_prompt() first.")
        return self._logits.numpy()

    def normalize_to_probabilities(
        self, logits: np.ndarray
    ) -> Iterable[Tuple[int, float]]:
        """
        Softmax and sort, lazily paired.

        Only the consumed prefix is converted to Python values, so ranking a
        large vocabulary stays cheap when the caller reads the top few.
        """
        probs = F.softmax(torch.as_tensor(logits, dtype=torch.float32), dim=-1)
        sorted_probs, order = torch.sort(probs, descending=True, stable=True)
        return (
            (int(order[i]), float(sorted_probs[i])) for i in range(order.shape[0])
        )

    # -------------------------------------------------------------------------
    # Tokenization
    # -------------------------------------------------------------------------

    def tokenize(self, text: str) -> List[int]:
        """
        Tokenize prompt.

        Applies the chat template when enabled and the tokenizer has one.
        """
        if self.use_chat_template and self.tokenizer.chat_template is not None:
            ids = self.tokenizer.apply_chat_template(
                [{"role": "user", "content": text}],
                tokenize=True,
                add_generation_prompt=True,
            )
            # Newer tokenizers return a BatchEncoding
            if not isinstance(ids, list):
                ids = ids["input_ids"]
        else:
            ids = self.tokenizer.encode(text)
        return [int(i) for i in ids]

    def detokenize(self, token: int) -> str:
        return self.tokenizer.decode([token], skip_special_tokens=False)

    @property
    def vocab_size(self) -> int:
        """Get vocabulary size."""
        return self.model.config.vocab_size

    def __repr__(self) -> str:
        return (
            f"ModelWrapper({self.model_name}, device={self.device}, "
            f"n_ctx={self.n_ctx}, n_past={self.n_past})"
        )
