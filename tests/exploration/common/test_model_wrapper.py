"""
Tests for model wrapper.

Tests for exploration/common/model.py
"""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import numpy as np
import pytest
import torch

from beamtree.common import StateSizeMismatch
from exploration.common.model import ModelWrapper, cache_layers

N_LAYERS = 2
N_KV_HEADS = 1
HEAD_DIM = 3
VOCAB = 5


class FakeCausalLM:
    """
    Tiny causal LM returning legacy tuple caches.

    Layer i caches key = token + i and value = 2 * token at every position.
    The next-token logits peak at (sum of cached tokens) % VOCAB, so they
    depend on the whole cache, not only on the last input.
    """

    def __init__(self, fail_token=None):
        self.config = SimpleNamespace(
            num_hidden_layers=N_LAYERS,
            num_attention_heads=2,
            num_key_value_heads=N_KV_HEADS,
            head_dim=HEAD_DIM,
            hidden_size=6,
            vocab_size=VOCAB,
        )
        self.fail_token = fail_token
        self.calls = 0

    def eval(self):
        return self

    def __call__(self, input_ids, past_key_values=None, use_cache=True):
        self.calls += 1
        if self.fail_token is not None and self.fail_token in input_ids[0].tolist():
            raise RuntimeError("device-side assert")

        new = input_ids[0].float().view(1, 1, -1, 1).expand(1, N_KV_HEADS, -1, HEAD_DIM)
        past = cache_layers(past_key_values)
        layers = []
        for i in range(N_LAYERS):
            k, v = new + i, new * 2
            if past:
                k = torch.cat([past[i][0], k], dim=-2)
                v = torch.cat([past[i][1], v], dim=-2)
            layers.append((k, v))

        total = int(layers[0][0][0, 0, :, 0].sum().item())
        logits = torch.zeros(1, input_ids.shape[1], VOCAB)
        logits[0, -1, total % VOCAB] = 4.0
        return SimpleNamespace(past_key_values=tuple(layers), logits=logits)


@pytest.fixture
def make_wrapper():
    """Factory for wrappers around FakeCausalLM (tokenizer mocked)."""

    def _make(n_ctx=8, fail_token=None, tokenizer=None):
        with patch("exploration.common.model.AutoTokenizer") as mock_tokenizer_cls, patch(
            "exploration.common.model.AutoModelForCausalLM"
        ) as mock_model_cls:
            mock_tokenizer_cls.from_pretrained.return_value = tokenizer or MagicMock()
            mock_model_cls.from_pretrained.return_value = FakeCausalLM(fail_token)
            return ModelWrapper(model_name="test-model", device="cpu", n_ctx=n_ctx)

    return _make


@pytest.fixture
def wrapper(make_wrapper):
    return make_wrapper()


def empty_buffer(model):
    return np.empty(model.state_size(), dtype=np.uint8)


class TestModelWrapperInit:
    """Test ModelWrapper initialization."""

    @patch("exploration.common.model.AutoModelForCausalLM")
    @patch("exploration.common.model.AutoTokenizer")
    def test_init_auto_detects_device_cpu(self, mock_tokenizer_cls, mock_model_cls):
        """Test device auto-detection falls back to CPU."""
        mock_tokenizer_cls.from_pretrained.return_value = MagicMock()
        mock_model_cls.from_pretrained.return_value = FakeCausalLM()

        with patch("torch.backends.mps.is_available", return_value=False):
            with patch("torch.cuda.is_available", return_value=False):
                model = ModelWrapper(model_name="test-model")

        assert model.device == "cpu"
        assert model.dtype == torch.float32
        mock_tokenizer_cls.from_pretrained.assert_called_once_with("test-model")

    def test_geometry_from_config(self, wrapper):
        """Test layer and head geometry is read from the model config."""
        assert wrapper.n_layers == N_LAYERS
        assert wrapper.n_kv_heads == N_KV_HEADS
        assert wrapper.head_dim == HEAD_DIM
        assert wrapper.vocab_size == VOCAB

    def test_head_dim_fallback(self):
        """Test head_dim falls back to hidden_size / heads."""
        with patch("exploration.common.model.AutoTokenizer"), patch(
            "exploration.common.model.AutoModelForCausalLM"
        ) as mock_model_cls:
            fake = FakeCausalLM()
            fake.config.head_dim = None
            fake.config.num_key_value_heads = None
            mock_model_cls.from_pretrained.return_value = fake
            model = ModelWrapper(model_name="test-model", device="cpu")
        assert model.head_dim == 3
        assert model.n_kv_heads == 2


class TestState:
    """Test state serialisation."""

    def test_state_size(self, wrapper):
        """Test header + float32 logits + padded float32 KV block."""
        kv = N_LAYERS * 2 * N_KV_HEADS * 8 * HEAD_DIM * 4
        assert wrapper.state_size() == 8 + 4 * VOCAB + kv

    def test_state_size_constant(self, wrapper):
        """Test stepping never changes the state size."""
        before = wrapper.state_size()
        assert wrapper.eval_prompt([1, 2])
        assert wrapper.step(3, 2)
        assert wrapper.state_size() == before

    def test_restore_rewinds(self, wrapper, assert_array_close):
        """Test restoring reproduces position, logits and next-step output."""
        assert wrapper.eval_prompt([1, 2])
        buffer = empty_buffer(wrapper)
        wrapper.copy_state_out(buffer)
        saved_logits = wrapper.current_logits().copy()

        assert wrapper.step(3, 2)
        after_step = wrapper.current_logits().copy()
        assert wrapper.step(4, 3)

        wrapper.load_state_in(buffer)
        assert wrapper.n_past == 2
        assert_array_close(wrapper.current_logits(), saved_logits)

        assert wrapper.step(3, 2)
        assert_array_close(wrapper.current_logits(), after_step)

    def test_restore_cache_contents(self, wrapper):
        """Test the rebuilt cache holds exactly the saved positions."""
        assert wrapper.eval_prompt([1, 2, 3])
        buffer = empty_buffer(wrapper)
        wrapper.copy_state_out(buffer)
        wrapper.reset()

        wrapper.load_state_in(buffer)
        layers = cache_layers(wrapper._cache)
        assert len(layers) == N_LAYERS
        keys, values = layers[1]
        assert keys.shape == (1, N_KV_HEADS, 3, HEAD_DIM)
        assert keys[0, 0, :, 0].tolist() == [2.0, 3.0, 4.0]
        assert values[0, 0, :, 0].tolist() == [2.0, 4.0, 6.0]

    def test_empty_state_roundtrip(self, wrapper):
        """Test an empty context restores to an empty context."""
        buffer = empty_buffer(wrapper)
        wrapper.copy_state_out(buffer)
        assert wrapper.eval_prompt([1])

        wrapper.load_state_in(buffer)
        assert wrapper.n_past == 0
        with pytest.raises(ValueError):
            wrapper.current_logits()

    def test_size_mismatch(self, wrapper):
        """Test a wrong-sized buffer raises StateSizeMismatch."""
        with pytest.raises(StateSizeMismatch) as exc_info:
            wrapper.copy_state_out(np.empty(10, dtype=np.uint8))
        assert exc_info.value.expected == wrapper.state_size()
        assert exc_info.value.actual == 10


class TestInference:
    """Test step() and eval_prompt()."""

    def test_step_advances(self, wrapper):
        """Test a successful step moves n_past forward."""
        assert wrapper.eval_prompt([1])
        assert wrapper.step(2, 1)
        assert wrapper.n_past == 2
        # Cached tokens 1 + 2
        assert int(np.argmax(wrapper.current_logits())) == 3

    def test_step_wrong_position(self, wrapper):
        """Test stepping at a position other than n_past fails."""
        assert wrapper.eval_prompt([1, 2])
        assert not wrapper.step(0, 5)
        assert wrapper.n_past == 2

    def test_step_out_of_vocab(self, wrapper):
        """Test tokens outside the vocabulary fail."""
        assert wrapper.eval_prompt([1])
        assert not wrapper.step(VOCAB, 1)

    def test_context_full(self, make_wrapper):
        """Test stepping past n_ctx fails."""
        model = make_wrapper(n_ctx=2)
        assert model.eval_prompt([1, 2])
        assert not model.step(0, 2)

    def test_prompt_too_long(self, make_wrapper):
        """Test a prompt longer than n_ctx is rejected."""
        model = make_wrapper(n_ctx=2)
        assert not model.eval_prompt([1, 2, 3])
        assert model.n_past == 0

    def test_forward_failure(self, make_wrapper):
        """Test a failing forward pass returns False and keeps the state."""
        model = make_wrapper(fail_token=4)
        assert model.eval_prompt([1])
        logits = model.current_logits().copy()
        assert not model.step(4, 1)
        assert model.n_past == 1
        np.testing.assert_array_equal(model.current_logits(), logits)


class TestNormalize:
    """Test normalize_to_probabilities()."""

    def test_sorted_descending(self, wrapper):
        """Test probabilities come out sorted and summing to one."""
        pairs = list(wrapper.normalize_to_probabilities(np.array([0.0, 2.0, 1.0])))
        assert [t for t, _ in pairs] == [1, 2, 0]
        assert sum(p for _, p in pairs) == pytest.approx(1.0)

    def test_ties_ascending_ids(self, wrapper):
        """Test equal probabilities keep ascending token order."""
        pairs = list(wrapper.normalize_to_probabilities(np.array([1.0, 3.0, 3.0, 0.0])))
        assert [t for t, _ in pairs] == [1, 2, 0, 3]


class TestTokenization:
    """Test tokenize() and detokenize()."""

    def test_tokenize_plain(self, make_wrapper):
        """Test plain encoding without a chat template."""
        tokenizer = MagicMock()
        tokenizer.encode.return_value = [3, 1]
        model = make_wrapper(tokenizer=tokenizer)
        assert model.tokenize("hi") == [3, 1]
        tokenizer.encode.assert_called_once_with("hi")

    def test_tokenize_chat_template(self, make_wrapper):
        """Test the chat template path unwraps a BatchEncoding."""
        tokenizer = MagicMock()
        tokenizer.chat_template = "{{ messages }}"
        tokenizer.apply_chat_template.return_value = {"input_ids": [4, 2]}
        model = make_wrapper(tokenizer=tokenizer)
        model.use_chat_template = True

        assert model.tokenize("hi") == [4, 2]
        tokenizer.encode.assert_not_called()

    def test_detokenize(self, make_wrapper):
        """Test single tokens decode with special tokens kept."""
        tokenizer = MagicMock()
        tokenizer.decode.return_value = " the"
        model = make_wrapper(tokenizer=tokenizer)
        assert model.detokenize(7) == " the"
        tokenizer.decode.assert_called_once_with([7], skip_special_tokens=False)


class TestCacheLayers:
    """Test cache_layers()."""

    def test_none(self):
        assert cache_layers(None) == []

    def test_legacy_tuples(self):
        k, v = torch.zeros(1), torch.ones(1)
        assert cache_layers(((k, v),)) == [(k, v)]

    def test_key_cache_attributes(self):
        k, v = torch.zeros(1), torch.ones(1)
        cache = SimpleNamespace(key_cache=[k], value_cache=[v])
        assert cache_layers(cache) == [(k, v)]
