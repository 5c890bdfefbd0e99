"""
Common exploration components.

Transformers model adapter and search runner.
"""

from .model import ModelWrapper
from .runner import Runner

__all__ = [
    "ModelWrapper",
    "Runner",
]
