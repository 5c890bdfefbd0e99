"""
Transformers front end for beamtree.

Loads a causal LM behind the beamtree capability interface, evaluates a
prompt and runs a search over its continuations.
"""

from .common import ModelWrapper, Runner

__all__ = [
    "ModelWrapper",
    "Runner",
]
