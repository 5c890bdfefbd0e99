"""
Shared abstractions.

- Model capability interface
- Value types (candidates, results, config)
- Error taxonomy
"""

from .errors import (
    AllocationError,
    BeamTreeError,
    EvaluationFailure,
    NoResults,
    StateSizeMismatch,
)
from .model import AbstractModel
from .schema_utils import SchemaClass
from .schemas import Candidate, Result, SearchConfig

__all__ = [
    "AbstractModel",
    "AllocationError",
    "BeamTreeError",
    "Candidate",
    "EvaluationFailure",
    "NoResults",
    "Result",
    "SchemaClass",
    "SearchConfig",
    "StateSizeMismatch",
]
