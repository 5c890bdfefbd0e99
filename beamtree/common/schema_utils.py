"""
Base class for configuration dataclasses.

Gives every config a content-derived id (used to tag search sessions in
logs), a JSON rendering, and loading from plain dicts or JSON files.
"""

from __future__ import annotations

import copy
import hashlib
import json
import math
from dataclasses import asdict, dataclass, fields, is_dataclass
from decimal import ROUND_HALF_EVEN, Decimal
from pathlib import Path
from typing import Any, Dict, Type, TypeVar, Union

T = TypeVar("T", bound="SchemaClass")


def _quantize(x: float, places: int = 8) -> float:
    q = Decimal(1) / (Decimal(10) ** places)
    f = float(Decimal(str(x)).quantize(q, rounding=ROUND_HALF_EVEN))
    # -0.0 and 0.0 must hash the same
    return 0.0 if f == 0.0 else f


def _canonical(obj: Any, places: int = 8):
    if isinstance(obj, float):
        if math.isnan(obj) or math.isinf(obj):
            return repr(obj)
        return _quantize(obj, places)
    if is_dataclass(obj):
        return _canonical(asdict(obj), places)
    if isinstance(obj, dict):
        return {k: _canonical(v, places) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_canonical(v, places) for v in obj]
    return obj


def deterministic_id(obj: Any, places: int = 8, digest_bytes: int = 8) -> str:
    """Stable hex digest of a dataclass's field values."""
    payload = json.dumps(
        _canonical(obj, places),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )
    h = hashlib.blake2b(payload.encode("utf-8"), digest_size=digest_bytes)
    return h.hexdigest()


@dataclass
class SchemaClass:
    """Dataclass base with deep-copied fields and a deterministic id."""

    def get_id(self) -> str:
        return deterministic_id(self)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def __str__(self) -> str:
        return json.dumps(self.to_dict(), indent=4)

    # Configs are handed to long-lived sessions; callers mutating their
    # own dicts/lists afterwards must not leak into them
    def __post_init__(self):
        for f in fields(self):
            setattr(self, f.name, copy.deepcopy(getattr(self, f.name)))

    @classmethod
    def from_dict(cls: Type[T], data: Dict[str, Any]) -> T:
        """
        Build from a plain dict.

        Raises:
            ValueError: If the dict holds keys that are not fields
        """
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown {cls.__name__} fields: {', '.join(unknown)}")
        return cls(**data)

    @classmethod
    def from_json(cls: Type[T], path: Union[str, Path]) -> T:
        with open(path) as f:
            return cls.from_dict(json.load(f))
