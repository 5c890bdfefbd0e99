"""
Result collection and ranking.

Results are immutable and only ever appended; ranking produces new lists.
"""

from __future__ import annotations

from typing import Any, Dict, Iterator, List, Optional

from beamtree.common.errors import NoResults
from beamtree.common.schemas import Result


class ResultCollector:
    """Accumulates terminal sequences of one search session."""

    def __init__(self):
        self._results: List[Result] = []

    def record(self, result: Result) -> None:
        self._results.append(result)

    def clear(self) -> None:
        self._results.clear()

    def __len__(self) -> int:
        return len(self._results)

    def __iter__(self) -> Iterator[Result]:
        return iter(list(self._results))

    def best(self) -> Result:
        """
        Result with the highest prob_sum.

        The earliest recorded result wins ties.

        Raises:
            NoResults: If nothing has been recorded
        """
        if not self._results:
            raise NoResults("No results recorded")
        best = self._results[0]
        for result in self._results[1:]:
            if result.prob_sum > best.prob_sum:
                best = result
        return best

    def sorted_all(self) -> List[Result]:
        """All results, prob_sum descending, recording order kept on ties."""
        return sorted(self._results, key=lambda r: r.prob_sum, reverse=True)

    def to_dicts(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        ranked = self.sorted_all()
        if limit is not None:
            ranked = ranked[:limit]
        return [r.to_dict() for r in ranked]

    def format_results(self, limit: Optional[int] = None) -> str:
        ranked = self.sorted_all()
        if limit is not None:
            ranked = ranked[:limit]
        return "\n".join(f"({r.prob_sum:.2f}) =====\n{r.text}" for r in ranked)

    def print_results(self, limit: Optional[int] = None) -> None:
        if self._results:
            print(self.format_results(limit))

    def __repr__(self) -> str:
        return f"ResultCollector(n={len(self._results)})"
