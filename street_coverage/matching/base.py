"""Common interface of the trace-to-coverage-unit matchers."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from street_coverage.models import MatchResult, PreprocessedTrace, RoadGraph

# Edge rejection reasons.
REJECT_TOO_SHORT = "too_short"
REJECT_SPEED_TOO_HIGH = "speed_too_high"
REJECT_EXCLUDED_HIGHWAY = "excluded_highway_type"
REJECT_UNRESOLVED = "unresolved"


@runtime_checkable
class CoverageMatcher(Protocol):
    """Turns a preprocessed trace into coverage units on a road graph."""

    name: str

    async def match(self, trace: PreprocessedTrace, graph: RoadGraph) -> MatchResult: ...
