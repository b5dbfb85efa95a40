"""Trace matchers: node proximity and validated edges."""

from street_coverage.matching.base import CoverageMatcher
from street_coverage.matching.edges import EdgeMatcher, validate_edge
from street_coverage.matching.node_proximity import NodeProximityMatcher

__all__ = [
    "CoverageMatcher",
    "EdgeMatcher",
    "NodeProximityMatcher",
    "validate_edge",
]
