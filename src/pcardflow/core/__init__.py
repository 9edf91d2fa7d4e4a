"""Deterministic matching, verification and lifecycle derivation."""

from pcardflow.core.journey import build_journey, latest_receipt
from pcardflow.core.matcher import (
    AUTO_LINK_SCORE,
    MIN_MATCH_SCORE,
    find_best_match,
    should_auto_link,
)
from pcardflow.core.verifier import fallback_analysis, verify

__all__ = [
    "AUTO_LINK_SCORE",
    "MIN_MATCH_SCORE",
    "build_journey",
    "fallback_analysis",
    "find_best_match",
    "latest_receipt",
    "should_auto_link",
    "verify",
]
