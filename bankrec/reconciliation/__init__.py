"""Reconciliation engine components."""

from .scoring import ScoringEngine, ScoringWeights
from .candidates import CandidateGenerator, CandidateResult, SearchConfig, SubsetSumSearch
from .resolver import MatchResolver
from .tracker import ReconciliationTracker

__all__ = [
    "ScoringEngine",
    "ScoringWeights",
    "CandidateGenerator",
    "CandidateResult",
    "SearchConfig",
    "SubsetSumSearch",
    "MatchResolver",
    "ReconciliationTracker",
]
