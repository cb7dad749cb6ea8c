"""Opportunity and manipulation scoring."""

from bazaarlens.scoring.batch import CachedScores, ProductState, ScoreRunCache, score_batch
from bazaarlens.scoring.manipulation import ManipulationDetector, ManipulationScore
from bazaarlens.scoring.opportunity import OpportunityScorer

__all__ = [
    "CachedScores",
    "ManipulationDetector",
    "ManipulationScore",
    "OpportunityScorer",
    "ProductState",
    "ScoreRunCache",
    "score_batch",
]
