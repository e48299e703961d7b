# ride_dispatch/core/matching/__init__.py
"""
Подбор и ранжирование водителей на маршрут.
"""

from ride_dispatch.core.matching.models import DriverMatch, MatchResult, Recommendations
from ride_dispatch.core.matching.scoring import ScoringWeights, rank_matches, recommend, score_match
from ride_dispatch.core.matching.service import MatchingService

__all__ = [
    "DriverMatch",
    "MatchResult",
    "Recommendations",
    "ScoringWeights",
    "rank_matches",
    "recommend",
    "score_match",
    "MatchingService",
]
