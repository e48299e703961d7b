# ride_dispatch/core/matching/scoring.py
"""
Оценка кандидатов и выбор рекомендаций.

score = w_price * price_score + w_rating * rating_score + w_exp * experience_score

    price_score      = max(0, 100 - 100 * price / avg_price)
    rating_score     = 100 * rating / 5
    experience_score = min(cap, total_rides)

Совпадения через хаб умножаются на штрафной коэффициент.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from ride_dispatch.common.constants import MatchCategory, MatchType
from ride_dispatch.core.matching.models import DriverMatch, Recommendations


# Оценка цены, когда средняя цена не определена
NEUTRAL_PRICE_SCORE = 50.0


@dataclass(frozen=True)
class ScoringWeights:
    """Веса и параметры формулы оценки."""
    price: float = 0.4
    rating: float = 0.4
    experience: float = 0.2
    nearby_penalty: float = 0.9
    experience_cap: int = 100

    @classmethod
    def from_settings(cls) -> ScoringWeights:
        from ride_dispatch.config import settings

        matching = settings.matching
        return cls(
            price=matching.PRICE_WEIGHT,
            rating=matching.RATING_WEIGHT,
            experience=matching.EXPERIENCE_WEIGHT,
            nearby_penalty=matching.NEARBY_PENALTY,
            experience_cap=matching.EXPERIENCE_CAP,
        )


def average_price(matches: list[DriverMatch]) -> float:
    """Средняя цена кандидатов (0 для пустого списка)."""
    if not matches:
        return 0.0
    return sum(m.price for m in matches) / len(matches)


def score_match(match: DriverMatch, avg_price: float, weights: ScoringWeights) -> float:
    """Вычисляет оценку одного кандидата."""
    if avg_price > 0:
        price_score = max(0.0, 100 - (match.price / avg_price) * 100)
    else:
        price_score = NEUTRAL_PRICE_SCORE

    rating_score = (match.rating / 5) * 100
    experience_score = min(weights.experience_cap, match.total_rides)

    score = (
        price_score * weights.price
        + rating_score * weights.rating
        + experience_score * weights.experience
    )

    if match.match_type == MatchType.NEARBY:
        score *= weights.nearby_penalty

    return score


def rank_matches(matches: list[DriverMatch], weights: ScoringWeights) -> list[DriverMatch]:
    """
    Проставляет оценки и сортирует по убыванию.
    Сортировка стабильная: при равной оценке сохраняется исходный порядок.
    """
    avg = average_price(matches)
    for match in matches:
        match.match_score = score_match(match, avg, weights)
    return sorted(matches, key=lambda m: m.match_score, reverse=True)


def _tag(match: Optional[DriverMatch], category: MatchCategory) -> Optional[DriverMatch]:
    if match is None:
        return None
    return match.model_copy(update={"category": category})


def recommend(matches: list[DriverMatch]) -> Recommendations:
    """
    Выбирает три рекомендации из оценённых кандидатов.

    - best_value: максимальная оценка;
    - lowest_price: минимальная цена, при равенстве первый в списке;
    - best_rated: максимальный рейтинг, при равенстве более низкая цена.
    """
    if not matches:
        return Recommendations()

    best_value = max(matches, key=lambda m: m.match_score)
    lowest_price = min(matches, key=lambda m: m.price)
    best_rated = min(matches, key=lambda m: (-m.rating, m.price))

    return Recommendations(
        best_value=_tag(best_value, MatchCategory.BEST_VALUE),
        lowest_price=_tag(lowest_price, MatchCategory.LOWEST_PRICE),
        best_rated=_tag(best_rated, MatchCategory.BEST_RATED),
    )
