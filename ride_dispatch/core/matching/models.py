# ride_dispatch/core/matching/models.py
"""
Модели подбора водителей.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field

from ride_dispatch.common.constants import MatchCategory, MatchType


class DriverMatch(BaseModel):
    """Кандидат на маршрут (не сохраняется)."""

    driver_id: str
    driver_name: str
    phone: Optional[str] = None
    whatsapp: Optional[str] = None
    rating: float = Field(..., ge=0.0, le=5.0)
    total_rides: int = Field(0, ge=0)
    price: int = Field(..., gt=0, description="Цена маршрута водителя, KES")
    match_score: float = 0.0
    match_type: MatchType = MatchType.EXACT
    via_location: Optional[str] = Field(None, description="Хаб для совпадения nearby")
    category: Optional[MatchCategory] = None
    is_visible_to_public: bool = True


class Recommendations(BaseModel):
    """Три рекомендации по маршруту."""

    best_value: Optional[DriverMatch] = None
    lowest_price: Optional[DriverMatch] = None
    best_rated: Optional[DriverMatch] = None


class MatchResult(BaseModel):
    """Результат подбора: все кандидаты по убыванию оценки и рекомендации."""

    from_location: str
    to_location: str
    matches: list[DriverMatch] = Field(default_factory=list)
    recommendations: Recommendations = Field(default_factory=Recommendations)
