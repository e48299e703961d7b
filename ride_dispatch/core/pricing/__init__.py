# ride_dispatch/core/pricing/__init__.py
"""
Тарифы водителей и расчёт стоимости поездки.
"""

from ride_dispatch.core.pricing.calculator import FareCalculator, make_route_key, validate_route_key
from ride_dispatch.core.pricing.models import (
    FareBreakdown,
    PricingModifiers,
    PricingProfile,
    RoutePrice,
    RoutePriceDTO,
    SpecialZone,
)
from ride_dispatch.core.pricing.repository import PricingRepository
from ride_dispatch.core.pricing.service import PricingService

__all__ = [
    "FareCalculator",
    "make_route_key",
    "validate_route_key",
    "FareBreakdown",
    "PricingModifiers",
    "PricingProfile",
    "RoutePrice",
    "RoutePriceDTO",
    "SpecialZone",
    "PricingRepository",
    "PricingService",
]
