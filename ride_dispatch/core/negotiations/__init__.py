# ride_dispatch/core/negotiations/__init__.py
"""
Торг о цене поездки между клиентом и водителем.
"""

from ride_dispatch.core.negotiations.models import (
    Negotiation,
    NegotiationCreateDTO,
    NegotiationMessage,
    NegotiationResult,
)
from ride_dispatch.core.negotiations.repository import NegotiationRepository
from ride_dispatch.core.negotiations.service import NegotiationService

__all__ = [
    "Negotiation",
    "NegotiationCreateDTO",
    "NegotiationMessage",
    "NegotiationResult",
    "NegotiationRepository",
    "NegotiationService",
]
