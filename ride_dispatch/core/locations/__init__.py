# ride_dispatch/core/locations/__init__.py
"""
Справочник хабов и привязанных к ним населённых пунктов.
"""

from ride_dispatch.core.locations.hubs import HUB_SPOKES, Hub, nearby_hub, spokes_of

__all__ = ["HUB_SPOKES", "Hub", "nearby_hub", "spokes_of"]
