# ride_dispatch/core/locations/hubs.py
"""
Справочник хабов: небольшие населённые пункты привязаны к ближайшему
крупному городу. Используется только как запасной вариант при подборе
водителей, когда точной цены на маршрут нет.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from ride_dispatch.common.utils import normalize_location


class Hub(str, Enum):
    """Крупные города-хабы."""
    MACHAKOS_TOWN = "Machakos Town"
    MAKUENI = "Makueni"
    KITUI = "Kitui"
    KIAMBU = "Kiambu"
    KAJIADO = "Kajiado"
    MOMBASA = "Mombasa"
    NAIROBI = "Nairobi"


# Хаб -> ближайшие к нему населённые пункты (в нормализованном виде)
HUB_SPOKES: dict[Hub, tuple[str, ...]] = {
    # Machakos County
    Hub.MACHAKOS_TOWN: (
        "masii", "wamunyu", "kathiani", "mitaboni", "kangundo",
        "tala", "mlolongo", "athi river", "syokimau",
    ),
    # Makueni County
    Hub.MAKUENI: ("wote", "kibwezi", "mtito andei", "emali", "sultan hamud"),
    # Kitui County
    Hub.KITUI: ("kitui town", "mwingi", "mutomo", "kwa vonza"),
    # Kiambu County
    Hub.KIAMBU: ("thika", "ruiru", "juja", "kikuyu", "limuru", "kiambu town"),
    # Kajiado County
    Hub.KAJIADO: ("ngong", "kitengela", "ongata rongai", "kiserian", "namanga"),
    # Coast
    Hub.MOMBASA: (
        "mombasa cbd", "nyali", "bamburi", "mtwapa", "diani",
        "ukunda", "malindi", "kilifi town",
    ),
    # Nairobi environs
    Hub.NAIROBI: ("westlands", "karen", "kilimani", "kasarani", "embakasi", "langata", "nairobi cbd"),
}

_SPOKE_TO_HUB: dict[str, Hub] = {
    spoke: hub
    for hub, spokes in HUB_SPOKES.items()
    for spoke in spokes
}


def nearby_hub(location: str) -> Optional[Hub]:
    """
    Возвращает хаб для населённого пункта.

    Example:
        >>> nearby_hub("  MASII ")
        <Hub.MACHAKOS_TOWN: 'Machakos Town'>

    Returns:
        Хаб или None, если пункт не привязан ни к одному хабу
    """
    return _SPOKE_TO_HUB.get(normalize_location(location))


def spokes_of(hub: Hub) -> tuple[str, ...]:
    """Населённые пункты, привязанные к хабу."""
    return HUB_SPOKES.get(hub, ())
