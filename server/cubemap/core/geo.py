"""Geographic helpers for Black Rock City.

Addresses are approximated from the bearing and distance to the Golden
Spike; they are good enough for a map caption, not for navigation.
"""

from __future__ import annotations

import math

# Earth radius in meters (for Haversine).
_EARTH_R = 6_371_000.0

# City center reference point.
GOLDEN_SPIKE = (40.7864, -119.2065)


def haversine_m(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance in meters between two points."""
    rlat1, rlat2 = math.radians(lat1), math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlng = math.radians(lng2 - lng1)
    a = math.sin(dlat / 2) ** 2 + math.cos(rlat1) * math.cos(rlat2) * math.sin(dlng / 2) ** 2
    return 2 * _EARTH_R * math.asin(math.sqrt(a))


def brc_address(lat: float, lng: float) -> str:
    """Clock-position street address, e.g. ``"3:00 & Esplanade"``."""
    center_lat, center_lng = GOLDEN_SPIKE

    # 0 degrees is due north, clockwise.
    angle = math.degrees(math.atan2(lng - center_lng, lat - center_lat))
    if angle < 0:
        angle += 360

    # 30 degrees per clock hour.
    hour = round(angle / 30) % 12
    clock = 12 if hour == 0 else hour

    distance = haversine_m(center_lat, center_lng, lat, lng)
    if distance < 200:
        street = "Center"
    elif distance < 400:
        street = "Esplanade"
    elif distance < 800:
        street = chr(ord("A") + int((distance - 400) // 100))
    else:
        street = "Outer Playa"
    return f"{clock}:00 & {street}"
