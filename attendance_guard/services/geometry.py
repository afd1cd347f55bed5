from __future__ import annotations

import ipaddress
from collections.abc import Sequence
from math import asin, cos, radians, sin, sqrt
from typing import Protocol

EARTH_RADIUS_M = 6371000.0


class LatLng(Protocol):
    lat: float
    lng: float


def distance_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    lat1_rad = radians(lat1)
    lat2_rad = radians(lat2)

    delta_lat = lat2_rad - lat1_rad
    delta_lon = radians(lon2) - radians(lon1)

    a = sin(delta_lat / 2) ** 2 + cos(lat1_rad) * cos(lat2_rad) * sin(delta_lon / 2) ** 2
    # Floating point error can push `a` fractionally above 1 for antipodal points.
    c = 2 * asin(sqrt(min(1.0, a)))
    return EARTH_RADIUS_M * c


def haversine_distance_m(a: LatLng, b: LatLng) -> float:
    return distance_m(a.lat, a.lng, b.lat, b.lng)


def point_in_polygon(point: LatLng, polygon: Sequence[LatLng]) -> bool:
    """Ray casting over the vertex list, longitude as x and latitude as y.

    The polygon is implicitly closed. Fewer than three vertices never contain anything.
    """
    count = len(polygon)
    if count < 3:
        return False

    x = point.lng
    y = point.lat
    inside = False
    j = count - 1
    for i in range(count):
        vi = polygon[i]
        vj = polygon[j]
        if (vi.lat > y) != (vj.lat > y):
            crossing_x = (vj.lng - vi.lng) * (y - vi.lat) / (vj.lat - vi.lat) + vi.lng
            if x < crossing_x:
                inside = not inside
        j = i
    return inside


def ip_matches(ip: str, pattern: str) -> bool:
    """Exact address match, or CIDR containment when the pattern has a prefix length.

    Unparseable addresses or patterns never match.
    """
    try:
        address = ipaddress.ip_address(ip.strip())
    except ValueError:
        return False

    candidate = pattern.strip()
    if "/" not in candidate:
        try:
            return address == ipaddress.ip_address(candidate)
        except ValueError:
            return False

    try:
        network = ipaddress.ip_network(candidate, strict=False)
    except ValueError:
        return False
    if network.version != address.version:
        return False
    return address in network
