"""
Geofence validation service.
Uses Haversine formula to calculate distance between points.
"""
import math
from dataclasses import dataclass
from typing import Optional

from ..config import settings
from ..errors import MissingLocation


# Earth radius in meters
EARTH_RADIUS_M = 6371000


@dataclass(frozen=True)
class GeofenceResult:
    ok: bool
    distance_m: Optional[float]


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate the great circle distance between two points on Earth.

    Args:
        lat1: Latitude of first point
        lon1: Longitude of first point
        lat2: Latitude of second point
        lon2: Longitude of second point

    Returns:
        Distance in meters
    """
    # Convert to radians
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_phi = math.radians(lat2 - lat1)
    delta_lambda = math.radians(lon2 - lon1)

    # Haversine formula
    a = (
        math.sin(delta_phi / 2) ** 2 +
        math.cos(phi1) * math.cos(phi2) * math.sin(delta_lambda / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_M * c


def has_location(project) -> bool:
    return (
        getattr(project, "location_lat", None) is not None
        and getattr(project, "location_lng", None) is not None
    )


def validate(reported_lat: Optional[float], reported_lng: Optional[float], project) -> GeofenceResult:
    """
    Check a reported position against the project's site perimeter.

    A project without a configured location accepts every position. A project
    with a location but no reported coordinates raises MissingLocation so the
    caller can keep the event for manual review.
    """
    if not has_location(project):
        return GeofenceResult(ok=True, distance_m=None)

    if reported_lat is None or reported_lng is None:
        raise MissingLocation(getattr(project, "id", None))

    radius_m = project.radius if project.radius is not None else settings.geo_radius_m_default
    distance = haversine_distance(
        float(reported_lat),
        float(reported_lng),
        float(project.location_lat),
        float(project.location_lng),
    )
    return GeofenceResult(ok=distance <= float(radius_m), distance_m=distance)
