from __future__ import annotations

from dataclasses import dataclass
from math import asin, cos, radians, sin, sqrt

from gtiq.models import Company
from gtiq.settings import get_settings


@dataclass(frozen=True, slots=True)
class GeofenceResult:
    distance_m: float | None
    is_within_geofence: bool | None
    radius_m: int | None = None


def distance_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    earth_radius_m = 6371000.0

    lat1_rad = radians(lat1)
    lon1_rad = radians(lon1)
    lat2_rad = radians(lat2)
    lon2_rad = radians(lon2)

    delta_lat = lat2_rad - lat1_rad
    delta_lon = lon2_rad - lon1_rad

    a = sin(delta_lat / 2) ** 2 + cos(lat1_rad) * cos(lat2_rad) * sin(delta_lon / 2) ** 2
    c = 2 * asin(sqrt(a))
    return earth_radius_m * c


def evaluate_geofence(company: Company, lat: float | None, lon: float | None) -> GeofenceResult:
    """Distance from the company HQ, or an empty result when either side has no coordinates."""
    if lat is None or lon is None:
        return GeofenceResult(distance_m=None, is_within_geofence=None)
    if company.hq_lat is None or company.hq_lng is None:
        return GeofenceResult(distance_m=None, is_within_geofence=None)

    radius_m = company.geofence_radius_m or get_settings().default_geofence_radius_m
    distance_value = round(distance_m(company.hq_lat, company.hq_lng, lat, lon), 2)
    return GeofenceResult(
        distance_m=distance_value,
        is_within_geofence=distance_value <= radius_m,
        radius_m=radius_m,
    )
