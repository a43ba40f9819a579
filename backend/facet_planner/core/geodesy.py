"""
Great-circle helpers on a spherical Earth.

All methods take decimal degrees. Bearings are degrees clockwise from
north in [0, 360) and distances are meters.
"""
import math
from typing import Tuple

from ..config import ProjectionConfig

EARTH_RADIUS_M = ProjectionConfig.GEODESY_RADIUS_M


def normalize_bearing(deg: float) -> float:
    """
    Wrap an angle into [0, 360).

    Args:
        deg: Angle in degrees, any range

    Returns:
        Equivalent bearing in [0, 360); NaN passes through
    """
    wrapped = math.fmod(deg, 360.0)
    if wrapped < 0:
        wrapped += 360.0
    # fmod of tiny negatives can round up to exactly 360
    return 0.0 if wrapped >= 360.0 else wrapped


def rad_to_bearing(rad: float) -> float:
    """Convert radians to a bearing in [0, 360)."""
    return normalize_bearing(math.degrees(rad))


class Geodesy:
    """Static great-circle calculations (spherical model, R = 6,371 km)."""

    EARTH_RADIUS_M = EARTH_RADIUS_M

    @staticmethod
    def haversine_distance_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
        """
        Great-circle distance between two points.

        Args:
            lat1: Latitude of first point
            lon1: Longitude of first point
            lat2: Latitude of second point
            lon2: Longitude of second point

        Returns:
            Distance in meters
        """
        dlat = math.radians(lat2 - lat1)
        dlon = math.radians(lon2 - lon1)
        a = (math.sin(dlat / 2) ** 2
             + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(dlon / 2) ** 2)
        return EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    @staticmethod
    def initial_bearing_deg(lon1: float, lat1: float, lon2: float, lat2: float) -> float:
        """
        Initial bearing from point 1 towards point 2.

        Returns:
            Bearing in degrees [0, 360)
        """
        phi1, phi2 = math.radians(lat1), math.radians(lat2)
        dlon = math.radians(lon2 - lon1)
        x = math.sin(dlon) * math.cos(phi2)
        y = math.cos(phi1) * math.sin(phi2) - math.sin(phi1) * math.cos(phi2) * math.cos(dlon)
        return rad_to_bearing(math.atan2(x, y))

    @staticmethod
    def destination(lon: float, lat: float, bearing_deg: float, distance_m: float) -> Tuple[float, float]:
        """
        Point reached by travelling a distance along a bearing.

        Args:
            lon: Start longitude
            lat: Start latitude
            bearing_deg: Bearing clockwise from north
            distance_m: Distance in meters

        Returns:
            Tuple (lon, lat); longitude normalized to [-180, 180)
        """
        brng = math.radians(bearing_deg)
        phi1 = math.radians(lat)
        lam1 = math.radians(lon)
        delta = distance_m / EARTH_RADIUS_M

        phi2 = math.asin(
            math.sin(phi1) * math.cos(delta)
            + math.cos(phi1) * math.sin(delta) * math.cos(brng)
        )
        lam2 = lam1 + math.atan2(
            math.sin(brng) * math.sin(delta) * math.cos(phi1),
            math.cos(delta) - math.sin(phi1) * math.sin(phi2)
        )

        lon2 = (math.degrees(lam2) + 540.0) % 360.0 - 180.0
        return lon2, math.degrees(phi2)
