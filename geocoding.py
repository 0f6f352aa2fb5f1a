"""
Geocoding gateway backed by OpenStreetMap Nominatim.

Reverse lookups never raise: when Nominatim fails the AI gateway is asked,
and as a last resort the coordinates themselves are returned as text.
"""
import logging
from typing import Any, Dict, Optional, Tuple

from geopy.exc import GeopyError
from geopy.geocoders import Nominatim

import ai_service
import config

logger = logging.getLogger(__name__)

# Each entry lists the Nominatim keys that may fill that position
ADDRESS_COMPONENTS = [
    ("road", "street"),
    ("suburb", "neighbourhood"),
    ("city", "town", "village"),
    ("state",),
    ("postcode",),
    ("country",),
]


def _geolocator() -> Nominatim:
    return Nominatim(user_agent=config.GEOCODER_USER_AGENT, timeout=config.HTTP_TIMEOUT)


def format_address(components: Optional[Dict[str, Any]], display_name: Optional[str] = None) -> Optional[str]:
    parts = []
    for keys in ADDRESS_COMPONENTS:
        for key in keys:
            value = (components or {}).get(key)
            if value:
                parts.append(str(value))
                break
    if parts:
        return ", ".join(parts)
    return display_name or None


def coordinate_label(lat: float, lon: float) -> str:
    return f"Location: {lat:.4f}, {lon:.4f}"


def reverse_geocode(lat: float, lon: float) -> str:
    try:
        location = _geolocator().reverse((lat, lon), exactly_one=True, addressdetails=True)
        if location is not None:
            raw = location.raw or {}
            address = format_address(raw.get("address"), raw.get("display_name") or location.address)
            if address:
                return address
        logger.warning(f"Nominatim has no address for ({lat}, {lon})")
    except (GeopyError, ValueError) as e:
        logger.error(f"Reverse geocoding failed for ({lat}, {lon}): {str(e)}")

    if ai_service.is_configured():
        try:
            address = ai_service.address_from_coordinates(lat, lon)
            if address:
                return address
        except ai_service.AIServiceError as e:
            logger.error(f"AI reverse geocoding fallback also failed: {str(e)}")

    return coordinate_label(lat, lon)


def geocode_address(address: str) -> Tuple[float, float]:
    try:
        location = _geolocator().geocode(address, exactly_one=True)
        if location is not None:
            return (location.latitude, location.longitude)
        logger.warning(f"Nominatim could not geocode '{address}'")
    except GeopyError as e:
        logger.error(f"Geocoding failed for address '{address}': {str(e)}")
    return ai_service.coordinates_from_address(address)
