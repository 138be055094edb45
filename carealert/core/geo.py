import math
from typing import List

EARTH_RADIUS_KM = 6371  # mean Earth radius

def calculate_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate distance between two points using Haversine formula
    Returns distance in kilometers
    """
    lat1, lon1, lat2, lon2 = map(math.radians, [lat1, lon1, lat2, lon2])
    dlat = lat2 - lat1
    dlon = lon2 - lon1

    a = math.sin(dlat/2)**2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon/2)**2
    c = 2 * math.asin(min(1.0, math.sqrt(a)))

    return EARTH_RADIUS_KM * c

def distance_meters(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    return calculate_distance(lat1, lon1, lat2, lon2) * 1000

def calculate_bearing(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Initial great-circle bearing from point 1 to point 2, in degrees [0, 360)"""
    lat1, lon1, lat2, lon2 = map(math.radians, [lat1, lon1, lat2, lon2])
    dlon = lon2 - lon1

    x = math.sin(dlon) * math.cos(lat2)
    y = math.cos(lat1) * math.sin(lat2) - math.sin(lat1) * math.cos(lat2) * math.cos(dlon)

    return (math.degrees(math.atan2(x, y)) + 360) % 360

def validate_coordinates(latitude: float, longitude: float) -> List[str]:
    """Return a list of validation errors; empty when the coordinates are usable"""
    errors = []

    if latitude is None or not (-90 <= latitude <= 90):
        errors.append("Invalid latitude: must be between -90 and 90")

    if longitude is None or not (-180 <= longitude <= 180):
        errors.append("Invalid longitude: must be between -180 and 180")

    return errors
