"""
Customer-facing lookups: search, the "discover" list of available items in
open facilities, favorites, and the shareable codes handed out to
facilities and staff.
"""
import math
import random
import string
from typing import Iterable, List, Optional, Tuple

from pydantic import BaseModel

from schemas import CatalogItem, Facility, GeoPoint

EARTH_RADIUS_KM = 6371


class DiscoverEntry(BaseModel):
    facility_id: str
    facility_name: str
    facility_type: str
    item: CatalogItem
    distance_km: Optional[float] = None


def generate_facility_code(name: str, rng: Optional[random.Random] = None) -> str:
    rng = rng or random.Random()
    first_word = (name.split() or ["SHOP"])[0].upper()
    nums = str(rng.randint(100, 998))
    letters = "".join(rng.choice(string.ascii_uppercase) for _ in range(2))
    return f"{first_word}-{nums}{letters}"


def generate_staff_code(rng: Optional[random.Random] = None) -> str:
    rng = rng or random.Random()
    digits = "".join(rng.choice(string.digits) for _ in range(4))
    letters = "".join(rng.choice(string.ascii_uppercase) for _ in range(2))
    return digits + letters


def haversine_km(a: GeoPoint, b: GeoPoint) -> float:
    d_lat = math.radians(b.lat - a.lat)
    d_lng = math.radians(b.lng - a.lng)
    h = (math.sin(d_lat / 2) ** 2
         + math.cos(math.radians(a.lat)) * math.cos(math.radians(b.lat)) * math.sin(d_lng / 2) ** 2)
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def search(facilities: Iterable[Facility], term: str) -> List[Facility]:
    term = term.strip().lower()
    if not term:
        return []
    return [
        f for f in facilities
        if term in f.name.lower() or term in f.type.lower() or term in f.code.lower()
    ]


def discover(facilities: Iterable[Facility], term: str = "", category: Optional[str] = None,
             origin: Optional[GeoPoint] = None) -> List[DiscoverEntry]:
    term = term.strip().lower()
    out: List[DiscoverEntry] = []
    for f in facilities:
        if not f.is_open:
            continue
        if category and f.type != category:
            continue
        distance = None
        if origin is not None and f.location is not None and f.location_visible:
            distance = haversine_km(origin, f.location)
        for item in f.items:
            if not item.available:
                continue
            if term in item.name.lower() or term in f.name.lower():
                out.append(DiscoverEntry(
                    facility_id=f.id, facility_name=f.name, facility_type=f.type,
                    item=item, distance_km=distance,
                ))
    if origin is not None:
        # unknown distances sort last
        out.sort(key=lambda e: e.distance_km if e.distance_km is not None else math.inf)
    return out


def toggle_favorite(favorites: List[str], facility_id: str) -> Tuple[List[str], bool]:
    """Returns the new favorites list and whether `facility_id` is now a favorite."""
    if facility_id in favorites:
        return [f for f in favorites if f != facility_id], False
    return favorites + [facility_id], True
