"""Geohash cell encoding and the prefix-range candidate index.

A cell key is built by recursive binary subdivision of the longitude/latitude
ranges, alternating bits and starting with longitude, five bits per base-32
character. Nearby coordinates usually share a prefix; points straddling a cell
boundary do not, which is why callers apply an exact distance check afterwards.
"""

from __future__ import annotations

import bisect
import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Protocol, Tuple

from crowd.domain.exceptions import InvalidCoordinate, InvalidGeocell

BASE32 = "0123456789bcdefghjkmnpqrstuvwxyz"
MAX_PRECISION = 12
HIGH_SENTINEL = BASE32[-1] * MAX_PRECISION

_DECODE_MAP = {char: idx for idx, char in enumerate(BASE32)}


@dataclass(frozen=True, slots=True)
class BoundingBox:
    min_lat: float
    min_lon: float
    max_lat: float
    max_lon: float

    @property
    def center(self) -> Tuple[float, float]:
        return (self.min_lat + self.max_lat) / 2, (self.min_lon + self.max_lon) / 2

    def contains(self, lat: float, lon: float) -> bool:
        return self.min_lat <= lat <= self.max_lat and self.min_lon <= lon <= self.max_lon


def validate_coordinate(lat: Optional[float], lon: Optional[float]) -> Tuple[float, float]:
    """Return the pair as floats or raise :class:`InvalidCoordinate`."""
    if lat is None or lon is None or isinstance(lat, bool) or isinstance(lon, bool):
        raise InvalidCoordinate()
    try:
        lat_f = float(lat)
        lon_f = float(lon)
    except (TypeError, ValueError) as exc:
        raise InvalidCoordinate() from exc
    if not (math.isfinite(lat_f) and math.isfinite(lon_f)):
        raise InvalidCoordinate()
    if not (-90.0 <= lat_f <= 90.0) or not (-180.0 <= lon_f <= 180.0):
        raise InvalidCoordinate()
    return lat_f, lon_f


def encode(lat: float, lon: float, precision: int = 9) -> str:
    lat, lon = validate_coordinate(lat, lon)
    if not 1 <= precision <= MAX_PRECISION:
        raise ValueError(f"precision must be between 1 and {MAX_PRECISION}")
    lat_lo, lat_hi = -90.0, 90.0
    lon_lo, lon_hi = -180.0, 180.0
    chars: List[str] = []
    bits = 0
    idx = 0
    even = True
    while len(chars) < precision:
        if even:
            mid = (lon_lo + lon_hi) / 2
            if lon >= mid:
                idx = idx * 2 + 1
                lon_lo = mid
            else:
                idx = idx * 2
                lon_hi = mid
        else:
            mid = (lat_lo + lat_hi) / 2
            if lat >= mid:
                idx = idx * 2 + 1
                lat_lo = mid
            else:
                idx = idx * 2
                lat_hi = mid
        even = not even
        bits += 1
        if bits == 5:
            chars.append(BASE32[idx])
            bits = 0
            idx = 0
    return "".join(chars)


def decode_bbox(cell: str) -> BoundingBox:
    if not cell:
        raise InvalidGeocell()
    lat_lo, lat_hi = -90.0, 90.0
    lon_lo, lon_hi = -180.0, 180.0
    even = True
    for char in cell.lower():
        value = _DECODE_MAP.get(char)
        if value is None:
            raise InvalidGeocell(f"invalid_geocell:{char}")
        for shift in range(4, -1, -1):
            bit = (value >> shift) & 1
            if even:
                mid = (lon_lo + lon_hi) / 2
                if bit:
                    lon_lo = mid
                else:
                    lon_hi = mid
            else:
                mid = (lat_lo + lat_hi) / 2
                if bit:
                    lat_lo = mid
                else:
                    lat_hi = mid
            even = not even
    return BoundingBox(min_lat=lat_lo, min_lon=lon_lo, max_lat=lat_hi, max_lon=lon_hi)


def decode(cell: str) -> Tuple[float, float]:
    """Center point of the cell."""
    return decode_bbox(cell).center


def is_valid_geocell(cell: Optional[str]) -> bool:
    if not cell or not isinstance(cell, str) or len(cell) > MAX_PRECISION:
        return False
    return all(char in _DECODE_MAP for char in cell)


def prefix_range(prefix: str) -> Tuple[str, str]:
    """Half-open lexicographic range ``[prefix, prefix + HIGH_SENTINEL)``."""
    return prefix, prefix + HIGH_SENTINEL


class GeoCellIndex(Protocol):
    async def candidates_by_prefix(self, prefix: str) -> set[str]: ...


class SortedGeoCellIndex:
    """In-memory index kept as a sorted list of ``(cell, subscriber_id)`` pairs."""

    def __init__(self) -> None:
        self._entries: List[Tuple[str, str]] = []
        self._cells: Dict[str, str] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def put(self, subscriber_id: str, cell: str) -> None:
        if not is_valid_geocell(cell):
            raise InvalidGeocell()
        self.remove(subscriber_id)
        bisect.insort(self._entries, (cell, subscriber_id))
        self._cells[subscriber_id] = cell

    def put_coordinate(self, subscriber_id: str, lat: float, lon: float, precision: int = 9) -> str:
        cell = encode(lat, lon, precision)
        self.put(subscriber_id, cell)
        return cell

    def remove(self, subscriber_id: str) -> None:
        cell = self._cells.pop(subscriber_id, None)
        if cell is None:
            return
        pos = bisect.bisect_left(self._entries, (cell, subscriber_id))
        if pos < len(self._entries) and self._entries[pos] == (cell, subscriber_id):
            del self._entries[pos]

    async def candidates_by_prefix(self, prefix: str) -> set[str]:
        low, high = prefix_range(prefix)
        start = bisect.bisect_left(self._entries, (low,))
        end = bisect.bisect_left(self._entries, (high,))
        return {subscriber_id for _, subscriber_id in self._entries[start:end]}


class SubscriberStoreGeoCellIndex:
    """Index backed by the subscriber store's own geocell range query."""

    def __init__(self, store) -> None:
        self._store = store

    async def candidates_by_prefix(self, prefix: str) -> set[str]:
        return await self._store.candidates_by_geocell_prefix(prefix)


__all__ = [
    "BASE32",
    "BoundingBox",
    "GeoCellIndex",
    "HIGH_SENTINEL",
    "MAX_PRECISION",
    "SortedGeoCellIndex",
    "SubscriberStoreGeoCellIndex",
    "decode",
    "decode_bbox",
    "encode",
    "is_valid_geocell",
    "prefix_range",
    "validate_coordinate",
]
