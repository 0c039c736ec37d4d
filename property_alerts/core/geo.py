from __future__ import annotations

import math
import re
import struct
from dataclasses import dataclass

from property_alerts.core.models import BoundingBox, GeoPoint


EARTH_RADIUS_KM = 6371.0
EWKB_POINT_PREFIX = "0101"
EWKB_MIN_BYTES = 25
WKB_MIN_BYTES = 21
EWKB_SRID_FLAG = 0x20000000

_WKT_POINT_RE = re.compile(
    r"^\s*(?:SRID=\d+;)?\s*POINT\s*\(\s*([-+0-9.eE]+)\s+([-+0-9.eE]+)\s*\)\s*$",
    re.IGNORECASE,
)


@dataclass(slots=True)
class TextPoint:
    point: GeoPoint


@dataclass(slots=True)
class BinaryPoint:
    point: GeoPoint
    srid: int | None


@dataclass(slots=True)
class InvalidPoint:
    reason: str


DecodedPoint = TextPoint | BinaryPoint | InvalidPoint


def decode_point(raw: str | None) -> DecodedPoint:
    """
    Decode a stored location into a point.

    Accepts WKT ``POINT(lng lat)`` and hex EWKB as returned by PostGIS. Anything
    else comes back as ``InvalidPoint`` instead of raising.
    """
    if not isinstance(raw, str) or not raw.strip():
        return InvalidPoint("empty coordinates")
    value = raw.strip()
    if value.upper().startswith(("POINT", "SRID=")):
        return _decode_wkt(value)
    if value.startswith(EWKB_POINT_PREFIX):
        return _decode_ewkb(value)
    return InvalidPoint(f"unrecognized point format: {value[:16]!r}")


def point_from(decoded: DecodedPoint) -> GeoPoint | None:
    if isinstance(decoded, (TextPoint, BinaryPoint)):
        return decoded.point
    return None


def bounding_box(center: GeoPoint, radius_km: float | None) -> BoundingBox:
    radius = float(radius_km or 0.0)
    if radius <= 0 or not math.isfinite(radius):
        return BoundingBox(center.lat, center.lat, center.lng, center.lng)

    delta_deg = (radius / EARTH_RADIUS_KM) * (180.0 / math.pi)
    cos_lat = math.cos(math.radians(center.lat))
    if cos_lat <= 1e-12 or delta_deg / cos_lat >= 180.0:
        # Meridians converge near the poles: every longitude is in range.
        min_lng, max_lng = -180.0, 180.0
    else:
        lng_delta = delta_deg / cos_lat
        min_lng, max_lng = center.lng - lng_delta, center.lng + lng_delta
    return BoundingBox(
        min_lat=center.lat - delta_deg,
        max_lat=center.lat + delta_deg,
        min_lng=min_lng,
        max_lng=max_lng,
    )


def _decode_wkt(value: str) -> DecodedPoint:
    match = _WKT_POINT_RE.match(value)
    if not match:
        return InvalidPoint(f"malformed WKT point: {value[:40]!r}")
    try:
        lng = float(match.group(1))
        lat = float(match.group(2))
    except ValueError:
        return InvalidPoint(f"malformed WKT point: {value[:40]!r}")
    point = _checked_point(lat, lng)
    if point is None:
        return InvalidPoint(f"coordinates out of range: lat={lat} lng={lng}")
    return TextPoint(point)


def _decode_ewkb(value: str) -> DecodedPoint:
    try:
        blob = bytes.fromhex(value)
    except ValueError:
        return InvalidPoint("EWKB is not valid hex")
    if len(blob) < WKB_MIN_BYTES:
        return InvalidPoint(f"EWKB truncated: {len(blob)} bytes")

    # Header: byte order (1) + geometry type (4) [+ SRID (4) when flagged].
    geometry_type = struct.unpack_from("<I", blob, 1)[0]
    if geometry_type & 0xFF != 1:
        return InvalidPoint(f"EWKB geometry is not a point: type={geometry_type:#x}")
    srid: int | None = None
    offset = 5
    if geometry_type & EWKB_SRID_FLAG:
        if len(blob) < EWKB_MIN_BYTES:
            return InvalidPoint(f"EWKB truncated: {len(blob)} bytes")
        srid = struct.unpack_from("<I", blob, 5)[0]
        offset = 9
    lng, lat = struct.unpack_from("<dd", blob, offset)
    point = _checked_point(lat, lng)
    if point is None:
        return InvalidPoint(f"coordinates out of range: lat={lat} lng={lng}")
    return BinaryPoint(point, srid)


def _checked_point(lat: float, lng: float) -> GeoPoint | None:
    if not (math.isfinite(lat) and math.isfinite(lng)):
        return None
    if not (-90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0):
        return None
    return GeoPoint(lat=lat, lng=lng)
