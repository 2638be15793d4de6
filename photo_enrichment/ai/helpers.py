from __future__ import annotations

import base64
import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from io import BytesIO
from typing import Any, Dict, Iterable, List, Optional, Tuple

from PIL import Image, UnidentifiedImageError
from PIL.ExifTags import GPSTAGS, TAGS

logger = logging.getLogger(__name__)

UNKNOWN = "unknown"


# ----------------------------------
# Model output parsing
# ----------------------------------

@dataclass
class ParseResult:
    ok: bool
    value: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    raw: str = ""


_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def _strip_fences(text: str) -> str:
    return _FENCE_RE.sub("", text.strip()).strip()


def _first_json_object(text: str) -> Optional[str]:
    """Returns the first balanced {...} span, ignoring braces inside strings."""
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return text[start:i + 1]
        start = text.find("{", start + 1)
    return None


def _loads_object(text: str) -> Optional[Dict[str, Any]]:
    try:
        value = json.loads(text)
    except (json.JSONDecodeError, TypeError):
        return None
    return value if isinstance(value, dict) else None


def parse_json_response(text: Optional[str]) -> ParseResult:
    """
    Parses a JSON object out of model output.

    Tries a strict parse first, then strips markdown fences, then falls back
    to the first balanced object embedded in surrounding prose.
    """
    raw = text or ""
    if not raw.strip():
        return ParseResult(ok=False, error="empty response", raw=raw)

    value = _loads_object(raw)
    if value is None:
        value = _loads_object(_strip_fences(raw))
    if value is None:
        span = _first_json_object(raw)
        if span is not None:
            value = _loads_object(span)

    if value is None:
        return ParseResult(ok=False, error="no JSON object found in response", raw=raw)
    return ParseResult(ok=True, value=value, raw=raw)


# ----------------------------------
# GPS / orientation from metadata
# ----------------------------------

def _to_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        s = value.strip()
        if "/" in s:
            num, _, den = s.partition("/")
            try:
                d = float(den)
                return float(num) / d if d else None
            except ValueError:
                return None
        try:
            return float(s)
        except ValueError:
            return None
    # PIL IFDRational and friends
    try:
        return float(value)
    except (TypeError, ValueError, ZeroDivisionError):
        return None


def parse_gps_string(gps: Optional[str]) -> Optional[Tuple[float, float]]:
    """'lat,lon' -> (lat, lon); None when malformed or out of range."""
    if not gps or not isinstance(gps, str):
        return None
    parts = [p.strip() for p in gps.split(",")]
    if len(parts) != 2:
        return None
    lat, lon = _to_float(parts[0]), _to_float(parts[1])
    if lat is None or lon is None:
        return None
    if not (-90 <= lat <= 90 and -180 <= lon <= 180):
        return None
    return lat, lon


def dms_to_decimal(value: Any, ref: Optional[str] = None) -> Optional[float]:
    """Degrees/minutes/seconds (list or scalar) plus N/S/E/W ref to decimal degrees."""
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        parts = [_to_float(v) for v in value]
        if not parts or any(p is None for p in parts):
            return None
        deg = parts[0]
        minutes = parts[1] if len(parts) > 1 else 0.0
        seconds = parts[2] if len(parts) > 2 else 0.0
        decimal = deg + minutes / 60.0 + seconds / 3600.0
    else:
        decimal = _to_float(value)
        if decimal is None:
            return None
    if ref and str(ref).strip().upper() in ("S", "W"):
        decimal = -abs(decimal)
    return decimal


def _nested(metadata: Dict[str, Any], *path: str) -> Any:
    cur: Any = metadata
    for key in path:
        if not isinstance(cur, dict):
            return None
        cur = cur.get(key)
    return cur


_LAT_LON_PATHS = (
    (("latitude",), ("longitude",)),
    (("lat",), ("lon",)),
    (("Latitude",), ("Longitude",)),
    (("location", "lat"), ("location", "lon")),
    (("GPS", "latitude"), ("GPS", "longitude")),
)


def resolve_gps(
    metadata: Optional[Dict[str, Any]],
    gps_string: Optional[str] = None,
) -> Optional[Tuple[float, float]]:
    """Coordinates from an explicit gps string, else from the metadata map."""
    parsed = parse_gps_string(gps_string)
    if parsed:
        return parsed
    if not isinstance(metadata, dict):
        return None

    for lat_path, lon_path in _LAT_LON_PATHS:
        lat = _to_float(_nested(metadata, *lat_path))
        lon = _to_float(_nested(metadata, *lon_path))
        if lat is not None and lon is not None:
            return lat, lon

    for container in (metadata, metadata.get("GPS"), metadata.get("GPSInfo")):
        if not isinstance(container, dict):
            continue
        lat = dms_to_decimal(container.get("GPSLatitude"), container.get("GPSLatitudeRef"))
        lon = dms_to_decimal(container.get("GPSLongitude"), container.get("GPSLongitudeRef"))
        if lat is not None and lon is not None:
            return lat, lon
    return None


_HEADING_PATHS = (
    ("heading",), ("Heading",), ("direction",), ("Direction",),
    ("facingDirection",), ("compassHeading",),
    ("GPSImgDirection",), ("GPSDirection",), ("GPSDestBearing",),
    ("GPS", "GPSImgDirection"), ("GPSInfo", "GPSImgDirection"),
)

_ALTITUDE_PATHS = (
    ("altitude",), ("Altitude",), ("GPSAltitude",),
    ("GPS", "GPSAltitude"), ("GPSInfo", "GPSAltitude"),
)


def _first_number(metadata: Optional[Dict[str, Any]], paths: Iterable[Tuple[str, ...]]) -> Optional[float]:
    if not isinstance(metadata, dict):
        return None
    for path in paths:
        value = _to_float(_nested(metadata, *path))
        if value is not None:
            return value
    return None


def extract_heading(metadata: Optional[Dict[str, Any]]) -> Optional[float]:
    value = _first_number(metadata, _HEADING_PATHS)
    if value is None:
        return None
    return value % 360.0


def extract_altitude(metadata: Optional[Dict[str, Any]]) -> Optional[float]:
    return _first_number(metadata, _ALTITUDE_PATHS)


_CARDINALS = (
    "N", "NNE", "NE", "ENE", "E", "ESE", "SE", "SSE",
    "S", "SSW", "SW", "WSW", "W", "WNW", "NW", "NNW",
)


def heading_to_cardinal(heading: Optional[float]) -> Optional[str]:
    if heading is None:
        return None
    idx = int(((heading % 360.0) + 11.25) // 22.5) % 16
    return _CARDINALS[idx]


_EXIF_DT_RE = re.compile(r"^(\d{4}):(\d{2}):(\d{2})[ T](\d{2}:\d{2}:\d{2})")


def _normalize_exif_datetime(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.isoformat()
    s = str(value).strip()
    if not s:
        return None
    m = _EXIF_DT_RE.match(s)
    if m:
        return f"{m.group(1)}-{m.group(2)}-{m.group(3)}T{m.group(4)}"
    return s


def _gps_time_to_str(value: Any) -> Optional[str]:
    if isinstance(value, (list, tuple)) and len(value) == 3:
        parts = [_to_float(v) for v in value]
        if any(p is None for p in parts):
            return None
        h, m, s = parts
        return f"{int(h):02d}:{int(m):02d}:{int(s):02d}"
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


_TIMESTAMP_KEYS = (
    "captureTimestamp", "captureTime", "DateTimeOriginal",
    "CreateDate", "DateCreated", "ModifyDate", "DateTime",
)


def extract_timestamp(metadata: Optional[Dict[str, Any]]) -> Optional[str]:
    """
    Capture time as ISO text. GPS date/time stamps win (they are UTC),
    then the usual EXIF/XMP date fields.
    """
    if not isinstance(metadata, dict):
        return None

    for container in (metadata, metadata.get("GPS"), metadata.get("GPSInfo")):
        if not isinstance(container, dict):
            continue
        date = container.get("GPSDateStamp")
        time_part = _gps_time_to_str(container.get("GPSTimeStamp"))
        if date and time_part:
            return f"{str(date).replace(':', '-')}T{time_part}Z"

    for key in _TIMESTAMP_KEYS:
        value = _normalize_exif_datetime(metadata.get(key))
        if value:
            return value
    return None


# ----------------------------------
# Keywords
# ----------------------------------

def build_metadata_keywords(
    metadata: Optional[Dict[str, Any]],
    coords: Optional[Tuple[float, float]] = None,
) -> List[str]:
    """date:/time:/direction:/gps:/altitude: keywords, 'unknown' when absent."""
    ts = extract_timestamp(metadata)
    date_kw, time_kw = UNKNOWN, UNKNOWN
    if ts and "T" in ts:
        date_part, _, time_part = ts.partition("T")
        date_kw = date_part
        time_kw = time_part
    elif ts:
        date_kw = ts

    cardinal = heading_to_cardinal(extract_heading(metadata))
    altitude = extract_altitude(metadata)
    gps_kw = f"{coords[0]:.6f},{coords[1]:.6f}" if coords else UNKNOWN
    altitude_kw = f"{altitude:.1f}m" if altitude is not None else UNKNOWN

    return [
        f"date:{date_kw}",
        f"time:{time_kw}",
        f"direction:{cardinal or UNKNOWN}",
        f"gps:{gps_kw}",
        f"altitude:{altitude_kw}",
    ]


def keywords_to_string(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (list, tuple)):
        return ", ".join(str(v).strip() for v in value if str(v).strip())
    return str(value).strip()


def merge_keyword_strings(*values: Any) -> str:
    """
    Joins keyword lists/strings, dropping case-insensitive duplicates.
    Strings are split on commas; list items are kept whole (gps:lat,lon).
    """
    seen = set()
    merged: List[str] = []
    for value in values:
        items = value if isinstance(value, (list, tuple)) else keywords_to_string(value).split(",")
        for kw in items:
            kw = str(kw).strip()
            if not kw or kw.lower() in seen:
                continue
            seen.add(kw.lower())
            merged.append(kw)
    return ", ".join(merged)


# ----------------------------------
# Images
# ----------------------------------

def image_to_base64(image_bytes: bytes) -> str:
    return base64.b64encode(image_bytes).decode("utf-8")


def image_to_data_url(image_bytes: bytes, mime: Optional[str] = None) -> str:
    return f"data:{mime or 'image/jpeg'};base64,{image_to_base64(image_bytes)}"


def _exif_value(value: Any) -> Any:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="ignore").strip("\x00 ")
    if isinstance(value, tuple):
        return [_exif_value(v) for v in value]
    if isinstance(value, (int, float, str)):
        return value
    number = _to_float(value)
    return number if number is not None else str(value)


def extract_exif_metadata(image_bytes: bytes) -> Dict[str, Any]:
    """
    Flat EXIF map with decoded tag names; GPS tags go under "GPS".
    Unreadable images give an empty map.
    """
    try:
        image = Image.open(BytesIO(image_bytes))
        exif = image.getexif()
    except (UnidentifiedImageError, OSError) as e:
        logger.warning("could not read EXIF: %s", e)
        return {}

    metadata: Dict[str, Any] = {}
    for tag, value in exif.items():
        name = TAGS.get(tag, tag)
        if name == "GPSInfo":
            continue
        metadata[str(name)] = _exif_value(value)

    # DateTimeOriginal lives in the Exif sub-IFD
    for tag, value in exif.get_ifd(0x8769).items():
        metadata[str(TAGS.get(tag, tag))] = _exif_value(value)

    gps_ifd = exif.get_ifd(0x8825)
    if gps_ifd:
        metadata["GPS"] = {str(GPSTAGS.get(t, t)): _exif_value(v) for t, v in gps_ifd.items()}
    return metadata


# ----------------------------------
# Diagnostics
# ----------------------------------

def usage_entry(
    step: str,
    model: Optional[str] = None,
    usage: Optional[Dict[str, Any]] = None,
    duration_ms: Optional[int] = None,
    notes: Optional[str] = None,
) -> Dict[str, Any]:
    return {
        "step": step,
        "model": model,
        "usage": usage or {},
        "duration_ms": duration_ms,
        "notes": notes,
    }


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
