"""Normalize NOBIL ``chargerstations`` entries into :class:`Station` records."""

from __future__ import annotations

import logging
import math
import re
from typing import Any, Iterable, List, Mapping, Optional, Tuple

from ..config import NOBIL_DEFAULT_COUNTRY
from ..models import Station

LOGGER = logging.getLogger(__name__)

_POSITION_RE = re.compile(r"^\s*\(\s*([^,]+?)\s*,\s*([^)]+?)\s*\)\s*$")

# NOBIL land codes are ISO alpha-3; external ids use the alpha-2 prefix.
_LAND_CODES = {
    "SWE": "SE",
    "NOR": "NO",
    "FIN": "FI",
    "DAN": "DK",
    "DNK": "DK",
    "ISL": "IS",
}

_METADATA_FIELDS = {
    "Street": "street",
    "House_number": "house_number",
    "City": "city",
    "Description_of_location": "description",
    "Number_charging_points": "total_charging_points",
    "Available_charging_points": "available_charging_points",
    "Station_status": "station_status",
    "Land_code": "land_code",
}


def parse_position(raw: Any) -> Optional[Tuple[float, float]]:
    """Parse NOBIL's ``"(lat,lon)"`` string; None when malformed or out of range."""

    if not isinstance(raw, str):
        return None
    match = _POSITION_RE.match(raw)
    if not match:
        return None
    try:
        lat = float(match.group(1))
        lon = float(match.group(2))
    except ValueError:
        return None
    if not (math.isfinite(lat) and math.isfinite(lon)):
        return None
    if not (-90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0):
        return None
    return lat, lon


def external_id_for(csmd: Mapping[str, Any]) -> Optional[str]:
    raw_id = csmd.get("id")
    if raw_id is None or str(raw_id).strip() == "":
        return None
    land = str(csmd.get("Land_code") or "").upper()
    prefix = _LAND_CODES.get(land, NOBIL_DEFAULT_COUNTRY)
    return f"{prefix}_{str(raw_id).strip()}"


def station_from_payload(entry: Any) -> Optional[Station]:
    """Build a Station from one ``chargerstations`` entry, or None if unusable."""

    if not isinstance(entry, Mapping):
        return None
    csmd = entry.get("csmd")
    if not isinstance(csmd, Mapping):
        return None
    external_id = external_id_for(csmd)
    if external_id is None:
        return None
    position = parse_position(csmd.get("Position"))
    if position is None:
        LOGGER.debug("Skipping %s: bad position %r", external_id, csmd.get("Position"))
        return None
    metadata = {
        target: csmd[source]
        for source, target in _METADATA_FIELDS.items()
        if csmd.get(source) not in (None, "")
    }
    name = str(csmd.get("name") or "").strip() or f"Station {csmd.get('id')}"
    return Station(
        external_id=external_id,
        latitude=position[0],
        longitude=position[1],
        display_name=name,
        operator=str(csmd.get("Owned_by") or "").strip() or "Unknown",
        metadata=metadata,
    )


def stations_from_payload(entries: Iterable[Any]) -> List[Station]:
    stations: List[Station] = []
    skipped = 0
    for entry in entries:
        station = station_from_payload(entry)
        if station is None:
            skipped += 1
            continue
        stations.append(station)
    if skipped:
        LOGGER.info("Skipped %d malformed provider entries", skipped)
    return stations


__all__ = [
    "external_id_for",
    "parse_position",
    "station_from_payload",
    "stations_from_payload",
]
