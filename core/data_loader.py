"""
Data Loader - Lookup file loading and caching
Static configuration (characteristic group mappings, USGS parameter metadata)
is read once through an explicit loader object instead of module-level flags.
"""
from __future__ import annotations

import asyncio
import json
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from loguru import logger

from core.config import get_settings
from core.fetch_state import FetchStatus


# Labels the group builder manages itself; never read from configuration
RESERVED_LABELS = ("All", "Other")

LOOKUP_FILES = {
    "characteristicGroupMappings": "characteristic_group_mappings.json",
    "usgsStaParameters": "usgs_sta_parameters.json",
    "usgsParameterCodes": "usgs_parameter_codes.json",
    "usgsSiteTypes": "usgs_site_types.json",
}


@dataclass(frozen=True)
class CharacteristicGroupMapping:
    """A top-level label and the raw service characteristic groups it subsumes."""
    label: str
    group_names: tuple = ()


@dataclass(frozen=True)
class UsgsStaParameter:
    """Display metadata for a USGS parameter code."""
    sta_parameter_code: str
    sta_description: str
    hmw_category: str
    hmw_order: int
    hmw_name: str
    hmw_units: str


def parse_characteristic_group_mappings(raw: List[Dict[str, Any]]) -> List[CharacteristicGroupMapping]:
    """Parse mapping entries, dropping the reserved 'All' and 'Other' labels."""
    mappings = []
    for entry in raw:
        label = entry["label"]
        if label in RESERVED_LABELS:
            continue
        mappings.append(CharacteristicGroupMapping(label, tuple(entry.get("groupNames", []))))
    return mappings


def parse_sta_parameters(raw: List[Dict[str, Any]]) -> List[UsgsStaParameter]:
    return [
        UsgsStaParameter(
            sta_parameter_code=str(p["staParameterCode"]),
            sta_description=p.get("staDescription", ""),
            hmw_category=p.get("hmwCategory", "exclude"),
            hmw_order=int(p.get("hmwOrder", 0)),
            hmw_name=p.get("hmwName", ""),
            hmw_units=p.get("hmwUnits", ""),
        )
        for p in raw
    ]


@dataclass
class LookupFiles:
    """
    Loads every lookup file once per process.

    Owns its own status and a single in-flight guard, so concurrent callers of
    load() share one read. Construct once and pass it to the pages and
    datasets that need configuration.

    Example:
        lookups = LookupFiles()
        await lookups.load()
        mappings = lookups.characteristic_group_mappings
    """
    lookup_dir: str = field(default_factory=lambda: get_settings().lookup_dir)
    status: FetchStatus = FetchStatus.IDLE
    data: Dict[str, Any] = field(default_factory=dict)
    _in_flight: Optional[asyncio.Future] = field(default=None, repr=False)

    def _read(self, filename: str) -> Any:
        path = os.path.join(self.lookup_dir, filename)
        with open(path, encoding="utf-8") as f:
            return json.load(f)

    def _read_all(self) -> Dict[str, Any]:
        raw = {key: self._read(filename) for key, filename in LOOKUP_FILES.items()}
        return {
            "characteristicGroupMappings": parse_characteristic_group_mappings(
                raw["characteristicGroupMappings"]
            ),
            "usgsStaParameters": parse_sta_parameters(raw["usgsStaParameters"]),
            "usgsParameterCodes": dict(raw["usgsParameterCodes"]),
            "usgsSiteTypes": dict(raw["usgsSiteTypes"]),
        }

    def load_sync(self) -> Dict[str, Any]:
        """Blocking load for callers without an event loop."""
        if self.status == FetchStatus.SUCCESS:
            return self.data
        try:
            self.data = self._read_all()
        except (OSError, ValueError, KeyError) as e:
            self.status = FetchStatus.FAILURE
            logger.error(f"Failed to load lookup files from {self.lookup_dir}: {e}")
            raise
        self.status = FetchStatus.SUCCESS
        return self.data

    async def load(self) -> Dict[str, Any]:
        """Load the lookup files, joining an in-flight load if there is one."""
        if self.status == FetchStatus.SUCCESS:
            return self.data
        if self._in_flight is not None:
            return await asyncio.shield(self._in_flight)

        self.status = FetchStatus.PENDING
        self._in_flight = asyncio.ensure_future(asyncio.to_thread(self._read_all))
        try:
            self.data = await self._in_flight
        except (OSError, ValueError, KeyError) as e:
            self.status = FetchStatus.FAILURE
            logger.error(f"Failed to load lookup files from {self.lookup_dir}: {e}")
            raise
        finally:
            self._in_flight = None
        self.status = FetchStatus.SUCCESS
        return self.data

    def _require(self, key: str) -> Any:
        if self.status != FetchStatus.SUCCESS:
            raise RuntimeError("Lookup files have not been loaded")
        return self.data[key]

    @property
    def characteristic_group_mappings(self) -> List[CharacteristicGroupMapping]:
        return self._require("characteristicGroupMappings")

    @property
    def usgs_sta_parameters(self) -> List[UsgsStaParameter]:
        return self._require("usgsStaParameters")

    @property
    def usgs_parameter_codes(self) -> Dict[str, str]:
        return self._require("usgsParameterCodes")

    @property
    def usgs_site_types(self) -> Dict[str, str]:
        return self._require("usgsSiteTypes")
