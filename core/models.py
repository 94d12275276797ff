"""
Normalized feature records shared by the data pipelines, filters and map layers.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple


@dataclass
class AnnualStationData:
    """One year of a station's measurement ledger."""
    unique_id: str
    total_measurements: int = 0
    total_samples: int = 0
    totals_by_characteristic: Dict[str, int] = field(default_factory=dict)
    totals_by_group: Dict[str, int] = field(default_factory=dict)
    totals_by_label: Dict[str, int] = field(default_factory=dict)
    characteristics_by_group: Dict[str, List[str]] = field(default_factory=dict)


@dataclass
class MonitoringLocation:
    """
    A Water Quality Portal monitoring location ("Past Water Conditions").

    unique_id concatenates site id, provider and organization id, since a
    site id alone isn't universally unique. It is stable across re-fetches.
    """
    site_id: str
    org_id: str
    provider_name: str
    unique_id: str
    location_longitude: Optional[float] = None
    location_latitude: Optional[float] = None
    location_name: str = ""
    location_type: str = ""
    location_url: str = ""
    location_url_partial: str = ""
    org_name: str = ""
    county: str = ""
    state: str = ""
    monitoring_type: str = "Past Water Conditions"
    total_samples: int = 0
    total_measurements: int = 0
    # year (four-digit string) -> annual totals
    data_by_year: Dict[str, AnnualStationData] = field(default_factory=dict)
    characteristics_by_group: Dict[str, List[str]] = field(default_factory=dict)
    totals_by_characteristic: Dict[str, int] = field(default_factory=dict)
    # counts for each raw (lower-tier) characteristic group
    totals_by_group: Dict[str, int] = field(default_factory=dict)
    # counts for each top-tier label
    totals_by_label: Dict[str, int] = field(default_factory=dict)
    timeframe: Optional[Tuple[int, int]] = None


@dataclass
class DailyObservation:
    measurement: Optional[float]
    date: str


@dataclass
class StreamgageMeasurement:
    parameter_category: str
    parameter_order: int
    parameter_name: str
    parameter_usgs_name: str
    parameter_code: str
    measurement: Optional[float]
    datetime: str
    unit_abbr: str
    daily_averages: List[DailyObservation] = field(default_factory=list)


@dataclass
class UsgsStreamgage:
    """A USGS sensor location with its latest measurements."""
    site_id: str
    org_id: str
    unique_id: str
    location_longitude: Optional[float] = None
    location_latitude: Optional[float] = None
    location_name: str = ""
    location_type: str = ""
    location_url: str = ""
    org_name: str = ""
    monitoring_type: str = "USGS Sensors"
    streamgage_measurements: Dict[str, List[StreamgageMeasurement]] = field(
        default_factory=lambda: {"primary": [], "secondary": []}
    )
