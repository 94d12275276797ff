"""
Period of Record
Fetches the Water Quality Portal annual summary for a set of monitoring
locations and structures it into per-station year ledgers.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Sequence

import pandas as pd
from loguru import logger

from core.config import get_settings
from core.data_loader import CharacteristicGroupMapping
from core.fetch_state import FetchState, FetchStatus, handle_fetch_error
from core.models import AnnualStationData, MonitoringLocation
from core.services import AbortSignal, fetch_parse_csv, parse_int
from filters.characteristic_groups import get_charc_label
from filters.timeframe import YearRange, summarize_ledger


@dataclass
class PeriodOfRecordData:
    """Year ledgers keyed by station unique id, plus the overall year span."""
    min_year: int = 0
    max_year: int = 0
    sites: Dict[str, Dict[str, AnnualStationData]] = field(default_factory=dict)

    @property
    def year_range(self) -> Optional[YearRange]:
        """None when there is no annual data."""
        if not self.min_year:
            return None
        return YearRange(self.min_year, self.max_year)


def _increment_totals(
    station: AnnualStationData,
    record: Dict[str, Any],
    mappings: Sequence[CharacteristicGroupMapping],
) -> None:
    result_count = parse_int(record.get("ResultCount"))
    station.total_measurements += result_count
    station.total_samples += parse_int(record.get("ActivityCount"))

    charc_name = str(record.get("CharacteristicName", ""))
    charc_group = str(record.get("CharacteristicType", ""))
    charc_label = get_charc_label(charc_group, mappings)

    station.totals_by_characteristic[charc_name] = station.totals_by_characteristic.get(charc_name, 0) + result_count
    station.totals_by_group[charc_group] = station.totals_by_group.get(charc_group, 0) + result_count
    station.totals_by_label[charc_label] = station.totals_by_label.get(charc_label, 0) + result_count

    characteristics = station.characteristics_by_group.setdefault(charc_group, [])
    if charc_name not in characteristics:
        characteristics.append(charc_name)


def structure_period_of_record_data(
    records: pd.DataFrame,
    mappings: Sequence[CharacteristicGroupMapping],
) -> PeriodOfRecordData:
    """
    Build per-station year ledgers from periodOfRecord CSV rows.

    Args:
        records: Rows with Provider, MonitoringLocationIdentifier,
            YearSummarized, CharacteristicType, CharacteristicName,
            ActivityCount, ResultCount and OrganizationIdentifier columns
        mappings: Characteristic group mappings for the label totals

    Returns:
        PeriodOfRecordData; min_year is 0 when there are no usable rows
    """
    min_year = None
    max_year = 0
    sites: Dict[str, Dict[str, AnnualStationData]] = {}

    for record in records.to_dict("records"):
        year = parse_int(record.get("YearSummarized"), default=-1)
        if year < 0:
            continue
        min_year = year if min_year is None else min(min_year, year)
        max_year = max(max_year, year)

        unique_id = (
            f"{record.get('MonitoringLocationIdentifier')}"
            f"-{record.get('Provider')}"
            f"-{record.get('OrganizationIdentifier')}"
        )
        ledger = sites.setdefault(unique_id, {})
        annual = ledger.get(str(year))
        if annual is None:
            annual = AnnualStationData(unique_id=unique_id)
            ledger[str(year)] = annual
        _increment_totals(annual, record, mappings)

    return PeriodOfRecordData(min_year=min_year or 0, max_year=max_year, sites=sites)


async def fetch_period_of_record(
    site_ids: Sequence[str],
    mappings: Sequence[CharacteristicGroupMapping],
    signal: Optional[AbortSignal] = None,
) -> FetchState:
    """
    Fetch and structure annual summaries for the given site ids.

    The id list goes in a POST body, since it can be too long for a URL.

    Returns:
        FetchState holding PeriodOfRecordData on success; idle when there
        are no site ids
    """
    if not site_ids:
        return FetchState(FetchStatus.IDLE, PeriodOfRecordData())

    url = f"{get_settings().wqp_monitoring_location_url}search"
    params = {"mimeType": "csv", "zip": "no"}
    body = {
        "dataProfile": "periodOfRecord",
        "summaryYears": "all",
        "siteid": list(dict.fromkeys(site_ids)),
    }
    try:
        records = await fetch_parse_csv(url, data=body, signal=signal, params=params)
    except Exception as e:
        return handle_fetch_error(e)

    data = structure_period_of_record_data(records, mappings)
    logger.info(
        f"Period of record: {len(data.sites)} stations, years {data.min_year}-{data.max_year}"
    )
    return FetchState(FetchStatus.SUCCESS, data)


def add_annual_data(
    stations: Sequence[MonitoringLocation],
    annual_data: Dict[str, Dict[str, AnnualStationData]],
    mappings: Sequence[CharacteristicGroupMapping],
) -> List[MonitoringLocation]:
    """
    Attach year ledgers to stations and recompute their all-time totals.

    Stations without annual data are returned unchanged.
    """
    updated = []
    for station in stations:
        ledger = annual_data.get(station.unique_id)
        if ledger is None:
            updated.append(station)
            continue
        updated.append(summarize_ledger(replace(station, data_by_year=ledger), mappings))
    return updated
