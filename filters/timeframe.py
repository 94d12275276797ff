"""
Annual Record Aggregator
Re-aggregates a station's per-year measurement ledger for a selected
inclusive year range.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Sequence, Tuple, Union

from core.data_loader import CharacteristicGroupMapping
from core.models import AnnualStationData, MonitoringLocation
from filters.characteristic_groups import label_names


@dataclass(frozen=True)
class YearRange:
    """Inclusive [min_year, max_year] window."""
    min_year: int
    max_year: int

    def __post_init__(self):
        if self.min_year > self.max_year:
            raise ValueError(
                f"Invalid year range: {self.min_year} is after {self.max_year}"
            )

    def __iter__(self):
        return iter((self.min_year, self.max_year))

    def contains(self, year: int) -> bool:
        return self.min_year <= year <= self.max_year

    def within(self, bound: "YearRange") -> bool:
        return bound.min_year <= self.min_year and self.max_year <= bound.max_year

    def clamp(self, bound: "YearRange") -> "YearRange":
        """This range narrowed to fit inside bound, or bound itself when they don't overlap."""
        low = max(self.min_year, bound.min_year)
        high = min(self.max_year, bound.max_year)
        if low > high:
            return bound
        return YearRange(low, high)

    def as_tuple(self) -> Tuple[int, int]:
        return (self.min_year, self.max_year)


Timeframe = Union[YearRange, Tuple[int, int], List[int]]


def sort_years(data_by_year: Dict[str, AnnualStationData]) -> List[Tuple[int, AnnualStationData]]:
    """Ledger entries as (year, data) pairs in ascending numeric year order."""
    return sorted(((int(year), data) for year, data in data_by_year.items()), key=lambda item: item[0])


def _add_counts(target: Dict[str, int], counts: Dict[str, int]) -> None:
    for key, count in counts.items():
        if count <= 0:
            continue
        target[key] = target.get(key, 0) + count


def filter_location_measurements_by_timeframe(
    station: MonitoringLocation,
    timeframe: Optional[Timeframe],
    mappings: Sequence[CharacteristicGroupMapping],
) -> MonitoringLocation:
    """
    Aggregate a station's ledger over an inclusive year range.

    Args:
        station: Station with a populated data_by_year ledger
        timeframe: (min_year, max_year), or None for no filtering
        mappings: Characteristic group mappings; every label is present in
            the result's totals_by_label, at 0 if nothing contributes

    Returns:
        The station itself when timeframe is None, otherwise a new station
        whose aggregate fields cover only the selected years.
    """
    if timeframe is None:
        return station

    min_year, max_year = timeframe
    totals_by_label = {label: 0 for label in label_names(mappings)}
    totals_by_group: Dict[str, int] = {}
    totals_by_characteristic: Dict[str, int] = {}
    characteristics_by_group: Dict[str, List[str]] = {}
    total_measurements = 0

    for year, annual in sort_years(station.data_by_year):
        if year < min_year:
            continue
        if year > max_year:
            break

        total_measurements += annual.total_measurements
        _add_counts(totals_by_group, annual.totals_by_group)
        for label, count in annual.totals_by_label.items():
            totals_by_label[label] = totals_by_label.get(label, 0) + count
        _add_counts(totals_by_characteristic, annual.totals_by_characteristic)
        for group, characteristics in annual.characteristics_by_group.items():
            merged = characteristics_by_group.setdefault(group, [])
            merged.extend(c for c in characteristics if c not in merged)

    return replace(
        station,
        total_measurements=total_measurements,
        totals_by_group=totals_by_group,
        totals_by_label=totals_by_label,
        totals_by_characteristic=totals_by_characteristic,
        characteristics_by_group=characteristics_by_group,
        timeframe=(min_year, max_year),
    )


def ledger_year_range(station: MonitoringLocation) -> Optional[YearRange]:
    """Full range covered by a station's ledger, or None for an empty ledger."""
    years = [year for year, _ in sort_years(station.data_by_year)]
    if not years:
        return None
    return YearRange(years[0], years[-1])


def summarize_ledger(
    station: MonitoringLocation,
    mappings: Sequence[CharacteristicGroupMapping],
) -> MonitoringLocation:
    """
    Station totals recomputed from its whole ledger.

    The result carries no timeframe, so later range filtering over the
    ledger's full range reproduces exactly these totals.
    """
    year_range = ledger_year_range(station)
    if year_range is None:
        return replace(
            station,
            total_measurements=0,
            totals_by_group={},
            totals_by_label={label: 0 for label in label_names(mappings)},
            totals_by_characteristic={},
            characteristics_by_group={},
        )
    summary = filter_location_measurements_by_timeframe(station, year_range.as_tuple(), mappings)
    return replace(summary, timeframe=None)
