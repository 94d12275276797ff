"""
Past Water Conditions filter state.
Combines the year-range selection and characteristic group toggles into the
set of monitoring locations shown on the map and in the summary table.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from core.config import get_settings
from core.data_loader import CharacteristicGroupMapping
from core.fetch_state import FetchStatus
from core.models import MonitoringLocation
from core.observable import Observable
from filters.characteristic_groups import (
    ALL_LABEL,
    OTHER_LABEL,
    CharacteristicGroup,
    build_monitoring_groups,
    filter_locations_by_charc_groups,
    initial_monitoring_groups,
    toggled_labels,
)
from filters.timeframe import YearRange, filter_location_measurements_by_timeframe


@dataclass(frozen=True)
class GroupSummaryRow:
    """One toggle row of the summary table."""
    label: str
    toggled: bool
    location_count: int
    measurement_count: int


class PastWaterConditionsFilter:
    """
    Owns the toggle and year-range state for one area of interest.

    Example:
        pwc = PastWaterConditionsFilter(lookups.characteristic_group_mappings)
        pwc.set_stations(stations)
        pwc.set_period_of_record(FetchStatus.SUCCESS, YearRange(1990, 2024))
        pwc.set_selected_range(YearRange(2010, 2020))
        pwc.toggle_group("Metals")
        visible = pwc.filtered_locations.value
    """

    def __init__(self, mappings: Sequence[CharacteristicGroupMapping]):
        self.mappings = list(mappings)
        self.groups: Dict[str, CharacteristicGroup] = initial_monitoring_groups(self.mappings)
        self.all_toggled = True
        self.monitoring_displayed: Observable[bool] = Observable(True)
        self.filtered_locations: Observable[List[MonitoringLocation]] = Observable([])
        self.locations_filtered_by_time: List[MonitoringLocation] = []

        self.period_of_record_status = FetchStatus.IDLE
        self.years_range: Optional[YearRange] = None
        self.selected_years_range: Optional[YearRange] = None

    # =========================================================================
    # INPUTS
    # =========================================================================

    def set_stations(self, stations: Sequence[MonitoringLocation]) -> None:
        """Rebuild the groups for a new station list; all toggles return to on."""
        self.groups = build_monitoring_groups(stations, self.mappings)
        self.all_toggled = True
        self.monitoring_displayed.set(True)
        self.refresh()

    def set_period_of_record(self, status: FetchStatus, years_range: Optional[YearRange] = None) -> None:
        """
        Record the annual data status and the full year range it covers.

        The selected range resets to the full range. A successful load with no
        years (min year 0) leaves both ranges unset.
        """
        self.period_of_record_status = FetchStatus(status)
        if self.period_of_record_status == FetchStatus.SUCCESS and years_range and years_range.min_year:
            self.years_range = years_range
            self.selected_years_range = years_range
        else:
            self.years_range = None
            self.selected_years_range = None
        self.refresh()

    def set_selected_range(self, selected: YearRange | Tuple[int, int]) -> None:
        """
        Select a sub-range of the available years.

        Raises:
            ValueError: If annual data isn't ready or the range falls outside it
        """
        if not isinstance(selected, YearRange):
            selected = YearRange(*selected)
        if self.years_range is None:
            raise ValueError("Annual records are not available")
        if not selected.within(self.years_range):
            raise ValueError(
                f"Selected years {selected.as_tuple()} are outside {self.years_range.as_tuple()}"
            )
        self.selected_years_range = selected
        self.refresh()

    @property
    def annual_records_ready(self) -> bool:
        return self.period_of_record_status == FetchStatus.SUCCESS and self.years_range is not None

    # =========================================================================
    # TOGGLES
    # =========================================================================

    def toggle_all(self) -> None:
        """Flip every group (including All) to the opposite of the current all-toggled state."""
        new_state = not self.all_toggled
        for group in self.groups.values():
            group.toggled = new_state
        self.all_toggled = new_state
        self.monitoring_displayed.set(new_state)
        self.refresh()

    def toggle_group(self, label: str) -> None:
        if label not in self.groups:
            raise KeyError(f"Unknown characteristic group: {label}")
        group = self.groups[label]
        group.toggled = not group.toggled

        self.all_toggled = all(g.toggled for g in self.groups.values())
        self.monitoring_displayed.set(
            any(g.toggled for name, g in self.groups.items() if name != ALL_LABEL)
        )
        self.refresh()

    # =========================================================================
    # DERIVED STATE
    # =========================================================================

    def refresh(self) -> None:
        """Re-apply the year range and toggles, then publish the filtered locations."""
        timeframe = self.selected_years_range.as_tuple() if self.annual_records_ready else None
        self.locations_filtered_by_time = [
            filter_location_measurements_by_timeframe(station, timeframe, self.mappings)
            for station in self.groups[ALL_LABEL].stations
        ]
        filtered = filter_locations_by_charc_groups(self.locations_filtered_by_time, self.groups)

        self.filtered_locations.set(filtered, force=True)

    def toggled_counts(self) -> Tuple[int, int]:
        """(location count, measurement count) across the toggled-on groups."""
        labels = toggled_labels(self.groups)
        locations = self.filtered_locations.value or []
        measurements = sum(
            station.totals_by_label.get(label, 0)
            for station in locations
            for label in labels
        )
        return len(locations), measurements

    def group_rows(self) -> List[GroupSummaryRow]:
        """Non-empty named groups, alphabetical with Other last, counted over the selected years."""
        rows = []
        for label, group in self.groups.items():
            if label == ALL_LABEL or not group.stations:
                continue
            counts = [
                station.totals_by_label.get(label, 0)
                for station in self.locations_filtered_by_time
            ]
            rows.append(GroupSummaryRow(
                label=label,
                toggled=group.toggled,
                location_count=sum(1 for count in counts if count > 0),
                measurement_count=sum(count for count in counts if count > 0),
            ))
        rows.sort(key=lambda row: (row.label == OTHER_LABEL, row.label))
        return rows

    # =========================================================================
    # DOWNLOAD LINKS
    # =========================================================================

    def build_filter(self) -> str:
        """Query string fragment for the active toggles and selected years."""
        filter_string = ""

        selected = toggled_labels(self.groups)
        groups_count = sum(1 for label in self.groups if label != ALL_LABEL)
        if len(selected) != groups_count:
            for label in selected:
                for name in self.groups[label].characteristic_groups:
                    filter_string += f"&characteristicType={name}"

        if self.annual_records_ready:
            start, end = self.selected_years_range
            filter_string += f"&startDateLo=01-01-{start}&startDateHi=12-31-{end}"

        return filter_string

    def _location_filter(self, huc12: str, wqx_ids: Sequence[str]) -> str:
        location = f"&huc={huc12}" if huc12 else ""
        return location + "".join(f"&organization={wqx_id}" for wqx_id in wqx_ids)

    def download_url(self, huc12: str = "", wqx_ids: Sequence[str] = ()) -> str:
        settings = get_settings()
        return (
            f"{settings.wqp_result_search_url}zip=no"
            f"{self._location_filter(huc12, wqx_ids)}{self.build_filter()}"
        )

    def portal_url(self, huc12: str = "", wqx_ids: Sequence[str] = ()) -> str:
        settings = get_settings()
        return (
            f"{settings.wqp_user_interface_url}#advanced=true"
            f"{self._location_filter(huc12, wqx_ids)}{self.build_filter()}"
            "&dataProfile=resultPhysChem&providers=NWIS&providers=STEWARDS&providers=STORET"
        )
