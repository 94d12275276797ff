"""
Filters Module
Data filters for deduplication, characteristic groups, and year-range aggregation.
"""
from filters.dedup import filter_data, match_keys

from filters.characteristic_groups import (
    ALL_LABEL,
    OTHER_LABEL,
    CharacteristicGroup,
    build_monitoring_groups,
    filter_locations_by_charc_groups,
    get_charc_label,
    initial_monitoring_groups,
    parse_station_label_totals,
)

from filters.timeframe import (
    YearRange,
    filter_location_measurements_by_timeframe,
    sort_years,
    summarize_ledger,
)

from filters.past_water_conditions import PastWaterConditionsFilter

__all__ = [
    # Dedup
    "filter_data",
    "match_keys",
    # Characteristic groups
    "ALL_LABEL",
    "OTHER_LABEL",
    "CharacteristicGroup",
    "build_monitoring_groups",
    "filter_locations_by_charc_groups",
    "get_charc_label",
    "initial_monitoring_groups",
    "parse_station_label_totals",
    # Timeframe
    "YearRange",
    "filter_location_measurements_by_timeframe",
    "sort_years",
    "summarize_ledger",
    # Past water conditions
    "PastWaterConditionsFilter",
]
