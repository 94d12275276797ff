"""
Tests for filters.timeframe (year-range re-aggregation of station ledgers).
"""
from __future__ import annotations

import unittest

from core.data_loader import CharacteristicGroupMapping
from core.models import AnnualStationData, MonitoringLocation
from filters.characteristic_groups import OTHER_LABEL
from filters.timeframe import (
    YearRange,
    filter_location_measurements_by_timeframe,
    ledger_year_range,
    sort_years,
    summarize_ledger,
)


MAPPINGS = [
    CharacteristicGroupMapping("Nutrients", ("Nutrient",)),
    CharacteristicGroupMapping("Metals", ("Inorganics, Major, Metals", "Inorganics, Minor, Metals")),
]


def _annual(unique_id: str, group: str, label: str, charc: str, count: int) -> AnnualStationData:
    return AnnualStationData(
        unique_id=unique_id,
        total_measurements=count,
        total_samples=1,
        totals_by_characteristic={charc: count},
        totals_by_group={group: count},
        totals_by_label={label: count},
        characteristics_by_group={group: [charc]},
    )


def _station_with_ledger() -> MonitoringLocation:
    uid = "S1-STORET-ORG"
    return MonitoringLocation(
        site_id="S1",
        org_id="ORG",
        provider_name="STORET",
        unique_id=uid,
        total_measurements=10,
        data_by_year={
            "2021": _annual(uid, "Nutrient", "Nutrients", "Nitrate", 2),
            "2019": _annual(uid, "Nutrient", "Nutrients", "Phosphorus", 3),
            "2020": _annual(uid, "Inorganics, Major, Metals", "Metals", "Iron", 5),
        },
    )


class TestYearRange(unittest.TestCase):

    def test_rejects_inverted_range(self):
        with self.assertRaises(ValueError):
            YearRange(2021, 2019)

    def test_single_year_is_valid(self):
        self.assertEqual(YearRange(2020, 2020).as_tuple(), (2020, 2020))

    def test_unpacks(self):
        start, end = YearRange(1990, 2024)
        self.assertEqual((start, end), (1990, 2024))

    def test_within_and_contains(self):
        full = YearRange(1990, 2024)
        self.assertTrue(YearRange(2000, 2010).within(full))
        self.assertFalse(YearRange(1980, 2010).within(full))
        self.assertTrue(full.contains(1990))
        self.assertFalse(full.contains(2025))

    def test_clamp(self):
        full = YearRange(2000, 2010)
        self.assertEqual(YearRange(1995, 2005).clamp(full), YearRange(2000, 2005))
        self.assertEqual(YearRange(2015, 2020).clamp(full), full)


class TestFilterByTimeframe(unittest.TestCase):

    def test_single_year(self):
        result = filter_location_measurements_by_timeframe(_station_with_ledger(), (2020, 2020), MAPPINGS)
        self.assertEqual(result.total_measurements, 5)
        self.assertEqual(result.totals_by_label["Metals"], 5)
        self.assertEqual(result.totals_by_label["Nutrients"], 0)
        self.assertEqual(result.timeframe, (2020, 2020))

    def test_full_range(self):
        result = filter_location_measurements_by_timeframe(_station_with_ledger(), (2019, 2021), MAPPINGS)
        self.assertEqual(result.total_measurements, 10)
        self.assertEqual(result.totals_by_group, {"Nutrient": 5, "Inorganics, Major, Metals": 5})
        self.assertEqual(result.totals_by_characteristic, {"Phosphorus": 3, "Iron": 5, "Nitrate": 2})
        self.assertEqual(result.characteristics_by_group["Nutrient"], ["Phosphorus", "Nitrate"])

    def test_range_without_data(self):
        result = filter_location_measurements_by_timeframe(_station_with_ledger(), (2022, 2023), MAPPINGS)
        self.assertEqual(result.total_measurements, 0)
        self.assertEqual(result.totals_by_group, {})
        self.assertEqual(result.characteristics_by_group, {})

    def test_every_label_present_and_non_negative(self):
        result = filter_location_measurements_by_timeframe(_station_with_ledger(), (2019, 2019), MAPPINGS)
        self.assertEqual(set(result.totals_by_label), {"Nutrients", "Metals", OTHER_LABEL})
        self.assertTrue(all(count >= 0 for count in result.totals_by_label.values()))

    def test_no_timeframe_returns_station_unchanged(self):
        station = _station_with_ledger()
        self.assertIs(filter_location_measurements_by_timeframe(station, None, MAPPINGS), station)

    def test_input_station_is_not_modified(self):
        station = _station_with_ledger()
        filter_location_measurements_by_timeframe(station, (2020, 2020), MAPPINGS)
        self.assertEqual(station.total_measurements, 10)
        self.assertIsNone(station.timeframe)

    def test_accepts_year_range(self):
        result = filter_location_measurements_by_timeframe(
            _station_with_ledger(), YearRange(2020, 2021), MAPPINGS
        )
        self.assertEqual(result.total_measurements, 7)

    def test_refiltering_is_idempotent(self):
        once = filter_location_measurements_by_timeframe(_station_with_ledger(), (2019, 2020), MAPPINGS)
        twice = filter_location_measurements_by_timeframe(once, (2019, 2020), MAPPINGS)
        self.assertEqual(once, twice)


class TestLedgerHelpers(unittest.TestCase):

    def test_sort_years_is_numeric(self):
        ledger = {"2010": "b", "999": "a", "2001": "c"}
        self.assertEqual([year for year, _ in sort_years(ledger)], [999, 2001, 2010])

    def test_ledger_year_range(self):
        self.assertEqual(ledger_year_range(_station_with_ledger()), YearRange(2019, 2021))

    def test_empty_ledger_has_no_range(self):
        station = MonitoringLocation(site_id="S", org_id="O", provider_name="P", unique_id="S-P-O")
        self.assertIsNone(ledger_year_range(station))

    def test_summarize_ledger_matches_full_range(self):
        station = _station_with_ledger()
        summary = summarize_ledger(station, MAPPINGS)
        full = filter_location_measurements_by_timeframe(summary, (2019, 2021), MAPPINGS)

        self.assertIsNone(summary.timeframe)
        self.assertEqual(summary.total_measurements, full.total_measurements)
        self.assertEqual(summary.totals_by_label, full.totals_by_label)

    def test_summarize_empty_ledger(self):
        station = MonitoringLocation(
            site_id="S", org_id="O", provider_name="P", unique_id="S-P-O",
            total_measurements=7, totals_by_group={"Nutrient": 7},
        )
        summary = summarize_ledger(station, MAPPINGS)
        self.assertEqual(summary.total_measurements, 0)
        self.assertEqual(summary.totals_by_label, {"Nutrients": 0, "Metals": 0, OTHER_LABEL: 0})


if __name__ == "__main__":
    unittest.main()
