"""
Tests for analyses.usgs_sensors.queries (USGS current conditions).

Mocks requests to avoid network calls.
"""
from __future__ import annotations

import unittest
from unittest.mock import MagicMock, patch

from shapely.geometry import box

from analyses.usgs_sensors.queries import (
    LOCAL_KEY,
    SURROUNDING_KEY,
    UsgsSensorsDataset,
    celsius_to_fahrenheit,
    convert_measurement,
    fetch_and_transform_data,
    transform_service_data,
)
from components.feature_layer import MapView
from core.data_loader import UsgsStaParameter
from core.fetch_state import FetchedDataStore, FetchState, FetchStatus
from core.models import DailyObservation


SITE = "USGS-01646500"

STA_PARAMETERS = [
    UsgsStaParameter("00010", "Temperature, water, degrees Celsius", "primary", 3, "Water Temperature", "°F"),
    UsgsStaParameter("00060", "Discharge, cubic feet per second", "primary", 1, "Flow", "cfs"),
    UsgsStaParameter("00095", "Specific conductance", "secondary", 1, "Specific Conductance", "µS/cm"),
    UsgsStaParameter("99999", "Internal", "exclude", 0, "Internal", ""),
]
PARAMETER_CODES = {"00010": "Temperature, water, degrees Celsius", "00060": "Discharge"}
SITE_TYPES = {"ST": "Stream"}

LATEST = {"features": [
    {"properties": {"monitoring_location_id": SITE, "parameter_code": "00010",
                    "time": "2024-06-01T12:00:00Z", "value": "20", "unit_of_measure": "degC"}},
    {"properties": {"monitoring_location_id": SITE, "parameter_code": "00060",
                    "time": "2024-06-01T12:00:00Z", "value": "0", "unit_of_measure": "ft^3/s"}},
    {"properties": {"monitoring_location_id": SITE, "parameter_code": "99999",
                    "time": "2024-06-01T12:00:00Z", "value": "1", "unit_of_measure": ""}},
]}
LOCATIONS = {"features": [{
    "geometry": {"type": "Point", "coordinates": [-77.13, 38.95]},
    "properties": {"agency_code": "USGS", "monitoring_location_number": "01646500",
                   "monitoring_location_name": "Potomac River near Wash, DC", "site_type": None,
                   "site_type_code": "ST"},
}]}
DAILY = {
    "allParamsMean": {"features": [
        {"properties": {"monitoring_location_id": SITE, "parameter_code": "00010",
                        "time": "2024-05-31", "value": "10"}},
    ]},
    "precipitationSum": {"features": []},
}
PRECIPITATION = {"features": [
    {"properties": {"monitoring_location_id": SITE, "value": "0.25", "time": "2024-05-31"}},
]}


def _response(json_data, status_code: int = 200) -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = json_data
    response.text = ""
    return response


def _post_router(url, params=None, json=None, headers=None, timeout=None):
    if "monitoring-locations" in url:
        return _response(LOCATIONS)
    if "time=P1D" in url:
        return _response(PRECIPITATION)
    if "statistic_id=00003" in url:
        return _response(DAILY["allParamsMean"])
    return _response(DAILY["precipitationSum"])


class TestConversions(unittest.TestCase):

    def test_celsius_to_fahrenheit(self):
        self.assertEqual(celsius_to_fahrenheit(20), 68.0)
        self.assertEqual(celsius_to_fahrenheit(0), 32.0)
        self.assertEqual(celsius_to_fahrenheit(21.3), 70.3)

    def test_only_celsius_parameters_convert(self):
        self.assertEqual(convert_measurement("00010", "20"), 68.0)
        self.assertEqual(convert_measurement("00060", "20"), 20.0)

    def test_zero_is_a_measurement(self):
        self.assertEqual(convert_measurement("00060", "0"), 0.0)
        self.assertIsNone(convert_measurement("00060", None))


class TestTransform(unittest.TestCase):

    def test_combines_the_four_responses(self):
        gages = transform_service_data(
            LOCATIONS, DAILY, PRECIPITATION, LATEST, PARAMETER_CODES, SITE_TYPES, STA_PARAMETERS
        )

        self.assertEqual(len(gages), 1)
        gage = gages[0]
        self.assertEqual(gage.unique_id, "01646500-USGS")
        self.assertEqual(gage.location_type, "Stream")
        self.assertEqual(gage.location_url, f"https://waterdata.usgs.gov/monitoring-location/{SITE}")
        self.assertEqual(gage.location_longitude, -77.13)

        primary = {m.parameter_code: m for m in gage.streamgage_measurements["primary"]}
        self.assertEqual(sorted(primary), ["00010", "00045", "00060"])
        self.assertEqual(primary["00010"].measurement, 68.0)
        self.assertEqual(primary["00010"].daily_averages, [DailyObservation(50.0, "2024-05-31")])
        self.assertEqual(primary["00060"].measurement, 0.0)
        self.assertEqual(primary["00045"].measurement, 0.25)
        self.assertEqual(gage.streamgage_measurements["secondary"], [])


class TestFetchAndTransform(unittest.IsolatedAsyncioTestCase):

    @patch("core.services.requests.post", side_effect=_post_router)
    @patch("core.services.requests.get")
    async def test_success(self, mock_get, mock_post):
        mock_get.return_value = _response(LATEST)
        store = FetchedDataStore()

        gages = await fetch_and_transform_data(
            "bbox=-77.5,38.5,-76.5,39.5", store, LOCAL_KEY, PARAMETER_CODES, SITE_TYPES, STA_PARAMETERS,
            huc12="020700100204",
        )

        self.assertEqual(len(gages), 1)
        self.assertEqual(store.get(LOCAL_KEY).status, FetchStatus.SUCCESS)
        self.assertIn("&bbox=-77.5,38.5,-76.5,39.5", mock_get.call_args.args[0])
        location_calls = [c for c in mock_post.call_args_list if "monitoring-locations" in c.args[0]]
        self.assertIn("hydrologic_unit_code=020700100204", location_calls[0].args[0])
        self.assertEqual(location_calls[0].kwargs["json"]["args"][1], ["01646500"])

    @patch("core.services.requests.get")
    async def test_no_sensors_is_empty_success(self, mock_get):
        mock_get.return_value = _response({"features": []})
        store = FetchedDataStore()

        gages = await fetch_and_transform_data(
            "bbox=0,0,1,1", store, LOCAL_KEY, PARAMETER_CODES, SITE_TYPES, STA_PARAMETERS
        )

        self.assertEqual(gages, [])
        self.assertEqual(store.get(LOCAL_KEY), FetchState(FetchStatus.SUCCESS, []))

    @patch("core.services.requests.post")
    @patch("core.services.requests.get")
    async def test_any_failed_request_fails_the_dataset(self, mock_get, mock_post):
        mock_get.return_value = _response(LATEST)
        mock_post.return_value = _response(None, status_code=500)
        store = FetchedDataStore()

        gages = await fetch_and_transform_data(
            "bbox=0,0,1,1", store, SURROUNDING_KEY, PARAMETER_CODES, SITE_TYPES, STA_PARAMETERS
        )

        self.assertIsNone(gages)
        self.assertEqual(store.get(SURROUNDING_KEY).status, FetchStatus.FAILURE)


class TestUsgsSensorsDataset(unittest.IsolatedAsyncioTestCase):

    def _dataset(self, store: FetchedDataStore) -> UsgsSensorsDataset:
        return UsgsSensorsDataset(MapView(), store, PARAMETER_CODES, SITE_TYPES, STA_PARAMETERS)

    async def test_no_watershed_publishes_empty(self):
        store = FetchedDataStore()
        self.assertEqual(await self._dataset(store).update_local_data(None), [])
        self.assertEqual(store.get(LOCAL_KEY), FetchState(FetchStatus.SUCCESS, []))

    async def test_oversized_watershed_publishes_empty(self):
        store = FetchedDataStore()
        with patch("core.services.requests.get") as mock_get:
            result = await self._dataset(store).update_local_data("020700100204", box(-90, 30, -80, 40))
        self.assertEqual(result, [])
        mock_get.assert_not_called()

    @patch("core.services.requests.post", side_effect=_post_router)
    @patch("core.services.requests.get")
    async def test_local_data_uses_watershed_bounds(self, mock_get, mock_post):
        mock_get.return_value = _response(LATEST)
        store = FetchedDataStore()
        dataset = self._dataset(store)

        gages = await dataset.update_local_data("020700100204", box(-77.5, 38.5, -76.5, 39.5))

        self.assertEqual(dataset.local_data, gages)
        self.assertIn("&bbox=-77.5,38.5,-76.5,39.5", mock_get.call_args.args[0])


if __name__ == "__main__":
    unittest.main()
