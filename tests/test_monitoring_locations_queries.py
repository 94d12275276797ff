"""
Tests for analyses.monitoring_locations.queries (Water Quality Portal stations).

Mocks requests to avoid network calls.
"""
from __future__ import annotations

import unittest
from unittest.mock import MagicMock, patch

from shapely.geometry import box

from analyses.monitoring_locations.queries import (
    LAYER_ID,
    LOCAL_KEY,
    SURROUNDING_KEY,
    MonitoringLocationsDataset,
    fetch_and_transform_data,
    fetch_monitoring_locations,
    transform_service_data,
)
from components.boundaries_toggle import BoundariesToggleController
from components.feature_layer import MapView
from core.config import get_settings
from core.data_loader import CharacteristicGroupMapping
from core.extent import GEOGRAPHIC_WKID, Extent, geographic_to_web_mercator
from core.fetch_state import FetchedDataStore, FetchState, FetchStatus
from filters.characteristic_groups import OTHER_LABEL


MAPPINGS = [CharacteristicGroupMapping("Nutrients", ("Nutrient",))]

PERIOD_OF_RECORD_CSV = (
    "Provider,MonitoringLocationIdentifier,YearSummarized,CharacteristicType,"
    "CharacteristicName,ActivityCount,ResultCount,OrganizationIdentifier\n"
    "STORET,S1,2019,Nutrient,Nitrate,2,3,ORG\n"
    "STORET,S1,2021,Nutrient,Nitrate,1,2,ORG\n"
)


def _feature(site_id: str, lon: float, lat: float, result_count: int, org: str = "ORG", groups=None) -> dict:
    return {
        "type": "Feature",
        "geometry": {"type": "Point", "coordinates": [lon, lat]},
        "properties": {
            "ProviderName": "STORET",
            "OrganizationIdentifier": org,
            "OrganizationFormalName": "Example Org",
            "MonitoringLocationIdentifier": site_id,
            "MonitoringLocationName": f"Station {site_id}",
            "MonitoringLocationTypeName": "River/Stream",
            "resultCount": str(result_count),
            "activityCount": "4",
            "CountyName": "Prince George's",
            "StateName": "Maryland",
            "characteristicGroupResultCount": groups if groups is not None else {"Nutrient": result_count},
        },
    }


def _response(json_data=None, text: str = "") -> MagicMock:
    response = MagicMock()
    response.status_code = 200
    response.json.return_value = json_data
    response.text = text
    return response


def _ready_view() -> MapView:
    geographic = Extent(-77.5, 38.5, -76.5, 39.5, wkid=GEOGRAPHIC_WKID)
    return MapView(extent=geographic_to_web_mercator(geographic), scale=100_000)


async def _resolved(state: FetchState) -> FetchState:
    return state


class TestTransform(unittest.TestCase):

    def test_sorted_by_result_count_and_normalized(self):
        stations = transform_service_data(
            [_feature("S1", -77, 39, 5), _feature("S2", -76.9, 39.1, 50, groups={"Nutrient": 30, "Toxicity": 20})],
            MAPPINGS,
        )

        self.assertEqual([s.site_id for s in stations], ["S2", "S1"])
        s2 = stations[0]
        self.assertEqual(s2.unique_id, "S2-STORET-ORG")
        self.assertEqual(s2.total_measurements, 50)
        self.assertEqual(s2.total_samples, 4)
        self.assertEqual(s2.location_longitude, -76.9)
        self.assertEqual(s2.totals_by_label, {"Nutrients": 30, OTHER_LABEL: 20})

    def test_report_url_is_encoded(self):
        station = transform_service_data([_feature("USGS-01 A", -77, 39, 1, org="MD DNR")], MAPPINGS)[0]
        self.assertEqual(station.location_url_partial, "/monitoring-report/STORET/MD%20DNR/USGS-01%20A/")
        self.assertTrue(station.location_url.endswith(station.location_url_partial))


class TestFetchMonitoringLocations(unittest.IsolatedAsyncioTestCase):

    @patch("core.services.requests.get")
    async def test_string_filter(self, mock_get):
        mock_get.return_value = _response({"features": [_feature("S1", -77, 39, 1)]})

        state = await fetch_monitoring_locations("huc=020700100204")

        self.assertEqual(state.status, FetchStatus.SUCCESS)
        self.assertEqual(len(state.data), 1)
        self.assertEqual(
            mock_get.call_args.args[0],
            f"{get_settings().wqp_monitoring_location_url}search?mimeType=geojson&zip=no&huc=020700100204",
        )

    @patch("core.services.requests.get")
    async def test_polygon_filter_keeps_contained_points(self, mock_get):
        mock_get.return_value = _response({"features": [
            _feature("inside", -76.95, 38.95, 1),
            _feature("outside", -78.0, 38.95, 1),
        ]})

        state = await fetch_monitoring_locations(box(-77.0, 38.9, -76.9, 39.0))

        self.assertIn("bBox=-77,38.9,-76.9,39", mock_get.call_args.args[0])
        self.assertEqual([f["properties"]["MonitoringLocationIdentifier"] for f in state.data], ["inside"])

    @patch("core.services.requests.get")
    async def test_service_error_is_failure(self, mock_get):
        mock_get.return_value = MagicMock(status_code=500, text="error")
        state = await fetch_monitoring_locations("huc=020700100204")
        self.assertEqual(state.status, FetchStatus.FAILURE)


class TestFetchAndTransform(unittest.IsolatedAsyncioTestCase):

    async def test_dispatches_pending_then_success(self):
        store = FetchedDataStore()
        statuses = []
        store.subscribe(LOCAL_KEY, lambda state: statuses.append(state.status))

        data = await fetch_and_transform_data(
            _resolved(FetchState(FetchStatus.SUCCESS, [_feature("S1", -77, 39, 1)])),
            store, LOCAL_KEY, MAPPINGS,
        )

        self.assertEqual(statuses, [FetchStatus.PENDING, FetchStatus.SUCCESS])
        self.assertEqual(store.get(LOCAL_KEY).data, data)

    async def test_excludes_enclosed_stations(self):
        store = FetchedDataStore()
        enclosed = transform_service_data([_feature("S1", -77, 39, 1)], MAPPINGS)

        data = await fetch_and_transform_data(
            _resolved(FetchState(FetchStatus.SUCCESS, [_feature("S1", -77, 39, 1), _feature("S2", -77, 39, 1)])),
            store, SURROUNDING_KEY, MAPPINGS, data_to_exclude=enclosed,
        )

        self.assertEqual([s.site_id for s in data], ["S2"])

    async def test_stale_response_is_dropped(self):
        store = FetchedDataStore()
        data = await fetch_and_transform_data(
            _resolved(FetchState(FetchStatus.SUCCESS, [_feature("S1", -77, 39, 1)])),
            store, SURROUNDING_KEY, MAPPINGS, is_current=lambda: False,
        )
        self.assertIsNone(data)
        self.assertEqual(store.get(SURROUNDING_KEY).status, FetchStatus.PENDING)

    async def test_failure_is_dispatched(self):
        store = FetchedDataStore()
        await fetch_and_transform_data(_resolved(FetchState(FetchStatus.FAILURE)), store, LOCAL_KEY, MAPPINGS)
        self.assertEqual(store.get(LOCAL_KEY).status, FetchStatus.FAILURE)


class TestMonitoringLocationsDataset(unittest.IsolatedAsyncioTestCase):

    @patch("core.services.requests.post")
    @patch("core.services.requests.get")
    async def test_local_data_with_annual_records(self, mock_get, mock_post):
        mock_get.return_value = _response({"features": [_feature("S1", -77, 39, 5)]})
        mock_post.return_value = _response(text=PERIOD_OF_RECORD_CSV)
        store = FetchedDataStore()
        dataset = MonitoringLocationsDataset(MapView(), store, MAPPINGS)

        stations = await dataset.update_local_data("huc=020700100204")

        self.assertEqual(sorted(stations[0].data_by_year), ["2019", "2021"])
        self.assertEqual(stations[0].total_measurements, 5)
        self.assertEqual(store.get(LOCAL_KEY).data, stations)

        period = dataset.period_of_record.value
        self.assertEqual(period.status, FetchStatus.SUCCESS)
        self.assertEqual(period.data.year_range.as_tuple(), (2019, 2021))
        self.assertEqual(mock_post.call_args.kwargs["json"]["siteid"], ["S1"])

    async def test_empty_filter_publishes_empty_dataset(self):
        store = FetchedDataStore()
        dataset = MonitoringLocationsDataset(MapView(), store, MAPPINGS)

        self.assertEqual(await dataset.update_local_data(None), [])
        self.assertEqual(store.get(LOCAL_KEY), FetchState(FetchStatus.SUCCESS, []))
        self.assertEqual(dataset.period_of_record.value.status, FetchStatus.IDLE)

    async def test_surroundings_skipped_until_view_is_ready(self):
        store = FetchedDataStore()
        dataset = MonitoringLocationsDataset(MapView(), store, MAPPINGS)
        with patch("core.services.requests.get") as mock_get:
            await dataset.update_surrounding_data(None)
        mock_get.assert_not_called()
        self.assertEqual(store.get(SURROUNDING_KEY).status, FetchStatus.IDLE)

    @patch("core.services.requests.get")
    async def test_surroundings_fetched_once_per_extent(self, mock_get):
        mock_get.return_value = _response({"features": [_feature("S1", -77, 39, 1), _feature("S2", -77, 39, 1)]})
        store = FetchedDataStore()
        dataset = MonitoringLocationsDataset(_ready_view(), store, MAPPINGS, include_annual_data=False)
        dataset.local_data = transform_service_data([_feature("S1", -77, 39, 1)], MAPPINGS)

        await dataset.update_surrounding_data(None)
        await dataset.update_surrounding_data(None)

        self.assertEqual(mock_get.call_count, 1)
        self.assertIn("&bBox=", mock_get.call_args.args[0])
        self.assertEqual([s.site_id for s in store.get(SURROUNDING_KEY).data], ["S2"])

    @patch("core.services.requests.get")
    async def test_failed_extent_can_be_retried(self, mock_get):
        mock_get.side_effect = [
            MagicMock(status_code=500, text="error"),
            _response({"features": []}),
        ]
        store = FetchedDataStore()
        dataset = MonitoringLocationsDataset(_ready_view(), store, MAPPINGS)

        await dataset.update_surrounding_data(None)
        self.assertEqual(store.get(SURROUNDING_KEY).status, FetchStatus.FAILURE)

        await dataset.update_surrounding_data(None)
        self.assertEqual(store.get(SURROUNDING_KEY), FetchState(FetchStatus.SUCCESS, []))


def _site_ids(layer) -> list:
    return sorted(attrs["site_id"] for attrs in layer.attributes())


@patch("core.services.requests.get")
class TestDatasetWithController(unittest.IsolatedAsyncioTestCase):
    """The real dataset driven through the layer controller's lifecycle."""

    def setUp(self):
        self.store = FetchedDataStore()
        self.dataset = MonitoringLocationsDataset(_ready_view(), self.store, MAPPINGS, include_annual_data=False)
        self.controller = BoundariesToggleController(
            LAYER_ID,
            self.dataset.map_view,
            self.store,
            LOCAL_KEY,
            SURROUNDING_KEY,
            self.dataset.build_features,
            self.dataset.update_surrounding_data,
            min_scale=self.dataset.min_scale,
            reset_surrounding_data=self.dataset.reset_surroundings,
        )

    async def test_remount_fetches_surroundings_again(self, mock_get):
        mock_get.return_value = _response({"features": [_feature("S9", -77, 39, 1)]})

        self.controller.mount()
        self.controller.toggle_surroundings(True)
        await self.controller.wait_idle()
        self.assertEqual(mock_get.call_count, 1)
        self.assertEqual(self.controller.surrounding_layer.feature_count, 1)

        await self.controller.unmount()
        self.assertEqual(self.controller.surrounding_layer.feature_count, 0)

        self.controller.mount()
        self.controller.toggle_surroundings(True)
        await self.controller.wait_idle()

        self.assertEqual(mock_get.call_count, 2)
        self.assertEqual(self.store.get(SURROUNDING_KEY).status, FetchStatus.SUCCESS)
        self.assertEqual(_site_ids(self.controller.surrounding_layer), ["S9"])

    async def test_new_area_never_duplicates_surrounding_stations(self, mock_get):
        mock_get.side_effect = [
            _response({"features": []}),
            _response({"features": [_feature("S9", -77, 39, 1)]}),
            _response({"features": [_feature("S9", -77, 39, 1)]}),
        ]
        self.controller.mount()
        await self.dataset.update_local_data("huc=020700100204")
        self.controller.toggle_surroundings(True)
        await self.controller.wait_idle()
        self.assertEqual(_site_ids(self.controller.surrounding_layer), ["S9"])

        await self.dataset.update_local_data("huc=020700100205")
        await self.controller.wait_idle()

        self.assertEqual(_site_ids(self.controller.enclosed_layer), ["S9"])
        self.assertEqual(_site_ids(self.controller.surrounding_layer), [])

    async def test_new_area_refetches_surroundings_at_same_extent(self, mock_get):
        mock_get.side_effect = [
            _response({"features": [_feature("S9", -77, 39, 1)]}),
            _response({"features": [_feature("S1", -77, 39, 1)]}),
            _response({"features": [_feature("S1", -77, 39, 1), _feature("S9", -77, 39, 1)]}),
        ]
        self.controller.mount()
        self.controller.toggle_surroundings(True)
        await self.controller.wait_idle()

        await self.dataset.update_local_data("huc=020700100205")
        self.controller.on_stationary()
        await self.controller.wait_idle()

        self.assertEqual(mock_get.call_count, 3)
        self.assertEqual(_site_ids(self.controller.enclosed_layer), ["S1"])
        self.assertEqual(_site_ids(self.controller.surrounding_layer), ["S9"])


if __name__ == "__main__":
    unittest.main()
