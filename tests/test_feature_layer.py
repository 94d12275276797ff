"""
Tests for components.feature_layer (in-memory layers and the map view handle).
"""
from __future__ import annotations

import unittest

from shapely.geometry import Point

from components.feature_layer import (
    ZOOM_0_SCALE,
    FeatureLayer,
    Graphic,
    MapView,
    build_features,
    parse_attributes,
    stringify_attributes,
)
from core.errors import EditConflict
from core.extent import WEB_MERCATOR_WKID
from core.models import MonitoringLocation


def _bounds(west, south, east, north) -> dict:
    return {"_southWest": {"lat": south, "lng": west}, "_northEast": {"lat": north, "lng": east}}


class TestAttributes(unittest.TestCase):

    def test_nested_values_round_trip_through_json(self):
        attributes = {"site_id": "S1", "totals_by_group": {"Nutrient": 3}, "timeframe": [2019, 2020]}
        flat = stringify_attributes(["totals_by_group", "timeframe"], attributes)

        self.assertEqual(flat["totals_by_group"], '{"Nutrient": 3}')
        self.assertEqual(flat["site_id"], "S1")
        self.assertEqual(parse_attributes(["totals_by_group", "timeframe"], flat), attributes)

    def test_build_features_from_records(self):
        station = MonitoringLocation(
            site_id="S1", org_id="ORG", provider_name="STORET", unique_id="S1-STORET-ORG",
            location_longitude=-77.0, location_latitude=39.0, totals_by_group={"Nutrient": 1},
        )
        missing = MonitoringLocation(site_id="S2", org_id="ORG", provider_name="STORET", unique_id="S2-STORET-ORG")

        features = build_features([station, missing])

        self.assertEqual(features[0].geometry, Point(-77.0, 39.0))
        self.assertIsInstance(features[0].attributes["totals_by_group"], str)
        self.assertIsNone(features[1].geometry)


class TestFeatureLayer(unittest.IsolatedAsyncioTestCase):

    async def test_apply_edits_assigns_object_ids(self):
        layer = FeatureLayer("layer")
        result = await layer.apply_edits(add_features=[Graphic(Point(0, 0), {"a": 1}), Graphic(Point(1, 1))])
        self.assertEqual(result.add_results, [1, 2])
        self.assertEqual(layer.feature_count, 2)

    async def test_unknown_delete_changes_nothing(self):
        layer = FeatureLayer("layer")
        await layer.apply_edits(add_features=[Graphic(Point(0, 0))])

        with self.assertRaises(EditConflict):
            await layer.apply_edits(
                add_features=[Graphic(Point(1, 1))],
                delete_features=[Graphic(None, {"OBJECTID": 99})],
            )
        self.assertEqual(layer.feature_count, 1)

    async def test_to_geodataframe(self):
        layer = FeatureLayer("layer")
        self.assertIsNone(layer.to_geodataframe())

        await layer.apply_edits(add_features=[Graphic(Point(-77, 39), {"name": "x"}), Graphic(None, {"name": "y"})])
        gdf = layer.to_geodataframe()

        self.assertEqual(len(gdf), 1)
        self.assertEqual(gdf.crs.to_epsg(), 4326)
        self.assertEqual(gdf.iloc[0]["name"], "x")


class TestMapView(unittest.TestCase):

    def test_not_ready_without_extent(self):
        self.assertFalse(MapView().ready)

    def test_watch_rejects_unknown_property(self):
        with self.assertRaises(ValueError):
            MapView().watch("rotation", lambda value: None)

    def test_update_from_bounds(self):
        view = MapView()
        events = []
        view.watch("stationary", events.append)

        changed = view.update_from_bounds(_bounds(-77.1, 38.8, -76.9, 39.0), 10)

        self.assertTrue(changed)
        self.assertTrue(view.ready)
        self.assertEqual(view.extent.wkid, WEB_MERCATOR_WKID)
        self.assertAlmostEqual(view.scale, ZOOM_0_SCALE / 1024)
        self.assertEqual(events, [False, True])

    def test_same_bounds_are_not_a_change(self):
        view = MapView()
        view.update_from_bounds(_bounds(-77.1, 38.8, -76.9, 39.0), 10)
        self.assertFalse(view.update_from_bounds(_bounds(-77.1, 38.8, -76.9, 39.0), 10))

    def test_malformed_bounds_are_ignored(self):
        view = MapView()
        self.assertFalse(view.update_from_bounds({"_southWest": {}}, 10))
        self.assertFalse(view.update_from_bounds(None, 10))
        self.assertFalse(view.ready)

    def test_settle_notifies_scale_watchers(self):
        view = MapView()
        scales = []
        view.watch("scale", scales.append, initial=True)
        view.settle(scale=500_000)
        self.assertEqual(scales, [None, 500_000])


if __name__ == "__main__":
    unittest.main()
