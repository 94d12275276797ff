"""
In-memory feature layers and map view handle.
Layers hold point graphics with flat attributes; the map view publishes its
extent, scale and stationary state so controllers can react to navigation.
"""
from __future__ import annotations

import asyncio
import dataclasses
import json
import math
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

import geopandas as gpd
from shapely.geometry import Point
from shapely.geometry.base import BaseGeometry

from core.errors import EditConflict
from core.extent import GEOGRAPHIC_WKID, Extent, geographic_to_web_mercator
from core.observable import Observable, Subscription


# Attributes holding nested structures; layers only store flat values
COMPLEX_PROPS = [
    "characteristics_by_group",
    "data_by_year",
    "totals_by_characteristic",
    "totals_by_group",
    "totals_by_label",
    "timeframe",
    "streamgage_measurements",
]

# Scale of zoom level 0 in Web Mercator tiling
ZOOM_0_SCALE = 591_657_527.591555
MAX_MERCATOR_LATITUDE = 85.05112878


def _clamp_latitude(lat: float) -> float:
    return max(-MAX_MERCATOR_LATITUDE, min(MAX_MERCATOR_LATITUDE, lat))


@dataclass
class Graphic:
    """A geometry plus a flat attribute dictionary."""
    geometry: Optional[BaseGeometry]
    attributes: Dict[str, Any] = field(default_factory=dict)


def stringify_attributes(complex_props: Iterable[str], attributes: Dict[str, Any]) -> Dict[str, Any]:
    """Copy of attributes with nested properties serialized to JSON strings."""
    stringified = dict(attributes)
    for prop in complex_props:
        if prop not in attributes:
            continue
        try:
            stringified[prop] = json.dumps(attributes[prop])
        except (TypeError, ValueError):
            stringified[prop] = attributes[prop]
    return stringified


def parse_attributes(complex_props: Iterable[str], attributes: Dict[str, Any]) -> Dict[str, Any]:
    """Inverse of stringify_attributes."""
    parsed = dict(attributes)
    for prop in complex_props:
        value = attributes.get(prop)
        if isinstance(value, str):
            parsed[prop] = json.loads(value)
    return parsed


def build_features(records: Sequence[Any], complex_props: Iterable[str] = COMPLEX_PROPS) -> List[Graphic]:
    """
    Convert normalized records (dataclasses or dicts) to point graphics.

    Records without coordinates get no geometry.
    """
    complex_props = list(complex_props)
    features = []
    for record in records:
        attributes = dataclasses.asdict(record) if dataclasses.is_dataclass(record) else dict(record)
        lon = attributes.get("location_longitude")
        lat = attributes.get("location_latitude")
        geometry = Point(lon, lat) if lon is not None and lat is not None else None
        features.append(Graphic(geometry, stringify_attributes(complex_props, attributes)))
    return features


@dataclass
class EditsResult:
    add_results: List[int] = field(default_factory=list)
    delete_results: List[int] = field(default_factory=list)


class FeatureLayer:
    """
    Client-side feature layer.

    Every graphic gets an OBJECTID on add. apply_edits() is atomic: an edit
    that references an unknown OBJECTID changes nothing. After each edit the
    layer view is briefly "updating" until the event loop redraws it.
    """

    def __init__(self, layer_id: str, title: str = "", visible: bool = True):
        self.id = layer_id
        self.title = title or layer_id
        self.visible = visible
        self.updating: Observable[bool] = Observable(False)
        self._features: Dict[int, Graphic] = {}
        self._next_oid = 1

    def __repr__(self) -> str:
        return f"FeatureLayer({self.id!r}, features={len(self._features)})"

    async def query_features(self) -> List[Graphic]:
        """Current features, in insertion order."""
        return list(self._features.values())

    async def apply_edits(
        self,
        add_features: Sequence[Graphic] = (),
        delete_features: Sequence[Graphic] = (),
    ) -> EditsResult:
        """
        Add and delete features in one operation.

        Raises:
            EditConflict: If a feature to delete is not in the layer
        """
        delete_oids = []
        for feature in delete_features:
            oid = feature.attributes.get("OBJECTID")
            if oid not in self._features:
                raise EditConflict(f"Layer {self.id} has no feature with OBJECTID {oid}")
            delete_oids.append(oid)

        for oid in delete_oids:
            del self._features[oid]

        added = []
        for feature in add_features:
            oid = self._next_oid
            self._next_oid += 1
            attributes = dict(feature.attributes)
            attributes["OBJECTID"] = oid
            self._features[oid] = Graphic(feature.geometry, attributes)
            added.append(oid)

        self.updating.set(True)
        asyncio.get_running_loop().call_soon(self.updating.set, False)
        return EditsResult(add_results=added, delete_results=delete_oids)

    @property
    def feature_count(self) -> int:
        return len(self._features)

    def attributes(self, complex_props: Iterable[str] = COMPLEX_PROPS) -> List[Dict[str, Any]]:
        """Parsed attributes of every feature."""
        complex_props = list(complex_props)
        return [parse_attributes(complex_props, f.attributes) for f in self._features.values()]

    def to_geodataframe(self) -> Optional[gpd.GeoDataFrame]:
        """Features as a GeoDataFrame in EPSG:4326, or None when the layer is empty."""
        features = [f for f in self._features.values() if f.geometry is not None]
        if not features:
            return None
        return gpd.GeoDataFrame(
            [f.attributes for f in features],
            geometry=[f.geometry for f in features],
            crs="EPSG:4326",
        )


class MapView:
    """
    Map view handle.

    Publishes extent (Web Mercator), scale and stationary state. A UI binding
    calls begin_moving() when navigation starts and settle() once it stops.
    """

    def __init__(self, extent: Optional[Extent] = None, scale: Optional[float] = None):
        self._extent: Observable[Optional[Extent]] = Observable(extent)
        self._scale: Observable[Optional[float]] = Observable(scale)
        self._stationary: Observable[bool] = Observable(True)
        self.layers: List[FeatureLayer] = []

    @property
    def ready(self) -> bool:
        return self._extent.value is not None

    @property
    def extent(self) -> Optional[Extent]:
        return self._extent.value

    @property
    def scale(self) -> Optional[float]:
        return self._scale.value

    @property
    def stationary(self) -> bool:
        return bool(self._stationary.value)

    def watch(self, prop: str, callback: Callable[[Any], None], initial: bool = False) -> Subscription:
        """
        Subscribe to "extent", "scale" or "stationary".

        Raises:
            ValueError: For any other property name
        """
        observables = {"extent": self._extent, "scale": self._scale, "stationary": self._stationary}
        if prop not in observables:
            raise ValueError(f"Cannot watch map view property: {prop}")
        return observables[prop].subscribe(callback, initial=initial)

    def add(self, layer: FeatureLayer) -> None:
        if layer not in self.layers:
            self.layers.append(layer)

    def remove(self, layer: FeatureLayer) -> None:
        if layer in self.layers:
            self.layers.remove(layer)

    async def when_stationary(self) -> None:
        await self._stationary.when_once(bool)

    async def when_layer_view_updated(self, layer: FeatureLayer) -> None:
        """Wait until the layer has finished redrawing."""
        await layer.updating.when_once(lambda updating: not updating)

    def begin_moving(self) -> None:
        self._stationary.set(False)

    def settle(self, extent: Optional[Extent] = None, scale: Optional[float] = None) -> None:
        """Finish navigation at a new extent and/or scale."""
        if extent is not None:
            self._extent.set(extent)
        if scale is not None:
            self._scale.set(scale)
        self._stationary.set(True)

    def update_from_bounds(self, bounds: Optional[Dict[str, Any]], zoom: Optional[float]) -> bool:
        """
        Apply Leaflet-style bounds ({"_southWest": {"lat", "lng"}, "_northEast": {...}})
        and a zoom level, as returned by streamlit_folium.

        Returns:
            True if the extent or scale changed
        """
        if not bounds or zoom is None:
            return False
        try:
            south_west = bounds["_southWest"]
            north_east = bounds["_northEast"]
            geographic = Extent(
                float(south_west["lng"]),
                _clamp_latitude(float(south_west["lat"])),
                float(north_east["lng"]),
                _clamp_latitude(float(north_east["lat"])),
                wkid=GEOGRAPHIC_WKID,
            )
        except (KeyError, TypeError, ValueError):
            return False
        if not all(math.isfinite(v) for v in dataclasses.astuple(geographic)[:4]):
            return False

        extent = geographic_to_web_mercator(geographic)
        scale = ZOOM_0_SCALE / (2 ** zoom)
        if extent == self.extent and scale == self.scale:
            return False

        self.begin_moving()
        self.settle(extent, scale)
        return True
