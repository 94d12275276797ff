"""
Monitoring Locations Queries
Fetch Water Quality Portal monitoring locations for an area of interest or the
visible map extent, and normalize them for the map layers and filters.
"""
from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional, Sequence, Union
from urllib.parse import quote

from loguru import logger
from shapely.geometry.base import BaseGeometry

from components.feature_layer import Graphic, MapView, build_features
from core.config import get_settings
from core.data_loader import CharacteristicGroupMapping
from core.extent import get_extent_bounding_box, get_geographic_extent_polygon, resolve_extent_filter
from core.fetch_state import FetchedDataStore, FetchState, FetchStatus, handle_fetch_error
from core.geometry import filter_features_within
from core.models import MonitoringLocation
from core.observable import Observable
from core.services import AbortSignal, fetch_check, parse_float, parse_int
from filters.characteristic_groups import parse_station_label_totals
from filters.dedup import filter_data
from analyses.monitoring_locations.period_of_record import (
    PeriodOfRecordData,
    add_annual_data,
    fetch_period_of_record,
)


LOCAL_KEY = "monitoringLocations"
SURROUNDING_KEY = "surroundingMonitoringLocations"
LAYER_ID = "monitoringLocationsLayer"

# Composite key identifying a station across datasets
DATA_KEYS = ["site_id", "org_id", "provider_name"]

MYWATERWAY_URL = "https://mywaterway.epa.gov"

BoundariesFilter = Union[str, BaseGeometry]


def _encode(value: Any) -> str:
    # same character set as JavaScript's encodeURIComponent
    return quote(str(value), safe="!~*'()")


def get_extent_filter(extent) -> Optional[str]:
    bbox = get_extent_bounding_box(extent)
    return f"bBox={bbox}" if bbox else None


# =============================================================================
# FETCH
# =============================================================================

async def fetch_monitoring_locations(
    boundaries_filter: BoundariesFilter,
    signal: Optional[AbortSignal] = None,
) -> FetchState:
    """
    Fetch monitoring locations as GeoJSON features.

    Args:
        boundaries_filter: A query string filter (e.g. "huc=020700100204" or
            "bBox=...") or a shapely polygon. A polygon is queried by its
            bounding box and then filtered to the points it contains.
        signal: Abort signal

    Returns:
        FetchState with the raw features on success, pending if aborted,
        failure otherwise
    """
    query_filter = boundaries_filter
    polygon = boundaries_filter if isinstance(boundaries_filter, BaseGeometry) else None
    if polygon is not None:
        query_filter = get_extent_filter(get_geographic_extent_polygon(polygon))
        if not query_filter:
            logger.warning("Area of interest has no usable extent")
            return FetchState(FetchStatus.SUCCESS, [])

    url = f"{get_settings().wqp_monitoring_location_url}search?mimeType=geojson&zip=no&{query_filter}"
    try:
        response = await fetch_check(url, signal)
    except Exception as e:
        return handle_fetch_error(e)

    features = []
    if isinstance(response, dict):
        features = response.get("features") or []
    if polygon is not None:
        features = filter_features_within(features, polygon)
    return FetchState(FetchStatus.SUCCESS, features)


# =============================================================================
# TRANSFORM
# =============================================================================

def transform_service_data(
    features: Sequence[Dict[str, Any]],
    mappings: Sequence[CharacteristicGroupMapping],
) -> List[MonitoringLocation]:
    """
    Normalize GeoJSON station features.

    Stations are sorted by result count, largest first, so smaller markers
    draw on top.
    """
    stations_sorted = sorted(
        features,
        key=lambda f: parse_int((f.get("properties") or {}).get("resultCount")),
        reverse=True,
    )

    stations = []
    for feature in stations_sorted:
        props = feature.get("properties") or {}
        coordinates = (feature.get("geometry") or {}).get("coordinates") or [None, None]

        site_id = props.get("MonitoringLocationIdentifier", "")
        org_id = props.get("OrganizationIdentifier", "")
        provider = props.get("ProviderName", "")
        url_partial = f"/monitoring-report/{provider}/{_encode(org_id)}/{_encode(site_id)}/"

        totals_by_group = {
            group: parse_int(count)
            for group, count in (props.get("characteristicGroupResultCount") or {}).items()
        }

        stations.append(MonitoringLocation(
            site_id=site_id,
            org_id=org_id,
            provider_name=provider,
            # a site id alone isn't universally unique
            unique_id=f"{site_id}-{provider}-{org_id}",
            location_longitude=parse_float(coordinates[0]),
            location_latitude=parse_float(coordinates[1] if len(coordinates) > 1 else None),
            location_name=props.get("MonitoringLocationName", ""),
            location_type=props.get("MonitoringLocationTypeName", ""),
            location_url=f"{MYWATERWAY_URL}{url_partial}",
            location_url_partial=url_partial,
            org_name=props.get("OrganizationFormalName", ""),
            county=props.get("CountyName", ""),
            state=props.get("StateName", ""),
            total_samples=parse_int(props.get("activityCount")),
            total_measurements=parse_int(props.get("resultCount")),
            totals_by_group=totals_by_group,
            totals_by_label=parse_station_label_totals(mappings, totals_by_group),
        ))
    return stations


async def fetch_and_transform_data(
    request,
    store: FetchedDataStore,
    key: str,
    mappings: Sequence[CharacteristicGroupMapping],
    data_to_exclude: Optional[Sequence[MonitoringLocation]] = None,
    is_current: Callable[[], bool] = lambda: True,
) -> Optional[List[MonitoringLocation]]:
    """
    Run a fetch coroutine and publish its result.

    Args:
        request: Awaitable returning a FetchState of raw features
        store: Fetched data store to dispatch into
        key: Dataset key
        mappings: Characteristic group mappings
        data_to_exclude: Stations already shown in another layer
        is_current: Returns False when a newer request has superseded this one;
            a superseded response is dropped without dispatching

    Returns:
        The dispatched stations, or None if nothing was dispatched
    """
    store.dispatch(FetchStatus.PENDING, key)

    response = await request
    if not is_current():
        logger.debug(f"Dropping stale {key} response")
        return None

    if response.status != FetchStatus.SUCCESS:
        store.dispatch(response.status, key)
        return None

    stations = transform_service_data(response.data, mappings)
    payload = filter_data(stations, data_to_exclude, DATA_KEYS) if data_to_exclude else stations
    store.dispatch(FetchStatus.SUCCESS, key, payload)
    return payload


# =============================================================================
# DATASET
# =============================================================================

class MonitoringLocationsDataset:
    """
    The enclosed and surrounding monitoring location datasets for one map.

    Example:
        dataset = MonitoringLocationsDataset(map_view, store, mappings)
        await dataset.update_local_data("huc=020700100204")
        await dataset.update_surrounding_data(signal)
    """

    local_key = LOCAL_KEY
    surrounding_key = SURROUNDING_KEY
    layer_id = LAYER_ID

    def __init__(
        self,
        map_view: MapView,
        store: FetchedDataStore,
        mappings: Sequence[CharacteristicGroupMapping],
        include_annual_data: bool = True,
    ):
        self.map_view = map_view
        self.store = store
        self.mappings = list(mappings)
        self.include_annual_data = include_annual_data
        self.local_data: List[MonitoringLocation] = []
        self.period_of_record: Observable[FetchState] = Observable(
            FetchState(FetchStatus.IDLE, PeriodOfRecordData())
        )
        self._extent_filter: Optional[str] = None
        self._local_request = 0

    @property
    def min_scale(self) -> float:
        return get_settings().monitoring_min_scale

    @staticmethod
    def build_features(stations: Sequence[MonitoringLocation]) -> List[Graphic]:
        return build_features(stations)

    async def update_local_data(
        self,
        local_filter: Optional[BoundariesFilter],
        signal: Optional[AbortSignal] = None,
    ) -> List[MonitoringLocation]:
        """
        Fetch the stations inside the area of interest, then their annual data.

        An empty filter publishes an empty dataset.
        """
        self._local_request += 1
        request_id = self._local_request
        if local_filter is None or (isinstance(local_filter, str) and not local_filter):
            self.local_data = []
            self.store.dispatch(FetchStatus.SUCCESS, self.local_key, [])
            self.exclude_local_from_surroundings()
            self.period_of_record.set(FetchState(FetchStatus.IDLE, PeriodOfRecordData()))
            return []

        data = await fetch_and_transform_data(
            fetch_monitoring_locations(local_filter, signal),
            self.store,
            self.local_key,
            self.mappings,
            is_current=lambda: self._local_request == request_id,
        )
        if data is None:
            return self.local_data

        self.local_data = data
        self.exclude_local_from_surroundings()
        if self.include_annual_data:
            await self.update_annual_data(signal)
        return self.local_data

    async def update_annual_data(self, signal: Optional[AbortSignal] = None) -> FetchState:
        """Fetch the period of record for the local stations and attach it to them."""
        stations = self.local_data
        if not stations:
            state = FetchState(FetchStatus.IDLE, PeriodOfRecordData())
            self.period_of_record.set(state)
            return state

        self.period_of_record.set(FetchState(FetchStatus.PENDING, PeriodOfRecordData()))
        state = await fetch_period_of_record([s.site_id for s in stations], self.mappings, signal)
        if stations is not self.local_data:
            logger.debug("Dropping stale period of record response")
            return state

        if state.ok:
            self.local_data = add_annual_data(stations, state.data.sites, self.mappings)
            self.store.dispatch(FetchStatus.SUCCESS, self.local_key, self.local_data)
        else:
            state = FetchState(state.status, PeriodOfRecordData())
        self.period_of_record.set(state)
        return state

    def reset_surroundings(self) -> None:
        """Forget the last surrounding extent so the next update fetches again."""
        self._extent_filter = None

    def exclude_local_from_surroundings(self) -> None:
        """
        Drop surrounding stations that the current local dataset encloses, and
        let the next surrounding update refetch against the new local data.
        """
        self.reset_surroundings()
        state = self.store.get(self.surrounding_key)
        if not state.ok or not state.data:
            return
        remaining = filter_data(state.data, self.local_data, DATA_KEYS)
        if len(remaining) != len(state.data):
            self.store.dispatch(FetchStatus.SUCCESS, self.surrounding_key, remaining)

    async def update_surrounding_data(self, signal: AbortSignal) -> None:
        """Fetch the stations in the visible extent that aren't already in the local dataset."""
        extent_filter = await resolve_extent_filter(self.map_view, param="bBox")
        # Could not create filter
        if not extent_filter:
            return
        # Same extent, no update necessary
        if extent_filter == self._extent_filter:
            return
        self._extent_filter = extent_filter

        data = await fetch_and_transform_data(
            fetch_monitoring_locations(extent_filter, signal),
            self.store,
            self.surrounding_key,
            self.mappings,
            data_to_exclude=self.local_data,
            is_current=lambda: self._extent_filter == extent_filter,
        )
        if data is None and self._extent_filter == extent_filter:
            # allow a retry of the same extent after an abort or failure
            self._extent_filter = None
