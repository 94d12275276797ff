"""
USGS Sensors Queries
Fetch current-conditions streamgages from the USGS Water Data OGC API:
latest continuous values for an extent, then the matching monitoring
locations, daily values and precipitation for those sites.
"""
from __future__ import annotations

import asyncio
import math
from typing import Any, Callable, Dict, List, Optional, Sequence

from loguru import logger

from components.feature_layer import Graphic, MapView, build_features
from core.config import get_settings
from core.data_loader import UsgsStaParameter
from core.extent import get_extent_bounding_box, get_geographic_extent_polygon, resolve_extent_filter
from core.fetch_state import FetchedDataStore, FetchState, FetchStatus, handle_fetch_error
from core.models import DailyObservation, StreamgageMeasurement, UsgsStreamgage
from core.services import AbortSignal, cql_in_filter, fetch_check, fetch_post, parse_float
from filters.dedup import filter_data


LOCAL_KEY = "usgsStreamgages"
SURROUNDING_KEY = "surroundingUsgsStreamgages"
LAYER_ID = "usgsStreamgagesLayer"

DATA_KEYS = ["org_id", "site_id"]

# Parameters the service reports in Celsius
CELSIUS_PARAMETER_CODES = ("00010", "00020", "85583")

# https://help.waterdata.usgs.gov/stat_code
MEAN_VALUES = "00003"
SUM_VALUES = "00006"
# Precipitation, total, inches
PRECIPITATION = "00045"

USGS_LOCATION_URL = "https://waterdata.usgs.gov/monitoring-location"


def celsius_to_fahrenheit(value: float) -> float:
    """Convert and round half up to one decimal place."""
    return math.floor((value * 9 / 5 + 32) * 10 + 0.5) / 10


def convert_measurement(parameter_code: str, value: Any) -> Optional[float]:
    """Parse a measurement, converting Celsius parameters to Fahrenheit."""
    measurement = parse_float(value)
    if measurement is not None and parameter_code in CELSIUS_PARAMETER_CODES:
        measurement = celsius_to_fahrenheit(measurement)
    return measurement


# =============================================================================
# FETCH
# =============================================================================

async def fetch_latest_continuous(boundaries_filter: str, signal: Optional[AbortSignal] = None) -> FetchState:
    url = (
        f"{get_settings().usgs_latest_continuous_url}"
        "?f=json&limit=10000&sortby=time&time=P7D&skipGeometry=true"
        "&properties=monitoring_location_id,parameter_code,time,value,unit_of_measure"
        f"&{boundaries_filter}"
    )
    try:
        return FetchState(FetchStatus.SUCCESS, await fetch_check(url, signal))
    except Exception as e:
        return handle_fetch_error(e)


async def fetch_monitoring_locations(
    monitoring_locations: Sequence[str],
    signal: Optional[AbortSignal] = None,
    huc12: Optional[str] = None,
) -> FetchState:
    url = (
        f"{get_settings().usgs_monitoring_locations_url}"
        "?f=json&limit=10000"
        "&properties=agency_code,monitoring_location_number,monitoring_location_name,site_type,site_type_code"
    )
    if huc12:
        url += f"&hydrologic_unit_code={huc12}"
    numbers = [location.replace("USGS-", "") for location in monitoring_locations]
    try:
        data = await fetch_post(url, cql_in_filter("monitoring_location_number", numbers), signal)
    except Exception as e:
        return handle_fetch_error(e)
    return FetchState(FetchStatus.SUCCESS, data)


async def fetch_daily(monitoring_locations: Sequence[str], signal: Optional[AbortSignal] = None) -> FetchState:
    """Seven days of daily means for every parameter, plus daily precipitation sums."""
    url = (
        f"{get_settings().usgs_daily_url}"
        "?f=json&limit=10000&time=P7D&skipGeometry=true&sortby=time"
        "&properties=monitoring_location_id,parameter_code,time,value"
    )
    body = cql_in_filter("monitoring_location_id", monitoring_locations)
    try:
        all_params_mean, precipitation_sum = await asyncio.gather(
            fetch_post(f"{url}&statistic_id={MEAN_VALUES}", body, signal),
            fetch_post(f"{url}&statistic_id={SUM_VALUES}&parameter_code={PRECIPITATION}", body, signal),
        )
    except Exception as e:
        return handle_fetch_error(e)
    return FetchState(FetchStatus.SUCCESS, {
        "allParamsMean": all_params_mean,
        "precipitationSum": precipitation_sum,
    })


async def fetch_precipitation(monitoring_locations: Sequence[str], signal: Optional[AbortSignal] = None) -> FetchState:
    """Yesterday's total precipitation."""
    url = (
        f"{get_settings().usgs_daily_url}"
        "?f=json&limit=10000&time=P1D&sortby=time"
        f"&statistic_id={SUM_VALUES}&parameter_code={PRECIPITATION}"
        "&skipGeometry=true&properties=monitoring_location_id,parameter_code,time,value"
    )
    try:
        data = await fetch_post(url, cql_in_filter("monitoring_location_id", monitoring_locations), signal)
    except Exception as e:
        return handle_fetch_error(e)
    return FetchState(FetchStatus.SUCCESS, data)


# =============================================================================
# TRANSFORM
# =============================================================================

def _features(data: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
    if not isinstance(data, dict):
        return []
    return data.get("features") or []


def transform_service_data(
    monitoring_locations: Dict[str, Any],
    daily_averages: Dict[str, Any],
    precipitation: Dict[str, Any],
    latest_continuous: Dict[str, Any],
    parameter_codes: Dict[str, str],
    site_types: Dict[str, str],
    sta_parameters: Sequence[UsgsStaParameter],
) -> List[UsgsStreamgage]:
    """
    Combine the four USGS responses into streamgage records.

    Latest values are split into primary and secondary measurements by their
    parameter's display category; parameters in neither are dropped.
    """
    params_by_code = {p.sta_parameter_code: p for p in sta_parameters}

    latest_by_site: Dict[str, List[Dict[str, Any]]] = {}
    for feature in _features(latest_continuous):
        props = feature.get("properties") or {}
        latest_by_site.setdefault(props.get("monitoring_location_id"), []).append(props)

    gages: Dict[str, UsgsStreamgage] = {}
    for gage in _features(monitoring_locations):
        props = gage.get("properties") or {}
        coordinates = (gage.get("geometry") or {}).get("coordinates") or [None, None]
        org_id = props.get("agency_code", "")
        site_id = props.get("monitoring_location_number", "")
        full_site_id = f"{org_id}-{site_id}"

        streamgage = UsgsStreamgage(
            site_id=site_id,
            org_id=org_id,
            unique_id=f"{site_id}-{org_id}",
            location_longitude=parse_float(coordinates[0]),
            location_latitude=parse_float(coordinates[1] if len(coordinates) > 1 else None),
            location_name=props.get("monitoring_location_name", ""),
            location_type=props.get("site_type") or site_types.get(props.get("site_type_code"), ""),
            location_url=f"{USGS_LOCATION_URL}/{full_site_id}",
            org_name=org_id,
        )

        for item in latest_by_site.get(full_site_id, []):
            parameter_code = str(item.get("parameter_code", ""))
            description = parameter_codes.get(parameter_code, "")
            matched = params_by_code.get(parameter_code)
            measurement = StreamgageMeasurement(
                parameter_category=matched.hmw_category if matched else "exclude",
                parameter_order=matched.hmw_order if matched else 0,
                parameter_name=matched.hmw_name if matched else description,
                parameter_usgs_name=matched.sta_description if matched else description,
                parameter_code=parameter_code,
                measurement=convert_measurement(parameter_code, item.get("value")),
                datetime=str(item.get("time", "")),
                unit_abbr=matched.hmw_units if matched else item.get("unit_of_measure", ""),
            )
            if measurement.parameter_category in ("primary", "secondary"):
                streamgage.streamgage_measurements[measurement.parameter_category].append(measurement)

        gages[full_site_id] = streamgage

    # precipitation is reported as its own primary measurement
    for site in _features(precipitation):
        props = site.get("properties") or {}
        streamgage = gages.get(props.get("monitoring_location_id"))
        if streamgage is None:
            continue
        streamgage.streamgage_measurements["primary"].append(StreamgageMeasurement(
            parameter_category="primary",
            parameter_order=5,
            parameter_name="Total Daily Rainfall",
            parameter_usgs_name="Precipitation (USGS Daily Value)",
            parameter_code=PRECIPITATION,
            measurement=parse_float(props.get("value")),
            datetime=str(props.get("time", "")),
            unit_abbr="in",
        ))

    daily_series = _features((daily_averages or {}).get("allParamsMean")) + _features(
        (daily_averages or {}).get("precipitationSum")
    )
    for site in daily_series:
        props = site.get("properties") or {}
        streamgage = gages.get(props.get("monitoring_location_id"))
        if streamgage is None:
            continue
        parameter_code = str(props.get("parameter_code", ""))
        observation = DailyObservation(
            measurement=convert_measurement(parameter_code, props.get("value")),
            date=str(props.get("time", "")),
        )
        for measurements in streamgage.streamgage_measurements.values():
            for measurement in measurements:
                if measurement.parameter_code == parameter_code:
                    measurement.daily_averages.append(observation)

    return list(gages.values())


# =============================================================================
# DATASET
# =============================================================================

async def fetch_and_transform_data(
    boundaries_filter: str,
    store: FetchedDataStore,
    key: str,
    parameter_codes: Dict[str, str],
    site_types: Dict[str, str],
    sta_parameters: Sequence[UsgsStaParameter],
    signal: Optional[AbortSignal] = None,
    huc12: Optional[str] = None,
    data_to_exclude: Optional[Sequence[UsgsStreamgage]] = None,
    is_current: Callable[[], bool] = lambda: True,
) -> Optional[List[UsgsStreamgage]]:
    """
    Fetch, combine and publish streamgages for a bbox filter.

    Returns:
        Every streamgage found (before excluding data_to_exclude), or None
        if nothing was published
    """
    store.dispatch(FetchStatus.PENDING, key)

    latest = await fetch_latest_continuous(boundaries_filter, signal)
    if latest.status != FetchStatus.SUCCESS:
        if is_current():
            store.dispatch(latest.status, key)
        return None

    site_ids = list(dict.fromkeys(
        (feature.get("properties") or {}).get("monitoring_location_id")
        for feature in _features(latest.data)
    ))
    site_ids = [site_id for site_id in site_ids if site_id]
    if not site_ids:
        if is_current():
            store.dispatch(FetchStatus.SUCCESS, key, [])
            return []
        return None

    responses = await asyncio.gather(
        fetch_monitoring_locations(site_ids, signal, huc12),
        fetch_daily(site_ids, signal),
        fetch_precipitation(site_ids, signal),
    )
    if not is_current():
        logger.debug(f"Dropping stale {key} response")
        return None

    if all(response.status == FetchStatus.SUCCESS for response in responses):
        streamgages = transform_service_data(
            *(response.data for response in responses),
            latest.data,
            parameter_codes,
            site_types,
            sta_parameters,
        )
        payload = filter_data(streamgages, data_to_exclude, DATA_KEYS) if data_to_exclude else streamgages
        store.dispatch(FetchStatus.SUCCESS, key, payload)
        return streamgages

    if any(response.status == FetchStatus.FAILURE for response in responses):
        store.dispatch(FetchStatus.FAILURE, key)
    else:
        store.dispatch(FetchStatus.PENDING, key)
    return None


class UsgsSensorsDataset:
    """
    The enclosed and surrounding USGS sensor datasets for one map.

    The service rejects bounding boxes over 25 square degrees, so extents
    larger than that are skipped.
    """

    local_key = LOCAL_KEY
    surrounding_key = SURROUNDING_KEY
    layer_id = LAYER_ID

    def __init__(
        self,
        map_view: MapView,
        store: FetchedDataStore,
        parameter_codes: Dict[str, str],
        site_types: Dict[str, str],
        sta_parameters: Sequence[UsgsStaParameter],
    ):
        self.map_view = map_view
        self.store = store
        self.parameter_codes = parameter_codes
        self.site_types = site_types
        self.sta_parameters = list(sta_parameters)
        self.local_data: List[UsgsStreamgage] = []
        self._extent_filter: Optional[str] = None
        self._local_request = 0

    @property
    def max_area(self) -> float:
        return get_settings().usgs_max_bbox_area

    @property
    def min_scale(self) -> float:
        return get_settings().default_min_scale

    @staticmethod
    def build_features(streamgages: Sequence[UsgsStreamgage]) -> List[Graphic]:
        return build_features(streamgages)

    def _publish_empty(self) -> List[UsgsStreamgage]:
        self.local_data = []
        self.store.dispatch(FetchStatus.SUCCESS, self.local_key, [])
        self.exclude_local_from_surroundings()
        return []

    async def update_local_data(
        self,
        huc12: Optional[str],
        boundary=None,
        signal: Optional[AbortSignal] = None,
    ) -> List[UsgsStreamgage]:
        """
        Fetch the sensors in a HUC12 watershed.

        Args:
            huc12: Watershed code, used to narrow the monitoring-locations query
            boundary: Shapely polygon of the watershed; its bounding box is
                the latest-continuous query area
        """
        self._local_request += 1
        request_id = self._local_request
        if not huc12 or boundary is None:
            return self._publish_empty()

        bbox = get_extent_bounding_box(get_geographic_extent_polygon(boundary), self.max_area, truncate=True)
        if not bbox:
            return self._publish_empty()

        data = await fetch_and_transform_data(
            f"bbox={bbox}",
            self.store,
            self.local_key,
            self.parameter_codes,
            self.site_types,
            self.sta_parameters,
            signal=signal,
            huc12=huc12,
            is_current=lambda: self._local_request == request_id,
        )
        if data is not None:
            self.local_data = data
            self.exclude_local_from_surroundings()
        return self.local_data

    def reset_surroundings(self) -> None:
        """Forget the last surrounding extent so the next update fetches again."""
        self._extent_filter = None

    def exclude_local_from_surroundings(self) -> None:
        """Drop surrounding sensors the current local dataset encloses."""
        self.reset_surroundings()
        state = self.store.get(self.surrounding_key)
        if not state.ok or not state.data:
            return
        remaining = filter_data(state.data, self.local_data, DATA_KEYS)
        if len(remaining) != len(state.data):
            self.store.dispatch(FetchStatus.SUCCESS, self.surrounding_key, remaining)

    async def update_surrounding_data(self, signal: AbortSignal) -> None:
        """Fetch sensors in the visible extent that aren't already in the local dataset."""
        extent_filter = await resolve_extent_filter(
            self.map_view, max_area=self.max_area, param="bbox", truncate=True
        )
        # Could not create filter
        if not extent_filter:
            return
        # Same extent, no update necessary
        if extent_filter == self._extent_filter:
            return
        self._extent_filter = extent_filter

        data = await fetch_and_transform_data(
            extent_filter,
            self.store,
            self.surrounding_key,
            self.parameter_codes,
            self.site_types,
            self.sta_parameters,
            signal=signal,
            data_to_exclude=self.local_data,
            is_current=lambda: self._extent_filter == extent_filter,
        )
        if data is None and self._extent_filter == extent_filter:
            self._extent_filter = None
