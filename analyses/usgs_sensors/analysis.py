"""
Current Water Conditions
Latest USGS sensor readings in a watershed, with optional surrounding sensors.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd
import streamlit as st
from loguru import logger
from shapely.geometry import box
from shapely.geometry.base import BaseGeometry
from streamlit_folium import st_folium

from analysis_registry import AnalysisContext
from analyses.usgs_sensors.queries import LAYER_ID, LOCAL_KEY, SURROUNDING_KEY, UsgsSensorsDataset
from components.analysis_state import AnalysisState
from components.boundaries_toggle import DISABLED, BoundariesToggleController
from components.feature_layer import MapView
from components.map_rendering import (
    add_controller_layers,
    create_base_map,
    last_view,
    render_map_legend,
)
from components.result_display import render_data_expander, render_fetch_status, render_metrics_row
from core.fetch_state import FetchedDataStore
from core.models import UsgsStreamgage


HUC12_PATTERN = re.compile(r"^\d{12}$")
LAYER_COLOR = "#0f766e"

POPUP_FIELDS = ["location_name", "location_type", "org_name", "site_id", "location_url"]


@dataclass
class UsgsSensorsSession:
    """Everything the page keeps alive between reruns."""
    map_view: MapView
    store: FetchedDataStore
    dataset: UsgsSensorsDataset
    controller: BoundariesToggleController
    area: Optional[Tuple[str, Tuple[float, ...]]] = None
    recenter: bool = False


def build_session(context: AnalysisContext) -> UsgsSensorsSession:
    lookups = context.lookups
    map_view = MapView()
    store = FetchedDataStore()
    dataset = UsgsSensorsDataset(
        map_view,
        store,
        lookups.usgs_parameter_codes,
        lookups.usgs_site_types,
        lookups.usgs_sta_parameters,
    )
    controller = BoundariesToggleController(
        LAYER_ID,
        map_view,
        store,
        LOCAL_KEY,
        SURROUNDING_KEY,
        dataset.build_features,
        dataset.update_surrounding_data,
        min_scale=dataset.min_scale,
        title="USGS Sensors",
        reset_surrounding_data=dataset.reset_surroundings,
    )
    return UsgsSensorsSession(map_view, store, dataset, controller)


def parse_bounds(text: str) -> Optional[BaseGeometry]:
    """
    Parse "west, south, east, north" in decimal degrees into a polygon.

    Raises:
        ValueError: If the text isn't four numbers forming a valid box
    """
    parts = [p for p in re.split(r"[,\s]+", text.strip()) if p]
    if len(parts) != 4:
        raise ValueError("Expected four numbers: west, south, east, north")
    west, south, east, north = (float(p) for p in parts)
    if west >= east or south >= north:
        raise ValueError("West must be less than east and south less than north")
    if not (-180 <= west <= 180 and -180 <= east <= 180 and -90 <= south <= 90 and -90 <= north <= 90):
        raise ValueError("Coordinates must be in decimal degrees")
    return box(west, south, east, north)


async def refresh(
    session: UsgsSensorsSession,
    huc12: str,
    boundary: Optional[BaseGeometry],
    show_surroundings: bool,
    map_state: Optional[Dict[str, Any]],
) -> None:
    """Bring the session up to date with one rerun's inputs."""
    session.controller.mount()

    area = (huc12, tuple(boundary.bounds) if boundary is not None else ())
    if area != session.area:
        logger.info(f"Loading USGS sensors for HUC12 '{huc12}'")
        # a new area of interest tears down both layers
        await session.controller.unmount()
        session.controller.mount()
        session.area = area
        session.recenter = True
        await session.dataset.update_local_data(huc12, boundary)

    if show_surroundings != session.controller.visible:
        session.controller.toggle_surroundings(show_surroundings)

    if map_state:
        session.map_view.update_from_bounds(map_state.get("bounds"), map_state.get("zoom"))

    await session.controller.wait_idle()


def readings_table(streamgages: List[UsgsStreamgage]) -> pd.DataFrame:
    """One row per primary or secondary reading, primary first in display order."""
    rows = []
    for gage in streamgages:
        for category in ("primary", "secondary"):
            for m in sorted(gage.streamgage_measurements.get(category, []), key=lambda m: m.parameter_order):
                rows.append({
                    "location_name": gage.location_name,
                    "site_id": gage.site_id,
                    "category": category,
                    "parameter": m.parameter_name,
                    "measurement": m.measurement,
                    "unit": m.unit_abbr,
                    "datetime": m.datetime,
                    "daily_values": len(m.daily_averages),
                })
    return pd.DataFrame(rows)


def main(context: AnalysisContext) -> None:
    """Render the Current Water Conditions page."""
    st.markdown("""
    **What this page shows:**
    - USGS sensors reporting in a HUC12 watershed, with their latest readings
    - Seven days of daily values for each reading

    **Area:** a HUC12 code plus the watershed's bounding box (west, south, east, north)
    """)

    state = AnalysisState(context.analysis_key)
    session = state.get_or_create("session", lambda: build_session(context))
    key = state.widget_key

    # Sidebar
    st.sidebar.markdown("### Area of Interest")
    huc12 = st.sidebar.text_input("HUC12 watershed", key=key("huc12"), placeholder="e.g. 020700100204").strip()
    bounds_text = st.sidebar.text_input(
        "Watershed bounding box", key=key("bounds"), placeholder="-77.2, 38.8, -76.9, 39.0"
    )
    show_surroundings = st.sidebar.toggle("Show surrounding sensors", key=key("surroundings"))

    boundary = None
    if huc12 and not HUC12_PATTERN.match(huc12):
        st.sidebar.error("A HUC12 code is 12 digits.")
        huc12 = ""
    if bounds_text.strip():
        try:
            boundary = parse_bounds(bounds_text)
        except ValueError as e:
            st.sidebar.error(str(e))

    state.run(refresh(session, huc12, boundary, show_surroundings, st.session_state.get(key("map"))))

    if not huc12 or boundary is None:
        st.info("Enter a HUC12 watershed code and its bounding box in the sidebar to get started.")
        return

    data, status = session.store.local_data(LOCAL_KEY)
    if not render_fetch_status("USGS sensors", status):
        return

    render_metrics_row([
        {"label": "Sensors", "value": len(data)},
        {"label": "Readings", "value": sum(
            len(m) for gage in data for m in gage.streamgage_measurements.values()
        )},
    ])

    controller = session.controller
    if controller.status() == DISABLED and show_surroundings:
        st.caption("Zoom in to see surrounding sensors.")

    center, zoom = last_view(st.session_state.get(key("map")))
    if session.recenter:
        session.recenter = False
        center, zoom = None, None
    map_obj = create_base_map(controller.enclosed_layer.to_geodataframe(), center=center, zoom=zoom)
    counts = add_controller_layers(map_obj, controller, LAYER_COLOR, POPUP_FIELDS)
    st_folium(map_obj, width=None, height=600, key=key("map"), returned_objects=["bounds", "zoom", "center"])
    render_map_legend("USGS sensors", "Surrounding USGS sensors", counts)

    render_data_expander(
        "View Latest Readings",
        readings_table(data),
        download_filename=f"usgs_readings_{huc12}.csv",
        download_key=key("download"),
    )
