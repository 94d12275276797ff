"""
Past Water Conditions
Water Quality Portal monitoring locations in a HUC12 watershed, filtered by
characteristic group and year, with optional surrounding locations.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import streamlit as st
from loguru import logger
from streamlit_folium import st_folium

from analysis_registry import AnalysisContext
from analyses.monitoring_locations.queries import (
    LAYER_ID,
    LOCAL_KEY,
    SURROUNDING_KEY,
    MonitoringLocationsDataset,
)
from components.analysis_state import AnalysisState
from components.boundaries_toggle import DISABLED, BoundariesToggleController
from components.feature_layer import MapView
from components.map_rendering import (
    add_controller_layers,
    create_base_map,
    last_view,
    render_map_legend,
)
from components.result_display import layer_table, render_data_expander, render_fetch_status, render_metrics_row
from core.fetch_state import FetchedDataStore, FetchState, FetchStatus
from core.models import MonitoringLocation
from core.observable import Subscription
from filters.characteristic_groups import ALL_LABEL
from filters.past_water_conditions import PastWaterConditionsFilter
from filters.timeframe import YearRange


HUC12_PATTERN = re.compile(r"^\d{12}$")
LAYER_COLOR = "#2563eb"

POPUP_FIELDS = [
    "location_name",
    "location_type",
    "org_name",
    "site_id",
    "provider_name",
    "total_samples",
    "total_measurements",
    "location_url",
]

TABLE_COLUMNS = [
    "location_name",
    "site_id",
    "org_name",
    "provider_name",
    "location_type",
    "county",
    "state",
    "total_samples",
    "total_measurements",
    "location_url",
]


# =============================================================================
# SESSION
# =============================================================================

@dataclass
class Selections:
    """Widget values from the previous rerun."""
    years: Optional[Tuple[int, int]] = None
    all_groups: Optional[bool] = None
    groups: Dict[str, bool] = field(default_factory=dict)


@dataclass
class PastWaterConditionsSession:
    """Everything the page keeps alive between reruns."""
    map_view: MapView
    store: FetchedDataStore
    dataset: MonitoringLocationsDataset
    controller: BoundariesToggleController
    pwc: PastWaterConditionsFilter
    huc12: str = ""
    filter_dirty: bool = False
    recenter: bool = False
    _subscriptions: List[Subscription] = field(default_factory=list)

    def mount(self) -> None:
        """Mount the layer controller, then route dataset changes into the filter."""
        if self.controller.mounted:
            return
        self.controller.mount()
        self._subscriptions = [
            self.store.subscribe(self.dataset.local_key, self._on_local_data),
            self.dataset.period_of_record.subscribe(self._on_period_of_record),
            self.pwc.filtered_locations.subscribe(self._on_filtered),
        ]

    async def unmount(self) -> None:
        for subscription in self._subscriptions:
            subscription.remove()
        self._subscriptions = []
        await self.controller.unmount()
        self.pwc.set_stations([])
        self.pwc.set_period_of_record(FetchStatus.IDLE)

    def _on_local_data(self, state: FetchState) -> None:
        if state.ok:
            self.pwc.set_stations(state.data or [])

    def _on_period_of_record(self, state: FetchState) -> None:
        year_range = state.data.year_range if state.data is not None else None
        self.pwc.set_period_of_record(state.status, year_range)

    def _on_filtered(self, stations: List[MonitoringLocation]) -> None:
        self.filter_dirty = True

    def apply_selections(self, selections: Selections) -> None:
        """Replay the user's widget changes onto the filter."""
        pwc = self.pwc
        if selections.years and pwc.annual_records_ready:
            try:
                years = YearRange(*selections.years).clamp(pwc.years_range)
            except ValueError as e:
                logger.debug(f"Ignoring year selection: {e}")
            else:
                if years != pwc.selected_years_range:
                    pwc.set_selected_range(years)

        if selections.all_groups is not None and selections.all_groups != pwc.all_toggled:
            pwc.toggle_all()
            return
        for label, toggled in selections.groups.items():
            group = pwc.groups.get(label)
            if label != ALL_LABEL and group is not None and group.toggled != toggled:
                pwc.toggle_group(label)


def build_session(context: AnalysisContext) -> PastWaterConditionsSession:
    mappings = context.lookups.characteristic_group_mappings
    map_view = MapView()
    store = FetchedDataStore()
    dataset = MonitoringLocationsDataset(map_view, store, mappings)
    controller = BoundariesToggleController(
        LAYER_ID,
        map_view,
        store,
        LOCAL_KEY,
        SURROUNDING_KEY,
        dataset.build_features,
        dataset.update_surrounding_data,
        min_scale=dataset.min_scale,
        title="Past Water Conditions",
        reset_surrounding_data=dataset.reset_surroundings,
    )
    return PastWaterConditionsSession(map_view, store, dataset, controller, PastWaterConditionsFilter(mappings))


async def refresh(
    session: PastWaterConditionsSession,
    huc12: str,
    show_surroundings: bool,
    map_state: Optional[Dict[str, Any]],
    selections: Selections,
) -> None:
    """
    Bring the session up to date with one rerun's inputs.

    A new watershed discards the previous selections, since its groups and
    years are rebuilt from scratch.
    """
    session.mount()

    if huc12 != session.huc12:
        logger.info(f"Loading monitoring locations for HUC12 '{huc12}'")
        # a new area of interest tears down both layers
        await session.unmount()
        session.mount()
        session.huc12 = huc12
        session.recenter = True
        selections = Selections()
        await session.dataset.update_local_data(f"huc={huc12}" if huc12 else None)

    session.apply_selections(selections)

    if show_surroundings != session.controller.visible:
        session.controller.toggle_surroundings(show_surroundings)

    if map_state:
        session.map_view.update_from_bounds(map_state.get("bounds"), map_state.get("zoom"))

    # edits already queued by data events go first, the filtered set last
    await session.controller.wait_idle()
    if session.filter_dirty:
        session.filter_dirty = False
        await session.controller.show_enclosed_features(session.pwc.filtered_locations.value or [])


# =============================================================================
# UI
# =============================================================================

def _read_selections(state: AnalysisState, pwc: PastWaterConditionsFilter) -> Selections:
    key = state.widget_key
    years = st.session_state.get(key("years"))
    return Selections(
        years=tuple(years) if years else None,
        all_groups=st.session_state.get(key("group_All")),
        groups={
            label: st.session_state[key(f"group_{label}")]
            for label in pwc.groups
            if label != ALL_LABEL and key(f"group_{label}") in st.session_state
        },
    )


def _sync_widgets(state: AnalysisState, pwc: PastWaterConditionsFilter) -> None:
    """Push the filter's state into the widgets before they are drawn."""
    key = state.widget_key
    st.session_state[key("group_All")] = pwc.all_toggled
    for label, group in pwc.groups.items():
        if label != ALL_LABEL:
            st.session_state[key(f"group_{label}")] = group.toggled
    if pwc.annual_records_ready:
        st.session_state[key("years")] = pwc.selected_years_range.as_tuple()


def _render_filters(state: AnalysisState, session: PastWaterConditionsSession) -> None:
    pwc = session.pwc
    key = state.widget_key

    st.markdown("### Time Period")
    if pwc.annual_records_ready:
        full = pwc.years_range
        if full.min_year < full.max_year:
            st.slider("Years", min_value=full.min_year, max_value=full.max_year, key=key("years"))
        else:
            st.caption(f"Data is only available for {full.min_year}.")
    else:
        render_fetch_status("Annual records", pwc.period_of_record_status)

    st.markdown("### Characteristic Groups")
    rows = pwc.group_rows()
    if not rows:
        st.caption("No monitoring locations in this watershed.")
        return

    st.checkbox("Toggle all", key=key("group_All"))
    for row in rows:
        st.checkbox(
            f"{row.label}: {row.location_count} locations, {row.measurement_count:,} measurements",
            key=key(f"group_{row.label}"),
        )


def main(context: AnalysisContext) -> None:
    """Render the Past Water Conditions page."""
    st.markdown("""
    **What this page shows:**
    - Water quality monitoring locations in a HUC12 watershed
    - Measurement counts by characteristic group and year

    **Surrounding locations:** toggle them on to also see stations in the visible map area
    """)

    state = AnalysisState(context.analysis_key)
    session = state.get_or_create("session", lambda: build_session(context))
    key = state.widget_key

    # Sidebar
    st.sidebar.markdown("### Area of Interest")
    huc12 = st.sidebar.text_input("HUC12 watershed", key=key("huc12"), placeholder="e.g. 020700100204").strip()
    if huc12 and not HUC12_PATTERN.match(huc12):
        st.sidebar.error("A HUC12 code is 12 digits.")
        huc12 = ""
    show_surroundings = st.sidebar.toggle("Show surrounding locations", key=key("surroundings"))

    state.run(refresh(
        session,
        huc12,
        show_surroundings,
        st.session_state.get(key("map")),
        _read_selections(state, session.pwc),
    ))
    _sync_widgets(state, session.pwc)

    if not huc12:
        st.info("Enter a HUC12 watershed code in the sidebar to get started.")
        return

    data, status = session.store.local_data(LOCAL_KEY)
    if not render_fetch_status("Monitoring locations", status):
        return

    pwc = session.pwc
    locations, measurements = pwc.toggled_counts()
    metrics = [
        {"label": "Monitoring Locations", "value": f"{locations:,}"},
        {"label": "Measurements", "value": f"{measurements:,}"},
    ]
    if pwc.annual_records_ready:
        start, end = pwc.selected_years_range
        metrics.append({"label": "Years", "value": f"{start} - {end}"})
    render_metrics_row(metrics)

    filter_col, map_col = st.columns([1, 2])
    with filter_col:
        _render_filters(state, session)
        st.link_button("Download selected data", pwc.download_url(huc12))
        st.link_button("Advanced filtering", pwc.portal_url(huc12))

    with map_col:
        controller = session.controller
        if controller.status() == DISABLED and show_surroundings:
            st.caption("Zoom in to see surrounding locations.")

        center, zoom = last_view(st.session_state.get(key("map")))
        gdf = controller.enclosed_layer.to_geodataframe()
        if session.recenter:
            session.recenter = False
            center, zoom = None, None
        map_obj = create_base_map(gdf, center=center, zoom=zoom)
        counts = add_controller_layers(map_obj, controller, LAYER_COLOR, POPUP_FIELDS)
        st_folium(
            map_obj,
            width=None,
            height=600,
            key=key("map"),
            returned_objects=["bounds", "zoom", "center"],
        )
        render_map_legend("Monitoring locations", "Surrounding monitoring locations", counts)

    render_data_expander(
        "View Monitoring Locations",
        layer_table(session.controller.enclosed_layer, TABLE_COLUMNS),
        display_columns=TABLE_COLUMNS,
        download_filename=f"monitoring_locations_{huc12}.csv",
        download_key=key("download"),
    )
