"""
Map drawing for the explorer pages.
Puts a boundaries toggle controller's two layers on a Folium map and reads
the user's last view back from streamlit_folium.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

import folium
import geopandas as gpd
import streamlit as st

from components.boundaries_toggle import BoundariesToggleController
from core.geometry import get_map_center


POPUP_CSS = """
<style>
.leaflet-popup-content { min-width: 320px !important; max-width: 600px !important; }
.leaflet-popup-content td, .leaflet-popup-content th {
  overflow-wrap: anywhere;
  white-space: normal !important;
}
</style>
"""

# Never shown in popups
HIDDEN_COLUMNS = {"OBJECTID", "location_url_partial", "geometry"}

CONUS_CENTER = (39.8283, -98.5795)
CONUS_ZOOM = 4
SURROUNDING_OPACITY = 0.45


def create_base_map(
    enclosed: Optional[gpd.GeoDataFrame] = None,
    center: Optional[Tuple[float, float]] = None,
    zoom: Optional[int] = None,
) -> folium.Map:
    """
    Create the page map.

    A saved view (center and zoom) wins. Without one the map is fit to the
    enclosed features, or shows the lower 48 when there are none.
    """
    if center is not None:
        map_obj = folium.Map(location=list(center), zoom_start=zoom or 11)
    elif enclosed is not None and not enclosed.empty:
        map_obj = folium.Map(location=list(get_map_center([enclosed], CONUS_CENTER)), zoom_start=zoom or 11)
        if len(enclosed) > 1:
            west, south, east, north = enclosed.total_bounds
            map_obj.fit_bounds([[south, west], [north, east]])
    else:
        map_obj = folium.Map(location=list(CONUS_CENTER), zoom_start=CONUS_ZOOM)

    map_obj.get_root().header.add_child(folium.Element(POPUP_CSS))
    return map_obj


def popup_columns(gdf: gpd.GeoDataFrame, preferred: Optional[List[str]] = None) -> List[str]:
    """Preferred columns that exist in gdf, or every column that isn't hidden."""
    if preferred:
        return [c for c in preferred if c in gdf.columns]
    return [c for c in gdf.columns if c not in HIDDEN_COLUMNS]


def add_point_layer(
    map_obj: folium.Map,
    gdf: Optional[gpd.GeoDataFrame],
    name: str,
    color: str,
    popup_fields: Optional[List[str]] = None,
    radius: int = 6,
    opacity: float = 1.0,
) -> None:
    """
    Draw point features as circle markers with a location name tooltip.

    Args:
        map_obj: Folium map to draw on
        gdf: Point features in EPSG:4326 (nothing is drawn when empty)
        name: Layer control label, may contain HTML
        color: Marker color
        popup_fields: Popup columns (None = every column that isn't hidden)
        radius: Marker radius in pixels
        opacity: Marker stroke and fill opacity
    """
    if gdf is None or gdf.empty:
        return

    fields = popup_columns(gdf, popup_fields)
    gdf.explore(
        m=map_obj,
        name=name,
        color=color,
        marker_type="circle_marker",
        marker_kwds={"radius": radius},
        style_kwds={"fillOpacity": opacity, "opacity": opacity},
        popup=fields or True,
        tooltip="location_name" if "location_name" in gdf.columns else False,
    )


def add_controller_layers(
    map_obj: folium.Map,
    controller: BoundariesToggleController,
    color: str,
    popup_fields: Optional[List[str]] = None,
) -> Dict[str, int]:
    """
    Draw both layers of a boundaries toggle controller.

    The surrounding layer is drawn only while its toggle is on and it isn't
    disabled by the map scale.

    Returns:
        Feature counts keyed by "enclosed" and "surrounding"
    """
    enclosed = controller.enclosed_layer
    surrounding = controller.surrounding_layer

    add_point_layer(
        map_obj,
        enclosed.to_geodataframe(),
        f'<span style="color:{color};">{enclosed.title} ({enclosed.feature_count})</span>',
        color,
        popup_fields=popup_fields,
    )
    if surrounding.visible:
        add_point_layer(
            map_obj,
            surrounding.to_geodataframe(),
            f"{surrounding.title} ({surrounding.feature_count})",
            color,
            popup_fields=popup_fields,
            radius=5,
            opacity=SURROUNDING_OPACITY,
        )

    folium.LayerControl(collapsed=True).add_to(map_obj)
    return {"enclosed": enclosed.feature_count, "surrounding": surrounding.feature_count}


def last_view(map_state: Optional[Dict[str, Any]]) -> Tuple[Optional[Tuple[float, float]], Optional[int]]:
    """(center, zoom) from a streamlit_folium return value, so reruns keep the user's view."""
    if not map_state:
        return None, None
    center = map_state.get("center") or {}
    zoom = map_state.get("zoom")
    if "lat" not in center or "lng" not in center:
        return None, zoom
    return (center["lat"], center["lng"]), zoom


def render_map_legend(enclosed_label: str, surrounding_label: str, counts: Dict[str, int]) -> None:
    st.info(
        "**Map Legend:**\n"
        f"- {enclosed_label} in the watershed ({counts['enclosed']})\n"
        f"- {surrounding_label} ({counts['surrounding']}), lighter markers"
    )
