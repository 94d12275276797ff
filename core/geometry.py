"""
Geometry utilities for point features and map centering.
Filters GeoJSON points by polygon and picks a map center from GeoDataFrames.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional

import geopandas as gpd
import pandas as pd
from shapely.geometry import Point
from shapely.geometry.base import BaseGeometry


def get_map_center(
    gdf_list: List[Optional[gpd.GeoDataFrame]],
    default_center: tuple = (39.8283, -98.5795),
) -> tuple:
    """
    Calculate the center point for a map from a list of GeoDataFrames.
    Uses the first non-empty GeoDataFrame's centroid.

    Args:
        gdf_list: List of GeoDataFrames to check (in priority order)
        default_center: Default center if no valid geometries (lat, lon)

    Returns:
        Tuple of (latitude, longitude)
    """
    for gdf in gdf_list:
        if gdf is not None and not gdf.empty:
            center_lat = gdf.geometry.y.mean()
            center_lon = gdf.geometry.x.mean()
            if pd.notna(center_lat) and pd.notna(center_lon):
                return (center_lat, center_lon)

    return default_center


def feature_point(feature: Dict[str, Any]) -> Optional[Point]:
    """Shapely point for a GeoJSON point feature, or None if it has no usable coordinates."""
    geometry = feature.get("geometry") or {}
    coordinates = geometry.get("coordinates") or []
    if len(coordinates) < 2:
        return None
    try:
        return Point(float(coordinates[0]), float(coordinates[1]))
    except (TypeError, ValueError):
        return None


def filter_features_within(
    features: List[Dict[str, Any]],
    area: BaseGeometry,
) -> List[Dict[str, Any]]:
    """
    Keep the GeoJSON point features contained in an area of interest.

    Args:
        features: GeoJSON features with point geometry
        area: Shapely polygon in EPSG:4326
    """
    contained = []
    for feature in features:
        point = feature_point(feature)
        if point is not None and area.contains(point):
            contained.append(feature)
    return contained
