"""
Extent utilities.
Converts a map viewport (Web Mercator) into a geographic bounding-box filter
for service queries, subject to a maximum-area constraint.
"""
from __future__ import annotations

import math
import sys
from dataclasses import dataclass
from typing import Optional

from loguru import logger
from pyproj import Transformer
from pyproj.exceptions import ProjError

from core.errors import NoExtentAvailable


WEB_MERCATOR_WKID = 102100
GEOGRAPHIC_WKID = 4326

_TO_GEOGRAPHIC = Transformer.from_crs("EPSG:3857", "EPSG:4326", always_xy=True)
_TO_WEB_MERCATOR = Transformer.from_crs("EPSG:4326", "EPSG:3857", always_xy=True)


@dataclass(frozen=True)
class Extent:
    """Axis-aligned rectangle in the coordinate system identified by wkid."""
    xmin: float
    ymin: float
    xmax: float
    ymax: float
    wkid: int = WEB_MERCATOR_WKID


def extent_area(extent: Extent) -> float:
    """Area of the rectangle in squared map units (squared degrees when geographic)."""
    return abs(extent.xmax - extent.xmin) * abs(extent.ymax - extent.ymin)


def to_fixed_float(num: float, precision: int = 0) -> float:
    """Round half up to `precision` decimal places."""
    if precision < 0:
        return num
    offset = 10 ** precision
    return math.floor((num + sys.float_info.epsilon) * offset + 0.5) / offset


def _format_coordinate(value: float) -> str:
    text = repr(float(value))
    return text[:-2] if text.endswith(".0") else text


def get_extent_bounding_box(
    extent: Optional[Extent],
    max_area: float = math.inf,
    truncate: bool = False,
) -> Optional[str]:
    """
    Get a string representation of an extent as a bounding box.

    Args:
        extent: Geographic extent (or None)
        max_area: Largest accepted area in squared degrees; an extent exactly
            at the maximum is accepted
        truncate: Round coordinates to 7 decimal places

    Returns:
        "xmin,ymin,xmax,ymax", or None if there is no extent or it is too large
    """
    if extent is None:
        return None
    if extent_area(extent) > max_area:
        return None

    coords = (extent.xmin, extent.ymin, extent.xmax, extent.ymax)
    if truncate:
        coords = tuple(to_fixed_float(c, 7) for c in coords)
    return ",".join(_format_coordinate(c) for c in coords)


def web_mercator_to_geographic(extent: Extent) -> Extent:
    """
    Reproject an extent from Web Mercator to geographic coordinates.
    Anti-meridian and polar extents are treated as a flat rectangle.

    Raises:
        NoExtentAvailable: If reprojection fails or produces non-finite values
    """
    if extent.wkid == GEOGRAPHIC_WKID:
        return extent
    try:
        xmin, ymin = _TO_GEOGRAPHIC.transform(extent.xmin, extent.ymin, errcheck=True)
        xmax, ymax = _TO_GEOGRAPHIC.transform(extent.xmax, extent.ymax, errcheck=True)
    except ProjError as e:
        raise NoExtentAvailable(f"Could not reproject extent: {e}") from e

    values = (xmin, ymin, xmax, ymax)
    if not all(math.isfinite(v) for v in values):
        raise NoExtentAvailable(f"Reprojected extent is not finite: {values}")
    return Extent(xmin, ymin, xmax, ymax, wkid=GEOGRAPHIC_WKID)


def geographic_to_web_mercator(extent: Extent) -> Extent:
    """Reproject a geographic extent (e.g. folium map bounds) to Web Mercator."""
    if extent.wkid == WEB_MERCATOR_WKID:
        return extent
    xmin, ymin = _TO_WEB_MERCATOR.transform(extent.xmin, extent.ymin)
    xmax, ymax = _TO_WEB_MERCATOR.transform(extent.xmax, extent.ymax)
    return Extent(xmin, ymin, xmax, ymax, wkid=WEB_MERCATOR_WKID)


async def get_geographic_extent(map_view) -> Optional[Extent]:
    """
    Wait for the view to become stationary, then return its extent in
    geographic coordinates. None when the view is unavailable or the
    extent cannot be reprojected. The view is never modified.
    """
    if not map_view or not getattr(map_view, "ready", False):
        return None

    await map_view.when_stationary()

    extent = map_view.extent
    if extent is None:
        return None
    try:
        return web_mercator_to_geographic(extent)
    except NoExtentAvailable as e:
        logger.warning(str(e))
        return None


def get_geographic_extent_polygon(polygon) -> Optional[Extent]:
    """Geographic extent of a shapely polygon (assumed to be in EPSG:4326)."""
    if polygon is None or polygon.is_empty:
        return None
    xmin, ymin, xmax, ymax = polygon.bounds
    return Extent(xmin, ymin, xmax, ymax, wkid=GEOGRAPHIC_WKID)


async def resolve_extent_filter(
    map_view,
    max_area: float = math.inf,
    param: str = "bBox",
    truncate: bool = False,
) -> Optional[str]:
    """
    Build a service filter from the current view, e.g. "bBox=-77.1,38.8,-76.9,39.0".

    Returns:
        The filter string, or None if the view is not ready, the extent is
        larger than max_area, or reprojection failed
    """
    extent = await get_geographic_extent(map_view)
    bbox = get_extent_bounding_box(extent, max_area, truncate)
    if not bbox:
        logger.debug("No usable extent for a bounding box filter")
        return None
    return f"{param}={bbox}"
