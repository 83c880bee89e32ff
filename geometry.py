"""Region-of-interest checks for geospatial analysis requests.

A geometry is accepted only after two steps, in order:

1. shape check – ``Polygon``, ``MultiPolygon`` or a ``FeatureCollection`` whose
   every feature is one of those two kinds;
2. area check – geodesic area on the WGS84 ellipsoid, in km², compared against
   the caller's ceiling.

Coordinates are GeoJSON lon/lat degrees.
"""
from __future__ import annotations

from typing import Any, Dict, Iterator

from pyproj import Geod
from shapely.errors import GEOSException
from shapely.geometry import Polygon, shape
from shapely.geometry.base import BaseGeometry
from shapely.geometry.polygon import orient
from shapely.ops import unary_union
from shapely.validation import make_valid

from errors import AreaExceeded, InvalidGeometryShape

POLYGONAL_TYPES = ("Polygon", "MultiPolygon")
ALLOWED_ROI_TYPES = POLYGONAL_TYPES + ("FeatureCollection",)

_GEOD = Geod(ellps="WGS84")


def _to_shapely(geojson: Dict[str, Any]) -> BaseGeometry:
    try:
        geom = shape(geojson)
    except (KeyError, TypeError, ValueError, IndexError, AttributeError, GEOSException) as e:
        raise InvalidGeometryShape(f"Selected ROI geometry could not be parsed: {e}") from e
    if geom.is_empty:
        raise InvalidGeometryShape("Selected ROI geometry is empty.")
    try:
        # self-intersecting rings become their polygonal parts
        geom = make_valid(geom)
    except GEOSException as e:
        raise InvalidGeometryShape(f"Selected ROI geometry could not be repaired: {e}") from e
    if not any(True for _ in _iter_polygons(geom)):
        raise InvalidGeometryShape("Selected ROI geometry encloses no area.")
    return geom


def check_shape(geometry: Any) -> BaseGeometry:
    """Step 1. Returns the parsed shapely geometry or raises InvalidGeometryShape."""
    if not isinstance(geometry, dict) or geometry.get("type") not in ALLOWED_ROI_TYPES:
        raise InvalidGeometryShape(
            "Selected ROI geometry must be a Polygon, MultiPolygon, or a FeatureCollection of polygons."
        )

    if geometry["type"] != "FeatureCollection":
        return _to_shapely(geometry)

    features = geometry.get("features") or []
    if not features:
        raise InvalidGeometryShape("The selected ROI contains no features.")
    parts = []
    for feature in features:
        feature_geometry = feature.get("geometry") if isinstance(feature, dict) else None
        if not feature_geometry or feature_geometry.get("type") not in POLYGONAL_TYPES:
            raise InvalidGeometryShape("All features in the ROI must be polygons.")
        parts.append(_to_shapely(feature_geometry))
    try:
        return unary_union(parts)
    except GEOSException as e:
        raise InvalidGeometryShape(f"Selected ROI features could not be combined: {e}") from e


def _iter_polygons(geom: BaseGeometry) -> Iterator[Polygon]:
    if isinstance(geom, Polygon):
        if not geom.is_empty:
            yield geom
    elif hasattr(geom, "geoms"):
        # MultiPolygon, or the GeometryCollection a union/make_valid can produce
        for part in geom.geoms:
            yield from _iter_polygons(part)


def area_sq_km(geom: BaseGeometry) -> float:
    """Step 2. Geodesic area of all polygonal parts, holes subtracted."""
    total_m2 = 0.0
    for polygon in _iter_polygons(geom):
        # exterior counter-clockwise, holes clockwise: the signed sum nets out holes
        area_m2, _ = _GEOD.geometry_area_perimeter(orient(polygon, sign=1.0))
        total_m2 += abs(area_m2)
    return total_m2 / 1_000_000.0


def calculate_geometry_area(geometry: Dict[str, Any]) -> float:
    """Area in km² of a GeoJSON ROI (shape-checked first)."""
    return area_sq_km(check_shape(geometry))


def validate(geometry: Any, max_area_sq_km: float) -> float:
    """Run both checks in order and return the area in km².

    Raises InvalidGeometryShape or AreaExceeded.
    """
    geom = check_shape(geometry)
    area = area_sq_km(geom)
    if area > max_area_sq_km:
        raise AreaExceeded(area, max_area_sq_km)
    return area
