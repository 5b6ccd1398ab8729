"""
Geometry conversion utilities for Buffer Intersect.

Drawing surfaces hand finished sketches over as ESRI JSON, and the FeatureServer
query endpoint expects the buffer polygon in ESRI JSON as well. This module
converts between ESRI JSON and Shapely, and keeps the vertex counting and
simplification helpers used to keep query payloads small.

Functions:
    convert_esri_point: Convert ESRI point geometry to a GeoJSON geometry
    convert_esri_linestring: Convert ESRI paths to a GeoJSON (Multi)LineString
    convert_esri_polygon: Convert ESRI rings to a GeoJSON Polygon
    esri_to_shapely: Main dispatcher for ESRI JSON to Shapely conversion
    esri_spatial_reference: Extract the wkid of an ESRI geometry
    shapely_to_esri_polygon: Convert Shapely Polygon/MultiPolygon to ESRI JSON
    count_geometry_vertices: Count total vertices in a geometry
    simplify_for_query: Simplify geometry for server queries
"""

from typing import Dict, Optional, List
from shapely.geometry import shape
from shapely.geometry.base import BaseGeometry

from utils.logger import get_logger

logger = get_logger(__name__)


def convert_esri_point(geom: Dict) -> Optional[Dict]:
    """
    Convert ESRI point geometry to a GeoJSON geometry.

    Parameters:
    -----------
    geom : Dict
        ESRI geometry with 'x' and 'y' keys

    Returns:
    --------
    Optional[Dict]
        GeoJSON geometry dict or None if conversion fails

    Example:
        >>> convert_esri_point({'x': -73.9857, 'y': 40.7484})
        {'type': 'Point', 'coordinates': [-73.9857, 40.7484]}
    """
    if not geom or geom.get('x') is None or geom.get('y') is None:
        return None

    return {
        'type': 'Point',
        'coordinates': [geom['x'], geom['y']]
    }


def convert_esri_linestring(geom: Dict) -> Optional[Dict]:
    """
    Convert ESRI paths geometry to GeoJSON LineString or MultiLineString.

    ESRI represents polylines as arrays of paths, where each path is an array
    of coordinate pairs. Single path becomes LineString, multiple paths become
    MultiLineString.
    """
    if not geom or not geom.get('paths'):
        return None

    if len(geom['paths']) == 1:
        return {'type': 'LineString', 'coordinates': geom['paths'][0]}
    return {'type': 'MultiLineString', 'coordinates': geom['paths']}


def convert_esri_polygon(geom: Dict) -> Optional[Dict]:
    """
    Convert ESRI rings geometry to GeoJSON Polygon.

    The first ring is the exterior, subsequent rings are holes. Sketches with
    several exterior rings come out invalid and are repaired before buffering.
    """
    if not geom or not geom.get('rings'):
        return None

    return {
        'type': 'Polygon',
        'coordinates': geom['rings']
    }


def esri_to_shapely(esri_geom: Dict) -> Optional[BaseGeometry]:
    """
    Convert an ESRI JSON geometry to a Shapely geometry.

    Detects the geometry type by structure and calls the matching converter.

    Parameters:
    -----------
    esri_geom : Dict
        ESRI JSON geometry ('x'/'y', 'paths' or 'rings')

    Returns:
    --------
    Optional[BaseGeometry]
        Shapely geometry, or None for unknown or empty structures
    """
    if not esri_geom:
        return None

    if 'x' in esri_geom and 'y' in esri_geom:
        geojson = convert_esri_point(esri_geom)
    elif 'paths' in esri_geom:
        geojson = convert_esri_linestring(esri_geom)
    elif 'rings' in esri_geom:
        geojson = convert_esri_polygon(esri_geom)
    else:
        geojson = None

    if geojson is None:
        return None
    return shape(geojson)


def esri_spatial_reference(esri_geom: Dict, default: int = 4326) -> int:
    """Return the wkid of an ESRI geometry, preferring latestWkid when present."""
    sr = (esri_geom or {}).get('spatialReference') or {}
    return int(sr.get('latestWkid') or sr.get('wkid') or default)


def shapely_to_esri_polygon(geom: BaseGeometry, wkid: int = 4326) -> Optional[Dict]:
    """
    Convert Shapely Polygon/MultiPolygon to ESRI JSON polygon format.

    Parameters:
    -----------
    geom : BaseGeometry
        Shapely Polygon or MultiPolygon geometry
    wkid : int
        Spatial reference the coordinates are expressed in

    Returns:
    --------
    Optional[Dict]
        ESRI JSON polygon dict with 'rings' and 'spatialReference' keys,
        or None if geometry is empty/unsupported

    Notes:
    ------
    - All rings (exterior and interior) are combined into a single array
    - For MultiPolygon, rings from all component polygons are combined
    """
    if geom is None or geom.is_empty:
        return None

    if geom.geom_type == 'Polygon':
        polygons = [geom]
    elif geom.geom_type == 'MultiPolygon':
        polygons = list(geom.geoms)
    else:
        return None

    rings: List[List[List[float]]] = []
    for polygon in polygons:
        rings.append([[x, y] for x, y, *_ in polygon.exterior.coords])
        for interior in polygon.interiors:
            rings.append([[x, y] for x, y, *_ in interior.coords])

    return {
        'rings': rings,
        'spatialReference': {'wkid': wkid}
    }


def count_geometry_vertices(geom: BaseGeometry) -> int:
    """Count total vertices in a Polygon or MultiPolygon geometry (0 otherwise)."""
    if geom is None or geom.is_empty:
        return 0

    if geom.geom_type == 'Polygon':
        polygons = [geom]
    elif geom.geom_type == 'MultiPolygon':
        polygons = list(geom.geoms)
    else:
        return 0

    total = 0
    for polygon in polygons:
        total += len(polygon.exterior.coords)
        for interior in polygon.interiors:
            total += len(interior.coords)
    return total


def simplify_for_query(
    geom: BaseGeometry,
    max_vertices: int = 1000,
    tolerance: float = 0.0001,
    max_tolerance: Optional[float] = None
) -> BaseGeometry:
    """
    Simplify geometry to reduce vertex count for server queries.

    Uses progressive simplification with topology preservation, doubling the
    tolerance until the geometry fits under max_vertices.

    Parameters:
    -----------
    geom : BaseGeometry
        Input geometry to simplify
    max_vertices : int
        Maximum vertex count before simplification is applied (default: 1000)
    tolerance : float
        Initial simplification tolerance in the geometry's units
    max_tolerance : float, optional
        Upper bound for the tolerance (default: 100 x tolerance)

    Returns:
    --------
    BaseGeometry
        Simplified geometry (or original if already under max_vertices, or if
        simplification would make it invalid)
    """
    original_vertex_count = count_geometry_vertices(geom)

    if original_vertex_count <= max_vertices:
        return geom

    if max_tolerance is None:
        max_tolerance = tolerance * 100

    logger.debug(
        f"Simplifying geometry: {original_vertex_count} vertices "
        f"exceeds limit of {max_vertices}"
    )

    current_tolerance = tolerance
    simplified = geom

    for i in range(5):
        simplified = geom.simplify(current_tolerance, preserve_topology=True)
        new_count = count_geometry_vertices(simplified)

        logger.debug(
            f"  Iteration {i+1}: tolerance={current_tolerance:.6f}, "
            f"vertices={new_count}"
        )

        if new_count <= max_vertices:
            break

        current_tolerance *= 2

        if current_tolerance > max_tolerance:
            logger.warning(
                f"Reached max tolerance ({max_tolerance}), "
                f"vertices still at {new_count}"
            )
            break

    if simplified.is_empty or not simplified.is_valid:
        logger.warning("Simplified geometry invalid, using original")
        return geom

    final_count = count_geometry_vertices(simplified)
    if final_count < original_vertex_count:
        logger.info(
            f"Simplified from {original_vertex_count} to {final_count} vertices"
        )

    return simplified
