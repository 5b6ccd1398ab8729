"""
Geometry Buffering Module

Buffers drawn point, polyline and polygon geometries by a distance in meters,
kilometers, feet or miles. Buffering happens in a local projected CRS selected
from the geometry's centroid, and the result is transformed back into the
spatial reference the geometry was drawn in.
"""

from typing import Optional, Union
from pyproj import CRS, Geod, Transformer
from pyproj.exceptions import CRSError
from shapely import make_valid
from shapely.geometry.base import BaseGeometry
from shapely.ops import transform

from core.models import BufferGeometry, BufferSpec, BufferUnit, DrawnGeometry
from utils.logger import get_logger

logger = get_logger(__name__)

# Constants
WGS84 = CRS.from_epsg(4326)
CONUS_ALBERS = 'EPSG:5070'  # Albers Equal Area Conic for CONUS
WEB_MERCATOR = 'EPSG:3857'  # Web Mercator for global coverage
SQ_METERS_PER_SQ_MILE = 2589988.110336

# ESRI well-known ids that have an EPSG equivalent
ESRI_WKID_ALIASES = {
    102100: 3857,
    102113: 3857,
    104199: 4326,
}


def crs_from_wkid(wkid: int) -> CRS:
    """
    Resolve an ESRI/EPSG well-known id to a pyproj CRS.

    Raises:
        ValueError: If the wkid is unknown to both the EPSG and ESRI registries
    """
    code = ESRI_WKID_ALIASES.get(int(wkid), int(wkid))
    try:
        return CRS.from_epsg(code)
    except CRSError:
        try:
            return CRS.from_user_input(f"ESRI:{code}")
        except CRSError as e:
            raise ValueError(f"Unknown spatial reference wkid {wkid}: {e}")


def select_projected_crs(geom: BaseGeometry, original_crs: CRS) -> CRS:
    """
    Select appropriate projected CRS for accurate distance-based buffering.

    Strategy:
    1. Calculate geometry centroid (in lon/lat)
    2. Determine UTM zone from centroid longitude
    3. Determine hemisphere (North/South) from centroid latitude
    4. Return appropriate UTM CRS
    5. Fallback to Albers Equal Area (CONUS) or Web Mercator (global)

    Args:
        geom: Shapely geometry in original_crs
        original_crs: CRS the geometry coordinates are expressed in

    Returns:
        Projected CRS suitable for metric buffering
    """
    centroid = geom.centroid
    if original_crs != WGS84:
        transformer = Transformer.from_crs(original_crs, WGS84, always_xy=True)
        lon, lat = transformer.transform(centroid.x, centroid.y)
    else:
        lon, lat = centroid.x, centroid.y

    try:
        # UTM zones are 6 degrees wide, starting at -180°
        utm_zone = min(max(int((lon + 180) / 6) + 1, 1), 60)

        if lat >= 0:
            hemisphere = 'north'
            epsg_code = 32600 + utm_zone  # WGS84 UTM North
        else:
            hemisphere = 'south'
            epsg_code = 32700 + utm_zone  # WGS84 UTM South

        utm_crs = CRS.from_epsg(epsg_code)
        logger.debug(f"  - Selected UTM Zone {utm_zone}{hemisphere[0].upper()} (EPSG:{epsg_code}) for buffering")
        return utm_crs

    except (CRSError, ValueError, OverflowError) as e:
        logger.warning(f"Failed to determine UTM zone: {e}")

        # CONUS approximate bounds: lon -125 to -66, lat 24 to 49
        if -125 <= lon <= -66 and 24 <= lat <= 49:
            logger.info("  - Using fallback: Albers Equal Area Conic (EPSG:5070) for CONUS")
            return CRS.from_string(CONUS_ALBERS)
        else:
            logger.info("  - Using fallback: Web Mercator (EPSG:3857) for global coverage")
            return CRS.from_string(WEB_MERCATOR)


def repair_invalid_geometry(geom: BaseGeometry) -> BaseGeometry:
    """
    Repair invalid geometries using make_valid() or the buffer(0) technique.

    Hand-drawn polygons frequently self-intersect; the repaired geometry is
    what gets buffered.

    Raises:
        ValueError: If no repair method produces a geometry
    """
    if geom.is_valid:
        return geom

    logger.warning(f"Invalid geometry detected: {geom.geom_type}")

    try:
        repaired = make_valid(geom)
        logger.info("  ✓ Geometry repaired using make_valid()")
        return repaired

    except Exception as e:
        logger.warning(f"make_valid() failed: {e}, trying buffer(0)...")

        try:
            repaired = geom.buffer(0)
            logger.info("  ✓ Geometry repaired using buffer(0)")
            return repaired

        except Exception as e2:
            logger.error(f"All repair attempts failed: {e2}")
            raise ValueError(f"Cannot repair invalid geometry: {e2}")


def _buffer_in_projected_crs(geom: BaseGeometry, source_crs: CRS, buffer_meters: float) -> Optional[BaseGeometry]:
    """
    Buffer geom (expressed in source_crs) by buffer_meters in a local projected CRS.

    Returns the buffer in source_crs, or None for a degenerate buffer.

    Raises:
        ValueError: If a transformation or the buffer operation fails
    """
    try:
        projected_crs = select_projected_crs(geom, source_crs)
        transformer_to_proj = Transformer.from_crs(source_crs, projected_crs, always_xy=True)
        transformer_back = Transformer.from_crs(projected_crs, source_crs, always_xy=True)
        geom_projected = transform(transformer_to_proj.transform, geom)
    except Exception as e:
        raise ValueError(f"CRS transformation failed: {e}")

    try:
        buffered_projected = geom_projected.buffer(buffer_meters)
    except Exception as e:
        raise ValueError(f"Buffer operation failed: {e}")

    if buffered_projected.is_empty or buffered_projected.area <= 0:
        logger.info("  - Buffer is degenerate (zero area), no buffer produced")
        return None

    if buffered_projected.geom_type not in ('Polygon', 'MultiPolygon'):
        logger.warning(f"  - Buffer produced {buffered_projected.geom_type}, expected polygon")
        return None

    try:
        return transform(transformer_back.transform, buffered_projected)
    except Exception as e:
        raise ValueError(f"CRS back-transformation failed: {e}")


def buffer_geometry(drawn: DrawnGeometry,
                    distance: float,
                    unit: Union[str, BufferUnit]) -> Optional[BufferGeometry]:
    """
    Buffer a drawn geometry by a distance, returning the buffer polygon.

    Process:
    1. Validate distance and unit (BufferSpecError, nothing delegated)
    2. Repair the drawn geometry if invalid
    3. Select a projected CRS and transform into it
    4. Buffer by the distance converted to meters
    5. Transform the buffer back into the drawn geometry's spatial reference

    Args:
        drawn: Geometry finished by the user
        distance: Finite, non-negative buffer distance
        unit: One of 'meters', 'kilometers', 'feet', 'miles'

    Returns:
        BufferGeometry, or None when no buffer can be produced: a degenerate
        result (e.g. a point or line buffered by 0), an unknown spatial
        reference, or a failed repair, transformation or buffer operation

    Raises:
        BufferSpecError: Distance or unit rejected
    """
    spec = BufferSpec.create(distance, unit)
    geom = drawn.geometry

    if geom is None or geom.is_empty:
        logger.info("  - Drawn geometry is empty, no buffer produced")
        return None

    logger.info(f"Buffering {drawn.kind.value} by {spec.describe()}...")

    buffer_meters = spec.unit.to_meters(spec.distance)
    logger.debug(f"  - Buffer distance: {spec.describe()} = {buffer_meters:.2f} m")

    try:
        source_crs = crs_from_wkid(drawn.wkid)
        geom = repair_invalid_geometry(geom)
        buffered = _buffer_in_projected_crs(geom, source_crs, buffer_meters)
    except ValueError as e:
        logger.error(f"✗ Buffer failed for wkid {drawn.wkid}: {e}")
        return None

    if buffered is None:
        return None

    logger.info(f"  ✓ Buffer created ({buffered.geom_type})")

    return BufferGeometry(geometry=buffered, wkid=drawn.wkid, spec=spec)


def calculate_buffer_area(buffer: BufferGeometry, warn_above_sq_miles: float = 100) -> dict:
    """
    Calculate the geodesic area of a buffer for logging and validation.

    Args:
        buffer: Buffer polygon in any supported spatial reference
        warn_above_sq_miles: Log a warning for buffers larger than this

    Returns:
        Dictionary with 'area_sq_km' and 'area_sq_miles'
    """
    geom = buffer.geometry
    source_crs = crs_from_wkid(buffer.wkid)
    if source_crs != WGS84:
        to_wgs84 = Transformer.from_crs(source_crs, WGS84, always_xy=True)
        geom = transform(to_wgs84.transform, geom)

    area_sq_m, _ = Geod(ellps='WGS84').geometry_area_perimeter(geom)
    area_sq_m = abs(area_sq_m)
    area_sq_miles = area_sq_m / SQ_METERS_PER_SQ_MILE

    area_info = {
        'area_sq_km': round(area_sq_m / 1e6, 4),
        'area_sq_miles': round(area_sq_miles, 4)
    }

    logger.debug(f"  - Buffered area: ~{area_sq_miles:.2f} sq miles "
                 f"({area_info['area_sq_km']:.2f} sq km)")

    if area_sq_miles > warn_above_sq_miles:
        logger.warning(f"Large buffer area detected: {area_sq_miles:.1f} sq miles")
        logger.warning("This may result in very long query times or incomplete results")

    return area_info
