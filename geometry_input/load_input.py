"""
Geometry Input Loading Module

Reads a sketch from a geospatial file so the pipeline can run without an
interactive drawing surface. Supports every format GeoPandas can read.
"""

import geopandas as gpd
from pathlib import Path
from shapely.ops import unary_union

from core.models import DrawnGeometry
from geometry_input.buffering import crs_from_wkid
from utils.logger import get_logger

logger = get_logger(__name__)


def load_geometry_file(file_path: str) -> gpd.GeoDataFrame:
    """
    Load geospatial file and return GeoDataFrame with original CRS.

    Raises:
        FileNotFoundError: If file doesn't exist
        ValueError: If file cannot be read, is empty or has no CRS
    """
    file_path_obj = Path(file_path)

    if not file_path_obj.exists():
        raise FileNotFoundError(f"Input file not found: {file_path}")

    logger.info(f"Loading geometry from: {file_path}")

    try:
        gdf = gpd.read_file(file_path)
    except Exception as e:
        raise ValueError(f"Failed to read geospatial file: {e}")

    if gdf.empty:
        raise ValueError("Input file contains no features")

    if gdf.crs is None:
        raise ValueError(
            "Input file has no Coordinate Reference System (CRS) defined. "
            "Please assign a CRS to your data before using it as input."
        )

    logger.info(f"  - Loaded {len(gdf)} feature(s)")
    logger.debug(f"  - Geometry types: {gdf.geometry.geom_type.unique().tolist()}")

    return gdf


def load_drawn_geometry(file_path: str, wkid: int = None) -> DrawnGeometry:
    """
    Load a file as the geometry a user would have drawn.

    All features are unioned into one shape. The result is reprojected to
    wkid when given (typically the map's spatial reference), otherwise kept in
    the file's CRS.

    Args:
        file_path: Path to a geospatial file
        wkid: Target spatial reference id (optional)

    Returns:
        DrawnGeometry ready for buffering

    Raises:
        ValueError: If the features mix geometry families or the CRS has no EPSG code
    """
    gdf = load_geometry_file(file_path)

    if wkid is not None:
        gdf = gdf.to_crs(crs_from_wkid(wkid))
        target_wkid = wkid
    else:
        target_wkid = gdf.crs.to_epsg()
        if target_wkid is None:
            raise ValueError(f"Input CRS has no EPSG code: {gdf.crs}")

    geom = unary_union(list(gdf.geometry))
    drawn = DrawnGeometry.from_shapely(geom, wkid=target_wkid)
    logger.info(f"  - Drawn geometry: {drawn.kind.value} (wkid {target_wkid})")
    return drawn
