#!/usr/bin/env python
"""
Buffer Intersect
================
Draw a geometry, buffer it, and list the features of a web map's feature
layers that intersect the buffer.

This entry point runs the pipeline without an interactive map: the web map is
read from a JSON file (or fetched from a portal by item id) and the "drawn"
geometry is read from a geospatial file.
"""

import argparse
import logging
import asyncio
import sys
import time
from pathlib import Path
from typing import List, Optional

# Import logging first
from utils.logger import setup_logging, get_logger

from config.config_loader import load_config, load_portal_settings, load_symbol_settings
from core.map_context import MapContext, fetch_webmap, load_webmap_file
from core.models import RunReport
from core.widget import BufferIntersectWidget
from geometry_input.load_input import load_drawn_geometry


def load_map_context(webmap_source: str, config: dict) -> MapContext:
    """Build a map context from a web map JSON path or a portal item id."""
    if Path(webmap_source).exists():
        webmap = load_webmap_file(webmap_source)
    else:
        portal = load_portal_settings(config)
        webmap = fetch_webmap(webmap_source, portal['portal_url'], timeout=portal['timeout'])
    return MapContext.from_webmap(webmap, symbols=load_symbol_settings(config))


def main(webmap_source: str,
         geometry_file: str,
         distance: Optional[float] = None,
         unit: Optional[str] = None,
         layer_ids: Optional[List[str]] = None,
         config_path: Optional[Path] = None,
         verbose: bool = False) -> Optional[RunReport]:
    """
    Run draw -> buffer -> intersect once.

    Workflow Steps:
    1. Setup logging to console and file
    2. Load configuration
    3. Load the web map and bind it
    4. Load the drawn geometry and buffer it
    5. Query the selected layers

    Parameters:
    -----------
    webmap_source : str
        Path to a web map JSON file, or a portal item id
    geometry_file : str
        Geospatial file holding the geometry to buffer
    distance : Optional[float]
        Buffer distance (defaults to the configured distance)
    unit : Optional[str]
        Buffer unit (defaults to the configured unit)
    layer_ids : Optional[List[str]]
        Layers to query (defaults to every discovered layer)
    config_path : Optional[Path]
        Alternative configuration file
    verbose : bool
        Show DEBUG messages on the console

    Returns:
    --------
    Optional[RunReport]
        Report of the run, or None if the run could not be performed
    """
    workflow_start_time = time.time()

    log_file = setup_logging(console_level=logging.DEBUG if verbose else logging.INFO)
    logger = get_logger(__name__)

    logger.info("=" * 60)
    logger.info("BUFFER INTERSECT")
    logger.info("=" * 60)
    logger.info(f"Log file: {log_file}")

    try:
        config = load_config(config_path)

        map_context = load_map_context(webmap_source, config)
        widget = BufferIntersectWidget(config)
        widget.bind_map_context(map_context)

        if distance is not None:
            widget.set_buffer_distance(distance)
        if unit is not None:
            widget.set_buffer_unit(unit)
        if layer_ids:
            widget.select_layers(layer_ids)

        drawn = load_drawn_geometry(geometry_file, wkid=map_context.wkid)
        widget.start_draw(drawn.kind)
        map_context.sketch.complete(drawn.geometry)

        status = asyncio.run(widget.run_intersection())
        logger.info("")
        logger.info(status.text)

        report = widget.report
        if report is not None:
            for success in report.successes:
                logger.info(f"  {success.layer_title}: {success.feature_count} feature(s)")
            for failure in report.failures:
                logger.info(f"  {failure.layer_title}: {failure.reason}")

        logger.info(f"✓ Total execution time: {time.time() - workflow_start_time:.2f} seconds")
        return report

    except Exception as e:
        logger.error("=" * 60)
        logger.error("✗ WORKFLOW FAILED")
        logger.error("=" * 60)
        logger.error(f"Error: {str(e)}", exc_info=True)
        logger.error(f"See log file for details: {log_file}")
        return None


def cli() -> int:
    parser = argparse.ArgumentParser(description="Buffer a geometry and intersect it with web map layers")
    parser.add_argument("webmap", help="Web map JSON file or portal item id")
    parser.add_argument("geometry", help="Geospatial file with the geometry to buffer")
    parser.add_argument("--distance", type=float, default=None, help="Buffer distance")
    parser.add_argument("--unit", choices=['meters', 'kilometers', 'feet', 'miles'], default=None)
    parser.add_argument("--layer", action="append", dest="layers", help="Layer id to query (repeatable)")
    parser.add_argument("--config", type=Path, default=None, help="Alternative widget_config.json")
    parser.add_argument("-v", "--verbose", action="store_true", help="Show debug output on the console")
    args = parser.parse_args()

    report = main(args.webmap, args.geometry, args.distance, args.unit, args.layers, args.config,
                  verbose=args.verbose)
    if report is None or report.failures:
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(cli())
