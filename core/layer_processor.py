"""
Layer processing module for Buffer Intersect.

Runs one intersection: validates the run, queries every selected layer
concurrently against the buffer polygon, and aggregates the per-layer
outcomes into a RunReport. A failing layer never cancels or hides its
siblings; each query is guarded on its own and the run joins once all of
them have settled.

Functions:
    validate_run: Check run preconditions
    prepare_query_params: Serialize (and simplify) the buffer once per run
    run_intersection: Query all selected layers and return a RunReport
    summarize_report: Turn a RunReport into the single status line
"""

import asyncio
import json
import time
from typing import Dict, Iterable, Optional, Sequence

import httpx

from config.config_loader import load_query_settings
from core.arcgis_query import REASON_QUERY_FAILED, REASON_TIMEOUT, build_query_params, query_layer
from core.models import (
    BufferGeometry,
    IntersectionOutcome,
    LayerDescriptor,
    PerLayerFailure,
    QueryValidationError,
    RunReport,
    StatusKind,
    StatusMessage,
)
from utils.geometry_converters import count_geometry_vertices, shapely_to_esri_polygon, simplify_for_query
from utils.logger import get_logger

logger = get_logger(__name__)

NO_BUFFER_MESSAGE = 'Please draw a buffer first to perform intersection.'
NO_LAYERS_MESSAGE = 'Please select at least one layer to intersect with.'
UNUSABLE_BUFFER_MESSAGE = 'The buffer geometry cannot be used for a query. Please draw it again.'
EMPTY_MESSAGE = 'No intersecting features found in any selected layer.'


def validate_run(buffer: Optional[BufferGeometry], selected_layers: Sequence[LayerDescriptor]) -> None:
    """
    Raises:
        QueryValidationError: No buffer, or no selected layer
    """
    if buffer is None:
        raise QueryValidationError(NO_BUFFER_MESSAGE)
    if not selected_layers:
        raise QueryValidationError(NO_LAYERS_MESSAGE)


def prepare_query_params(buffer: BufferGeometry, settings: Dict) -> Dict:
    """
    Build the query parameters shared by every layer of a run.

    The buffer polygon is simplified and serialized once, not per layer.

    Raises:
        QueryValidationError: If the buffer cannot be expressed as an ESRI polygon
    """
    geometry = simplify_for_query(
        buffer.geometry,
        max_vertices=settings.get('polygon_query_max_vertices', 1000),
        tolerance=settings.get('simplify_tolerance', 0.0001)
    )
    esri_polygon = shapely_to_esri_polygon(geometry, wkid=buffer.wkid)
    if esri_polygon is None:
        raise QueryValidationError(UNUSABLE_BUFFER_MESSAGE)

    logger.debug(f"Query polygon: {count_geometry_vertices(geometry)} vertices, wkid {buffer.wkid}")
    return build_query_params(json.dumps(esri_polygon), buffer.wkid)


async def _guarded_query(client: httpx.AsyncClient,
                         layer: LayerDescriptor,
                         params: Dict,
                         settings: Dict,
                         semaphore: asyncio.Semaphore) -> IntersectionOutcome:
    layer_timeout = settings.get('layer_timeout') or None
    try:
        async with semaphore:
            return await asyncio.wait_for(query_layer(client, layer, params, settings), timeout=layer_timeout)
    except asyncio.TimeoutError:
        logger.error(f"    ✗ {layer.title}: no answer within {layer_timeout}s")
        return PerLayerFailure(layer_id=layer.id, layer_title=layer.title, reason=REASON_TIMEOUT)
    except Exception as e:
        logger.error(f"    ✗ {layer.title}: unexpected error: {e}", exc_info=True)
        return PerLayerFailure(layer_id=layer.id, layer_title=layer.title, reason=REASON_QUERY_FAILED)


async def run_intersection(
    buffer: Optional[BufferGeometry],
    selected_layers: Iterable[LayerDescriptor],
    settings: Optional[Dict] = None,
    client: Optional[httpx.AsyncClient] = None
) -> RunReport:
    """
    Query every selected layer for features intersecting the buffer.

    Parameters:
    -----------
    buffer : Optional[BufferGeometry]
        Current buffer polygon
    selected_layers : Iterable[LayerDescriptor]
        Layers to query, in selection order (snapshotted at call time)
    settings : Optional[Dict]
        Query settings (defaults from config_loader.load_query_settings)
    client : Optional[httpx.AsyncClient]
        HTTP client to use; a private client is opened and closed otherwise

    Returns:
    --------
    RunReport
        One outcome per selected layer, in selection order

    Raises:
    -------
    QueryValidationError
        If there is no buffer or no selected layer (no query is issued)

    Example:
        >>> report = asyncio.run(run_intersection(buffer, registry.selected_layers()))
        >>> [s.layer_title for s in report.successes]
        ['Wells']
    """
    layers = tuple(selected_layers)
    validate_run(buffer, layers)

    if settings is None:
        settings = load_query_settings({})

    params = prepare_query_params(buffer, settings)
    semaphore = asyncio.Semaphore(max(1, int(settings.get('max_concurrent_queries', 8))))

    logger.info("=" * 60)
    logger.info(f"Querying {len(layers)} layer(s)")
    logger.info("=" * 60)
    start_time = time.monotonic()

    owns_client = client is None
    if owns_client:
        client = httpx.AsyncClient()
    try:
        outcomes = await asyncio.gather(
            *(_guarded_query(client, layer, params, settings, semaphore) for layer in layers)
        )
    finally:
        if owns_client:
            await client.aclose()

    report = RunReport(outcomes=tuple(outcomes))
    log_run_summary(report, time.monotonic() - start_time)
    return report


def log_run_summary(report: RunReport, elapsed: float) -> None:
    logger.info("=" * 60)
    logger.info("Query Summary")
    logger.info("=" * 60)
    logger.info(f"Total layers queried: {len(report.outcomes)}")
    logger.info(f"Layers with intersections: {len(report.successes)}")
    logger.info(f"Total features found: {report.total_features}")
    logger.info(f"Total query time: {elapsed:.2f} seconds")

    if report.failures:
        logger.warning(f"⚠ {len(report.failures)} layer(s) failed:")
        for failure in report.failures:
            logger.warning(f"  - {failure.layer_title}: {failure.reason}")

    incomplete = [s.layer_title for s in report.successes if s.results_incomplete]
    if incomplete:
        logger.warning(f"⚠ INCOMPLETE RESULTS: {', '.join(incomplete)}")


def validation_status(message: str) -> StatusMessage:
    return StatusMessage(StatusKind.VALIDATION, message)


def summarize_report(report: RunReport) -> StatusMessage:
    """
    Reduce a report to one status line: any failure > nothing found > success.
    """
    if report.failures:
        named = ', '.join(f'"{f.layer_title}" ({f.reason})' for f in report.failures)
        if len(report.failures) == 1:
            text = f"Failed to query {named}."
        else:
            text = f"Failed to query {len(report.failures)} layers: {named}."
        if report.successes:
            text += f" Intersecting features were found in {len(report.successes)} other layer(s)."
        return StatusMessage(StatusKind.FAILURE, text)

    if report.is_empty:
        return StatusMessage(StatusKind.EMPTY, EMPTY_MESSAGE)

    text = (f"Intersection complete: {report.total_features} feature(s) found "
            f"in {len(report.successes)} layer(s).")
    if any(s.results_incomplete for s in report.successes):
        text += " Some layers may have more features than shown."
    return StatusMessage(StatusKind.SUCCESS, text)
