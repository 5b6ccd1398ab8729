"""
ArcGIS FeatureServer query module for Buffer Intersect.

Queries a single FeatureServer layer for the features intersecting a buffer
polygon. Requests are POSTed (the polygon can exceed URI length limits),
attributes only, and every transport or server error is converted into a
PerLayerFailure with a short human-readable reason.

Supports pagination for retrieving features beyond server limits (1000-2000
typical) using resultOffset/resultRecordCount.

Functions:
    build_query_params: Build the intersects query for a buffer polygon
    fetch_oid_field: Look up the ObjectID field used to order paged queries
    query_layer: Query one layer and return its IntersectionOutcome
"""

import time
from typing import Any, Dict, List, Optional, Tuple

import httpx

from core.models import (
    IntersectionOutcome,
    LayerDescriptor,
    PerLayerEmpty,
    PerLayerFailure,
    PerLayerSuccess,
)
from utils.logger import get_logger

logger = get_logger(__name__)

REASON_TIMEOUT = 'timeout'
REASON_QUERY_FAILED = 'query failed'
REASON_INVALID_RESPONSE = 'invalid response'

DEFAULT_OID_FIELD = 'OBJECTID'
COMMON_OID_NAMES = ('OBJECTID', 'FID', 'OID', 'objectid', 'fid', 'oid')


class LayerQueryError(Exception):
    """A layer query failed; reason is safe to show to the user."""

    def __init__(self, reason: str, detail: Optional[str] = None):
        super().__init__(reason)
        self.reason = reason
        self.detail = detail


def build_query_params(esri_polygon_json: str, wkid: int) -> Dict[str, Any]:
    """
    Build the spatial intersection query for a buffer polygon.

    Parameters:
    -----------
    esri_polygon_json : str
        Buffer polygon serialized as ESRI JSON
    wkid : int
        Spatial reference of the polygon coordinates

    Returns:
    --------
    Dict[str, Any]
        Form parameters for the layer's /query endpoint
    """
    return {
        'where': '1=1',
        'geometry': esri_polygon_json,
        'geometryType': 'esriGeometryPolygon',
        'spatialRel': 'esriSpatialRelIntersects',
        'inSR': str(wkid),
        'outFields': '*',
        'returnGeometry': 'false',
        'f': 'json'
    }


def query_url_for(layer: LayerDescriptor) -> str:
    return f"{layer.url.rstrip('/')}/query"


async def _post_query(client: httpx.AsyncClient, query_url: str,
                      params: Dict[str, Any], timeout: float) -> Dict:
    """
    POST one query page and return the decoded JSON.

    Raises:
        LayerQueryError: For timeouts, transport/HTTP errors, non-JSON bodies
            and ESRI error documents
    """
    try:
        response = await client.post(query_url, data=params, timeout=timeout)
        response.raise_for_status()
        result = response.json()
    except httpx.TimeoutException as e:
        raise LayerQueryError(REASON_TIMEOUT, str(e) or type(e).__name__)
    except httpx.HTTPStatusError as e:
        raise LayerQueryError(REASON_QUERY_FAILED, f"HTTP {e.response.status_code}")
    except httpx.HTTPError as e:
        raise LayerQueryError(REASON_QUERY_FAILED, f"{type(e).__name__}: {e}")
    except ValueError as e:
        raise LayerQueryError(REASON_INVALID_RESPONSE, f"Response is not JSON: {e}")

    if not isinstance(result, dict):
        raise LayerQueryError(REASON_INVALID_RESPONSE, f"Unexpected response type {type(result).__name__}")

    # ESRI services report errors with HTTP 200 and an error document
    if 'error' in result:
        error = result['error'] if isinstance(result['error'], dict) else {}
        error_msg = error.get('message') or 'Unknown error'
        raise LayerQueryError(f"endpoint error: {error_msg}", str(result['error']))

    return result


def _extract_records(result: Dict) -> List[Dict[str, Any]]:
    features = result.get('features') or []
    return [dict(feature.get('attributes') or {}) for feature in features]


async def fetch_oid_field(client: httpx.AsyncClient, layer_url: str, timeout: float = 30.0) -> str:
    """
    Look up the ObjectID field of a layer from its metadata endpoint.

    The field typed esriFieldTypeOID wins, then objectIdField, then the
    common ObjectID names. Falls back to OBJECTID when the metadata cannot be
    read.
    """
    metadata_url = layer_url.rstrip('/')
    try:
        response = await client.get(metadata_url, params={'f': 'json'}, timeout=timeout)
        response.raise_for_status()
        data = response.json()
    except (httpx.HTTPError, ValueError) as e:
        logger.debug(f"Layer metadata unavailable for {metadata_url} ({e}), ordering by {DEFAULT_OID_FIELD}")
        return DEFAULT_OID_FIELD

    if not isinstance(data, dict) or 'error' in data:
        logger.debug(f"Layer metadata error for {metadata_url}, ordering by {DEFAULT_OID_FIELD}")
        return DEFAULT_OID_FIELD

    fields = data.get('fields') or []
    for field in fields:
        if field.get('type') == 'esriFieldTypeOID' and field.get('name'):
            return field['name']

    if data.get('objectIdField'):
        return data['objectIdField']

    field_names = [field.get('name', '') for field in fields]
    for common_name in COMMON_OID_NAMES:
        if common_name in field_names:
            return common_name

    return DEFAULT_OID_FIELD


async def fetch_all_records(
    client: httpx.AsyncClient,
    layer_url: str,
    base_params: Dict[str, Any],
    layer_name: str,
    request_timeout: float = 30.0,
    pagination_enabled: bool = True,
    max_pages: int = 10
) -> Tuple[List[Dict[str, Any]], Dict]:
    """
    Fetch every attribute record matching a query, following server paging.

    Offset paging is only consistent under a stable order, so when the first
    answer exceeds the server's transfer limit the query is restarted from
    offset 0 ordered by the layer's ObjectID field, with the first answer's
    size as page size.

    The first request failing raises LayerQueryError. A paged request failing
    keeps the records fetched so far (or the unordered first answer when no
    ordered page arrived) and flags the result as incomplete.

    Returns:
    --------
    Tuple[List[Dict], Dict]
        - Attribute records
        - Pagination metadata dict with keys:
          - pages_fetched: int (ordered pages)
          - oid_field: str | None
          - results_incomplete: bool
          - stopped_reason: str | None
    """
    query_url = f"{layer_url.rstrip('/')}/query"
    pagination = {
        'pages_fetched': 0,
        'oid_field': None,
        'results_incomplete': False,
        'stopped_reason': None
    }

    result = await _post_query(client, query_url, dict(base_params), request_timeout)
    first_records = _extract_records(result)

    if not result.get('exceededTransferLimit', False) or not first_records:
        return first_records, pagination

    if not pagination_enabled:
        logger.warning(f"    ⚠ {layer_name}: server limit reached, pagination disabled in config")
        pagination['results_incomplete'] = True
        pagination['stopped_reason'] = 'pagination_disabled'
        return first_records, pagination

    oid_field = await fetch_oid_field(client, layer_url, request_timeout)
    pagination['oid_field'] = oid_field
    page_size = len(first_records)
    logger.info(f"    - {layer_name}: more than {page_size} features, paginating (OID field: {oid_field})")

    records: List[Dict[str, Any]] = []
    while True:
        params = dict(base_params)
        params['orderByFields'] = oid_field
        params['resultOffset'] = len(records)
        params['resultRecordCount'] = page_size

        try:
            result = await _post_query(client, query_url, params, request_timeout)
        except LayerQueryError as e:
            logger.warning(f"    ⚠ {layer_name}: page {pagination['pages_fetched'] + 1} failed ({e.reason})")
            pagination['results_incomplete'] = True
            pagination['stopped_reason'] = e.reason
            if not records:
                records = first_records
            break

        page_records = _extract_records(result)
        records.extend(page_records)
        pagination['pages_fetched'] += 1

        if not result.get('exceededTransferLimit', False) or not page_records:
            break

        if pagination['pages_fetched'] >= max_pages:
            logger.warning(
                f"    ⚠ {layer_name}: maximum pagination limit ({max_pages} pages) reached. "
                f"Additional features may exist."
            )
            pagination['results_incomplete'] = True
            pagination['stopped_reason'] = 'max_pages'
            break

        logger.debug(f"    - {layer_name}: page {pagination['pages_fetched']} "
                     f"({len(page_records)} records, more available)")

    return records, pagination


async def query_layer(
    client: httpx.AsyncClient,
    layer: LayerDescriptor,
    base_params: Dict[str, Any],
    settings: Dict
) -> IntersectionOutcome:
    """
    Query one FeatureServer layer for features intersecting the buffer.

    Never raises for query problems: the outcome is PerLayerSuccess when at
    least one feature matched, PerLayerEmpty when none did, and
    PerLayerFailure when the query itself failed.

    Parameters:
    -----------
    client : httpx.AsyncClient
        Shared HTTP client
    layer : LayerDescriptor
        Layer to query
    base_params : Dict[str, Any]
        Output of build_query_params (shared by all layers of a run)
    settings : Dict
        Query settings (see config_loader.load_query_settings)
    """
    query_url = query_url_for(layer)
    start_time = time.monotonic()
    logger.info(f"  Querying {layer.title}...")
    logger.debug(f"Querying: {query_url}")

    try:
        records, pagination = await fetch_all_records(
            client,
            layer.url,
            base_params,
            layer_name=layer.title,
            request_timeout=settings.get('request_timeout', 30.0),
            pagination_enabled=settings.get('pagination_enabled', True),
            max_pages=settings.get('pagination_max_pages', 10)
        )
    except LayerQueryError as e:
        logger.error(f"    ✗ {layer.title}: {e.reason}")
        logger.debug(f"    {layer.title} error detail: {e.detail}")
        return PerLayerFailure(layer_id=layer.id, layer_title=layer.title, reason=e.reason)

    elapsed = time.monotonic() - start_time

    if not records:
        logger.info(f"    - {layer.title}: no intersecting features ({elapsed:.2f}s)")
        return PerLayerEmpty(layer_id=layer.id, layer_title=layer.title)

    logger.info(f"    ✓ {layer.title}: found {len(records)} intersecting features ({elapsed:.2f}s)")
    return PerLayerSuccess(
        layer_id=layer.id,
        layer_title=layer.title,
        records=tuple(records),
        results_incomplete=pagination['results_incomplete']
    )
