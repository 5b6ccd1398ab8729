"""Shared fixtures: a small web map, a bound map context and fake FeatureServer endpoints."""

import asyncio
import json
from typing import Callable, Dict, List
from urllib.parse import parse_qs

import httpx
import pytest
from shapely.geometry import Point

from core.map_context import MapContext
from core.models import DrawnGeometry
from geometry_input.buffering import buffer_geometry

WELLS_URL = 'https://services.example.com/arcgis/rest/services/Wells/FeatureServer/0'
PARCELS_URL = 'https://services.example.com/arcgis/rest/services/Parcels/FeatureServer/0'
ROADS_URL = 'https://services.example.com/arcgis/rest/services/Roads/FeatureServer/1'


@pytest.fixture
def webmap() -> Dict:
    return {
        'operationalLayers': [
            {'id': 'wells', 'title': 'Wells', 'layerType': 'ArcGISFeatureLayer', 'url': WELLS_URL},
            {'id': 'basemap-tiles', 'title': 'Hillshade', 'layerType': 'ArcGISTiledMapServiceLayer',
             'url': 'https://tiles.example.com/MapServer'},
            {
                'id': 'cadastre', 'title': 'Cadastre', 'layerType': 'GroupLayer',
                'layers': [
                    {'id': 'parcels', 'title': 'Parcels', 'layerType': 'ArcGISFeatureLayer', 'url': PARCELS_URL},
                    {'id': 'sketches', 'layerType': 'ArcGISFeatureLayer'},
                ]
            },
            {'id': 'roads', 'layerType': 'ArcGISFeatureLayer', 'url': ROADS_URL + '/'},
            {'id': 'edits-only', 'title': 'Edits', 'layerType': 'ArcGISFeatureLayer',
             'url': 'https://services.example.com/arcgis/rest/services/Edits/FeatureServer/0',
             'capabilities': 'Create,Update'},
            {'id': 'local', 'title': 'Local file', 'layerType': 'ArcGISFeatureLayer',
             'url': 'file:///tmp/local.json'},
        ],
        'spatialReference': {'wkid': 4326},
    }


@pytest.fixture
def map_context(webmap) -> MapContext:
    return MapContext.from_webmap(webmap)


@pytest.fixture
def point_buffer():
    drawn = DrawnGeometry.from_shapely(Point(-72.58, 44.26), wkid=4326)
    return buffer_geometry(drawn, 100, 'meters')


def features(*attribute_dicts) -> Dict:
    return {'features': [{'attributes': attrs} for attrs in attribute_dicts]}


class FakeFeatureServer:
    """
    Routes /query POSTs to per-layer handlers and records every request.
    Layer metadata GETs are answered from documents registered with
    metadata(), or with a 404.

    A handler receives the decoded form parameters and returns a JSON-able
    dict, an httpx.Response, or raises (e.g. httpx.ConnectError). Async
    handlers are awaited.
    """

    def __init__(self):
        self.routes: Dict[str, Callable] = {}
        self.requests: List[Dict] = []
        self.layer_metadata: Dict[str, Dict] = {}
        self.metadata_requests: List[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    def route(self, layer_url: str, handler: Callable) -> None:
        self.routes[layer_url.rstrip('/') + '/query'] = handler

    def metadata(self, layer_url: str, document: Dict) -> None:
        self.layer_metadata[layer_url.rstrip('/')] = document

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.method == 'GET':
            layer_url = str(request.url).split('?')[0]
            self.metadata_requests.append(layer_url)
            if layer_url not in self.layer_metadata:
                return httpx.Response(404, json={'error': {'code': 404, 'message': 'Not found'}})
            return httpx.Response(200, json=self.layer_metadata[layer_url])

        params = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
        url = str(request.url)
        self.requests.append({'url': url, 'params': params})

        handler = self.routes.get(url)
        if handler is None:
            return httpx.Response(404, json={'error': {'code': 404, 'message': 'Not found'}})

        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            result = handler(params)
            if asyncio.iscoroutine(result):
                result = await result
        finally:
            self.in_flight -= 1

        if isinstance(result, httpx.Response):
            return result
        return httpx.Response(200, content=json.dumps(result).encode(),
                              headers={'content-type': 'application/json'})

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


@pytest.fixture
def server() -> FakeFeatureServer:
    return FakeFeatureServer()


def unreachable(params):
    raise httpx.ConnectError('Connection refused')
