"""
Map context boundary for Buffer Intersect.

The rendering surface is external; this module models only what the pipeline
touches: the layer collection, the display set of graphics, the cursor mode
and the drawing surface that reports finished sketches. A map context can be
built directly, from an ArcGIS web map JSON document, or fetched from a portal.

Classes:
    MapLayer: Layer entry in the map's layer collection
    Graphic: Display artifact (sketch or buffer) with its symbol
    GraphicsLayer: Display set the controller adds to and removes from
    SketchEvent: Drawing surface notification
    SketchSurface: Drawing surface issuing draws and reporting completion
    MapContext: Bound map context handed to the widget

Functions:
    fetch_webmap: Download web map JSON from a portal item
    load_webmap_file: Read web map JSON from disk
"""

import itertools
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple, Union

import requests
from shapely.geometry.base import BaseGeometry

from core.models import DrawnGeometry, GeometryKind
from utils.geometry_converters import esri_spatial_reference, esri_to_shapely
from utils.logger import get_logger

logger = get_logger(__name__)

CURSOR_DEFAULT = 'default'
CURSOR_DRAWING = 'crosshair'

# Web map layerType -> layer type tag
WEBMAP_LAYER_TYPES = {
    'ArcGISFeatureLayer': 'feature',
    'GroupLayer': 'group',
    'ArcGISMapServiceLayer': 'map-image',
    'ArcGISTiledMapServiceLayer': 'tile',
    'VectorTileLayer': 'vector-tile',
    'ArcGISImageServiceLayer': 'imagery',
    'CSV': 'csv',
    'GeoJSON': 'geojson',
}


@dataclass(frozen=True)
class MapLayer:
    id: str
    layer_type: str
    title: Optional[str] = None
    url: Optional[str] = None
    capabilities: Optional[Tuple[str, ...]] = None
    sublayers: Tuple['MapLayer', ...] = ()


@dataclass(eq=False)
class Graphic:
    """A display artifact. Identity matters: removal targets this exact object."""

    geometry: BaseGeometry
    role: str
    symbol: Dict[str, Any] = field(default_factory=dict)


class GraphicsLayer:
    """Ordered display set of graphics."""

    def __init__(self):
        self._graphics: List[Graphic] = []

    @property
    def graphics(self) -> Tuple[Graphic, ...]:
        return tuple(self._graphics)

    def add(self, graphic: Graphic) -> None:
        if not any(g is graphic for g in self._graphics):
            self._graphics.append(graphic)

    def remove(self, graphic: Graphic) -> bool:
        for i, existing in enumerate(self._graphics):
            if existing is graphic:
                del self._graphics[i]
                return True
        return False

    def remove_all(self) -> None:
        self._graphics.clear()

    def __contains__(self, graphic: Graphic) -> bool:
        return any(g is graphic for g in self._graphics)

    def __len__(self) -> int:
        return len(self._graphics)


@dataclass(frozen=True)
class SketchEvent:
    """
    Drawing surface notification.

    state is 'complete' or 'cancel'; graphic and drawn are set on completion.
    """

    draw_id: int
    state: str
    graphic: Optional[Graphic] = None
    drawn: Optional[DrawnGeometry] = None


SketchHandler = Callable[[SketchEvent], None]


class SketchSurface:
    """
    Drawing surface of the host map.

    create() starts a sketch and returns its draw id; the host calls
    complete() once the user finishes it. Only one sketch is active at a time,
    so starting a new one supersedes the previous id.
    """

    def __init__(self, display: GraphicsLayer, wkid: int = 4326,
                 symbols: Optional[Dict[str, Dict]] = None):
        self._display = display
        self._wkid = wkid
        self._symbols = symbols or {}
        self._handlers: List[SketchHandler] = []
        self._ids = itertools.count(1)
        self.active_draw_id: Optional[int] = None
        self.active_kind: Optional[GeometryKind] = None

    def on(self, handler: SketchHandler) -> None:
        self._handlers.append(handler)

    def off(self, handler: SketchHandler) -> None:
        if handler in self._handlers:
            self._handlers.remove(handler)

    def create(self, kind: Union[str, GeometryKind]) -> int:
        self.active_kind = GeometryKind(kind)
        self.active_draw_id = next(self._ids)
        logger.debug(f"Sketch {self.active_draw_id} started ({self.active_kind.value})")
        return self.active_draw_id

    def cancel(self) -> None:
        if self.active_draw_id is None:
            return
        draw_id = self.active_draw_id
        self.active_draw_id = None
        self.active_kind = None
        self._emit(SketchEvent(draw_id=draw_id, state='cancel'))

    def complete(self, geometry: Union[BaseGeometry, Dict]) -> Optional[Graphic]:
        """
        Finish the active sketch with the shape the user drew.

        Accepts a Shapely geometry (in the map's spatial reference) or an ESRI
        JSON geometry. The sketch graphic is added to the display set before
        handlers are notified, like an interactive sketch would be.
        """
        if self.active_draw_id is None:
            logger.warning("Sketch completion received with no active draw, ignoring")
            return None

        if isinstance(geometry, dict):
            wkid = esri_spatial_reference(geometry, default=self._wkid)
            shape = esri_to_shapely(geometry)
            if shape is None:
                raise ValueError(f"Unsupported ESRI geometry: {sorted(geometry)}")
        else:
            wkid = self._wkid
            shape = geometry

        drawn = DrawnGeometry.from_shapely(shape, wkid=wkid)
        graphic = Graphic(geometry=shape, role='sketch',
                          symbol=self._symbols.get(drawn.kind.value, {}))
        self._display.add(graphic)

        draw_id = self.active_draw_id
        self.active_draw_id = None
        self.active_kind = None
        self._emit(SketchEvent(draw_id=draw_id, state='complete', graphic=graphic, drawn=drawn))
        return graphic

    def _emit(self, event: SketchEvent) -> None:
        for handler in list(self._handlers):
            handler(event)


class MapContext:
    """
    A bound map: layer collection, display set, cursor and drawing surface.
    """

    def __init__(self, layers: List[MapLayer], wkid: int = 4326,
                 title: Optional[str] = None, symbols: Optional[Dict[str, Dict]] = None):
        self.layers = tuple(layers)
        self.wkid = wkid
        self.title = title
        self.display = GraphicsLayer()
        self.sketch = SketchSurface(self.display, wkid=wkid, symbols=symbols)
        self.cursor = CURSOR_DEFAULT

    def set_cursor(self, cursor: str) -> None:
        self.cursor = cursor

    def all_layers(self) -> Iterator[MapLayer]:
        """Yield every layer depth-first, group layers before their children."""
        def walk(layers):
            for layer in layers:
                yield layer
                yield from walk(layer.sublayers)
        return walk(self.layers)

    @classmethod
    def from_webmap(cls, webmap: Dict, symbols: Optional[Dict[str, Dict]] = None) -> 'MapContext':
        """
        Build a map context from ArcGIS web map JSON.

        Operational layers become MapLayers; GroupLayer children are kept as
        sublayers. The map's spatial reference comes from the base map section.
        """
        layers = [_parse_webmap_layer(entry) for entry in webmap.get('operationalLayers', [])]
        wkid = esri_spatial_reference(webmap, default=4326)
        title = (webmap.get('item') or {}).get('title') or webmap.get('title')
        logger.debug(f"Web map parsed: {len(layers)} operational layer(s), wkid {wkid}")
        return cls(layers, wkid=wkid, title=title, symbols=symbols)


def _parse_webmap_layer(entry: Dict) -> MapLayer:
    layer_type = WEBMAP_LAYER_TYPES.get(entry.get('layerType'), str(entry.get('layerType', 'unknown')).lower())

    capabilities = entry.get('capabilities')
    if isinstance(capabilities, str):
        capabilities = tuple(c.strip() for c in capabilities.split(',') if c.strip())
    elif capabilities is not None:
        capabilities = tuple(capabilities)

    return MapLayer(
        id=str(entry.get('id')),
        layer_type=layer_type,
        title=entry.get('title'),
        url=entry.get('url'),
        capabilities=capabilities,
        sublayers=tuple(_parse_webmap_layer(child) for child in entry.get('layers', []))
    )


def fetch_webmap(item_id: str, portal_url: str = 'https://www.arcgis.com', timeout: int = 30) -> Dict:
    """
    Download a web map's JSON definition from a portal.

    Parameters:
    -----------
    item_id : str
        Portal item id of the web map
    portal_url : str
        Portal base URL
    timeout : int
        Request timeout in seconds

    Returns:
    --------
    Dict
        Web map JSON

    Raises:
    -------
    ValueError
        If the portal answers with an error document
    requests.exceptions.RequestException
        On transport errors
    """
    data_url = f"{portal_url.rstrip('/')}/sharing/rest/content/items/{item_id}/data"
    logger.info(f"Fetching web map {item_id} from {portal_url}")

    response = requests.get(data_url, params={'f': 'json'}, timeout=timeout)
    response.raise_for_status()
    data = response.json()

    if 'error' in data:
        error_msg = data['error'].get('message', 'Unknown error')
        raise ValueError(f"Web map request failed: {error_msg}")

    return data


def load_webmap_file(path: Union[str, Path]) -> Dict:
    with open(path, 'r', encoding='utf-8') as f:
        return json.load(f)
