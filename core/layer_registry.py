"""
Layer registry for Buffer Intersect.

Discovers the queryable remote feature layers of a bound map context and keeps
the user's selection. Selection is opt-out: every discovered layer starts
selected.

Functions:
    is_queryable_layer: Decide whether a map layer can be intersected
    discover: Collect LayerDescriptors from a map context

Classes:
    LayerRegistry: Available layers plus the selection set
"""

from typing import Iterable, List, Optional, Set, Tuple
from urllib.parse import urlparse

from core.map_context import MapContext, MapLayer
from core.models import LayerDescriptor
from utils.logger import get_logger

logger = get_logger(__name__)

REMOTE_SCHEMES = ('http', 'https')


def is_queryable_layer(layer: MapLayer) -> bool:
    """
    A layer is queryable when it is feature-typed, backed by a remote http(s)
    endpoint, and does not advertise a capability list lacking 'Query'.
    """
    if layer.layer_type != 'feature' or not layer.url:
        return False
    if urlparse(layer.url).scheme.lower() not in REMOTE_SCHEMES:
        return False
    if layer.capabilities is not None:
        return any(c.lower() == 'query' for c in layer.capabilities)
    return True


def discover(map_context: MapContext) -> Tuple[LayerDescriptor, ...]:
    """
    Collect the queryable layers of a map context in discovery order.

    Non-feature, local and non-queryable layers are skipped silently. A layer
    without a title is listed under its id. Duplicate ids keep the first entry.
    """
    descriptors: List[LayerDescriptor] = []
    seen: Set[str] = set()

    for layer in map_context.all_layers():
        if not is_queryable_layer(layer):
            logger.debug(f"  - Skipping layer {layer.id} ({layer.layer_type})")
            continue
        if layer.id in seen:
            logger.warning(f"Duplicate layer id {layer.id}, keeping first occurrence")
            continue
        seen.add(layer.id)
        descriptors.append(LayerDescriptor(
            id=layer.id,
            title=layer.title or layer.id,
            url=layer.url.rstrip('/')
        ))

    return tuple(descriptors)


class LayerRegistry:
    """
    Available layers of the bound map context and the selected subset.

    Rebinding replaces both; nothing carries over from a previous map.
    """

    def __init__(self):
        self._available: Tuple[LayerDescriptor, ...] = ()
        self._selected: Set[str] = set()

    def bind(self, map_context: Optional[MapContext]) -> Tuple[LayerDescriptor, ...]:
        if map_context is None:
            self._available = ()
        else:
            self._available = discover(map_context)
        self._selected = {layer.id for layer in self._available}

        logger.info(f"Available feature layers: {len(self._available)}")
        for layer in self._available:
            logger.debug(f"  - {layer.title} ({layer.url})")

        return self._available

    @property
    def available_layers(self) -> Tuple[LayerDescriptor, ...]:
        return self._available

    @property
    def selected_layer_ids(self) -> Tuple[str, ...]:
        """Selected ids in registry order."""
        return tuple(layer.id for layer in self._available if layer.id in self._selected)

    def selected_layers(self) -> Tuple[LayerDescriptor, ...]:
        """Snapshot of selected descriptors in registry order."""
        return tuple(layer for layer in self._available if layer.id in self._selected)

    def is_selected(self, layer_id: str) -> bool:
        return layer_id in self._selected

    def toggle(self, layer_id: str) -> bool:
        """
        Flip the selection of one layer.

        Returns False (and changes nothing) for ids that were never discovered.
        """
        if not any(layer.id == layer_id for layer in self._available):
            logger.warning(f"Ignoring toggle of unknown layer id: {layer_id}")
            return False

        if layer_id in self._selected:
            self._selected.discard(layer_id)
        else:
            self._selected.add(layer_id)
        return True

    def select_all(self) -> None:
        self._selected = {layer.id for layer in self._available}

    def select_none(self) -> None:
        self._selected = set()

    def select_only(self, layer_ids: Iterable[str]) -> None:
        """Replace the selection with the known ids among layer_ids."""
        wanted = set(layer_ids)
        known = {layer.id for layer in self._available}
        for unknown in sorted(wanted - known):
            logger.warning(f"Ignoring selection of unknown layer id: {unknown}")
        self._selected = wanted & known
