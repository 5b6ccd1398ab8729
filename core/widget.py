"""
Buffer Intersect widget: the presentation boundary.

Binds a map context, wires the layer registry and the sketch controller to it,
and exposes the commands a UI sends (start_draw, clear, toggle_layer,
run_intersection) together with read-only snapshots of the state it renders.

Exactly one status line is shown at a time. Its precedence is
validation failure > query failure > nothing found > success.
"""

from typing import Dict, Optional, Tuple, Union

import httpx

from config.config_loader import load_buffer_settings, load_query_settings, load_symbol_settings
from core.layer_processor import run_intersection, summarize_report, validation_status
from core.layer_registry import LayerRegistry
from core.map_context import MapContext
from core.models import (
    BufferSpec,
    BufferUnit,
    GeometryKind,
    LayerDescriptor,
    QueryValidationError,
    RunReport,
    StatusMessage,
)
from core.sketch_controller import SketchController, SketchState
from utils.logger import get_logger

logger = get_logger(__name__)

NO_MAP_MESSAGE = 'Please connect this widget to a map.'


class BufferIntersectWidget:
    """
    Draw -> buffer -> intersect session for one map.

    Parameters:
    -----------
    config : Dict, optional
        Widget configuration (see config_loader.load_config); built-in
        defaults are used for missing sections
    client : httpx.AsyncClient, optional
        HTTP client reused for every run
    """

    def __init__(self, config: Optional[Dict] = None, client: Optional[httpx.AsyncClient] = None):
        config = config if config is not None else {}
        buffer_settings = load_buffer_settings(config)
        self._query_settings = load_query_settings(config)
        self._symbols = load_symbol_settings(config)
        self._client = client

        self._buffer_spec = BufferSpec.create(buffer_settings['default_distance'],
                                              buffer_settings['default_unit'])
        self.geometry_kind = GeometryKind(buffer_settings['default_geometry_kind'])

        self._map: Optional[MapContext] = None
        self._registry = LayerRegistry()
        self._controller: Optional[SketchController] = None
        self._report: Optional[RunReport] = None
        self._status: Optional[StatusMessage] = None
        self._run_sequence = 0

    # Map context binding

    @property
    def map_context(self) -> Optional[MapContext]:
        return self._map

    def bind_map_context(self, map_context: Optional[MapContext]) -> None:
        """
        Bind (or rebind) the map. The previous drawing tooling, registry,
        selection, report and status are torn down and rebuilt from scratch.
        """
        if self._controller is not None:
            self._controller.destroy()
            self._controller = None

        self._map = map_context
        self._report = None
        self._status = None
        self._run_sequence += 1

        self._registry.bind(map_context)
        if map_context is None:
            logger.info("Map context unbound")
            return

        self._controller = SketchController(
            map_context,
            buffer_spec_provider=lambda: self._buffer_spec,
            buffer_symbol=self._symbols.get('buffer')
        )
        logger.info(f"Map context bound: {map_context.title or 'untitled map'} (wkid {map_context.wkid})")

    # Buffer spec

    @property
    def buffer_spec(self) -> BufferSpec:
        return self._buffer_spec

    def set_buffer_distance(self, distance: float) -> None:
        """Raises BufferSpecError for negative or non-finite distances."""
        self._buffer_spec = BufferSpec.create(distance, self._buffer_spec.unit)

    def set_buffer_unit(self, unit: Union[str, BufferUnit]) -> None:
        """Raises BufferSpecError for unknown units."""
        self._buffer_spec = BufferSpec.create(self._buffer_spec.distance, unit)

    # Snapshots

    @property
    def available_layers(self) -> Tuple[LayerDescriptor, ...]:
        return self._registry.available_layers

    @property
    def selected_layer_ids(self) -> Tuple[str, ...]:
        return self._registry.selected_layer_ids

    @property
    def sketch_state(self) -> SketchState:
        if self._controller is None:
            return SketchState.IDLE
        return self._controller.state

    @property
    def has_buffer(self) -> bool:
        return self._controller is not None and self._controller.has_buffer

    @property
    def report(self) -> Optional[RunReport]:
        return self._report

    @property
    def status(self) -> Optional[StatusMessage]:
        return self._status

    # Commands

    def start_draw(self, kind: Union[str, GeometryKind, None] = None) -> Optional[int]:
        """Start drawing (defaults to the configured geometry kind); returns the draw id."""
        if self._controller is None:
            logger.warning(NO_MAP_MESSAGE)
            return None

        kind = self.geometry_kind if kind is None else GeometryKind(kind)

        # A draw rejected mid-sketch leaves the visible state alone
        draw_id = self._controller.start_draw(kind)
        if draw_id is not None:
            self.geometry_kind = kind
            self._status = None
            self._report = None
        return draw_id

    def clear(self) -> None:
        if self._controller is not None:
            self._controller.clear()
        self._status = None
        self._report = None

    def toggle_layer(self, layer_id: str) -> bool:
        return self._registry.toggle(layer_id)

    def is_layer_selected(self, layer_id: str) -> bool:
        return self._registry.is_selected(layer_id)

    def select_all_layers(self) -> None:
        self._registry.select_all()

    def select_no_layers(self) -> None:
        self._registry.select_none()

    def select_layers(self, layer_ids) -> None:
        """Replace the selection; unknown ids are ignored."""
        self._registry.select_only(layer_ids)

    async def run_intersection(self) -> StatusMessage:
        """
        Intersect the current buffer with the selected layers.

        Buffer and selection are snapshotted when the run starts. The report
        and status are replaced as a whole once every layer has settled; a run
        overtaken by a newer run, a new buffer or a rebind publishes nothing.

        Returns:
        --------
        StatusMessage
            Status line for this run (also available as self.status)
        """
        self._run_sequence += 1
        run_id = self._run_sequence

        if self._controller is None:
            self._status = validation_status(NO_MAP_MESSAGE)
            return self._status

        controller = self._controller
        buffer = controller.buffer
        generation = controller.buffer_generation
        layers = self._registry.selected_layers()

        logger.info(f"Intersection run {run_id}: {len(layers)} layer(s) selected")

        try:
            report = await run_intersection(buffer, layers, self._query_settings, client=self._client)
        except QueryValidationError as e:
            logger.info(f"  - Run not started: {e}")
            status = validation_status(str(e))
            if run_id == self._run_sequence:
                self._status = status
            return status

        status = summarize_report(report)

        stale = (
            run_id != self._run_sequence
            or controller is not self._controller
            or controller.buffer_generation != generation
        )
        if stale:
            logger.info(f"  - Run {run_id} superseded, report discarded")
            return status

        self._report = report
        self._status = status
        logger.info(status.text)
        return status
