"""
Sketch interaction controller for Buffer Intersect.

Drives the drawing lifecycle on a map context:

    IDLE --start_draw--> DRAWING --complete--> COMPLETING --> IDLE (+ buffer)
                                 --cancel/clear------------> IDLE

The buffer is an orthogonal flag on IDLE. Draw completion arrives later as a
drawing surface callback, so the handler only acts on the draw id it issued
and reads the buffer distance/unit through a provider at completion time.
"""

from enum import Enum
from typing import Callable, Dict, Optional, Union

from core.map_context import CURSOR_DEFAULT, CURSOR_DRAWING, Graphic, MapContext, SketchEvent
from core.models import BufferGeometry, BufferSpec, DrawnGeometry, GeometryKind
from geometry_input.buffering import buffer_geometry, calculate_buffer_area
from utils.logger import get_logger

logger = get_logger(__name__)


class SketchState(str, Enum):
    IDLE = 'idle'
    DRAWING = 'drawing'
    COMPLETING = 'completing'


class SketchController:
    """
    Owns the sketch and buffer graphics of one map context.

    Parameters:
    -----------
    map_context : MapContext
        Bound map providing the display set, cursor and drawing surface
    buffer_spec_provider : Callable[[], BufferSpec]
        Returns the buffer distance/unit in effect right now
    buffer_symbol : Dict, optional
        Symbol for the buffer graphic
    """

    def __init__(self,
                 map_context: MapContext,
                 buffer_spec_provider: Callable[[], BufferSpec],
                 buffer_symbol: Optional[Dict] = None):
        self._map = map_context
        self._spec_provider = buffer_spec_provider
        self._buffer_symbol = buffer_symbol or {}

        self._state = SketchState.IDLE
        self._active_draw_id: Optional[int] = None
        self._buffer: Optional[BufferGeometry] = None
        self._buffer_graphic: Optional[Graphic] = None
        self._buffer_generation = 0

        self._map.sketch.on(self._on_sketch_event)

    @property
    def state(self) -> SketchState:
        return self._state

    @property
    def has_buffer(self) -> bool:
        return self._buffer is not None

    @property
    def buffer(self) -> Optional[BufferGeometry]:
        return self._buffer

    @property
    def buffer_generation(self) -> int:
        """Incremented every time the buffer is replaced or dropped."""
        return self._buffer_generation

    def start_draw(self, kind: Union[str, GeometryKind]) -> Optional[int]:
        """
        Begin a new sketch, discarding the current buffer first.

        Returns the draw id, or None when a sketch is already in progress.

        Raises:
            ValueError: If kind is not point, polyline or polygon
        """
        kind = GeometryKind(kind)

        if self._state is not SketchState.IDLE:
            logger.warning(f"Draw already in progress ({self._state.value}), ignoring start_draw")
            return None

        self._discard_buffer()

        self._active_draw_id = self._map.sketch.create(kind)
        self._state = SketchState.DRAWING
        self._map.set_cursor(CURSOR_DRAWING)
        logger.info(f"Drawing {kind.value}...")
        return self._active_draw_id

    def clear(self) -> None:
        """Cancel any sketch in progress and remove every controller graphic. Idempotent."""
        if self._state is SketchState.DRAWING:
            # Drop the id first so the cancel event emitted below is ignored
            self._active_draw_id = None
            self._map.sketch.cancel()

        self._discard_buffer()
        self._map.display.remove_all()

        self._active_draw_id = None
        self._state = SketchState.IDLE
        self._map.set_cursor(CURSOR_DEFAULT)

    def destroy(self) -> None:
        """Clear and detach from the drawing surface."""
        self.clear()
        self._map.sketch.off(self._on_sketch_event)

    def _discard_buffer(self) -> None:
        if self._buffer_graphic is not None:
            self._map.display.remove(self._buffer_graphic)
        if self._buffer is not None or self._buffer_graphic is not None:
            self._buffer_generation += 1
        self._buffer = None
        self._buffer_graphic = None

    def _on_sketch_event(self, event: SketchEvent) -> None:
        if event.draw_id != self._active_draw_id or self._state is not SketchState.DRAWING:
            logger.debug(f"Ignoring stale sketch event {event.draw_id} ({event.state})")
            if event.graphic is not None:
                self._map.display.remove(event.graphic)
            return

        if event.state == 'cancel':
            logger.info("Drawing cancelled")
            self._active_draw_id = None
            self._state = SketchState.IDLE
            self._map.set_cursor(CURSOR_DEFAULT)
        elif event.state == 'complete':
            self._complete(event)

    def _complete(self, event: SketchEvent) -> None:
        self._state = SketchState.COMPLETING
        self._active_draw_id = None

        try:
            buffer = self._build_buffer(event.drawn)
        finally:
            # The drawn shape is replaced by its buffer, or dropped if none
            if event.graphic is not None:
                self._map.display.remove(event.graphic)
            self._state = SketchState.IDLE
            self._map.set_cursor(CURSOR_DEFAULT)

        if buffer is None:
            return

        self._buffer_generation += 1
        self._buffer = buffer
        self._buffer_graphic = Graphic(geometry=buffer.geometry, role='buffer', symbol=self._buffer_symbol)
        self._map.display.add(self._buffer_graphic)

    def _build_buffer(self, drawn: Optional[DrawnGeometry]) -> Optional[BufferGeometry]:
        if drawn is None:
            logger.warning("Sketch completed without geometry, no buffer produced")
            return None

        try:
            spec = self._spec_provider()
            buffer = buffer_geometry(drawn, spec.distance, spec.unit)
        except ValueError as e:
            logger.error(f"✗ Buffer failed: {e}")
            return None
        except Exception as e:
            logger.error(f"✗ Unexpected buffer error: {e}", exc_info=True)
            return None

        if buffer is None:
            logger.warning("⚠ Buffering produced no geometry")
            return None

        try:
            calculate_buffer_area(buffer)
        except ValueError as e:
            logger.debug(f"Buffer area unavailable: {e}")

        return buffer
