"""
Data model for the draw -> buffer -> intersect pipeline.

All value types are frozen dataclasses: a drawn geometry, a buffer and a run
report are snapshots that later interaction replaces rather than mutates.

Types:
    GeometryKind, BufferUnit: enumerations of drawable kinds and distance units
    DrawnGeometry: sketch finished by the user
    BufferSpec: validated (distance, unit) pair
    BufferGeometry: polygon derived from a DrawnGeometry and a BufferSpec
    LayerDescriptor: queryable remote feature layer
    PerLayerSuccess / PerLayerEmpty / PerLayerFailure: per-layer outcomes
    RunReport: aggregate of one intersection run
    StatusMessage: the single status line shown to the user
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union

from shapely.geometry.base import BaseGeometry

from utils.geometry_converters import shapely_to_esri_polygon


class BufferSpecError(ValueError):
    """Raised when a buffer distance or unit is rejected before buffering."""


class QueryValidationError(ValueError):
    """Raised when an intersection run cannot start (no buffer, no layers)."""


class GeometryKind(str, Enum):
    POINT = 'point'
    POLYLINE = 'polyline'
    POLYGON = 'polygon'


class BufferUnit(str, Enum):
    """Linear units accepted for buffer distances."""

    METERS = 'meters'
    KILOMETERS = 'kilometers'
    FEET = 'feet'
    MILES = 'miles'

    @property
    def meters_per_unit(self) -> float:
        return _METERS_PER_UNIT[self]

    def to_meters(self, distance: float) -> float:
        return distance * self.meters_per_unit

    @classmethod
    def parse(cls, value: Union[str, 'BufferUnit']) -> 'BufferUnit':
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            allowed = ', '.join(u.value for u in cls)
            raise BufferSpecError(f"Unsupported buffer unit '{value}' (expected one of: {allowed})")


_METERS_PER_UNIT = {
    BufferUnit.METERS: 1.0,
    BufferUnit.KILOMETERS: 1000.0,
    BufferUnit.FEET: 0.3048,
    BufferUnit.MILES: 1609.344,
}

_KIND_BY_GEOM_TYPE = {
    'Point': GeometryKind.POINT,
    'MultiPoint': GeometryKind.POINT,
    'LineString': GeometryKind.POLYLINE,
    'MultiLineString': GeometryKind.POLYLINE,
    'Polygon': GeometryKind.POLYGON,
    'MultiPolygon': GeometryKind.POLYGON,
}


def validate_distance(distance: Any) -> float:
    """Return distance as a float, raising BufferSpecError unless finite and non-negative."""
    if isinstance(distance, bool):
        raise BufferSpecError(f"Buffer distance must be a number, got {distance!r}")
    try:
        value = float(distance)
    except (TypeError, ValueError):
        raise BufferSpecError(f"Buffer distance must be a number, got {distance!r}")
    if not math.isfinite(value) or value < 0:
        raise BufferSpecError(f"Buffer distance must be finite and non-negative, got {distance!r}")
    return value


@dataclass(frozen=True)
class DrawnGeometry:
    """A finished sketch: the shape and the spatial reference it was drawn in."""

    kind: GeometryKind
    geometry: BaseGeometry
    wkid: int = 4326

    @classmethod
    def from_shapely(cls, geometry: BaseGeometry, wkid: int = 4326) -> 'DrawnGeometry':
        kind = _KIND_BY_GEOM_TYPE.get(geometry.geom_type)
        if kind is None:
            raise ValueError(f"Cannot draw a {geometry.geom_type} geometry")
        return cls(kind=kind, geometry=geometry, wkid=wkid)


@dataclass(frozen=True)
class BufferSpec:
    distance: float
    unit: BufferUnit

    @classmethod
    def create(cls, distance: Any, unit: Union[str, BufferUnit]) -> 'BufferSpec':
        return cls(distance=validate_distance(distance), unit=BufferUnit.parse(unit))

    def describe(self) -> str:
        return f"{self.distance:g} {self.unit.value}"


@dataclass(frozen=True)
class BufferGeometry:
    """Buffer polygon in the spatial reference of the geometry it was built from."""

    geometry: BaseGeometry
    wkid: int
    spec: Optional[BufferSpec] = None

    def to_esri_json(self) -> Optional[Dict]:
        return shapely_to_esri_polygon(self.geometry, wkid=self.wkid)


@dataclass(frozen=True)
class LayerDescriptor:
    id: str
    title: str
    url: str


@dataclass(frozen=True)
class PerLayerSuccess:
    layer_id: str
    layer_title: str
    records: Tuple[Dict[str, Any], ...]
    results_incomplete: bool = False

    @property
    def feature_count(self) -> int:
        return len(self.records)


@dataclass(frozen=True)
class PerLayerEmpty:
    layer_id: str
    layer_title: str


@dataclass(frozen=True)
class PerLayerFailure:
    layer_id: str
    layer_title: str
    reason: str


IntersectionOutcome = Union[PerLayerSuccess, PerLayerEmpty, PerLayerFailure]


@dataclass(frozen=True)
class RunReport:
    """
    Aggregate of one intersection run.

    outcomes holds exactly one entry per queried layer in selection order;
    successes and failures are the ordered sub-sequences of that list.
    """

    outcomes: Tuple[IntersectionOutcome, ...]
    successes: Tuple[PerLayerSuccess, ...] = field(init=False)
    failures: Tuple[PerLayerFailure, ...] = field(init=False)

    def __post_init__(self):
        outcomes = tuple(self.outcomes)
        object.__setattr__(self, 'outcomes', outcomes)
        object.__setattr__(self, 'successes', tuple(o for o in outcomes if isinstance(o, PerLayerSuccess)))
        object.__setattr__(self, 'failures', tuple(o for o in outcomes if isinstance(o, PerLayerFailure)))

    @property
    def is_empty(self) -> bool:
        return not self.successes and not self.failures

    @property
    def total_features(self) -> int:
        return sum(s.feature_count for s in self.successes)


class StatusKind(str, Enum):
    VALIDATION = 'validation'
    FAILURE = 'failure'
    EMPTY = 'empty'
    SUCCESS = 'success'


@dataclass(frozen=True)
class StatusMessage:
    kind: StatusKind
    text: str
