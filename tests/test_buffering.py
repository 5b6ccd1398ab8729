import math

import pytest
from shapely.geometry import LineString, Point, Polygon

from core.models import BufferSpecError, BufferUnit, DrawnGeometry, GeometryKind
from geometry_input import buffering
from geometry_input.buffering import (
    buffer_geometry,
    calculate_buffer_area,
    crs_from_wkid,
    repair_invalid_geometry,
)

VERMONT = Point(-72.58, 44.26)


def drawn_point(point=VERMONT, wkid=4326):
    return DrawnGeometry.from_shapely(point, wkid=wkid)


def test_point_buffer_is_polygon_around_point():
    buffer = buffer_geometry(drawn_point(), 100, 'meters')

    assert buffer is not None
    assert buffer.geometry.geom_type == 'Polygon'
    assert buffer.geometry.contains(VERMONT)
    assert buffer.wkid == 4326
    assert buffer.spec.unit is BufferUnit.METERS


def test_point_buffer_area_matches_radius():
    buffer = buffer_geometry(drawn_point(), 100, 'meters')
    area = calculate_buffer_area(buffer)

    expected_sq_km = math.pi * 100 ** 2 / 1e6
    assert area['area_sq_km'] == pytest.approx(expected_sq_km, rel=0.03)


@pytest.mark.parametrize('distance, unit, meters', [
    (1, 'kilometers', 1000),
    (1000, 'feet', 304.8),
    (0.5, 'miles', 804.672),
])
def test_units_are_converted_to_meters(distance, unit, meters):
    in_unit = buffer_geometry(drawn_point(), distance, unit)
    in_meters = buffer_geometry(drawn_point(), meters, 'meters')

    assert in_unit.geometry.area == pytest.approx(in_meters.geometry.area, rel=1e-6)


def test_unit_enum_is_accepted():
    buffer = buffer_geometry(drawn_point(), 10, BufferUnit.FEET)
    assert buffer.spec.unit is BufferUnit.FEET


@pytest.mark.parametrize('geometry', [
    VERMONT,
    LineString([(-72.58, 44.26), (-72.58, 44.26)]),
    LineString([(-72.58, 44.26), (-72.57, 44.27)]),
])
def test_zero_distance_on_point_or_line_produces_no_buffer(geometry):
    assert buffer_geometry(DrawnGeometry.from_shapely(geometry), 0, 'meters') is None


def test_zero_distance_on_polygon_keeps_its_area():
    square = Polygon([(-72.6, 44.2), (-72.5, 44.2), (-72.5, 44.3), (-72.6, 44.3)])
    buffer = buffer_geometry(DrawnGeometry.from_shapely(square), 0, 'meters')

    assert buffer is not None
    assert buffer.geometry.area == pytest.approx(square.area, rel=1e-4)


@pytest.mark.parametrize('distance', [-1, float('nan'), float('inf'), 'far', None, True])
def test_invalid_distance_is_rejected(distance):
    with pytest.raises(BufferSpecError):
        buffer_geometry(drawn_point(), distance, 'meters')


def test_unknown_unit_is_rejected():
    with pytest.raises(BufferSpecError):
        buffer_geometry(drawn_point(), 10, 'yards')


@pytest.mark.parametrize('geometry', [
    VERMONT,
    LineString([(-72.6, 44.2), (-72.5, 44.3)]),
    Polygon([(-72.6, 44.2), (-72.5, 44.2), (-72.5, 44.3)]),
])
@pytest.mark.parametrize('distance', [0, 1, 250.5, 5000])
@pytest.mark.parametrize('unit', list(BufferUnit))
def test_valid_input_yields_polygon_or_none(geometry, distance, unit):
    buffer = buffer_geometry(DrawnGeometry.from_shapely(geometry), distance, unit)
    assert buffer is None or buffer.geometry.geom_type in ('Polygon', 'MultiPolygon')


def test_web_mercator_geometry_is_buffered_in_its_own_reference():
    # Roughly the same Vermont location in EPSG:3857 meters
    point = Point(-8079606.0, 5505543.0)
    buffer = buffer_geometry(drawn_point(point, wkid=102100), 50, 'meters')

    assert buffer.wkid == 102100
    minx, miny, maxx, maxy = buffer.geometry.bounds
    # Web Mercator inflates distances by 1/cos(lat), about 1.4 at 44°N
    assert 60 < (maxx - minx) / 2 < 80
    assert buffer.geometry.contains(point)


def test_self_intersecting_polygon_is_repaired_before_buffering():
    bowtie = Polygon([(-72.6, 44.2), (-72.5, 44.3), (-72.5, 44.2), (-72.6, 44.3)])
    assert not bowtie.is_valid

    buffer = buffer_geometry(DrawnGeometry.from_shapely(bowtie), 10, 'meters')

    assert buffer is not None
    assert buffer.geometry.is_valid


def test_repair_leaves_valid_geometry_untouched():
    square = Polygon([(0, 0), (1, 0), (1, 1), (0, 1)])
    assert repair_invalid_geometry(square) is square


def test_unknown_spatial_reference_produces_no_buffer():
    assert buffer_geometry(drawn_point(Point(10, 10), wkid=999999), 100, 'meters') is None


def test_unknown_spatial_reference_is_still_rejected_by_crs_lookup():
    with pytest.raises(ValueError):
        crs_from_wkid(999999)


def test_failed_transformation_produces_no_buffer(monkeypatch):
    def broken_transform(*args, **kwargs):
        raise RuntimeError('proj network grid unavailable')

    monkeypatch.setattr(buffering, 'transform', broken_transform)

    assert buffer_geometry(drawn_point(), 100, 'meters') is None


def test_failed_crs_selection_produces_no_buffer(monkeypatch):
    def broken_select(geom, original_crs):
        raise ValueError('no projected CRS for this location')

    monkeypatch.setattr(buffering, 'select_projected_crs', broken_select)

    assert buffer_geometry(drawn_point(), 100, 'meters') is None


def test_invalid_spec_still_raises_with_unknown_spatial_reference():
    with pytest.raises(BufferSpecError):
        buffer_geometry(drawn_point(wkid=999999), -1, 'meters')


def test_esri_wkid_alias_resolves_to_web_mercator():
    assert crs_from_wkid(102100).to_epsg() == 3857


def test_drawn_geometry_kind_follows_shape():
    assert DrawnGeometry.from_shapely(VERMONT).kind is GeometryKind.POINT
    assert DrawnGeometry.from_shapely(LineString([(0, 0), (1, 1)])).kind is GeometryKind.POLYLINE
    with pytest.raises(ValueError):
        DrawnGeometry.from_shapely(VERMONT.union(LineString([(0, 0), (1, 1)])))
