import json

import pytest

from core.models import GeometryKind
from geometry_input.load_input import load_drawn_geometry, load_geometry_file


def write_geojson(path, *geometries):
    path.write_text(json.dumps({
        'type': 'FeatureCollection',
        'features': [{'type': 'Feature', 'properties': {}, 'geometry': g} for g in geometries],
    }), encoding='utf-8')
    return path


def test_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_geometry_file(str(tmp_path / 'missing.geojson'))


def test_point_file_becomes_drawn_point(tmp_path):
    path = write_geojson(tmp_path / 'site.geojson', {'type': 'Point', 'coordinates': [-72.58, 44.26]})

    drawn = load_drawn_geometry(str(path))

    assert drawn.kind is GeometryKind.POINT
    assert drawn.wkid == 4326


def test_features_are_unioned_into_one_shape(tmp_path):
    path = write_geojson(
        tmp_path / 'parcels.geojson',
        {'type': 'Polygon', 'coordinates': [[[0, 0], [1, 0], [1, 1], [0, 1], [0, 0]]]},
        {'type': 'Polygon', 'coordinates': [[[1, 0], [2, 0], [2, 1], [1, 1], [1, 0]]]},
    )

    drawn = load_drawn_geometry(str(path))

    assert drawn.kind is GeometryKind.POLYGON
    assert drawn.geometry.area == pytest.approx(2.0)


def test_reprojects_to_requested_wkid(tmp_path):
    path = write_geojson(tmp_path / 'site.geojson', {'type': 'Point', 'coordinates': [-72.58, 44.26]})

    drawn = load_drawn_geometry(str(path), wkid=102100)

    assert drawn.wkid == 102100
    assert drawn.geometry.x == pytest.approx(-8079560, rel=1e-3)
