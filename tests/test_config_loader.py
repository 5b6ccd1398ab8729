import json

import pytest

from config.config_loader import (
    DEFAULT_CONFIG_FILE,
    load_buffer_settings,
    load_config,
    load_portal_settings,
    load_query_settings,
    load_symbol_settings,
)


def test_bundled_config_loads():
    config = load_config()

    assert DEFAULT_CONFIG_FILE.exists()
    assert load_buffer_settings(config)['default_unit'] == 'meters'
    assert load_query_settings(config)['max_concurrent_queries'] > 0


def test_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / 'nope.json')


def test_missing_required_section_raises(tmp_path):
    path = tmp_path / 'config.json'
    path.write_text(json.dumps({'buffer': {}}), encoding='utf-8')

    with pytest.raises(KeyError, match='query'):
        load_config(path)


def test_section_values_override_defaults():
    settings = load_query_settings({'query': {'layer_timeout': 5}})

    assert settings['layer_timeout'] == 5
    assert settings['request_timeout'] == 30.0
    assert settings['pagination_max_pages'] == 10


def test_empty_config_gives_defaults():
    assert load_buffer_settings({}) == {
        'default_distance': 100,
        'default_unit': 'meters',
        'default_geometry_kind': 'point',
    }
    assert load_portal_settings({})['portal_url'] == 'https://www.arcgis.com'
    assert set(load_symbol_settings({})) == {'point', 'polyline', 'polygon', 'buffer'}
