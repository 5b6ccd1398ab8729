"""
Configuration loading for Buffer Intersect.

This module handles loading and validation of the widget configuration JSON
file, and exposes one loader per configuration section. Each section loader
merges the file's values over built-in defaults so older config files keep
working when new settings are added.

Constants:
    PROJECT_ROOT: Root directory of the project
    CONFIG_DIR: Configuration files directory
    DEFAULT_CONFIG_FILE: Bundled widget configuration

Functions:
    load_config: Load and validate widget configuration from JSON
    load_buffer_settings: Buffer distance/unit defaults
    load_query_settings: Remote query timeouts, concurrency and paging
    load_symbol_settings: Display symbology for sketch and buffer graphics
    load_portal_settings: Portal used to resolve web map item ids
"""

import json
from pathlib import Path
from typing import Dict, Optional

# Project paths
PROJECT_ROOT = Path(__file__).parent.parent
CONFIG_DIR = PROJECT_ROOT / 'config'
DEFAULT_CONFIG_FILE = CONFIG_DIR / 'widget_config.json'

REQUIRED_SECTIONS = ('buffer', 'query')


def load_config(config_path: Optional[Path] = None) -> Dict:
    """
    Load widget configuration from JSON file.

    Parameters:
    -----------
    config_path : Optional[Path]
        Configuration file to read (defaults to config/widget_config.json)

    Returns:
    --------
    Dict
        Configuration dictionary with at least 'buffer' and 'query' keys

    Raises:
    -------
    FileNotFoundError
        If configuration file doesn't exist
    json.JSONDecodeError
        If configuration file contains invalid JSON
    KeyError
        If required configuration keys are missing
    """
    if config_path is None:
        config_path = DEFAULT_CONFIG_FILE
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        config = json.load(f)

    for section in REQUIRED_SECTIONS:
        if section not in config:
            raise KeyError(f"Configuration missing required '{section}' key")

    return config


def _merge_section(config: Optional[Dict], section: str, defaults: Dict) -> Dict:
    if config is None:
        config = load_config()
    return {**defaults, **config.get(section, {})}


def load_buffer_settings(config: Dict = None) -> Dict:
    """
    Load buffer settings from configuration.

    Defaults:
        - default_distance: 100
        - default_unit: 'meters'
        - default_geometry_kind: 'point'
    """
    defaults = {
        'default_distance': 100,
        'default_unit': 'meters',
        'default_geometry_kind': 'point'
    }
    return _merge_section(config, 'buffer', defaults)


def load_query_settings(config: Dict = None) -> Dict:
    """
    Load remote query settings from configuration.

    Args:
        config: Configuration dictionary (optional, will load if not provided)

    Returns:
        Dictionary with query settings

    Defaults:
        - request_timeout: 30 (seconds, per HTTP request)
        - layer_timeout: 60 (seconds, per layer including all pages)
        - max_concurrent_queries: 8
        - pagination_enabled: True
        - pagination_max_pages: 10
        - polygon_query_max_vertices: 1000
        - simplify_tolerance: 0.0001

    Note:
        The buffer polygon is sent in the map's spatial reference, so
        simplify_tolerance is expressed in that reference's units.
    """
    defaults = {
        'request_timeout': 30.0,
        'layer_timeout': 60.0,
        'max_concurrent_queries': 8,
        'pagination_enabled': True,
        'pagination_max_pages': 10,
        'polygon_query_max_vertices': 1000,
        'simplify_tolerance': 0.0001
    }
    return _merge_section(config, 'query', defaults)


def load_symbol_settings(config: Dict = None) -> Dict:
    """Load sketch/buffer symbology, falling back to the orange sketch / blue buffer scheme."""
    defaults = {
        'point': {'type': 'simple-marker', 'style': 'circle', 'color': [226, 119, 40], 'size': '12px'},
        'polyline': {'type': 'simple-line', 'color': [226, 119, 40], 'width': 2},
        'polygon': {
            'type': 'simple-fill',
            'color': [226, 119, 40, 0.4],
            'outline': {'color': [226, 119, 40], 'width': 1}
        },
        'buffer': {
            'type': 'simple-fill',
            'color': [0, 0, 255, 0.2],
            'outline': {'color': [0, 0, 255], 'width': 1}
        }
    }
    return _merge_section(config, 'symbols', defaults)


def load_portal_settings(config: Dict = None) -> Dict:
    """Load the portal used to resolve web map item ids."""
    defaults = {
        'portal_url': 'https://www.arcgis.com',
        'timeout': 30
    }
    return _merge_section(config, 'portal', defaults)
