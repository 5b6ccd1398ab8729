"""
Geometry Input Processing Package

Buffers drawn geometries and loads sketches from geospatial files.

Modules:
    buffering: Buffer point/line/polygon geometries in a projected CRS
    load_input: Read a geospatial file as a drawn geometry

Usage:
    from geometry_input.buffering import buffer_geometry

    buffer = buffer_geometry(drawn, 100, 'meters')
"""

from geometry_input.buffering import buffer_geometry, calculate_buffer_area

__all__ = [
    'buffer_geometry',
    'calculate_buffer_area'
]
