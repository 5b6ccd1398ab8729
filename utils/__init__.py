"""
Utility modules for Buffer Intersect.

Modules:
    logger: Logging configuration and setup
    geometry_converters: ESRI JSON <-> Shapely conversion and query simplification
"""

__version__ = '1.0.0'
