"""
Configuration package for Buffer Intersect.

This package contains configuration loading and validation.

Modules:
    config_loader: Load widget configuration from JSON and merge section defaults
"""

__version__ = '1.0.0'
