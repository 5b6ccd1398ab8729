"""
Core modules for Buffer Intersect.

This package contains the draw -> buffer -> intersect pipeline.

Modules:
    models: Value types (geometries, layer descriptors, outcomes, reports)
    map_context: Map boundary (layers, display set, cursor, drawing surface)
    layer_registry: Discover queryable layers and track the selection
    sketch_controller: Drawing lifecycle and buffer production
    arcgis_query: Query one FeatureServer layer
    layer_processor: Query all selected layers and aggregate a report
    widget: Presentation boundary tying the pieces together
"""

__version__ = '1.0.0'
