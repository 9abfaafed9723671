"""API router subpackage for the tile proxy.

Submodules:
    - tiles: the catch-all XYZ tile route served through the cache.
"""
