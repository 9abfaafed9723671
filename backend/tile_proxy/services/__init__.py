"""Tile dispatch services: upstream fetching, stream splitting, dispatch."""
