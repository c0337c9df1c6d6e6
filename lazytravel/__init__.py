"""LazyTravel – trip planning core: clustering, route optimization and reorder reconciliation."""

__version__ = "0.1.0"
