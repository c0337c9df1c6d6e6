"""Service layer: optimization, reconciliation, imports and persistence."""

from .clustering import classify, cluster_around_anchor, pack
from .reorder import ReorderReconciler
from .route_optimizer import RouteOptimizer, build_optimizer
from .trip_session import TripSession

__all__ = [
    "classify",
    "cluster_around_anchor",
    "pack",
    "ReorderReconciler",
    "RouteOptimizer",
    "build_optimizer",
    "TripSession",
]
