# lazytravel/routes/__init__.py
from .trips import create_trip_blueprint

__all__ = ["create_trip_blueprint"]
