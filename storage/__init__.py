from .base import LogisticsStore, driver_key, parcel_key
from .memory import InMemoryStore

__all__ = ["LogisticsStore", "InMemoryStore", "driver_key", "parcel_key"]
