"""
Parcels domain package.

Public API:
- Domain models: Parcel, NewParcelRequest, StatusHistoryEntry, ParcelStatus, ServiceType
- Tracking ids: generate_tracking_id
"""
from .models import NewParcelRequest, Parcel, ParcelStatus, ServiceType, StatusHistoryEntry
from .tracking import generate_tracking_id

__all__ = ["Parcel",
           "NewParcelRequest",
           "StatusHistoryEntry",
           "ParcelStatus",
           "ServiceType",
           "generate_tracking_id",
           ]
