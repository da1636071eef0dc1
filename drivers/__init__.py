from .models import Driver, DriverProfileUpdate, DriverStatus

__all__ = ["Driver", "DriverProfileUpdate", "DriverStatus"]
