from app.business.routing.models import CancellationOrder, Driver, RouteSheet, RouteSheetDetail, Vehicle
from app.business.routing.schemas import CancellationOrderRead, DriverVehicle, RouteSheetRead

__all__ = [
    "Driver",
    "Vehicle",
    "RouteSheet",
    "RouteSheetDetail",
    "CancellationOrder",
    "CancellationOrderRead",
    "DriverVehicle",
    "RouteSheetRead",
]
