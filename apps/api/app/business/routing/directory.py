from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import date

from sqlalchemy.orm import Session

from app.business.routing.models import RouteSheet
from app.business.routing.repository import DriverRepository, RouteSheetRepository, VehicleRepository
from app.business.routing.schemas import DriverVehicle
from app.core.errors import NoAvailableCapacityError


logger = logging.getLogger("app.billing.routing")


@dataclass(slots=True)
class RouteDirectory:
    driver_repository: DriverRepository = DriverRepository()
    vehicle_repository: VehicleRepository = VehicleRepository()
    route_sheet_repository: RouteSheetRepository = RouteSheetRepository()

    def find_route_sheet(self, session: Session, day: date, zone_id: uuid.UUID | None = None) -> RouteSheet | None:
        return self.route_sheet_repository.find_for_day(session, day, zone_id)

    def find_available_driver_and_vehicle(
        self, session: Session, day: date, zone_id: uuid.UUID | None = None
    ) -> DriverVehicle | None:
        drivers = self.driver_repository.list_active(session, zone_id)
        vehicles = self.vehicle_repository.list_free_on(session, day)
        if not drivers or not vehicles:
            return None
        return DriverVehicle(driver_id=drivers[0].id, vehicle_id=vehicles[0].id)

    def get_or_create_route_sheet(
        self,
        session: Session,
        day: date,
        zone_id: uuid.UUID | None = None,
        *,
        notes: str | None = None,
    ) -> RouteSheet:
        """Reuse the day's sheet for the zone, or open one on the first free driver and vehicle.

        Flushes only; the caller owns the transaction.
        """
        existing = self.find_route_sheet(session, day, zone_id)
        if existing is not None:
            return existing

        pair = self.find_available_driver_and_vehicle(session, day, zone_id)
        if pair is None:
            raise NoAvailableCapacityError(f"no driver or vehicle available on {day.isoformat()}")

        sheet = RouteSheet(
            driver_id=pair.driver_id,
            vehicle_id=pair.vehicle_id,
            delivery_date=day,
            zone_id=zone_id,
            notes=notes,
        )
        self.route_sheet_repository.add(session, sheet)
        logger.info(
            "route_sheet.created",
            extra={"route_sheet_id": str(sheet.id), "run_date": day.isoformat()},
        )
        return sheet


route_directory = RouteDirectory()
