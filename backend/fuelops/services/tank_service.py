# Overview: Read-only tank level check used to annotate readings.

from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..models import Tank

logger = logging.getLogger(__name__)


class TankStatus:
    def is_low(self, station_id: int, fuel_type: str) -> bool:
        raise NotImplementedError


class DatabaseTankStatus(TankStatus):
    """Advisory only: a missing tank or a failed lookup means "not low"."""

    def __init__(self, session: Session):
        self.session = session

    def is_low(self, station_id: int, fuel_type: str) -> bool:
        try:
            tank = self.session.query(Tank).filter_by(station_id=station_id, fuel_type=fuel_type).first()
        except SQLAlchemyError:
            logger.warning("Tank lookup failed for station %s %s", station_id, fuel_type, exc_info=True)
            return False
        return bool(tank and tank.is_low())
