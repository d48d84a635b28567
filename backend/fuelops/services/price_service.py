# Overview: Fuel price lookup for readings (price management itself lives elsewhere).

from __future__ import annotations

import logging
import threading
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..errors import NotFound, PriceUnavailable
from ..models import FuelPrice, Nozzle

logger = logging.getLogger(__name__)


class PriceLookup:
    """Resolves the per-litre price in force for a nozzle at a moment."""

    def get_effective_price(self, nozzle_id: int, at: datetime) -> int:
        raise NotImplementedError


class LastKnownPrices:
    """
    Process-wide last-known price per nozzle.

    Shared across requests so a failed lookup can fall back to the value
    the previous reading used instead of aborting the write.
    """

    def __init__(self):
        self._prices: dict[int, int] = {}
        self._lock = threading.Lock()

    def remember(self, nozzle_id: int, price_cents: int) -> None:
        with self._lock:
            self._prices[nozzle_id] = price_cents

    def get(self, nozzle_id: int) -> int | None:
        with self._lock:
            return self._prices.get(nozzle_id)


class DatabasePriceLookup(PriceLookup):
    def __init__(self, session: Session, cache: LastKnownPrices | None = None):
        self.session = session
        self.cache = cache or LastKnownPrices()

    def get_effective_price(self, nozzle_id: int, at: datetime) -> int:
        # Savepoint so a failed SELECT leaves the caller's transaction usable
        try:
            with self.session.begin_nested():
                nozzle = self.session.get(Nozzle, nozzle_id)
                if not nozzle:
                    raise NotFound(f"Nozzle {nozzle_id} not found")
                price = (
                    self.session.query(FuelPrice)
                    .filter(
                        FuelPrice.station_id == nozzle.station_id,
                        FuelPrice.fuel_type == nozzle.fuel_type,
                        FuelPrice.effective_from <= at,
                    )
                    .order_by(FuelPrice.effective_from.desc(), FuelPrice.id.desc())
                    .first()
                )
        except SQLAlchemyError:
            cached = self.cache.get(nozzle_id)
            if cached is None:
                logger.exception("Price lookup failed for nozzle %s with no cached price", nozzle_id)
                raise PriceUnavailable(f"No price available for nozzle {nozzle_id}")
            logger.warning("Price lookup failed for nozzle %s; using last known price %s", nozzle_id, cached)
            return cached

        if price is None:
            raise PriceUnavailable(
                f"No {nozzle.fuel_type} price in force at station {nozzle.station_id}",
                nozzle_id=nozzle_id,
            )
        self.cache.remember(nozzle_id, price.price_cents)
        return price.price_cents
