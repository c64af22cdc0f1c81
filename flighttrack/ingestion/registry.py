"""
Flight registry - create-or-update of Flight identity rows.

Works inside the caller's session and never commits; the ingestion
pipeline owns the transaction.
"""

import logging
from datetime import datetime
from typing import Dict, Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from flighttrack.config import config
from flighttrack.ingestion.opensky_client import StateVector
from flighttrack.models import Flight

logger = logging.getLogger(__name__)


class FlightRegistry:
    """
    Upserts flights for one batch of state vectors.

    Keeps an identity map of every flight it has loaded or created, so a
    transponder that shows up twice in a batch updates one row.
    """

    def __init__(self, session: Session, batch_size: int = None):
        self.session = session
        self.batch_size = batch_size or config.ingestion.batch_size
        self._flights: Dict[str, Flight] = {}

    def preload(self, icao24_codes: Iterable[str]) -> int:
        """
        Load existing flights for the given codes in chunks.

        Returns count of flights found.
        """
        pending = sorted({code for code in icao24_codes if code not in self._flights})
        found = 0
        for start in range(0, len(pending), self.batch_size):
            chunk = pending[start:start + self.batch_size]
            rows = self.session.scalars(
                select(Flight).where(Flight.icao24.in_(chunk))
            ).all()
            for flight in rows:
                self._flights[flight.icao24] = flight
            found += len(rows)
        logger.debug(f'Preloaded {found} of {len(pending)} flights')
        return found

    def get(self, icao24: str) -> Flight:
        """Find a flight by transponder code or create (and add) a new one."""
        flight = self._flights.get(icao24)
        if flight is None:
            flight = self.session.scalars(
                select(Flight).where(Flight.icao24 == icao24)
            ).first()
        if flight is None:
            flight = Flight(icao24=icao24)
            self.session.add(flight)
        self._flights[icao24] = flight
        return flight

    def upsert(self, state: StateVector, seen_at: datetime) -> Flight:
        """Apply one observation to its flight, creating it if needed."""
        flight = self.get(state.icao24)
        flight.apply_observation(state, seen_at)
        return flight
