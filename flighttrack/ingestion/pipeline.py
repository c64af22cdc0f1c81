"""
Ingestion pipeline - orchestrates data flow from OpenSky to database.

Pipeline stages for one cycle:
1. Fetch: Poll OpenSky for the full state vector feed (no bounding box)
2. Filter: Drop states without coordinates (not an error, not counted)
3. Upsert: Create or update the Flight row for each remaining state
4. Append: Add one Position row per remaining state

Stages 3 and 4 run in a single transaction: a failure anywhere rolls back
every flight update and position of the cycle.

The same cycle backs two callers. The scheduler uses run_scheduled(), which
re-raises so the job runner records the failure. The on-demand refresh uses
refresh(), which turns failures into a result object.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from flighttrack.ingestion.opensky_client import ApiError, OpenSkyClient
from flighttrack.ingestion.registry import FlightRegistry
from flighttrack.models import Position, as_utc, get_session, utcnow

logger = logging.getLogger(__name__)


class PersistenceError(Exception):
    """The ingestion transaction failed and was rolled back."""


@dataclass
class IngestionResult:
    """Counts for one committed ingestion cycle."""
    flights_touched: int = 0
    positions_created: int = 0

    def to_dict(self) -> dict:
        return {
            'flights_touched': self.flights_touched,
            'positions_created': self.positions_created,
        }


@dataclass
class RefreshResult:
    """Outcome of an on-demand refresh; never raised, always returned."""
    success: bool
    flights_touched: int = 0
    positions_created: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            'success': self.success,
            'flights_touched': self.flights_touched,
            'positions_created': self.positions_created,
            'errors': list(self.errors),
        }


class IngestionPipeline:
    """
    Manages the data ingestion lifecycle.

    Coordinates fetching from OpenSky and the database writes of one
    cycle. Assumes cycles never overlap; the scheduler guarantees this.
    """

    def __init__(
        self,
        client: Optional[OpenSkyClient] = None,
        session_factory: Optional[sessionmaker] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize the ingestion pipeline.

        Args:
            client: OpenSky API client (created from config if None)
            session_factory: sessionmaker to write with (SessionLocal if None)
            clock: returns the cycle's processing time (aware UTC)
        """
        self.client = client or OpenSkyClient.from_config()
        self.session_factory = session_factory
        self._clock = clock

        # State tracking
        self._cycle_count: int = 0
        self._error_count: int = 0
        self._last_success_at: Optional[datetime] = None
        self._last_result: Optional[IngestionResult] = None

    def run_cycle(self) -> IngestionResult:
        """
        Execute one fetch-and-persist cycle.

        Raises:
            ApiError (or a subclass) when OpenSky could not be read
            PersistenceError when the transaction was rolled back
        """
        self._cycle_count += 1
        try:
            result = self._ingest()
        except (ApiError, PersistenceError):
            self._error_count += 1
            raise

        self._last_success_at = self._clock()
        self._last_result = result
        return result

    def _ingest(self) -> IngestionResult:
        # Stage 1: Fetch from OpenSky
        states = self.client.fetch_states()
        processed_at = as_utc(self._clock())

        # Stage 2: Drop states we cannot place on a map
        located = [sv for sv in states if sv.has_position()]
        skipped = len(states) - len(located)
        if skipped:
            logger.debug(f'Skipped {skipped} states without coordinates')

        result = IngestionResult()
        if not located:
            logger.info('No positioned aircraft in feed')
            return result

        try:
            with get_session(self.session_factory) as session:
                registry = FlightRegistry(session)
                registry.preload(sv.icao24 for sv in located)

                for sv in located:
                    # Stage 3: Upsert identity
                    flight = registry.upsert(sv, processed_at)
                    result.flights_touched += 1

                    # Stage 4: Append to history
                    session.add(Position.from_state(flight, sv, processed_at))
                    result.positions_created += 1
        except (SQLAlchemyError, ValueError) as e:
            logger.error(f'Ingestion transaction rolled back: {e}')
            raise PersistenceError(f'Ingestion transaction rolled back: {e}') from e

        logger.info(
            f'Updated {result.flights_touched} flights, '
            f'created {result.positions_created} positions'
        )
        return result

    def run_scheduled(self) -> IngestionResult:
        """
        Entry point for the periodic job.

        Failures are logged and re-raised so the job runner sees them and
        the next scheduled run acts as the retry.
        """
        try:
            return self.run_cycle()
        except ApiError as e:
            logger.error(f'Scheduled ingestion failed, OpenSky API error: {e}')
            raise
        except PersistenceError as e:
            logger.error(f'Scheduled ingestion failed: {e}')
            raise

    def refresh(self) -> RefreshResult:
        """
        Entry point for an on-demand refresh.

        Never raises for upstream or persistence failures; they come back
        as success=False with the message in errors.
        """
        try:
            result = self.run_cycle()
        except (ApiError, PersistenceError) as e:
            logger.warning(f'On-demand refresh failed: {e}')
            return RefreshResult(success=False, errors=[str(e)])

        return RefreshResult(
            success=True,
            flights_touched=result.flights_touched,
            positions_created=result.positions_created,
        )

    @property
    def stats(self) -> dict:
        """Get ingestion statistics."""
        return {
            'cycle_count': self._cycle_count,
            'error_count': self._error_count,
            'last_success_at': self._last_success_at.isoformat() if self._last_success_at else None,
            'last_result': self._last_result.to_dict() if self._last_result else None,
        }
