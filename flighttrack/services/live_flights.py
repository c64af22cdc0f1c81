"""
Live flight service - "what is flying now", tolerant of OpenSky outages.

Primary path proxies OpenSky. When OpenSky rate-limits us or fails, the
service serves the latest stored position of every flight seen within the
freshness window instead, and says so in the result. It never writes.

Outcomes a caller can tell apart:
- LiveFlightsResult(source='live')   fresh upstream data
- LiveFlightsResult(source='cache')  stale data, with upstream_error and ages
- LiveFlightsUnavailable             upstream down and nothing cached
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from sqlalchemy import and_, func, select
from sqlalchemy.orm import sessionmaker

from flighttrack.config import config
from flighttrack.ingestion.opensky_client import (
    ApiError, BoundingBox, NotFoundError, OpenSkyClient, RateLimitError, StateVector,
)
from flighttrack.models import Flight, Position, SessionLocal, as_utc, utcnow

logger = logging.getLogger(__name__)

SOURCE_LIVE = 'live'
SOURCE_CACHE = 'cache'


class LiveFlightsUnavailable(Exception):
    """
    Neither OpenSky nor the position cache could answer.

    upstream_error is the failure that triggered the fallback;
    fallback_error is set when the cache query itself failed.
    """

    def __init__(
        self,
        message: str,
        upstream_error: ApiError,
        fallback_error: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.message = message
        self.upstream_error = upstream_error
        self.fallback_error = fallback_error


@dataclass
class LiveFlight:
    """Map-ready view of one aircraft, whether live or cached."""
    icao24: str
    callsign: Optional[str]
    origin_country: Optional[str]
    latitude: float
    longitude: float
    altitude: Optional[float]
    velocity: Optional[float]
    heading: Optional[float]
    vertical_rate: Optional[float]
    on_ground: bool
    recorded_at: Optional[datetime]

    @classmethod
    def from_state(cls, sv: StateVector) -> 'LiveFlight':
        timestamp = sv.time_position if sv.time_position is not None else sv.last_contact
        return cls(
            icao24=sv.icao24,
            callsign=sv.callsign,
            origin_country=sv.origin_country,
            latitude=sv.latitude,
            longitude=sv.longitude,
            altitude=sv.altitude,
            velocity=sv.velocity,
            heading=sv.true_track,
            vertical_rate=sv.vertical_rate,
            on_ground=bool(sv.on_ground),
            recorded_at=_from_epoch(timestamp),
        )

    @classmethod
    def from_position(cls, position: Position, flight: Flight) -> 'LiveFlight':
        return cls(
            icao24=flight.icao24,
            callsign=flight.callsign,
            origin_country=flight.origin_country,
            latitude=position.latitude,
            longitude=position.longitude,
            altitude=position.altitude,
            velocity=position.velocity,
            heading=position.heading,
            vertical_rate=position.vertical_rate,
            on_ground=bool(position.on_ground),
            recorded_at=as_utc(position.recorded_at),
        )

    def age_seconds(self, now: datetime) -> Optional[float]:
        if self.recorded_at is None:
            return None
        return max((now - self.recorded_at).total_seconds(), 0.0)

    def to_dict(self) -> dict:
        return {
            'icao24': self.icao24,
            'callsign': self.callsign,
            'origin_country': self.origin_country,
            'latitude': self.latitude,
            'longitude': self.longitude,
            'altitude': self.altitude,
            'velocity': self.velocity,
            'heading': self.heading,
            'vertical_rate': self.vertical_rate,
            'on_ground': self.on_ground,
            'recorded_at': self.recorded_at.isoformat() if self.recorded_at else None,
        }


def _from_epoch(timestamp) -> Optional[datetime]:
    """Upstream Unix seconds as aware UTC; None when absent or unusable."""
    if timestamp is None:
        return None
    try:
        return datetime.fromtimestamp(timestamp, tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        logger.warning(f'Ignoring unusable upstream timestamp: {timestamp!r}')
        return None


@dataclass
class LiveFlightsResult:
    """Flights plus enough provenance for the UI to label them."""
    flights: List[LiveFlight]
    source: str
    fetched_at: datetime
    upstream_error: Optional[str] = None

    @property
    def is_cached(self) -> bool:
        return self.source == SOURCE_CACHE

    @property
    def oldest_position_age_seconds(self) -> Optional[float]:
        """Age of the stalest cached position; None for live data."""
        if not self.is_cached:
            return None
        ages = [a for a in (f.age_seconds(self.fetched_at) for f in self.flights) if a is not None]
        return max(ages) if ages else None

    def to_dict(self) -> dict:
        return {
            'flights': [f.to_dict() for f in self.flights],
            'count': len(self.flights),
            'source': self.source,
            'is_cached': self.is_cached,
            'fetched_at': self.fetched_at.isoformat(),
            'oldest_position_age_seconds': self.oldest_position_age_seconds,
            'upstream_error': self.upstream_error,
        }


class LiveFlightService:
    """
    Serves current flight positions with a stored-position fallback.

    Safe to run alongside ingestion: it only reads, and a fallback query
    sees either the state before or after an ingestion commit.
    """

    def __init__(
        self,
        client: Optional[OpenSkyClient] = None,
        session_factory: Optional[sessionmaker] = None,
        fallback_window: Optional[timedelta] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.client = client or OpenSkyClient.from_config()
        self.session_factory = session_factory or SessionLocal
        self.fallback_window = fallback_window or timedelta(
            minutes=config.live.fallback_window_minutes
        )
        self._clock = clock

    def live_flights(self, bbox: Optional[BoundingBox] = None) -> LiveFlightsResult:
        """
        Current flights, optionally limited to a bounding box.

        Raises:
            NotFoundError: OpenSky endpoint missing (no fallback)
            LiveFlightsUnavailable: OpenSky failed and nothing usable is cached
        """
        try:
            states = self.client.fetch_states(bbox)
        except NotFoundError:
            raise
        except ApiError as e:
            return self._serve_cached(bbox, e)

        flights = [LiveFlight.from_state(sv) for sv in states if sv.has_position()]
        return LiveFlightsResult(flights=flights, source=SOURCE_LIVE, fetched_at=self._clock())

    def _serve_cached(self, bbox: Optional[BoundingBox], api_error: ApiError) -> LiveFlightsResult:
        now = as_utc(self._clock())
        try:
            flights = self.cached_flights(bbox, now=now)
        except Exception as e:
            logger.error(f'Cached fallback failed after OpenSky error ({api_error}): {e}')
            raise LiveFlightsUnavailable(
                f'{api_error}; cached fallback failed: {e}',
                upstream_error=api_error,
                fallback_error=e,
            ) from e

        if not flights:
            if isinstance(api_error, RateLimitError):
                message = (
                    'OpenSky API rate limit exceeded and no cached flights '
                    'are available right now.'
                )
            else:
                message = f'{api_error}; no cached flights are available right now.'
            logger.warning(message)
            raise LiveFlightsUnavailable(message, upstream_error=api_error)

        logger.warning(f'Serving {len(flights)} cached flights: {api_error}')
        return LiveFlightsResult(
            flights=flights,
            source=SOURCE_CACHE,
            fetched_at=now,
            upstream_error=str(api_error),
        )

    def cached_flights(
        self,
        bbox: Optional[BoundingBox] = None,
        now: Optional[datetime] = None,
    ) -> List[LiveFlight]:
        """
        Latest stored position per flight within the freshness window.

        The bounding box applies to that latest position, so a flight that
        has left the box is not shown at an older in-box position.
        """
        now = as_utc(now or self._clock())
        window_start = now - self.fallback_window

        latest = (
            select(
                Position.flight_id.label('flight_id'),
                func.max(Position.recorded_at).label('max_recorded_at'),
            )
            .where(Position.recorded_at >= window_start)
            .group_by(Position.flight_id)
            .subquery()
        )

        stmt = (
            select(Position, Flight)
            .join(Flight, Flight.id == Position.flight_id)
            .join(
                latest,
                and_(
                    latest.c.flight_id == Position.flight_id,
                    latest.c.max_recorded_at == Position.recorded_at,
                ),
            )
            .order_by(Position.flight_id, Position.id.desc())
        )

        if bbox is not None and bbox.is_complete:
            stmt = stmt.where(
                Position.latitude.between(bbox.lamin, bbox.lamax),
                Position.longitude.between(bbox.lomin, bbox.lomax),
            )

        flights = []
        seen = set()
        with self.session_factory() as session:
            for position, flight in session.execute(stmt):
                # Two rows can share the max timestamp; keep the newest id
                if flight.id in seen:
                    continue
                seen.add(flight.id)
                flights.append(LiveFlight.from_position(position, flight))

        return flights
