"""
Flight lookup, search and position history.

Plain range reads over the registry and the position store.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy import and_, func, select
from sqlalchemy.orm import sessionmaker

from flighttrack.ingestion.opensky_client import BoundingBox
from flighttrack.models import Flight, Position, SessionLocal, as_utc

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 500


@dataclass
class FlightPage:
    """One page of flight search results."""
    flights: List[Flight]
    total_count: int
    has_next_page: bool

    def to_dict(self) -> dict:
        return {
            'flights': [f.to_dict() for f in self.flights],
            'total_count': self.total_count,
            'has_next_page': self.has_next_page,
        }


def get_flight(icao24: str, session_factory: Optional[sessionmaker] = None) -> Optional[Flight]:
    """Single flight by transponder code, or None."""
    with (session_factory or SessionLocal)() as session:
        return session.scalars(
            select(Flight).where(Flight.icao24 == icao24.strip().lower())
        ).first()


def flight_history(
    icao24: str,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    session_factory: Optional[sessionmaker] = None,
) -> List[Position]:
    """
    Positions of one flight, oldest first.

    Both bounds are inclusive and optional. An unknown transponder code
    yields an empty list.
    """
    stmt = (
        select(Position)
        .join(Flight, Flight.id == Position.flight_id)
        .where(Flight.icao24 == icao24.strip().lower())
    )
    if start is not None:
        stmt = stmt.where(Position.recorded_at >= as_utc(start))
    if end is not None:
        stmt = stmt.where(Position.recorded_at <= as_utc(end))
    stmt = stmt.order_by(Position.recorded_at.asc(), Position.id.asc())

    with (session_factory or SessionLocal)() as session:
        return list(session.scalars(stmt).all())


def search_flights(
    callsign: Optional[str] = None,
    country: Optional[str] = None,
    bbox: Optional[BoundingBox] = None,
    limit: int = 50,
    offset: int = 0,
    session_factory: Optional[sessionmaker] = None,
) -> FlightPage:
    """
    Filter the registry, most recently seen first.

    Args:
        callsign: case-insensitive substring of the callsign
        country: exact origin country
        bbox: only flights whose latest position is inside the box
        limit: page size, capped at MAX_PAGE_SIZE
        offset: rows to skip
    """
    limit = max(0, min(limit, MAX_PAGE_SIZE))
    offset = max(0, offset)

    stmt = select(Flight)
    if callsign:
        stmt = stmt.where(func.lower(Flight.callsign).contains(callsign.strip().lower()))
    if country:
        stmt = stmt.where(Flight.origin_country == country)

    if bbox is not None and bbox.is_complete:
        latest = (
            select(
                Position.flight_id.label('flight_id'),
                func.max(Position.recorded_at).label('max_recorded_at'),
            )
            .group_by(Position.flight_id)
            .subquery()
        )
        in_box = (
            select(Position.flight_id)
            .join(
                latest,
                and_(
                    latest.c.flight_id == Position.flight_id,
                    latest.c.max_recorded_at == Position.recorded_at,
                ),
            )
            .where(
                Position.latitude.between(bbox.lamin, bbox.lamax),
                Position.longitude.between(bbox.lomin, bbox.lomax),
            )
        )
        stmt = stmt.where(Flight.id.in_(in_box))

    with (session_factory or SessionLocal)() as session:
        total = session.scalar(select(func.count()).select_from(stmt.subquery()))
        flights = session.scalars(
            stmt.order_by(Flight.last_seen_at.desc(), Flight.id.desc())
            .limit(limit)
            .offset(offset)
        ).all()

    return FlightPage(
        flights=list(flights),
        total_count=total or 0,
        has_next_page=offset + limit < (total or 0),
    )
