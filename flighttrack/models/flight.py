"""
Flight model - identity record for each tracked transponder.

One row per ICAO24 address. Created on first observation, touched on every
subsequent one, never deleted by ingestion. Positions hang off it.
"""

from datetime import datetime
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import String, Integer, DateTime
from sqlalchemy.orm import Mapped, mapped_column, relationship

from flighttrack.models.base import Base, as_utc, utcnow

if TYPE_CHECKING:
    from flighttrack.ingestion.opensky_client import StateVector
    from flighttrack.models.position import Position


class Flight(Base):
    """
    Identity of an aircraft as seen by the upstream feed.

    Fields:
        icao24: hex transponder address, lower case (natural key)
        callsign: last non-blank callsign reported (e.g., 'UAL123')
        origin_country: country of registration as last reported
        first_seen_at: first observation, set once
        last_seen_at: most recent ingestion cycle that saw this aircraft
    """

    __tablename__ = 'flights'

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
    )

    icao24: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        unique=True,
        index=True,
        comment='ICAO24 hex transponder address'
    )

    callsign: Mapped[Optional[str]] = mapped_column(
        String(16),
        nullable=True,
        index=True,
        comment='Flight callsign (e.g., UAL839)'
    )

    origin_country: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
        index=True,
        comment='Country of aircraft registration'
    )

    first_seen_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    last_seen_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        index=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
    )

    positions: Mapped[List['Position']] = relationship(
        back_populates='flight',
        cascade='all, delete-orphan',
        passive_deletes=True,
        order_by='Position.recorded_at',
    )

    def __repr__(self) -> str:
        return f'<Flight {self.icao24} ({self.callsign or "-"})>'

    def apply_observation(self, state: 'StateVector', seen_at: datetime) -> None:
        """
        Fold one observation into the identity record.

        A blank callsign keeps the previously known one, but origin country
        is always overwritten, even with None. The asymmetry matches the
        behaviour existing consumers rely on.
        """
        if state.callsign:
            self.callsign = state.callsign
        self.origin_country = state.origin_country
        if self.first_seen_at is None:
            self.first_seen_at = seen_at
        self.last_seen_at = seen_at

    def to_dict(self) -> dict:
        """Convert to JSON-serializable dict for API responses."""
        return {
            'icao24': self.icao24,
            'callsign': self.callsign,
            'origin_country': self.origin_country,
            'first_seen_at': as_utc(self.first_seen_at).isoformat() if self.first_seen_at else None,
            'last_seen_at': as_utc(self.last_seen_at).isoformat() if self.last_seen_at else None,
        }
