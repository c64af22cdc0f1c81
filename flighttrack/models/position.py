"""
Position model - time-series telemetry storage.

Every ingestion cycle appends one row per aircraft with coordinates. Rows
are immutable once written and only ever removed by the retention sweep.

Schema optimized for:
- Fast batch inserts (append-only pattern)
- Time-range queries per flight (history, live fallback)
- Whole-day scans (daily statistics) and cutoff deletes (retention)
"""

from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import (
    Boolean, CheckConstraint, DateTime, Float, ForeignKey, Index, Integer,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from flighttrack.models.base import Base, as_utc, utcnow

if TYPE_CHECKING:
    from flighttrack.ingestion.opensky_client import StateVector
    from flighttrack.models.flight import Flight

LATITUDE_RANGE = (-90.0, 90.0)
LONGITUDE_RANGE = (-180.0, 180.0)


class Position(Base):
    """
    One observed position of a flight.

    Altitude is a single column: barometric when the aircraft reported it,
    geometric otherwise.
    """

    __tablename__ = 'positions'

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
    )

    flight_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey('flights.id', ondelete='CASCADE'),
        nullable=False,
        index=True,
    )

    # Position (WGS84)
    latitude: Mapped[float] = mapped_column(
        Float,
        nullable=False,
        comment='Latitude in decimal degrees'
    )

    longitude: Mapped[float] = mapped_column(
        Float,
        nullable=False,
        comment='Longitude in decimal degrees'
    )

    altitude: Mapped[Optional[float]] = mapped_column(
        Float,
        nullable=True,
        comment='Altitude in meters (barometric, else geometric)'
    )

    velocity: Mapped[Optional[float]] = mapped_column(
        Float,
        nullable=True,
        comment='Ground speed in m/s'
    )

    heading: Mapped[Optional[float]] = mapped_column(
        Float,
        nullable=True,
        comment='True track in degrees (0=north)'
    )

    vertical_rate: Mapped[Optional[float]] = mapped_column(
        Float,
        nullable=True,
        comment='Vertical rate in m/s'
    )

    on_ground: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )

    recorded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        comment='Time of observation'
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
    )

    flight: Mapped['Flight'] = relationship(back_populates='positions')

    __table_args__ = (
        # History and per-flight latest-position lookups
        Index('ix_positions_flight_recorded', 'flight_id', 'recorded_at'),
        # Daily statistics windows and retention cutoff
        Index('ix_positions_recorded', 'recorded_at'),
        CheckConstraint('latitude >= -90 AND latitude <= 90', name='ck_positions_latitude'),
        CheckConstraint('longitude >= -180 AND longitude <= 180', name='ck_positions_longitude'),
    )

    def __repr__(self) -> str:
        return f'<Position flight={self.flight_id} @ {self.recorded_at}>'

    @validates('latitude')
    def _validate_latitude(self, key, value):
        return _check_range(key, value, LATITUDE_RANGE)

    @validates('longitude')
    def _validate_longitude(self, key, value):
        return _check_range(key, value, LONGITUDE_RANGE)

    @validates('recorded_at')
    def _validate_recorded_at(self, key, value):
        if value is None:
            raise ValueError('recorded_at is required')
        return value

    @classmethod
    def from_state(
        cls,
        flight: 'Flight',
        state: 'StateVector',
        recorded_at: datetime,
    ) -> 'Position':
        """Build a position row for a state vector that has coordinates."""
        return cls(
            flight=flight,
            latitude=state.latitude,
            longitude=state.longitude,
            altitude=state.altitude,
            velocity=state.velocity,
            heading=state.true_track,
            vertical_rate=state.vertical_rate,
            on_ground=bool(state.on_ground),
            recorded_at=recorded_at,
        )

    def to_dict(self) -> dict:
        return {
            'latitude': self.latitude,
            'longitude': self.longitude,
            'altitude': self.altitude,
            'velocity': self.velocity,
            'heading': self.heading,
            'vertical_rate': self.vertical_rate,
            'on_ground': self.on_ground,
            'recorded_at': as_utc(self.recorded_at).isoformat() if self.recorded_at else None,
        }


def _check_range(key: str, value, bounds) -> float:
    if value is None:
        raise ValueError(f'{key} is required')
    low, high = bounds
    if not (low <= value <= high):
        raise ValueError(f'{key} {value} outside [{low}, {high}]')
    return value
