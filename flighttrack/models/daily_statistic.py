"""
DailyStatistic model - one rollup row per calendar day.
"""

from datetime import date, datetime
from typing import Dict, Optional

from sqlalchemy import JSON, Date, DateTime, Float, Integer
from sqlalchemy.orm import Mapped, mapped_column

from flighttrack.models.base import Base, utcnow


class DailyStatistic(Base):
    """
    Aggregate traffic figures for a single UTC day.

    Rewritten in place whenever the aggregator runs for that date.
    """

    __tablename__ = 'daily_statistics'

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
    )

    date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
        unique=True,
        index=True,
    )

    total_flights: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    unique_aircraft: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    flights_by_country: Mapped[Dict[str, int]] = mapped_column(
        JSON,
        nullable=False,
        default=dict,
        comment='Origin country -> distinct flights that day'
    )

    avg_altitude: Mapped[Optional[float]] = mapped_column(
        Float,
        nullable=True,
        comment='Mean of non-null position altitudes in meters'
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

    def __repr__(self) -> str:
        return f'<DailyStatistic {self.date} flights={self.total_flights}>'

    def to_dict(self) -> dict:
        return {
            'date': self.date.isoformat(),
            'total_flights': self.total_flights,
            'unique_aircraft': self.unique_aircraft,
            'flights_by_country': dict(self.flights_by_country or {}),
            'avg_altitude': round(self.avg_altitude, 2) if self.avg_altitude is not None else None,
        }
