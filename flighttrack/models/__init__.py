"""
Database models for FlightTrack.

Schema designed for time-series telemetry data with these priorities:
1. Fast ingestion (one transaction per cycle)
2. Efficient time-range queries per flight
3. Low-latency lookups by ICAO24
4. Whole-day scans for daily rollups
"""

from flighttrack.models.base import (
    Base, engine, SessionLocal, init_db, get_session, utcnow, as_utc,
)
from flighttrack.models.flight import Flight
from flighttrack.models.position import Position
from flighttrack.models.daily_statistic import DailyStatistic

__all__ = [
    'Base',
    'engine',
    'SessionLocal',
    'init_db',
    'get_session',
    'utcnow',
    'as_utc',
    'Flight',
    'Position',
    'DailyStatistic',
]
