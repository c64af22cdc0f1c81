"""
Daily traffic statistics.

Rolls the position store up into one DailyStatistic row per UTC day.
Re-running a day recomputes from the positions and overwrites that day's
row, so the job is idempotent.
"""

import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Callable, Dict, List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.orm import Session, sessionmaker

from flighttrack.models import DailyStatistic, Flight, Position, SessionLocal, get_session, utcnow

logger = logging.getLogger(__name__)

UNKNOWN_COUNTRY = 'Unknown'


def day_window(day: date) -> Tuple[datetime, datetime]:
    """Half-open [start, end) UTC span covering one calendar day."""
    start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


class StatisticsAggregator:
    """Computes and stores daily rollups."""

    def __init__(
        self,
        session_factory: Optional[sessionmaker] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self._clock = clock

    def generate_for(self, day: Optional[date] = None) -> DailyStatistic:
        """
        Compute and persist statistics for one day (yesterday by default).

        Returns the stored row.
        """
        day = day or (self._clock().date() - timedelta(days=1))
        logger.info(f'Generating statistics for {day}')

        with get_session(self.session_factory) as session:
            figures = self._compute(session, day)

            stat = session.scalars(
                select(DailyStatistic).where(DailyStatistic.date == day)
            ).first()
            if stat is None:
                stat = DailyStatistic(date=day)
                session.add(stat)

            stat.total_flights = figures['total_flights']
            stat.unique_aircraft = figures['unique_aircraft']
            stat.flights_by_country = figures['flights_by_country']
            stat.avg_altitude = figures['avg_altitude']

        logger.info(
            f'Generated stats for {day}: {stat.total_flights} flights, '
            f'{stat.unique_aircraft} aircraft'
        )
        return stat

    def _compute(self, session: Session, day: date) -> dict:
        start, end = day_window(day)
        in_window = (Position.recorded_at >= start, Position.recorded_at < end)

        day_flight_ids = select(Position.flight_id).where(*in_window).distinct()

        total_flights = session.scalar(
            select(func.count(func.distinct(Position.flight_id))).where(*in_window)
        ) or 0

        unique_aircraft = session.scalar(
            select(func.count(func.distinct(Flight.icao24)))
            .where(Flight.id.in_(day_flight_ids))
        ) or 0

        flights_by_country: Dict[str, int] = {}
        rows = session.execute(
            select(Flight.origin_country, func.count(Flight.id))
            .where(Flight.id.in_(day_flight_ids))
            .group_by(Flight.origin_country)
        ).all()
        for country, count in rows:
            key = UNKNOWN_COUNTRY if country is None else country
            flights_by_country[key] = flights_by_country.get(key, 0) + count

        avg_altitude = session.scalar(
            select(func.avg(Position.altitude))
            .where(*in_window, Position.altitude.is_not(None))
        )

        return {
            'total_flights': total_flights,
            'unique_aircraft': unique_aircraft,
            'flights_by_country': flights_by_country,
            'avg_altitude': float(avg_altitude) if avg_altitude is not None else None,
        }


def daily_statistics(
    start_date: date,
    end_date: date,
    session_factory: Optional[sessionmaker] = None,
) -> List[DailyStatistic]:
    """Stored rollups for an inclusive date range, oldest first."""
    with (session_factory or SessionLocal)() as session:
        return list(session.scalars(
            select(DailyStatistic)
            .where(DailyStatistic.date >= start_date, DailyStatistic.date <= end_date)
            .order_by(DailyStatistic.date.asc())
        ).all())
