"""
Retention sweep for the position store.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy import delete
from sqlalchemy.orm import sessionmaker

from flighttrack.config import config
from flighttrack.models import Position, as_utc, get_session, utcnow

logger = logging.getLogger(__name__)


class RetentionSweeper:
    """Hard-deletes positions older than the retention horizon."""

    def __init__(
        self,
        session_factory: Optional[sessionmaker] = None,
        retention: Optional[timedelta] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.retention = retention or timedelta(days=config.retention.position_days)
        self._clock = clock

    def cutoff(self) -> datetime:
        return as_utc(self._clock()) - self.retention

    def sweep(self) -> int:
        """Delete expired positions; returns the number removed (0 is normal)."""
        cutoff = self.cutoff()
        logger.info(f'Cleaning positions older than {cutoff.isoformat()}')

        with get_session(self.session_factory) as session:
            result = session.execute(
                delete(Position)
                .where(Position.recorded_at < cutoff)
                .execution_options(synchronize_session=False)
            )
            deleted = result.rowcount or 0

        logger.info(f'Deleted {deleted} old position records')
        return deleted
