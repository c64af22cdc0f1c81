"""
Read-path and maintenance services.

Live flights with cached fallback, history and search, daily statistics,
and the position retention sweep.
"""

from flighttrack.services.history import FlightPage, flight_history, get_flight, search_flights
from flighttrack.services.live_flights import (
    LiveFlight,
    LiveFlightService,
    LiveFlightsResult,
    LiveFlightsUnavailable,
)
from flighttrack.services.retention import RetentionSweeper
from flighttrack.services.statistics import StatisticsAggregator, daily_statistics

__all__ = [
    'FlightPage',
    'flight_history',
    'get_flight',
    'search_flights',
    'LiveFlight',
    'LiveFlightService',
    'LiveFlightsResult',
    'LiveFlightsUnavailable',
    'RetentionSweeper',
    'StatisticsAggregator',
    'daily_statistics',
]
