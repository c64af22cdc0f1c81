"""
REST API endpoints for FlightTrack.

Blueprints:
    flights_bp    - /api/flights/*, /api/refresh
    statistics_bp - /api/statistics, /api/status
"""

from flighttrack.api.flights import flights_bp
from flighttrack.api.statistics import statistics_bp

__all__ = ['flights_bp', 'statistics_bp']
