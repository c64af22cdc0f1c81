"""
FlightTrack Backend Package.

Flight-state ingestion and serving core built with Flask, SQLAlchemy and requests.

Modules:
    api/         REST endpoints for live flights, history, search and statistics
    models/      SQLAlchemy ORM models (Flight, Position, DailyStatistic)
    ingestion/   OpenSky Network client, flight registry and ingestion pipeline
    services/    Read path (live fallback, history) and scheduled maintenance
                 (daily statistics, retention)
    scheduler.py Periodic jobs (ingestion, statistics, retention)
    config.py    Centralized configuration from environment variables
"""

__version__ = '1.0.0'
