"""Shared test fixtures for FlightTrack.

Provides:
- an in-memory SQLite database per test, with schema created
- builders for raw OpenSky state arrays and parsed StateVectors
- a fake OpenSky client for pipeline and live-query tests
- fake HTTP responses for client tests
"""

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from flighttrack.ingestion.opensky_client import StateVector
from flighttrack.models import Flight, Position, init_db
from flighttrack.models.base import install_sqlite_pragmas

# Fixed "now" for deterministic time-window tests
NOW = datetime(2026, 3, 15, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def engine():
    """Fresh in-memory database shared across sessions of one test."""
    eng = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    install_sqlite_pragmas(eng)
    init_db(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def session(session_factory):
    s = session_factory()
    yield s
    s.close()


def state_array(
    icao24='abc123',
    callsign='UAL123  ',
    origin_country='United States',
    latitude=37.7749,
    longitude=-122.4194,
    baro_altitude=10000.0,
    geo_altitude=10500.0,
    on_ground=False,
    velocity=250.5,
    true_track=180.0,
    vertical_rate=5.0,
    time_position=1609459200,
    last_contact=1609459200,
    category=None,
):
    """Raw OpenSky state array (17 elements, 18 when category is given)."""
    arr = [
        icao24, callsign, origin_country, time_position, last_contact,
        longitude, latitude, baro_altitude, on_ground, velocity,
        true_track, vertical_rate, None, geo_altitude, '1234', False, 0,
    ]
    if category is not None:
        arr.append(category)
    return arr


@pytest.fixture
def make_state():
    """Factory for parsed StateVectors; accepts state_array() overrides."""
    def _make(**overrides):
        return StateVector.from_array(state_array(**overrides))
    return _make


class FakeClient:
    """Stands in for OpenSkyClient; returns canned states or raises."""

    def __init__(self, states=None, error=None):
        self.states = list(states or [])
        self.error = error
        self.calls = []

    def fetch_states(self, bbox=None):
        self.calls.append(bbox)
        if self.error is not None:
            raise self.error
        return list(self.states)


@pytest.fixture
def fake_client():
    return FakeClient


def make_response(status_code=200, json_body=None, headers=None, invalid_json=False):
    """MagicMock shaped like a requests.Response."""
    response = MagicMock()
    response.status_code = status_code
    response.headers = headers or {}
    if invalid_json:
        response.json.side_effect = ValueError('Expecting value')
    else:
        response.json.return_value = json_body
    return response


@pytest.fixture
def add_position(session_factory):
    """Insert a flight (if new) and one position for it; returns the position id."""
    def _add(icao24, recorded_at, latitude=40.0, longitude=29.0, altitude=None,
             callsign=None, origin_country='Turkey', on_ground=False, velocity=None):
        with session_factory() as s:
            flight = s.query(Flight).filter(Flight.icao24 == icao24).first()
            if flight is None:
                flight = Flight(
                    icao24=icao24,
                    callsign=callsign,
                    origin_country=origin_country,
                    first_seen_at=recorded_at,
                    last_seen_at=recorded_at,
                )
                s.add(flight)
            position = Position(
                flight=flight,
                latitude=latitude,
                longitude=longitude,
                altitude=altitude,
                velocity=velocity,
                on_ground=on_ground,
                recorded_at=recorded_at,
            )
            s.add(position)
            s.commit()
            return position.id
    return _add
