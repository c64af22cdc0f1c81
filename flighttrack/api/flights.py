"""
Flight data API endpoints.

Provides endpoints for:
- GET  /api/flights/live              - Current flights (live or cached fallback)
- GET  /api/flights                   - Search tracked flights
- GET  /api/flights/<icao24>          - Single flight details
- GET  /api/flights/<icao24>/history  - Position history for a flight
- POST /api/refresh                   - Run one ingestion cycle now
"""

import logging
import time
from datetime import datetime
from typing import Optional

from flask import Blueprint, current_app, jsonify, request

from flighttrack.ingestion import BoundingBox, NotFoundError
from flighttrack.models import as_utc
from flighttrack.services import (
    LiveFlightsUnavailable, flight_history, get_flight, search_flights,
)

logger = logging.getLogger(__name__)

flights_bp = Blueprint('flights', __name__, url_prefix='/api')


class InvalidQuery(ValueError):
    """Query parameter could not be parsed."""


def _bbox_from_args() -> Optional[BoundingBox]:
    try:
        return BoundingBox.from_mapping(request.args)
    except ValueError:
        raise InvalidQuery('Bounding box bounds must be numbers')


def _datetime_arg(name: str) -> Optional[datetime]:
    raw = request.args.get(name)
    if not raw:
        return None
    try:
        return as_utc(datetime.fromisoformat(raw.replace('Z', '+00:00')))
    except ValueError:
        raise InvalidQuery(f'{name} must be an ISO-8601 datetime')


def _int_arg(name: str, default: int) -> int:
    raw = request.args.get(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        raise InvalidQuery(f'{name} must be an integer')


def _session_factory():
    return current_app.config.get('SESSION_FACTORY')


@flights_bp.errorhandler(InvalidQuery)
def invalid_query(e):
    return jsonify({'error': str(e)}), 400


@flights_bp.route('/flights/live', methods=['GET'])
def live_flights():
    """
    Current flights, optionally inside lamin/lomin/lamax/lomax.

    Response says whether data is fresh ('live') or served from stored
    positions ('cache') and how old the stalest cached position is.
    503 when OpenSky is failing and nothing is cached.
    """
    start_time = time.perf_counter()
    bbox = _bbox_from_args()
    service = current_app.config['LIVE_FLIGHT_SERVICE']

    try:
        result = service.live_flights(bbox)
    except LiveFlightsUnavailable as e:
        return jsonify({'error': e.message, 'source': 'unavailable'}), 503
    except NotFoundError as e:
        return jsonify({'error': e.message}), 502

    payload = result.to_dict()
    payload['query_time_ms'] = round((time.perf_counter() - start_time) * 1000, 2)
    return jsonify(payload)


@flights_bp.route('/flights', methods=['GET'])
def list_flights():
    """
    Search tracked flights.

    Query parameters:
    - callsign: substring, case-insensitive
    - country: exact origin country
    - lamin, lomin, lamax, lomax: latest position inside box
    - limit (default 50, max 500), offset (default 0)
    """
    start_time = time.perf_counter()

    page = search_flights(
        callsign=request.args.get('callsign') or None,
        country=request.args.get('country') or None,
        bbox=_bbox_from_args(),
        limit=_int_arg('limit', 50),
        offset=_int_arg('offset', 0),
        session_factory=_session_factory(),
    )

    payload = page.to_dict()
    payload['query_time_ms'] = round((time.perf_counter() - start_time) * 1000, 2)
    return jsonify(payload)


@flights_bp.route('/flights/<icao24>', methods=['GET'])
def flight_detail(icao24: str):
    flight = get_flight(icao24, session_factory=_session_factory())
    if flight is None:
        return jsonify({'error': 'Flight not found'}), 404
    return jsonify(flight.to_dict())


@flights_bp.route('/flights/<icao24>/history', methods=['GET'])
def flight_history_view(icao24: str):
    """
    Position history for a flight, oldest first.

    Query parameters:
    - start, end: ISO-8601 datetimes (inclusive, optional)
    """
    start_time = time.perf_counter()

    positions = flight_history(
        icao24,
        start=_datetime_arg('start'),
        end=_datetime_arg('end'),
        session_factory=_session_factory(),
    )

    return jsonify({
        'icao24': icao24.lower(),
        'positions': [p.to_dict() for p in positions],
        'count': len(positions),
        'query_time_ms': round((time.perf_counter() - start_time) * 1000, 2),
    })


@flights_bp.route('/refresh', methods=['POST'])
def refresh():
    """
    Run one ingestion cycle on demand.

    Always 200; upstream and persistence failures come back with
    success=false and the reason in errors.
    """
    pipeline = current_app.config['INGESTION_PIPELINE']
    result = pipeline.refresh()
    return jsonify(result.to_dict())
