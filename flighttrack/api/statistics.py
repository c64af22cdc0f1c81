"""
Statistics API endpoints.

Provides endpoints for:
- GET /api/statistics - Daily rollups for a date range
- GET /api/status     - Ingestion status and configuration
"""

import logging
from datetime import date, datetime, timezone

from flask import Blueprint, current_app, jsonify, request

from flighttrack.config import config
from flighttrack.services import daily_statistics

logger = logging.getLogger(__name__)

statistics_bp = Blueprint('statistics', __name__, url_prefix='/api')


@statistics_bp.route('/statistics', methods=['GET'])
def list_statistics():
    """
    Daily statistics between start_date and end_date (inclusive, YYYY-MM-DD).
    """
    try:
        start_date = date.fromisoformat(request.args['start_date'])
        end_date = date.fromisoformat(request.args['end_date'])
    except KeyError:
        return jsonify({'error': 'start_date and end_date are required'}), 400
    except ValueError:
        return jsonify({'error': 'Dates must be YYYY-MM-DD'}), 400

    stats = daily_statistics(
        start_date,
        end_date,
        session_factory=current_app.config.get('SESSION_FACTORY'),
    )
    return jsonify({
        'statistics': [s.to_dict() for s in stats],
        'count': len(stats),
    })


@statistics_bp.route('/status', methods=['GET'])
def status():
    pipeline = current_app.config.get('INGESTION_PIPELINE')
    return jsonify({
        'ingestion': pipeline.stats if pipeline else None,
        'config': {
            'poll_interval': config.ingestion.poll_interval,
            'fallback_window_minutes': config.live.fallback_window_minutes,
            'retention_days': config.retention.position_days,
            'opensky_auth_mode': config.opensky.auth_mode.value,
        },
        'timestamp': datetime.now(timezone.utc).isoformat(),
    })
