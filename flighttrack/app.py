"""
FlightTrack Flask Application.

Main entry point for the web application. Initializes:
- Database schema
- OpenSky client, ingestion pipeline and live flight service
- Background scheduler (ingestion, daily statistics, retention)
- API routes

Usage:
    python -m flighttrack.app

Or with gunicorn:
    gunicorn 'flighttrack.app:create_app()'
"""

import logging
import os
from typing import Optional

from flask import Flask
from flask_cors import CORS
from sqlalchemy.orm import sessionmaker

from flighttrack.api import flights_bp, statistics_bp
from flighttrack.config import config
from flighttrack.ingestion import IngestionPipeline, OpenSkyClient
from flighttrack.models import init_db
from flighttrack.scheduler import build_scheduler
from flighttrack.services import LiveFlightService

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if config.debug else logging.INFO,
    format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S',
)
logger = logging.getLogger(__name__)


def create_app(
    start_scheduler: bool = True,
    session_factory: Optional[sessionmaker] = None,
    client: Optional[OpenSkyClient] = None,
) -> Flask:
    """
    Application factory for Flask.

    Args:
        start_scheduler: Whether to start the background jobs.
                         Set to False for testing.
        session_factory: sessionmaker to use instead of the configured database
        client: OpenSky client to share between ingestion and live queries

    Returns:
        Configured Flask application instance.
    """
    app = Flask(__name__)
    app.config['SECRET_KEY'] = config.secret_key

    # Enable CORS for API endpoints
    CORS(app, resources={r'/api/*': {'origins': '*'}})

    logger.info('Initializing database...')
    init_db(bind=session_factory.kw.get('bind') if session_factory else None)

    client = client or OpenSkyClient.from_config()
    pipeline = IngestionPipeline(client=client, session_factory=session_factory)
    live_service = LiveFlightService(client=client, session_factory=session_factory)

    app.config['SESSION_FACTORY'] = session_factory
    app.config['INGESTION_PIPELINE'] = pipeline
    app.config['LIVE_FLIGHT_SERVICE'] = live_service

    app.register_blueprint(flights_bp)
    app.register_blueprint(statistics_bp)

    if start_scheduler:
        scheduler = build_scheduler(pipeline)
        scheduler.start()
        app.config['SCHEDULER'] = scheduler
        logger.info('Background scheduler started')
    else:
        app.config['SCHEDULER'] = None

    @app.route('/health')
    def health():
        """Simple health check endpoint."""
        return {'status': 'ok'}

    @app.errorhandler(404)
    def not_found(e):
        return {'error': 'Not found'}, 404

    @app.errorhandler(500)
    def server_error(e):
        logger.error(f'Server error: {e}')
        return {'error': 'Internal server error'}, 500

    return app


def run_development_server():
    """Run the development server."""
    app = create_app()

    port = int(os.environ.get('PORT', 5000))
    logger.info(f'Starting FlightTrack on http://localhost:{port}')

    app.run(
        host='0.0.0.0',
        port=port,
        debug=config.debug,
        use_reloader=False,  # Reloader would start a second scheduler
    )


if __name__ == '__main__':
    run_development_server()
