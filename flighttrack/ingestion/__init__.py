"""
Data ingestion from OpenSky Network.

Handles fetching, normalizing and storing aircraft state vectors.
"""

from flighttrack.ingestion.opensky_client import (
    ApiConnectionError,
    ApiError,
    ApiTimeoutError,
    BoundingBox,
    NotFoundError,
    OpenSkyClient,
    RateLimitError,
    StateVector,
)
from flighttrack.ingestion.pipeline import (
    IngestionPipeline,
    IngestionResult,
    PersistenceError,
    RefreshResult,
)

__all__ = [
    'ApiConnectionError',
    'ApiError',
    'ApiTimeoutError',
    'BoundingBox',
    'NotFoundError',
    'OpenSkyClient',
    'RateLimitError',
    'StateVector',
    'IngestionPipeline',
    'IngestionResult',
    'PersistenceError',
    'RefreshResult',
]
