"""
Configuration management for FlightTrack.

Loads settings from environment variables with sensible defaults.
All configuration is centralized here to avoid magic strings scattered
throughout the codebase.
"""

import os
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


class AuthMode(str, Enum):
    """How the OpenSky client authenticates."""
    OAUTH = 'oauth'
    BASIC = 'basic'
    NONE = 'none'


def resolve_auth_mode(
    client_id: Optional[str],
    client_secret: Optional[str],
    username: Optional[str],
    password: Optional[str],
) -> AuthMode:
    """OAuth wins over basic auth; both need every credential non-empty."""
    if client_id and client_secret:
        return AuthMode.OAUTH
    if username and password:
        return AuthMode.BASIC
    return AuthMode.NONE


@dataclass(frozen=True)
class OpenSkyConfig:
    """OpenSky API configuration."""
    client_id: Optional[str] = os.getenv('OPENSKY_CLIENT_ID') or None
    client_secret: Optional[str] = os.getenv('OPENSKY_CLIENT_SECRET') or None
    username: Optional[str] = os.getenv('OPENSKY_USERNAME') or None
    password: Optional[str] = os.getenv('OPENSKY_PASSWORD') or None
    base_url: str = os.getenv('OPENSKY_BASE_URL', 'https://opensky-network.org/api')
    token_url: str = os.getenv(
        'OPENSKY_TOKEN_URL',
        'https://auth.opensky-network.org/auth/realms/opensky-network'
        '/protocol/openid-connect/token',
    )
    extended: bool = os.getenv('OPENSKY_EXTENDED', '0') == '1'

    connect_timeout: float = 10.0
    read_timeout: float = 30.0
    max_attempts: int = 3
    backoff_seconds: float = 0.5

    @property
    def auth_mode(self) -> AuthMode:
        return resolve_auth_mode(
            self.client_id, self.client_secret, self.username, self.password
        )


@dataclass(frozen=True)
class DatabaseConfig:
    """Database configuration."""
    url: str = os.getenv('DATABASE_URL', 'sqlite:///flighttrack.db')

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith('sqlite')


@dataclass(frozen=True)
class IngestionConfig:
    """Data ingestion settings."""
    poll_interval: int = int(os.getenv('POLL_INTERVAL_SECONDS', '60'))

    # Max transponder codes per IN (...) lookup when preloading flights
    batch_size: int = 500


@dataclass(frozen=True)
class LiveConfig:
    """Live query fallback settings."""
    fallback_window_minutes: int = int(os.getenv('LIVE_FALLBACK_WINDOW_MINUTES', '120'))


@dataclass(frozen=True)
class RetentionConfig:
    """Data retention policy."""
    position_days: int = int(os.getenv('RETENTION_POSITION_DAYS', '30'))


@dataclass(frozen=True)
class AppConfig:
    """Main application configuration."""
    opensky: OpenSkyConfig
    database: DatabaseConfig
    ingestion: IngestionConfig
    live: LiveConfig
    retention: RetentionConfig

    # Flask settings
    secret_key: str
    debug: bool


def load_config() -> AppConfig:
    """Load and validate all configuration."""
    return AppConfig(
        opensky=OpenSkyConfig(),
        database=DatabaseConfig(),
        ingestion=IngestionConfig(),
        live=LiveConfig(),
        retention=RetentionConfig(),
        secret_key=os.getenv('SECRET_KEY', 'dev-key-change-in-prod'),
        debug=os.getenv('FLASK_DEBUG', '0') == '1',
    )


# Singleton instance
config = load_config()
