"""
OpenSky Network API client.

Handles communication with the OpenSky REST API, including:
- Authentication (OAuth2 client credentials, legacy basic auth, or none)
- Bearer token caching and refresh
- Bounding box queries for geographic filtering
- Retries with exponential backoff on connection failures and timeouts
- Classification of error responses

OpenSky state vector format (array indices):
0: icao24          - ICAO24 hex address
1: callsign        - Callsign (8 chars max, space padded)
2: origin_country  - Country of registration
3: time_position   - Unix timestamp of last position update
4: last_contact    - Unix timestamp of last message
5: longitude       - WGS84 longitude
6: latitude        - WGS84 latitude
7: baro_altitude   - Barometric altitude (meters)
8: on_ground       - Boolean
9: velocity        - Ground speed (m/s)
10: true_track     - Track angle (degrees, 0=north)
11: vertical_rate  - Vertical rate (m/s)
12: sensors        - Sensor IDs (array)
13: geo_altitude   - Geometric altitude (meters)
14: squawk         - Transponder code
15: spi            - Special position indicator
16: position_source - 0=ADS-B, 1=ASTERIX, 2=MLAT, 3=FLARM
17: category       - Aircraft category (only with extended=1)

The client is not thread-safe. Each instance owns its own HTTP session and
token cache; two instances never share a token and may refresh redundantly.
"""

import logging
import random
import time
from dataclasses import dataclass
from typing import Any, Callable, List, Mapping, Optional, Tuple, Union

import requests
from requests.auth import HTTPBasicAuth

from flighttrack.config import AuthMode, config, resolve_auth_mode

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = 'https://opensky-network.org/api'

# Seconds shaved off the advertised token lifetime
TOKEN_EXPIRY_MARGIN = 30

STATE_VECTOR_FIELDS = 17


# -------------------------------------------------------------------------
# Errors
# -------------------------------------------------------------------------

class ApiError(Exception):
    """Upstream request failed; status_code is None for transport failures."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class RateLimitError(ApiError):
    """HTTP 429 from OpenSky."""

    def __init__(
        self,
        message: str = 'OpenSky API rate limit exceeded',
        retry_after: Optional[int] = None,
    ):
        super().__init__(message, status_code=429)
        self.retry_after = retry_after


class NotFoundError(ApiError):
    """HTTP 404 from OpenSky."""

    def __init__(self, message: str = 'OpenSky API endpoint not found'):
        super().__init__(message, status_code=404)


class ApiConnectionError(ApiError):
    """Could not connect to OpenSky after all retry attempts."""


class ApiTimeoutError(ApiError):
    """OpenSky did not answer in time after all retry attempts."""


# -------------------------------------------------------------------------
# Request / response records
# -------------------------------------------------------------------------

@dataclass
class BoundingBox:
    """
    Geographic bounding box for API queries.

    OpenSky expects: lamin, lomin, lamax, lomax
    (latitude min, longitude min, latitude max, longitude max).
    A box missing any bound is treated as no box at all.
    """
    lamin: Optional[float] = None
    lomin: Optional[float] = None
    lamax: Optional[float] = None
    lomax: Optional[float] = None

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> Optional['BoundingBox']:
        """
        Build a box from request arguments.

        Returns None unless all four bounds are present. Raises ValueError
        for bounds that are present but not numeric.
        """
        bounds = {}
        for key in ('lamin', 'lomin', 'lamax', 'lomax'):
            raw = values.get(key)
            if raw is None or raw == '':
                return None
            bounds[key] = float(raw)
        return cls(**bounds)

    @property
    def is_complete(self) -> bool:
        return None not in (self.lamin, self.lomin, self.lamax, self.lomax)

    def to_params(self) -> dict:
        """Convert to OpenSky API query parameters."""
        if not self.is_complete:
            return {}
        return {
            'lamin': self.lamin,
            'lomin': self.lomin,
            'lamax': self.lamax,
            'lomax': self.lomax,
        }

    def contains(self, latitude: float, longitude: float) -> bool:
        if not self.is_complete:
            return True
        return (
            self.lamin <= latitude <= self.lamax
            and self.lomin <= longitude <= self.lomax
        )


@dataclass
class StateVector:
    """
    Parsed state vector from OpenSky API.

    Normalizes the raw array format into a typed dataclass.
    All values may be None if not reported by the aircraft.
    """
    icao24: str
    callsign: Optional[str]
    origin_country: Optional[str]
    time_position: Optional[int]
    last_contact: Optional[int]
    longitude: Optional[float]
    latitude: Optional[float]
    baro_altitude: Optional[float]
    on_ground: bool
    velocity: Optional[float]
    true_track: Optional[float]
    vertical_rate: Optional[float]
    sensors: Optional[List[int]]
    geo_altitude: Optional[float]
    squawk: Optional[str]
    spi: bool
    position_source: Optional[int]
    category: Optional[int] = None

    @classmethod
    def from_array(cls, arr: Any) -> Optional['StateVector']:
        """
        Parse an OpenSky state vector array into a StateVector.

        Fields are taken strictly by position. Returns None when the entry
        is too short to map or carries no transponder code.
        """
        if not isinstance(arr, (list, tuple)) or len(arr) < STATE_VECTOR_FIELDS:
            return None

        icao24 = arr[0]
        if not icao24 or not isinstance(icao24, str):
            return None

        # Normalize callsign (strip padding, blank means absent)
        callsign = arr[1]
        if isinstance(callsign, str):
            callsign = callsign.strip() or None
        else:
            callsign = None

        return cls(
            icao24=icao24.strip().lower(),
            callsign=callsign,
            origin_country=arr[2],
            time_position=arr[3],
            last_contact=arr[4],
            longitude=arr[5],
            latitude=arr[6],
            baro_altitude=arr[7],
            on_ground=bool(arr[8]),
            velocity=arr[9],
            true_track=arr[10],
            vertical_rate=arr[11],
            sensors=arr[12],
            geo_altitude=arr[13],
            squawk=arr[14],
            spi=bool(arr[15]),
            position_source=arr[16],
            category=arr[17] if len(arr) > STATE_VECTOR_FIELDS else None,
        )

    def has_position(self) -> bool:
        """Check if this state has valid position data."""
        return self.latitude is not None and self.longitude is not None

    @property
    def altitude(self) -> Optional[float]:
        """Barometric altitude, falling back to geometric."""
        if self.baro_altitude is not None:
            return self.baro_altitude
        return self.geo_altitude


def parse_states(payload: Any) -> List[StateVector]:
    """
    Turn a states/all response body into StateVectors.

    A null body or a null/missing 'states' key is an empty snapshot, not an
    error.
    """
    if not isinstance(payload, dict):
        return []

    states_raw = payload.get('states') or []

    states = []
    for arr in states_raw:
        sv = StateVector.from_array(arr)
        if sv is None:
            logger.warning(f'Skipping malformed state vector: {arr!r}')
            continue
        states.append(sv)

    return states


# -------------------------------------------------------------------------
# Token lifecycle
# -------------------------------------------------------------------------

@dataclass(frozen=True)
class NoToken:
    """No bearer token has been obtained (or it was discarded)."""


@dataclass(frozen=True)
class ValidToken:
    """A bearer token and the monotonic instant it stops being usable."""
    access_token: str
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


TokenState = Union[NoToken, ValidToken]


class TokenCache:
    """
    Holds the OAuth bearer token for one client instance.

    Two states, NoToken and ValidToken, and a single transition,
    refresh_if_needed(). A failed fetch leaves the state untouched, so no
    partial or default token is ever handed out.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self.state: TokenState = NoToken()

    def refresh_if_needed(self, fetch: Callable[[], Tuple[str, float]]) -> str:
        """
        Return a usable token, calling fetch() only when none is cached or
        the cached one has expired.

        fetch returns (access_token, expires_in_seconds).
        """
        state = self.state
        if isinstance(state, ValidToken) and not state.is_expired(self._clock()):
            return state.access_token

        access_token, expires_in = fetch()
        lifetime = max(expires_in - TOKEN_EXPIRY_MARGIN, 0)
        self.state = ValidToken(access_token, self._clock() + lifetime)
        return access_token

    def invalidate(self) -> None:
        self.state = NoToken()


# -------------------------------------------------------------------------
# Client
# -------------------------------------------------------------------------

class OpenSkyClient:
    """
    Client for OpenSky Network API.

    Handles:
    - GET requests to /states/all endpoint
    - OAuth2 client-credentials or basic authentication
    - Bounding box filtering
    - Retry with backoff on transport failures (never on HTTP errors)
    """

    def __init__(
        self,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        base_url: str = DEFAULT_BASE_URL,
        token_url: Optional[str] = None,
        extended: bool = False,
        connect_timeout: float = 10.0,
        read_timeout: float = 30.0,
        max_attempts: int = 3,
        backoff_seconds: float = 0.5,
        session: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        rng: Optional[random.Random] = None,
    ):
        self.base_url = base_url.rstrip('/')
        self.token_url = token_url or config.opensky.token_url
        self.extended = extended
        self.timeout = (connect_timeout, read_timeout)
        self.max_attempts = max(1, max_attempts)
        self.backoff_seconds = backoff_seconds

        self.session = session or requests.Session()
        self._sleep = sleep
        self._rng = rng or random.Random()

        self.auth_mode = resolve_auth_mode(client_id, client_secret, username, password)
        self._client_id = client_id
        self._client_secret = client_secret
        self._basic_auth = None
        self.tokens = TokenCache(clock=clock)

        if self.auth_mode is AuthMode.OAUTH:
            logger.info('OpenSky client initialized with OAuth2 client credentials')
        elif self.auth_mode is AuthMode.BASIC:
            self._basic_auth = HTTPBasicAuth(username, password)
            logger.info('OpenSky client initialized with basic authentication')
        else:
            logger.warning('OpenSky client running without authentication (lower rate limits)')

    @classmethod
    def from_config(cls) -> 'OpenSkyClient':
        """Create client from application configuration."""
        opensky = config.opensky
        return cls(
            client_id=opensky.client_id,
            client_secret=opensky.client_secret,
            username=opensky.username,
            password=opensky.password,
            base_url=opensky.base_url,
            token_url=opensky.token_url,
            extended=opensky.extended,
            connect_timeout=opensky.connect_timeout,
            read_timeout=opensky.read_timeout,
            max_attempts=opensky.max_attempts,
            backoff_seconds=opensky.backoff_seconds,
        )

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _backoff_delay(self, attempt: int) -> float:
        """0.5s, 1s, 2s, ... plus up to 50% random jitter."""
        delay = self.backoff_seconds * (2 ** (attempt - 1))
        return delay + self._rng.uniform(0, delay * 0.5)

    def _send(self, method: str, url: str, **kwargs) -> requests.Response:
        """
        Issue one request, retrying connection failures and timeouts.

        Any HTTP response, whatever its status, is returned as-is for the
        caller to classify.
        """
        for attempt in range(1, self.max_attempts + 1):
            try:
                return self.session.request(method, url, timeout=self.timeout, **kwargs)
            except requests.exceptions.Timeout as e:
                last_exc = e
                error_cls, reason = ApiTimeoutError, f'OpenSky request timed out: {e}'
            except requests.exceptions.ConnectionError as e:
                last_exc = e
                error_cls, reason = ApiConnectionError, f'Failed to connect to OpenSky: {e}'
            except requests.exceptions.RequestException as e:
                # Truncated bodies, redirect loops, bad URLs: not retried
                logger.error(f'OpenSky request failed: {e}')
                raise ApiError(f'OpenSky request failed: {e}') from e

            if attempt >= self.max_attempts:
                logger.error(f'{reason} (giving up after {attempt} attempts)')
                raise error_cls(reason) from last_exc

            delay = self._backoff_delay(attempt)
            logger.warning(
                f'{reason}; retrying {method} {url} in {delay:.2f}s '
                f'(attempt {attempt}/{self.max_attempts})'
            )
            self._sleep(delay)

        # max_attempts >= 1, so the loop always returns or raises
        raise ApiError('OpenSky request exhausted retries without a response')

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    def _request_token(self) -> Tuple[str, float]:
        """POST client credentials to the token endpoint."""
        logger.info('Fetching OAuth2 token from OpenSky')
        response = self._send(
            'POST',
            self.token_url,
            data={
                'grant_type': 'client_credentials',
                'client_id': self._client_id,
                'client_secret': self._client_secret,
            },
            headers={'Content-Type': 'application/x-www-form-urlencoded'},
        )

        if response.status_code != 200:
            logger.error(f'OAuth token request failed: {response.status_code}')
            raise ApiError(
                f'OpenSky token request failed: {response.status_code}',
                status_code=response.status_code,
            )

        try:
            token_data = response.json()
        except ValueError as e:
            raise ApiError(f'OpenSky token response is not valid JSON: {e}')

        access_token = token_data.get('access_token') if isinstance(token_data, dict) else None
        if not access_token:
            raise ApiError('OpenSky token response missing access_token')

        try:
            expires_in = float(token_data.get('expires_in'))
        except (TypeError, ValueError):
            expires_in = 0.0

        logger.info(f'OpenSky OAuth2 token refreshed, expires in {expires_in:.0f}s')
        return access_token, expires_in

    def _auth_kwargs(self) -> dict:
        if self.auth_mode is AuthMode.OAUTH:
            token = self.tokens.refresh_if_needed(self._request_token)
            return {'headers': {'Authorization': f'Bearer {token}'}}
        if self.auth_mode is AuthMode.BASIC:
            return {'auth': self._basic_auth}
        return {}

    # ------------------------------------------------------------------
    # States
    # ------------------------------------------------------------------

    def _handle_response(self, response: requests.Response) -> List[StateVector]:
        status = response.status_code

        if status == 200:
            try:
                data = response.json()
            except ValueError as e:
                raise ApiError(f'OpenSky API returned invalid JSON: {e}', status_code=200)
            states = parse_states(data)
            logger.info(f'Received {len(states)} state vectors from OpenSky')
            return states

        if status == 429:
            logger.warning('OpenSky rate limit exceeded')
            raise RateLimitError(retry_after=_parse_retry_after(response.headers))

        if status == 404:
            logger.error('OpenSky API endpoint not found')
            raise NotFoundError()

        if status == 401 and self.auth_mode is AuthMode.OAUTH:
            # Token was revoked or expired early; next call re-authenticates
            self.tokens.invalidate()

        logger.error(f'OpenSky API error: {status}')
        raise ApiError(f'OpenSky API error: {status}', status_code=status)

    def fetch_states(self, bbox: Optional[BoundingBox] = None) -> List[StateVector]:
        """
        Fetch current state vectors from OpenSky.

        Args:
            bbox: Optional bounding box; ignored unless all four bounds are set

        Returns:
            StateVectors in the order OpenSky sent them, including those
            without a position

        Raises:
            RateLimitError, NotFoundError, ApiError (including
            ApiConnectionError / ApiTimeoutError once retries are exhausted)
        """
        url = f'{self.base_url}/states/all'
        params = bbox.to_params() if bbox else {}
        if self.extended:
            params['extended'] = 1

        request_kwargs = self._auth_kwargs()

        logger.debug(f'Fetching states: {url} params={params}')
        response = self._send('GET', url, params=params, **request_kwargs)
        return self._handle_response(response)


def _parse_retry_after(headers: Mapping[str, str]) -> Optional[int]:
    value = headers.get('Retry-After') or headers.get('X-Rate-Limit-Retry-After-Seconds')
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
