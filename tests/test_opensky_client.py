"""Tests for the OpenSky client.

All HTTP calls are mocked; no real network traffic.
"""

from unittest.mock import MagicMock

import pytest
import requests
from requests.auth import HTTPBasicAuth

from flighttrack.config import AuthMode
from flighttrack.ingestion.opensky_client import (
    ApiConnectionError,
    ApiError,
    ApiTimeoutError,
    BoundingBox,
    NoToken,
    NotFoundError,
    OpenSkyClient,
    RateLimitError,
    StateVector,
    TokenCache,
    ValidToken,
    parse_states,
)

from conftest import make_response, state_array

BASE_URL = 'https://opensky.test/api'
TOKEN_URL = 'https://auth.opensky.test/token'


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


class Router:
    """Dispatches session.request calls to canned token / states responses."""

    def __init__(self, states_responses=None, token_responses=None):
        self.states_responses = list(states_responses or [])
        self.token_responses = list(token_responses or [])
        self.calls = []

    def __call__(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        queue = self.token_responses if method == 'POST' else self.states_responses
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        return item

    def count(self, method):
        return sum(1 for m, _, _ in self.calls if m == method)


def ok_states(*arrays):
    return make_response(200, {'time': 1609459200, 'states': list(arrays)})


def token_response(token='tok-1', expires_in=300):
    return make_response(200, {'access_token': token, 'expires_in': expires_in})


def make_client(router, sleeps=None, clock=None, **kwargs):
    session = MagicMock()
    session.request.side_effect = router
    return OpenSkyClient(
        base_url=BASE_URL,
        token_url=TOKEN_URL,
        session=session,
        sleep=(sleeps.append if sleeps is not None else (lambda s: None)),
        clock=clock or FakeClock(),
        **kwargs,
    )


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

class TestParseStates:
    def test_maps_fields_by_position(self):
        states = parse_states({'time': 1, 'states': [state_array()]})

        assert len(states) == 1
        sv = states[0]
        assert sv.icao24 == 'abc123'
        assert sv.callsign == 'UAL123'
        assert sv.origin_country == 'United States'
        assert sv.longitude == -122.4194
        assert sv.latitude == 37.7749
        assert sv.baro_altitude == 10000.0
        assert sv.geo_altitude == 10500.0
        assert sv.velocity == 250.5
        assert sv.true_track == 180.0
        assert sv.vertical_rate == 5.0
        assert sv.squawk == '1234'
        assert sv.position_source == 0
        assert sv.category is None

    def test_null_states_is_empty(self):
        assert parse_states({'time': 1, 'states': None}) == []

    def test_missing_states_key_is_empty(self):
        assert parse_states({'time': 1}) == []

    def test_null_payload_is_empty(self):
        assert parse_states(None) == []

    def test_blank_callsign_is_absent(self):
        states = parse_states({'states': [state_array(callsign='        ')]})
        assert states[0].callsign is None

    def test_keeps_states_without_position(self):
        states = parse_states({'states': [state_array(latitude=None, longitude=None)]})
        assert len(states) == 1
        assert not states[0].has_position()

    def test_extended_category(self):
        states = parse_states({'states': [state_array(category=3)]})
        assert states[0].category == 3

    def test_skips_short_entries(self):
        states = parse_states({'states': [['abc123', 'X'], state_array(icao24='def456')]})
        assert [s.icao24 for s in states] == ['def456']

    def test_preserves_order(self):
        states = parse_states({'states': [
            state_array(icao24='aaa111'),
            state_array(icao24='bbb222'),
            state_array(icao24='ccc333'),
        ]})
        assert [s.icao24 for s in states] == ['aaa111', 'bbb222', 'ccc333']


class TestStateVectorAltitude:
    def test_prefers_barometric(self):
        sv = StateVector.from_array(state_array(baro_altitude=9000.0, geo_altitude=9100.0))
        assert sv.altitude == 9000.0

    def test_falls_back_to_geometric(self):
        sv = StateVector.from_array(state_array(baro_altitude=None, geo_altitude=9100.0))
        assert sv.altitude == 9100.0

    def test_none_when_both_missing(self):
        sv = StateVector.from_array(state_array(baro_altitude=None, geo_altitude=None))
        assert sv.altitude is None


class TestBoundingBox:
    def test_complete_box_to_params(self):
        bbox = BoundingBox(lamin=45.0, lomin=5.0, lamax=47.0, lomax=10.0)
        assert bbox.to_params() == {'lamin': 45.0, 'lomin': 5.0, 'lamax': 47.0, 'lomax': 10.0}

    def test_partial_box_is_ignored(self):
        bbox = BoundingBox(lamin=45.0, lomin=5.0, lamax=47.0)
        assert not bbox.is_complete
        assert bbox.to_params() == {}

    def test_from_mapping_requires_all_bounds(self):
        assert BoundingBox.from_mapping({'lamin': '1', 'lomin': '2', 'lamax': '3'}) is None
        bbox = BoundingBox.from_mapping({'lamin': '1', 'lomin': '2', 'lamax': '3', 'lomax': '4'})
        assert bbox == BoundingBox(1.0, 2.0, 3.0, 4.0)

    def test_from_mapping_rejects_non_numeric(self):
        with pytest.raises(ValueError):
            BoundingBox.from_mapping({'lamin': 'x', 'lomin': '2', 'lamax': '3', 'lomax': '4'})


# ---------------------------------------------------------------------------
# Requests and error classification
# ---------------------------------------------------------------------------

class TestFetchStates:
    def test_returns_parsed_states(self):
        router = Router(states_responses=[ok_states(state_array())])
        client = make_client(router)

        states = client.fetch_states()

        assert [s.icao24 for s in states] == ['abc123']
        method, url, kwargs = router.calls[0]
        assert method == 'GET'
        assert url == f'{BASE_URL}/states/all'
        assert kwargs['params'] == {}
        assert kwargs['timeout'] == (10.0, 30.0)

    def test_sends_complete_bounding_box(self):
        router = Router(states_responses=[ok_states()])
        client = make_client(router)

        client.fetch_states(BoundingBox(lamin=45.0, lomin=5.0, lamax=47.0, lomax=10.0))

        assert router.calls[0][2]['params'] == {
            'lamin': 45.0, 'lomin': 5.0, 'lamax': 47.0, 'lomax': 10.0,
        }

    def test_partial_bounding_box_sends_no_params(self):
        router = Router(states_responses=[ok_states()])
        client = make_client(router)

        client.fetch_states(BoundingBox(lamin=45.0, lamax=47.0))

        assert router.calls[0][2]['params'] == {}

    def test_extended_mode_requests_category(self):
        router = Router(states_responses=[ok_states(state_array(category=4))])
        client = make_client(router, extended=True)

        states = client.fetch_states()

        assert router.calls[0][2]['params'] == {'extended': 1}
        assert states[0].category == 4

    def test_null_states_returns_empty(self):
        router = Router(states_responses=[make_response(200, {'time': 1, 'states': None})])
        assert make_client(router).fetch_states() == []

    def test_rate_limit(self):
        router = Router(states_responses=[make_response(429, headers={'Retry-After': '12'})])
        client = make_client(router)

        with pytest.raises(RateLimitError) as exc_info:
            client.fetch_states()

        assert exc_info.value.retry_after == 12
        assert exc_info.value.status_code == 429
        assert router.count('GET') == 1

    def test_not_found(self):
        router = Router(states_responses=[make_response(404)])
        with pytest.raises(NotFoundError):
            make_client(router).fetch_states()

    def test_other_status_is_api_error_with_status(self):
        router = Router(states_responses=[make_response(503)])
        client = make_client(router)

        with pytest.raises(ApiError) as exc_info:
            client.fetch_states()

        assert exc_info.value.status_code == 503
        assert not isinstance(exc_info.value, (RateLimitError, NotFoundError))

    def test_http_errors_are_not_retried(self):
        sleeps = []
        router = Router(states_responses=[make_response(500)])
        client = make_client(router, sleeps=sleeps)

        with pytest.raises(ApiError):
            client.fetch_states()

        assert router.count('GET') == 1
        assert sleeps == []

    def test_invalid_json_is_api_error(self):
        router = Router(states_responses=[make_response(200, invalid_json=True)])
        with pytest.raises(ApiError):
            make_client(router).fetch_states()


class TestRetry:
    def test_retries_connection_errors_with_backoff(self):
        sleeps = []
        router = Router(states_responses=[
            requests.exceptions.ConnectionError('refused'),
            requests.exceptions.ConnectionError('refused'),
            ok_states(state_array()),
        ])
        client = make_client(router, sleeps=sleeps)

        states = client.fetch_states()

        assert len(states) == 1
        assert router.count('GET') == 3
        assert len(sleeps) == 2
        assert 0.5 <= sleeps[0] <= 0.75
        assert 1.0 <= sleeps[1] <= 1.5

    def test_timeout_exhausts_attempts(self):
        sleeps = []
        router = Router(states_responses=[requests.exceptions.ReadTimeout('slow')])
        client = make_client(router, sleeps=sleeps)

        with pytest.raises(ApiTimeoutError):
            client.fetch_states()

        assert router.count('GET') == 3
        assert len(sleeps) == 2

    def test_connection_failure_exhausts_attempts(self):
        router = Router(states_responses=[requests.exceptions.ConnectionError('down')])
        client = make_client(router)

        with pytest.raises(ApiConnectionError) as exc_info:
            client.fetch_states()

        assert isinstance(exc_info.value, ApiError)
        assert exc_info.value.status_code is None

    @pytest.mark.parametrize('error', [
        requests.exceptions.ChunkedEncodingError('truncated body'),
        requests.exceptions.ContentDecodingError('bad gzip'),
        requests.exceptions.TooManyRedirects('redirect loop'),
        requests.exceptions.InvalidURL('bad url'),
    ])
    def test_other_request_failures_are_api_errors(self, error):
        sleeps = []
        router = Router(states_responses=[error])
        client = make_client(router, sleeps=sleeps)

        with pytest.raises(ApiError) as exc_info:
            client.fetch_states()

        assert not isinstance(exc_info.value, (ApiConnectionError, ApiTimeoutError))
        assert exc_info.value.__cause__ is error
        assert router.count('GET') == 1
        assert sleeps == []


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------

class TestAuthMode:
    def test_oauth_takes_precedence(self):
        client = make_client(Router(), client_id='id', client_secret='secret',
                             username='user', password='pass')
        assert client.auth_mode is AuthMode.OAUTH

    def test_basic_auth(self):
        router = Router(states_responses=[ok_states()])
        client = make_client(router, username='user', password='pass')

        client.fetch_states()

        assert client.auth_mode is AuthMode.BASIC
        auth = router.calls[0][2]['auth']
        assert isinstance(auth, HTTPBasicAuth)
        assert auth.username == 'user'
        assert router.count('POST') == 0

    def test_partial_credentials_are_unauthenticated(self):
        router = Router(states_responses=[ok_states()])
        client = make_client(router, client_id='id', username='user')

        client.fetch_states()

        assert client.auth_mode is AuthMode.NONE
        assert 'auth' not in router.calls[0][2]
        assert 'headers' not in router.calls[0][2]


class TestOAuthToken:
    def oauth_client(self, router, clock):
        return make_client(router, clock=clock, client_id='id', client_secret='secret')

    def test_token_reused_until_expiry(self):
        clock = FakeClock(1000.0)
        router = Router(
            states_responses=[ok_states()],
            token_responses=[token_response('tok-1', 300), token_response('tok-2', 300)],
        )
        client = self.oauth_client(router, clock)

        client.fetch_states()
        assert router.count('POST') == 1

        clock.now += 200  # still inside 300 - 30
        client.fetch_states()
        assert router.count('POST') == 1

        clock.now += 100  # past 1270
        client.fetch_states()
        assert router.count('POST') == 2

        get_headers = [kw['headers'] for m, _, kw in router.calls if m == 'GET']
        assert get_headers[0] == {'Authorization': 'Bearer tok-1'}
        assert get_headers[1] == {'Authorization': 'Bearer tok-1'}
        assert get_headers[2] == {'Authorization': 'Bearer tok-2'}

    def test_token_request_body(self):
        router = Router(states_responses=[ok_states()], token_responses=[token_response()])
        client = self.oauth_client(router, FakeClock())

        client.fetch_states()

        method, url, kwargs = router.calls[0]
        assert (method, url) == ('POST', TOKEN_URL)
        assert kwargs['data'] == {
            'grant_type': 'client_credentials',
            'client_id': 'id',
            'client_secret': 'secret',
        }

    def test_expiry_margin_applied(self):
        clock = FakeClock(1000.0)
        router = Router(states_responses=[ok_states()], token_responses=[token_response('t', 300)])
        client = self.oauth_client(router, clock)

        client.fetch_states()

        assert client.tokens.state == ValidToken('t', 1270.0)

    def test_short_lived_token_refreshes_every_call(self):
        clock = FakeClock()
        router = Router(states_responses=[ok_states()], token_responses=[token_response('t', 20)])
        client = self.oauth_client(router, clock)

        client.fetch_states()
        client.fetch_states()

        assert router.count('POST') == 2

    def test_token_error_status_aborts_fetch(self):
        router = Router(states_responses=[ok_states()], token_responses=[make_response(401)])
        client = self.oauth_client(router, FakeClock())

        with pytest.raises(ApiError) as exc_info:
            client.fetch_states()

        assert exc_info.value.status_code == 401
        assert router.count('GET') == 0
        assert isinstance(client.tokens.state, NoToken)

    def test_missing_access_token_aborts_fetch(self):
        router = Router(
            states_responses=[ok_states()],
            token_responses=[make_response(200, {'expires_in': 300})],
        )
        client = self.oauth_client(router, FakeClock())

        with pytest.raises(ApiError):
            client.fetch_states()

        assert router.count('GET') == 0

    def test_token_network_error_retried_then_raised(self):
        router = Router(
            states_responses=[ok_states()],
            token_responses=[requests.exceptions.ConnectionError('down')],
        )
        client = self.oauth_client(router, FakeClock())

        with pytest.raises(ApiConnectionError):
            client.fetch_states()

        assert router.count('POST') == 3
        assert router.count('GET') == 0

    def test_unauthorized_states_discards_token(self):
        router = Router(
            states_responses=[make_response(401), ok_states()],
            token_responses=[token_response('tok-1'), token_response('tok-2')],
        )
        client = self.oauth_client(router, FakeClock())

        with pytest.raises(ApiError):
            client.fetch_states()
        assert isinstance(client.tokens.state, NoToken)

        client.fetch_states()
        assert router.count('POST') == 2


class TestTokenCache:
    def test_failed_fetch_leaves_state_unchanged(self):
        cache = TokenCache(clock=FakeClock())

        def failing():
            raise ApiError('boom')

        with pytest.raises(ApiError):
            cache.refresh_if_needed(failing)

        assert isinstance(cache.state, NoToken)
