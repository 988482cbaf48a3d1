# =============================================================================
# tests/unit/test_api_client.py
# Unit Tests for APIClient
# =============================================================================

import pytest
import requests


def make_client(session, **kwargs):
    from fin_core.data_layer.api_client import APIClient
    return APIClient("http://backend.test/api/", session=session, **kwargs)


class TestAPIClientRequests:
    """Test request construction and response decoding"""

    def test_get_builds_url_and_params(self, mock_session, http_response):
        """GET joins base URL and endpoint and passes params"""
        mock_session.request.return_value = http_response(200, {"success": True, "data": []})
        client = make_client(mock_session)

        client.get("/accounts", params={"page": 2})

        kwargs = mock_session.request.call_args.kwargs
        assert kwargs["method"] == "GET"
        assert kwargs["url"] == "http://backend.test/api/accounts"
        assert kwargs["params"] == {"page": 2}
        assert kwargs["timeout"] == 10.0

    def test_envelope_is_decoded(self, mock_session, http_response):
        """Standard envelopes are unpacked into APIResponse"""
        body = {"success": True, "data": {"accounts": [{"id": "a1"}]}, "message": "ok"}
        mock_session.request.return_value = http_response(200, body)
        client = make_client(mock_session)

        response = client.get("/accounts")

        assert response.success is True
        assert response.data == {"accounts": [{"id": "a1"}]}
        assert response.message == "ok"

    def test_bare_body_becomes_data(self, mock_session, http_response):
        """Bodies without an envelope are passed through as data"""
        mock_session.request.return_value = http_response(201, {"transaction": {"id": "t1"}})
        client = make_client(mock_session)

        response = client.post("/transactions", {"amount": 5})

        assert response.success is True
        assert response.data == {"transaction": {"id": "t1"}}
        assert mock_session.request.call_args.kwargs["json"] == {"amount": 5}

    def test_empty_body(self, mock_session, http_response):
        """204 / empty bodies decode to data=None"""
        mock_session.request.return_value = http_response(204, None, reason="No Content")
        client = make_client(mock_session)

        response = client.delete("/accounts/a1")

        assert response.success is True
        assert response.data is None

    def test_auth_token_header(self, mock_session, http_response):
        """Bearer token is attached once set and removed once cleared"""
        mock_session.request.return_value = http_response(200, {"success": True, "data": []})
        client = make_client(mock_session)

        client.set_auth_token("secret")
        client.get("/goals")
        assert mock_session.request.call_args.kwargs["headers"] == {"Authorization": "Bearer secret"}
        assert client.has_auth_token

        client.clear_auth_token()
        client.get("/goals")
        assert mock_session.request.call_args.kwargs["headers"] == {}
        assert not client.has_auth_token

    def test_set_base_url(self, mock_session, http_response):
        """set_base_url redirects later requests"""
        mock_session.request.return_value = http_response(200, {"success": True, "data": []})
        client = make_client(mock_session)

        client.set_base_url("http://other.test/api/")
        client.get("trips")

        assert mock_session.request.call_args.kwargs["url"] == "http://other.test/api/trips"


class TestAPIClientErrors:
    """Test error normalization"""

    def test_connection_error_is_network_error(self, mock_session):
        """No response means a retryable NETWORK_ERROR"""
        from fin_core.errors import APIError, NETWORK_ERROR

        mock_session.request.side_effect = requests.exceptions.ConnectionError("refused")
        client = make_client(mock_session)

        with pytest.raises(APIError) as exc_info:
            client.get("/accounts")

        assert exc_info.value.code == NETWORK_ERROR
        assert exc_info.value.retryable is True
        assert exc_info.value.is_network_error

    def test_timeout_is_network_error(self, mock_session):
        """Timeouts are network-class"""
        from fin_core.errors import APIError, NETWORK_ERROR

        mock_session.request.side_effect = requests.exceptions.Timeout("slow")
        client = make_client(mock_session)

        with pytest.raises(APIError) as exc_info:
            client.get("/accounts")

        assert exc_info.value.code == NETWORK_ERROR

    def test_client_error_not_retryable(self, mock_session, http_response):
        """4xx responses map to HTTP_<status>, not retryable, message from body"""
        from fin_core.errors import APIError

        mock_session.request.return_value = http_response(
            422, {"message": "Amount is required"}, reason="Unprocessable Entity"
        )
        client = make_client(mock_session)

        with pytest.raises(APIError) as exc_info:
            client.post("/transactions", {})

        error = exc_info.value
        assert error.code == "HTTP_422"
        assert error.status_code == 422
        assert error.retryable is False
        assert error.message == "Amount is required"
        assert not error.is_network_error

    def test_server_error_retryable(self, mock_session, http_response):
        """5xx responses are retryable"""
        from fin_core.errors import APIError

        mock_session.request.return_value = http_response(503, None, reason="Service Unavailable")
        client = make_client(mock_session)

        with pytest.raises(APIError) as exc_info:
            client.get("/accounts")

        assert exc_info.value.code == "HTTP_503"
        assert exc_info.value.retryable is True
        assert "503" in exc_info.value.message

    def test_invalid_json_is_unknown_error(self, mock_session, http_response):
        """An undecodable body is UNKNOWN_ERROR"""
        from fin_core.errors import APIError, UNKNOWN_ERROR

        response = http_response(200, {"ignored": True})
        response.json.side_effect = ValueError("Expecting value")
        mock_session.request.return_value = response
        client = make_client(mock_session)

        with pytest.raises(APIError) as exc_info:
            client.get("/accounts")

        assert exc_info.value.code == UNKNOWN_ERROR
        assert exc_info.value.retryable is False

    def test_error_handlers_notified(self, mock_session):
        """Every handler sees the error; a failing handler is swallowed"""
        from fin_core.errors import APIError

        mock_session.request.side_effect = requests.exceptions.ConnectionError("down")
        client = make_client(mock_session)
        seen = []

        def broken_handler(error):
            raise RuntimeError("handler bug")

        client.on_error(broken_handler)
        client.on_error(seen.append)

        with pytest.raises(APIError):
            client.get("/accounts")

        assert len(seen) == 1
        assert isinstance(seen[0], APIError)


class TestAPIClientRetry:
    """Test retry with exponential backoff"""

    def test_backoff_timing(self, mock_session, recording_sleep):
        """retry(op, 3, 1.0) makes 4 attempts waiting 1s, 2s, 4s"""
        from fin_core.errors import APIError

        client = make_client(mock_session, sleep=recording_sleep)
        attempts = []

        def always_fails():
            attempts.append(1)
            raise APIError.network("down")

        with pytest.raises(APIError):
            client.retry(always_fails, max_retries=3, delay=1.0)

        assert len(attempts) == 4
        assert recording_sleep.delays == [1.0, 2.0, 4.0]

    def test_retry_returns_first_success(self, mock_session, recording_sleep):
        """retry stops as soon as the operation succeeds"""
        from fin_core.errors import APIError

        client = make_client(mock_session, sleep=recording_sleep)
        outcomes = iter([APIError.network("down"), "ok"])

        def flaky():
            outcome = next(outcomes)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        assert client.retry(flaky, max_retries=3, delay=0.5) == "ok"
        assert recording_sleep.delays == [0.5]

    def test_non_retryable_error_stops_immediately(self, mock_session, recording_sleep):
        """Errors with retryable=False are raised on the first attempt"""
        from fin_core.errors import APIError

        client = make_client(mock_session, sleep=recording_sleep)
        attempts = []

        def rejected():
            attempts.append(1)
            raise APIError.from_status(400, "Bad request")

        with pytest.raises(APIError):
            client.retry(rejected, max_retries=3, delay=1.0)

        assert len(attempts) == 1
        assert recording_sleep.delays == []

    def test_should_retry_predicate(self, mock_session, recording_sleep):
        """Errors the predicate rejects are raised without backoff"""
        from fin_core.errors import APIError, is_network_error

        client = make_client(mock_session, sleep=recording_sleep)
        attempts = []

        def unreachable():
            attempts.append(1)
            raise APIError.network("down")

        with pytest.raises(APIError):
            client.retry(
                unreachable,
                max_retries=3,
                delay=1.0,
                should_retry=lambda e: not is_network_error(e),
            )

        assert len(attempts) == 1
        assert recording_sleep.delays == []


class TestAPIClientHealth:
    """Test health probe"""

    def test_health_ok(self, mock_session, http_response):
        """200 from /health means healthy"""
        mock_session.get.return_value = http_response(200, {"status": "ok"})
        client = make_client(mock_session)

        assert client.health_check() is True
        args, kwargs = mock_session.get.call_args
        assert args[0] == "http://backend.test/api/health"
        assert kwargs["timeout"] == 5.0

    def test_health_never_raises(self, mock_session):
        """Connection failures report unhealthy"""
        mock_session.get.side_effect = requests.exceptions.ConnectionError("down")
        client = make_client(mock_session)

        assert client.health_check() is False
