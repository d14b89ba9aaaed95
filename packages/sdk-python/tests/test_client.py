"""Tests for the API client."""

import json
from unittest.mock import MagicMock, patch

import pytest
import requests

from auditchain_sdk.client import AuditClient
from auditchain_sdk.exceptions import TransportFailure


def _response(body, status_code=200):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = body
    if status_code >= 400:
        response.raise_for_status.side_effect = requests.HTTPError(f"{status_code} error")
    return response


@pytest.fixture
def client():
    return AuditClient(base_url="http://audit.test/", api_key="key-1", timeout=3.0)


def test_send_events(client):
    events = [{"eventType": "CLICK", "sessionId": "s1"}]
    with patch.object(client.session, "post", return_value=_response({"success": True, "logged": 1})) as post:
        body = client.send_events(events)

    assert body["logged"] == 1
    post.assert_called_once_with(
        "http://audit.test/v1/audit/events",
        json={"events": events},
        timeout=3.0,
    )
    assert client.session.headers["x-api-key"] == "key-1"


@pytest.mark.parametrize(
    "outcome",
    [
        requests.ConnectionError("refused"),
        _response({"detail": "boom"}, status_code=500),
        _response({"success": False}),
        _response(["not", "an", "object"]),
    ],
)
def test_send_events_failures_raise(client, outcome):
    kwargs = {"side_effect": outcome} if isinstance(outcome, Exception) else {"return_value": outcome}
    with patch.object(client.session, "post", **kwargs):
        with pytest.raises(TransportFailure):
            client.send_events([{"eventType": "CLICK", "sessionId": "s1"}])


def test_send_events_invalid_json_raises(client):
    response = _response(None)
    response.json.side_effect = ValueError("no json")
    with patch.object(client.session, "post", return_value=response):
        with pytest.raises(TransportFailure):
            client.send_events([])


def test_send_events_nowait_posts_body(client):
    events = [{"eventType": "SESSION_ENDED", "sessionId": "s1"}]
    with patch("auditchain_sdk.client.requests.post") as post:
        client.send_events_nowait(events)

    args, kwargs = post.call_args
    assert args == ("http://audit.test/v1/audit/events",)
    assert json.loads(kwargs["data"]) == {"events": events}
    assert kwargs["timeout"] == (3.0, 0.05)
    assert kwargs["headers"]["x-api-key"] == "key-1"


def test_send_events_nowait_ignores_unread_response(client):
    with patch("auditchain_sdk.client.requests.post", side_effect=requests.ReadTimeout()):
        client.send_events_nowait([{"eventType": "SESSION_ENDED", "sessionId": "s1"}])


def test_send_events_nowait_logs_failures(client, caplog):
    with patch("auditchain_sdk.client.requests.post", side_effect=requests.ConnectionError("refused")):
        client.send_events_nowait([{"eventType": "SESSION_ENDED", "sessionId": "s1"}])
    assert "Teardown delivery of 1 audit events failed" in caplog.text


def test_log_action_payload(client):
    reply = {"success": True, "logged": True, "hash": "a" * 64, "timestamp": "2024-01-01T00:00:00.000Z"}
    with patch.object(client.session, "post", return_value=_response(reply)) as post:
        assert client.log_action("EXPORT", "s1", {"format": "pdf"}, user_id="u1") == reply

    post.assert_called_once_with(
        "http://audit.test/v1/audit/action",
        json={"eventType": "EXPORT", "eventData": {"format": "pdf"}, "sessionId": "s1", "userId": "u1"},
        timeout=3.0,
    )


def test_verify_session(client):
    reply = {"sessionId": "s1", "valid": True, "entries": 2, "error": None}
    with patch.object(client.session, "get", return_value=_response(reply)) as get:
        assert client.verify_session("s1") == reply
    get.assert_called_once_with("http://audit.test/v1/audit/sessions/s1/verify", timeout=3.0)
