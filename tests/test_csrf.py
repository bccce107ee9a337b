"""Tests for CSRF token fetching, caching and retries."""

from __future__ import annotations

import pytest

from sapsql.csrf import (
    CsrfTokenManager,
    InMemorySessionStorage,
    required_for_modifying_methods,
    token_rejected_forbidden,
)
from sapsql.errors import (
    AuthenticationFailure,
    CsrfFetchFailure,
    RequestFailure,
    TokenRefreshError,
    TransportError,
)
from sapsql.models import ConnectionIdentity, HttpRequest, HttpResponse, TokenRecord

IDENTITY = ConnectionIdentity.build("dev", "https://sap.example.com/api/", "https://sap.example.com/api/", {"verify": True})


class _FakeSender:
    def __init__(self, *responses: HttpResponse | Exception) -> None:
        self.responses = list(responses)
        self.requests: list[HttpRequest] = []

    def send(self, request: HttpRequest) -> HttpResponse:
        self.requests.append(request)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def data_requests(self) -> list[HttpRequest]:
        return [request for request in self.requests if request.headers.get("X-CSRF-Token") != "Fetch"]


def _token(value: str, *cookies: str) -> HttpResponse:
    return HttpResponse(200, {"x-csrf-token": value}, set_cookies=cookies)


def _required(status: int = 403) -> HttpResponse:
    return HttpResponse(status, {"X-CSRF-Token": "Required"}, "CSRF token validation failed", set_cookies=())


def test_token_and_cookies_are_attached() -> None:
    sender = _FakeSender(_token("t1", "sap-usercontext=1; path=/", "SAP_SESSIONID=abc"), HttpResponse(200))
    manager = CsrfTokenManager(sender)

    manager.send_with_retry(HttpRequest("POST", "https://sap.example.com/api/run"), IDENTITY)

    data = sender.data_requests()[0]
    assert data.headers["X-CSRF-Token"] == "t1"
    assert data.headers["Cookie"] == "sap-usercontext=1; path=/;SAP_SESSIONID=abc"


def test_cached_token_is_reused() -> None:
    sender = _FakeSender(_token("t1"), HttpResponse(200), HttpResponse(200))
    manager = CsrfTokenManager(sender)
    request = HttpRequest("POST", "https://sap.example.com/api/run")

    manager.send_with_retry(request, IDENTITY)
    manager.send_with_retry(request, IDENTITY)

    assert len(sender.requests) == 3


def test_stale_token_is_refreshed_and_request_sent_again() -> None:
    sender = _FakeSender(_token("t1"), _required(), _token("t2"), HttpResponse(200, body="ok"))
    manager = CsrfTokenManager(sender)

    response = manager.send_with_retry(HttpRequest("POST", "https://sap.example.com/api/run"), IDENTITY)

    assert response.body == "ok"
    assert [request.headers["X-CSRF-Token"] for request in sender.data_requests()] == ["t1", "t2"]
    assert TokenRecord.model_validate_json(manager.storage.get(IDENTITY.storage_key)).token == "t2"


def test_request_is_retried_at_most_once() -> None:
    sender = _FakeSender(_token("t1"), _required(), _token("t2"), _required())
    manager = CsrfTokenManager(sender)

    with pytest.raises(RequestFailure) as excinfo:
        manager.send_with_retry(HttpRequest("POST", "https://sap.example.com/api/run"), IDENTITY)

    assert len(sender.data_requests()) == 2
    assert excinfo.value.status_code == 403
    assert excinfo.value.text == "CSRF token validation failed"


def test_other_failures_are_not_retried() -> None:
    body = "<html><body><h1>Table ZFOO does not exist</h1></body></html>"
    sender = _FakeSender(_token("t1"), HttpResponse(500, {"Content-Type": "text/html"}, body))
    manager = CsrfTokenManager(sender)

    with pytest.raises(RequestFailure) as excinfo:
        manager.send_with_retry(HttpRequest("POST", "https://sap.example.com/api/run"), IDENTITY)

    assert len(sender.data_requests()) == 1
    assert excinfo.value.text == "Table ZFOO does not exist"
    assert excinfo.value.use_remote_message_as_title is False


def test_unauthorized_refresh_raises_and_clears_token() -> None:
    sender = _FakeSender(_token("t1"), HttpResponse(401), HttpResponse(401))
    manager = CsrfTokenManager(sender)

    with pytest.raises(AuthenticationFailure):
        manager.send_with_retry(HttpRequest("POST", "https://sap.example.com/api/run"), IDENTITY)

    assert manager.storage.get(IDENTITY.storage_key) is None


def test_unauthorized_data_request_is_retried_exactly_once() -> None:
    sender = _FakeSender(_token("t1"), HttpResponse(401), _token("t2"), HttpResponse(401))
    manager = CsrfTokenManager(sender)

    with pytest.raises(AuthenticationFailure):
        manager.send_with_retry(HttpRequest("POST", "https://sap.example.com/api/run"), IDENTITY)

    assert [request.headers["X-CSRF-Token"] for request in sender.data_requests()] == ["t1", "t2"]
    assert manager.storage.get(IDENTITY.storage_key) is None


def test_unauthorized_data_request_succeeds_on_retry() -> None:
    sent: list[HttpRequest] = []
    replies = [HttpResponse(401), HttpResponse(200, body="ok")]

    def _send(request: HttpRequest) -> HttpResponse:
        sent.append(request)
        return replies.pop(0)

    manager = CsrfTokenManager(_FakeSender(_token("t1"), _token("t2")))

    response = manager.send_with_retry(HttpRequest("POST", "https://sap.example.com/api/run"), IDENTITY, _send)

    assert response.body == "ok"
    assert [request.headers["X-CSRF-Token"] for request in sent] == ["t1", "t2"]


def test_changed_connection_invalidates_cached_token() -> None:
    storage = InMemorySessionStorage()
    sender = _FakeSender(_token("old"), _token("new"))
    manager = CsrfTokenManager(sender, storage)
    manager.refresh(IDENTITY)
    moved = ConnectionIdentity.build("dev", "https://other.example.com/api/", IDENTITY.csrf_request_url, {"verify": True})

    assert manager.cached(moved) is None
    assert IDENTITY.storage_key not in storage
    assert manager.get_headers(moved)["X-CSRF-Token"] == "new"


def test_changed_credentials_change_fingerprint() -> None:
    first = ConnectionIdentity.build("dev", "u", "c", {"auth": ["alice", "secret"]})
    second = ConnectionIdentity.build("dev", "u", "c", {"auth": ["alice", "changed"]})

    assert first.fingerprint != second.fingerprint
    assert first.storage_key == second.storage_key


def test_unreadable_record_is_discarded() -> None:
    storage = InMemorySessionStorage()
    storage.set(IDENTITY.storage_key, "{not json")
    manager = CsrfTokenManager(_FakeSender(), storage)

    assert manager.cached(IDENTITY) is None
    assert IDENTITY.storage_key not in storage


def test_fetch_without_response_raises_fetch_failure() -> None:
    manager = CsrfTokenManager(_FakeSender(TransportError("connection refused")))

    with pytest.raises(CsrfFetchFailure):
        manager.refresh(IDENTITY)


def test_fetch_without_token_reports_backend_message() -> None:
    body = '{"error": {"message": {"value": "Service not active"}}}'
    manager = CsrfTokenManager(_FakeSender(HttpResponse(500, {"Content-Type": "application/json"}, body)))

    with pytest.raises(TokenRefreshError) as excinfo:
        manager.refresh(IDENTITY)

    assert excinfo.value.text == "Service not active"
    assert "Service not active" in str(excinfo.value)


def test_fetch_answered_with_required_is_an_error() -> None:
    manager = CsrfTokenManager(_FakeSender(_required(200)))

    with pytest.raises(TokenRefreshError):
        manager.refresh(IDENTITY)
    assert manager.storage.get(IDENTITY.storage_key) is None


def test_fetch_uses_fixed_url_params() -> None:
    sender = _FakeSender(_token("t1"))
    manager = CsrfTokenManager(sender, fixed_url_params=lambda url: url + "?sap-client=100")

    manager.refresh(IDENTITY)

    assert sender.requests[0].url == "https://sap.example.com/api/?sap-client=100"
    assert sender.requests[0].method == "GET"


def test_request_without_response_becomes_request_failure() -> None:
    sender = _FakeSender(_token("t1"), TransportError("timed out"))
    manager = CsrfTokenManager(sender)

    with pytest.raises(RequestFailure):
        manager.send_with_retry(HttpRequest("POST", "https://sap.example.com/api/run"), IDENTITY)


def test_reads_skip_token_when_only_modifying_methods_need_one() -> None:
    sender = _FakeSender(HttpResponse(200, body="{}"))
    manager = CsrfTokenManager(sender, csrf_required=required_for_modifying_methods)

    manager.send_with_retry(HttpRequest("GET", "https://sap.example.com/api/Items"), IDENTITY)

    assert len(sender.requests) == 1
    assert "X-CSRF-Token" not in sender.requests[0].headers


def test_forbidden_variant_ignores_unauthorized() -> None:
    sender = _FakeSender(_token("t1"), HttpResponse(401))
    manager = CsrfTokenManager(sender, is_token_rejected=token_rejected_forbidden)

    with pytest.raises(AuthenticationFailure):
        manager.send_with_retry(HttpRequest("POST", "https://sap.example.com/api/Items"), IDENTITY)

    assert len(sender.requests) == 2
