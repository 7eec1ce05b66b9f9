import pytest
import requests

from nightlife.services.wompi_client import WompiClient


class FakeResponse:
    def __init__(self, status_code=200, body=None, raw=False):
        self.status_code = status_code
        self._body = body
        self._raw = raw

    def json(self):
        if self._raw:
            raise ValueError("No JSON object could be decoded")
        return self._body


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def get(self, url, headers=None, timeout=None):
        self.calls.append((url, headers, timeout))
        if self.error is not None:
            raise self.error
        return self.response


def _client(session, private_key="prv_test_123"):
    return WompiClient(base_url="https://sandbox.wompi.co/v1/", private_key=private_key, timeout=4, session=session)


def test_fetches_transaction_with_bearer_key():
    session = FakeSession(FakeResponse(body={"data": {"id": "wompi-1", "status": "APPROVED"}}))

    ok, message, data = _client(session).get_transaction("wompi-1")

    assert (ok, message, data) == (True, "ok", {"id": "wompi-1", "status": "APPROVED"})
    url, headers, timeout = session.calls[0]
    assert url == "https://sandbox.wompi.co/v1/transactions/wompi-1"
    assert headers["Authorization"] == "Bearer prv_test_123"
    assert timeout == 4


def test_omits_authorization_without_private_key():
    session = FakeSession(FakeResponse(body={"data": {"id": "wompi-2"}}))
    _client(session, private_key="").get_transaction("wompi-2")
    assert "Authorization" not in session.calls[0][1]


def test_network_error_is_reported():
    session = FakeSession(error=requests.ConnectionError("connection refused"))
    assert _client(session).get_transaction("wompi-3") == (False, "Payment provider unreachable", None)


@pytest.mark.parametrize(
    "response, message",
    [
        (FakeResponse(status_code=404, body={"error": {"type": "NOT_FOUND_ERROR"}}), "Payment provider returned 404"),
        (FakeResponse(raw=True), "Malformed provider response"),
        (FakeResponse(body={"data": None}), "Malformed provider response"),
        (FakeResponse(body=["unexpected"]), "Malformed provider response"),
    ],
)
def test_bad_provider_responses(response, message):
    ok, reported, data = _client(FakeSession(response)).get_transaction("wompi-4")
    assert (ok, reported, data) == (False, message, None)
