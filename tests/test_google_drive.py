"""
Tests for the Google Drive transport.

The AuthorizedSession is replaced with a recording fake; no network calls.
"""

import asyncio
import json

import pytest
import requests
from tenacity import wait_none

from vaultledger.config import GoogleDriveSettings
from vaultledger.services.cloud import GoogleDriveTransport, TransportError


def _response(status: int, payload=None, text: str = "") -> requests.Response:
    response = requests.Response()
    response.status_code = status
    response._content = (json.dumps(payload) if payload is not None else text).encode("utf-8")
    return response


class FakeSession:
    """Replays queued responses per HTTP verb and records every call."""

    def __init__(self, **queued):
        self.queued = {verb: list(items) for verb, items in queued.items()}
        self.calls = []

    def _next(self, verb, url, **kwargs):
        self.calls.append((verb, url, kwargs))
        item = self.queued[verb].pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def get(self, url, **kwargs):
        return self._next("get", url, **kwargs)

    def patch(self, url, **kwargs):
        return self._next("patch", url, **kwargs)

    def post(self, url, **kwargs):
        return self._next("post", url, **kwargs)


@pytest.fixture
def transport(monkeypatch) -> GoogleDriveTransport:
    for name in ("_find_file_id", "_update", "_create", "_fetch"):
        monkeypatch.setattr(getattr(GoogleDriveTransport, name).retry, "wait", wait_none())
    return GoogleDriveTransport(GoogleDriveSettings())


def _use(monkeypatch, transport, session: FakeSession) -> FakeSession:
    monkeypatch.setattr(transport, "_session", lambda token: session)
    return session


class TestUpload:
    def test_creates_file_when_missing(self, monkeypatch, transport):
        """Test the first upload creates the file with multipart metadata."""
        session = _use(monkeypatch, transport, FakeSession(
            get=[_response(200, {"files": []})],
            post=[_response(200, {"id": "new"})],
        ))
        synced_at = asyncio.run(transport.upload("token", {"expenses": []}))

        verb, url, kwargs = session.calls[-1]
        assert verb == "post"
        assert kwargs["params"] == {"uploadType": "multipart"}
        assert b'"name": "jk_vault_snapshot.json"' in kwargs["data"]
        assert synced_at.isoformat().encode("utf-8") in kwargs["data"]

    def test_updates_existing_file(self, monkeypatch, transport):
        """Test later uploads overwrite the same file in place."""
        session = _use(monkeypatch, transport, FakeSession(
            get=[_response(200, {"files": [{"id": "abc"}]})],
            patch=[_response(200, {"id": "abc"})],
        ))
        asyncio.run(transport.upload("token", {"expenses": []}))
        verb, url, _ = session.calls[-1]
        assert verb == "patch"
        assert url.endswith("/files/abc")

    def test_http_error_not_retried(self, monkeypatch, transport):
        """Test an HTTP error becomes TransportError on the first attempt."""
        session = _use(monkeypatch, transport, FakeSession(get=[_response(401, text="Invalid Credentials")]))
        with pytest.raises(TransportError, match="401"):
            asyncio.run(transport.upload("token", {}))
        assert len(session.calls) == 1

    def test_connection_error_retried(self, monkeypatch, transport):
        """Test a dropped connection is retried and then succeeds."""
        session = _use(monkeypatch, transport, FakeSession(
            get=[requests.ConnectionError("reset"), _response(200, {"files": [{"id": "abc"}]})],
            patch=[_response(200, {})],
        ))
        asyncio.run(transport.upload("token", {}))
        assert [c[0] for c in session.calls] == ["get", "get", "patch"]

    def test_connection_error_exhausted(self, monkeypatch, transport):
        """Test repeated network failures surface as TransportError."""
        _use(monkeypatch, transport, FakeSession(get=[requests.Timeout("slow")] * 3))
        with pytest.raises(TransportError):
            asyncio.run(transport.upload("token", {}))

    def test_requires_token(self, transport):
        """Test an empty token fails before any request."""
        with pytest.raises(TransportError, match="access token"):
            asyncio.run(transport.upload("", {}))


class TestDownload:
    def test_missing_file(self, monkeypatch, transport):
        """Test no cloud file means no snapshot."""
        _use(monkeypatch, transport, FakeSession(get=[_response(200, {"files": []})]))
        assert asyncio.run(transport.download("token")) is None

    def test_fetches_document(self, monkeypatch, transport):
        """Test the file content is returned as a dict."""
        session = _use(monkeypatch, transport, FakeSession(get=[
            _response(200, {"files": [{"id": "abc"}]}),
            _response(200, {"expenses": [], "schemaVersion": 2}),
        ]))
        assert asyncio.run(transport.download("token")) == {"expenses": [], "schemaVersion": 2}
        assert session.calls[-1][2]["params"] == {"alt": "media"}

    def test_invalid_json(self, monkeypatch, transport):
        """Test a non-JSON file is a transport failure."""
        _use(monkeypatch, transport, FakeSession(get=[
            _response(200, {"files": [{"id": "abc"}]}),
            _response(200, text="not json"),
        ]))
        with pytest.raises(TransportError, match="not valid JSON"):
            asyncio.run(transport.download("token"))
