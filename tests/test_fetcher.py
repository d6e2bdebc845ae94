import io
import socket
from urllib.error import HTTPError, URLError

import pytest

from thriphti import fetcher
from thriphti.errors import FetchError, FetchTimeoutError, NetworkError


class _FakeResponse:
    def __init__(self, body: bytes, status: int = 200, content_type: str = "application/rss+xml"):
        self._body = body
        self._status = status
        self.headers = {"Content-Type": content_type}

    def getcode(self):
        return self._status

    def read(self):
        return self._body

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


def test_fetch_sends_feed_headers(config, monkeypatch):
    seen = {}

    def fake_urlopen(request, timeout):
        seen["headers"] = dict(request.header_items())
        seen["timeout"] = timeout
        return _FakeResponse(b"<rss/>")

    monkeypatch.setattr(fetcher, "urlopen", fake_urlopen)
    result = fetcher.fetch_feed("https://example.com/feed.xml", config.http)

    assert result.status == 200
    assert result.content == b"<rss/>"
    assert result.content_type == "application/rss+xml"
    assert seen["timeout"] == 10
    assert seen["headers"]["User-agent"] == "Thriphti RSS Validator/1.0"
    assert seen["headers"]["Accept"].startswith("application/rss+xml")


def test_fetch_maps_http_errors(config, monkeypatch):
    def fake_urlopen(request, timeout):
        raise HTTPError(request.full_url, 404, "Not Found", {}, io.BytesIO(b""))

    monkeypatch.setattr(fetcher, "urlopen", fake_urlopen)
    with pytest.raises(FetchError) as excinfo:
        fetcher.fetch_feed("https://example.com/missing.xml", config.http)
    assert excinfo.value.status_code == 404


def test_fetch_maps_timeouts(config, monkeypatch):
    def fake_urlopen(request, timeout):
        raise URLError(socket.timeout("timed out"))

    monkeypatch.setattr(fetcher, "urlopen", fake_urlopen)
    with pytest.raises(FetchTimeoutError):
        fetcher.fetch_feed("https://example.com/slow.xml", config.http)


def test_fetch_maps_network_errors(config, monkeypatch):
    def fake_urlopen(request, timeout):
        raise URLError("Name or service not known")

    monkeypatch.setattr(fetcher, "urlopen", fake_urlopen)
    with pytest.raises(NetworkError) as excinfo:
        fetcher.fetch_feed("https://nowhere.invalid/feed.xml", config.http)
    assert "Name or service not known" in str(excinfo.value)
    assert not isinstance(excinfo.value, FetchError)
