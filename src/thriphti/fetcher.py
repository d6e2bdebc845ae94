from __future__ import annotations

import socket
from dataclasses import dataclass
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from .config import HttpConfig
from .errors import FetchError, FetchTimeoutError, NetworkError


@dataclass(frozen=True)
class FetchResult:
    url: str
    status: int
    content: bytes
    content_type: str | None

    def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")


def fetch_feed(url: str, http_config: HttpConfig) -> FetchResult:
    headers = {
        "User-Agent": http_config.user_agent,
        "Accept": http_config.accept,
    }
    request = Request(url, headers=headers)
    try:
        with urlopen(request, timeout=http_config.timeout_seconds) as response:
            status = response.getcode()
            content = response.read()
            content_type = response.headers.get("Content-Type")
    except HTTPError as exc:
        raise FetchError(exc.code, f"HTTP {exc.code}: {exc.reason}") from exc
    except (socket.timeout, TimeoutError) as exc:
        raise FetchTimeoutError(
            "Request timed out. The RSS feed took too long to respond."
        ) from exc
    except URLError as exc:
        if isinstance(exc.reason, (socket.timeout, TimeoutError)):
            raise FetchTimeoutError(
                "Request timed out. The RSS feed took too long to respond."
            ) from exc
        raise NetworkError(f"Network error: Unable to reach the RSS feed. {exc.reason}") from exc
    except OSError as exc:
        raise NetworkError(f"Network error: Unable to reach the RSS feed. {exc}") from exc
    if status is None or not 200 <= status < 300:
        raise FetchError(status or 0)
    return FetchResult(url=url, status=status, content=content, content_type=content_type)
