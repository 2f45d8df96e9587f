from __future__ import annotations

import urllib.error
import urllib.request
from contextlib import contextmanager
from typing import Iterator, Optional

from .config import RavenConfig

CHUNK_SIZE = 64 * 1024


class NetworkError(RuntimeError):
    """Raised when an HTTP request fails or returns a non-2xx status."""


def _is_http_ok(status: Optional[int]) -> bool:
    # urllib leaves status unset for non-HTTP schemes (file://)
    return status is None or 200 <= status < 300


@contextmanager
def open_url(cfg: RavenConfig, url: str) -> Iterator:
    """Open ``url`` for streaming, raising NetworkError on failure."""

    try:
        request = urllib.request.Request(url)
        request.add_header("User-Agent", cfg.api_user_agent)
        response = urllib.request.urlopen(request, timeout=cfg.http_timeout)
    except ValueError as exc:
        # urllib rejects links without a scheme or with an unknown one
        raise NetworkError(f"GET {url}: {exc}") from exc
    except urllib.error.HTTPError as exc:
        raise NetworkError(f"GET {url}: response status was {exc.code} {exc.reason}") from exc
    except urllib.error.URLError as exc:
        raise NetworkError(f"GET {url}: {exc.reason}") from exc
    except OSError as exc:  # pragma: no cover - network dependent
        raise NetworkError(f"GET {url}: {exc}") from exc

    with response:
        status = getattr(response, "status", None)
        if not _is_http_ok(status):
            raise NetworkError(f"GET {url}: response status was {status}")
        yield response


def read_url(cfg: RavenConfig, url: str) -> bytes:
    with open_url(cfg, url) as response:
        try:
            return response.read()
        except OSError as exc:  # pragma: no cover - network dependent
            raise NetworkError(f"GET {url}: {exc}") from exc


def content_length(response) -> Optional[int]:
    value = response.headers.get("Content-Length") if response.headers else None
    if value is None:
        return None
    try:
        size = int(value)
    except ValueError:
        return None
    return size if size >= 0 else None
