from __future__ import annotations

import hashlib
import http.client
import logging
import posixpath
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Callable, Optional
from urllib.parse import urlparse

from rich.console import Console
from rich.live import Live
from rich.text import Text

from .config import APP_DIR_NAME, RavenConfig
from .modlinks import Mod
from .net import CHUNK_SIZE, NetworkError, content_length, open_url

PROGRESS_UPDATE_PERIOD = 1.0

logger = logging.getLogger(__name__)

progress_console = Console()


class ArtifactError(RuntimeError):
    """Raised when a mod artifact cannot be obtained."""


class IntegrityError(ArtifactError):
    """Raised when downloaded content does not match the manifest digest."""


def format_size(n: int) -> str:
    if n < 1_000:
        return f"{n} bytes"
    if n < 1_000_000:
        return f"{n / 1_000:.1f} kB"
    if n < 1_000_000_000:
        return f"{n / 1_000_000:.1f} MB"
    return f"{n / 1_000_000_000:.1f} GB"


class ProgressReporter:
    """Byte counter for one download, rendering at most once per period."""

    def __init__(
        self,
        total: Optional[int],
        emit: Callable[[str], None],
        period: float = PROGRESS_UPDATE_PERIOD,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.total = total
        self.transferred = 0
        self._emit = emit
        self._period = period
        self._clock = clock
        self._last_update: Optional[float] = None

    def advance(self, n: int) -> None:
        self.transferred += n
        now = self._clock()
        if self._last_update is None or now - self._last_update > self._period:
            self._last_update = now
            self._emit(self.render())

    def render(self) -> str:
        total = format_size(self.total) if self.total is not None else "???"
        return f"downloading: {format_size(self.transferred)} of {total}"


@dataclass
class ModFile:
    """A verified artifact, open for reading from its start."""

    handle: BinaryIO
    path: Path
    size: int
    is_zip: bool

    def close(self) -> None:
        self.handle.close()

    def __enter__(self) -> "ModFile":
        return self

    def __exit__(self, *args) -> None:
        self.close()


def link_extension(link: str) -> str:
    return posixpath.splitext(urlparse(link).path)[1]


def link_filename(link: str) -> str:
    return posixpath.basename(urlparse(link).path)


def cache_entry_path(cache_dir: Path, mod: Mod) -> Path:
    return cache_dir / APP_DIR_NAME / f"{mod.name}{link_extension(mod.link)}"


def expected_digest(mod: Mod) -> bytes:
    try:
        digest = bytes.fromhex(mod.sha256)
    except ValueError as exc:
        raise ArtifactError(f"{mod.name}: malformed SHA256 in manifest: {exc}") from exc
    if len(digest) != hashlib.sha256().digest_size:
        raise ArtifactError(f"{mod.name}: SHA256 in manifest has {len(digest)} bytes, expected 32")
    return digest


def _hash_file(handle: BinaryIO) -> tuple[bytes, int]:
    sha = hashlib.sha256()
    size = 0
    for chunk in iter(lambda: handle.read(CHUNK_SIZE), b""):
        sha.update(chunk)
        size += len(chunk)
    return sha.digest(), size


def is_zip_link(link: str) -> bool:
    return link_extension(link).lower() == ".zip"


def _open_cached(entry: Path, expected: bytes, link: str) -> Optional[ModFile]:
    try:
        handle = entry.open("rb")
    except FileNotFoundError:
        return None
    except OSError as exc:
        logger.warning("Ignoring unreadable cache entry %s: %s", entry, exc)
        return None
    try:
        digest, size = _hash_file(handle)
    except OSError as exc:
        handle.close()
        logger.warning("Ignoring unreadable cache entry %s: %s", entry, exc)
        return None
    if digest != expected:
        handle.close()
        logger.debug("Cache entry %s does not match manifest digest", entry)
        return None
    handle.seek(0)
    return ModFile(handle=handle, path=entry, size=size, is_zip=is_zip_link(link))


def get_mod_file(cfg: RavenConfig, mod: Mod, *, show_progress: Optional[bool] = None) -> ModFile:
    """Return a verified copy of ``mod``'s artifact, downloading only on a cache miss."""

    expected = expected_digest(mod)
    entry = cache_entry_path(cfg.cache_dir, mod)

    cached = _open_cached(entry, expected, mod.link)
    if cached is not None:
        logger.info("Installing %s from cache", mod.name)
        return cached

    logger.info("Installing %s from %s", mod.name, mod.link)
    if show_progress is None:
        show_progress = sys.stdout.isatty()
    return download_link(cfg, entry, mod.link, expected, show_progress=show_progress)


def _stream(response, handle: BinaryIO, sha, progress: Optional[ProgressReporter]) -> int:
    size = 0
    for chunk in iter(lambda: response.read(CHUNK_SIZE), b""):
        handle.write(chunk)
        sha.update(chunk)
        size += len(chunk)
        if progress is not None:
            progress.advance(len(chunk))
    return size


def _stream_with_progress(response, handle: BinaryIO, sha) -> int:
    # transient: the line is cleared once the transfer ends
    with Live(
        console=progress_console,
        transient=True,
        auto_refresh=False,
        redirect_stdout=False,
        redirect_stderr=False,
    ) as live:
        progress = ProgressReporter(
            content_length(response),
            lambda text: live.update(Text(text), refresh=True),
        )
        return _stream(response, handle, sha, progress)


def download_link(
    cfg: RavenConfig,
    local_file: Path,
    url: str,
    expected: bytes,
    *,
    show_progress: bool = False,
) -> ModFile:
    sha = hashlib.sha256()
    handle: Optional[BinaryIO] = None
    try:
        with open_url(cfg, url) as response:
            local_file.parent.mkdir(parents=True, exist_ok=True)
            handle = local_file.open("w+b")
            if show_progress:
                size = _stream_with_progress(response, handle, sha)
            else:
                size = _stream(response, handle, sha, None)
    except (NetworkError, OSError, http.client.HTTPException) as exc:
        if handle is not None:
            handle.close()
            local_file.unlink(missing_ok=True)
        raise ArtifactError(f"download {url}: {exc}") from exc

    if sha.digest() != expected:
        handle.close()
        local_file.unlink(missing_ok=True)
        raise IntegrityError(f"download {url}: sha256 does not match manifest")

    handle.seek(0)
    return ModFile(handle=handle, path=local_file, size=size, is_zip=is_zip_link(url))
