from __future__ import annotations

import hashlib
import io
import json
import urllib.error
import urllib.request
import zipfile
from email.message import Message
from pathlib import Path
from typing import Dict, Iterable, Optional, Union

import pytest

from raven.config import RavenConfig
from raven.modlinks import MODLINKS_ROOT, Repository

MODLINKS_URL = "https://modlinks.test/main.zip"


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def make_zip(members: Dict[str, bytes]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        for name, data in members.items():
            zf.writestr(name, data)
    return buffer.getvalue()


def record_toml(
    name: str,
    *,
    link: str = "",
    sha256: str = "",
    dependencies: Iterable[str] = (),
    description: str = "",
    repository: str = "",
) -> str:
    # JSON string and array syntax is valid TOML for plain ASCII values.
    lines = [
        f"Name = {json.dumps(name)}",
        f"Description = {json.dumps(description)}",
        f"Repository = {json.dumps(repository)}",
        f"Dependencies = {json.dumps(list(dependencies))}",
        "Integrations = []",
        f"Link = {json.dumps(link)}",
        f"SHA256 = {json.dumps(sha256)}",
    ]
    return "\n".join(lines) + "\n"


def make_modlinks(
    mods: Dict[str, str],
    base: Optional[Dict[str, str]] = None,
) -> bytes:
    members = {f"{MODLINKS_ROOT}/mods/{name}.toml": text.encode() for name, text in mods.items()}
    for name, text in (base or {}).items():
        members[f"{MODLINKS_ROOT}/base/{name}.toml"] = text.encode()
    members[f"{MODLINKS_ROOT}/README.md"] = b"modlinks"
    return make_zip(members)


def make_repository(mods: Dict[str, str], base: Optional[Dict[str, str]] = None) -> Repository:
    return Repository.from_bytes(make_modlinks(mods, base))


class FakeResponse(io.BytesIO):
    def __init__(self, data: bytes, *, status: int = 200, length: Optional[int] = None) -> None:
        super().__init__(data)
        self.status = status
        self.headers = Message()
        if length is not None:
            self.headers["Content-Length"] = str(length)


class FakeHTTP:
    """Stand-in for urllib.request.urlopen keyed by URL."""

    def __init__(self) -> None:
        self.routes: Dict[str, Union[bytes, int, Exception]] = {}
        self.requests: list[str] = []

    def serve(self, url: str, payload: Union[bytes, int, Exception]) -> None:
        self.routes[url] = payload

    def count(self, url: str) -> int:
        return self.requests.count(url)

    def __call__(self, request, timeout=None):
        url = request.full_url if isinstance(request, urllib.request.Request) else request
        self.requests.append(url)
        payload = self.routes.get(url)
        if payload is None:
            raise urllib.error.URLError("connection refused")
        if isinstance(payload, Exception):
            raise payload
        if isinstance(payload, int):
            raise urllib.error.HTTPError(url, payload, "Not Found", Message(), None)
        return FakeResponse(payload, length=len(payload))


@pytest.fixture
def http(monkeypatch: pytest.MonkeyPatch) -> FakeHTTP:
    fake = FakeHTTP()
    monkeypatch.setattr(urllib.request, "urlopen", fake)
    return fake


@pytest.fixture
def game_dir(tmp_path: Path) -> Path:
    path = tmp_path / "Deaths Door"
    (path / "BepInEx" / "plugins").mkdir(parents=True)
    (path / "DeathsDoor.exe").write_bytes(b"MZ")
    return path


@pytest.fixture
def cfg(tmp_path: Path, game_dir: Path) -> RavenConfig:
    return RavenConfig(
        game_location=game_dir,
        cache_dir=tmp_path / "cache",
        modlinks_url=MODLINKS_URL,
    )
