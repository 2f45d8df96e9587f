from __future__ import annotations

import io
import logging
import posixpath
import tomllib
import zipfile
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .config import RavenConfig
from .names import resolve_mod_name
from .net import NetworkError, read_url

MODLINKS_ROOT = "modlinks-main"
MODS_SECTION = "mods"
BASE_SECTION = "base"
RECORD_SUFFIX = ".toml"

logger = logging.getLogger(__name__)


class RepositoryError(RuntimeError):
    """Raised when the mod manifest repository cannot be fetched or read."""


class RecordNotFoundError(RepositoryError):
    """Raised when a single manifest record is absent or cannot be decoded."""

    def __init__(self, name: str, reason: str) -> None:
        super().__init__(f"get mod {name!r}: {reason}")
        self.name = name


class MissingModsError(RepositoryError):
    """Aggregate error naming every dependency that the repository lacks."""

    def __init__(self, names: Iterable[str]) -> None:
        self.names = sorted(names)
        super().__init__(f"required mods do not exist: {', '.join(self.names)}")


class Mod(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    name: str = Field(alias="Name")
    description: str = Field(default="", alias="Description")
    repository: str = Field(default="", alias="Repository")
    dependencies: Tuple[str, ...] = Field(default=(), alias="Dependencies")
    integrations: Tuple[str, ...] = Field(default=(), alias="Integrations")
    link: str = Field(default="", alias="Link")
    sha256: str = Field(default="", alias="SHA256")


@dataclass
class Closure:
    resolved: Dict[str, Mod] = field(default_factory=dict)
    missing: Dict[str, RecordNotFoundError] = field(default_factory=dict)

    @property
    def mods(self) -> List[Mod]:
        return list(self.resolved.values())

    @property
    def error(self) -> Optional[MissingModsError]:
        if not self.missing:
            return None
        return MissingModsError(self.missing)


class Repository:
    """In-memory view over the modlinks archive.

    Records are decoded lazily, one file per lookup, so a malformed entry only
    breaks lookups of that name.
    """

    def __init__(self, archive: zipfile.ZipFile, root: str = MODLINKS_ROOT) -> None:
        self._archive = archive
        self._root = root
        self._members = set(archive.namelist())

    @classmethod
    def from_bytes(cls, payload: bytes, root: str = MODLINKS_ROOT) -> "Repository":
        try:
            archive = zipfile.ZipFile(io.BytesIO(payload))
        except zipfile.BadZipFile as exc:
            raise RepositoryError(f"get modlinks: {exc}") from exc
        return cls(archive, root=root)

    def _section_names(self, section: str) -> List[str]:
        prefix = posixpath.join(self._root, section) + "/"
        names = []
        for member in self._members:
            if not member.startswith(prefix) or not member.endswith(RECORD_SUFFIX):
                continue
            filename = member[len(prefix):]
            if "/" in filename:
                continue
            names.append(posixpath.splitext(filename)[0])
        return sorted(names)

    def mod_names(self) -> List[str]:
        return self._section_names(MODS_SECTION)

    def base_names(self) -> List[str]:
        return self._section_names(BASE_SECTION)

    def get_mod(self, name: str) -> Mod:
        return self._get(MODS_SECTION, name)

    def get_base(self, name: str) -> Mod:
        return self._get(BASE_SECTION, name)

    def resolve_mod_name(self, requested: str) -> str:
        return resolve_mod_name(self.mod_names(), requested)

    def _get(self, section: str, name: str) -> Mod:
        member = posixpath.join(self._root, section, name + RECORD_SUFFIX)
        if member not in self._members:
            raise RecordNotFoundError(name, "no such record in the repository")
        try:
            data = tomllib.loads(self._archive.read(member).decode("utf-8"))
        except (tomllib.TOMLDecodeError, UnicodeDecodeError, zipfile.BadZipFile) as exc:
            raise RecordNotFoundError(name, f"malformed record: {exc}") from exc
        try:
            return Mod.model_validate(data)
        except ValidationError as exc:
            raise RecordNotFoundError(name, f"invalid record: {exc}") from exc

    def transitive_closure(self, roots: Iterable[str]) -> Closure:
        """Collect ``roots`` and everything they depend on.

        Names that cannot be looked up land in ``missing`` and are not
        descended into; the walk never fails as a whole.
        """

        closure = Closure()
        stack = list(reversed(list(roots)))
        while stack:
            name = stack.pop()
            if name in closure.resolved or name in closure.missing:
                continue
            try:
                mod = self.get_mod(name)
            except RecordNotFoundError as exc:
                logger.debug("Dependency %s unavailable: %s", name, exc)
                closure.missing[name] = exc
                continue
            closure.resolved[name] = mod
            stack.extend(reversed(mod.dependencies))
        return closure


def fetch_repository(cfg: RavenConfig) -> Repository:
    """Download and open the modlinks archive named by the configuration."""

    try:
        payload = read_url(cfg, cfg.modlinks_url)
    except NetworkError as exc:
        raise RepositoryError(f"get modlinks: {exc}") from exc
    logger.debug("Fetched modlinks archive (%d bytes) from %s", len(payload), cfg.modlinks_url)
    return Repository.from_bytes(payload)
