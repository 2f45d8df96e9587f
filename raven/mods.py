from __future__ import annotations

import logging
import os
import posixpath
import re
import shutil
import time
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO, Dict, Iterable, List, Optional

from .cache import ArtifactError, ModFile, get_mod_file, is_zip_link, link_filename
from .config import RavenConfig, load_user_config, save_user_config
from .game import GameLayout, installed_mods, layout_for, locate_game
from .modlinks import (
    MissingModsError,
    Mod,
    RecordNotFoundError,
    Repository,
    fetch_repository,
)
from .names import ResolveError, name_pattern, resolve_mod_name

BEPINEX_BASE_NAME = "BepInEx"
COPY_BUFFER_SIZE = 1024 * 1024
_PATH_SEPARATORS = ("/", "\\")
_DRIVE_PATTERN = re.compile(r"^[A-Za-z]:$")

logger = logging.getLogger(__name__)


class InstallError(RuntimeError):
    """Raised when a mod cannot be written to or removed from the game directory."""


class UnsafePathError(InstallError):
    """Raised when a name would place files outside their destination directory."""


@dataclass
class ModOutcome:
    name: str
    ok: bool
    message: str


@dataclass
class BatchReport:
    outcomes: List[ModOutcome] = field(default_factory=list)
    missing: Optional[MissingModsError] = None

    def succeed(self, name: str, message: str) -> None:
        self.outcomes.append(ModOutcome(name=name, ok=True, message=message))

    def fail(self, name: str, message: str) -> None:
        self.outcomes.append(ModOutcome(name=name, ok=False, message=message))

    @property
    def succeeded(self) -> List[str]:
        return [o.name for o in self.outcomes if o.ok]

    @property
    def failed(self) -> List[str]:
        return [o.name for o in self.outcomes if not o.ok]


@dataclass
class ModListing:
    name: str
    mod: Optional[Mod]
    known: bool
    installed: bool


def check_safe_name(name: str, what: str = "name") -> None:
    # Mod names become directory names under the plugin root.
    if not name or name in (".", ".."):
        raise UnsafePathError(f"{what} {name!r} is not a valid path component")
    if any(sep in name for sep in _PATH_SEPARATORS):
        raise UnsafePathError(f"{what} contains path separator")


def join_no_escape(parent: Path, child: str) -> Path:
    """Join ``child`` onto ``parent`` as if ``parent`` were the filesystem root.

    ``..`` segments and absolute paths in ``child`` are clamped, so the
    result is always ``parent`` or something beneath it.
    """

    normalized = posixpath.normpath("/" + child.replace("\\", "/"))
    parts = [part for part in normalized.split("/") if part and part != "."]
    if parts and _DRIVE_PATTERN.match(parts[0]):
        parts = parts[1:]
    return parent.joinpath(*parts)


def remove_previous_version(name: str, install_dir: Path) -> None:
    try:
        shutil.rmtree(install_dir)
    except FileNotFoundError:
        return
    except OSError as exc:
        raise InstallError(f"yeet installed version of {name}: {exc}") from exc


def _set_mtime(dest: Path, info: zipfile.ZipInfo) -> None:
    try:
        stamp = time.mktime(info.date_time + (0, 0, -1))
        os.utime(dest, (stamp, stamp))
    except (OSError, OverflowError, ValueError) as exc:
        logger.warning("could not set modification time of %s: %s", dest, exc)


def _write_zip_member(archive: zipfile.ZipFile, info: zipfile.ZipInfo, dest: Path) -> None:
    dest.parent.mkdir(parents=True, exist_ok=True)
    with archive.open(info) as source, dest.open("wb") as target:
        shutil.copyfileobj(source, target, COPY_BUFFER_SIZE)
    _set_mtime(dest, info)


def extract_zip(source: BinaryIO, name: str, install_dir: Path) -> None:
    """Extract every entry of ``source`` beneath ``install_dir``."""

    try:
        source.seek(0)
        archive = zipfile.ZipFile(source)
    except (zipfile.BadZipFile, OSError) as exc:
        raise InstallError(f"extract {name}: {exc}") from exc

    with archive:
        for info in archive.infolist():
            dest = join_no_escape(install_dir, info.filename)
            try:
                if info.filename.endswith("/"):
                    dest.mkdir(parents=True, exist_ok=True)
                else:
                    _write_zip_member(archive, info, dest)
            except (OSError, zipfile.BadZipFile, RuntimeError) as exc:
                raise InstallError(f"extract {name}: {info.filename}: {exc}") from exc


def extract_single_file(source: BinaryIO, filename: str, install_dir: Path) -> Path:
    check_safe_name(filename, "filename")
    dest = join_no_escape(install_dir, filename)
    try:
        install_dir.mkdir(parents=True, exist_ok=True)
        source.seek(0)
        with dest.open("wb") as target:
            shutil.copyfileobj(source, target, COPY_BUFFER_SIZE)
    except OSError as exc:
        raise InstallError(f"extract {filename}: {exc}") from exc
    return dest


def install_artifact(mod_file: ModFile, mod: Mod, install_dir: Path) -> None:
    if mod_file.is_zip:
        extract_zip(mod_file.handle, mod.name, install_dir)
    else:
        extract_single_file(mod_file.handle, link_filename(mod.link), install_dir)


def install_mod(
    cfg: RavenConfig,
    layout: GameLayout,
    mod: Mod,
    *,
    show_progress: Optional[bool] = None,
) -> Path:
    """Fetch ``mod`` and install it in place of any previous version."""

    check_safe_name(mod.name)
    if not is_zip_link(mod.link):
        check_safe_name(link_filename(mod.link), "filename")

    install_dir = layout.mod_dir(mod.name)
    with get_mod_file(cfg, mod, show_progress=show_progress) as mod_file:
        remove_previous_version(mod.name, install_dir)
        install_artifact(mod_file, mod, install_dir)
    return install_dir


def install_mods(
    cfg: RavenConfig,
    *,
    names: Iterable[str],
    repo: Optional[Repository] = None,
    show_progress: Optional[bool] = None,
) -> BatchReport:
    layout = layout_for(cfg)
    repo = repo or fetch_repository(cfg)
    report = BatchReport()

    roots: List[str] = []
    for requested in names:
        try:
            roots.append(repo.resolve_mod_name(requested))
        except ResolveError as exc:
            report.fail(requested, str(exc))

    closure = repo.transitive_closure(roots)
    report.missing = closure.error

    for mod in closure.mods:
        try:
            install_mod(cfg, layout, mod, show_progress=show_progress)
        except (InstallError, ArtifactError) as exc:
            report.fail(mod.name, f"cannot install {mod.name}: {exc}")
        else:
            report.succeed(mod.name, f"Installed {mod.name}")
    return report


def yeet_mods(cfg: RavenConfig, *, names: Iterable[str]) -> BatchReport:
    """Remove installed mods matching ``names``, each at most once."""

    layout = layout_for(cfg)
    installed = installed_mods(layout.plugins_dir)
    report = BatchReport()

    targets: Dict[str, None] = {}
    for requested in names:
        try:
            targets.setdefault(resolve_mod_name(installed, requested))
        except ResolveError as exc:
            report.fail(requested, str(exc))

    for name in targets:
        try:
            check_safe_name(name)
            remove_previous_version(name, layout.mod_dir(name))
        except InstallError as exc:
            report.fail(name, str(exc))
        else:
            report.succeed(name, f"Yeeted {name}")
    return report


def list_mods(
    cfg: RavenConfig,
    *,
    installed_only: bool = False,
    search: Optional[str] = None,
    repo: Optional[Repository] = None,
) -> List[ModListing]:
    repo = repo or fetch_repository(cfg)
    known = set(repo.mod_names())

    installed: set[str] = set()
    if installed_only or cfg.game_location is not None:
        installed = set(installed_mods(layout_for(cfg).plugins_dir))

    names = set(installed) if installed_only else set(known)
    if search:
        pattern = name_pattern(search)
        names = {name for name in names if pattern.search(name)}

    listings: List[ModListing] = []
    for name in sorted(names):
        mod: Optional[Mod] = None
        if name in known:
            try:
                mod = repo.get_mod(name)
            except RecordNotFoundError as exc:
                logger.warning("%s", exc)
        listings.append(ModListing(name=name, mod=mod, known=name in known, installed=name in installed))
    return listings


def setup_game(
    cfg: RavenConfig,
    *,
    location: Path | str,
    repo: Optional[Repository] = None,
    user_config_path: Optional[Path] = None,
    show_progress: Optional[bool] = None,
) -> Path:
    """Install the BepInEx loader into the game and remember its location."""

    game_dir = locate_game(location)
    repo = repo or fetch_repository(cfg)
    base = repo.get_base(BEPINEX_BASE_NAME)
    # The record's own Name keys the cache entry, not the file it came from.
    check_safe_name(base.name)
    with get_mod_file(cfg, base, show_progress=show_progress) as mod_file:
        if not mod_file.is_zip:
            raise InstallError(f"extract {base.name}: expected a zip archive at {base.link}")
        extract_zip(mod_file.handle, base.name, game_dir)

    user_cfg = load_user_config(user_config_path)
    user_cfg.game_location = str(game_dir)
    save_user_config(user_cfg, user_config_path)
    return game_dir
