from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import List

from .config import RavenConfig, require_game_location

GAME_EXE_NAME = "DeathsDoor.exe"
DISABLED_DIR_NAME = "disabled"


class GameError(RuntimeError):
    """Raised when the game directory layout cannot be used."""


class GameNotFoundError(GameError):
    pass


@dataclass(slots=True)
class GameLayout:
    root: Path

    @property
    def bepinex_dir(self) -> Path:
        return self.root / "BepInEx"

    @property
    def plugins_dir(self) -> Path:
        return self.bepinex_dir / "plugins"

    def mod_dir(self, mod_name: str) -> Path:
        return self.plugins_dir / mod_name


def layout_for(cfg: RavenConfig) -> GameLayout:
    return GameLayout(root=require_game_location(cfg))


def locate_game(location: Path | str) -> Path:
    """Return the game directory for either the directory or its executable."""

    path = Path(location).expanduser()
    if path.name != GAME_EXE_NAME:
        if not path.exists():
            raise GameNotFoundError(f"{path} does not exist")
        if not path.is_dir():
            raise GameNotFoundError(f"{path} is not a directory")
        path = path / GAME_EXE_NAME
    if not path.exists():
        raise GameNotFoundError(f"game not found at {path}")
    if not path.is_file():
        raise GameNotFoundError(f"thing at {path} is not a regular file")
    return path.parent.resolve()


def is_disabled_dir(name: str) -> bool:
    return name.strip().casefold() == DISABLED_DIR_NAME


def installed_mods(plugins_dir: Path) -> List[str]:
    """Names of the mod directories under ``plugins_dir``."""

    try:
        entries = list(plugins_dir.iterdir())
    except FileNotFoundError:
        return []
    except OSError as exc:
        raise GameError(f"list installed mods: {exc}") from exc
    return sorted(e.name for e in entries if e.is_dir() and not is_disabled_dir(e.name))
