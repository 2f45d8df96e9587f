from __future__ import annotations

import re
from typing import Iterable, List, Sequence


class ResolveError(RuntimeError):
    """Raised when a requested name cannot be mapped to exactly one mod."""

    def __init__(self, requested: str, message: str) -> None:
        super().__init__(message)
        self.requested = requested


class NoMatchError(ResolveError):
    def __init__(self, requested: str) -> None:
        super().__init__(requested, f"{requested!r} matches no mods")


class AmbiguousNameError(ResolveError):
    def __init__(self, requested: str, candidates: Sequence[str]) -> None:
        super().__init__(requested, f"{requested!r} is ambiguous: matches {', '.join(candidates)}")
        self.candidates = list(candidates)


class DuplicateNameError(ResolveError):
    def __init__(self, requested: str, count: int) -> None:
        super().__init__(requested, f"{requested!r} is ambiguous: {count} mods with that exact name exist")
        self.count = count


def name_pattern(fragment: str) -> re.Pattern[str]:
    """Case-insensitive pattern matching ``fragment`` as literal text."""
    return re.compile(re.escape(fragment), re.IGNORECASE)


def resolve_mod_name(candidates: Iterable[str], requested: str) -> str:
    """Map a user-typed fragment to exactly one name from ``candidates``.

    Narrowing goes substring, then whole-name (case-insensitive), then exact
    case. Each tier is only consulted when the previous one left more than one
    candidate, so a short fragment resolves on its own while a fully typed
    name still wins over the looser matches it is a substring of.
    """

    pattern = name_pattern(requested)
    matches: List[str] = [name for name in candidates if pattern.search(name)]
    if len(matches) == 1:
        return matches[0]
    if not matches:
        raise NoMatchError(requested)

    full_matches = [name for name in matches if pattern.fullmatch(name)]
    if len(full_matches) == 1:
        return full_matches[0]
    if not full_matches:
        raise AmbiguousNameError(requested, matches)

    exact = sum(1 for name in full_matches if name == requested)
    if exact == 1:
        return requested
    if exact == 0:
        raise AmbiguousNameError(requested, full_matches)
    raise DuplicateNameError(requested, exact)
