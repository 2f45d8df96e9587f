from __future__ import annotations

from typing import Callable, List, Optional

PROMPT = "> "
EXIT_COMMAND = "exit"


class ConsoleError(RuntimeError):
    pass


def _read_quoted(line: str, pos: int) -> tuple[str, int]:
    # pos points just past the opening quote; a backslash escapes the next character.
    chars: List[str] = []
    while pos < len(line):
        c = line[pos]
        pos += 1
        if c == '"':
            break
        if c == "\\":
            if pos >= len(line):
                break
            c = line[pos]
            pos += 1
        chars.append(c)
    return "".join(chars), pos


def _read_bare(line: str, pos: int) -> tuple[str, int]:
    start = pos
    while pos < len(line) and not line[pos].isspace():
        pos += 1
    return line[start:pos], pos


def parse_command_line(line: str) -> List[str]:
    """Split a console line into words, honouring double-quoted strings."""

    words: List[str] = []
    pos = 0
    while pos < len(line):
        if line[pos].isspace():
            pos += 1
            continue
        if line[pos] == '"':
            word, pos = _read_quoted(line, pos + 1)
            words.append(word)
        else:
            word, pos = _read_bare(line, pos)
            words.append(word)
    return words


def run_console(
    dispatch: Callable[[List[str]], None],
    *,
    read_line: Callable[[str], str] = input,
    report_error: Optional[Callable[[Exception], None]] = None,
) -> None:
    """Read commands until ``exit`` or end of input, dispatching each line."""

    while True:
        try:
            line = read_line(PROMPT)
        except EOFError:
            break
        args = parse_command_line(line)
        if not args:
            continue
        if args[0] == EXIT_COMMAND:
            break
        try:
            dispatch(args)
        except ConsoleError as exc:
            if report_error is None:
                raise
            report_error(exc)
