"""Command line parsing: quotes, pipes, redirects and the background marker.

The grammar is intentionally loose. Unbalanced quotes are kept as literal
characters instead of raising, and a redirect operator without a target is
left in place as an ordinary word.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from protoshell.core.types import ParsedCommand, ParsedLine, Redirect, RedirectKind

QUOTES = ('"', "'")
ESCAPE = "\\"
PIPE = "|"
BACKGROUND_MARKER = "&"
PIPELINE_CHARS = frozenset("|<>")
REDIRECT_RE = re.compile(r"""(?P<op>(?<!\S)2>>?|>>?|<)\s*(?P<target>"[^"]*"|'[^']*'|\S+)""")

_REDIRECT_KINDS = {
    ">": RedirectKind.STDOUT_TRUNCATE,
    ">>": RedirectKind.STDOUT_APPEND,
    "2>": RedirectKind.STDERR_TRUNCATE,
    "2>>": RedirectKind.STDERR_APPEND,
    "<": RedirectKind.STDIN,
}


@dataclass(frozen=True)
class _Layout:
    """Quote structure of one piece of text."""

    quoted: list[bool]
    delimiters: frozenset[int]
    escapes: frozenset[int]

    def is_plain(self, index: int) -> bool:
        return not self.quoted[index] and index not in self.escapes and (index - 1) not in self.escapes


def _closing_quote(text: str, start: int) -> int | None:
    quote = text[start]
    idx = start + 1
    while idx < len(text):
        ch = text[idx]
        if ch == ESCAPE and idx + 1 < len(text) and text[idx + 1] == quote:
            idx += 2
            continue
        if ch == quote:
            return idx
        idx += 1
    return None


def _layout(text: str) -> _Layout:
    quoted = [False] * len(text)
    delimiters: set[int] = set()
    escapes: set[int] = set()
    idx = 0
    while idx < len(text):
        ch = text[idx]
        if ch == ESCAPE and idx + 1 < len(text) and text[idx + 1] in QUOTES:
            escapes.add(idx)
            idx += 2
            continue
        if ch not in QUOTES:
            idx += 1
            continue
        end = _closing_quote(text, idx)
        if end is None:
            # No partner: the quote is a literal character.
            idx += 1
            continue
        delimiters.update((idx, end))
        for inner in range(idx, end + 1):
            quoted[inner] = True
        inner = idx + 1
        while inner < end:
            if text[inner] == ESCAPE and text[inner + 1] == ch:
                escapes.add(inner)
                inner += 2
                continue
            inner += 1
        idx = end + 1
    return _Layout(quoted=quoted, delimiters=frozenset(delimiters), escapes=frozenset(escapes))


def tokenize(text: str) -> list[str]:
    """Split on whitespace outside quotes, dropping the quote characters."""

    layout = _layout(text)
    tokens: list[str] = []
    current: list[str] = []
    has_token = False
    for idx, ch in enumerate(text):
        if idx in layout.escapes:
            continue
        if idx in layout.delimiters:
            has_token = True
            continue
        if ch.isspace() and not layout.quoted[idx]:
            if has_token:
                tokens.append("".join(current))
                current = []
                has_token = False
            continue
        current.append(ch)
        has_token = True
    if has_token:
        tokens.append("".join(current))
    return tokens


def split_pipeline(text: str) -> list[str]:
    """Split a line on pipe characters that are not quoted."""

    layout = _layout(text)
    segments: list[str] = []
    start = 0
    for idx, ch in enumerate(text):
        if ch == PIPE and layout.is_plain(idx):
            segments.append(text[start:idx])
            start = idx + 1
    segments.append(text[start:])
    return [segment.strip() for segment in segments if segment.strip()]


def extract_redirects(text: str) -> tuple[str, list[Redirect]]:
    """Remove redirect tokens from a stage and return them in order."""

    layout = _layout(text)
    redirects: list[Redirect] = []
    kept: list[str] = []
    idx = 0
    while idx < len(text):
        if text[idx] in "2<>" and layout.is_plain(idx):
            match = REDIRECT_RE.match(text, idx)
            if match is not None:
                target = match.group("target")
                if len(target) >= 2 and target[0] in QUOTES and target[-1] == target[0]:
                    target = target[1:-1]
                redirects.append(Redirect(kind=_REDIRECT_KINDS[match.group("op")], target=target))
                kept.append(" ")
                idx = match.end()
                continue
        kept.append(text[idx])
        idx += 1
    return "".join(kept), redirects


def parse_stage(text: str) -> ParsedCommand | None:
    remainder, redirects = extract_redirects(text)
    words = tokenize(remainder)
    if not words:
        return None
    return ParsedCommand(command=words[0], args=words[1:], redirects=redirects)


def strip_background(raw: str) -> tuple[str, bool]:
    """Detach a trailing `&` marker from the line."""

    text = raw.rstrip()
    if text.endswith(BACKGROUND_MARKER) and not text.endswith(ESCAPE + BACKGROUND_MARKER):
        return text[:-1].rstrip(), True
    return text, False


def parse_line(raw: str) -> ParsedLine:
    """Parse one input line into pipeline stages plus the background flag."""

    text, background = strip_background(raw)
    commands: list[ParsedCommand] = []
    for segment in split_pipeline(text):
        stage = parse_stage(segment)
        if stage is not None:
            commands.append(stage)
    return ParsedLine(commands=commands, background=background)


def has_pipeline_features(raw: str) -> bool:
    """Whether the line contains an unquoted pipe or redirect operator."""

    layout = _layout(raw)
    return any(ch in PIPELINE_CHARS and layout.is_plain(idx) for idx, ch in enumerate(raw))
