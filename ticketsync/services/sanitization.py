"""Reduce tracker rich text (HTML and Markdown) to plain text.

Every Markdown pattern is anchored on its delimiter and may not cross another
delimiter or a newline, so each pass is linear in the input. bleach is not, so
webhook handlers go through :func:`sanitize_description_within`, which hands
long descriptions to a worker process that is killed once the deadline passes.
"""

from __future__ import annotations

import html
import re
from typing import Callable

import anyio
import bleach
from anyio import to_process

from ticketsync.core.errors import SanitizationError
from ticketsync.core.logging import log_warning

MAX_INPUT_LENGTH = 100_000
INLINE_LENGTH_LIMIT = 8_192
STEP_TIME_BUDGET = 0.1

_BLOCK_BREAKS = re.compile(
    r"<\s*br\s*/?\s*>|</\s*(?:p|div|li|h[1-6]|tr|blockquote|pre)\s*>",
    flags=re.IGNORECASE,
)
_MD_HEADER_PREFIX = re.compile(r"[ \t]{0,3}#{1,6}[ \t]+")
_MD_BOLD_STAR = re.compile(r"\*\*(?=[^\s*])([^*\n]+?)(?<=\S)\*\*")
_MD_BOLD_UNDERSCORE = re.compile(r"__(?=[^\s_])([^_\n]+?)(?<=\S)__")
_MD_ITALIC_STAR = re.compile(r"\*(?=[^\s*])([^*\n]+?)(?<=\S)\*")
_MD_ITALIC_UNDERSCORE = re.compile(r"(?<!\w)_(?=[^\s_])([^_\n]+?)(?<=\S)_(?!\w)")
_MD_LINK = re.compile(r"!?\[([^\[\]\n]*)\]\(([^()\n]*)\)")
_MD_FENCE_OPEN = re.compile(r"[ \t]*(```|~~~)")
_MD_INLINE_CODE = re.compile(r"`([^`\n]+)`")
_MD_LIST_MARKER = re.compile(r"^[ \t]*(?:[-*+]|\d{1,9}[.)])[ \t]+", flags=re.MULTILINE)
_HORIZONTAL_SPACE = re.compile(r"[ \t\f\v]+")
_SPACE_AROUND_NEWLINE = re.compile(r" ?\n ?")
_EXCESS_NEWLINES = re.compile(r"\n{3,}")


def _check_length(value: str | None) -> str:
    text = value or ""
    if len(text) > MAX_INPUT_LENGTH:
        raise SanitizationError(
            f"Description is too long to sanitise ({len(text)} > {MAX_INPUT_LENGTH} characters)"
        )
    return text


def _strip_tags(text: str) -> str:
    text = _BLOCK_BREAKS.sub("\n", text)
    cleaned = bleach.clean(text, tags=[], attributes={}, strip=True, strip_comments=True)
    # bleach escapes the surviving text; the entities were already decoded once.
    return html.unescape(cleaned)


def _strip_headers(text: str) -> str:
    lines = text.split("\n")
    for index, line in enumerate(lines):
        prefix = _MD_HEADER_PREFIX.match(line)
        if not prefix:
            continue
        heading = line[prefix.end():].rstrip(" \t")
        closing = heading.rstrip("#")
        # A closing run of hashes only counts when separated from the heading.
        if closing != heading and (not closing or closing[-1] in " \t"):
            heading = closing.rstrip(" \t")
        lines[index] = heading
    return "\n".join(lines)


def _strip_emphasis(text: str) -> str:
    text = _MD_BOLD_STAR.sub(r"\1", text)
    text = _MD_BOLD_UNDERSCORE.sub(r"\1", text)
    text = _MD_ITALIC_STAR.sub(r"\1", text)
    return _MD_ITALIC_UNDERSCORE.sub(r"\1", text)


def _strip_code_blocks(text: str) -> str:
    kept: list[str] = []
    fenced: list[str] = []
    fence: str | None = None
    for line in text.split("\n"):
        if fence is None:
            opener = _MD_FENCE_OPEN.match(line)
            if opener:
                fence = opener.group(1)
                fenced = [line]
            else:
                kept.append(line)
            continue
        fenced.append(line)
        if line.strip(" \t\r") == fence:
            fence = None
            fenced = []
    # An unterminated fence is ordinary text.
    kept.extend(fenced)
    return "\n".join(kept)


def _collapse_whitespace(text: str) -> str:
    text = text.replace("\r\n", "\n").replace("\r", "\n").replace("\u00a0", " ")
    text = _HORIZONTAL_SPACE.sub(" ", text)
    text = _SPACE_AROUND_NEWLINE.sub("\n", text)
    return _EXCESS_NEWLINES.sub("\n\n", text)


_PIPELINE: tuple[tuple[str, Callable[[str], str]], ...] = (
    ("decode_entities", html.unescape),
    ("strip_html", _strip_tags),
    ("strip_headers", _strip_headers),
    ("strip_emphasis", _strip_emphasis),
    ("strip_links", lambda text: _MD_LINK.sub(r"\1", text)),
    ("strip_code_blocks", _strip_code_blocks),
    ("strip_inline_code", lambda text: _MD_INLINE_CODE.sub(r"\1", text)),
    ("strip_list_markers", lambda text: _MD_LIST_MARKER.sub("", text)),
    ("collapse_whitespace", _collapse_whitespace),
    ("trim", str.strip),
)

DEFAULT_DEADLINE = STEP_TIME_BUDGET * len(_PIPELINE)


def sanitize_description(value: str | None) -> str:
    """Turn a tracker description into plain text.

    Plain text passes through unchanged apart from whitespace normalisation.
    Runs in the calling thread with no deadline; async callers should use
    :func:`sanitize_description_within`.
    """

    text = _check_length(value)
    for _name, step in _PIPELINE:
        text = step(text)
    return text


async def sanitize_description_within(
    value: str | None, *, deadline: float = DEFAULT_DEADLINE
) -> str:
    """Sanitise ``value``, failing with :class:`SanitizationError` after ``deadline`` seconds.

    Descriptions up to ``INLINE_LENGTH_LIMIT`` characters are handled in-process.
    Longer ones run in an anyio worker process, which is killed on timeout.
    """

    text = _check_length(value)
    if len(text) <= INLINE_LENGTH_LIMIT:
        return sanitize_description(text)
    try:
        with anyio.fail_after(deadline):
            return await to_process.run_sync(sanitize_description, text, cancellable=True)
    except TimeoutError:
        log_warning("Description sanitisation timed out", length=len(text), deadline=deadline)
        raise SanitizationError(
            f"Description sanitisation did not finish within {deadline:.2f}s"
        ) from None


__all__ = [
    "DEFAULT_DEADLINE",
    "INLINE_LENGTH_LIMIT",
    "MAX_INPUT_LENGTH",
    "sanitize_description",
    "sanitize_description_within",
]
