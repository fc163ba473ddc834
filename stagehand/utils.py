"""Utility functions for Stagehand.

String and path helpers shared by the content plugins.

Key functions:
    slugify: Convert filenames to URL slugs.
    titleize: Convert filenames to human-readable titles.
    extract_date_from_name: Read a YYYY-MM-DD filename prefix.
    extract_tags: Find hashtags in text.
    first_paragraph: Plain-text first paragraph of a document.
    content_hash: Stable digest used as a cache key.
"""

from __future__ import annotations

import hashlib
import re
from datetime import date, datetime
from pathlib import Path

HASHTAG_RE = re.compile(r"#([a-zA-Z][a-zA-Z0-9]{2,}(?:/[a-zA-Z0-9]+)*)")
_DATE_PREFIX_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})(?:-|$)")


def _strip_date_prefix(stem: str) -> str:
    match = _DATE_PREFIX_RE.match(stem)
    if match and len(stem) > match.end():
        return stem[match.end():]
    return stem


def slugify(name: str) -> str:
    """Convert a filename stem to a slug, dropping any date prefix.

    Examples:
        >>> slugify("2024-01-15-Hello World")
        'hello-world'
    """
    cleaned = re.sub(r"[^a-zA-Z0-9]+", "-", _strip_date_prefix(name))
    return cleaned.strip("-").lower() or "index"


def titleize(filename: str) -> str:
    """Convert a filename to a human-readable title.

    Examples:
        >>> titleize("2024-01-15-hello-world.md")
        'Hello World'
    """
    base = _strip_date_prefix(Path(filename).stem)
    words = re.split(r"[\s\-_]+", base)
    return " ".join(word.capitalize() for word in words if word) or "Untitled"


def extract_date_from_name(name: str) -> datetime | None:
    """Return the date encoded in a ``YYYY-MM-DD`` stem prefix, if any."""
    match = _DATE_PREFIX_RE.match(name)
    if not match:
        return None
    try:
        return datetime(*(int(part) for part in match.groups()))
    except ValueError:
        return None


def coerce_date(value: object) -> datetime | None:
    """Turn a frontmatter date value into a naive datetime.

    Values with a UTC offset are converted to local time so every post date
    compares with every other.
    """
    if isinstance(value, datetime):
        return _naive(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str):
        try:
            return _naive(datetime.fromisoformat(value.strip()))
        except ValueError:
            return None
    return None


def _naive(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)


def extract_tags(text: str) -> list[str]:
    """Return unique hashtags in order of first appearance."""
    return list(dict.fromkeys(HASHTAG_RE.findall(text)))


def strip_hashtags(text: str) -> str:
    """Remove ``#`` from hashtags, keeping the words."""
    return HASHTAG_RE.sub(lambda m: m.group(1), text)


def first_paragraph(text: str, limit: int = 160) -> str:
    """Return the first non-heading paragraph as plain text.

    Args:
        text: Markdown source.
        limit: Maximum length of the result.
    """
    for para in (p.strip() for p in text.split("\n\n")):
        if not para or para.startswith(("#", "![", "```", "---")):
            continue
        para = re.sub(r"<[^>]+>", "", para)
        para = re.sub(r"\{[%#{].*?[%#}]\}", "", para)
        return " ".join(para.split())[:limit]
    return ""


def is_internal_path(path: Path) -> bool:
    """True if any component starts with ``_`` (layouts, partials, drafts)."""
    return any(part.startswith("_") for part in path.parts)


def content_hash(*parts: str) -> str:
    digest = hashlib.sha256()
    for part in parts:
        digest.update(part.encode("utf-8"))
        digest.update(b"\0")
    return digest.hexdigest()
