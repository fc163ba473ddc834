"""Server-side search used by the 404 page form.

The search index is the ``_404-index.json`` file written by the feeds plugin:
a list of ``{slug, title, description, url}`` records.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .html_utils import escape_html

TITLE_WEIGHT = 10
SLUG_WEIGHT = 8
DESCRIPTION_WEIGHT = 5
DEFAULT_LIMIT = 20
DESCRIPTION_LIMIT = 150


class SearchIndexError(Exception):
    """Raised when the search index is missing or unreadable."""


@dataclass(frozen=True)
class SearchResult:
    title: str
    slug: str
    url: str
    description: str
    score: int


def load_index(path: Path) -> list[dict[str, Any]]:
    """Read the index file.

    Raises:
        SearchIndexError: The file is missing, not JSON, or not a list.
    """
    try:
        records = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise SearchIndexError(f"cannot read search index {path}: {exc}") from exc
    if not isinstance(records, list):
        raise SearchIndexError(f"search index {path} is not a list")
    return [r for r in records if isinstance(r, dict)]


def score_record(record: dict[str, Any], words: list[str]) -> int:
    """Sum weights for every query word found in title, slug and description."""
    title = str(record.get("title") or "").lower()
    slug = str(record.get("slug") or "").lower()
    description = str(record.get("description") or "").lower()
    score = 0
    for word in words:
        if word in title:
            score += TITLE_WEIGHT
        if word in slug:
            score += SLUG_WEIGHT
        if word in description:
            score += DESCRIPTION_WEIGHT
    return score


def search_index(records: list[dict[str, Any]], query: str, limit: int = DEFAULT_LIMIT) -> list[SearchResult]:
    """Return the best matches for ``query``, highest score first.

    Matching is a case-insensitive substring test per whitespace-separated
    word. Records that match nothing are dropped. Ties keep index order.
    """
    words = [w for w in query.lower().split() if w]
    if not words:
        return []
    scored: list[SearchResult] = []
    for record in records:
        score = score_record(record, words)
        if score <= 0:
            continue
        scored.append(
            SearchResult(
                title=str(record.get("title") or ""),
                slug=str(record.get("slug") or ""),
                url=str(record.get("url") or ""),
                description=str(record.get("description") or ""),
                score=score,
            )
        )
    scored.sort(key=lambda r: r.score, reverse=True)
    return scored[:limit]


def _truncate(text: str, limit: int = DESCRIPTION_LIMIT) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


def render_results_page(query: str, results: list[SearchResult]) -> str:
    """HTML page listing ``results``. Every interpolated value is escaped."""
    safe_query = escape_html(query)
    if results:
        items = "\n".join(
            f'<li><a href="{escape_html(r.url)}">{escape_html(r.title or r.slug)}</a>'
            + (f"<p>{escape_html(_truncate(r.description))}</p>" if r.description else "")
            + "</li>"
            for r in results
        )
        body = f"<ul class=\"search-results\">\n{items}\n</ul>"
    else:
        body = "<p>No results found.</p>"
    count = len(results)
    return (
        "<!doctype html>\n<html><head><meta charset=\"utf-8\">"
        f"<title>Search: {safe_query}</title></head>\n<body>\n"
        f"<h1>Search results for &quot;{safe_query}&quot;</h1>\n"
        f"<p>{count} result{'s' if count != 1 else ''}</p>\n"
        f"{body}\n"
        "<form method=\"post\" action=\"/_search\">"
        f"<input type=\"search\" name=\"q\" value=\"{safe_query}\">"
        "<button type=\"submit\">Search</button></form>\n"
        "<p><a href=\"/\">Home</a></p>\n</body></html>\n"
    )
