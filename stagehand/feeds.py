"""Feed generation for Stagehand.

Generators turn the list of published posts into Feed records during the
collect stage. Records are written to disk later by the publish_feeds plugin,
so collecting feeds has no side effects.

Classes:
    Feed: A generated artifact and its path inside the output directory.
    FeedGenerator: Base class for generators.
    SitemapGenerator: sitemap.xml.
    RSSGenerator: rss.xml.
    SearchIndexGenerator: ``_404-index.json`` used by the search fallback.
    NotFoundPageGenerator: 404.html.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from .html_utils import escape_html

if TYPE_CHECKING:
    from .config import FeedsConfig
    from .content import Post

SEARCH_INDEX_FILENAME = "_404-index.json"
RFC822 = "%a, %d %b %Y %H:%M:%S +0000"


@dataclass(frozen=True)
class Feed:
    """A generated file.

    Attributes:
        name: Generator name, e.g. ``"rss"``.
        filename: Path relative to the output directory.
        content: File contents.
        items: Number of posts included.
    """

    name: str
    filename: str
    content: str
    items: int


class FeedGenerator(ABC):
    """Base class for feed generators."""

    name: str = ""
    filename: str = ""

    @abstractmethod
    def generate(self, posts: Sequence[Post], site: Mapping[str, Any]) -> str | None:
        """Return the file contents, or None to skip this feed."""

    def build(self, posts: Sequence[Post], site: Mapping[str, Any]) -> Feed | None:
        content = self.generate(posts, site)
        if content is None:
            return None
        return Feed(self.name, self.filename, content, len(posts))


class SitemapGenerator(FeedGenerator):
    """sitemap.xml following the sitemaps.org protocol. Requires ``url``."""

    name = "sitemap"
    filename = "sitemap.xml"

    def generate(self, posts: Sequence[Post], site: Mapping[str, Any]) -> str | None:
        base_url = str(site.get("url", "")).rstrip("/")
        if not base_url:
            return None
        lines = [
            '<?xml version="1.0" encoding="UTF-8"?>',
            '<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">',
        ]
        for post in posts:
            lastmod = post.date.strftime("%Y-%m-%d")
            lines.append(
                f"  <url><loc>{escape_html(base_url + post.url)}</loc><lastmod>{lastmod}</lastmod></url>"
            )
        lines.append("</urlset>")
        return "\n".join(lines) + "\n"


class RSSGenerator(FeedGenerator):
    """RSS 2.0 feed, newest first. Requires ``url``."""

    name = "rss"
    filename = "rss.xml"

    def __init__(self, limit: int = 20):
        self.limit = limit

    def generate(self, posts: Sequence[Post], site: Mapping[str, Any]) -> str | None:
        base_url = str(site.get("url", "")).rstrip("/")
        if not base_url:
            return None
        title = escape_html(str(site.get("title") or "Stagehand Feed"))
        description = escape_html(str(site.get("description") or ""))
        build_date = datetime.now(timezone.utc).strftime(RFC822)
        rss = [
            '<?xml version="1.0" encoding="UTF-8"?>',
            '<rss version="2.0"><channel>',
            f"<title>{title}</title>",
            f"<link>{escape_html(base_url)}/</link>",
            f"<description>{description}</description>",
            f"<lastBuildDate>{build_date}</lastBuildDate>",
        ]
        for post in sorted(posts, key=lambda p: p.date, reverse=True)[: self.limit]:
            link = escape_html(base_url + post.url)
            rss.append(
                f"<item><title>{escape_html(post.title)}</title><link>{link}</link>"
                f"<guid>{link}</guid>"
                f"<description>{escape_html(post.description or post.title)}</description>"
                f"<pubDate>{post.date.strftime(RFC822)}</pubDate></item>"
            )
        rss.append("</channel></rss>")
        return "\n".join(rss) + "\n"


class SearchIndexGenerator(FeedGenerator):
    """JSON list of ``{slug, title, description, url}`` records."""

    name = "search_index"
    filename = SEARCH_INDEX_FILENAME

    def generate(self, posts: Sequence[Post], site: Mapping[str, Any]) -> str | None:
        return json.dumps([post.to_index_record() for post in posts], indent=2)


class NotFoundPageGenerator(FeedGenerator):
    """404.html with a search form posting to ``/_search``."""

    name = "not_found"
    filename = "404.html"

    def generate(self, posts: Sequence[Post], site: Mapping[str, Any]) -> str | None:
        title = escape_html(str(site.get("title") or ""))
        return (
            "<!doctype html>\n<html><head><meta charset=\"utf-8\">"
            f"<title>Page not found{' | ' + title if title else ''}</title></head>\n"
            "<body><h1>Page not found</h1>\n"
            "<form method=\"post\" action=\"/_search\">"
            "<input type=\"search\" name=\"q\" placeholder=\"Search\">"
            "<button type=\"submit\">Search</button></form>\n"
            "<p><a href=\"/\">Home</a></p>\n</body></html>\n"
        )


def default_generators(settings: FeedsConfig) -> list[FeedGenerator]:
    """Generators enabled by the ``feeds`` config section."""
    generators: list[FeedGenerator] = []
    if settings.rss:
        generators.append(RSSGenerator())
    if settings.sitemap:
        generators.append(SitemapGenerator())
    if settings.search_index:
        generators.append(SearchIndexGenerator())
        generators.append(NotFoundPageGenerator())
    return generators
