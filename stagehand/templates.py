"""Layout rendering for Stagehand.

Key classes:
- TemplateEngine: Jinja2 environment that wraps rendered posts in layouts.
- PostCollection: Sequence helper exposed to templates as ``posts``.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping, Sequence
from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader, TemplateNotFound, select_autoescape
from markupsafe import Markup

from .content import Heading, Post
from .html_utils import escape_html, join_root_url
from .renderers import pygments_css

FALLBACK_LAYOUT = "<!doctype html>\n<html><head><title>{{ post.title }}</title></head>\n<body>{{ content }}</body></html>\n"


class PostCollection(Sequence[Post]):
    """Read-only list of posts with template conveniences."""

    def __init__(self, posts: Iterable[Post]):
        self._posts = list(posts)

    def __iter__(self) -> Iterator[Post]:
        return iter(self._posts)

    def __len__(self) -> int:
        return len(self._posts)

    def __getitem__(self, item):
        return self._posts[item]

    def published(self) -> PostCollection:
        return PostCollection(p for p in self._posts if not p.draft)

    def with_tag(self, tag: str) -> PostCollection:
        return PostCollection(p for p in self._posts if tag in p.tags)

    def sorted(self, reverse: bool = True) -> PostCollection:
        return PostCollection(sorted(self._posts, key=lambda p: (p.date, p.slug), reverse=reverse))

    def latest(self, count: int = 5) -> PostCollection:
        return PostCollection(self.published().sorted()[:count])


def render_toc(headings: Sequence[Heading]) -> Markup:
    """Render headings as nested ``<ul>`` lists."""
    if not headings:
        return Markup("")
    parts: list[str] = []
    levels: list[int] = []
    for heading in headings:
        while levels and levels[-1] > heading.level:
            levels.pop()
            parts.append("</li></ul>")
        if levels and levels[-1] == heading.level:
            parts.append("</li>")
        else:
            parts.append("<ul>")
            levels.append(heading.level)
        parts.append(f'<li><a href="#{escape_html(heading.id)}">{escape_html(heading.text)}</a>')
    parts.extend("</li></ul>" for _ in levels)
    return Markup("".join(parts))


class TemplateEngine:
    """Template rendering engine using Jinja2.

    Attributes:
        templates_dir: Directory holding layouts.
        env: Jinja2 environment.
        globals: Site-wide values available in every template.
    """

    def __init__(
        self,
        templates_dir: Path,
        site: Mapping[str, Any],
        data: Mapping[str, Any] | None = None,
    ):
        """Initialize the template engine.

        Args:
            templates_dir: Layout directory; a sibling ``_partials`` directory
                is also searched.
            site: Site settings (title, url, description).
            data: Values loaded from the data directory.
        """
        self.templates_dir = templates_dir
        self.root_url = str(site.get("url", "") or "")
        self.env = Environment(
            loader=FileSystemLoader([str(templates_dir), str(templates_dir.parent / "_partials")]),
            autoescape=select_autoescape(["html", "xml", "jinja"]),
        )
        self.env.globals.update(
            site=dict(site),
            data=dict(data or {}),
            posts=PostCollection([]),
            url_for=self.url_for,
            render_toc=render_toc,
            pygments_css=pygments_css,
        )

    def set_posts(self, posts: Iterable[Post]) -> None:
        self.env.globals["posts"] = PostCollection(posts)

    def url_for(self, path: str) -> str:
        """Absolute URL for ``path`` when the site URL is configured."""
        if path.startswith(("http://", "https://", "//")):
            return path
        normalized = path if path.startswith("/") else f"/{path}"
        return join_root_url(self.root_url, normalized)

    def render_post(self, post: Post) -> str:
        """Wrap ``post.html`` in its layout.

        Raises:
            jinja2.TemplateError: The layout failed to render.
        """
        template = self._resolve_layout(post.layout)
        return template.render(
            post=post,
            content=Markup(post.html),
            toc=render_toc(post.toc),
            frontmatter=post.frontmatter,
        )

    def _resolve_layout(self, layout: str):
        names = [f"{layout}{suffix}" for suffix in (".html.jinja", ".jinja", ".html")]
        if layout != "default":
            names += ["default.html.jinja", "default.jinja", "default.html"]
        for name in names:
            try:
                return self.env.get_template(name)
            except TemplateNotFound:
                continue
        return self.env.from_string(FALLBACK_LAYOUT)
