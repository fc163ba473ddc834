"""Content model for Stagehand.

Key classes:
- Post: One content file moving through the pipeline.
- Heading: A heading collected for table-of-contents rendering.
- UrlDeriver: Maps a source path and slug to a URL.
- LayoutResolver: Picks the layout template for a post.

Key functions:
- extract_frontmatter: Split YAML frontmatter from a document body.
- load_post: Read one file into a Post.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

import yaml

from .utils import (
    coerce_date,
    content_hash,
    extract_date_from_name,
    extract_tags,
    slugify,
    titleize,
)

FRONTMATTER_RE = re.compile(r"^---\s*\n(.*?)\n---\s*\n", re.DOTALL)


class FrontmatterError(ValueError):
    """Raised when a file's frontmatter is not valid YAML or holds an unusable value."""


@dataclass
class Heading:
    """A heading extracted from rendered markdown.

    Attributes:
        id: Anchor ID for the heading.
        text: The text content of the heading.
        level: Heading level (1-6).
    """

    id: str
    text: str
    level: int


@dataclass
class Post:
    """A content file and everything the pipeline derives from it.

    Load fills the source fields, transform fills description and excerpt,
    render fills ``html`` (markdown body) and ``output`` (final page).

    Attributes:
        path: Absolute source path.
        rel_path: Path relative to the content directory.
        body: Source text without frontmatter.
        frontmatter: Parsed YAML frontmatter.
        title: Title from frontmatter, first heading, or filename.
        slug: URL-friendly slug.
        url: Site-relative URL, always ending in ``/``.
        date: Publication date.
        tags: Tags from frontmatter plus inline hashtags.
        draft: Drafts are skipped by publishing plugins.
        layout: Layout template name.
        description: Short summary.
        excerpt: Full first paragraph.
        html: Rendered markdown body.
        output: Final HTML document.
        toc: Headings in document order.
        content_hash: Digest of the source text.
    """

    path: Path
    rel_path: Path
    body: str
    frontmatter: dict[str, Any]
    title: str
    slug: str
    url: str
    date: datetime
    tags: list[str] = field(default_factory=list)
    draft: bool = False
    layout: str = "default"
    description: str = ""
    excerpt: str = ""
    html: str = ""
    output: str = ""
    toc: list[Heading] = field(default_factory=list)
    content_hash: str = ""

    @property
    def folder(self) -> str:
        parent = self.rel_path.parent
        return "" if parent == Path(".") else parent.as_posix()

    @property
    def output_path(self) -> Path:
        """Path of the published file relative to the output directory."""
        url_path = self.url.strip("/")
        return Path(url_path) / "index.html" if url_path else Path("index.html")

    def to_index_record(self) -> dict[str, str]:
        return {
            "slug": self.slug,
            "title": self.title,
            "description": self.description,
            "url": self.url,
        }


def extract_frontmatter(text: str) -> tuple[dict[str, Any], str]:
    """Split YAML frontmatter from content.

    Returns:
        Tuple of (frontmatter dict, remaining content). Documents without
        frontmatter, or whose frontmatter is not a mapping, return ``{}``.

    Raises:
        FrontmatterError: The frontmatter block is not valid YAML.
    """
    match = FRONTMATTER_RE.match(text)
    if not match:
        return {}, text
    try:
        data = yaml.safe_load(match.group(1)) or {}
    except yaml.YAMLError as exc:
        raise FrontmatterError(f"invalid frontmatter: {exc}") from exc
    if not isinstance(data, dict):
        return {}, text
    return data, text[match.end():]


def _title_from_body(body: str) -> str | None:
    for line in body.splitlines():
        stripped = line.strip()
        if stripped.startswith("# "):
            return stripped[2:].strip()
    return None


def _clean_url(url: str) -> str:
    """Collapse a frontmatter url to ``/a/b/`` form, rejecting ``..`` segments."""
    if not url:
        return ""
    parts = [part for part in url.split("/") if part and part != "."]
    if ".." in parts:
        raise FrontmatterError(f"url {url!r} must not contain '..' segments")
    return "/" + "/".join(parts) + "/" if parts else "/"


class UrlDeriver:
    """Derives URLs from a post's location in the content tree."""

    def derive(self, rel: Path, slug: str) -> str:
        segments = [p for p in rel.parent.parts if p not in ("", ".")]
        if slug != "index":
            segments.append(slug)
        path = "/".join(segments)
        return f"/{path}/" if path else "/"


class LayoutResolver:
    """Resolves layout templates for posts.

    Search order: frontmatter ``layout``, ``{folder}/{name}``, the top-level
    folder name, then ``default``.
    """

    SUFFIXES = (".html.jinja", ".jinja", ".html")

    def __init__(self, templates_dir: Path):
        self.templates_dir = templates_dir

    def resolve(self, rel: Path, frontmatter: dict[str, Any]) -> str:
        explicit = frontmatter.get("layout")
        if isinstance(explicit, str) and explicit:
            return explicit
        folder = "" if rel.parent == Path(".") else rel.parent.as_posix()
        candidates = [f"{folder}/{rel.stem}", Path(folder).parts[0]] if folder else [rel.stem]
        for candidate in candidates:
            if any((self.templates_dir / f"{candidate}{s}").exists() for s in self.SUFFIXES):
                return candidate
        return "default"


def load_post(
    path: Path,
    content_dir: Path,
    layouts: LayoutResolver | None = None,
    urls: UrlDeriver | None = None,
) -> Post:
    """Read a content file into a Post.

    Args:
        path: Absolute path to the file.
        content_dir: Content root the URL is derived from.
        layouts: Layout resolver; defaults to ``content_dir/_layouts``.
        urls: URL deriver.

    Raises:
        FrontmatterError: Frontmatter is not valid YAML, or its url escapes
            the site root.
        OSError: The file cannot be read.
    """
    rel = path.relative_to(content_dir)
    raw = path.read_text(encoding="utf-8")
    frontmatter, body = extract_frontmatter(raw)
    layouts = layouts or LayoutResolver(content_dir / "_layouts")
    urls = urls or UrlDeriver()

    slug = str(frontmatter.get("slug") or "") or slugify(path.stem)
    title = str(frontmatter.get("title") or "") or _title_from_body(body) or titleize(path.name)
    date = (
        coerce_date(frontmatter.get("date"))
        or extract_date_from_name(path.stem)
        or datetime.fromtimestamp(path.stat().st_mtime)
    )
    tags = frontmatter.get("tags") or []
    if isinstance(tags, str):
        tags = [t.strip() for t in tags.split(",") if t.strip()]
    tags = list(dict.fromkeys([str(t) for t in tags] + extract_tags(body)))
    url = _clean_url(str(frontmatter.get("url") or "")) or urls.derive(rel, slug)

    return Post(
        path=path,
        rel_path=rel,
        body=body,
        frontmatter=frontmatter,
        title=title,
        slug=slug,
        url=url if url.endswith("/") else f"{url}/",
        date=date,
        tags=tags,
        draft=bool(frontmatter.get("draft", False)) or path.name.startswith("_"),
        layout=layouts.resolve(rel, frontmatter),
        description=str(frontmatter.get("description") or ""),
        content_hash=content_hash(raw),
    )
