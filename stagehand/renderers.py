"""Markdown rendering for Stagehand.

Key classes:
- MarkdownRenderer: Renders Markdown to HTML with syntax highlighting and
  collects headings for the table of contents.
"""

from __future__ import annotations

import re

import mistune
from pygments import highlight
from pygments.formatters import HtmlFormatter
from pygments.lexers import get_lexer_by_name
from pygments.util import ClassNotFound

from .content import Heading
from .html_utils import escape_html
from .utils import strip_hashtags

MISTUNE_PLUGINS = ["strikethrough", "footnotes", "table", "url"]


def _generate_heading_id(text: str) -> str:
    """Generate a URL-friendly anchor ID from heading text."""
    slug = re.sub(r"<[^>]+>", "", text).lower().strip()
    slug = re.sub(r"[^\w\s-]", "", slug)
    slug = re.sub(r"[-\s]+", "-", slug)
    return slug.strip("-") or "section"


class _HighlightRenderer(mistune.HTMLRenderer):
    """HTML renderer adding heading anchors and Pygments highlighting.

    Attributes:
        headings: Headings seen during the last render, in order.
    """

    def __init__(self) -> None:
        super().__init__(escape=False)
        self.headings: list[Heading] = []
        self._seen_ids: dict[str, int] = {}

    def heading(self, text: str, level: int, **attrs) -> str:
        base_id = _generate_heading_id(text)
        count = self._seen_ids.get(base_id)
        if count is None:
            self._seen_ids[base_id] = 0
            heading_id = base_id
        else:
            self._seen_ids[base_id] = count + 1
            heading_id = f"{base_id}-{count + 1}"
        self.headings.append(Heading(id=heading_id, text=text, level=level))
        return f'<h{level} id="{heading_id}">{text}</h{level}>\n'

    def block_code(self, code: str, info: str | None = None) -> str:
        lang = (info or "").split()[0] if info else ""
        if lang:
            try:
                lexer = get_lexer_by_name(lang, stripall=True)
            except ClassNotFound:
                lexer = None
            if lexer is not None:
                return highlight(code, lexer, HtmlFormatter(cssclass="highlight"))
        lang_class = f' class="language-{escape_html(lang)}"' if lang else ""
        escaped = code.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")
        return f"<pre><code{lang_class}>{escaped}</code></pre>\n"


class MarkdownRenderer:
    """Renders Markdown source to HTML.

    A new mistune instance is created per call so the renderer is safe to
    share between worker threads.
    """

    source_type = "markdown"

    def render(self, content: str) -> tuple[str, list[Heading]]:
        """Render Markdown content to HTML.

        Args:
            content: Markdown source content.

        Returns:
            Tuple of (rendered HTML, list of Heading objects).
        """
        renderer = _HighlightRenderer()
        markdown = mistune.create_markdown(renderer=renderer, plugins=MISTUNE_PLUGINS)
        html = markdown(strip_hashtags(content))
        return html, renderer.headings


def pygments_css(style: str = "default") -> str:
    """Return the stylesheet for highlighted code blocks."""
    return HtmlFormatter(style=style).get_style_defs(".highlight")
