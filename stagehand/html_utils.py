"""HTML utility functions for Stagehand.

Functions:
    escape_html: Escape special HTML characters in a string.
    join_root_url: Join a base URL with a path.
    inject_before_close: Insert a snippet before ``</body>`` or ``</html>``.
    minify_html: Collapse whitespace between tags.
"""

from __future__ import annotations

import re

_PRESERVE_RE = re.compile(r"(<(pre|textarea|script|style)\b.*?</\2>)", re.DOTALL | re.IGNORECASE)
_BETWEEN_TAGS_RE = re.compile(r">[ \t]*\n\s*<")
_RUNS_RE = re.compile(r"[ \t]*\n[ \t\n]*")
_PLACEHOLDER_RE = re.compile("<\x00(\\d+)>")


def escape_html(text: str) -> str:
    """Escape ``& < > "`` for inclusion in HTML.

    Examples:
        >>> escape_html('<a href="x">Tom & Jerry</a>')
        '&lt;a href=&quot;x&quot;&gt;Tom &amp; Jerry&lt;/a&gt;'
    """
    return (
        text.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
    )


def join_root_url(root_url: str, path: str) -> str:
    """Safely join a root URL and a path, avoiding double slashes.

    Examples:
        >>> join_root_url('https://example.com/', 'about')
        'https://example.com/about'
    """
    if not root_url:
        return path
    suffix = path if path.startswith("/") else f"/{path}"
    return f"{root_url.rstrip('/')}{suffix}"


def inject_before_close(html: str, snippet: str) -> str:
    """Insert ``snippet`` before the last ``</body>``, else ``</html>``, else append."""
    lowered = html.lower()
    for tag in ("</body>", "</html>"):
        idx = lowered.rfind(tag)
        if idx != -1:
            return html[:idx] + snippet + html[idx:]
    return html + snippet


def minify_html(html: str) -> str:
    """Collapse insignificant whitespace, leaving pre/textarea/script/style intact."""
    preserved: list[str] = []

    def stash(match: re.Match) -> str:
        preserved.append(match.group(1))
        return f"<\x00{len(preserved) - 1}>"

    squeezed = _RUNS_RE.sub("\n", _PRESERVE_RE.sub(stash, html))
    squeezed = _BETWEEN_TAGS_RE.sub("><", squeezed)
    return _PLACEHOLDER_RE.sub(lambda m: preserved[int(m.group(1))], squeezed).strip()
