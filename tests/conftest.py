from pathlib import Path

import pytest


def write(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


@pytest.fixture
def site_project(tmp_path):
    """Small project with two posts, a draft, a layout, an asset and data."""
    root = tmp_path / "project"
    write(
        root / "stagehand.yaml",
        "title: Test Site\nurl: https://example.com\nlicense: CC-BY-4.0\nconcurrency: 2\n",
    )
    write(
        root / "site" / "_layouts" / "default.html.jinja",
        "<html><head><title>{{ post.title }} | {{ site.title }}</title></head>\n"
        "<body>\n  <main>{{ content }}</main>\n  <nav>{{ toc }}</nav>\n</body></html>\n",
    )
    write(root / "site" / "index.md", "# Home\n\nWelcome to the site.\n")
    write(
        root / "site" / "posts" / "2024-01-15-go-testing-guide.md",
        "---\ntitle: Go Testing Guide\ntags: [go]\n---\n"
        "Table driven tests in Go.\n\n## Setup\n\n```python\nprint('hi')\n```\n",
    )
    write(
        root / "site" / "posts" / "wip.md",
        "---\ndraft: true\n---\n# Work in progress\n",
    )
    write(root / "assets" / "css" / "main.css", "body { color: black; }\n")
    write(root / "data" / "site.yaml", "author: Sam\n")
    return root
