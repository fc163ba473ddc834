from datetime import datetime
from pathlib import Path

import pytest

from stagehand.content import (
    FrontmatterError,
    Heading,
    LayoutResolver,
    Post,
    UrlDeriver,
    extract_frontmatter,
    load_post,
)
from stagehand.renderers import MarkdownRenderer
from stagehand.templates import PostCollection, TemplateEngine, render_toc


def test_extract_frontmatter():
    data, body = extract_frontmatter("---\ntitle: Hi\n---\nBody\n")
    assert data == {"title": "Hi"}
    assert body == "Body\n"
    assert extract_frontmatter("No frontmatter") == ({}, "No frontmatter")
    assert extract_frontmatter("---\n- a\n---\nBody\n")[0] == {}
    with pytest.raises(FrontmatterError):
        extract_frontmatter("---\ntitle: [oops\n---\nBody\n")


def test_url_deriver():
    urls = UrlDeriver()
    assert urls.derive(Path("index.md"), "index") == "/"
    assert urls.derive(Path("about.md"), "about") == "/about/"
    assert urls.derive(Path("posts/index.md"), "index") == "/posts/"
    assert urls.derive(Path("posts/2024/hello.md"), "hello") == "/posts/2024/hello/"


def test_layout_resolver(tmp_path):
    layouts = tmp_path / "_layouts"
    (layouts / "posts").mkdir(parents=True)
    (layouts / "posts.html.jinja").write_text("", encoding="utf-8")
    (layouts / "posts" / "special.jinja").write_text("", encoding="utf-8")
    resolver = LayoutResolver(layouts)
    assert resolver.resolve(Path("posts/special.md"), {}) == "posts/special"
    assert resolver.resolve(Path("posts/other.md"), {}) == "posts"
    assert resolver.resolve(Path("about.md"), {}) == "default"
    assert resolver.resolve(Path("about.md"), {"layout": "wide"}) == "wide"


def test_load_post_reads_metadata(tmp_path):
    content = tmp_path / "site"
    (content / "posts").mkdir(parents=True)
    path = content / "posts" / "2024-03-02-first-post.md"
    path.write_text("---\ntags: python, web\n---\n# First!\n\nHello #world.\n", encoding="utf-8")
    post = load_post(path, content)
    assert post.title == "First!"
    assert post.slug == "first-post"
    assert post.url == "/posts/first-post/"
    assert post.date == datetime(2024, 3, 2)
    assert post.tags == ["python", "web", "world"]
    assert post.draft is False
    assert post.output_path == Path("posts/first-post/index.html")
    assert len(post.content_hash) == 64


def test_load_post_frontmatter_overrides(tmp_path):
    path = tmp_path / "page.md"
    path.write_text(
        "---\ntitle: Custom\nslug: custom-slug\ndate: 2023-05-06\ndraft: true\n---\nText\n",
        encoding="utf-8",
    )
    post = load_post(path, tmp_path)
    assert post.title == "Custom"
    assert post.url == "/custom-slug/"
    assert post.date == datetime(2023, 5, 6)
    assert post.draft is True


def test_markdown_renderer_headings_and_code():
    html, toc = MarkdownRenderer().render(
        "# Intro\n\n## Setup\n\n## Setup\n\n```python\nx = 1\n```\n\n```nosuchlang\n<b>\n```\n"
    )
    assert '<h1 id="intro">Intro</h1>' in html
    assert '<h2 id="setup-1">Setup</h2>' in html
    assert 'class="highlight"' in html
    assert '<code class="language-nosuchlang">&lt;b&gt;' in html
    assert [h.id for h in toc] == ["intro", "setup", "setup-1"]


def test_render_toc_nests_levels():
    toc = render_toc(
        [Heading("a", "A", 2), Heading("b", "B <x>", 3), Heading("c", "C", 2)]
    )
    assert str(toc) == (
        '<ul><li><a href="#a">A</a><ul><li><a href="#b">B &lt;x&gt;</a>'
        '</li></ul></li><li><a href="#c">C</a></li></ul>'
    )
    assert str(render_toc([])) == ""


def make_post(**overrides):
    values = dict(
        path=Path("/site/hello.md"),
        rel_path=Path("hello.md"),
        body="Hi",
        frontmatter={},
        title="Hello",
        slug="hello",
        url="/hello/",
        date=datetime(2024, 1, 1),
        html="<p>Hi</p>",
    )
    values.update(overrides)
    return Post(**values)


def test_template_engine_renders_layout(tmp_path):
    layouts = tmp_path / "_layouts"
    layouts.mkdir()
    (layouts / "default.html.jinja").write_text(
        "<title>{{ post.title }} | {{ site.title }}</title>{{ content }}"
        "{{ url_for('assets/app.js') }} {{ data.author }} {{ posts | length }}",
        encoding="utf-8",
    )
    engine = TemplateEngine(layouts, {"title": "Site", "url": "https://example.com"}, {"author": "Sam"})
    post = make_post()
    engine.set_posts([post])
    rendered = engine.render_post(post)
    assert "<title>Hello | Site</title><p>Hi</p>" in rendered
    assert "https://example.com/assets/app.js" in rendered
    assert "Sam 1" in rendered


def test_template_engine_falls_back_without_layouts(tmp_path):
    engine = TemplateEngine(tmp_path / "_layouts", {})
    rendered = engine.render_post(make_post(layout="missing"))
    assert "<title>Hello</title>" in rendered
    assert "<p>Hi</p>" in rendered
    assert engine.url_for("about/") == "/about/"


def test_post_collection_helpers():
    old = make_post(slug="old", date=datetime(2020, 1, 1))
    new = make_post(slug="new", date=datetime(2024, 1, 1), tags=["go"])
    draft = make_post(slug="draft", date=datetime(2025, 1, 1), draft=True)
    posts = PostCollection([old, new, draft])
    assert [p.slug for p in posts.latest(5)] == ["new", "old"]
    assert [p.slug for p in posts.with_tag("go")] == ["new"]
    assert len(posts.published()) == 2
