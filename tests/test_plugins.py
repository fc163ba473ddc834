import json

import pytest

from stagehand.build import create_manager, dry_run, license_warning, run_build
from stagehand.lifecycle import Plugin, Stage, StageError
from stagehand.plugins import (
    DEFAULT_PLUGIN_NAMES,
    default_plugins,
    plugin_by_name,
    register_plugin,
    registered_plugins,
)


def test_registry_lists_default_plugins():
    assert [p.name for p in default_plugins()] == list(DEFAULT_PLUGIN_NAMES)
    assert set(DEFAULT_PLUGIN_NAMES) <= set(registered_plugins())
    with pytest.raises(KeyError):
        plugin_by_name("nope")


def test_register_custom_plugin():
    @register_plugin("test_custom")
    def custom():
        return Plugin.create("test_custom", collect=lambda m: None)

    assert plugin_by_name("test_custom").name == "test_custom"


def test_full_build_writes_site(site_project):
    manager = create_manager(site_project)
    result = run_build(manager)
    out = site_project / "output"

    assert result.posts == 2
    assert result.output_dir == out
    home = (out / "index.html").read_text(encoding="utf-8")
    assert "<title>Home | Test Site</title>" in home
    post = (out / "posts" / "go-testing-guide" / "index.html").read_text(encoding="utf-8")
    assert 'id="setup"' in post
    assert 'class="highlight"' in post
    assert not (out / "posts" / "wip").exists()
    assert (out / "assets" / "css" / "main.css").exists()
    assert (out / "rss.xml").exists()
    assert (out / "sitemap.xml").exists()
    assert (out / "404.html").exists()

    index = json.loads((out / "_404-index.json").read_text(encoding="utf-8"))
    by_slug = {r["slug"]: r for r in index}
    assert by_slug["go-testing-guide"]["url"] == "/posts/go-testing-guide/"
    assert by_slug["go-testing-guide"]["description"] == "Table driven tests in Go."
    assert set(by_slug) == {"index", "go-testing-guide"}


def test_dry_run_has_no_side_effects(site_project):
    manager = create_manager(site_project)
    report = dry_run(manager)
    assert report.files == 3
    assert report.posts == 2
    assert "rss.xml" in report.feeds
    assert not (site_project / "output").exists()
    assert not (site_project / ".stagehand").exists()
    assert all(post.output for post in manager.posts)

    manager.run_to(Stage.CLEANUP)
    assert (site_project / "output" / "index.html").exists()


def test_render_cache_is_persisted_and_reused(site_project, monkeypatch):
    run_build(create_manager(site_project))
    saved = json.loads((site_project / ".stagehand" / "build-cache.json").read_text(encoding="utf-8"))
    assert saved and all(key.startswith("render:") for key in saved)

    def fail(self, content):
        raise AssertionError("markdown should come from the cache")

    monkeypatch.setattr("stagehand.renderers.MarkdownRenderer.render", fail)
    manager = create_manager(site_project)
    run_build(manager)
    post = next(p for p in manager.posts if p.slug == "go-testing-guide")
    assert [h.id for h in post.toc] == ["setup"]


def test_fast_mode_skips_minify(site_project):
    slow = create_manager(site_project)
    slow.run_to(Stage.RENDER)
    fast = create_manager(site_project, fast=True)
    fast.run_to(Stage.RENDER)
    slow_home = next(p for p in slow.posts if p.slug == "index").output
    fast_home = next(p for p in fast.posts if p.slug == "index").output
    assert "\n  <main>" in fast_home
    assert "\n  <main>" not in slow_home


def test_output_dir_override(site_project, tmp_path):
    target = tmp_path / "elsewhere"
    result = run_build(create_manager(site_project, output_dir=target))
    assert result.output_dir == target
    assert (target / "index.html").exists()
    assert not (site_project / "output").exists()


def test_missing_content_dir_fails_validation(tmp_path):
    manager = create_manager(tmp_path)
    with pytest.raises(StageError) as excinfo:
        run_build(manager)
    assert excinfo.value.stage is Stage.VALIDATE
    assert excinfo.value.plugin == "validate_config"


def test_bad_frontmatter_fails_load(site_project):
    (site_project / "site" / "broken.md").write_text("---\ntitle: [x\n---\nBody\n", encoding="utf-8")
    manager = create_manager(site_project)
    with pytest.raises(StageError) as excinfo:
        manager.run()
    assert excinfo.value.stage is Stage.LOAD
    assert "broken.md" in str(excinfo.value)


def test_duplicate_urls_warn(site_project):
    (site_project / "site" / "posts" / "go-testing-guide.md").write_text("# Dup\n", encoding="utf-8")
    manager = create_manager(site_project)
    manager.run_to(Stage.TRANSFORM)
    assert any("share url" in w.message for w in manager.warnings)


def test_license_warning(site_project, tmp_path):
    assert license_warning(create_manager(site_project).config) == ""
    assert "license" in license_warning(create_manager(tmp_path).config)


def test_dates_with_utc_offset_sort_with_plain_dates(site_project):
    (site_project / "site" / "tz.md").write_text(
        "---\ntitle: Offset\ndate: 2024-02-01T10:00:00+02:00\n---\nBody.\n", encoding="utf-8"
    )
    result = run_build(create_manager(site_project))
    assert result.posts == 3
    rss = (site_project / "output" / "rss.xml").read_text(encoding="utf-8")
    assert rss.index("Offset") < rss.index("Go Testing Guide")


def test_frontmatter_url_cannot_leave_output(site_project):
    (site_project / "site" / "evil.md").write_text("---\nurl: /../../escaped/\n---\nx\n", encoding="utf-8")
    manager = create_manager(site_project)
    with pytest.raises(StageError) as excinfo:
        run_build(manager)
    assert excinfo.value.stage is Stage.LOAD
    assert "'..'" in str(excinfo.value)
    assert not (site_project.parent / "escaped").exists()
    assert not (site_project.parent.parent / "escaped").exists()


def test_frontmatter_url_is_normalised(site_project):
    (site_project / "site" / "about.md").write_text("---\nurl: about//team/./\n---\nx\n", encoding="utf-8")
    run_build(create_manager(site_project))
    assert (site_project / "output" / "about" / "team" / "index.html").exists()


def test_saved_render_cache_keeps_only_current_posts(site_project):
    index = site_project / "site" / "index.md"
    for n in range(4):
        index.write_text(f"# Home\n\nEdit {n}.\n", encoding="utf-8")
        manager = create_manager(site_project)
        run_build(manager)
    saved = json.loads((site_project / ".stagehand" / "build-cache.json").read_text(encoding="utf-8"))
    assert set(saved) == {f"render:{post.content_hash}" for post in manager.posts}
    assert len(saved) == 3
