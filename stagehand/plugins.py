"""Default plugins for Stagehand.

Each plugin is built by a named factory kept in a module-level registry, so
callers can assemble a custom pipeline by name::

    manager.register_plugins(plugin_by_name("glob"), plugin_by_name("load"))

Default order:

    build_cache      configure, cleanup  load and save the render cache
    validate_config  validate            check directories
    glob             glob                find content files
    load             load                parse files into posts
    metadata         transform           description, excerpt, duplicate URLs
    render_markdown  render              markdown to HTML, cached by content hash
    templates        render              wrap posts in Jinja2 layouts
    minify_html      render              collapse whitespace (skipped in fast mode)
    feeds            collect             rss, sitemap, search index, 404 page
    static_assets    write               copy the assets directory
    publish_html     write               write post pages
    publish_feeds    write               write feed files
"""

from __future__ import annotations

import json
import shutil
from collections.abc import Callable
from pathlib import Path

from .config import ConfigError, load_data
from .content import Heading, LayoutResolver, Post, UrlDeriver, load_post
from .feeds import default_generators
from .html_utils import minify_html
from .lifecycle import HookWarning, Manager, Plugin
from .renderers import MarkdownRenderer
from .templates import TemplateEngine
from .utils import first_paragraph, is_internal_path

PluginFactory = Callable[[], Plugin]

BUILD_CACHE_FILENAME = "build-cache.json"
RENDER_CACHE_PREFIX = "render"

_REGISTRY: dict[str, PluginFactory] = {}

DEFAULT_PLUGIN_NAMES = (
    "build_cache",
    "validate_config",
    "glob",
    "load",
    "metadata",
    "render_markdown",
    "templates",
    "minify_html",
    "feeds",
    "static_assets",
    "publish_html",
    "publish_feeds",
)


def register_plugin(name: str) -> Callable[[PluginFactory], PluginFactory]:
    """Decorator registering a plugin factory under ``name``."""

    def decorator(factory: PluginFactory) -> PluginFactory:
        _REGISTRY[name] = factory
        return factory

    return decorator


def plugin_by_name(name: str) -> Plugin:
    """Build the plugin registered as ``name``.

    Raises:
        KeyError: No plugin with that name.
    """
    try:
        factory = _REGISTRY[name]
    except KeyError:
        raise KeyError(f"unknown plugin: {name}") from None
    return factory()


def registered_plugins() -> list[str]:
    return sorted(_REGISTRY)


def default_plugins() -> list[Plugin]:
    return [plugin_by_name(name) for name in DEFAULT_PLUGIN_NAMES]


def site_settings(manager: Manager) -> dict[str, str]:
    config = manager.config
    return {
        "title": config.title,
        "url": config.url,
        "description": config.description,
        "license": config.license,
    }


def published_posts(manager: Manager) -> list[Post]:
    return [post for post in manager.posts if not post.draft]


# -- configure / cleanup ----------------------------------------------------


@register_plugin("build_cache")
def build_cache_plugin() -> Plugin:
    def cache_file(manager: Manager) -> Path:
        return manager.config.cache_dir / BUILD_CACHE_FILENAME

    def configure(manager: Manager) -> None:
        if not manager.config.build_cache.enabled:
            return
        path = cache_file(manager)
        if not path.exists():
            return
        try:
            entries = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise HookWarning(f"ignoring unreadable build cache {path}: {exc}") from exc
        if not isinstance(entries, dict):
            raise HookWarning(f"ignoring malformed build cache {path}")
        for key, value in entries.items():
            manager.cache.set(key, value)

    def cleanup(manager: Manager) -> None:
        if not manager.config.build_cache.enabled:
            return
        scoped = manager.cache.scoped(RENDER_CACHE_PREFIX)
        entries = {}
        # Renders of content that no longer exists are dropped.
        for digest in {post.content_hash for post in manager.posts}:
            value, found = scoped.get(digest)
            if found:
                entries[f"{RENDER_CACHE_PREFIX}:{digest}"] = value
        path = cache_file(manager)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(entries), encoding="utf-8")

    return Plugin.create("build_cache", configure=configure, cleanup=cleanup)


# -- validate / glob / load -------------------------------------------------


@register_plugin("validate_config")
def validate_config_plugin() -> Plugin:
    def validate(manager: Manager) -> None:
        config = manager.config
        if not config.content_dir.is_dir():
            raise ConfigError(f"content directory not found: {config.content_dir}")
        output = config.output_dir
        if output == config.project_root or output in config.content_dir.parents:
            raise ConfigError(f"output directory would overwrite sources: {output}")
        if config.content_dir == output or output in [config.assets_dir, config.data_dir]:
            raise ConfigError(f"output directory overlaps a source directory: {output}")
        if not config.url:
            manager.warn("validate_config", "url is not set; rss and sitemap are skipped")

    return Plugin.create("validate_config", validate=validate)


@register_plugin("glob")
def glob_plugin() -> Plugin:
    def glob(manager: Manager) -> None:
        config = manager.config
        seen: dict[Path, None] = {}
        for pattern in config.glob_patterns:
            for path in sorted(config.content_dir.glob(pattern)):
                if not path.is_file():
                    continue
                rel = path.relative_to(config.content_dir)
                if is_internal_path(rel) or any(p.startswith(".") for p in rel.parts):
                    continue
                seen.setdefault(path, None)
        manager.set_files(str(path) for path in seen)

    return Plugin.create("glob", glob=glob)


@register_plugin("load")
def load_plugin() -> Plugin:
    def load(manager: Manager) -> None:
        config = manager.config
        layouts = LayoutResolver(config.templates_dir)
        urls = UrlDeriver()
        posts: list[Post] = []
        failures: list[str] = []
        for file in manager.files:
            try:
                posts.append(load_post(Path(file), config.content_dir, layouts, urls))
            except (OSError, ValueError) as exc:
                failures.append(f"{file}: {exc}")
        manager.set_posts(posts)
        if failures:
            raise ValueError(f"{len(failures)} file(s) failed to load; first error: {failures[0]}")

    return Plugin.create("load", load=load)


# -- transform / render -----------------------------------------------------


@register_plugin("metadata")
def metadata_plugin() -> Plugin:
    def fill(post: Post) -> None:
        if not post.description:
            post.description = first_paragraph(post.body)
        post.excerpt = first_paragraph(post.body, limit=10_000)

    def transform(manager: Manager) -> None:
        manager.process_posts(fill)
        owners: dict[str, Post] = {}
        for post in published_posts(manager):
            other = owners.setdefault(post.url, post)
            if other is not post:
                manager.warn("metadata", f"{post.rel_path} and {other.rel_path} share url {post.url}")

    return Plugin.create("metadata", transform=transform)


@register_plugin("render_markdown")
def render_markdown_plugin() -> Plugin:
    renderer = MarkdownRenderer()

    def render(manager: Manager) -> None:
        cache = manager.cache.scoped(RENDER_CACHE_PREFIX)

        def render_one(post: Post) -> None:
            cached, found = cache.get(post.content_hash)
            if found and isinstance(cached, dict):
                post.html = cached["html"]
                post.toc = [Heading(**h) for h in cached["toc"]]
                return
            post.html, post.toc = renderer.render(post.body)
            cache.set(
                post.content_hash,
                {"html": post.html, "toc": [vars(h) for h in post.toc]},
            )

        manager.process_posts(render_one)

    return Plugin.create("render_markdown", render=render)


@register_plugin("templates")
def templates_plugin() -> Plugin:
    def render(manager: Manager) -> None:
        config = manager.config
        engine = TemplateEngine(config.templates_dir, site_settings(manager), load_data(config.data_dir))
        engine.set_posts(published_posts(manager))

        def render_one(post: Post) -> None:
            post.output = engine.render_post(post)

        manager.process_posts(render_one)

    return Plugin.create("templates", render=render)


@register_plugin("minify_html")
def minify_html_plugin() -> Plugin:
    def render(manager: Manager) -> None:
        if manager.config.fast_mode:
            return

        def minify(post: Post) -> None:
            post.output = minify_html(post.output)

        manager.process_posts(minify)

    return Plugin.create("minify_html", render=render)


# -- collect / write --------------------------------------------------------


@register_plugin("feeds")
def feeds_plugin() -> Plugin:
    def collect(manager: Manager) -> None:
        posts = sorted(published_posts(manager), key=lambda p: (p.date, p.slug), reverse=True)
        site = site_settings(manager)
        feeds = []
        for generator in default_generators(manager.config.feeds):
            feed = generator.build(posts, site)
            if feed is not None:
                feeds.append(feed)
        manager.set_feeds(feeds)

    return Plugin.create("feeds", collect=collect)


@register_plugin("static_assets")
def static_assets_plugin() -> Plugin:
    def write(manager: Manager) -> None:
        config = manager.config
        if not config.assets_dir.is_dir():
            return
        shutil.copytree(config.assets_dir, config.output_dir / "assets", dirs_exist_ok=True)

    return Plugin.create("static_assets", write=write)


@register_plugin("publish_html")
def publish_html_plugin() -> Plugin:
    def write(manager: Manager) -> None:
        output_dir = manager.config.output_dir

        def publish(post: Post) -> None:
            if post.draft:
                return
            target = output_dir / post.output_path
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(post.output, encoding="utf-8")

        output_dir.mkdir(parents=True, exist_ok=True)
        manager.process_posts(publish)

    return Plugin.create("publish_html", write=write)


@register_plugin("publish_feeds")
def publish_feeds_plugin() -> Plugin:
    def write(manager: Manager) -> None:
        output_dir = manager.config.output_dir
        for feed in manager.feeds:
            target = output_dir / feed.filename
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(feed.content, encoding="utf-8")

    return Plugin.create("publish_feeds", write=write)
