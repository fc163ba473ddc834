"""Site building entry points for Stagehand.

Key functions:
- create_manager: Load config and return a Manager with the default plugins.
- run_build: Run every stage and summarise the result.
- dry_run: Run up to the collect stage and report what would be written.
- license_warning: Message shown when no license is configured.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from pathlib import Path

from .cache import BuildCache
from .config import SiteConfig, load_config
from .lifecycle import STAGE_ORDER, BuildWarning, Manager, Stage
from .plugins import default_plugins, published_posts

LICENSE_WARNING = (
    "No license is configured. Add `license:` to stagehand.yaml "
    "(for example CC-BY-4.0 or ALL-RIGHTS-RESERVED) to state how your content may be reused."
)


@dataclass
class BuildResult:
    """Result of a completed build.

    Attributes:
        posts: Number of published posts.
        feeds: Number of feed files written.
        warnings: Non-fatal warnings collected during the build.
        duration: Wall time in seconds.
        output_dir: Directory the site was written to.
    """

    posts: int
    feeds: int
    warnings: tuple[BuildWarning, ...]
    duration: float
    output_dir: Path


@dataclass
class DryRunReport:
    """What a full build would write."""

    files: int
    posts: int
    feeds: list[str]
    warnings: tuple[BuildWarning, ...]


def create_manager(
    project_root: Path,
    config_path: Path | None = None,
    fast: bool = False,
    output_dir: Path | None = None,
) -> Manager:
    """Load configuration and return a Manager with the default plugins.

    Args:
        project_root: Root directory of the project.
        config_path: Optional explicit config file.
        fast: Enable fast mode regardless of the config file.
        output_dir: Write to this directory instead of the configured one.

    Raises:
        ConfigError: The configuration is invalid.
    """
    config = load_config(project_root, config_path)
    overrides: dict = {}
    if fast:
        overrides["fast_mode"] = True
    if output_dir is not None:
        overrides["output_dir"] = output_dir
    if overrides:
        config = config.with_overrides(**overrides)
    manager = Manager(config, BuildCache(config.primary_external_dir))
    manager.set_concurrency(config.concurrency)
    manager.register_plugins(default_plugins())
    return manager


def run_build(manager: Manager, verbose: bool = False) -> BuildResult:
    """Run the full pipeline.

    Raises:
        StageError: A stage failed.
    """
    started = time.perf_counter()
    for stage in STAGE_ORDER:
        stage_started = time.perf_counter()
        manager.run_to(stage)
        if verbose:
            print(f"  {stage.value:<10} {time.perf_counter() - stage_started:.3f}s")
    return BuildResult(
        posts=len(published_posts(manager)),
        feeds=len(manager.feeds),
        warnings=manager.warnings,
        duration=time.perf_counter() - started,
        output_dir=manager.config.output_dir,
    )


def dry_run(manager: Manager) -> DryRunReport:
    """Run up to Collect. Nothing is written to the output directory."""
    manager.run_to(Stage.COLLECT)
    return DryRunReport(
        files=len(manager.files),
        posts=len(published_posts(manager)),
        feeds=[feed.filename for feed in manager.feeds],
        warnings=manager.warnings,
    )


def license_warning(config: SiteConfig) -> str:
    """Return the license warning, or an empty string when a license is set."""
    return "" if config.license.strip() else LICENSE_WARNING
