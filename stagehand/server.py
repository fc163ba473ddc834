"""Development server for Stagehand.

Serves the built site, rebuilds on change and streams build status to open
tabs:
- Injects a status/reload script into every HTML response.
- Rejects directory listings, traversal and missing paths with a 404
  (serving 404.html when present).
- ``GET /__livereload`` is a server-sent event stream of status and reload
  messages.
- ``POST /_search`` searches the prebuilt index so the 404 page works
  without JavaScript.

Rebuilds write into a staging directory that replaces the served output only
when the build succeeds, so a failed build keeps the last good site online.

Key classes:
- DevServer: Owns the HTTP server, broadcaster, coordinator and watcher.
- _DevRequestHandler: HTTP request handler.
"""

from __future__ import annotations

import functools
import io
import os
import shutil
import signal
import threading
import time
from http.server import SimpleHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from urllib.parse import parse_qs, quote_plus, unquote, urlsplit

from watchdog.observers import Observer

from .build import create_manager, license_warning, run_build
from .config import load_config
from .feeds import SEARCH_INDEX_FILENAME
from .html_utils import inject_before_close
from .rebuild import DEBOUNCE_SECONDS, RebuildCoordinator, _ChangeHandler
from .search import SearchIndexError, load_index, render_results_page, search_index
from .status import CONNECTED_MESSAGE, BuildStatus, StatusBroadcaster, SubscriptionClosed

LIVERELOAD_PATH = "/__livereload"
SEARCH_PATH = "/_search"
MAX_FORM_BYTES = 64 * 1024

FALLBACK_404_PAGE = """<!doctype html>
<html><head><meta charset="utf-8"><title>Page not found</title></head>
<body>
<h1>404 - Page not found</h1>
<form method="post" action="/_search"><input type="search" name="q" placeholder="Search"><button type="submit">Search</button></form>
<p><a href="/">Home</a></p>
</body></html>
"""

LIVE_SCRIPT = """
<script>
(() => {
  const initial = __STATUS__;
  let banner = null;
  let lost = false;
  const show = (status) => {
    if (status.license_warning) console.warn('[stagehand] ' + status.license_warning);
    if (status.status === 'success') {
      if (banner) banner.remove();
      banner = null;
      return;
    }
    if (!banner) {
      banner = document.createElement('div');
      banner.id = 'stagehand-status';
      banner.style.cssText = 'position:fixed;bottom:0;left:0;right:0;padding:8px 12px;font:14px monospace;color:#fff;z-index:99999;white-space:pre-wrap';
      document.body.appendChild(banner);
    }
    banner.style.background = status.status === 'error' ? '#b91c1c' : '#1d4ed8';
    banner.textContent = status.status === 'error' ? 'Build failed: ' + (status.message || '') : 'Building...';
  };
  const source = new EventSource('__LIVERELOAD__');
  source.onmessage = (event) => {
    const data = event.data || '';
    if (data === 'reload') { location.reload(); return; }
    if (data === 'connected') { if (lost) location.reload(); return; }
    if (data.startsWith('status:')) show(JSON.parse(data.slice(7)));
  };
  source.onerror = () => { lost = true; };
  if (initial.status !== 'success') document.addEventListener('DOMContentLoaded', () => show(initial));
})();
</script>
"""


def is_path_within(path: Path, root: Path) -> bool:
    """True if ``path`` is ``root`` or lies below it after resolving ``..`` and symlinks."""
    real_root = os.path.realpath(root)
    real_path = os.path.realpath(path)
    try:
        return os.path.commonpath([real_root, real_path]) == real_root
    except ValueError:
        return False


def resolve_request_path(root: Path, url_path: str) -> Path | None:
    """Map a request path to a file under ``root``.

    Directories resolve to their ``index.html`` when one exists.

    Returns:
        The resolved path, or None when the request escapes ``root``.
    """
    path = unquote(urlsplit(url_path).path)
    if "\x00" in path:
        return None
    real_root = os.path.realpath(root)
    candidate = Path(os.path.realpath(os.path.join(real_root, path.lstrip("/"))))
    if not is_path_within(candidate, Path(real_root)):
        return None
    if candidate.is_dir():
        index = candidate / "index.html"
        if index.is_file():
            return index
    return candidate


def live_script(status: BuildStatus) -> str:
    payload = status.payload().replace("</", "<\\/")
    return LIVE_SCRIPT.replace("__STATUS__", payload).replace("__LIVERELOAD__", LIVERELOAD_PATH)


class _DevRequestHandler(SimpleHTTPRequestHandler):
    """HTTP handler for the dev server.

    Attributes:
        broadcaster: Source of build status for injection and the event stream.
        keepalive: Seconds between comment lines on an idle event stream.
        verbose: Log every request.
    """

    broadcaster: StatusBroadcaster
    keepalive = 15.0
    verbose = False

    def end_headers(self):
        self.send_header("Cache-Control", "no-cache, no-store, must-revalidate")
        super().end_headers()

    def log_message(self, format, *args):
        if self.verbose:
            super().log_message(format, *args)

    def list_directory(self, path):  # pragma: no cover - send_head never lists
        return self._serve_404()

    def do_GET(self):
        if urlsplit(self.path).path == LIVERELOAD_PATH:
            self._serve_events()
            return
        super().do_GET()

    def do_POST(self):
        if urlsplit(self.path).path == SEARCH_PATH:
            self._serve_search()
            return
        self.send_error(405, "Method not allowed")

    def send_head(self):
        request_path = urlsplit(self.path).path
        path = resolve_request_path(Path(self.directory), self.path)
        if path is None:
            return self._serve_404()
        if path.name == "index.html" and not request_path.endswith(("/", "index.html")):
            self.send_response(301)
            self.send_header("Location", request_path + "/")
            self.send_header("Content-Length", "0")
            self.end_headers()
            return None
        if not path.is_file():
            return self._serve_404()
        if path.suffix.lower() in (".html", ".htm"):
            content = path.read_text(encoding="utf-8", errors="replace")
            return self._send_html(200, content)
        return self._send_file(path)

    def _send_html(self, code: int, content: str):
        encoded = inject_before_close(content, live_script(self.broadcaster.status)).encode("utf-8")
        self.send_response(code)
        self.send_header("Content-type", "text/html; charset=utf-8")
        self.send_header("Content-Length", str(len(encoded)))
        self.end_headers()
        return io.BytesIO(encoded)

    def _send_file(self, path: Path):
        try:
            f = open(path, "rb")
        except OSError:
            return self._serve_404()
        try:
            fs = os.fstat(f.fileno())
            self.send_response(200)
            self.send_header("Content-type", self.guess_type(str(path)))
            self.send_header("Content-Length", str(fs.st_size))
            self.send_header("Last-Modified", self.date_time_string(fs.st_mtime))
            self.end_headers()
            return f
        except Exception:
            f.close()
            raise

    def _serve_404(self):
        """Serve 404.html (when present) or a built-in page, with a 404 status."""
        error_page = Path(self.directory) / "404.html"
        try:
            content = error_page.read_text(encoding="utf-8")
        except OSError:
            content = FALLBACK_404_PAGE
        return self._send_html(404, content)

    def _redirect(self, location: str) -> None:
        self.send_response(303)
        self.send_header("Location", location)
        self.send_header("Content-Length", "0")
        self.end_headers()

    def _serve_search(self) -> None:
        try:
            length = max(0, min(int(self.headers.get("Content-Length") or 0), MAX_FORM_BYTES))
        except ValueError:
            length = 0
        body = self.rfile.read(length).decode("utf-8", errors="replace") if length else ""
        query = parse_qs(body).get("q", [""])[0].strip()
        if not query:
            self._redirect("/")
            return
        try:
            records = load_index(Path(self.directory) / SEARCH_INDEX_FILENAME)
        except SearchIndexError:
            self._redirect(f"/?q={quote_plus(query)}")
            return
        page = render_results_page(query, search_index(records, query))
        f = self._send_html(200, page)
        try:
            self.copyfile(f, self.wfile)
        finally:
            f.close()

    def _serve_events(self) -> None:
        """Stream status and reload messages until the client or server goes away."""
        subscriber = self.broadcaster.subscribe()
        try:
            self.send_response(200)
            self.send_header("Content-Type", "text/event-stream")
            self.send_header("Connection", "close")
            self.end_headers()
            self._write_event(f"data: {CONNECTED_MESSAGE}\n\n")
            while True:
                try:
                    message = subscriber.next_message(timeout=self.keepalive)
                except SubscriptionClosed:
                    break
                self._write_event(": keepalive\n\n" if message is None else f"data: {message}\n\n")
        except (BrokenPipeError, ConnectionResetError, OSError):
            pass
        finally:
            self.broadcaster.unsubscribe(subscriber)

    def _write_event(self, text: str) -> None:
        self.wfile.write(text.encode("utf-8"))
        self.wfile.flush()


class DevServer:
    """Development server with rebuild-on-change and status streaming.

    Attributes:
        project_root: Root directory of the project.
        config: Site configuration at startup.
        output_dir: Directory being served.
        broadcaster: Current build status and connected clients.
        coordinator: Debounced, single-flight rebuild loop.
    """

    def __init__(
        self,
        project_root: Path,
        host: str | None = None,
        port: int | None = None,
        watch: bool = True,
        fast: bool = False,
        config_path: Path | None = None,
        verbose: bool = False,
        debounce: float = DEBOUNCE_SECONDS,
    ):
        """Initialize the development server.

        Args:
            project_root: Root directory of the project.
            host: Bind address; defaults to the configured host.
            port: HTTP port; defaults to the configured port. 0 picks a free port.
            watch: Rebuild when sources change.
            fast: Build in fast mode.
            config_path: Optional explicit config file.
            verbose: Print stage timings, watcher events and requests.
            debounce: Quiet period before a rebuild starts.

        Raises:
            ConfigError: The configuration is invalid.
        """
        self.project_root = Path(project_root).resolve()
        self.config_path = config_path
        self.config = load_config(self.project_root, config_path)
        self.host = host or self.config.host
        self.port = self.config.port if port is None else port
        self.watch = watch
        self.fast = fast
        self.verbose = verbose
        self.output_dir = self.config.output_dir
        self._staging_dir = self.output_dir.with_name(self.output_dir.name + ".staging")
        self._previous_dir = self.output_dir.with_name(self.output_dir.name + ".previous")
        self.broadcaster = StatusBroadcaster(BuildStatus.building(license_warning(self.config)))
        self.coordinator = RebuildCoordinator(self.rebuild, debounce=debounce, verbose=verbose)
        self._httpd: ThreadingHTTPServer | None = None
        self._http_thread: threading.Thread | None = None
        self._observer: Observer | None = None
        self._stopped = threading.Event()
        self._shutdown_lock = threading.Lock()
        self._shut_down = False

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}"

    @property
    def ignored_dirs(self) -> list[Path]:
        return [
            self.output_dir,
            self._staging_dir,
            self._previous_dir,
            self.config.cache_dir,
            *self.config.external_cache_dirs,
        ]

    def start(self) -> None:
        """Bind HTTP, start the rebuild loop and watcher, and queue the first build."""
        self.output_dir.mkdir(parents=True, exist_ok=True)
        handler_cls = type(
            "_BoundDevRequestHandler",
            (_DevRequestHandler,),
            {"broadcaster": self.broadcaster, "verbose": self.verbose},
        )
        handler = functools.partial(handler_cls, directory=str(self.output_dir))
        self._httpd = ThreadingHTTPServer((self.host, self.port), handler)
        self._httpd.daemon_threads = True
        self.port = self._httpd.server_address[1]
        self._http_thread = threading.Thread(
            target=self._httpd.serve_forever, name="stagehand-http", daemon=True
        )
        self._http_thread.start()
        print(f"Serving {self.output_dir} at {self.url}")
        self.coordinator.start()
        if self.watch:
            self._start_watcher()
        self.coordinator.request_rebuild(immediate=True)

    def serve_forever(self) -> None:  # pragma: no cover - integration path
        """Run until SIGINT or SIGTERM, then shut down."""
        self.start()
        previous = {}
        if threading.current_thread() is threading.main_thread():
            for sig in (signal.SIGINT, signal.SIGTERM):
                previous[sig] = signal.signal(sig, lambda *_: self._stopped.set())
        try:
            while not self._stopped.wait(0.5):
                pass
        except KeyboardInterrupt:
            pass
        finally:
            for sig, handler in previous.items():
                signal.signal(sig, handler)
            self.shutdown()

    def shutdown(self, grace: float = 2.0, task_timeout: float = 1.0) -> bool:
        """Stop everything in order, waiting a bounded time at each step.

        1. Close every event stream so clients disconnect immediately.
        2. Stop the HTTP server, waiting at most ``grace`` seconds.
        3. Stop the rebuild loop and watcher, waiting at most ``task_timeout``
           seconds each. An in-flight rebuild is left to finish on its own.

        Returns:
            True if every component stopped within its deadline.
        """
        with self._shutdown_lock:
            if self._shut_down:
                return True
            self._shut_down = True
        self._stopped.set()
        print("Shutting down...")
        clean = True
        self.broadcaster.shutdown()
        if self._httpd is not None:
            closer = threading.Thread(target=self._httpd.shutdown, daemon=True)
            closer.start()
            closer.join(grace)
            clean = clean and not closer.is_alive()
            self._httpd.server_close()
        clean = self.coordinator.stop(timeout=task_timeout) and clean
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(task_timeout)
            clean = clean and not self._observer.is_alive()
        return clean

    def rebuild(self, stop: threading.Event) -> None:
        """Build into the staging directory and swap it into place.

        Runs on the coordinator thread. ``stop`` is checked before and after
        the Manager is created and after the build; once set, the rebuild is
        abandoned and the served output is left untouched.
        """
        if stop.is_set():
            return
        warning = license_warning(self.config)
        self.broadcaster.publish(BuildStatus.building(warning))
        print("Rebuilding...")
        started = time.perf_counter()
        staging = self._staging_dir
        try:
            self._prepare_staging_dir()
            manager = create_manager(
                self.project_root, self.config_path, fast=self.fast, output_dir=staging
            )
            warning = license_warning(manager.config)
            if stop.is_set():
                return
            result = run_build(manager, verbose=self.verbose)
            if stop.is_set():
                return
            self._activate_staging(staging)
        except Exception as exc:
            print(f"Rebuild failed: {exc}")
            self.broadcaster.publish(BuildStatus.error(str(exc), warning))
            return
        finally:
            if staging.exists():
                shutil.rmtree(staging, ignore_errors=True)
        for item in result.warnings:
            print(item)
        elapsed = time.perf_counter() - started
        print(f"Rebuilt in {elapsed:.2f}s ({result.posts} posts, {result.feeds} feeds)")
        self.broadcaster.publish(BuildStatus.success(warning=warning))
        self.broadcaster.notify_reload()

    def _start_watcher(self) -> None:
        observer = Observer()
        config = self.config
        roots: list[Path] = []
        for folder in sorted({config.content_dir, config.templates_dir, config.assets_dir, config.data_dir}):
            if not folder.is_dir() or any(r == folder or r in folder.parents for r in roots):
                continue
            roots.append(folder)
        handler = _ChangeHandler(self.coordinator, self.ignored_dirs, observer, roots)
        for root in roots:
            observer.schedule(handler, str(root), recursive=True)
        # Root level picks up stagehand.yaml and new top-level directories.
        observer.schedule(handler, str(self.project_root), recursive=False)
        observer.start()
        self._observer = observer

    def _prepare_staging_dir(self) -> Path:
        staging = self._staging_dir
        if staging.exists():
            shutil.rmtree(staging)
        staging.mkdir(parents=True)
        return staging

    def _activate_staging(self, staging: Path) -> None:
        target = self.output_dir
        previous = self._previous_dir
        if previous.exists():
            shutil.rmtree(previous)
        if target.exists():
            os.replace(target, previous)
        os.replace(staging, target)
        shutil.rmtree(previous, ignore_errors=True)
