import http.client
import io
import json
import threading
import time

import pytest

from stagehand.rebuild import RebuildCoordinator
from stagehand.server import DevServer, _DevRequestHandler, is_path_within, resolve_request_path
from stagehand.status import BuildStatus, StatusBroadcaster


def make_handler(directory, path, method="GET", body=b"", broadcaster=None):
    handler = _DevRequestHandler.__new__(_DevRequestHandler)
    handler.directory = str(directory)
    handler.path = path
    handler.command = method
    handler.request_version = "HTTP/1.1"
    handler.requestline = f"{method} {path} HTTP/1.1"
    handler.client_address = ("127.0.0.1", 0)
    handler.close_connection = True
    handler.headers = {"Content-Length": str(len(body))}
    handler.rfile = io.BytesIO(body)
    handler.wfile = io.BytesIO()
    handler.broadcaster = broadcaster if broadcaster is not None else StatusBroadcaster(BuildStatus.building())
    return handler


def response(handler):
    raw = handler.wfile.getvalue()
    head, _, body = raw.partition(b"\r\n\r\n")
    lines = head.decode("latin-1").split("\r\n")
    status = int(lines[0].split()[1])
    headers = dict(line.split(": ", 1) for line in lines[1:])
    return status, headers, body.decode("utf-8")


@pytest.fixture
def out(tmp_path):
    output = tmp_path / "output"
    (output / "docs").mkdir(parents=True)
    (output / "index.html").write_text("<html><body><p>Home</p></body></html>", encoding="utf-8")
    (output / "docs" / "index.html").write_text("<p>Docs</p>", encoding="utf-8")
    (output / "style.css").write_text("body{}", encoding="utf-8")
    (tmp_path / "secret.txt").write_text("secret", encoding="utf-8")
    return output


def test_is_path_within(tmp_path):
    root = tmp_path / "out"
    root.mkdir()
    assert is_path_within(root, root)
    assert is_path_within(root / "a" / "b.html", root)
    assert not is_path_within(tmp_path / "outside", root)
    assert not is_path_within(tmp_path / "out-sibling" / "x", root)
    assert not is_path_within(root / ".." / "secret", root)


def test_resolve_request_path(out):
    assert resolve_request_path(out, "/") == (out / "index.html").resolve()
    assert resolve_request_path(out, "/docs/?x=1") == (out / "docs" / "index.html").resolve()
    assert resolve_request_path(out, "/style.css") == (out / "style.css").resolve()
    assert resolve_request_path(out, "/../secret.txt") is None
    assert resolve_request_path(out, "/%2e%2e/secret.txt") is None
    assert resolve_request_path(out, "/docs/../../secret.txt") is None


def test_html_gets_status_script(out):
    handler = make_handler(out, "/")
    handler.do_GET()
    status, headers, body = response(handler)
    assert status == 200
    assert headers["Cache-Control"].startswith("no-cache")
    assert "EventSource('/__livereload')" in body
    assert body.index("EventSource") < body.index("</body>")
    assert '{"status":"building"}' in body
    assert headers["Content-Length"] == str(len(body.encode("utf-8")))


def test_fragment_without_body_tag_gets_script_appended(out):
    handler = make_handler(out, "/docs/")
    handler.do_GET()
    status, _, body = response(handler)
    assert status == 200
    assert body.startswith("<p>Docs</p>")
    assert "__livereload" in body


def test_static_files_are_served_unchanged(out):
    handler = make_handler(out, "/style.css")
    handler.do_GET()
    status, headers, body = response(handler)
    assert status == 200
    assert headers["Content-type"] == "text/css"
    assert body == "body{}"


def test_directory_without_slash_redirects(out):
    handler = make_handler(out, "/docs")
    handler.do_GET()
    status, headers, _ = response(handler)
    assert status == 301
    assert headers["Location"] == "/docs/"


@pytest.mark.parametrize("path", ["/missing/", "/../secret.txt", "/nothing.png"])
def test_missing_and_escaping_paths_get_fallback_404(out, path):
    handler = make_handler(out, path)
    handler.do_GET()
    status, _, body = response(handler)
    assert status == 404
    assert "Page not found" in body
    assert "secret" not in body
    assert "__livereload" in body


def test_prebuilt_404_page_is_used(out):
    (out / "404.html").write_text("<html><body>Custom missing</body></html>", encoding="utf-8")
    broadcaster = StatusBroadcaster(BuildStatus.error("layout broke"))
    handler = make_handler(out, "/nope/", broadcaster=broadcaster)
    handler.do_GET()
    status, _, body = response(handler)
    assert status == 404
    assert "Custom missing" in body
    assert '"message":"layout broke"' in body


def test_search_empty_query_redirects_home(out):
    handler = make_handler(out, "/_search", "POST", b"q=+")
    handler.do_POST()
    status, headers, _ = response(handler)
    assert status == 303
    assert headers["Location"] == "/"


def test_search_without_index_redirects_with_query(out):
    handler = make_handler(out, "/_search", "POST", b"q=go+testing")
    handler.do_POST()
    status, headers, _ = response(handler)
    assert status == 303
    assert headers["Location"] == "/?q=go+testing"


def test_search_negative_length_reads_nothing(out):
    handler = make_handler(out, "/_search", "POST", b"q=go")
    handler.headers = {"Content-Length": "-5"}
    handler.do_POST()
    status, headers, _ = response(handler)
    assert status == 303
    assert headers["Location"] == "/"
    assert handler.rfile.tell() == 0


def test_event_stream_closes_connection_when_broadcaster_stops(out):
    broadcaster = StatusBroadcaster()
    broadcaster.shutdown()
    handler = make_handler(out, "/__livereload", broadcaster=broadcaster)
    handler.close_connection = False
    handler.do_GET()
    status, headers, body = response(handler)
    assert status == 200
    assert headers["Connection"] == "close"
    assert body == "data: connected\n\n"
    assert handler.close_connection is True


def test_search_renders_results(out):
    (out / "_404-index.json").write_text(
        json.dumps(
            [
                {"slug": "go-testing-guide", "title": "Go Testing Guide", "description": "", "url": "/go/"},
                {"slug": "misc", "title": "Misc", "description": "go notes", "url": "/misc/"},
            ]
        ),
        encoding="utf-8",
    )
    handler = make_handler(out, "/_search", "POST", b"q=go+testing")
    handler.do_POST()
    status, _, body = response(handler)
    assert status == 200
    assert body.index("/go/") < body.index("/misc/")
    assert "__livereload" in body


def test_post_elsewhere_is_rejected(out):
    handler = make_handler(out, "/index.html", "POST")
    handler.do_POST()
    status, _, _ = response(handler)
    assert status == 405


def test_rebuild_swaps_output_and_reports_success(site_project):
    server = DevServer(site_project, watch=False)
    subscriber = server.broadcaster.subscribe()
    server.rebuild(threading.Event())

    assert (server.output_dir / "index.html").exists()
    assert not server._staging_dir.exists()
    assert not server._previous_dir.exists()
    messages = [subscriber.next_message(timeout=1) for _ in range(4)]
    assert '"status":"building"' in messages[0]
    assert '"status":"building"' in messages[1]
    assert '"status":"success"' in messages[2]
    assert messages[3] == "reload"


def test_failed_rebuild_keeps_previous_output(site_project):
    server = DevServer(site_project, watch=False)
    server.rebuild(threading.Event())
    before = (server.output_dir / "index.html").read_text(encoding="utf-8")

    layout = site_project / "site" / "_layouts" / "default.html.jinja"
    layout.write_text("{% if %}", encoding="utf-8")
    server.rebuild(threading.Event())

    assert server.broadcaster.status.status == "error"
    assert server.broadcaster.status.message
    assert (server.output_dir / "index.html").read_text(encoding="utf-8") == before
    assert not server._staging_dir.exists()


def test_rebuild_checkpoint_skips_when_stopping(site_project):
    server = DevServer(site_project, watch=False)
    stop = threading.Event()
    stop.set()
    server.rebuild(stop)
    assert not server.output_dir.exists()
    assert server.broadcaster.status == BuildStatus.building()


def test_license_warning_is_broadcast(tmp_path):
    (tmp_path / "site").mkdir()
    (tmp_path / "site" / "index.md").write_text("# Hi\n", encoding="utf-8")
    server = DevServer(tmp_path, watch=False)
    server.rebuild(threading.Event())
    status = server.broadcaster.status
    assert status.status == "success"
    assert "license_warning" in status.payload()


def read_event(resp):
    while True:
        line = resp.readline()
        if not line:
            return None
        line = line.decode("utf-8").rstrip("\n")
        if line.startswith("data: "):
            return line[len("data: "):]


def test_event_stream_reports_build_then_success(site_project):
    server = DevServer(site_project, host="127.0.0.1", port=0, watch=False)
    go = threading.Event()

    def gated(stop):
        go.wait(5)
        server.rebuild(stop)

    server.coordinator = RebuildCoordinator(gated, debounce=0.01)
    server.start()
    try:
        conn = http.client.HTTPConnection("127.0.0.1", server.port, timeout=5)
        conn.request("GET", "/__livereload")
        resp = conn.getresponse()
        assert resp.status == 200
        assert resp.getheader("Content-Type") == "text/event-stream"
        assert read_event(resp) == "connected"
        assert '"status":"building"' in read_event(resp)
        go.set()
        seen = []
        while not seen or seen[-1] != "reload":
            message = read_event(resp)
            assert message is not None
            seen.append(message)
        statuses = [m for m in seen if m.startswith("status:")]
        assert '"status":"success"' in statuses[-1]

        page = http.client.HTTPConnection("127.0.0.1", server.port, timeout=5)
        page.request("GET", "/posts/go-testing-guide/")
        body = page.getresponse().read().decode("utf-8")
        assert "Go Testing Guide" in body
        assert "__livereload" in body
        page.close()
    finally:
        go.set()
        assert server.shutdown(grace=2.0, task_timeout=2.0)


def test_shutdown_with_open_stream_and_inflight_rebuild(site_project):
    server = DevServer(site_project, host="127.0.0.1", port=0, watch=False)
    entered = threading.Event()
    release = threading.Event()

    def stuck(stop):
        entered.set()
        release.wait(5)

    server.coordinator = RebuildCoordinator(stuck, debounce=0.01)
    server.start()
    try:
        assert entered.wait(2)
        conn = http.client.HTTPConnection("127.0.0.1", server.port, timeout=5)
        conn.request("GET", "/__livereload")
        resp = conn.getresponse()
        assert read_event(resp) == "connected"

        started = time.monotonic()
        clean = server.shutdown(grace=1.0, task_timeout=0.2)
        elapsed = time.monotonic() - started
        assert elapsed < 3.0
        assert clean is False
        assert resp.read() is not None
        assert len(server.broadcaster) == 0
    finally:
        release.set()


def test_shutdown_is_idempotent(site_project):
    server = DevServer(site_project, host="127.0.0.1", port=0, watch=False)
    server.coordinator = RebuildCoordinator(lambda stop: None)
    server.start()
    assert server.shutdown()
    assert server.shutdown()
