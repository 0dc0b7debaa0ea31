import json
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from urllib.parse import urlparse

import pytest

from integrasync.core.remote_client import HttpError, RemoteClient


class _Handler(BaseHTTPRequestHandler):
    # class-level counters so tests can assert retries/calls
    calls = {"ok": 0, "flaky": 0, "bad": 0, "down": 0, "slow": 0, "auth": 0, "html": 0}
    protocol_version = "HTTP/1.1"

    def _send(self, status: int, raw: bytes, ctype: str = "application/json") -> None:
        self.send_response(status)
        self.send_header("Content-Type", ctype)
        self.send_header("Content-Length", str(len(raw)))
        self.end_headers()
        self.wfile.write(raw)

    def _send_json(self, status: int, obj) -> None:
        self._send(status, json.dumps(obj).encode("utf-8"))

    def do_GET(self):  # noqa: N802
        path = urlparse(self.path).path
        if path == "/ok":
            _Handler.calls["ok"] += 1
            self._send_json(200, {"instances": []})
        elif path == "/flaky":
            _Handler.calls["flaky"] += 1
            # first 2 attempts 500, then 200
            if _Handler.calls["flaky"] < 3:
                self._send_json(500, {"error": "transient"})
            else:
                self._send_json(200, {"ok": "finally"})
        elif path == "/bad":
            _Handler.calls["bad"] += 1
            self._send_json(404, {"error": "not found"})
        elif path == "/down":
            _Handler.calls["down"] += 1
            self._send_json(503, {"error": "down"})
        elif path == "/slow":
            _Handler.calls["slow"] += 1
            time.sleep(0.5)  # longer than client timeout in test
            self._send_json(200, {"ok": True})
        elif path == "/auth":
            _Handler.calls["auth"] += 1
            self._send_json(200, {"authorization": self.headers.get("Authorization", "")})
        elif path == "/html":
            _Handler.calls["html"] += 1
            self._send(200, b"<html>nope</html>", "text/html")
        else:
            self._send_json(404, {"error": "not found"})

    def log_message(self, fmt, *args):  # silence test server logs
        return


@pytest.fixture()
def base_url():
    for k in _Handler.calls:
        _Handler.calls[k] = 0
    server = ThreadingHTTPServer(("127.0.0.1", 0), _Handler)
    th = threading.Thread(target=server.serve_forever, daemon=True)
    th.start()
    try:
        yield f"http://{server.server_address[0]}:{server.server_address[1]}"
    finally:
        server.shutdown()
        th.join(timeout=1.0)


def test_get_json_ok_absolute_and_relative(base_url):
    client = RemoteClient(base_url=base_url, timeout_sec=2, retries=0)
    assert client.get_json("/ok") == {"instances": []}
    assert RemoteClient(timeout_sec=2).get_json(f"{base_url}/ok") == {"instances": []}
    assert _Handler.calls["ok"] == 2


def test_bearer_token_sent(base_url):
    client = RemoteClient(base_url=base_url, token="TEST", timeout_sec=2, retries=0)
    assert client.get_json("/auth") == {"authorization": "Bearer TEST"}


def test_retries_on_5xx_then_succeeds(base_url):
    client = RemoteClient(base_url=base_url, timeout_sec=2, retries=3, backoff_base_sec=0.01)
    assert client.get_json("/flaky") == {"ok": "finally"}
    assert _Handler.calls["flaky"] == 3


def test_5xx_exhausts_retries(base_url):
    client = RemoteClient(base_url=base_url, timeout_sec=2, retries=2, backoff_base_sec=0.01)
    with pytest.raises(HttpError) as ei:
        client.get_json("/down")
    assert ei.value.status == 503
    assert _Handler.calls["down"] == 3


def test_no_retry_on_4xx(base_url):
    client = RemoteClient(base_url=base_url, timeout_sec=2, retries=3, backoff_base_sec=0.01)
    with pytest.raises(HttpError) as ei:
        client.get_json("/bad")
    assert ei.value.status == 404
    assert "not found" in ei.value.body
    assert _Handler.calls["bad"] == 1


def test_timeout_is_bounded(base_url):
    client = RemoteClient(base_url=base_url, timeout_sec=0.1, retries=0)
    start = time.time()
    with pytest.raises(HttpError) as ei:
        client.get_json("/slow")
    assert ei.value.status == 0
    assert time.time() - start < 0.5


def test_non_json_body_is_an_error(base_url):
    client = RemoteClient(base_url=base_url, timeout_sec=2, retries=0)
    with pytest.raises(HttpError) as ei:
        client.get_json("/html")
    assert ei.value.status == 200
    assert "invalid JSON" in ei.value.message


def test_connection_refused_is_http_error():
    # Grab a free port, then close it so nothing is listening
    srv = ThreadingHTTPServer(("127.0.0.1", 0), _Handler)
    port = srv.server_address[1]
    srv.server_close()
    client = RemoteClient(timeout_sec=1, retries=1, backoff_base_sec=0.01)
    with pytest.raises(HttpError) as ei:
        client.get_json(f"http://127.0.0.1:{port}/ok")
    assert ei.value.status == 0


def test_invalid_timeout_rejected():
    with pytest.raises(ValueError):
        RemoteClient(timeout_sec=0)
