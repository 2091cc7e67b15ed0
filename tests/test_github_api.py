from __future__ import annotations

import json
import socket
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Callable
from urllib.parse import parse_qs, urlsplit

import pytest

from git_timeline.errors import ApiError, MaxRetriesExceeded, NetworkError
from git_timeline.github_api import (
    GitHubClient,
    RetryAction,
    RetryPolicy,
    classify_response,
    parse_next_link,
    with_page_size,
)


class FakeTime:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now
        self.sleeps: list[float] = []

    def clock(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


Responder = Callable[[BaseHTTPRequestHandler, int], tuple[int, dict[str, str], object]]


def _serve(responder: Responder) -> tuple[HTTPServer, list[dict[str, object]]]:
    received: list[dict[str, object]] = []

    class Handler(BaseHTTPRequestHandler):
        def do_GET(self) -> None:  # noqa: N802
            received.append(
                {
                    "path": self.path,
                    "authorization": self.headers.get("Authorization"),
                    "api_version": self.headers.get("X-GitHub-Api-Version"),
                }
            )
            status, headers, payload = responder(self, len(received))
            out = json.dumps(payload).encode("utf-8")
            self.send_response(status)
            self.send_header("Content-Type", "application/json")
            self.send_header("Content-Length", str(len(out)))
            for k, v in headers.items():
                self.send_header(k, v)
            self.end_headers()
            self.wfile.write(out)

        def log_message(self, fmt: str, *args: object) -> None:
            return

    server = HTTPServer(("127.0.0.1", 0), Handler)
    t = threading.Thread(target=server.serve_forever, daemon=True)
    t.start()
    return server, received


def _client(server: HTTPServer, fake: FakeTime) -> GitHubClient:
    return GitHubClient(
        "tok123",
        api_base=f"http://127.0.0.1:{server.server_port}",
        sleep=fake.sleep,
        clock=fake.clock,
    )


def test_classify_response() -> None:
    assert classify_response(200, {}) is RetryAction.OK
    assert classify_response(403, {"x-ratelimit-remaining": "0", "x-ratelimit-reset": "1700000000"}) is RetryAction.WAIT_FOR_RESET
    assert classify_response(429, {"x-ratelimit-remaining": "0", "x-ratelimit-reset": "1700000000"}) is RetryAction.WAIT_FOR_RESET
    assert classify_response(403, {"x-ratelimit-remaining": "12"}) is RetryAction.BACKOFF
    assert classify_response(429, {}) is RetryAction.BACKOFF
    assert classify_response(404, {"x-ratelimit-remaining": "0"}) is RetryAction.FAIL
    assert classify_response(500, {}) is RetryAction.FAIL


def test_retry_policy_backoff() -> None:
    p = RetryPolicy()
    assert [p.backoff_s(a) for a in (1, 2, 3)] == [2.0, 4.0, 8.0]


def test_parse_next_link() -> None:
    header = (
        '<https://api.github.com/user/repos?page=1>; rel="prev", '
        '<https://api.github.com/user/repos?page=3>; rel="next", '
        '<https://api.github.com/user/repos?page=9>; rel="last"'
    )
    assert parse_next_link(header) == "https://api.github.com/user/repos?page=3"
    assert parse_next_link('<https://api.github.com/user/repos?page=9>; rel="last"') == ""
    assert parse_next_link("") == ""


def test_with_page_size_caps_at_100() -> None:
    assert with_page_size("https://x/y") == "https://x/y?per_page=100"
    assert with_page_size("https://x/y?per_page=500&a=1") == "https://x/y?a=1&per_page=100"
    assert with_page_size("https://x/y?per_page=30") == "https://x/y?per_page=30"


def test_fetch_all_pages_follows_next_links_in_order() -> None:
    def responder(h: BaseHTTPRequestHandler, n: int) -> tuple[int, dict[str, str], object]:
        q = parse_qs(urlsplit(h.path).query)
        page = int(q.get("page", ["1"])[0])
        headers: dict[str, str] = {}
        if page < 3:
            port = h.server.server_port
            headers["Link"] = f'<http://127.0.0.1:{port}/items?page={page + 1}&per_page=100>; rel="next"'
        return 200, headers, [{"id": page * 10 + 1}, {"id": page * 10 + 2}]

    server, received = _serve(responder)
    try:
        fake = FakeTime()
        items = _client(server, fake).fetch_all_pages("/items?per_page=250")
    finally:
        server.shutdown()

    assert [i["id"] for i in items] == [11, 12, 21, 22, 31, 32]
    assert len(received) == 3
    assert parse_qs(urlsplit(str(received[0]["path"])).query)["per_page"] == ["100"]
    assert all(r["authorization"] == "Bearer tok123" for r in received)
    assert all(r["api_version"] == "2022-11-28" for r in received)
    assert fake.sleeps == []


def test_exhausted_quota_waits_for_reset_then_retries() -> None:
    fake = FakeTime(now=1_000.0)

    def responder(h: BaseHTTPRequestHandler, n: int) -> tuple[int, dict[str, str], object]:
        if n == 1:
            return 403, {"X-RateLimit-Remaining": "0", "X-RateLimit-Reset": "1060"}, {"message": "API rate limit exceeded"}
        return 200, {}, {"login": "octo"}

    server, received = _serve(responder)
    try:
        data = _client(server, fake).get_json("/user")
    finally:
        server.shutdown()

    assert data == {"login": "octo"}
    assert len(received) == 2
    # reset (1060) + 1s margin - now (1000)
    assert fake.sleeps == [61.0]


def test_repeated_quota_exhaustion_does_not_consume_backoff_attempts() -> None:
    fake = FakeTime(now=1_000.0)

    def responder(h: BaseHTTPRequestHandler, n: int) -> tuple[int, dict[str, str], object]:
        if n <= 5:
            return 429, {"X-RateLimit-Remaining": "0", "X-RateLimit-Reset": str(int(fake.now) + 9)}, {}
        return 200, {}, []

    server, received = _serve(responder)
    try:
        data = _client(server, fake).get_json("/user/repos")
    finally:
        server.shutdown()

    assert data == []
    assert len(received) == 6
    assert fake.sleeps == [10.0] * 5


def test_secondary_rate_limit_backs_off_then_gives_up() -> None:
    fake = FakeTime()

    def responder(h: BaseHTTPRequestHandler, n: int) -> tuple[int, dict[str, str], object]:
        return 403, {"X-RateLimit-Remaining": "4000"}, {"message": "You have exceeded a secondary rate limit"}

    server, received = _serve(responder)
    try:
        with pytest.raises(MaxRetriesExceeded):
            _client(server, fake).get_json("/user")
    finally:
        server.shutdown()

    assert fake.sleeps == [2.0, 4.0, 8.0]
    assert len(received) == 4


def test_secondary_rate_limit_recovers() -> None:
    fake = FakeTime()

    def responder(h: BaseHTTPRequestHandler, n: int) -> tuple[int, dict[str, str], object]:
        if n == 1:
            return 429, {}, {}
        return 200, {}, {"ok": True}

    server, _received = _serve(responder)
    try:
        assert _client(server, fake).get_json("/user") == {"ok": True}
    finally:
        server.shutdown()
    assert fake.sleeps == [2.0]


def test_other_errors_fail_immediately_with_status_and_body() -> None:
    fake = FakeTime()

    def responder(h: BaseHTTPRequestHandler, n: int) -> tuple[int, dict[str, str], object]:
        return 409, {}, {"message": "Git Repository is empty."}

    server, received = _serve(responder)
    try:
        with pytest.raises(ApiError) as excinfo:
            _client(server, fake).fetch_all_pages("/repos/o/r/commits")
    finally:
        server.shutdown()

    assert excinfo.value.status == 409
    assert "Git Repository is empty." in excinfo.value.body
    assert len(received) == 1
    assert fake.sleeps == []


def test_connection_failure_raises_network_error() -> None:
    with socket.socket() as s:
        s.bind(("127.0.0.1", 0))
        port = s.getsockname()[1]
    fake = FakeTime()
    client = GitHubClient("tok", api_base=f"http://127.0.0.1:{port}", timeout_s=2, sleep=fake.sleep, clock=fake.clock)
    with pytest.raises(NetworkError):
        client.get_json("/user")


def test_reset_wait_in_one_thread_pauses_other_threads() -> None:
    now = [1_000.0]
    lock = threading.Lock()
    events: list[tuple[str, str, float]] = []
    a_waiting = threading.Event()
    release_a = threading.Event()

    def clock() -> float:
        with lock:
            return now[0]

    def sleep(seconds: float) -> None:
        name = threading.current_thread().name
        with lock:
            events.append(("sleep", name, seconds))
        if name == "worker-a":
            a_waiting.set()
            release_a.wait(5)
        with lock:
            now[0] += seconds

    def responder(h: BaseHTTPRequestHandler, n: int) -> tuple[int, dict[str, str], object]:
        path = urlsplit(h.path).path
        with lock:
            events.append(("request", path, now[0]))
        if path == "/a" and n == 1:
            return 403, {"X-RateLimit-Remaining": "0", "X-RateLimit-Reset": "1060"}, {"message": "API rate limit exceeded"}
        return 200, {}, {"path": path}

    server, _received = _serve(responder)
    client = GitHubClient("tok123", api_base=f"http://127.0.0.1:{server.server_port}", sleep=sleep, clock=clock)
    results: dict[str, object] = {}
    a = threading.Thread(target=lambda: results.update(a=client.get_json("/a")), name="worker-a")
    b = threading.Thread(target=lambda: results.update(b=client.get_json("/b")), name="worker-b")
    try:
        a.start()
        assert a_waiting.wait(5)
        b.start()
        b.join(5)
        release_a.set()
        a.join(5)
    finally:
        release_a.set()
        server.shutdown()

    assert results == {"a": {"path": "/a"}, "b": {"path": "/b"}}
    assert ("sleep", "worker-a", 61.0) in events
    assert ("sleep", "worker-b", 61.0) in events
    b_sleep = events.index(("sleep", "worker-b", 61.0))
    b_request = next(i for i, e in enumerate(events) if e[:2] == ("request", "/b"))
    assert b_sleep < b_request
    assert events[b_request][2] >= 1_061.0


def test_truncated_body_raises_network_error() -> None:
    class Handler(BaseHTTPRequestHandler):
        def do_GET(self) -> None:  # noqa: N802
            self.send_response(200)
            self.send_header("Content-Type", "application/json")
            self.send_header("Content-Length", "1000")
            self.end_headers()
            self.wfile.write(b'{"partial": ')

        def log_message(self, fmt: str, *args: object) -> None:
            return

    server = HTTPServer(("127.0.0.1", 0), Handler)
    threading.Thread(target=server.serve_forever, daemon=True).start()
    try:
        with pytest.raises(NetworkError):
            _client(server, FakeTime()).get_json("/short")
    finally:
        server.shutdown()
