from __future__ import annotations

import dataclasses
import enum
import http.client
import json
import math
import os
import re
import ssl
import sys
import threading
import time
import urllib.error
import urllib.request
from pathlib import Path
from typing import Callable
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from . import __version__
from .errors import ApiError, MaxRetriesExceeded, NetworkError, TimelineError

API_BASE = "https://api.github.com"
API_VERSION = "2022-11-28"
MAX_PER_PAGE = 100
RATE_LIMIT_MARGIN_S = 1.0

_NEXT_LINK_RE = re.compile(r'<([^>]+)>;\s*rel="next"')


class RetryAction(enum.Enum):
    OK = "ok"
    WAIT_FOR_RESET = "wait_for_reset"
    BACKOFF = "backoff"
    FAIL = "fail"


@dataclasses.dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    backoff_base_s: float = 2.0

    def backoff_s(self, attempt: int) -> float:
        return float(self.backoff_base_s ** attempt)


def classify_response(status: int, headers: dict[str, str]) -> RetryAction:
    if 200 <= status < 300:
        return RetryAction.OK
    if status in (403, 429):
        remaining = (headers.get("x-ratelimit-remaining") or "").strip()
        reset = (headers.get("x-ratelimit-reset") or "").strip()
        if remaining == "0" and reset.isdigit():
            return RetryAction.WAIT_FOR_RESET
        return RetryAction.BACKOFF
    return RetryAction.FAIL


def parse_next_link(link_header: str) -> str:
    m = _NEXT_LINK_RE.search(link_header or "")
    return m.group(1) if m else ""


def with_page_size(url: str, per_page: int = MAX_PER_PAGE) -> str:
    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    size = per_page
    for k, v in query:
        if k == "per_page" and v.isdigit() and int(v) > 0:
            size = min(int(v), per_page)
    query = [(k, v) for k, v in query if k != "per_page"]
    query.append(("per_page", str(size)))
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query, safe=":/"), parts.fragment))


@dataclasses.dataclass
class ApiResponse:
    url: str
    status: int
    headers: dict[str, str]  # lower-cased names
    body: bytes

    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def json(self) -> object:
        if not self.body:
            return None
        try:
            return json.loads(self.body)
        except ValueError as e:
            raise TimelineError(f"invalid JSON from {self.url}: {self.text()[:200]}") from e

    def next_url(self) -> str:
        return parse_next_link(self.headers.get("link", ""))


def _ssl_context(*, ca_bundle_path: str) -> ssl.SSLContext:
    p = (ca_bundle_path or "").strip()
    if not p:
        for k in ("SSL_CERT_FILE", "REQUESTS_CA_BUNDLE", "CURL_CA_BUNDLE"):
            v = (os.environ.get(k) or "").strip()
            if v:
                p = v
                break
    if p:
        path = Path(p).expanduser()
        if path.is_dir():
            return ssl.create_default_context(capath=str(path))
        return ssl.create_default_context(cafile=str(path))
    return ssl.create_default_context()


def _is_cert_verify_error(e: urllib.error.URLError) -> bool:
    reason = getattr(e, "reason", None)
    if isinstance(reason, ssl.SSLCertVerificationError):
        return True
    return "certificate verify failed" in str(e).lower()


class GitHubClient:
    """
    Authenticated GitHub REST client.

    Safe to share between worker threads. A rate-limit reset wait observed by
    one worker pauses every other worker until the quota resets.
    """

    def __init__(
        self,
        token: str,
        *,
        api_base: str = API_BASE,
        timeout_s: int = 30,
        retry: RetryPolicy | None = None,
        ca_bundle_path: str = "",
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.token = token
        self.api_base = (api_base or API_BASE).rstrip("/")
        self.timeout_s = timeout_s
        self.retry = retry or RetryPolicy()
        self._ctx = _ssl_context(ca_bundle_path=ca_bundle_path) if self.api_base.startswith("https:") else None
        self._sleep = sleep
        self._clock = clock
        self._pause_lock = threading.Lock()
        self._pause_until = 0.0

    def _url(self, endpoint: str) -> str:
        if endpoint.startswith("http://") or endpoint.startswith("https://"):
            return endpoint
        return self.api_base + "/" + endpoint.lstrip("/")

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": API_VERSION,
            "User-Agent": f"git-timeline/{__version__}",
        }

    def _open(self, url: str) -> ApiResponse:
        req = urllib.request.Request(url, method="GET", headers=self._headers())
        try:
            with urllib.request.urlopen(req, timeout=self.timeout_s, context=self._ctx) as resp:
                return ApiResponse(
                    url=url,
                    status=int(getattr(resp, "status", 0) or 0),
                    headers={k.lower(): v for k, v in resp.headers.items()},
                    body=resp.read(),
                )
        except urllib.error.HTTPError as e:
            try:
                body = e.read()
            except (OSError, http.client.HTTPException):
                body = b""
            headers = {k.lower(): v for k, v in e.headers.items()} if e.headers is not None else {}
            return ApiResponse(url=url, status=int(e.code), headers=headers, body=body or b"")
        except urllib.error.URLError as e:
            msg = f"request to {url} failed: {e.reason}"
            if _is_cert_verify_error(e):
                msg += "\nHint: HTTPS certificate verification failed; set SSL_CERT_FILE to a CA bundle."
            raise NetworkError(msg) from e
        except (TimeoutError, OSError, http.client.HTTPException) as e:
            raise NetworkError(f"request to {url} failed: {e}") from e

    def _wait_for_pause(self) -> None:
        with self._pause_lock:
            until = self._pause_until
        remaining = until - self._clock()
        if remaining > 0:
            self._sleep(remaining)

    def _wait_for_reset(self, headers: dict[str, str]) -> None:
        reset_at = float(headers.get("x-ratelimit-reset", "0")) + RATE_LIMIT_MARGIN_S
        with self._pause_lock:
            if reset_at > self._pause_until:
                self._pause_until = reset_at
        wait_s = max(reset_at - self._clock(), RATE_LIMIT_MARGIN_S)
        print(f"Rate limited. Waiting {math.ceil(wait_s / 60)} minutes for the quota to reset...")
        self._sleep(wait_s)

    def request(self, endpoint: str) -> ApiResponse:
        url = self._url(endpoint)
        attempt = 0
        while True:
            self._wait_for_pause()
            resp = self._open(url)
            action = classify_response(resp.status, resp.headers)
            if action is RetryAction.OK:
                return resp
            if action is RetryAction.WAIT_FOR_RESET:
                self._wait_for_reset(resp.headers)
                continue
            if action is RetryAction.BACKOFF:
                attempt += 1
                if attempt > self.retry.max_attempts:
                    raise MaxRetriesExceeded(f"max retries exceeded for {url} (last HTTP {resp.status}: {resp.text()[:200]})")
                delay = self.retry.backoff_s(attempt)
                print(f"Secondary rate limit on {urlsplit(url).path}, retrying in {delay:g}s...", file=sys.stderr)
                self._sleep(delay)
                continue
            raise ApiError(resp.status, resp.text(), url=url)

    def get_json(self, endpoint: str) -> object:
        return self.request(endpoint).json()

    def fetch_all_pages(self, endpoint: str) -> list:
        items: list = []
        url = with_page_size(self._url(endpoint))
        while url:
            resp = self.request(url)
            data = resp.json()
            if data is None:
                data = []
            if not isinstance(data, list):
                raise TimelineError(f"expected a JSON array from {url}, got {type(data).__name__}")
            items.extend(data)
            url = resp.next_url()
        return items
