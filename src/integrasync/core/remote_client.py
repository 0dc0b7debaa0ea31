"""
Remote HTTP client used to query remote directories.

- requests.Session with optional bearer token.
- Methods: get_json.
- Bounded per-call timeout (one stalled directory cannot starve a pass).
- Retries with exponential backoff on network errors and 5xx.
- No retry on 4xx.
- TLS verification toggle (verify_tls=True by default).
- Errors as HttpError with status, url, and body.

Usage:
    client = RemoteClient(token="...", timeout_sec=10, retries=2)
    data = client.get_json("https://host/api/instances")
"""

from __future__ import annotations

import logging
import time
import warnings
from dataclasses import dataclass
from typing import Any, Optional

import requests
import urllib3


@dataclass
class HttpError(Exception):
    """HTTP/transport error with context."""
    status: int
    url: str
    body: str = ""
    message: str = ""

    def __str__(self) -> str:  # pragma: no cover (simple formatting)
        base = f"HttpError(status={self.status}, url={self.url})"
        if self.message:
            base += f": {self.message}"
        if self.body:
            base += f" body={self.body[:200]}"
        return base


class RemoteClient:
    """Minimal JSON HTTP client with retries and timeouts."""

    def __init__(
        self,
        *,
        base_url: str = "",
        token: str = "",
        verify_tls: bool = True,
        timeout_sec: float = 10,
        retries: int = 2,
        backoff_base_sec: float = 0.2,
        logger: Optional[logging.LoggerAdapter] = None,
    ) -> None:
        if float(timeout_sec) <= 0:
            raise ValueError("timeout_sec must be > 0")
        self.base_url = base_url.rstrip("/")
        self.verify_tls = verify_tls
        self.timeout = float(timeout_sec)
        self.retries = max(0, int(retries))
        self.backoff = float(backoff_base_sec)
        self.log = logger or logging.getLogger("isync.http")

        self.session = requests.Session()
        self.session.headers.update({
            "Accept": "application/json",
            "User-Agent": "IntegraSync/RemoteClient",
        })
        if token:
            self.session.headers["Authorization"] = f"Bearer {token}"
        if not verify_tls:
            warnings.filterwarnings("ignore", category=urllib3.exceptions.InsecureRequestWarning)

    # ------------- Public API -------------

    def get_json(self, path: str) -> Any:
        return self._request_json("GET", path)

    def close(self) -> None:
        self.session.close()

    # ------------- Internal -------------

    def _full_url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        if not self.base_url:
            raise HttpError(status=0, url=path, message="relative path without base_url")
        return f"{self.base_url}/{path.lstrip('/')}"

    def _request_json(self, method: str, path: str) -> Any:
        url = self._full_url(path)
        attempts = self.retries + 1
        last_err: Optional[HttpError] = None

        for attempt in range(attempts):
            start = time.time()
            try:
                resp = self.session.request(method, url, timeout=self.timeout, verify=self.verify_tls)
            except requests.Timeout:
                err = HttpError(status=0, url=url, message="timed out")
            except requests.RequestException as e:
                err = HttpError(status=0, url=url, message=str(e))
            else:
                elapsed = (time.time() - start) * 1000
                if resp.status_code < 400:
                    self._log_ok(method, url, resp.status_code, elapsed)
                    if resp.status_code == 204 or not resp.content:
                        return {}
                    try:
                        return resp.json()
                    except ValueError as e:
                        raise HttpError(status=resp.status_code, url=url, body=resp.text, message=f"invalid JSON: {e}")
                err = HttpError(status=resp.status_code, url=url, body=resp.text, message=resp.reason or "")
                if not 500 <= resp.status_code < 600:
                    # 4xx: no retry
                    self._log_err(method, url, err)
                    raise err

            # network error, timeout or 5xx
            self._log_err(method, url, err)
            last_err = err
            if attempt < attempts - 1:
                self._sleep_backoff(attempt)

        assert last_err is not None
        raise last_err

    def _sleep_backoff(self, attempt: int) -> None:
        time.sleep(self.backoff * (2 ** attempt))

    def _log_ok(self, method: str, url: str, status: int, elapsed_ms: float) -> None:
        self.log.debug("%s %s -> %s in %.1fms", method, url, status, elapsed_ms)

    def _log_err(self, method: str, url: str, err: HttpError) -> None:
        self.log.warning("%s %s failed (status=%s): %s", method, url, err.status, err)
