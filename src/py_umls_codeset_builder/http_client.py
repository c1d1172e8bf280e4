# Copyright (c) 2025-2026 Gowtham Adamane Rao. All Rights Reserved.
#
# Licensed under the Prosperity Public License 3.0.0 (the "License").
# You may not use this file except in compliance with the License.
# You may obtain a copy of the License in the LICENSE file at the root
# of this repository, or at: https://prosperitylicense.com/versions/3.0.0
#
# Commercial use beyond a 30-day trial requires a separate license.
import threading
import time
from typing import Any, Callable, Dict, Optional

import requests
from rich.console import Console

from .exceptions import GatewayError

console = Console()

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


class JSONClient:
    """
    Issues GET requests and decodes JSON bodies.

    A 404 is returned as None so callers can treat absence as an empty
    result. 429 and 5xx responses and network failures are retried with
    exponential back-off; anything still failing becomes a GatewayError.

    Sessions are never shared between threads: each thread builds its own
    from `session_factory` on first use.
    """

    def __init__(
        self,
        session_factory: Callable[[], requests.Session] = requests.Session,
        timeout: float = 30.0,
        max_retries: int = 2,
        retry_backoff: float = 1.0,
    ):
        self.session_factory = session_factory
        self._local = threading.local()
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff

    @property
    def session(self) -> requests.Session:
        session = getattr(self._local, "session", None)
        if session is None:
            session = self.session_factory()
            self._local.session = session
        return session

    def _sleep_before_retry(self, attempt: int):
        delay = self.retry_backoff * (2 ** attempt)
        if delay > 0:
            time.sleep(delay)

    def get_json(self, url: str, params: Optional[Dict[str, Any]] = None) -> Optional[Any]:
        for attempt in range(self.max_retries + 1):
            can_retry = attempt < self.max_retries
            try:
                response = self.session.get(url, params=params, timeout=self.timeout)
            except requests.exceptions.RequestException as e:
                if can_retry:
                    console.log(f"[yellow]Request to {url} failed ({e}). Retrying...[/yellow]")
                    self._sleep_before_retry(attempt)
                    continue
                raise GatewayError(None, f"Request to {url} failed: {e}") from e

            if response.status_code == 404:
                return None

            if response.status_code in RETRYABLE_STATUS_CODES and can_retry:
                console.log(f"[yellow]{url} returned {response.status_code}. Retrying...[/yellow]")
                self._sleep_before_retry(attempt)
                continue

            if not response.ok:
                raise GatewayError(response.status_code, f"{response.reason or 'Request failed'} for {url}")

            try:
                return response.json()
            except ValueError as e:
                raise GatewayError(response.status_code, f"Malformed JSON returned by {url}") from e

        # Only reachable with a negative max_retries.
        raise GatewayError(None, f"No request was issued for {url}")
