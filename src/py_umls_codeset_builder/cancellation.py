# Copyright (c) 2025-2026 Gowtham Adamane Rao. All Rights Reserved.
#
# Licensed under the Prosperity Public License 3.0.0 (the "License").
# You may not use this file except in compliance with the License.
# You may obtain a copy of the License in the LICENSE file at the root
# of this repository, or at: https://prosperitylicense.com/versions/3.0.0
#
# Commercial use beyond a 30-day trial requires a separate license.
import threading
from typing import Optional

from .exceptions import BuildCancelledError


class CancellationToken:
    """
    Cooperative cancellation for a running build. Safe to cancel from
    another thread; the build notices at its next loop boundary.
    """

    def __init__(self):
        self._event = threading.Event()
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "Build cancelled"):
        self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self):
        if self._event.is_set():
            raise BuildCancelledError(self.reason or "Build cancelled")


def check_cancelled(token: Optional[CancellationToken]):
    """No-op when no token was supplied."""
    if token is not None:
        token.raise_if_cancelled()
