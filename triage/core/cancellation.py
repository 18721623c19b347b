"""Cooperative cancellation for a single answer generation.

Stages check the token before starting another model call. A call that is
already in flight is allowed to finish.
"""

from __future__ import annotations

import asyncio

from triage.core.errors import GenerationCancelled


class CancellationToken:
    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    def cancel(self, reason: str = "cancelled by user") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise GenerationCancelled(self.reason or "cancelled")


def is_cancelled(token: CancellationToken | None) -> bool:
    return token is not None and token.cancelled
