"""Cancellation tokens and the per-run token registry."""

from __future__ import annotations

import threading
from typing import Dict, List, Optional


class CancellationToken:
    """Thread-safe, one-way cancellation flag.

    A token may be chained to a parent token (typically the caller's own signal);
    it then reports cancelled as soon as either flag is set.
    """

    def __init__(self, parent: Optional["CancellationToken"] = None) -> None:
        self._event = threading.Event()
        self._parent = parent

    def cancel(self) -> None:
        self._event.set()

    def is_cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self._parent is not None and self._parent.is_cancelled()


class CancellationRegistry:
    """Maps run ids to the token of the run currently executing under that id."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._tokens: Dict[str, CancellationToken] = {}

    def register(self, run_id: str, token: CancellationToken) -> None:
        with self._lock:
            self._tokens[run_id] = token

    def unregister(self, run_id: str) -> None:
        with self._lock:
            self._tokens.pop(run_id, None)

    def cancel(self, run_id: str) -> bool:
        with self._lock:
            token = self._tokens.get(run_id)
        if token is None:
            return False
        token.cancel()
        return True

    def cancel_all(self) -> int:
        with self._lock:
            tokens: List[CancellationToken] = list(self._tokens.values())
        for token in tokens:
            token.cancel()
        return len(tokens)

    def __contains__(self, run_id: str) -> bool:
        with self._lock:
            return run_id in self._tokens

    def __len__(self) -> int:
        with self._lock:
            return len(self._tokens)
