"""Turn-wide cancellation signal shared by every in-flight MCP request."""

from __future__ import annotations

import logging
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)

Callback = Callable[[], None]


class CancelSignal:
    """
    One-shot cancellation flag with synchronous listeners.

    Listeners run on the thread (event loop) that calls ``cancel()``, in
    registration order, so a pending request is resolved before any later
    response or timer for it can be processed.
    """

    def __init__(self) -> None:
        self._cancelled = False
        self._reason: Optional[str] = None
        self._callbacks: List[Callback] = []

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def cancel(self, reason: str = "Aborted") -> None:
        """Fire the signal. Later calls are no-ops."""
        if self._cancelled:
            return
        self._cancelled = True
        self._reason = reason
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception:
                logger.exception("Cancel callback failed")

    def add_callback(self, callback: Callback) -> Callback:
        """Register *callback* to run once when the signal fires."""
        self._callbacks.append(callback)
        return callback

    def remove_callback(self, callback: Callback) -> None:
        try:
            self._callbacks.remove(callback)
        except ValueError:
            pass
