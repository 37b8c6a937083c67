"""
Session Expiration Broadcaster.

Lets unrelated layers react to an unrecoverable session (for example by
routing back to a login screen) without the request pipeline knowing
about them.

``ApiClient`` calls :meth:`SessionExpiryBroadcaster.notify` once for
every logical call that concludes the session is lost.  Calls in flight
at the same moment each notify on their own, so observers must be
idempotent: the second and later notifications of one expiry must be
harmless.
"""

from __future__ import annotations

from typing import Callable

from edu_client.logger import StructuredLogger

SessionExpiredCallback = Callable[[], None]


class SessionExpiryBroadcaster:
    """Multi-subscriber notification hub for session expiry.

    Parameters
    ----------
    logger:
        Structured logger instance.
    """

    def __init__(self, logger: StructuredLogger) -> None:
        self._logger: StructuredLogger = logger
        self._observers: list[SessionExpiredCallback] = []

    def subscribe(self, callback: SessionExpiredCallback) -> Callable[[], None]:
        """Register *callback* and return a function that unregisters it.

        Registering the same callback twice has no effect.
        """
        if callback not in self._observers:
            self._observers.append(callback)
        return lambda: self.unsubscribe(callback)

    def unsubscribe(self, callback: SessionExpiredCallback) -> None:
        if callback in self._observers:
            self._observers.remove(callback)

    @property
    def observer_count(self) -> int:
        return len(self._observers)

    def notify(self) -> int:
        """Invoke every observer with no arguments.

        An observer that raises is logged and skipped; the remaining
        observers still run.

        Returns
        -------
        int
            Number of observers that were invoked.
        """
        observers = list(self._observers)
        self._logger.warning(
            "Session expired; notifying %d observer(s).",
            len(observers),
            extra={"event": "SESSION_EXPIRED"},
        )
        for callback in observers:
            try:
                callback()
            except Exception:
                self._logger.error(
                    "Session-expiry observer %r raised.", callback, exc_info=True,
                )
        return len(observers)
