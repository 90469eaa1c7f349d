"""Status channel — single-slot notification of the current operation.

Any new status replaces the previous one outright. There is no queue.
Auto-clearing a terminal status after a display duration is the
observer's business.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from autopay.models.operation import OperationPhase, OperationStatus

logger = logging.getLogger(__name__)

StatusListener = Callable[[Optional[OperationStatus]], None]


class StatusChannel:
    """Overwrite-on-write slot with synchronous listeners.

    Usage:
        channel = StatusChannel()
        unsubscribe = channel.subscribe(lambda s: print(s))
        channel.publish(OperationStatus(OperationPhase.PENDING, "Working..."))
        channel.current  # the latest status, or None once cleared
    """

    def __init__(self) -> None:
        self._current: Optional[OperationStatus] = None
        self._listeners: list[StatusListener] = []

    @property
    def current(self) -> Optional[OperationStatus]:
        return self._current

    def publish(self, status: OperationStatus) -> None:
        self._current = status
        logger.debug("Status %s: %s", status.phase.value, status.message)
        self._notify(status)

    def clear(self) -> None:
        """Empty the slot (e.g. when a toast expires)."""
        self._current = None
        self._notify(None)

    def subscribe(self, listener: StatusListener) -> Callable[[], None]:
        """Register a listener. Returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _notify(self, status: Optional[OperationStatus]) -> None:
        # A failing listener never reaches the publishing operation.
        for listener in list(self._listeners):
            try:
                listener(status)
            except Exception:
                logger.exception("Status listener %r failed", listener)


class OperationReporter:
    """Publishes the statuses of one operation invocation.

    Emits PENDING at most once, and exactly one terminal status: the
    first call to finish() wins, later calls are ignored.
    """

    def __init__(
        self,
        channel: StatusChannel,
        operation: str,
        record_id: Optional[str] = None,
    ) -> None:
        self._channel = channel
        self._operation = operation
        self._record_id = record_id
        self._pending_sent = False
        self._finished = False

    def pending(self, message: str) -> None:
        if self._pending_sent or self._finished:
            return
        self._pending_sent = True
        self._channel.publish(OperationStatus(
            phase=OperationPhase.PENDING,
            message=message,
            operation=self._operation,
            record_id=self._record_id,
        ))

    def finish(self, status: OperationStatus) -> None:
        if self._finished:
            return
        self._finished = True
        self._channel.publish(status)

    @property
    def operation(self) -> str:
        return self._operation

    @property
    def record_id(self) -> Optional[str]:
        return self._record_id

    @property
    def finished(self) -> bool:
        return self._finished
