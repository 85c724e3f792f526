"""Structured resolution logger.

Resolution code reports events (``action``, ``info``, ``warn``, ``conflict``...)
with a data payload. Events flow through interceptors, which may enrich them,
and end up both in stdlib ``logging`` and in any listener the app registers
(a renderer, a JSON reporter, a test collecting events).

A geminated (child) logger forwards everything to its parent after running its
own interceptors; the repository uses one per fetch to stamp each event with
the endpoint and resolver it belongs to.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from dataclasses import field

LEVELS = {
    "error": logging.ERROR,
    "conflict": logging.WARNING,
    "warn": logging.WARNING,
    "action": logging.INFO,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}


@dataclass
class LogEvent:
    """One structured log event."""

    level: str
    id: str
    message: str
    data: dict = field(default_factory=dict)


class Logger:
    """Event logger with interceptors, listeners and child loggers."""

    def __init__(self, name: str = "noap_resolver", parent: "Logger | None" = None):
        self._logger = logging.getLogger(name)
        self._parent = parent
        self._interceptors: list[Callable[[LogEvent], None]] = []
        self._listeners: list[Callable[[LogEvent], None]] = []

    def log(self, level: str, id: str, message: str, data: dict | None = None) -> LogEvent:
        if level not in LEVELS:
            raise ValueError(f"Unknown log level: {level}")
        event = LogEvent(level=level, id=id, message=message, data=dict(data or {}))
        self._emit(event)
        return event

    def error(self, id: str, message: str, data: dict | None = None) -> LogEvent:
        return self.log("error", id, message, data)

    def conflict(self, id: str, message: str, data: dict | None = None) -> LogEvent:
        return self.log("conflict", id, message, data)

    def warn(self, id: str, message: str, data: dict | None = None) -> LogEvent:
        return self.log("warn", id, message, data)

    def action(self, id: str, message: str, data: dict | None = None) -> LogEvent:
        return self.log("action", id, message, data)

    def info(self, id: str, message: str, data: dict | None = None) -> LogEvent:
        return self.log("info", id, message, data)

    def debug(self, id: str, message: str, data: dict | None = None) -> LogEvent:
        return self.log("debug", id, message, data)

    def geminate(self) -> "Logger":
        """Create a child logger that pipes every event to this one."""
        return Logger(self._logger.name, parent=self)

    def intercept(self, interceptor: Callable[[LogEvent], None]) -> "Logger":
        """Register a callback that may mutate each event before it is emitted."""
        self._interceptors.append(interceptor)
        return self

    def on_log(self, listener: Callable[[LogEvent], None]) -> Callable[[], None]:
        """Subscribe to emitted events; returns an unsubscribe callable."""
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def _emit(self, event: LogEvent) -> None:
        for interceptor in self._interceptors:
            interceptor(event)

        for listener in list(self._listeners):
            listener(event)

        if self._parent is not None:
            self._parent._emit(event)
            return

        self._logger.log(
            LEVELS[event.level],
            f"{event.id} {event.message}",
            extra={"event_id": event.id, "event_data": event.data},
        )
