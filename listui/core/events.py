"""
A small publish/subscribe hub for engine events.
"""

import logging
from collections import defaultdict
from typing import Any, Callable

from listui.models.events import (
    Progress,
    ToolMissing,
    TrackFailed,
    TrackReady,
    TransportChanged,
    VolumeChanged,
)

log = logging.getLogger(__name__)

Listener = Callable[[Any], None]


class EventFeed:
    """
    Delivers engine events to shell listeners, synchronously and in order.

    A listener that raises does not stop delivery to the remaining listeners.
    """

    def __init__(self):
        self._listeners: dict[type, list[Listener]] = defaultdict(list)
        self._catch_all: list[Listener] = []

    def subscribe(self, listener: Listener) -> Listener:
        self._catch_all.append(listener)
        return listener

    def unsubscribe(self, listener: Listener):
        if listener in self._catch_all:
            self._catch_all.remove(listener)
        for listeners in self._listeners.values():
            if listener in listeners:
                listeners.remove(listener)

    def on(self, event_type: type, listener: Listener) -> Listener:
        self._listeners[event_type].append(listener)
        return listener

    def on_progress(self, listener: Listener) -> Listener:
        return self.on(Progress, listener)

    def on_track_ready(self, listener: Listener) -> Listener:
        return self.on(TrackReady, listener)

    def on_track_failed(self, listener: Listener) -> Listener:
        return self.on(TrackFailed, listener)

    def on_transport_changed(self, listener: Listener) -> Listener:
        return self.on(TransportChanged, listener)

    def on_volume_changed(self, listener: Listener) -> Listener:
        return self.on(VolumeChanged, listener)

    def on_tool_missing(self, listener: Listener) -> Listener:
        return self.on(ToolMissing, listener)

    def emit(self, event: Any):
        for listener in [*self._listeners[type(event)], *self._catch_all]:
            try:
                listener(event)
            except Exception:
                log.exception(f"Event listener failed while handling {event!r}")
