"""
Structured event sinks.

Components report what happened (accept, reject, rate-limit, sweep) to an
injected sink instead of printing. The default sink writes one log line per
event; the memory sink keeps them for inspection.
"""

import logging
import threading
import time
from collections import Counter, deque
from dataclasses import dataclass, field
from typing import Deque, Dict, List

logger = logging.getLogger('fleettrack.events')


@dataclass(frozen=True)
class Event:
    name: str
    fields: Dict[str, object]
    emitted_at: float = field(default_factory=time.time)


class EventSink:
    """Base sink. Subclasses override ``record``."""

    def emit(self, name: str, **fields) -> None:
        # Observability must never break the request path
        try:
            self.record(Event(name=name, fields=fields))
        except Exception:
            logger.exception(f'Event sink failed for {name}')

    def record(self, event: Event) -> None:
        raise NotImplementedError


class LoggingEventSink(EventSink):
    """Writes each event as a single key=value log line."""

    def __init__(self, level: int = logging.INFO):
        self.level = level

    def record(self, event: Event) -> None:
        details = ' '.join(f'{k}={v}' for k, v in sorted(event.fields.items()))
        logger.log(self.level, f'{event.name} {details}'.rstrip())


class MemoryEventSink(EventSink):
    """Keeps the most recent events in memory, plus per-name counts."""

    def __init__(self, max_events: int = 1000):
        self._events: Deque[Event] = deque(maxlen=max_events)
        self._counts: Counter = Counter()
        self._lock = threading.Lock()

    def record(self, event: Event) -> None:
        with self._lock:
            self._events.append(event)
            self._counts[event.name] += 1

    def events(self, name: str = None) -> List[Event]:
        with self._lock:
            items = list(self._events)
        if name is None:
            return items
        return [e for e in items if e.name == name]

    @property
    def counts(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._counts)


class FanOutEventSink(EventSink):
    """Forwards every event to several sinks."""

    def __init__(self, *sinks: EventSink):
        self.sinks = sinks

    def record(self, event: Event) -> None:
        for sink in self.sinks:
            sink.record(event)
