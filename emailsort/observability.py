"""
Structured observability events.

Every state transition, directive and polling tick outcome is recorded as an
ObservabilityEvent and mirrored to the log with the usual `name key=value`
line, so tests can query what happened instead of parsing log text.
"""

import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

logger = logging.getLogger("emailsort.events")


@dataclass(frozen=True)
class ObservabilityEvent:
    name: str
    fields: Dict[str, Any] = field(default_factory=dict)
    ts: float = field(default_factory=time.monotonic)


class EventLog:
    """Bounded in-memory event buffer."""

    def __init__(self, maxlen: int = 1000) -> None:
        self._events: deque = deque(maxlen=maxlen)

    def emit(self, name: str, **fields: Any) -> ObservabilityEvent:
        event = ObservabilityEvent(name=name, fields=fields)
        self._events.append(event)
        kv = " ".join(f"{k}={v}" for k, v in fields.items())
        logger.info("%s %s", name, kv, extra={"event": name, "event_fields": fields})
        return event

    def query(self, name: Optional[str] = None, **match: Any) -> List[ObservabilityEvent]:
        """Return events with the given name whose fields contain every `match` pair."""
        return [
            e for e in self._events
            if (name is None or e.name == name)
            and all(e.fields.get(k) == v for k, v in match.items())
        ]

