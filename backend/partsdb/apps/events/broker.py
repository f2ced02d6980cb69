"""
In-process event broker.

Other subsystems (job scheduling, notifications) subscribe to receive
signals such as ``ticket.parts_ready``. Publishing never blocks: a slow
subscriber loses its oldest queued event.

Services queue events on their session with ``publish_on_commit``; they
reach subscribers only once that transaction commits and are dropped if it
rolls back.
"""

from __future__ import annotations

import json
import queue
import threading
from collections import deque
from dataclasses import dataclass
from typing import Any, Deque, Dict, Iterable, List, Optional

from sqlalchemy import event as sa_event
from sqlalchemy.orm import Session


@dataclass
class EventEnvelope:
    id: str
    type: str
    entityType: str
    entityId: str
    action: str
    timestamp: str
    actor: Optional[Dict[str, Any]]
    metadata: Dict[str, Any]

    def to_json(self) -> str:
        payload = {
            "id": self.id,
            "type": self.type,
            "entityType": self.entityType,
            "entityId": self.entityId,
            "action": self.action,
            "timestamp": self.timestamp,
            "actor": self.actor,
            "metadata": self.metadata,
        }
        return json.dumps(payload, default=str)


class EventBroker:
    def __init__(self, replay_size: int = 2000) -> None:
        self._subscribers: set[queue.Queue[EventEnvelope]] = set()
        self._history: Deque[EventEnvelope] = deque(maxlen=replay_size)
        self._lock = threading.Lock()

    def subscribe(self) -> queue.Queue[EventEnvelope]:
        q: queue.Queue[EventEnvelope] = queue.Queue(maxsize=400)
        with self._lock:
            self._subscribers.add(q)
        return q

    def unsubscribe(self, q: queue.Queue[EventEnvelope]) -> None:
        with self._lock:
            self._subscribers.discard(q)

    def recent(self, *, event_type: Optional[str] = None) -> List[EventEnvelope]:
        with self._lock:
            history = list(self._history)
        if event_type:
            history = [event for event in history if event.type == event_type]
        return history

    def publish(self, event: EventEnvelope) -> None:
        with self._lock:
            self._history.append(event)
            subscribers: Iterable[queue.Queue[EventEnvelope]] = list(self._subscribers)
        for q in subscribers:
            try:
                q.put_nowait(event)
            except queue.Full:
                try:
                    _ = q.get_nowait()
                    q.put_nowait(event)
                except queue.Empty:
                    pass


broker = EventBroker()


def publish_event(event: EventEnvelope) -> None:
    broker.publish(event)


PENDING_EVENTS_KEY = "partsdb.pending_events"


def publish_on_commit(db: Session, event: EventEnvelope) -> None:
    db.info.setdefault(PENDING_EVENTS_KEY, []).append(event)


def pending_events(db: Session) -> List[EventEnvelope]:
    return list(db.info.get(PENDING_EVENTS_KEY, []))


@sa_event.listens_for(Session, "after_commit")
def _publish_pending_events(session: Session) -> None:
    for event in session.info.pop(PENDING_EVENTS_KEY, []):
        publish_event(event)


@sa_event.listens_for(Session, "after_rollback")
def _discard_pending_events(session: Session) -> None:
    session.info.pop(PENDING_EVENTS_KEY, None)
