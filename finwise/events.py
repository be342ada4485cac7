import logging
from typing import Callable, Dict, List, NamedTuple
from datetime import datetime

__all__ = [
    'Event', 'EventBus', 'Notification',
    'NOTIFICATION', 'BUDGET_COMMITTED', 'LOW_FUNDS',
    'INFO', 'ERROR', 'log_notification_handler',
]

logger = logging.getLogger(__name__)

NOTIFICATION = "NOTIFICATION"
BUDGET_COMMITTED = "BUDGET_COMMITTED"
LOW_FUNDS = "LOW_FUNDS"

INFO = "info"
ERROR = "error"


class Event(NamedTuple):
    name: str
    ts: str
    payload: dict


class Notification(NamedTuple):
    title: str
    message: str
    severity: str = INFO

    @classmethod
    def info(cls, title: str, message: str) -> 'Notification':
        return cls(title, message, INFO)

    @classmethod
    def error(cls, title: str, message: str) -> 'Notification':
        return cls(title, message, ERROR)

    @property
    def is_error(self) -> bool:
        return self.severity == ERROR


class EventBus:
    def __init__(self):
        self._subscribers: Dict[str, List[Callable[[Event, dict], object]]] = {}

    def subscribe(self, name: str, handler: Callable[[Event, dict], object]) -> None:
        self._subscribers.setdefault(name, []).append(handler)

    def publish(self, name: str, payload: dict) -> List[object]:
        handlers = list(self._subscribers.get(name, ()))
        if not handlers:
            return []

        event = Event(name=name, ts=datetime.now().isoformat(), payload=payload)
        return [handler(event, payload) for handler in handlers]

    def unsubscribe(self, name: str, handler: Callable[[Event, dict], object]) -> None:
        if handler in self._subscribers.get(name, ()):
            self._subscribers[name].remove(handler)


def log_notification_handler(event: Event, payload: dict) -> None:
    notification = payload["notification"]
    level = logging.WARNING if notification.is_error else logging.INFO
    logger.log(level, "%s: %s", notification.title, notification.message)
