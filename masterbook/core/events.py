# masterbook/core/events.py
"""
In-process domain event bus.

Services publish events only after their transaction has committed. Every
subscriber runs on its own: a failing subscriber is logged and skipped, it
never reaches the publisher and never affects the other subscribers.
"""
import logging
from collections import defaultdict
from typing import Callable, Dict, List, Optional, Type

from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

Handler = Callable[[object, Optional[Session]], None]


class EventBus:
    def __init__(self):
        self._handlers: Dict[Type, List[Handler]] = defaultdict(list)

    def subscribe(self, event_type: Type, handler: Handler) -> None:
        if handler not in self._handlers[event_type]:
            self._handlers[event_type].append(handler)

    def handlers_for(self, event_type: Type) -> List[Handler]:
        return list(self._handlers.get(event_type, []))

    def clear(self) -> None:
        self._handlers.clear()

    def publish(self, event: object, db: Optional[Session] = None) -> int:
        """Dispatch `event` to its subscribers; returns how many succeeded"""
        succeeded = 0
        for handler in self.handlers_for(type(event)):
            try:
                handler(event, db)
                succeeded += 1
            except Exception:
                logger.exception(
                    f"Handler {getattr(handler, '__name__', handler)} failed for {type(event).__name__}"
                )
                if db is not None:
                    db.rollback()
        return succeeded


event_bus = EventBus()
