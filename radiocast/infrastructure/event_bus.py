import threading
from typing import Type, Callable, List, Dict, Any, Optional
from radiocast.domain.events import Event

class EventBus:
    """Synchronous event bus; safe to publish from stream worker threads."""

    def __init__(self):
        self._subscribers: Dict[Type[Event], List[Callable[[Any], None]]] = {}
        self._lock = threading.RLock()

    def subscribe(self, event_type: Type[Event], callback: Optional[Callable[[Any], None]] = None):
        """Subscribes a callback to a specific event type. Can be used as a decorator."""
        if callback is None:
            def decorator(func: Callable[[Any], None]):
                self.subscribe(event_type, func)
                return func
            return decorator

        with self._lock:
            self._subscribers.setdefault(event_type, []).append(callback)

    def publish(self, event: Event):
        """Delivers an event to subscribers of its type and of its base classes."""
        with self._lock:
            callbacks = [
                callback
                for event_type, subscribed in self._subscribers.items()
                if isinstance(event, event_type)
                for callback in subscribed
            ]
        for callback in callbacks:
            callback(event)
