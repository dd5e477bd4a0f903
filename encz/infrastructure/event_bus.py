from typing import Type, Callable, List, Dict, Any, Optional
from encz.domain.events import Event

class EventBus:
    """A simple synchronous event bus between the encode pipeline and the terminal view."""

    def __init__(self):
        self._subscribers: Dict[Type[Event], List[Callable[[Any], None]]] = {}

    def subscribe(self, event_type: Type[Event], callback: Optional[Callable[[Any], None]] = None):
        """Subscribes a callback to a specific event type. Can be used as a decorator."""
        if callback is None:
            def decorator(func: Callable[[Any], None]):
                self.subscribe(event_type, func)
                return func
            return decorator

        self._subscribers.setdefault(event_type, []).append(callback)

    def publish(self, event: Event):
        """Delivers an event to its subscribers in subscription order."""
        for callback in self._subscribers.get(type(event), []):
            callback(event)
