"""
Lightweight in-process event system.

The approval workflow announces profile changes here; the client root
listens so it can ask the session reconciler to re-check the signed-in
member. Handlers run synchronously and must not raise; failures are logged.
"""
import logging
from typing import Callable, Dict, List

logger = logging.getLogger(__name__)

# Event registry: event_name -> list of handlers
_event_handlers: Dict[str, List[Callable]] = {}


def subscribe(event_name: str, handler: Callable) -> Callable[[], None]:
    """
    Subscribe a handler function to an event.

    Returns a callable that removes the subscription again.

    Example:
        unsubscribe = subscribe(EVENT_PROFILE_UPDATED, on_profile_updated)
    """
    _event_handlers.setdefault(event_name, []).append(handler)
    logger.debug(f"Subscribed handler to event: {event_name}")

    def unsubscribe() -> None:
        handlers = _event_handlers.get(event_name, [])
        if handler in handlers:
            handlers.remove(handler)

    return unsubscribe


def emit(event_name: str, **kwargs):
    """
    Emit an event, calling all subscribed handlers.

    Example:
        emit(EVENT_PROFILE_UPDATED, email=profile.email, status=profile.status.value)
    """
    for handler in list(_event_handlers.get(event_name, [])):
        try:
            handler(**kwargs)
        except Exception as e:
            logger.error(f"Error in event handler for {event_name}: {e}", exc_info=True)


def clear_handlers(event_name: str = None) -> None:
    """Drop subscriptions (all, or for one event). Used on shutdown and in tests."""
    if event_name is None:
        _event_handlers.clear()
    else:
        _event_handlers.pop(event_name, None)


EVENT_PROFILE_CREATED = 'profile.created'
EVENT_PROFILE_UPDATED = 'profile.updated'
