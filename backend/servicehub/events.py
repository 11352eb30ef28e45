import logging
from enum import Enum
from typing import Callable, Iterable, List, Optional, Set, Tuple

logger = logging.getLogger(__name__)


class ChangeEvent(str, Enum):
    SERVICES = "services_changed"
    REQUESTS = "requests_changed"
    REVIEWS = "reviews_changed"
    SUBSCRIPTIONS = "subscriptions_changed"
    FAVORITES = "favorites_changed"
    PROFILES = "profiles_changed"
    LOGGED_IN = "logged_in_changed"
    CURRENT_USER = "current_user_changed"


Listener = Callable[[ChangeEvent], None]


class EventBus:
    """Fan-out of change notifications to registered listeners.

    Listeners run synchronously in registration order. A listener that raises
    is logged and skipped so the remaining listeners still see the event.
    """

    def __init__(self) -> None:
        self._listeners: List[Tuple[Listener, Optional[Set[ChangeEvent]]]] = []

    def subscribe(
        self,
        listener: Listener,
        events: Optional[Iterable[ChangeEvent]] = None,
    ) -> Callable[[], None]:
        entry = (listener, set(events) if events is not None else None)
        self._listeners.append(entry)

        def unsubscribe() -> None:
            if entry in self._listeners:
                self._listeners.remove(entry)

        return unsubscribe

    def emit(self, event: ChangeEvent) -> None:
        for listener, wanted in list(self._listeners):
            if wanted is not None and event not in wanted:
                continue
            try:
                listener(event)
            except Exception:
                logger.exception("Change listener failed for %s", event.value)
