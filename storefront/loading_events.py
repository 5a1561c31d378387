"""In-process broadcast of "navigation starting" events.

An initiator (pagination, filter or price control) emits one event before it
changes the listing parameters. Display components hold a LoadingIndicator
that enters the loading state on any event and leaves it when their data
identity changes or when a safety timer fires.
"""

import threading
from enum import Enum
from typing import Callable, FrozenSet, Hashable, Iterable, List, Optional, Tuple

from storefront.config import LOADING_SAFETY_TIMEOUT
from storefront.logging_config import get_logger

__all__ = ["LoadingEvent", "LoadingStateCoordinator", "LoadingIndicator"]

logger = get_logger("loading_events")

Listener = Callable[["LoadingEvent"], None]


class LoadingEvent(str, Enum):
    PAGINATION_START = "pagination-start"
    FILTER_START = "filter-start"
    PRICE_FILTER_START = "price-filter-start"


class LoadingStateCoordinator:
    """Fire-and-forget event bus shared by every listing component."""

    def __init__(self):
        self._listeners: List[Listener] = []
        self._lock = threading.Lock()

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a callable that unsubscribes it."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    @property
    def listener_count(self) -> int:
        with self._lock:
            return len(self._listeners)

    def emit(self, kind: LoadingEvent) -> None:
        kind = LoadingEvent(kind)
        with self._lock:
            listeners = list(self._listeners)
        logger.debug(f"Emitting {kind.value} to {len(listeners)} listener(s)")
        for listener in listeners:
            try:
                listener(kind)
            except Exception:
                # One broken subscriber must not stop the broadcast
                logger.exception(f"Loading listener failed on {kind.value}")


class LoadingIndicator:
    """Loading flag for one display component.

    Args:
        coordinator: Event bus to subscribe to while mounted
        timeout: Seconds before a stuck loading state clears itself
        kinds: Event kinds that start loading (default: all)
        timer_factory: ``threading.Timer``-compatible factory
    """

    def __init__(
        self,
        coordinator: LoadingStateCoordinator,
        timeout: float = LOADING_SAFETY_TIMEOUT,
        kinds: Optional[Iterable[LoadingEvent]] = None,
        timer_factory: Callable[..., threading.Timer] = threading.Timer,
    ):
        self.coordinator = coordinator
        self.timeout = timeout
        self.kinds: FrozenSet[LoadingEvent] = frozenset(kinds or LoadingEvent)
        self.timer_factory = timer_factory
        self._loading = False
        self._timer = None
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._identity: Optional[Tuple[Hashable, ...]] = None
        self._generation = 0
        self._lock = threading.Lock()

    @property
    def is_loading(self) -> bool:
        return self._loading

    @property
    def mounted(self) -> bool:
        return self._unsubscribe is not None

    def mount(self, ids: Optional[Iterable[Hashable]] = None) -> None:
        if self._unsubscribe is not None:
            return
        if ids is not None:
            self._identity = tuple(ids)
        self._unsubscribe = self.coordinator.subscribe(self._on_event)

    def unmount(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        with self._lock:
            self._cancel_timer()
            self._loading = False

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_event(self, kind: LoadingEvent) -> None:
        if kind not in self.kinds:
            return
        with self._lock:
            # Broadcasts can still reach us after unmount
            if not self.mounted:
                return
            self._loading = True
            self._cancel_timer()
            self._generation += 1
            timer = self.timer_factory(self.timeout, self._on_timeout, args=(self._generation,))
            timer.daemon = True
            self._timer = timer
            timer.start()

    def _on_timeout(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation:
                return
            if self._loading:
                logger.debug("Loading safety timeout reached, clearing loading state")
            self._loading = False
            self._timer = None

    def data_arrived(self, ids: Iterable[Hashable]) -> bool:
        """Record the displayed ids; clears loading when they changed.

        Returns True when the identity changed.
        """
        identity = tuple(ids)
        with self._lock:
            changed = identity != self._identity
            self._identity = identity
            if changed:
                self._loading = False
                self._cancel_timer()
        return changed
