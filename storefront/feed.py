"""Incremental result surfaces: infinite-scroll feed and search-as-you-type.

Both guard against overlapping requests. The feed ignores ``load_more``
while a fetch is outstanding; the search box debounces keystrokes, aborts
the previous request and drops responses for text that has since changed.
"""

import threading
from dataclasses import replace
from typing import Any, Callable, List, Optional

from storefront.config import DEFAULT_LISTING_PAGE_SIZE, MIN_SEARCH_QUERY_LENGTH, SEARCH_DEBOUNCE_SECONDS
from storefront.errors import RetryCancelled
from storefront.logging_config import get_logger
from storefront.models import Product
from storefront.repository import ProductFilters, ProductPage

__all__ = ["InfiniteScrollFeed", "SearchAsYouType"]

logger = get_logger("feed")


class InfiniteScrollFeed:
    """Append-only product list fed page by page through a cursor."""

    def __init__(
        self,
        fetch_page: Callable[[ProductFilters], ProductPage],
        filters: Optional[ProductFilters] = None,
        page_size: int = DEFAULT_LISTING_PAGE_SIZE,
        initial_page: Optional[ProductPage] = None,
    ):
        self.fetch_page = fetch_page
        self.page_size = page_size
        self._busy = threading.Lock()
        self._generation = 0
        self.reset(filters, initial_page)

    def reset(self, filters: Optional[ProductFilters] = None, initial_page: Optional[ProductPage] = None) -> None:
        """Start over for new filters; results of in-flight fetches are discarded."""
        self._generation += 1
        self.filters = filters or ProductFilters()
        self.products: List[Product] = []
        self.has_more = True
        self.last_id: Optional[str] = None
        self.error: Optional[Exception] = None
        if initial_page is not None:
            self._append(initial_page)

    @property
    def busy(self) -> bool:
        return self._busy.locked()

    def _append(self, page: ProductPage) -> None:
        seen = {p.id for p in self.products}
        self.products.extend(p for p in page.products if p.id not in seen)
        self.has_more = page.has_more
        self.last_id = page.last_product_id or self.last_id

    def load_more(self) -> bool:
        """Fetch the next page; returns False when skipped (busy or exhausted)."""
        if not self.has_more:
            return False
        if not self._busy.acquire(blocking=False):
            logger.debug("load_more ignored, a fetch is already in flight")
            return False

        generation = self._generation
        try:
            filters = replace(self.filters, page_size=self.page_size, cursor_id=self.last_id, offset=None)
            page = self.fetch_page(filters)
            if generation != self._generation:
                logger.debug("Discarding page fetched for outdated filters")
                return False
            self._append(page)
            self.error = None
            return True
        except RetryCancelled:
            return False
        except Exception as e:
            # Loaded products stay visible; the error is shown inline
            logger.warning(f"Loading more products failed: {e}")
            self.error = e
            return False
        finally:
            self._busy.release()


class SearchAsYouType:
    """Debounced search box driver.

    Args:
        search_fn: Called as ``search_fn(text, abort_event)``
        on_results: Called as ``on_results(text, results)`` for current text only
        delay: Debounce interval in seconds
        on_error: Optional ``on_error(text, exc)`` for non-cancellation failures
        timer_factory: ``threading.Timer``-compatible factory
    """

    def __init__(
        self,
        search_fn: Callable[[str, threading.Event], List[Any]],
        on_results: Callable[[str, List[Any]], None],
        delay: float = SEARCH_DEBOUNCE_SECONDS,
        on_error: Optional[Callable[[str, Exception], None]] = None,
        timer_factory: Callable[..., threading.Timer] = threading.Timer,
    ):
        self.search_fn = search_fn
        self.on_results = on_results
        self.on_error = on_error
        self.delay = delay
        self.timer_factory = timer_factory
        self.query = ""
        self._timer = None
        self._abort: Optional[threading.Event] = None
        self._lock = threading.Lock()

    def _abort_pending(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._abort is not None:
            self._abort.set()
            self._abort = None

    def update(self, text: str) -> None:
        """New input text: abort what is pending and re-arm the debounce."""
        with self._lock:
            self._abort_pending()
            self.query = text
            if len(text.strip()) < MIN_SEARCH_QUERY_LENGTH:
                short = True
            else:
                short = False
                timer = self.timer_factory(self.delay, self._run, args=(text,))
                timer.daemon = True
                self._timer = timer
                timer.start()
        if short:
            self.on_results(text, [])

    def cancel(self) -> None:
        """Navigation away: drop the pending timer and abort the request."""
        with self._lock:
            self._abort_pending()

    def _run(self, text: str) -> None:
        abort = threading.Event()
        with self._lock:
            if text != self.query:
                return
            self._timer = None
            self._abort = abort

        try:
            results = self.search_fn(text, abort)
        except RetryCancelled:
            return
        except Exception as e:
            if abort.is_set():
                return
            logger.warning(f"Search for {text!r} failed: {e}")
            if self.on_error is not None:
                self.on_error(text, e)
            return

        with self._lock:
            stale = abort.is_set() or text != self.query
            if self._abort is abort:
                self._abort = None
        if stale:
            logger.debug(f"Discarding late results for {text!r}")
            return
        self.on_results(text, results)
