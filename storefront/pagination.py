"""Hybrid cursor/offset pagination for category listings.

Moving forward by exactly one page with a known last-record id resumes
after that record (cursor mode). Every other move, backward steps, jumps
and deep links, recomputes an explicit row offset. Changing any filter or
the sort order returns to page 1 and forgets the cursor, because a cursor
is only meaningful for the exact filter/sort it was produced under.
"""

import math
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union
from urllib.parse import unquote, urlencode

from storefront.config import DEFAULT_LISTING_PAGE_SIZE, PAGE_WINDOW_SIZE
from storefront.loading_events import LoadingEvent, LoadingStateCoordinator
from storefront.logging_config import get_logger
from storefront.models import Product
from storefront.repository import ProductFilters, ProductRepository, SortOption

__all__ = [
    "CursorRequest",
    "OffsetRequest",
    "PageRequest",
    "decide_page_request",
    "PageWindow",
    "page_window",
    "total_pages",
    "count_label",
    "ListingParams",
    "PaginationController",
    "ListingResult",
    "resolve_listing",
]

logger = get_logger("pagination")

VIEW_MODES = ("grid", "list")


@dataclass(frozen=True)
class CursorRequest:
    """Resume after the record with ``last_id``."""

    last_id: str
    kind: str = "cursor"


@dataclass(frozen=True)
class OffsetRequest:
    """Skip ``page_offset`` rows from the start of the ordered result."""

    page_offset: int
    kind: str = "offset"


PageRequest = Union[CursorRequest, OffsetRequest]


def decide_page_request(
    current_page: int,
    requested_page: int,
    page_size: int,
    last_id: Optional[str] = None,
) -> PageRequest:
    """Choose cursor or offset mode for a page change.

    Only a sequential "next" with a known last id uses the cursor;
    backward moves and jumps always fall back to an offset.
    """
    if requested_page < 1:
        raise ValueError(f"Page must be >= 1, got {requested_page}")
    if requested_page == current_page + 1 and last_id:
        return CursorRequest(last_id)
    return OffsetRequest((requested_page - 1) * page_size)


def total_pages(total_items: int, page_size: int) -> int:
    if page_size <= 0 or total_items <= 0:
        return 0
    return math.ceil(total_items / page_size)


@dataclass(frozen=True)
class PageWindow:
    pages: List[int]
    show_first: bool
    show_last: bool
    leading_ellipsis: bool
    trailing_ellipsis: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pages": self.pages,
            "showFirst": self.show_first,
            "showLast": self.show_last,
            "leadingEllipsis": self.leading_ellipsis,
            "trailingEllipsis": self.trailing_ellipsis,
        }


def page_window(current_page: int, pages_total: int, size: int = PAGE_WINDOW_SIZE) -> PageWindow:
    """Up to ``size`` page numbers centred on the current page."""
    if pages_total <= 0:
        return PageWindow([], False, False, False, False)

    current = min(max(current_page, 1), pages_total)
    half = size // 2
    start = max(1, current - half)
    end = min(pages_total, current + half)

    if end - start < size - 1:
        if start == 1:
            end = min(size, pages_total)
        elif end == pages_total:
            start = max(1, pages_total - size + 1)

    pages = list(range(start, end + 1))
    return PageWindow(
        pages=pages,
        show_first=pages[0] > 1,
        show_last=pages[-1] < pages_total,
        leading_ellipsis=pages[0] > 2,
        trailing_ellipsis=pages[-1] < pages_total - 1,
    )


def count_label(
    total_items: int,
    page: int,
    page_size: int,
    shown: int,
    category: Optional[str] = None,
    subcategory: Optional[str] = None,
) -> str:
    """Human-readable range label, e.g. "Showing 25 to 48 of 60 products in Mountain"."""
    if total_items <= 0:
        return ""
    start = min(page_size * (page - 1) + 1, total_items)
    end = min(page_size * (page - 1) + shown, total_items)
    label = f"Showing {start} to {end} of {total_items} products"
    scope = subcategory or category
    return f"{label} in {scope}" if scope else label


def _get_list(args: Mapping[str, Any], key: str) -> List[str]:
    if hasattr(args, "getlist"):
        return [v for v in args.getlist(key) if v != ""]
    value = args.get(key)
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value if v != ""]
    return [str(value)] if value != "" else []


def _get_one(args: Mapping[str, Any], key: str) -> Optional[str]:
    values = _get_list(args, key)
    return values[-1] if values else None


def _format_number(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)


@dataclass(frozen=True)
class ListingParams:
    """Query parameters of a category listing page."""

    brands: Tuple[str, ...] = ()
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    sort: SortOption = SortOption.RATING
    view: str = "grid"
    page: int = 1
    last_id: Optional[str] = None
    is_valid: bool = field(default=True, compare=False)

    @classmethod
    def parse(cls, args: Mapping[str, Any]) -> "ListingParams":
        """Parse request args; any invalid value falls back to all defaults."""
        try:
            min_price = _get_one(args, "minPrice")
            max_price = _get_one(args, "maxPrice")
            sort = _get_one(args, "sort") or SortOption.RATING.value
            view = _get_one(args, "view") or "grid"
            page = _get_one(args, "page")

            if sort not in {option.value for option in SortOption}:
                raise ValueError(f"Unknown sort: {sort}")
            if view not in VIEW_MODES:
                raise ValueError(f"Unknown view: {view}")

            params = cls(
                brands=tuple(_get_list(args, "brand")),
                min_price=float(min_price) if min_price is not None else None,
                max_price=float(max_price) if max_price is not None else None,
                sort=SortOption(sort),
                view=view,
                page=int(page) if page is not None else 1,
                last_id=_get_one(args, "lastId"),
            )
            if params.page < 1:
                raise ValueError(f"Page must be >= 1, got {params.page}")
            for price in (params.min_price, params.max_price):
                if price is not None and (math.isnan(price) or price < 0):
                    raise ValueError(f"Invalid price bound: {price}")
            return params
        except ValueError as e:
            logger.warning(f"Listing parameter validation error: {e}")
            return cls(is_valid=False)

    def encode(self) -> str:
        """Query string for these params (``brand`` repeated, empty values omitted)."""
        pairs: List[Tuple[str, str]] = [("brand", brand) for brand in self.brands]
        if self.min_price is not None:
            pairs.append(("minPrice", _format_number(self.min_price)))
        if self.max_price is not None:
            pairs.append(("maxPrice", _format_number(self.max_price)))
        pairs.append(("sort", self.sort.value))
        if self.view != "grid":
            pairs.append(("view", self.view))
        pairs.append(("page", str(self.page)))
        if self.last_id:
            pairs.append(("lastId", self.last_id))
        return urlencode(pairs)

    def page_request(self, page_size: int) -> PageRequest:
        """Server-side reading: a ``lastId`` means cursor mode."""
        if self.last_id:
            return CursorRequest(self.last_id)
        return OffsetRequest((self.page - 1) * page_size)

    def filter_key(self) -> Tuple[Any, ...]:
        """Everything a cursor depends on."""
        return (tuple(sorted(self.brands)), self.min_price, self.max_price, self.sort)

    def to_filters(self, page_size: int) -> ProductFilters:
        return ProductFilters(
            brands=list(self.brands),
            min_price=self.min_price,
            max_price=self.max_price,
            sort_by=self.sort,
            page_size=page_size,
            cursor_id=self.last_id,
            offset=(self.page - 1) * page_size,
        )


class PaginationController:
    """Client-side pagination state for one listing surface.

    Every navigation method emits its loading event first and then
    returns the new ListingParams to put in the URL.
    """

    def __init__(
        self,
        params: Optional[ListingParams] = None,
        page_size: int = DEFAULT_LISTING_PAGE_SIZE,
        coordinator: Optional[LoadingStateCoordinator] = None,
        pages_total: Optional[int] = None,
    ):
        self.params = params or ListingParams()
        self.page_size = page_size
        self.coordinator = coordinator or LoadingStateCoordinator()
        self.current_page = self.params.page
        self.last_id: Optional[str] = None
        self.pages_total = pages_total
        self.pending_page: Optional[int] = None

    def page_loaded(
        self,
        page: int,
        last_id: Optional[str],
        total_items: Optional[int] = None,
        requested: Optional[ListingParams] = None,
    ) -> None:
        """Record a completed fetch: its page, last record id and total size.

        ``requested`` is the ListingParams the fetch was issued with. Responses
        fetched under a different filter set, or for a page other than the one
        in flight, are stale and ignored.
        """
        if requested is not None and requested.filter_key() != self.params.filter_key():
            logger.debug(f"Ignoring page {page} fetched under superseded filters")
            return
        if self.pending_page is not None and page != self.pending_page:
            logger.debug(f"Ignoring stale page {page} (waiting for {self.pending_page})")
            return
        self.current_page = page
        self.last_id = last_id
        self.pending_page = None
        if total_items is not None:
            self.pages_total = total_pages(total_items, self.page_size)

    def is_disabled(self, page: int) -> bool:
        return self.pending_page == page

    @property
    def has_next(self) -> bool:
        return self.pages_total is None or self.current_page < self.pages_total

    @property
    def has_previous(self) -> bool:
        return self.current_page > 1

    def window(self) -> PageWindow:
        return page_window(self.current_page, self.pages_total or 0)

    def go_to(self, page: int) -> ListingParams:
        if page < 1 or (self.pages_total and page > self.pages_total):
            raise ValueError(f"Page {page} is out of range")
        if page == self.current_page and self.pending_page is None:
            return self.params

        request = decide_page_request(self.current_page, page, self.page_size, self.last_id)
        self.coordinator.emit(LoadingEvent.PAGINATION_START)
        self.pending_page = page
        last_id = request.last_id if isinstance(request, CursorRequest) else None
        self.params = replace(self.params, page=page, last_id=last_id)
        logger.debug(f"Navigating to page {page} using {request.kind} mode")
        return self.params

    def next(self) -> ListingParams:
        return self.go_to(self.current_page + 1)

    def previous(self) -> ListingParams:
        return self.go_to(self.current_page - 1)

    def _reset(self, kind: LoadingEvent, **changes: Any) -> ListingParams:
        self.coordinator.emit(kind)
        self.params = replace(self.params, page=1, last_id=None, **changes)
        self.current_page = 1
        self.last_id = None
        self.pending_page = 1
        return self.params

    def apply_filters(self, brands: Optional[List[str]] = None) -> ListingParams:
        return self._reset(LoadingEvent.FILTER_START, brands=tuple(brands or ()))

    def apply_price_range(self, min_price: Optional[float], max_price: Optional[float]) -> ListingParams:
        return self._reset(LoadingEvent.PRICE_FILTER_START, min_price=min_price, max_price=max_price)

    def apply_sort(self, sort: Any) -> ListingParams:
        return self._reset(LoadingEvent.FILTER_START, sort=SortOption.parse(sort))


@dataclass
class ListingResult:
    """Everything a category page needs to render one page of products."""

    products: List[Product]
    page: int
    page_size: int
    total_items: int
    last_product_id: Optional[str]
    has_more: bool
    mode: str
    category: str = ""
    subcategory: str = ""

    @property
    def pages_total(self) -> int:
        return total_pages(self.total_items, self.page_size)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "products": [p.to_dict() for p in self.products],
            "page": self.page,
            "pageSize": self.page_size,
            "totalCount": self.total_items,
            "totalPages": self.pages_total,
            "lastProductId": self.last_product_id,
            "hasMore": self.has_more,
            "mode": self.mode,
            "window": page_window(self.page, self.pages_total).to_dict(),
            "label": count_label(
                self.total_items, self.page, self.page_size, len(self.products),
                self.category, self.subcategory,
            ),
        }


def resolve_listing(
    repository: ProductRepository,
    category: str,
    subcategory: str,
    params: ListingParams,
    page_size: int = DEFAULT_LISTING_PAGE_SIZE,
) -> ListingResult:
    """Serve one listing page; an unresolvable ``lastId`` degrades to the offset."""
    category = unquote(category)
    subcategory = unquote(subcategory)
    filters = replace(params.to_filters(page_size), categories=[category], subcategories=[subcategory])

    total = repository.count(filters.without_pagination())
    page = repository.fetch_page(filters)
    mode = params.page_request(page_size).kind
    logger.debug(
        f"Listing {category}/{subcategory} page {params.page} ({mode}): "
        f"{len(page.products)} of {total}",
    )
    return ListingResult(
        products=page.products,
        page=params.page,
        page_size=page_size,
        total_items=total,
        last_product_id=page.last_product_id,
        has_more=page.has_more,
        mode=mode,
        category=category,
        subcategory=subcategory,
    )
