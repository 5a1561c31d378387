"""Bicycle storefront catalog: product listings, pagination and search."""

__version__ = "0.1.0"

# Re-export main components for convenient imports
from storefront.categories import CategoryService, CategoryStructure
from storefront.db import DocumentSnapshot, SQLiteDocumentStore
from storefront.errors import (
    AggregationUnsupported,
    CategoryError,
    NotFoundError,
    ProductValidationError,
    RetryCancelled,
    StorageError,
    StoreError,
    StorefrontError,
)
from storefront.loading_events import LoadingEvent, LoadingIndicator, LoadingStateCoordinator
from storefront.models import Decoded, Invalid, Product, decode_product, slugify
from storefront.pagination import (
    CursorRequest,
    ListingParams,
    OffsetRequest,
    PaginationController,
    decide_page_request,
    page_window,
    resolve_listing,
)
from storefront.query_builder import QueryBuilder
from storefront.repository import ProductFilters, ProductPage, ProductRepository, SortOption
from storefront.retry import RetryPolicy, is_retryable_error, retry
from storefront.search import ProductSnapshotCache, SearchIndexAdapter

__all__ = [
    # Version
    "__version__",
    # Errors
    "StorefrontError",
    "StoreError",
    "AggregationUnsupported",
    "RetryCancelled",
    "NotFoundError",
    "ProductValidationError",
    "CategoryError",
    "StorageError",
    # Models
    "Product",
    "Decoded",
    "Invalid",
    "decode_product",
    "slugify",
    # Store and queries
    "DocumentSnapshot",
    "SQLiteDocumentStore",
    "QueryBuilder",
    "retry",
    "RetryPolicy",
    "is_retryable_error",
    # Catalog
    "ProductRepository",
    "ProductFilters",
    "ProductPage",
    "SortOption",
    "CategoryService",
    "CategoryStructure",
    # Listing
    "CursorRequest",
    "OffsetRequest",
    "decide_page_request",
    "page_window",
    "ListingParams",
    "PaginationController",
    "resolve_listing",
    "LoadingEvent",
    "LoadingStateCoordinator",
    "LoadingIndicator",
    # Search
    "SearchIndexAdapter",
    "ProductSnapshotCache",
]
