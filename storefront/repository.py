"""Product repository: filtered listings, lookups, counts and admin writes.

Every read runs under the retry policy and validates each row; rows that
fail validation are dropped with a warning so one corrupt record never
fails a whole listing.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, TypeVar
from urllib.parse import unquote

from pydantic import ValidationError

from storefront.config import PRODUCTS_COLLECTION, RECOMMENDED_SECTIONS
from storefront.db import ASCENDING, DESCENDING, DocumentSnapshot
from storefront.errors import (
    AggregationUnsupported,
    NotFoundError,
    ProductValidationError,
    StorageError,
    StoreError,
)
from storefront.logging_config import get_logger, log_store_event
from storefront.models import (
    Invalid,
    Product,
    ProductFields,
    decode_product,
    final_price,
    slugify,
    validation_messages,
)
from storefront.query_builder import QueryBuilder, snapshot_to_row
from storefront.retry import RetryPolicy

__all__ = [
    "SortOption",
    "ProductFilters",
    "ProductPage",
    "ProductRepository",
    "SORT_FIELDS",
]

logger = get_logger("repository")

T = TypeVar("T")


class SortOption(str, Enum):
    NAME = "name"
    PRICE_LOW = "price_low"
    PRICE_HIGH = "price_high"
    RATING = "rating"

    @classmethod
    def parse(cls, value: Any) -> "SortOption":
        """Map a raw value to a sort option; unknown values sort by rating."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            return cls.RATING


SORT_FIELDS = {
    SortOption.NAME: ("name", ASCENDING),
    SortOption.PRICE_LOW: ("price", ASCENDING),
    SortOption.PRICE_HIGH: ("price", DESCENDING),
    SortOption.RATING: ("rating", DESCENDING),
}


@dataclass
class ProductFilters:
    """Filter, sort and pagination options for product listings."""

    categories: List[str] = field(default_factory=list)
    subcategories: List[str] = field(default_factory=list)
    brands: List[str] = field(default_factory=list)
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    sort_by: SortOption = SortOption.RATING
    page_size: Optional[int] = None
    cursor_id: Optional[str] = None
    offset: Optional[int] = None

    def __post_init__(self):
        self.sort_by = SortOption.parse(self.sort_by)

    def without_pagination(self) -> "ProductFilters":
        return replace(self, page_size=None, cursor_id=None, offset=None)


@dataclass
class ProductPage:
    """One page of products plus the look-ahead result."""

    products: List[Product]
    has_more: bool
    last_product_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "products": [p.to_dict() for p in self.products],
            "hasMore": self.has_more,
            "lastProductId": self.last_product_id,
        }


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ProductRepository:
    """Domain-level product queries over a document store."""

    def __init__(
        self,
        store,
        retry_policy: Optional[RetryPolicy] = None,
        collection: str = PRODUCTS_COLLECTION,
    ):
        self.store = store
        self.retry_policy = retry_policy or RetryPolicy()
        self.collection = collection

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _run(self, operation: Callable[[], T]) -> T:
        return self.retry_policy.run(operation)

    def _builder(self) -> QueryBuilder:
        return QueryBuilder(self.store, self.collection)

    def _apply_predicates(self, builder: QueryBuilder, filters: ProductFilters) -> QueryBuilder:
        builder.where_any("category", filters.categories)
        builder.where_any("subCategory", filters.subcategories)
        builder.where_any("brand", filters.brands)
        builder.where("price", ">=", filters.min_price)
        builder.where("price", "<=", filters.max_price)
        return builder

    def _resolve_cursor(self, cursor_id: Optional[str]) -> Optional[DocumentSnapshot]:
        """Point lookup for a cursor id; unknown ids mean "no cursor"."""
        if not cursor_id:
            return None
        try:
            snapshot = self.store.get_document(self.collection, cursor_id)
        except (StoreError, NotFoundError) as e:
            logger.warning(f"Could not resolve cursor {cursor_id}: {e}")
            return None
        if not snapshot.exists:
            log_store_event(
                "cursor_miss",
                {"message": f"Cursor {cursor_id} no longer exists, fetching without cursor", "cursor_id": cursor_id},
                level=logging.INFO,
                logger_name="repository",
            )
            return None
        return snapshot

    def _build_listing(self, filters: ProductFilters, extra_rows: int = 0) -> QueryBuilder:
        builder = self._apply_predicates(self._builder(), filters)
        sort_field, direction = SORT_FIELDS[filters.sort_by]
        builder.order_by(sort_field, direction)

        cursor = self._resolve_cursor(filters.cursor_id)
        if cursor is not None:
            builder.start_after(cursor)
        else:
            builder.offset(filters.offset)

        if filters.page_size:
            builder.limit(filters.page_size + extra_rows)
        return builder

    def _decode_rows(self, rows: Iterable[Mapping[str, Any]]) -> List[Product]:
        products = []
        for row in rows:
            result = decode_product(row)
            if isinstance(result, Invalid):
                log_store_event(
                    "invalid_product",
                    {
                        "message": f"Invalid product skipped: {result.doc_id}: {result.reason}",
                        "product_id": result.doc_id,
                        "reason": result.reason,
                    },
                    level=logging.WARNING,
                    logger_name="repository",
                )
                continue
            products.append(result.product)
        return products

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def fetch_filtered(self, filters: Optional[ProductFilters] = None) -> List[Product]:
        """Fetch products matching filters, sorted and paginated."""
        filters = filters or ProductFilters()
        rows = self._run(lambda: self._build_listing(filters).execute())
        return self._decode_rows(rows)

    def fetch_by_category(
        self, category: str, subcategory: str, filters: Optional[ProductFilters] = None
    ) -> List[Product]:
        """Fetch products for a category/subcategory taken from a URL path."""
        filters = replace(
            filters or ProductFilters(),
            categories=[unquote(category)],
            subcategories=[unquote(subcategory)],
        )
        return self.fetch_filtered(filters)

    def fetch_page(self, filters: ProductFilters) -> ProductPage:
        """Fetch one page using a one-row look-ahead to compute ``has_more``."""
        page_size = filters.page_size or 0
        rows = self._run(lambda: self._build_listing(filters, extra_rows=1).execute())
        has_more = bool(page_size) and len(rows) > page_size
        if has_more:
            rows = rows[:page_size]
        # Cursor follows the last raw row so a dropped invalid row never stalls paging
        last_id = rows[-1]["id"] if rows else None
        return ProductPage(self._decode_rows(rows), has_more, last_id)

    def fetch_by_id(self, product_id: str) -> Optional[Product]:
        """Point lookup; absent or invalid rows return None."""
        if not product_id:
            return None
        snapshot = self._run(lambda: self.store.get_document(self.collection, product_id))
        if not snapshot.exists:
            return None
        result = decode_product(snapshot_to_row(snapshot))
        if isinstance(result, Invalid):
            logger.warning(f"Product {product_id} failed validation, treating as not found: {result.reason}")
            return None
        return result.product

    def fetch_by_slug(self, slug: str) -> Optional[Product]:
        """Look up by stored slug, falling back to slugs derived from names."""
        if not slug:
            return None
        builder = self._builder().where("slug", "==", slug).limit(1)
        products = self._decode_rows(self._run(builder.execute))
        if products:
            return products[0]
        for product in self.fetch_all():
            if slugify(product.name) == slug:
                return product
        return None

    def fetch_by_slugs(self, slugs: Iterable[str]) -> Dict[str, Optional[Product]]:
        """Resolve cart slugs; unknown slugs map to None."""
        wanted = list(dict.fromkeys(s for s in slugs if s))
        found: Dict[str, Optional[Product]] = {slug: None for slug in wanted}
        if not wanted:
            return found
        for product in self.fetch_all():
            for candidate in (product.slug, slugify(product.name)):
                if candidate in found and found[candidate] is None:
                    found[candidate] = product
        return found

    def fetch_recommended(self, limit: Optional[int] = None) -> List[Product]:
        builder = (
            self._builder()
            .where("isRecommended", "==", True)
            .order_by("rating", DESCENDING)
            .limit(limit)
        )
        return self._decode_rows(self._run(builder.execute))

    def fetch_categorized_recommended(self, per_section: int = 10) -> Dict[str, List[Product]]:
        """Homepage sections: recommended products per headline category."""
        sections: Dict[str, List[Product]] = {}
        for key, category in RECOMMENDED_SECTIONS.items():
            builder = (
                self._builder()
                .where("isRecommended", "==", True)
                .where("category", "==", category)
                .order_by("rating", DESCENDING)
                .limit(per_section)
            )
            sections[key] = self._decode_rows(self._run(builder.execute))
        return sections

    def fetch_all(self) -> List[Product]:
        """Every valid product, unordered (search snapshot source)."""
        return self._decode_rows(self._run(self._builder().execute))

    def count(self, filters: Optional[ProductFilters] = None) -> int:
        """Count matching products, falling back to a full fetch without aggregation."""
        filters = filters or ProductFilters()
        builder = self._apply_predicates(self._builder(), filters)
        try:
            return self._run(builder.count)
        except AggregationUnsupported as e:
            log_store_event(
                "count_fallback",
                {
                    "message": "Aggregation count unsupported, counting fetched rows",
                    "reason": str(e),
                },
                level=logging.WARNING,
                logger_name="repository",
            )
            return len(self._run(lambda: builder.build_filtered().get()))

    def list_for_admin(
        self,
        search: Optional[str] = None,
        category: Optional[str] = None,
        sub_category: Optional[str] = None,
        brand: Optional[str] = None,
        page_size: int = 24,
        start_after_id: Optional[str] = None,
    ) -> ProductPage:
        """Newest-first admin listing with a name-prefix search."""
        builder = (
            self._builder()
            .where("category", "==", category or None)
            .where("subCategory", "==", sub_category or None)
            .where("brand", "==", brand or None)
        )
        if search:
            term = search.strip()
            builder.where("name", ">=", term).where("name", "<=", term + "\uf8ff")
        builder.order_by("createdAt", DESCENDING)
        builder.start_after(self._resolve_cursor(start_after_id))
        builder.limit(page_size + 1)

        rows = self._run(builder.execute)
        has_more = len(rows) > page_size
        rows = rows[:page_size]
        last_id = rows[-1]["id"] if rows else None
        return ProductPage(self._decode_rows(rows), has_more, last_id)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    @staticmethod
    def validate_input(data: Mapping[str, Any]) -> ProductFields:
        """Validate an admin payload, raising ProductValidationError with field messages."""
        try:
            return ProductFields.model_validate(dict(data))
        except ValidationError as e:
            raise ProductValidationError("Validation failed", validation_messages(e)) from e

    @staticmethod
    def _to_document(fields: ProductFields) -> Dict[str, Any]:
        doc = fields.to_document()
        doc["price"] = final_price(fields.actual_price, fields.price, fields.discount_percentage)
        doc["slug"] = fields.slug or slugify(fields.name)
        return doc

    def create_product(self, data: Mapping[str, Any]) -> Product:
        """Phase one of product creation: persist without images to get an id."""
        fields = self.validate_input(data)
        doc = self._to_document(fields)
        doc["images"] = []
        doc["image"] = ""
        doc["createdAt"] = doc["updatedAt"] = _now()

        product_id = self.store.add_document(self.collection, doc)
        logger.info(f"Created product {product_id} ({fields.name})")
        return Product.model_validate({**doc, "id": product_id})

    def import_product(self, data: Mapping[str, Any], product_id: Optional[str] = None) -> Product:
        """Store a complete product (images included), e.g. from a bulk import."""
        fields = self.validate_input(data)
        doc = self._to_document(fields)
        now = _now()
        doc["createdAt"] = doc.get("createdAt") or now
        doc["updatedAt"] = now
        if product_id:
            self._run(lambda: self.store.set_document(self.collection, product_id, doc))
        else:
            product_id = self.store.add_document(self.collection, doc)
        return Product.model_validate({**doc, "id": product_id})

    def update_product(self, product_id: str, data: Mapping[str, Any]) -> Product:
        """Replace all mutable fields of an existing product."""
        if not product_id:
            raise ProductValidationError("Product ID is required", {"id": ["Product ID is required"]})
        fields = self.validate_input(data)

        existing = self._run(lambda: self.store.get_document(self.collection, product_id))
        if not existing.exists:
            raise NotFoundError(f"Product {product_id} not found")

        doc = self._to_document(fields)
        doc["createdAt"] = existing.get("createdAt") or _now()
        doc["updatedAt"] = _now()
        self._run(lambda: self.store.set_document(self.collection, product_id, doc))
        logger.info(f"Updated product {product_id}")
        return Product.model_validate({**doc, "id": product_id})

    def set_images(self, product_id: str, images: List[str], image: str) -> Product:
        """Patch image fields only (phase two of creation, image removal)."""
        patch = {"images": list(images), "image": image, "updatedAt": _now()}
        self._run(lambda: self.store.update_document(self.collection, product_id, patch))
        product = self.fetch_by_id(product_id)
        if product is None:
            raise NotFoundError(f"Product {product_id} not found after image update")
        return product

    def delete_product(self, product_id: str) -> None:
        existing = self._run(lambda: self.store.get_document(self.collection, product_id))
        if not existing.exists:
            raise NotFoundError(f"Product {product_id} not found")
        self._run(lambda: self.store.delete_document(self.collection, product_id))
        logger.info(f"Deleted product {product_id}")

    def create_product_with_images(
        self,
        data: Mapping[str, Any],
        images: Iterable[Any],
        thumbnail: Optional[Any],
        storage,
    ) -> Product:
        """Two-phase create: record first, then uploads keyed by its id, then patch.

        If an upload or the patch fails, the uploaded objects and the record
        are removed again before the error is re-raised.
        """
        product = self.create_product(data)
        uploaded: List[str] = []
        try:
            image_urls = []
            for upload in images:
                url = storage.upload_product_image(product.id, upload)
                uploaded.append(url)
                image_urls.append(url)

            if thumbnail is not None:
                thumbnail_url = storage.upload_product_thumbnail(product.id, thumbnail)
                uploaded.append(thumbnail_url)
            else:
                thumbnail_url = image_urls[0] if image_urls else ""

            return self.set_images(product.id, image_urls, thumbnail_url)
        except Exception as e:
            logger.error(f"Product {product.id} image step failed, rolling back: {e}")
            self._rollback_create(product.id, uploaded, storage)
            raise

    def _rollback_create(self, product_id: str, uploaded: List[str], storage) -> None:
        for url in uploaded:
            try:
                storage.delete_url(url)
            except StorageError as e:
                logger.warning(f"Could not delete uploaded object {url}: {e}")
        try:
            self.store.delete_document(self.collection, product_id)
        except StoreError as e:
            logger.error(f"Could not delete partially created product {product_id}: {e}")
        log_store_event(
            "create_rolled_back",
            {"product_id": product_id, "deleted_objects": len(uploaded)},
            level=logging.WARNING,
            logger_name="repository",
        )
