"""Product search: Algolia index when configured, in-memory scoring otherwise.

The in-memory fallback keeps a full product snapshot with a TTL. A failed
reload serves the stale snapshot rather than failing the search.
"""

import logging
import time
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import requests

from storefront.config import (
    ALGOLIA_APP_ID,
    ALGOLIA_INDEX_NAME,
    ALGOLIA_SEARCH_API_KEY,
    ALGOLIA_TIMEOUT,
    MIN_SEARCH_QUERY_LENGTH,
    SEARCH_CACHE_TTL,
    SUGGESTION_LIMIT,
)
from storefront.errors import StorefrontError
from storefront.logging_config import get_logger, log_store_event
from storefront.models import Decoded, Product, decode_product
from storefront.retry import RetryPolicy

__all__ = [
    "AlgoliaSearchClient",
    "ProductSnapshotCache",
    "SearchIndexAdapter",
    "score_product",
    "suggest",
]

logger = get_logger("search")

PHRASE_SCORE = 100
TOKEN_SCORE = 50
NAME_BONUS = 75
BRAND_BONUS = 25


class AlgoliaSearchClient:
    """Minimal Algolia REST client for one index."""

    def __init__(
        self,
        app_id: str = ALGOLIA_APP_ID,
        api_key: str = ALGOLIA_SEARCH_API_KEY,
        index_name: str = ALGOLIA_INDEX_NAME,
        session: Optional[requests.Session] = None,
        timeout: float = ALGOLIA_TIMEOUT,
    ):
        if not app_id or not api_key:
            raise ValueError("Algolia app id and API key are required")
        self.app_id = app_id
        self.index_name = index_name
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            "X-Algolia-Application-Id": app_id,
            "X-Algolia-API-Key": api_key,
            "Content-Type": "application/json",
        })

    @property
    def url(self) -> str:
        return f"https://{self.app_id}-dsn.algolia.net/1/indexes/{self.index_name}/query"

    def query(
        self,
        query: str,
        hits_per_page: int = 10,
        page: int = 0,
        filters: Optional[Sequence[str]] = None,
        offset: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """Run a query and return hits mapped to product-shaped dicts.

        With ``offset`` the index returns ``hits_per_page`` hits starting at
        that position and ``page`` is not sent.
        """
        payload: Dict[str, Any] = {
            "query": query,
            "hitsPerPage": hits_per_page,
            "page": page,
            "attributesToRetrieve": ["*"],
            "typoTolerance": True,
            "facets": ["category", "subCategory", "brand"],
            "attributesToHighlight": ["name", "brand", "shortDescription"],
            "highlightPreTag": "<mark>",
            "highlightPostTag": "</mark>",
        }
        if filters:
            payload["filters"] = " AND ".join(filters)
        if offset is not None:
            payload.pop("page")
            payload["offset"] = offset
            payload["length"] = hits_per_page

        resp = self.session.post(self.url, json=payload, timeout=self.timeout)
        resp.raise_for_status()
        return [self._map_hit(hit) for hit in resp.json().get("hits", [])]

    @staticmethod
    def _map_hit(hit: Dict[str, Any]) -> Dict[str, Any]:
        mapped = {k: v for k, v in hit.items() if not k.startswith("_")}
        mapped["id"] = hit.get("objectID")
        if hit.get("image") and not hit.get("images"):
            mapped["images"] = [hit["image"]]
        return mapped


class ProductSnapshotCache:
    """Whole-catalog snapshot with a time-to-live.

    The (products, timestamp) pair is replaced in one assignment, so a
    reader never sees a half-built snapshot.
    """

    def __init__(self, ttl: float = SEARCH_CACHE_TTL, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self.clock = clock
        self._entry: Optional[Tuple[List[Product], float]] = None

    def get(self) -> Optional[List[Product]]:
        """Snapshot if still fresh, else None."""
        entry = self._entry
        if entry is None:
            return None
        products, timestamp = entry
        if self.clock() - timestamp >= self.ttl:
            return None
        return products

    def stale(self) -> Optional[List[Product]]:
        """Last snapshot regardless of age."""
        entry = self._entry
        return entry[0] if entry is not None else None

    def put(self, products: List[Product]) -> None:
        self._entry = (list(products), self.clock())

    def clear(self) -> None:
        self._entry = None


def _haystack(product: Product) -> str:
    parts = [
        product.name,
        product.brand,
        product.category,
        product.sub_category,
        product.short_description,
        product.details,
    ]
    return " ".join(p for p in parts if p).lower()


def score_product(product: Product, query: str) -> float:
    """Relevance of a product for a query; 0 means no match."""
    phrase = query.strip().lower()
    if not phrase:
        return 0.0
    tokens = phrase.split()
    haystack = _haystack(product)

    score = 0.0
    if phrase in haystack:
        score += PHRASE_SCORE
    matched = sum(1 for token in tokens if token in haystack)
    score += matched / len(tokens) * TOKEN_SCORE
    if phrase in product.name.lower():
        score += NAME_BONUS
    if product.brand and phrase in product.brand.lower():
        score += BRAND_BONUS
    return score


def suggest(products: Sequence[Product], query: str, limit: int = SUGGESTION_LIMIT) -> List[str]:
    """Names, brands and categories containing the query; prefix matches first, then shorter."""
    needle = query.strip().lower()
    if not needle:
        return []
    found = set()
    for product in products:
        for value in (product.name, product.brand, product.category, product.sub_category):
            if value and needle in value.lower():
                found.add(value)
    ranked = sorted(found, key=lambda v: (not v.lower().startswith(needle), len(v), v))
    return ranked[:limit]


class SearchIndexAdapter:
    """Search entry point used by the API and the CLI.

    Args:
        repository: ProductRepository providing the fallback snapshot
        index_client: Optional AlgoliaSearchClient; None means in-memory only
        cache: Snapshot cache (one per adapter unless shared explicitly)
        retry_policy: Policy for external index calls
    """

    def __init__(
        self,
        repository,
        index_client: Optional[AlgoliaSearchClient] = None,
        cache: Optional[ProductSnapshotCache] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self.repository = repository
        self.index_client = index_client
        self.cache = cache or ProductSnapshotCache()
        self.retry_policy = retry_policy or RetryPolicy()

    def snapshot(self) -> List[Product]:
        """Fresh cached snapshot, reloading on miss; stale data on reload failure."""
        cached = self.cache.get()
        if cached is not None:
            return cached
        try:
            products = self.repository.fetch_all()
        except Exception as e:
            stale = self.cache.stale()
            if stale is None:
                raise
            logger.warning(f"Search snapshot reload failed, serving stale cache: {e}")
            return stale
        self.cache.put(products)
        log_store_event(
            "search_cache_reload",
            {"message": f"Search snapshot reloaded ({len(products)} products)", "count": len(products)},
            level=logging.DEBUG,
            logger_name="search",
        )
        return products

    def _search_index(self, query: str, limit: int, offset: int) -> List[Product]:
        hits = self.retry_policy.run(lambda: self.index_client.query(query, hits_per_page=limit, offset=offset))
        products = []
        for hit in hits:
            result = decode_product(hit)
            if isinstance(result, Decoded):
                products.append(result.product)
            else:
                logger.warning(f"Skipping malformed search hit {result.doc_id}: {result.reason}")
        return products

    def search(self, query: str, limit: int = 10, offset: int = 0) -> List[Product]:
        query = (query or "").strip()
        if len(query) < MIN_SEARCH_QUERY_LENGTH:
            return []

        if self.index_client is not None:
            try:
                return self._search_index(query, limit, offset)
            except (requests.RequestException, StorefrontError, ValueError) as e:
                logger.warning(f"Search index unavailable, using in-memory scoring: {e}")

        scored = [(score_product(p, query), p) for p in self.snapshot()]
        ranked = sorted(
            (item for item in scored if item[0] > 0),
            key=lambda item: (item[0], item[1].rating),
            reverse=True,
        )
        return [product for _score, product in ranked[offset:offset + limit]]

    def suggestions(self, query: str, limit: int = SUGGESTION_LIMIT) -> List[str]:
        query = (query or "").strip()
        if len(query) < MIN_SEARCH_QUERY_LENGTH:
            return []
        return suggest(self.snapshot(), query, limit)
