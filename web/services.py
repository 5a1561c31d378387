"""Wiring of the storefront services the Flask app depends on."""

import logging
from dataclasses import dataclass
from typing import Any, Optional

from flask import current_app

from storefront.categories import CategoryService
from storefront.config import (
    ALGOLIA_APP_ID,
    ALGOLIA_INDEX_NAME,
    ALGOLIA_SEARCH_API_KEY,
    STORE_BACKEND,
)
from storefront.firestore import create_store
from storefront.repository import ProductRepository
from storefront.retry import RetryPolicy
from storefront.search import AlgoliaSearchClient, SearchIndexAdapter
from storefront.storage import FirebaseObjectStorage, LocalObjectStorage, ObjectStorage

from .config import ERROR_DB_PATH
from .error_logging import ErrorLogger

__all__ = ["Services", "build_services", "get_services"]

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Everything a request handler needs, built once per app."""

    repository: ProductRepository
    categories: CategoryService
    search: SearchIndexAdapter
    storage: ObjectStorage
    error_logger: ErrorLogger
    llm_client: Any = None


def build_services(
    store=None,
    storage: Optional[ObjectStorage] = None,
    retry_policy: Optional[RetryPolicy] = None,
    error_logger: Optional[ErrorLogger] = None,
    llm_client: Any = None,
) -> Services:
    """Build services from the environment, with overrides for tests."""
    store = store if store is not None else create_store()
    retry_policy = retry_policy or RetryPolicy()

    if storage is None:
        storage = FirebaseObjectStorage() if STORE_BACKEND == "firestore" else LocalObjectStorage()

    index_client = None
    if ALGOLIA_APP_ID and ALGOLIA_SEARCH_API_KEY:
        index_client = AlgoliaSearchClient(ALGOLIA_APP_ID, ALGOLIA_SEARCH_API_KEY, ALGOLIA_INDEX_NAME)
        logger.info(f"Search uses Algolia index {ALGOLIA_INDEX_NAME}")

    repository = ProductRepository(store, retry_policy=retry_policy)
    return Services(
        repository=repository,
        categories=CategoryService(store, retry_policy=retry_policy),
        search=SearchIndexAdapter(repository, index_client=index_client, retry_policy=retry_policy),
        storage=storage,
        error_logger=error_logger or ErrorLogger(ERROR_DB_PATH),
        llm_client=llm_client,
    )


def get_services() -> Services:
    return current_app.extensions["storefront"]
