"""Configuration and constants for the storefront catalog."""

import os
from typing import Dict

__all__ = [
    "PRODUCTS_COLLECTION",
    "CATEGORIES_COLLECTION",
    "CATEGORIES_DOC_ID",
    "STORE_BACKEND",
    "DB_PATH",
    "FIREBASE_CREDENTIALS",
    "FIREBASE_STORAGE_BUCKET",
    "DEFAULT_LISTING_PAGE_SIZE",
    "DEFAULT_API_PAGE_SIZE",
    "MAX_API_PAGE_SIZE",
    "DEFAULT_ADMIN_PAGE_SIZE",
    "MAX_ADMIN_PAGE_SIZE",
    "MAX_RETRIES",
    "RETRY_INITIAL_DELAY",
    "MAX_RETRY_BACKOFF",
    "RETRY_JITTER_RATIO",
    "RETRY_STATUS_CODES",
    "MIN_SEARCH_QUERY_LENGTH",
    "SEARCH_CACHE_TTL",
    "SUGGESTION_LIMIT",
    "SEARCH_DEBOUNCE_SECONDS",
    "ALGOLIA_APP_ID",
    "ALGOLIA_SEARCH_API_KEY",
    "ALGOLIA_INDEX_NAME",
    "ALGOLIA_TIMEOUT",
    "LOADING_SAFETY_TIMEOUT",
    "PAGE_WINDOW_SIZE",
    "BRAND_LOGO_BASE_URL",
    "RECOMMENDED_SECTIONS",
    "UPLOAD_DIR",
    "UPLOAD_BASE_URL",
    "MAX_UPLOAD_BYTES",
    "ALLOWED_IMAGE_TYPES",
]

# Document store layout
PRODUCTS_COLLECTION = "products"
CATEGORIES_COLLECTION = "categories"
CATEGORIES_DOC_ID = "all"

# Backend selection: "sqlite" for local development, "firestore" for production
STORE_BACKEND = os.getenv("STORE_BACKEND", "sqlite").lower()
DB_PATH = os.getenv("STORE_DB_PATH", "data/store.db")

# Firebase (only read when STORE_BACKEND=firestore or firebase auth/storage is used)
FIREBASE_CREDENTIALS = os.getenv("FIREBASE_CREDENTIALS")
FIREBASE_STORAGE_BUCKET = os.getenv("FIREBASE_STORAGE_BUCKET")

# Page sizes
DEFAULT_LISTING_PAGE_SIZE = 24
DEFAULT_API_PAGE_SIZE = 20
MAX_API_PAGE_SIZE = 100
DEFAULT_ADMIN_PAGE_SIZE = 24
MAX_ADMIN_PAGE_SIZE = 50

# Retry settings with exponential backoff
MAX_RETRIES = 3  # Total attempts, including the first one
RETRY_INITIAL_DELAY = 1.0  # Seconds before the first retry
MAX_RETRY_BACKOFF = 5.0  # Upper bound on a single backoff wait
RETRY_JITTER_RATIO = 0.1  # Up to 10% random jitter on top of the backoff
RETRY_STATUS_CODES = {408, 429, 500, 502, 503, 504}  # Status codes to retry on

# Search
MIN_SEARCH_QUERY_LENGTH = 2
SEARCH_CACHE_TTL = 5 * 60  # Seconds
SUGGESTION_LIMIT = 5
SEARCH_DEBOUNCE_SECONDS = 0.3

ALGOLIA_APP_ID = os.getenv("ALGOLIA_APP_ID")
ALGOLIA_SEARCH_API_KEY = os.getenv("ALGOLIA_SEARCH_API_KEY")
ALGOLIA_INDEX_NAME = os.getenv("ALGOLIA_INDEX_NAME", "search_index")
ALGOLIA_TIMEOUT = 10

# Listing UI coordination
LOADING_SAFETY_TIMEOUT = 3.0  # Seconds before a stuck loading state is cleared
PAGE_WINDOW_SIZE = 5

BRAND_LOGO_BASE_URL = os.getenv(
    "BRAND_LOGO_BASE_URL",
    "https://firebasestorage.googleapis.com/v0/b/letsridecycles.firebasestorage.app/o/brandLogos",
)

# Homepage sections: response key -> category name
RECOMMENDED_SECTIONS: Dict[str, str] = {
    "topBikes": "Bikes",
    "bestOfApparel": "Apparels",
    "popularAccessories": "Accessories",
}

# Object storage fallback for local development
UPLOAD_DIR = os.getenv("UPLOAD_DIR", "data/uploads")
UPLOAD_BASE_URL = os.getenv("UPLOAD_BASE_URL", "/uploads")
MAX_UPLOAD_BYTES = 5 * 1024 * 1024
ALLOWED_IMAGE_TYPES = {"image/jpeg", "image/png", "image/webp"}
