"""Shared fixtures for the storefront test suite."""

import pytest

from storefront.categories import CategoryService
from storefront.db import SQLiteDocumentStore
from storefront.repository import ProductRepository
from storefront.retry import RetryPolicy

SAMPLE_PRODUCTS = {
    "p01": {
        "name": "Trek Marlin 7",
        "category": "Bikes",
        "subCategory": "Mountain",
        "brand": "Trek",
        "actualPrice": 1200.0,
        "discountPercentage": 10.0,
        "price": 1080.0,
        "rating": 4.6,
        "isRecommended": True,
        "shortDescription": "Trail hardtail with hydraulic brakes",
        "createdAt": "2024-01-01T00:00:00+00:00",
    },
    "p02": {
        "name": "Giant Talon 2",
        "category": "Bikes",
        "subCategory": "Mountain",
        "brand": "Giant",
        "actualPrice": 900.0,
        "price": 900.0,
        "rating": 4.2,
        "isRecommended": True,
        "createdAt": "2024-01-02T00:00:00+00:00",
    },
    "p03": {
        "name": "Trek Roscoe 6",
        "category": "Bikes",
        "subCategory": "Mountain",
        "brand": "Trek",
        "actualPrice": 1500.0,
        "price": 1500.0,
        "rating": 4.8,
        "createdAt": "2024-01-03T00:00:00+00:00",
    },
    "p04": {
        "name": "Giant Fathom 29",
        "category": "Bikes",
        "subCategory": "Mountain",
        "brand": "Giant",
        "actualPrice": 1000.0,
        "price": 1000.0,
        "rating": 4.2,
        "createdAt": "2024-01-04T00:00:00+00:00",
    },
    "p05": {
        "name": "Specialized Rockhopper",
        "category": "Bikes",
        "subCategory": "Mountain",
        "brand": "Specialized",
        "actualPrice": 1100.0,
        "price": 990.0,
        "discountPercentage": 10.0,
        "rating": 4.0,
        "createdAt": "2024-01-05T00:00:00+00:00",
    },
    "p06": {
        "name": "Trek Domane AL 2",
        "category": "Bikes",
        "subCategory": "Road",
        "brand": "Trek",
        "actualPrice": 1300.0,
        "price": 1300.0,
        "rating": 4.5,
        "isRecommended": True,
        "createdAt": "2024-01-06T00:00:00+00:00",
    },
    "p07": {
        "name": "Castelli Jersey",
        "category": "Apparels",
        "subCategory": "Jerseys",
        "brand": "Castelli",
        "actualPrice": 120.0,
        "price": 96.0,
        "discountPercentage": 20.0,
        "rating": 4.4,
        "isRecommended": True,
        "createdAt": "2024-01-07T00:00:00+00:00",
    },
    "p08": {
        "name": "Kryptonite Lock",
        "category": "Accessories",
        "subCategory": "Locks",
        "brand": "Kryptonite",
        "actualPrice": 60.0,
        "rating": 3.9,
        "isRecommended": True,
        "createdAt": "2024-01-08T00:00:00+00:00",
    },
}

CATEGORY_DOCUMENT = {
    "Bikes": {
        "subcategories": {
            "Mountain": {"brands": ["Giant", "Specialized", "Trek"]},
            "Road": {"brands": ["Trek"]},
        }
    },
    "Apparels": {"subcategories": {"Jerseys": {"brands": ["Castelli"]}}},
    "Accessories": {"subcategories": {"Locks": {"brands": ["Kryptonite"]}}},
}


def seed_products(store, products=None):
    for doc_id, doc in (products or SAMPLE_PRODUCTS).items():
        store.set_document("products", doc_id, dict(doc))


@pytest.fixture
def store(tmp_path):
    """Empty SQLite document store in a temporary file."""
    return SQLiteDocumentStore(str(tmp_path / "store.db"))


@pytest.fixture
def seeded_store(store):
    """Store holding the sample products and the category document."""
    seed_products(store)
    store.set_document("categories", "all", CATEGORY_DOCUMENT)
    return store


@pytest.fixture
def retry_policy():
    return RetryPolicy.immediate()


@pytest.fixture
def repository(seeded_store, retry_policy):
    return ProductRepository(seeded_store, retry_policy=retry_policy)


@pytest.fixture
def category_service(seeded_store, retry_policy):
    return CategoryService(seeded_store, retry_policy=retry_policy)


class ManualTimer:
    """threading.Timer stand-in fired explicitly by the test."""

    created = []

    def __init__(self, interval, function, args=None, kwargs=None):
        self.interval = interval
        self.function = function
        self.args = args or ()
        self.kwargs = kwargs or {}
        self.daemon = False
        self.started = False
        self.cancelled = False
        ManualTimer.created.append(self)

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        if not self.cancelled:
            self.function(*self.args, **self.kwargs)


@pytest.fixture
def manual_timers():
    """Collect ManualTimer instances created during a test."""
    ManualTimer.created = []
    yield ManualTimer
    ManualTimer.created = []
