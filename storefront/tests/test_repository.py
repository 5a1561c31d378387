"""Tests for the product repository."""

import logging
from unittest.mock import MagicMock

import pytest

from storefront.db import SQLiteDocumentStore
from storefront.errors import NotFoundError, ProductValidationError, StorageError, StoreError
from storefront.repository import ProductFilters, ProductRepository, SortOption
from storefront.retry import RetryPolicy
from storefront.storage import Upload

from .conftest import seed_products


def ids(products):
    return [p.id for p in products]


def valid_payload(**overrides):
    payload = {
        "name": "Cannondale Trail 5",
        "category": "Bikes",
        "subCategory": "Mountain",
        "brand": "Cannondale",
        "actualPrice": 800.0,
        "discountPercentage": 25.0,
        "rating": 4.1,
    }
    payload.update(overrides)
    return payload


def invalid_warnings(caplog):
    return [
        r for r in caplog.records
        if r.name == "storefront.repository" and r.levelno == logging.WARNING
        and getattr(r, "event_type", None) == "invalid_product"
    ]


class TestSortOption:
    def test_unknown_value_falls_back_to_rating(self):
        assert SortOption.parse("cheapest") is SortOption.RATING
        assert ProductFilters(sort_by="bogus").sort_by is SortOption.RATING

    def test_known_value(self):
        assert SortOption.parse("price_low") is SortOption.PRICE_LOW


class TestFetchFiltered:
    """Filtered, sorted listings."""

    def test_default_sort_is_rating_descending(self, repository):
        products = repository.fetch_by_category("Bikes", "Mountain")
        assert ids(products) == ["p03", "p01", "p04", "p02", "p05"]

    def test_sort_price_low(self, repository):
        products = repository.fetch_by_category("Bikes", "Mountain", ProductFilters(sort_by="price_low"))
        assert ids(products) == ["p02", "p05", "p04", "p01", "p03"]

    def test_sort_name(self, repository):
        products = repository.fetch_by_category("Bikes", "Mountain", ProductFilters(sort_by="name"))
        assert [p.name for p in products] == sorted(p.name for p in products)

    def test_brand_and_price_filters(self, repository):
        filters = ProductFilters(brands=["Trek", "Giant"], min_price=950, max_price=1200)
        products = repository.fetch_by_category("Bikes", "Mountain", filters)
        assert sorted(ids(products)) == ["p01", "p04"]

    def test_url_encoded_path_segments(self, store, retry_policy):
        store.set_document("products", "h1", {
            "name": "Helmet", "category": "Safety Gear", "subCategory": "Helmets & Visors",
            "actualPrice": 80.0, "rating": 4.0,
        })
        repository = ProductRepository(store, retry_policy=retry_policy)
        products = repository.fetch_by_category("Safety%20Gear", "Helmets%20%26%20Visors")
        assert ids(products) == ["h1"]

    def test_offset_and_page_size(self, repository):
        filters = ProductFilters(categories=["Bikes"], subcategories=["Mountain"], page_size=2, offset=2)
        assert ids(repository.fetch_filtered(filters)) == ["p04", "p02"]


class TestSchemaRobustness:
    """Invalid rows are dropped, never fatal."""

    def test_one_malformed_row_in_ten(self, store, retry_policy, caplog):
        for i in range(9):
            store.set_document("products", f"ok{i}", {
                "name": f"Bike {i}", "category": "Bikes", "subCategory": "Road",
                "actualPrice": 500.0 + i, "rating": 4.0,
            })
        store.set_document("products", "broken", {
            "name": "Broken", "category": "Bikes", "subCategory": "Road",
            "actualPrice": "not a number", "rating": 4.0,
        })
        repository = ProductRepository(store, retry_policy=retry_policy)

        with caplog.at_level(logging.WARNING, logger="storefront.repository"):
            products = repository.fetch_filtered(ProductFilters(categories=["Bikes"]))

        assert len(products) == 9
        assert "broken" not in ids(products)
        assert len(invalid_warnings(caplog)) == 1

    def test_invalid_row_still_advances_cursor(self, store, retry_policy):
        store.set_document("products", "a", {
            "name": "A", "category": "Bikes", "subCategory": "Road", "actualPrice": 1.0, "rating": 5.0,
        })
        store.set_document("products", "b", {
            "name": "B", "category": "Bikes", "subCategory": "Road", "actualPrice": -1.0, "rating": 4.0,
        })
        store.set_document("products", "c", {
            "name": "C", "category": "Bikes", "subCategory": "Road", "actualPrice": 1.0, "rating": 3.0,
        })
        repository = ProductRepository(store, retry_policy=retry_policy)
        page = repository.fetch_page(ProductFilters(page_size=2))
        assert ids(page.products) == ["a"]
        assert page.last_product_id == "b"
        assert page.has_more is True


class TestFetchPage:
    """Look-ahead paging and cursors."""

    def test_first_page_has_more(self, repository):
        page = repository.fetch_page(ProductFilters(categories=["Bikes"], subcategories=["Mountain"], page_size=2))
        assert ids(page.products) == ["p03", "p01"]
        assert page.has_more is True
        assert page.last_product_id == "p01"

    def test_cursor_continues_after_last_id(self, repository):
        filters = ProductFilters(categories=["Bikes"], subcategories=["Mountain"], page_size=2, cursor_id="p01")
        page = repository.fetch_page(filters)
        assert ids(page.products) == ["p04", "p02"]
        assert page.has_more is True

    def test_last_page(self, repository):
        filters = ProductFilters(categories=["Bikes"], subcategories=["Mountain"], page_size=2, cursor_id="p02")
        page = repository.fetch_page(filters)
        assert ids(page.products) == ["p05"]
        assert page.has_more is False

    def test_unknown_cursor_falls_back_to_offset(self, repository, caplog):
        filters = ProductFilters(
            categories=["Bikes"], subcategories=["Mountain"], page_size=2, cursor_id="deleted", offset=2,
        )
        with caplog.at_level(logging.INFO, logger="storefront.repository"):
            page = repository.fetch_page(filters)
        assert ids(page.products) == ["p04", "p02"]
        assert any(getattr(r, "event_type", None) == "cursor_miss" for r in caplog.records)

    def test_to_dict(self, repository):
        page = repository.fetch_page(ProductFilters(brands=["Castelli"], page_size=5))
        data = page.to_dict()
        assert data["hasMore"] is False
        assert data["lastProductId"] == "p07"
        assert data["products"][0]["discountedPrice"] == 96.0


class TestLookups:
    """Point lookups by id and slug."""

    def test_fetch_by_id(self, repository):
        assert repository.fetch_by_id("p01").name == "Trek Marlin 7"

    def test_fetch_by_id_missing(self, repository):
        assert repository.fetch_by_id("nope") is None
        assert repository.fetch_by_id("") is None

    def test_fetch_by_id_invalid_row(self, store, retry_policy):
        store.set_document("products", "bad", {"name": "Bad"})
        assert ProductRepository(store, retry_policy=retry_policy).fetch_by_id("bad") is None

    def test_fetch_by_slug_derived_from_name(self, repository):
        assert repository.fetch_by_slug("kryptonite-lock").id == "p08"

    def test_fetch_by_stored_slug(self, repository, seeded_store):
        seeded_store.set_document("products", "p08", {"slug": "u-lock"}, merge=True)
        assert repository.fetch_by_slug("u-lock").id == "p08"

    def test_fetch_by_slugs_marks_unknown(self, repository):
        found = repository.fetch_by_slugs(["trek-marlin-7", "ghost-bike", "trek-marlin-7"])
        assert list(found) == ["trek-marlin-7", "ghost-bike"]
        assert found["trek-marlin-7"].id == "p01"
        assert found["ghost-bike"] is None


class TestRecommended:
    def test_fetch_recommended_sorted_by_rating(self, repository):
        products = repository.fetch_recommended()
        assert ids(products) == ["p01", "p06", "p07", "p02", "p08"]

    def test_fetch_recommended_limit(self, repository):
        assert len(repository.fetch_recommended(limit=2)) == 2

    def test_categorized_sections(self, repository):
        sections = repository.fetch_categorized_recommended(per_section=10)
        assert ids(sections["topBikes"]) == ["p01", "p06", "p02"]
        assert ids(sections["bestOfApparel"]) == ["p07"]
        assert ids(sections["popularAccessories"]) == ["p08"]


class TestCount:
    """Server-side count with a fetch fallback."""

    def test_count_with_filters(self, repository):
        filters = ProductFilters(categories=["Bikes"], subcategories=["Mountain"], brands=["Trek"])
        assert repository.count(filters) == 2

    def test_count_ignores_pagination(self, repository):
        filters = ProductFilters(categories=["Bikes"], page_size=1, offset=3)
        assert repository.count(filters.without_pagination()) == 6

    def test_count_falls_back_without_aggregation(self, tmp_path, retry_policy, caplog):
        store = SQLiteDocumentStore(str(tmp_path / "noagg.db"), supports_aggregation=False)
        seed_products(store)
        repository = ProductRepository(store, retry_policy=retry_policy)
        with caplog.at_level(logging.WARNING, logger="storefront.repository"):
            total = repository.count(ProductFilters(categories=["Bikes"], subcategories=["Mountain"]))
        assert total == 5
        assert any(getattr(r, "event_type", None) == "count_fallback" for r in caplog.records)

    def test_aggregation_failure_not_retried(self, tmp_path):
        store = SQLiteDocumentStore(str(tmp_path / "noagg.db"), supports_aggregation=False)
        store.collection = MagicMock(wraps=store.collection)
        repository = ProductRepository(store, retry_policy=RetryPolicy.immediate(max_attempts=3))
        assert repository.count() == 0
        # One count attempt plus one fallback fetch
        assert store.collection.call_count == 2


class TestRetries:
    """Store reads run under the retry policy."""

    def test_transient_store_error_retried(self, seeded_store):
        original = seeded_store.get_document
        calls = {"n": 0}

        def flaky(collection, doc_id):
            calls["n"] += 1
            if calls["n"] == 1:
                raise StoreError("unavailable", code="unavailable")
            return original(collection, doc_id)

        seeded_store.get_document = flaky
        repository = ProductRepository(seeded_store, retry_policy=RetryPolicy.immediate())
        assert repository.fetch_by_id("p01").id == "p01"
        assert calls["n"] == 2


class TestAdminListing:
    """Newest-first admin listing with prefix search."""

    def test_newest_first(self, repository):
        page = repository.list_for_admin(page_size=3)
        assert ids(page.products) == ["p08", "p07", "p06"]
        assert page.has_more is True

    def test_start_after_id(self, repository):
        page = repository.list_for_admin(page_size=3, start_after_id="p06")
        assert ids(page.products) == ["p05", "p04", "p03"]

    def test_name_prefix_search(self, repository):
        page = repository.list_for_admin(search=" Trek ")
        assert sorted(ids(page.products)) == ["p01", "p03", "p06"]
        assert page.has_more is False

    def test_filters(self, repository):
        page = repository.list_for_admin(category="Bikes", sub_category="Road")
        assert ids(page.products) == ["p06"]


class TestWrites:
    """Admin create, update and delete."""

    def test_create_stores_final_price_and_slug(self, repository, seeded_store):
        product = repository.create_product(valid_payload())
        stored = seeded_store.get_document("products", product.id).to_dict()
        assert stored["price"] == pytest.approx(600.0)
        assert stored["slug"] == "cannondale-trail-5"
        assert stored["images"] == []
        assert stored["createdAt"] == stored["updatedAt"]

    def test_create_rejects_invalid_payload(self, repository):
        with pytest.raises(ProductValidationError) as exc_info:
            repository.create_product(valid_payload(rating=9, name=""))
        errors = exc_info.value.first_errors()
        assert "rating" in errors
        assert "name" in errors

    def test_update_preserves_created_at(self, repository, seeded_store):
        product = repository.update_product("p02", valid_payload(name="Giant Talon 3"))
        stored = seeded_store.get_document("products", "p02").to_dict()
        assert product.name == "Giant Talon 3"
        assert stored["createdAt"] == "2024-01-02T00:00:00+00:00"
        assert stored["updatedAt"] != stored["createdAt"]

    def test_update_missing_product(self, repository):
        with pytest.raises(NotFoundError):
            repository.update_product("ghost", valid_payload())

    def test_update_requires_id(self, repository):
        with pytest.raises(ProductValidationError):
            repository.update_product("", valid_payload())

    def test_delete(self, repository):
        repository.delete_product("p08")
        assert repository.fetch_by_id("p08") is None
        with pytest.raises(NotFoundError):
            repository.delete_product("p08")

    def test_import_with_id(self, repository):
        product = repository.import_product(valid_payload(images=["a.jpg"], image="a.jpg"), product_id="imp1")
        assert repository.fetch_by_id("imp1").images == ["a.jpg"]
        assert product.id == "imp1"


class TestTwoPhaseCreate:
    """Record first, then uploads keyed by id, then patch."""

    def image(self, name="a.png"):
        return Upload(filename=name, content=b"png-bytes", content_type="image/png")

    def test_images_uploaded_under_product_id(self, repository, tmp_path):
        from storefront.storage import LocalObjectStorage

        storage = LocalObjectStorage(root=str(tmp_path / "uploads"), base_url="/uploads")
        product = repository.create_product_with_images(valid_payload(), [self.image(), self.image("b.png")], None, storage)

        assert len(product.images) == 2
        assert all(url.startswith(f"/uploads/products/{product.id}/images/") for url in product.images)
        assert product.image == product.images[0]

    def test_thumbnail_upload(self, repository, tmp_path):
        from storefront.storage import LocalObjectStorage

        storage = LocalObjectStorage(root=str(tmp_path / "uploads"), base_url="/uploads")
        product = repository.create_product_with_images(valid_payload(), [self.image()], self.image("t.png"), storage)
        assert product.image == f"/uploads/products/{product.id}/thumbnail.png"

    def test_failed_upload_rolls_back(self, repository, seeded_store):
        storage = MagicMock()
        storage.upload_product_image.side_effect = ["/uploads/first.png", StorageError("quota exceeded")]

        with pytest.raises(StorageError):
            repository.create_product_with_images(valid_payload(), [self.image(), self.image()], None, storage)

        storage.delete_url.assert_called_once_with("/uploads/first.png")
        remaining = [p.name for p in repository.fetch_all()]
        assert "Cannondale Trail 5" not in remaining

    def test_rollback_store_failure_keeps_upload_error(self, repository, seeded_store):
        from storefront.db import get_connection

        def fail_after_losing_table(product_id, upload):
            with get_connection(seeded_store.db_path) as conn:
                conn.execute("DROP TABLE documents")
                conn.commit()
            raise StorageError("quota exceeded")

        storage = MagicMock()
        storage.upload_product_image.side_effect = fail_after_losing_table

        with pytest.raises(StorageError, match="quota exceeded"):
            repository.create_product_with_images(valid_payload(), [self.image()], None, storage)
