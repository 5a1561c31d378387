"""Test public API endpoints."""

from unittest.mock import patch

from storefront.errors import StoreError


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json == {"status": "ok"}

    def test_request_id_header(self, client):
        response = client.get("/health", headers={"X-Request-ID": "abc123"})
        assert response.headers["X-Request-ID"] == "abc123"


class TestProductsEndpoint:
    """Test GET /api/products cursor pagination and filters."""

    def test_first_page(self, client):
        response = client.get("/api/products?categories=Bikes&sortBy=price_low&pageSize=2")
        assert response.status_code == 200
        data = response.json
        assert [p["id"] for p in data["products"]] == ["p02", "p05"]
        assert data["hasMore"] is True
        assert data["lastProductId"] == "p05"

    def test_next_page_uses_cursor(self, client):
        response = client.get(
            "/api/products?categories=Bikes&sortBy=price_low&pageSize=2&startAfterId=p05"
        )
        assert [p["id"] for p in response.json["products"]] == ["p04", "p01"]

    def test_brand_and_price_filters(self, client):
        response = client.get("/api/products?brands=Trek&minPrice=1100&maxPrice=1400")
        ids = {p["id"] for p in response.json["products"]}
        assert ids == {"p06"}

    def test_products_include_derived_fields(self, client):
        response = client.get("/api/products?brands=Castelli")
        product = response.json["products"][0]
        assert product["discountedPrice"] == 96.0
        assert product["roundedDiscountPercentage"] == 20
        assert product["brandLogo"].endswith("castelli.png?alt=media")

    def test_min_greater_than_max(self, client):
        response = client.get("/api/products?minPrice=500&maxPrice=100")
        assert response.status_code == 400
        assert response.json["error"] == "minPrice cannot be greater than maxPrice"

    def test_non_numeric_price(self, client):
        response = client.get("/api/products?minPrice=cheap")
        assert response.status_code == 400
        assert "minPrice" in response.json["error"]

    def test_page_size_bounds(self, client):
        assert client.get("/api/products?pageSize=0").status_code == 400
        assert client.get("/api/products?pageSize=101").status_code == 400
        assert client.get("/api/products?pageSize=100").status_code == 200

    def test_count(self, client):
        response = client.get("/api/products/count?categories=Bikes")
        assert response.json == {"count": 6}


class TestStoreErrorMapping:
    """Store failures surface as 403 / 503 / 500 with a logged error."""

    def _get_with_error(self, client, services, error):
        with patch.object(services.repository, "fetch_page", side_effect=error):
            return client.get("/api/products")

    def test_permission_denied(self, client, services):
        response = self._get_with_error(client, services, StoreError("denied", code="permission-denied"))
        assert response.status_code == 403

    def test_unavailable(self, client, services):
        response = self._get_with_error(client, services, StoreError("down", code="unavailable"))
        assert response.status_code == 503

    def test_failed_precondition(self, client, services):
        response = self._get_with_error(client, services, StoreError("index", code="failed-precondition"))
        assert response.status_code == 503

    def test_other_codes(self, client, services):
        response = self._get_with_error(client, services, StoreError("bad", code="invalid-argument"))
        assert response.status_code == 500
        errors = services.error_logger.get_errors(error_type="store_error")
        assert errors[0]["endpoint"] == "/api/products"

    def test_unexpected_error_logged_with_request_id(self, client, services):
        response = self._get_with_error(client, services, RuntimeError("boom"))
        assert response.status_code == 500
        request_id = response.json["request_id"]
        errors = services.error_logger.get_errors(request_id=request_id)
        assert errors[0]["error_type"] == "unexpected_error"
        assert errors[0]["error_message"] == "boom"


class TestProductDetail:
    def test_by_id(self, client):
        response = client.get("/api/products/p03")
        assert response.status_code == 200
        assert response.json["name"] == "Trek Roscoe 6"

    def test_unknown_id(self, client):
        response = client.get("/api/products/missing")
        assert response.status_code == 404
        assert response.json["error"] == "Product not found"

    def test_by_slug(self, client):
        response = client.get("/api/products/slug/trek-roscoe-6")
        assert response.json["id"] == "p03"

    def test_recommended_sections(self, client):
        response = client.get("/api/products/recommended")
        data = response.json
        assert [p["id"] for p in data["topBikes"]] == ["p01", "p06", "p02"]
        assert [p["id"] for p in data["bestOfApparel"]] == ["p07"]
        assert [p["id"] for p in data["popularAccessories"]] == ["p08"]


class TestCategoryListing:
    """Test GET /api/products/category/<category>/<subcategory>."""

    def test_first_page(self, client):
        response = client.get("/api/products/category/Bikes/Mountain?sort=price_low&pageSize=2")
        data = response.json
        assert [p["id"] for p in data["products"]] == ["p02", "p05"]
        assert data["totalCount"] == 5
        assert data["totalPages"] == 3
        assert data["mode"] == "offset"
        assert data["params"]["valid"] is True
        assert "page=2" in data["nextQuery"]
        assert "lastId=p05" in data["nextQuery"]
        assert data["previousQuery"] is None

    def test_cursor_page(self, client):
        response = client.get(
            "/api/products/category/Bikes/Mountain?sort=price_low&pageSize=2&page=2&lastId=p05"
        )
        data = response.json
        assert data["mode"] == "cursor"
        assert [p["id"] for p in data["products"]] == ["p04", "p01"]
        assert "lastId" not in data["previousQuery"]

    def test_offset_jump(self, client):
        response = client.get("/api/products/category/Bikes/Mountain?sort=price_low&pageSize=2&page=3")
        data = response.json
        assert [p["id"] for p in data["products"]] == ["p03"]
        assert data["hasMore"] is False
        assert data["nextQuery"] is None

    def test_invalid_params_fall_back(self, client):
        response = client.get("/api/products/category/Bikes/Mountain?sort=bogus&page=2")
        data = response.json
        assert response.status_code == 200
        assert data["params"]["valid"] is False
        assert data["page"] == 1
        assert len(data["products"]) == 5


class TestCategoriesEndpoint:
    def test_categories(self, client):
        response = client.get("/api/categories")
        assert response.status_code == 200
        data = response.json["data"]
        assert data["subcategoriesByCategory"]["Bikes"] == ["Mountain", "Road"]
        assert "Kryptonite" in data["allBrands"]

    def test_missing_document(self, client, services):
        services.categories.store.delete_document("categories", "all")
        response = client.get("/api/categories")
        assert response.status_code == 404


class TestSearchEndpoint:
    def test_query_required(self, client):
        response = client.get("/api/search")
        assert response.status_code == 400
        assert response.json["error"] == "Query parameter is required"

    def test_search_products(self, client):
        response = client.get("/api/search?q=trek")
        ids = {p["id"] for p in response.json["products"]}
        assert ids == {"p01", "p03", "p06"}

    def test_limit(self, client):
        response = client.get("/api/search?q=trek&limit=1")
        assert len(response.json["products"]) == 1

    def test_suggestions(self, client):
        response = client.get("/api/search?q=tre&type=suggestions")
        assert response.json["suggestions"][0] == "Trek"

    def test_short_query_returns_nothing(self, client):
        response = client.get("/api/search?q=t")
        assert response.json == {"products": []}


class TestCartEndpoint:
    def test_resolves_slugs_in_order(self, client):
        response = client.post("/api/cart", json={"slugs": ["kryptonite-lock", "gone", "trek-marlin-7"]})
        data = response.json
        assert data[0]["id"] == "p08"
        assert data[1] is None
        assert data[2]["id"] == "p01"

    def test_invalid_body(self, client):
        response = client.post("/api/cart", json={"slugs": "trek-marlin-7"})
        assert response.status_code == 400
        assert response.json["error"] == "Invalid request body. Expected an array of slugs."
