"""Test admin API endpoints."""

import io
import json
from pathlib import Path

import pytest

from storefront.config import MAX_UPLOAD_BYTES
from web.app import create_app

from .conftest import ADMIN_TOKEN, png_file

NEW_PRODUCT = {
    "name": "Scott Scale 970",
    "category": "Bikes",
    "subCategory": "Mountain",
    "brand": "Scott",
    "actualPrice": 200.0,
    "discountPercentage": 25.0,
    "rating": 4.1,
}


class TestAuthentication:
    """Admin routes require a bearer token."""

    def test_missing_token(self, client):
        response = client.get("/api/admin/verify")
        assert response.status_code == 401
        assert response.json == {"error": "Not authenticated"}

    def test_wrong_token(self, client):
        response = client.get("/api/admin/verify", headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401

    def test_valid_token(self, client, admin_headers):
        response = client.get("/api/admin/verify", headers=admin_headers)
        assert response.status_code == 200
        assert response.json["message"] == "Login successful"

    def test_unconfigured_token_denies_everything(self, services):
        app = create_app(services=services, config={"TESTING": True, "ADMIN_TOKEN": None})
        with app.test_client() as client:
            response = client.get("/api/admin/verify", headers={"Authorization": f"Bearer {ADMIN_TOKEN}"})
        assert response.status_code == 401

    def test_every_admin_route_is_guarded(self, client):
        for method, url in [
            ("get", "/api/admin/products"),
            ("post", "/api/admin/products"),
            ("put", "/api/admin/products"),
            ("delete", "/api/admin/products?id=p01"),
            ("get", "/api/admin/brands"),
            ("post", "/api/admin/brands"),
            ("delete", "/api/admin/brands"),
            ("get", "/api/admin/categories"),
            ("post", "/api/admin/upload"),
        ]:
            assert getattr(client, method)(url).status_code == 401, url


class TestAdminProductList:
    def test_newest_first(self, client, admin_headers):
        response = client.get("/api/admin/products?pageSize=2", headers=admin_headers)
        data = response.json
        assert [p["id"] for p in data["products"]] == ["p08", "p07"]
        assert data["hasMore"] is True
        assert data["lastProductId"] == "p07"

    def test_next_page(self, client, admin_headers):
        response = client.get("/api/admin/products?pageSize=2&startAfterId=p07", headers=admin_headers)
        assert [p["id"] for p in response.json["products"]] == ["p06", "p05"]

    def test_name_prefix_search(self, client, admin_headers):
        response = client.get("/api/admin/products?search=Trek", headers=admin_headers)
        assert [p["id"] for p in response.json["products"]] == ["p06", "p03", "p01"]

    def test_brand_filter(self, client, admin_headers):
        response = client.get("/api/admin/products?brand=Giant", headers=admin_headers)
        assert [p["id"] for p in response.json["products"]] == ["p04", "p02"]

    @pytest.mark.parametrize("page_size", ["0", "51", "many"])
    def test_invalid_page_size(self, client, admin_headers, page_size):
        response = client.get(f"/api/admin/products?pageSize={page_size}", headers=admin_headers)
        assert response.status_code == 400
        assert response.json["error"] == "Invalid parameters"


class TestAdminProductWrites:
    def test_create_json(self, client, admin_headers, services):
        response = client.post("/api/admin/products", json=NEW_PRODUCT, headers=admin_headers)
        assert response.status_code == 201
        data = response.json
        assert data["message"] == "Product created successfully"
        stored = services.repository.fetch_by_id(data["id"])
        assert stored.price == 150.0
        assert stored.slug == "scott-scale-970"

    def test_create_json_with_image_urls(self, client, admin_headers, services):
        payload = {**NEW_PRODUCT, "images": ["/uploads/uploads/a.png", "/uploads/uploads/b.png"]}
        response = client.post("/api/admin/products", json=payload, headers=admin_headers)
        product = services.repository.fetch_by_id(response.json["id"])
        assert product.images == payload["images"]
        assert product.image == "/uploads/uploads/a.png"

    def test_create_validation_error(self, client, admin_headers, services):
        payload = {k: v for k, v in NEW_PRODUCT.items() if k != "name"}
        response = client.post("/api/admin/products", json=payload, headers=admin_headers)
        assert response.status_code == 400
        assert response.json["error"] == "Validation failed"
        assert "name" in response.json["details"]
        assert services.repository.count() == 8

    def test_create_multipart_stores_images_under_product(self, client, admin_headers, services, tmp_path):
        response = client.post(
            "/api/admin/products",
            data={
                "product": json.dumps(NEW_PRODUCT),
                "images": [png_file("a.png"), png_file("b.png")],
            },
            content_type="multipart/form-data",
            headers=admin_headers,
        )
        assert response.status_code == 201
        product_id = response.json["id"]
        product = services.repository.fetch_by_id(product_id)
        assert len(product.images) == 2
        assert all(url.startswith(f"/uploads/products/{product_id}/images/") for url in product.images)
        assert product.image == product.images[0]
        assert len(list((tmp_path / "uploads" / "products" / product_id).rglob("*.png"))) == 2

    def test_create_multipart_rejects_bad_file_type(self, client, admin_headers, services):
        response = client.post(
            "/api/admin/products",
            data={
                "product": json.dumps(NEW_PRODUCT),
                "images": [(png_file()[0], "notes.txt", "text/plain")],
            },
            content_type="multipart/form-data",
            headers=admin_headers,
        )
        assert response.status_code == 400
        assert "Invalid file type" in response.json["error"]
        assert services.repository.count() == 8

    def test_update(self, client, admin_headers, services):
        payload = {**NEW_PRODUCT, "id": "p01", "name": "Trek Marlin 8"}
        response = client.put("/api/admin/products", json=payload, headers=admin_headers)
        assert response.status_code == 200
        assert services.repository.fetch_by_id("p01").name == "Trek Marlin 8"

    def test_update_requires_id(self, client, admin_headers):
        response = client.put("/api/admin/products", json=NEW_PRODUCT, headers=admin_headers)
        assert response.status_code == 400
        assert response.json["error"] == "Product ID is required"

    def test_update_unknown(self, client, admin_headers):
        response = client.put("/api/admin/products", json={**NEW_PRODUCT, "id": "zzz"}, headers=admin_headers)
        assert response.status_code == 404

    def test_delete_removes_record_and_images(self, client, admin_headers, services, tmp_path):
        image_dir = tmp_path / "uploads" / "products" / "p01" / "images"
        image_dir.mkdir(parents=True)
        (image_dir / "x.png").write_bytes(b"png")

        response = client.delete("/api/admin/products?id=p01", headers=admin_headers)
        assert response.status_code == 200
        assert response.json["message"] == "Product deleted successfully"
        assert services.repository.fetch_by_id("p01") is None
        assert not (image_dir / "x.png").exists()

    def test_delete_unknown(self, client, admin_headers):
        response = client.delete("/api/admin/products?id=zzz", headers=admin_headers)
        assert response.status_code == 404

    def test_delete_requires_id(self, client, admin_headers):
        response = client.delete("/api/admin/products", headers=admin_headers)
        assert response.status_code == 400


class TestAdminBrands:
    def test_list(self, client, admin_headers):
        response = client.get("/api/admin/brands", headers=admin_headers)
        data = response.json
        assert len(data["brands"]) == 6
        assert len(data["uniqueBrands"]) == 5
        assert "Bikes" in data["categoriesStructure"]

    def test_add(self, client, admin_headers, services):
        response = client.post(
            "/api/admin/brands",
            json={"name": "Scott", "category": "Bikes", "subcategory": "Road"},
            headers=admin_headers,
        )
        assert response.status_code == 201
        assert services.categories.brands_for_subcategory("Bikes", "Road") == ["Scott", "Trek"]

    def test_add_with_logo(self, client, admin_headers, tmp_path):
        response = client.post(
            "/api/admin/brands",
            data={"name": "Santa Cruz", "category": "Bikes", "subcategory": "Mountain", "logo": png_file()},
            content_type="multipart/form-data",
            headers=admin_headers,
        )
        assert response.status_code == 201
        assert response.json["logoUrl"] == "/uploads/brandLogos/santa-cruz.png"
        assert (tmp_path / "uploads" / "brandLogos" / "santa-cruz.png").exists()

    def test_add_duplicate(self, client, admin_headers):
        response = client.post(
            "/api/admin/brands",
            json={"name": "Trek", "category": "Bikes", "subcategory": "Road"},
            headers=admin_headers,
        )
        assert response.status_code == 400

    def test_add_unknown_category(self, client, admin_headers):
        response = client.post(
            "/api/admin/brands",
            json={"name": "Scott", "category": "Boats", "subcategory": "Road"},
            headers=admin_headers,
        )
        assert response.status_code == 404

    def test_remove(self, client, admin_headers, services):
        response = client.delete(
            "/api/admin/brands?name=Trek&category=Bikes&subcategory=Road", headers=admin_headers
        )
        assert response.status_code == 200
        assert response.json["message"] == "Brand removed successfully"
        assert services.categories.brands_for_subcategory("Bikes", "Road") == []

    def test_remove_unknown(self, client, admin_headers):
        response = client.delete(
            "/api/admin/brands?name=Scott&category=Bikes&subcategory=Road", headers=admin_headers
        )
        assert response.status_code == 404

    def test_categories(self, client, admin_headers):
        response = client.get("/api/admin/categories", headers=admin_headers)
        assert response.json["success"] is True
        assert response.json["data"]["brandsByCategory"]["Bikes"] == ["Giant", "Specialized", "Trek"]


class TestAdminUpload:
    def test_no_files(self, client, admin_headers):
        response = client.post(
            "/api/admin/upload", data={}, content_type="multipart/form-data", headers=admin_headers
        )
        assert response.status_code == 400
        assert response.json["error"] == "No files provided"

    def test_upload_then_serve_then_delete(self, client, admin_headers, tmp_path):
        response = client.post(
            "/api/admin/upload",
            data={"images": [png_file()]},
            content_type="multipart/form-data",
            headers=admin_headers,
        )
        assert response.status_code == 200
        url = response.json["urls"][0]
        assert url.startswith("/uploads/uploads/") and url.endswith(".png")

        served = client.get(url)
        assert served.status_code == 200
        served.close()

        response = client.delete("/api/admin/upload", json={"urls": [url]}, headers=admin_headers)
        assert response.status_code == 200
        assert not (tmp_path / "uploads" / Path(url[len("/uploads/"):])).exists()

    def test_too_large(self, client, admin_headers):
        oversized = (io.BytesIO(b"\x00" * (MAX_UPLOAD_BYTES + 1)), "big.png", "image/png")
        response = client.post(
            "/api/admin/upload",
            data={"images": [oversized]},
            content_type="multipart/form-data",
            headers=admin_headers,
        )
        assert response.status_code == 400
        assert "File too large" in response.json["error"]
