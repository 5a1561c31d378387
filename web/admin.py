"""Admin API for catalog maintenance.

Every endpoint requires an admin bearer token (see ``web.auth``).
"""

import json
import logging
from typing import Any, Dict, List, Optional, Tuple

from flask import Blueprint, g, jsonify, request

from storefront.config import DEFAULT_ADMIN_PAGE_SIZE, MAX_ADMIN_PAGE_SIZE
from storefront.errors import StorageError
from storefront.storage import Upload, validate_upload

from .auth import require_admin
from .services import get_services

__all__ = ["admin"]

logger = logging.getLogger(__name__)

admin = Blueprint("admin", __name__, url_prefix="/api/admin")


def _uploads(field: str) -> List[Upload]:
    return [Upload.from_file_storage(f) for f in request.files.getlist(field) if f and f.filename]


def _validate_all(uploads: List[Upload]) -> Optional[Tuple]:
    """400 response for the first invalid upload, None when all are fine."""
    for upload in uploads:
        try:
            validate_upload(upload)
        except StorageError as e:
            return jsonify({"error": str(e)}), 400
    return None


def _product_payload() -> Dict[str, Any]:
    """Product fields from a JSON body or the ``product`` field of a multipart form."""
    if request.is_json:
        data = request.get_json(silent=True)
        return data if isinstance(data, dict) else {}
    raw = request.form.get("product")
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        return {}
    return data if isinstance(data, dict) else {}


@admin.route("/verify", methods=["GET"])
@require_admin
def verify():
    return jsonify({"message": "Login successful", "uid": g.admin.get("uid")})


@admin.route("/products", methods=["GET"])
@require_admin
def list_products():
    """Newest-first product page with optional name-prefix search."""
    try:
        page_size = int(request.args.get("pageSize", DEFAULT_ADMIN_PAGE_SIZE))
    except ValueError:
        return jsonify({"error": "Invalid parameters"}), 400
    if not 1 <= page_size <= MAX_ADMIN_PAGE_SIZE:
        return jsonify({"error": "Invalid parameters"}), 400

    page = get_services().repository.list_for_admin(
        search=request.args.get("search") or None,
        category=request.args.get("category") or None,
        sub_category=request.args.get("subCategory") or None,
        brand=request.args.get("brand") or None,
        page_size=page_size,
        start_after_id=request.args.get("startAfterId") or None,
    )
    return jsonify(page.to_dict())


@admin.route("/products", methods=["POST"])
@require_admin
def create_product():
    """Create a product.

    JSON bodies are stored as-is (image URLs already uploaded). Multipart
    forms carry the fields as JSON in ``product`` plus ``images`` and an
    optional ``thumbnail``; the record is created first and the files are
    stored under its id.
    """
    services = get_services()
    data = _product_payload()

    if request.is_json:
        product = services.repository.create_product(data)
        if data.get("images"):
            product = services.repository.set_images(
                product.id, data["images"], data.get("image") or data["images"][0]
            )
    else:
        images = _uploads("images")
        thumbnails = _uploads("thumbnail")
        invalid = _validate_all(images + thumbnails)
        if invalid:
            return invalid
        product = services.repository.create_product_with_images(
            data, images, thumbnails[0] if thumbnails else None, services.storage
        )

    return jsonify({
        "message": "Product created successfully",
        "product": product.to_dict(),
        "id": product.id,
    }), 201


@admin.route("/products", methods=["PUT"])
@require_admin
def update_product():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        data = {}
    product_id = data.pop("id", None)
    if not product_id:
        return jsonify({"error": "Product ID is required"}), 400

    product = get_services().repository.update_product(product_id, data)
    return jsonify({"message": "Product updated successfully", "product": product.to_dict()})


@admin.route("/products", methods=["DELETE"])
@require_admin
def delete_product():
    product_id = request.args.get("id")
    if not product_id:
        return jsonify({"error": "Product ID is required"}), 400

    services = get_services()
    services.repository.delete_product(product_id)
    try:
        services.storage.cleanup_product(product_id)
    except StorageError as e:
        # Record is gone; leftover images are only logged
        logger.error(f"Error cleaning up images for product {product_id}: {e}")
    return jsonify({"message": "Product deleted successfully"})


@admin.route("/brands", methods=["GET"])
@require_admin
def list_brands():
    structure = get_services().categories.load()
    if not structure.exists:
        return jsonify({"error": "Categories not found"}), 404
    return jsonify({
        "brands": [entry.to_dict() for entry in structure.brand_entries()],
        "uniqueBrands": [entry.to_dict() for entry in structure.unique_brand_entries()],
        "categoriesStructure": structure.to_document(),
    })


@admin.route("/brands", methods=["POST"])
@require_admin
def add_brand():
    """Add a brand to a subcategory, with an optional ``logo`` file upload."""
    data = request.get_json(silent=True) if request.is_json else request.form
    if not hasattr(data, "get"):
        data = {}
    logos = _uploads("logo")
    invalid = _validate_all(logos)
    if invalid:
        return invalid

    services = get_services()
    entry = services.categories.add_brand(
        data.get("name", ""), data.get("category", ""), data.get("subcategory", "")
    )
    body: Dict[str, Any] = {"message": "Brand added successfully", "brand": entry.to_dict()}
    if logos:
        body["logoUrl"] = services.storage.upload_brand_logo(entry.name, logos[0])
    return jsonify(body), 201


@admin.route("/brands", methods=["DELETE"])
@require_admin
def remove_brand():
    services = get_services()
    services.categories.remove_brand(
        request.args.get("name", ""),
        request.args.get("category", ""),
        request.args.get("subcategory", ""),
        storage=services.storage,
    )
    return jsonify({"message": "Brand removed successfully"})


@admin.route("/categories", methods=["GET"])
@require_admin
def get_categories():
    structure = get_services().categories.load()
    if not structure.exists:
        return jsonify({"error": "Categories not found"}), 404
    return jsonify({"success": True, "data": structure.to_dict()})


@admin.route("/upload", methods=["POST"])
@require_admin
def upload_images():
    """Stage images for the product form; returns their public URLs."""
    uploads = _uploads("images")
    if not uploads:
        return jsonify({"error": "No files provided"}), 400
    invalid = _validate_all(uploads)
    if invalid:
        return invalid

    storage = get_services().storage
    urls = [storage.upload_image(upload) for upload in uploads]
    logger.info(f"Uploaded {len(urls)} staged image(s)")
    return jsonify({"message": "Images uploaded successfully", "urls": urls})


@admin.route("/upload", methods=["DELETE"])
@require_admin
def delete_images():
    data = request.get_json(silent=True)
    urls = data.get("urls") if isinstance(data, dict) else None
    if not isinstance(urls, list) or not urls:
        return jsonify({"error": "Expected a non-empty list of urls"}), 400

    storage = get_services().storage
    unmanaged = [url for url in urls if not isinstance(url, str) or storage.path_from_url(url) is None]
    if unmanaged:
        return jsonify({"error": "URL is not managed by this storage", "urls": unmanaged}), 400
    for url in urls:
        storage.delete_url(url)
    return jsonify({"message": "Images deleted successfully", "deleted": len(urls)})
