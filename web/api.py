"""Public catalog API.

Endpoints:
    GET  /api/products                                   filtered cursor pages
    GET  /api/products/count                             size of a filtered set
    GET  /api/products/recommended                       homepage sections
    GET  /api/products/slug/<slug>                       product detail by slug
    GET  /api/products/<id>                              product detail by id
    GET  /api/products/category/<category>/<subcategory> numbered category listing
    GET  /api/categories                                 category tree and brands
    GET  /api/search                                     results or suggestions
    POST /api/cart                                       resolve cart slugs
"""

import logging
import math
from dataclasses import replace
from typing import List, Optional, Tuple

from flask import Blueprint, jsonify, request

from storefront.config import DEFAULT_API_PAGE_SIZE, DEFAULT_LISTING_PAGE_SIZE, MAX_API_PAGE_SIZE
from storefront.pagination import ListingParams, resolve_listing
from storefront.repository import ProductFilters

from .services import get_services

__all__ = ["api", "parse_product_filters", "parse_int"]

logger = logging.getLogger(__name__)

# Create blueprint for API
api = Blueprint("api", __name__, url_prefix="/api")


class InvalidParameter(ValueError):
    """A query parameter failed validation."""


def _split(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


def _parse_price(name: str) -> Optional[float]:
    raw = request.args.get(name)
    if raw is None or raw == "":
        return None
    try:
        value = float(raw)
    except ValueError:
        raise InvalidParameter(f"Invalid {name} parameter")
    if math.isnan(value) or value < 0:
        raise InvalidParameter(f"Invalid {name} parameter")
    return value


def parse_int(name: str, default: int, minimum: int = 1, maximum: Optional[int] = None) -> int:
    """Integer query parameter with bounds; raises InvalidParameter when out of range."""
    raw = request.args.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise InvalidParameter(f"Invalid {name} parameter")
    if value < minimum:
        raise InvalidParameter(f"{name} must be at least {minimum}")
    if maximum is not None and value > maximum:
        raise InvalidParameter(f"{name} must be at most {maximum}")
    return value


def parse_product_filters() -> ProductFilters:
    """Build ProductFilters from /api/products query parameters."""
    min_price = _parse_price("minPrice")
    max_price = _parse_price("maxPrice")
    if min_price is not None and max_price is not None and min_price > max_price:
        raise InvalidParameter("minPrice cannot be greater than maxPrice")

    return ProductFilters(
        categories=_split(request.args.get("categories")),
        subcategories=_split(request.args.get("subcategories")),
        brands=_split(request.args.get("brands")),
        min_price=min_price,
        max_price=max_price,
        sort_by=request.args.get("sortBy", "rating"),
        page_size=parse_int("pageSize", DEFAULT_API_PAGE_SIZE, 1, MAX_API_PAGE_SIZE),
        cursor_id=request.args.get("startAfterId") or None,
    )


@api.errorhandler(InvalidParameter)
def handle_bad_request(e: InvalidParameter) -> Tuple:
    return jsonify({"error": str(e)}), 400


@api.route("/products", methods=["GET"])
def list_products():
    """One cursor page of products: ``{products, hasMore, lastProductId}``."""
    filters = parse_product_filters()
    page = get_services().repository.fetch_page(filters)
    logger.debug(f"Fetched {len(page.products)} products (hasMore={page.has_more})")
    return jsonify(page.to_dict())


@api.route("/products/count", methods=["GET"])
def count_products():
    filters = parse_product_filters().without_pagination()
    return jsonify({"count": get_services().repository.count(filters)})


@api.route("/products/recommended", methods=["GET"])
def recommended_products():
    """Homepage sections keyed topBikes / bestOfApparel / popularAccessories."""
    limit = parse_int("limit", 10, 1, MAX_API_PAGE_SIZE)
    sections = get_services().repository.fetch_categorized_recommended(per_section=limit)
    return jsonify({key: [p.to_dict() for p in products] for key, products in sections.items()})


@api.route("/products/slug/<slug>", methods=["GET"])
def product_by_slug(slug: str):
    product = get_services().repository.fetch_by_slug(slug)
    if product is None:
        return jsonify({"error": "Product not found"}), 404
    return jsonify(product.to_dict())


@api.route("/products/<product_id>", methods=["GET"])
def product_by_id(product_id: str):
    product = get_services().repository.fetch_by_id(product_id)
    if product is None:
        return jsonify({"error": "Product not found"}), 404
    return jsonify(product.to_dict())


@api.route("/products/category/<category>/<subcategory>", methods=["GET"])
def category_listing(category: str, subcategory: str):
    """Numbered page of a subcategory listing.

    Accepts the listing URL parameters (brand, minPrice, maxPrice, sort,
    view, page, lastId). Invalid parameters fall back to defaults and are
    reported through ``params.valid``. ``nextQuery`` and ``previousQuery``
    are ready-made query strings for the neighbouring pages.
    """
    params = ListingParams.parse(request.args)
    page_size = parse_int("pageSize", DEFAULT_LISTING_PAGE_SIZE, 1, MAX_API_PAGE_SIZE)
    result = resolve_listing(get_services().repository, category, subcategory, params, page_size)

    body = result.to_dict()
    body["params"] = {"valid": params.is_valid, "query": params.encode()}
    body["nextQuery"] = (
        replace(params, page=params.page + 1, last_id=result.last_product_id).encode()
        if result.has_more else None
    )
    body["previousQuery"] = (
        replace(params, page=params.page - 1, last_id=None).encode()
        if params.page > 1 else None
    )
    return jsonify(body)


@api.route("/categories", methods=["GET"])
def get_categories():
    structure = get_services().categories.load()
    if not structure.exists:
        return jsonify({"error": "Categories not found"}), 404
    return jsonify({"success": True, "data": structure.to_dict()})


@api.route("/search", methods=["GET"])
def search():
    """Product search; ``type=suggestions`` returns completion strings instead."""
    query = request.args.get("q", "").strip()
    if not query:
        return jsonify({"error": "Query parameter is required"}), 400

    search_index = get_services().search
    if request.args.get("type") == "suggestions":
        limit = parse_int("limit", 5, 1, MAX_API_PAGE_SIZE)
        return jsonify({"suggestions": search_index.suggestions(query, limit=limit)})

    limit = parse_int("limit", 10, 1, MAX_API_PAGE_SIZE)
    offset = parse_int("offset", 0, 0)
    products = search_index.search(query, limit=limit, offset=offset)
    return jsonify({"products": [p.to_dict() for p in products]})


@api.route("/cart", methods=["POST"])
def cart_products():
    """Resolve a list of slugs; unknown slugs come back as null in place."""
    data = request.get_json(silent=True)
    slugs = data.get("slugs") if isinstance(data, dict) else None
    if not isinstance(slugs, list) or not all(isinstance(s, str) for s in slugs):
        return jsonify({"error": "Invalid request body. Expected an array of slugs."}), 400

    found = get_services().repository.fetch_by_slugs(slugs)
    return jsonify([found[slug].to_dict() if found.get(slug) else None for slug in slugs])
