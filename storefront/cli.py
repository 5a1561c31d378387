"""Command-line interface for catalog maintenance."""

import argparse
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import pandas as pd

from storefront.categories import CategoryService, CategoryStructure
from storefront.config import DB_PATH, STORE_BACKEND
from storefront.errors import ProductValidationError
from storefront.firestore import create_store
from storefront.logging_config import setup_logging
from storefront.repository import ProductRepository
from storefront.search import SearchIndexAdapter

__all__ = [
    "main",
    "parse_args",
    "load_product_records",
    "import_products",
    "import_categories",
    "export_products_csv",
    "category_stats",
    "show_stats",
]

LIST_SEPARATOR = "|"


def _clean_value(value: Any) -> Any:
    """Turn pandas missing values into None and numpy scalars into Python ones."""
    if hasattr(value, "item") and not isinstance(value, (str, bytes)):
        value = value.item()
    if isinstance(value, float) and pd.isna(value):
        return None
    return value


def _record_from_row(row: Dict[str, Any]) -> Dict[str, Any]:
    record = {k: _clean_value(v) for k, v in row.items()}
    images = record.get("images")
    if isinstance(images, str):
        text = images.strip()
        if text.startswith("["):
            record["images"] = json.loads(text)
        else:
            record["images"] = [p.strip() for p in text.split(LIST_SEPARATOR) if p.strip()]
    for flag in ("isRecommended",):
        value = record.get(flag)
        if isinstance(value, str):
            record[flag] = value.strip().lower() in ("1", "true", "yes")
    if record.get("inventory") is not None:
        record["inventory"] = int(record["inventory"])
    return {k: v for k, v in record.items() if v is not None}


def load_product_records(path: str) -> List[Dict[str, Any]]:
    """Read products from a JSON list or a CSV file."""
    source = Path(path)
    if source.suffix.lower() == ".json":
        with open(source, "r", encoding="utf-8") as f:
            data = json.load(f)
        if isinstance(data, dict):
            data = data.get("products", [])
        return [dict(item) for item in data]

    df = pd.read_csv(source)
    return [_record_from_row(row) for row in df.to_dict(orient="records")]


def import_products(repository: ProductRepository, path: str) -> Dict[str, int]:
    """Import products, skipping rows that fail validation."""
    stats = {"imported": 0, "skipped": 0}
    for record in load_product_records(path):
        product_id = record.pop("id", None)
        try:
            repository.import_product(record, product_id=str(product_id) if product_id else None)
            stats["imported"] += 1
        except ProductValidationError as e:
            stats["skipped"] += 1
            print(f"  Skipped {record.get('name', '?')}: {e.first_errors()}")
    return stats


def import_categories(service: CategoryService, path: str) -> int:
    """Replace the category document from a JSON file; returns category count."""
    with open(path, "r", encoding="utf-8") as f:
        structure = CategoryStructure.from_document(json.load(f))
    service.save(structure)
    return len(structure.tree)


def _products_frame(repository: ProductRepository) -> pd.DataFrame:
    rows = []
    for product in repository.fetch_all():
        row = product.to_dict()
        row["images"] = LIST_SEPARATOR.join(row.get("images") or [])
        rows.append(row)
    return pd.DataFrame(rows)


def export_products_csv(repository: ProductRepository, out_path: str) -> int:
    df = _products_frame(repository)
    Path(out_path).parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(out_path, index=False)
    return len(df)


def category_stats(repository: ProductRepository) -> pd.DataFrame:
    """Product counts per category and subcategory."""
    df = _products_frame(repository)
    if df.empty:
        return pd.DataFrame(columns=["category", "subCategory", "products"])
    return (
        df.groupby(["category", "subCategory"])
        .size()
        .reset_index(name="products")
        .sort_values(["category", "subCategory"])
        .reset_index(drop=True)
    )


def show_stats(repository: ProductRepository) -> None:
    stats = category_stats(repository)
    total = int(stats["products"].sum()) if not stats.empty else 0

    print(f"\n{'='*50}")
    print(f"Total products: {total}")
    print(f"{'='*50}")
    for category, group in stats.groupby("category"):
        print(f"\n{category}: {int(group['products'].sum())}")
        for _, row in group.iterrows():
            print(f"  {row['subCategory']}: {row['products']}")
    print()


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Maintain the storefront product catalog",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Load products and the category tree into the local store
  storefront --import-products data/products.json --import-categories data/categories.json

  # Show products per category
  storefront --stats

  # Export the catalog
  storefront --export-csv exports/products.csv

  # Try the in-memory search
  storefront --search "trek mountain"
        """,
    )
    parser.add_argument(
        "--backend",
        choices=["sqlite", "firestore"],
        default=STORE_BACKEND,
        help=f"Document store backend (default: {STORE_BACKEND})",
    )
    parser.add_argument("--db", default=DB_PATH, help=f"SQLite database path (default: {DB_PATH})")
    parser.add_argument("--import-products", metavar="PATH", help="Import products from JSON or CSV")
    parser.add_argument("--import-categories", metavar="PATH", help="Replace the category tree from JSON")
    parser.add_argument("--export-csv", metavar="PATH", help="Export all valid products to CSV")
    parser.add_argument("--stats", action="store_true", help="Show product counts per category")
    parser.add_argument("--search", metavar="QUERY", help="Run the in-memory search")
    parser.add_argument("--limit", type=int, default=10, help="Search result limit (default: 10)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> None:
    """Main entry point for CLI."""
    args = parse_args(argv)
    setup_logging(level=logging.DEBUG if args.verbose else logging.INFO, log_to_file=False)

    store = create_store(args.backend, args.db)
    repository = ProductRepository(store)

    if args.import_categories:
        count = import_categories(CategoryService(store), args.import_categories)
        print(f"Imported {count} categories")

    if args.import_products:
        stats = import_products(repository, args.import_products)
        print(f"Imported {stats['imported']} products ({stats['skipped']} skipped)")

    if args.export_csv:
        count = export_products_csv(repository, args.export_csv)
        print(f"Exported {count} products to {args.export_csv}")

    if args.stats:
        show_stats(repository)

    if args.search:
        results = SearchIndexAdapter(repository).search(args.search, limit=args.limit)
        if not results:
            print("No products found")
        for product in results:
            print(f"  {product.name} [{product.brand or '-'}] {product.discounted_price:.2f} ({product.id})")


if __name__ == "__main__":
    main()
