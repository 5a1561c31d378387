"""Category structure document and brand maintenance.

The whole catalog taxonomy lives in one document::

    {"Bikes": {"subcategories": {"Mountain": {"brands": ["Giant", "Trek"]}}}}

Brand views (per category, global) are derived on every load; only the
document itself is authoritative.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from storefront.config import CATEGORIES_COLLECTION, CATEGORIES_DOC_ID
from storefront.errors import CategoryError, StorageError
from storefront.logging_config import get_logger
from storefront.retry import RetryPolicy

__all__ = ["BrandEntry", "CategoryStructure", "CategoryService"]

logger = get_logger("categories")


@dataclass(frozen=True)
class BrandEntry:
    name: str
    category: str
    subcategory: str

    def to_dict(self) -> Dict[str, str]:
        return {"name": self.name, "category": self.category, "subcategory": self.subcategory}


@dataclass
class CategoryStructure:
    """Parsed taxonomy: category -> subcategory -> brand names."""

    tree: Dict[str, Dict[str, List[str]]] = field(default_factory=dict)
    exists: bool = True

    @classmethod
    def from_document(cls, doc: Optional[Mapping[str, Any]]) -> "CategoryStructure":
        if doc is None:
            return cls(tree={}, exists=False)
        tree: Dict[str, Dict[str, List[str]]] = {}
        for category, category_data in doc.items():
            subcategories = (category_data or {}).get("subcategories") or {}
            tree[category] = {
                sub: list((sub_data or {}).get("brands") or []) for sub, sub_data in subcategories.items()
            }
        return cls(tree=tree)

    def to_document(self) -> Dict[str, Any]:
        return {
            category: {"subcategories": {sub: {"brands": list(brands)} for sub, brands in subs.items()}}
            for category, subs in self.tree.items()
        }

    @property
    def subcategories_by_category(self) -> Dict[str, List[str]]:
        return {category: list(subs) for category, subs in self.tree.items()}

    @property
    def brands_by_subcategory(self) -> Dict[str, Dict[str, List[str]]]:
        return {category: {sub: list(brands) for sub, brands in subs.items()} for category, subs in self.tree.items()}

    @property
    def brands_by_category(self) -> Dict[str, List[str]]:
        return {
            category: sorted({brand for brands in subs.values() for brand in brands})
            for category, subs in self.tree.items()
        }

    @property
    def all_brands(self) -> List[str]:
        return sorted({brand for subs in self.tree.values() for brands in subs.values() for brand in brands})

    def brand_entries(self) -> List[BrandEntry]:
        return [
            BrandEntry(brand, category, sub)
            for category, subs in self.tree.items()
            for sub, brands in subs.items()
            for brand in brands
        ]

    def unique_brand_entries(self) -> List[BrandEntry]:
        """One entry per brand name, last occurrence wins."""
        by_name: Dict[str, BrandEntry] = {}
        for entry in self.brand_entries():
            by_name[entry.name] = entry
        return list(by_name.values())

    def find_category(self, name: str) -> Optional[str]:
        """Case-insensitive category lookup returning the stored spelling."""
        wanted = name.strip().lower()
        for category in self.tree:
            if category.lower() == wanted:
                return category
        return None

    def find_subcategory(self, category: str, name: str) -> Optional[str]:
        stored = self.find_category(category)
        if stored is None:
            return None
        wanted = name.strip().lower()
        for sub in self.tree[stored]:
            if sub.lower() == wanted:
                return sub
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "categories": self.to_document(),
            "subcategoriesByCategory": self.subcategories_by_category,
            "brandsBySubcategory": self.brands_by_subcategory,
            "brandsByCategory": self.brands_by_category,
            "allBrands": self.all_brands,
        }


class CategoryService:
    """Loads the taxonomy document and applies brand changes to it."""

    def __init__(
        self,
        store,
        retry_policy: Optional[RetryPolicy] = None,
        collection: str = CATEGORIES_COLLECTION,
        doc_id: str = CATEGORIES_DOC_ID,
    ):
        self.store = store
        self.retry_policy = retry_policy or RetryPolicy()
        self.collection = collection
        self.doc_id = doc_id

    def load(self) -> CategoryStructure:
        snapshot = self.retry_policy.run(lambda: self.store.get_document(self.collection, self.doc_id))
        if not snapshot.exists:
            logger.error("No category data found in the store")
            return CategoryStructure.from_document(None)
        return CategoryStructure.from_document(snapshot.to_dict())

    def save(self, structure: CategoryStructure) -> None:
        doc = structure.to_document()
        self.retry_policy.run(lambda: self.store.set_document(self.collection, self.doc_id, doc))

    def brands_for_subcategory(self, category: str, subcategory: str) -> List[str]:
        return self.load().brands_by_subcategory.get(category, {}).get(subcategory, [])

    def brands_for_category(self, category: str) -> List[str]:
        return self.load().brands_by_category.get(category, [])

    def _require(self) -> CategoryStructure:
        structure = self.load()
        if not structure.exists:
            raise CategoryError("Categories document not found", status=404)
        return structure

    def add_brand(self, name: str, category: str, subcategory: str) -> BrandEntry:
        """Add a brand to a subcategory, keeping the brand list sorted."""
        name = (name or "").strip()
        if not name or not category or not subcategory:
            raise CategoryError("Brand name, category, and subcategory are required", status=400)

        structure = self._require()
        if category not in structure.tree:
            raise CategoryError("Category not found", status=404)
        if subcategory not in structure.tree[category]:
            raise CategoryError("Subcategory not found", status=404)

        brands = structure.tree[category][subcategory]
        if name in brands:
            raise CategoryError("Brand already exists in this subcategory", status=400)
        brands.append(name)
        brands.sort()

        self.save(structure)
        logger.info(f"Added brand {name} to {category}/{subcategory}")
        return BrandEntry(name, category, subcategory)

    def remove_brand(self, name: str, category: str, subcategory: str, storage=None) -> None:
        """Remove a brand; its logo is deleted best-effort when storage is given."""
        if not name or not category or not subcategory:
            raise CategoryError("Brand name, category, and subcategory are required", status=400)

        structure = self._require()
        brands = structure.tree.get(category, {}).get(subcategory)
        if brands is None:
            raise CategoryError("Category or subcategory not found", status=404)
        if name not in brands:
            raise CategoryError("Brand not found in this subcategory", status=404)
        brands.remove(name)

        if storage is not None:
            try:
                storage.delete_brand_logo(name)
            except StorageError as e:
                # Brand removal proceeds without the logo
                logger.error(f"Error deleting brand logo for {name}: {e}")

        self.save(structure)
        logger.info(f"Removed brand {name} from {category}/{subcategory}")
