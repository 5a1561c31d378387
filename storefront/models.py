"""Product schema, derived pricing fields and row decoding.

Stored rows are camelCase documents. ``Product`` validates a row (with its
store-assigned ``id``) and adds the derived fields the storefront renders:

- ``discountedPrice``: ``price`` if stored, else ``actualPrice`` reduced by
  ``discountPercentage``, else ``actualPrice``
- ``roundedDiscountPercentage``: floor of ``discountPercentage`` (or null)
- ``brandLogo``: conventional storage URL derived from the brand name
- ``slug``: stored value, or derived from ``name``
"""

import math
import re
import unicodedata
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    computed_field,
    field_validator,
    model_validator,
)

from storefront.config import BRAND_LOGO_BASE_URL

__all__ = [
    "ProductFields",
    "Product",
    "Decoded",
    "Invalid",
    "DecodeResult",
    "decode_product",
    "validation_messages",
    "final_price",
    "brand_logo_url",
    "brand_slug",
    "slugify",
]


def slugify(text: str) -> str:
    """Convert text to a lowercase, URL-safe slug ("Trek Marlin 7" -> "trek-marlin-7")."""
    text = unicodedata.normalize("NFKD", text).encode("ascii", "ignore").decode("ascii")
    text = re.sub(r"[^\w\s-]", "", text.lower())
    return re.sub(r"[\s_-]+", "-", text).strip("-")


def brand_slug(brand: str) -> str:
    """Storage key for a brand: lowercased, whitespace runs -> hyphens."""
    return re.sub(r"\s+", "-", brand.strip().lower())


def brand_logo_url(brand: Optional[str]) -> str:
    """Build the brand logo URL, falling back to the default logo."""
    name = brand_slug(brand) if brand and brand.strip() else "default"
    return f"{BRAND_LOGO_BASE_URL}%2F{name}.png?alt=media"


def final_price(
    actual_price: float,
    price: Optional[float] = None,
    discount_percentage: Optional[float] = None,
) -> float:
    """Price a customer pays after override or discount."""
    if price is not None:
        return price
    if discount_percentage is not None:
        return actual_price * (1 - discount_percentage / 100)
    return actual_price


class ProductFields(BaseModel):
    """Mutable product fields as stored in the document store.

    Also used on its own to validate admin write payloads, which carry no id.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str = Field(min_length=1)
    category: str = Field(min_length=1)
    sub_category: str = Field(alias="subCategory", min_length=1)
    brand: Optional[str] = None
    price: Optional[float] = Field(default=None, ge=0)
    actual_price: float = Field(alias="actualPrice", ge=0)
    discount_percentage: Optional[float] = Field(default=None, alias="discountPercentage", ge=0, le=100)
    rating: float = Field(ge=0, le=5)
    short_description: Optional[str] = Field(default=None, alias="shortDescription")
    details: Optional[str] = None
    image: str = ""
    images: List[str] = Field(default_factory=list)
    inventory: int = Field(default=1, ge=0)
    is_recommended: bool = Field(default=False, alias="isRecommended")
    slug: Optional[str] = None
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")

    @field_validator("image", mode="before")
    @classmethod
    def _image_default(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("images", mode="before")
    @classmethod
    def _images_default(cls, value: Any) -> Any:
        return [] if value is None else value

    @model_validator(mode="after")
    def _check_price_override(self) -> "ProductFields":
        if self.price is not None and self.price > self.actual_price:
            raise ValueError("price cannot exceed actualPrice")
        return self

    def to_document(self) -> Dict[str, Any]:
        """Serialise only the stored fields (camelCase, JSON-safe)."""
        return self.model_dump(
            by_alias=True,
            mode="json",
            include=set(ProductFields.model_fields),
        )


class Product(ProductFields):
    """A validated product row with its derived display fields."""

    id: str = Field(min_length=1)

    @model_validator(mode="after")
    def _fill_slug(self) -> "Product":
        if not self.slug:
            self.slug = slugify(self.name)
        return self

    @computed_field(alias="discountedPrice")
    @property
    def discounted_price(self) -> float:
        return final_price(self.actual_price, self.price, self.discount_percentage)

    @computed_field(alias="roundedDiscountPercentage")
    @property
    def rounded_discount_percentage(self) -> Optional[int]:
        if self.discount_percentage is None:
            return None
        return math.floor(self.discount_percentage)

    @computed_field(alias="brandLogo")
    @property
    def brand_logo(self) -> str:
        return brand_logo_url(self.brand)

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready representation including derived fields."""
        return self.model_dump(by_alias=True, mode="json")


@dataclass(frozen=True)
class Decoded:
    """A row that passed validation."""

    product: Product


@dataclass(frozen=True)
class Invalid:
    """A row that failed validation, with a readable reason."""

    doc_id: Optional[str]
    reason: str


DecodeResult = Union[Decoded, Invalid]


def validation_messages(error: ValidationError) -> Dict[str, List[str]]:
    """Group pydantic errors by (aliased) field name."""
    grouped: Dict[str, List[str]] = {}
    for err in error.errors():
        loc = ".".join(str(part) for part in err.get("loc", ())) or "__root__"
        grouped.setdefault(loc, []).append(err.get("msg", "invalid value"))
    return grouped


def decode_product(raw: Mapping[str, Any]) -> DecodeResult:
    """Validate a raw row (with ``id``) into a Product, never raising."""
    try:
        return Decoded(Product.model_validate(dict(raw)))
    except ValidationError as e:
        reason = "; ".join(
            f"{field}: {', '.join(messages)}" for field, messages in validation_messages(e).items()
        )
        return Invalid(doc_id=raw.get("id"), reason=reason)
