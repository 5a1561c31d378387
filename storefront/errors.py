"""Exception types shared across the storefront package."""

from typing import Dict, List, Optional, Union

__all__ = [
    "StorefrontError",
    "StoreError",
    "AggregationUnsupported",
    "RetryCancelled",
    "NotFoundError",
    "ProductValidationError",
    "CategoryError",
    "StorageError",
]


class StorefrontError(Exception):
    """Base class for all storefront errors."""


class StoreError(StorefrontError):
    """A document store operation failed.

    ``code`` mirrors the backend status: a string such as ``"unavailable"``
    or ``"permission-denied"``, or an HTTP-style integer.
    """

    def __init__(self, message: str, code: Optional[Union[str, int]] = None):
        super().__init__(message)
        self.code = code


class AggregationUnsupported(StoreError):
    """The backend cannot run a server-side count for this query."""


class RetryCancelled(StorefrontError):
    """A retried operation was cancelled before it could complete."""


class NotFoundError(StorefrontError):
    """A requested record does not exist."""


class ProductValidationError(StorefrontError):
    """An admin write payload does not satisfy the product schema.

    ``errors`` maps field name -> list of messages, first message first.
    """

    def __init__(self, message: str, errors: Optional[Dict[str, List[str]]] = None):
        super().__init__(message)
        self.errors = errors or {}

    def first_errors(self) -> Dict[str, str]:
        """Return the first message recorded for each field."""
        return {field: messages[0] for field, messages in self.errors.items() if messages}


class CategoryError(StorefrontError):
    """Brand/category maintenance failed; ``status`` is the HTTP status hint."""

    def __init__(self, message: str, status: int = 400):
        super().__init__(message)
        self.status = status


class StorageError(StorefrontError):
    """Object storage upload or deletion failed."""
