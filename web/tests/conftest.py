"""Shared test fixtures for the web test suite."""

import io
from unittest.mock import MagicMock

import pytest

from storefront.db import SQLiteDocumentStore
from storefront.retry import RetryPolicy
from storefront.storage import LocalObjectStorage
from storefront.tests.conftest import CATEGORY_DOCUMENT, seed_products
from web.app import create_app
from web.error_logging import ErrorLogger
from web.services import build_services

ADMIN_TOKEN = "test-admin-token"

# Smallest valid PNG header plus padding; content is never decoded
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


@pytest.fixture
def mock_openai_client():
    """Create a mock OpenAI client for testing without API calls."""
    return MagicMock()


@pytest.fixture
def services(tmp_path, mock_openai_client):
    """Services over a seeded temporary SQLite store and local uploads dir."""
    store = SQLiteDocumentStore(str(tmp_path / "store.db"))
    seed_products(store)
    store.set_document("categories", "all", CATEGORY_DOCUMENT)
    return build_services(
        store=store,
        storage=LocalObjectStorage(root=str(tmp_path / "uploads"), base_url="/uploads"),
        retry_policy=RetryPolicy.immediate(),
        error_logger=ErrorLogger(tmp_path / "errors.db"),
        llm_client=mock_openai_client,
    )


@pytest.fixture
def app(services):
    app = create_app(services=services, config={"TESTING": True, "ADMIN_TOKEN": ADMIN_TOKEN})
    return app


@pytest.fixture
def client(app):
    """Create Flask test client."""
    with app.test_client() as test_client:
        yield test_client


@pytest.fixture
def admin_headers():
    return {"Authorization": f"Bearer {ADMIN_TOKEN}"}


def png_file(name="photo.png"):
    """(stream, filename, content_type) tuple for multipart test uploads."""
    return (io.BytesIO(PNG_BYTES), name, "image/png")
