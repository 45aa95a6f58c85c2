# tests/conftest.py
"""
Pytest configuration and shared fixtures.

The application engine is bound to a throwaway SQLite file; service-level
tests get their own in-memory database per test.
"""
import os
import tempfile

# Must happen before warranty_admin.config is imported anywhere.
_TEST_DB_DIR = tempfile.mkdtemp(prefix="warranty-admin-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TEST_DB_DIR, 'app.db')}"
os.environ["FLASK_TESTING"] = "true"
os.environ["STRUCTURED_LOGS_ENABLED"] = "false"
os.environ["SHOPIFY_ADMIN_TOKEN"] = ""

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from warranty_admin.database import Base
from warranty_admin.observability.metrics import reset_metrics
from warranty_admin.services.catalog_service import CatalogItem
from warranty_admin.services.definition_service import WarrantyDefinitionService


@pytest.fixture
def db_session():
    """Fresh in-memory database for each test."""
    engine = create_engine("sqlite:///:memory:", future=True)
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture
def service(db_session):
    return WarrantyDefinitionService(db_session)


@pytest.fixture(autouse=True)
def _clean_metrics():
    reset_metrics()
    yield
    reset_metrics()


class StubCatalogClient:
    """In-memory stand-in for the Shopify catalog."""

    def __init__(self, products=None, collections=None, titles=None):
        self.products = list(products or [])
        self.collections = {key: list(value) for key, value in (collections or {}).items()}
        self.titles = titles or {}
        self.search_calls = []

    def list_product_ids(self):
        return list(self.products)

    def collection_product_ids(self, collection_id):
        return list(self.collections.get(collection_id, []))

    def search(self, query, kind, limit=25):
        self.search_calls.append((query, str(getattr(kind, "value", kind))))
        pool = self.products if str(getattr(kind, "value", kind)) == "PRODUCT" else list(self.collections)
        items = [CatalogItem(id=rid, title=self.titles.get(rid, rid)) for rid in pool]
        if query:
            items = [item for item in items if query.lower() in item.title.lower()]
        return items[:limit]


@pytest.fixture
def stub_catalog():
    return StubCatalogClient(
        products=[
            "gid://shopify/Product/1",
            "gid://shopify/Product/2",
            "gid://shopify/Product/3",
            "gid://shopify/Product/4",
        ],
        collections={
            "gid://shopify/Collection/10": ["gid://shopify/Product/2", "gid://shopify/Product/3"],
            "gid://shopify/Collection/11": ["gid://shopify/Product/3", "gid://shopify/Product/4"],
        },
        titles={
            "gid://shopify/Product/1": "Laptop",
            "gid://shopify/Product/2": "Phone",
            "gid://shopify/Product/3": "Tablet",
            "gid://shopify/Product/4": "Headphones",
            "gid://shopify/Collection/10": "Mobile",
            "gid://shopify/Collection/11": "Audio",
        },
    )


def definition_payload(**overrides):
    payload = {
        "name": "12mo Electronics",
        "durationMonths": "12",
        "priceType": "FIXED_AMOUNT",
        "price": "9.99",
        "description": "Covers accidental damage",
        "associationType": "ALL_PRODUCTS",
    }
    payload.update(overrides)
    return payload
