"""
Pytest configuration and shared fixtures for the catalog search tests.
"""
import os
import sys
from datetime import datetime, timedelta, timezone
from typing import Callable, Generator, List

import pytest

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(__file__)), "src"))

# Load environment variables
from dotenv import load_dotenv
load_dotenv(os.path.join(os.path.dirname(os.path.dirname(__file__)), ".env"))


# Fixed "now" so ages and daily keys are deterministic
NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def fixed_clock() -> datetime:
    return NOW


@pytest.fixture
def now() -> datetime:
    """The fixed clock value used by engines built in tests."""
    return NOW


# ============================================================================
# Fixtures: Test Data Factories
# ============================================================================

@pytest.fixture
def make_product() -> Callable:
    """Factory for Product models with sensible defaults."""
    from catalog_search.models import Product

    def _make(product_id: str, name: str, age_days: int = 10, **overrides):
        data = {
            "id": product_id,
            "name": name,
            "description": "",
            "price": 10000,
            "stock": 5,
            "status": "active",
            "category_id": "cat-misc",
            "category_name": "Misc",
            "created_at": NOW - timedelta(days=age_days),
        }
        data.update(overrides)
        return Product(**data)

    return _make


@pytest.fixture
def sample_products(make_product) -> list:
    """Small mixed catalog: shirts, trousers, shoes, one inactive item."""
    return [
        make_product(
            "p-001", "Blue Cotton Shirt", price=29900, tags=["sale", "cotton"],
            category_id="cat-shirts", category_name="Shirts", brand="Acme",
            order_count=40, review_count=10, average_rating=4.5,
            images=["https://cdn.example.com/p-001/main.jpg", "https://cdn.example.com/p-001/alt.jpg"],
        ),
        make_product(
            "p-002", "White Linen Shirt", price=35900, tags=["linen", "summer"],
            category_id="cat-shirts", category_name="Shirts", brand="Acme",
            order_count=12, review_count=3, average_rating=4.0, age_days=40,
        ),
        make_product(
            "p-003", "Navy Chino Trousers", price=49900, tags=["cotton"],
            category_id="cat-trousers", category_name="Trousers", brand="Northwind",
            description="Slim fit chinos in a navy blue twill", order_count=25,
            review_count=8, average_rating=4.2, age_days=5,
        ),
        make_product(
            "p-004", "Apple Green Sneakers", price=79900, tags=["sale", "shoes"],
            category_id="cat-shoes", category_name="Shoes", brand="Stride",
            order_count=3, average_rating=3.5, stock=0, age_days=200,
        ),
        make_product(
            "p-005", "Apricot Knit Sweater", price=59900, tags=["knit", "apparel"],
            category_id="cat-knitwear", category_name="Knitwear", brand="Northwind",
            order_count=7, review_count=2, average_rating=4.8, age_days=60,
        ),
        make_product(
            "p-006", "Archived Blue Scarf", price=9900, tags=["sale"],
            category_id="cat-accessories", category_name="Accessories",
            status="inactive",
        ),
    ]


# ============================================================================
# Fixtures: Stores
# ============================================================================

@pytest.fixture
def catalog(sample_products):
    """In-memory catalog reader over the sample products."""
    from catalog_search.stores.catalog import InMemoryCatalogReader
    return InMemoryCatalogReader(sample_products)


@pytest.fixture
def kv_store():
    """Empty in-memory key-value store."""
    from catalog_search.stores.kv import InMemoryKeyValueStore
    return InMemoryKeyValueStore()


@pytest.fixture
def test_settings():
    """Settings isolated from the environment and .env file."""
    from config.settings import get_settings_for_testing
    return get_settings_for_testing()


# ============================================================================
# Fixtures: Engine
# ============================================================================

@pytest.fixture
def engine_factory(test_settings) -> Generator[Callable, None, None]:
    """Build SearchEngines over arbitrary stores; all are closed on teardown."""
    from catalog_search.engine import SearchEngine

    created: List[SearchEngine] = []

    def _build(catalog, store, settings=None):
        engine = SearchEngine(catalog, store, settings=settings or test_settings, clock=fixed_clock)
        created.append(engine)
        return engine

    yield _build

    for engine in created:
        engine.close()


@pytest.fixture
def engine(engine_factory, catalog, kv_store):
    """SearchEngine over the sample catalog and an empty in-memory store."""
    return engine_factory(catalog, kv_store)


# ============================================================================
# Fixtures: FastAPI Test Client
# ============================================================================

@pytest.fixture
def app(engine, test_settings):
    """FastAPI application wired to the in-memory engine."""
    from api.app import create_app
    return create_app(engine=engine, settings=test_settings)


@pytest.fixture
def client(app):
    """HTTP client for testing FastAPI endpoints (runs the lifespan)."""
    from fastapi.testclient import TestClient
    with TestClient(app) as test_client:
        yield test_client


# ============================================================================
# Markers
# ============================================================================

def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: marks tests as unit tests")
    config.addinivalue_line("markers", "slow: marks tests as slow")
