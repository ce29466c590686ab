"""
Pytest fixtures for shopdata tests.

Provides a memory-backed DataStore, a Flask app on TestConfig, and small
builders for the records most tests need.
"""

import pytest

from shopdata import create_app, get_store
from shopdata.config import TestConfig
from shopdata.services.data_store import DataStore
from shopdata.services.snapshot_backends import MemorySnapshotBackend


ADMIN_ID = "admin-1"
ADMIN_NAME = "Admin One"


@pytest.fixture(scope='function')
def backend():
    return MemorySnapshotBackend()


@pytest.fixture(scope='function')
def store(backend):
    """Fresh store without the seed catalog; flushed and closed after the test."""
    store = DataStore(backend, debounce_seconds=0.05, seed_catalog=False)
    yield store
    store.shutdown()


@pytest.fixture(scope='function')
def app():
    """Create application for testing."""
    app = create_app(TestConfig)
    with app.app_context():
        yield app
        get_store().shutdown()


@pytest.fixture(scope='function')
def runner(app):
    return app.test_cli_runner()


@pytest.fixture(scope='function')
def user(store):
    return store.create_user({"email": "buyer@example.vn", "name": "Buyer"})


@pytest.fixture(scope='function')
def funded_user(store, user):
    store.adjust_balance(user.id, 1_000_000, description="Opening credit")
    return store.get_user(user.id)


@pytest.fixture(scope='function')
def category(store):
    return store.create_category({"name": "Gaming", "icon": "🎮"})


@pytest.fixture(scope='function')
def product(store, category):
    """Plain product sold at 150 000 VND with a 100 000 VND supplier cost."""
    return store.create_product({
        "title": "Game Pass",
        "price": 150_000,
        "stock": 20,
        "category": category.slug,
        "supplier": {"provider": "manual", "base_price": 100_000},
    })


@pytest.fixture(scope='function')
def option_product(store, category):
    return store.create_product({
        "title": "Premium",
        "category": category.slug,
        "options": [
            {"id": "1month", "label": "1 month", "price": 79_000, "stock": 5, "base_price": 50_000},
            {"id": "1year", "label": "1 year", "price": 499_000, "stock": 2},
        ],
    })


def make_completed_order(store, product, *, user_id="user-x", quantity=1, created_at=None, **extra):
    patch = {
        "user_id": user_id,
        "product_id": product.id,
        "quantity": quantity,
        "status": "completed",
        **extra,
    }
    if created_at is not None:
        patch["created_at"] = created_at
    return store.create_order(patch)
