# stripe_sync/conftest.py
import os
import pytest
from unittest.mock import Mock, patch

# In-memory SQLite for every test; set before stripe_sync reads settings
os.environ["TEST_DATABASE_URL"] = "sqlite://"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ.pop("STRIPE_SECRET_KEY", None)
os.environ["ADMIN_KEY"] = "admin-test-key"


@pytest.fixture(scope="function", autouse=True)
def fresh_db():
    """
    Give each test an empty database.

    Disposing the engine drops the in-memory database; the next access
    creates a new one and the tables are recreated.
    """
    from stripe_sync.core.database import create_all_tables, dispose_engine

    dispose_engine()
    create_all_tables()
    yield
    dispose_engine()


@pytest.fixture
def webhook_secret():
    return os.environ["STRIPE_WEBHOOK_SECRET"]


@pytest.fixture
def mock_provider():
    """Mock billing provider used by the service layer."""
    with patch("stripe_sync.features.billing.service.get_provider") as mock_get:
        provider = Mock()
        mock_get.return_value = provider
        yield provider


@pytest.fixture
def client():
    """TestClient over an app with an empty handler registry."""
    from fastapi.testclient import TestClient
    from stripe_sync.main import create_app

    return TestClient(create_app())
