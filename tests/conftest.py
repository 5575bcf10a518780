"""
Pytest configuration and fixtures for the Conference Paper Backend tests.
"""

import os
import shutil
import tempfile

import pytest
from fastapi.testclient import TestClient

# Set test environment variables before importing the app
_DATA_DIR = tempfile.mkdtemp(prefix="confpaper_test_")
os.environ["CONFPAPER_DB_PATH"] = os.path.join(_DATA_DIR, "confpaper.db")
os.environ["CONFPAPER_DOCSTORE_DIR"] = os.path.join(_DATA_DIR, "docstore")
os.environ["S3_BUCKET_NAME"] = ""

from confpaper_backend.main import app, conf as app_conf  # noqa: E402

from harness import reset_db, user  # noqa: E402


@pytest.fixture(scope="session", autouse=True)
def test_dirs():
    """Remove the test data directory after all tests."""
    yield _DATA_DIR
    shutil.rmtree(_DATA_DIR, ignore_errors=True)


@pytest.fixture
def api_keys():
    """Reset the database from fixtures; returns email -> API key."""
    return reset_db(app_conf)


@pytest.fixture
def conf(api_keys):
    return app_conf


@pytest.fixture
def client(api_keys):
    """Create a test client for the FastAPI app."""
    return TestClient(app)


@pytest.fixture
def chair_headers(api_keys):
    return {"X-API-Key": api_keys["chair@_.com"]}


@pytest.fixture
def kohler_headers(api_keys):
    return {"X-API-Key": api_keys["kohler@seas.harvard.edu"]}


@pytest.fixture
def u_chair(conf):
    return user(conf, "chair@_.com")


@pytest.fixture
def u_floyd(conf):
    return user(conf, "floyd@ee.lbl.gov")


@pytest.fixture
def u_kohler(conf):
    return user(conf, "kohler@seas.harvard.edu")


@pytest.fixture
def u_estrin(conf):
    return user(conf, "estrin@usc.edu")


@pytest.fixture
def u_outsider(conf):
    return user(conf, "outsider@_.com")
