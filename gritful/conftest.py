# gritful/conftest.py
import sys
from pathlib import Path

import pytest

# Add repository root to PYTHONPATH
REPO_ROOT = Path(__file__).resolve().parent.parent
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))


@pytest.fixture(scope="function", autouse=True)
def reset_db():
    """
    Fresh in-memory SQLite database for every test.

    StaticPool keeps the single in-memory connection alive across sessions.
    """
    from gritful.core.database import init_engine, reset_database, drop_all_tables

    init_engine("sqlite://")
    reset_database()
    yield
    drop_all_tables()


@pytest.fixture
def client():
    from fastapi.testclient import TestClient
    from gritful.main import app

    return TestClient(app)
