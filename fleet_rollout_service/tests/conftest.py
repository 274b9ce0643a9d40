"""
Main conftest file that imports and re-exports all fixtures from modular files.
This approach improves maintainability by organizing fixtures into logical modules.
"""

import os
import uuid

from dotenv import load_dotenv

# Explicitly load the test environment variables before importing any app modules
dotenv_path = os.path.join(os.path.dirname(__file__), "..", ".env.test")
if os.path.exists(dotenv_path):
    load_dotenv(dotenv_path=dotenv_path, override=True)
else:
    print(f"Warning: .env.test file not found at {dotenv_path}")

# The suite never talks to PostgreSQL and never starts the background workers.
os.environ.setdefault("FLEET_ROLLOUT_SERVICE_DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("FLEET_ROLLOUT_SERVICE_BACKGROUND_WORKERS_ENABLED", "false")

import pytest

# Import and re-export fixtures from modular files
from tests.fixtures.client import client
from tests.fixtures.db import db_engine, db_session, session_factory
from tests.fixtures.helpers import T0


@pytest.fixture
def project_id():
    """A fresh project id per test."""
    return uuid.uuid4()


@pytest.fixture
def t0():
    """The fixed reference time used by engine tests."""
    return T0
