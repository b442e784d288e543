import os

# Must be set before anything imports postpulse.config
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest
from fastapi.testclient import TestClient
from sqlmodel import SQLModel, Session

from postpulse.database import engine, init_db
from postpulse.main import app


@pytest.fixture(autouse=True)
def _tables():
    init_db()
    yield
    SQLModel.metadata.drop_all(engine)


@pytest.fixture
def session():
    with Session(engine) as session:
        yield session


@pytest.fixture
def client():
    # No context manager: skip the lifespan (scheduler, DB probe)
    return TestClient(app)
