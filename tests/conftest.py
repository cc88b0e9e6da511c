# tests/conftest.py
import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from grocery_service.db.database import Base, create_db_engine, create_session_factory
from grocery_service.db.init_db import init_db
from grocery_service.orders import OrderEngine
from tests.helpers import seed_rows


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "grocery.db"


@pytest_asyncio.fixture
async def session_factory(db_path):
    engine = create_db_engine(f"sqlite+aiosqlite:///{db_path}")
    await init_db(engine)
    factory = create_session_factory(engine)
    async with factory() as session:
        session.add_all(seed_rows())
        await session.commit()
    yield factory
    await engine.dispose()


@pytest.fixture
def order_engine(session_factory):
    return OrderEngine(session_factory, timeout=5, conflict_retries=1)


@pytest.fixture
def sync_db(db_path):
    engine = create_engine(f"sqlite:///{db_path}")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        session.add_all(seed_rows())
        session.commit()
    yield engine
    engine.dispose()


@pytest.fixture
def client(sync_db, db_path, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{db_path}")
    from grocery_service.main import app

    with TestClient(app) as test_client:
        yield test_client
