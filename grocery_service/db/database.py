# grocery_service/db/database.py
from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from grocery_service.config import get_db_url, get_db_echo

# Base class for all models
Base = declarative_base()


def create_db_engine(database_url: str = None):
    return create_async_engine(database_url or get_db_url(), echo=get_db_echo())


def create_session_factory(engine):
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False
    )


# Session generator, the factory is owned by the app lifespan
async def get_db(request: Request):
    async with request.app.state.session_factory() as session:
        yield session
