from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from downloadgate.config import settings


def engine_options(database_url: str) -> dict:
    """Connection options for the given URL.

    SQLite connections are shared across threadpool workers, and concurrent
    redemptions must wait on the write lock instead of failing immediately.
    """
    if database_url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False, "timeout": 30}}
    return {"pool_pre_ping": True}


engine = create_engine(settings.database_url, **engine_options(settings.database_url))

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class Base(DeclarativeBase):
    pass


def get_db():
    """Dependency for FastAPI endpoints to get a database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
