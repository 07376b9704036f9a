"""
Database configuration for SQLAlchemy + SQLite.

Cities and their latest weather snapshot live here; the weather core itself
never touches the database.
"""

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase
from .settings import settings


def make_engine(url: str) -> Engine:
    # SQLite needs check_same_thread=False because FastAPI runs sync deps in threads.
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, connect_args=connect_args)


DATABASE_URL = f"sqlite:///{settings.sqlite_path}"

engine = make_engine(DATABASE_URL)

# Session factory used by dependency injection and the refresh task
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class Base(DeclarativeBase):
    """Base class for ORM models."""
    pass


def get_db():
    """
    FastAPI dependency that yields a DB session per request,
    then closes it cleanly afterwards.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
