# alarmserver/database.py
"""
Database connection, session management, and table creation.
Uses SQLAlchemy; SQLite by default, any SQLAlchemy URL via DATABASE_URL.
All models are auto-imported here so create_tables() creates every table
in one call.
"""

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from alarmserver.config import settings


def make_engine(url: str):
    kwargs = {"pool_pre_ping": True, "echo": False}
    if url.startswith("sqlite"):
        # Sessions are opened from the event loop and from the FastAPI threadpool
        kwargs["connect_args"] = {"check_same_thread": False}
    return create_engine(url, **kwargs)


engine = make_engine(settings.DATABASE_URL)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """FastAPI dependency: yields a DB session and closes it after request."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def create_tables(bind=None):
    """
    Creates all DB tables on startup. Safe to call multiple times.
    Import all models here so SQLAlchemy knows about them.
    """
    from alarmserver.models.state_object import StateObject   # noqa
    from alarmserver.models.state_value import StateValue     # noqa

    Base.metadata.create_all(bind=bind or engine)
