"""
Base database model and session management
"""
import os
from sqlalchemy import create_engine
from sqlalchemy.pool import NullPool
from sqlalchemy.orm import declarative_base, sessionmaker
from agency_dashboard.config import get_settings
from agency_dashboard.utils.logger import log

settings = get_settings()


def build_engine(database_url: str):
    """Create an engine with the pooling rules used across the app."""
    # Resolve relative SQLite paths to absolute so cwd changes can't break it
    if database_url.startswith("sqlite:///") and not database_url.startswith("sqlite:////"):
        rel_path = database_url[len("sqlite:///"):]
        database_url = "sqlite:///" + os.path.abspath(rel_path)

    if database_url.startswith("sqlite"):
        # Busy timeout: a second writer waits on the lock
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False, "timeout": 60},
            poolclass=NullPool,
            pool_pre_ping=True
        )

    return create_engine(
        database_url,
        pool_pre_ping=True,
        pool_size=3,
        max_overflow=5,
        pool_recycle=300,
    )


# Create database engine
engine = build_engine(settings.database_url)

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for all models
Base = declarative_base()


def get_db():
    """Get database session"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.expire_all()
        db.close()


def init_db(bind=None):
    """Initialize database tables."""
    # Import models so they register with Base.metadata
    from agency_dashboard import models  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
    log.info("Database tables ensured")
