# cv-validator/cv_validator/db/database.py

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool
from typing import Generator

from cv_validator.core.config import settings
from cv_validator.db.models import Base


# Database URL is loaded from settings
SQLALCHEMY_DATABASE_URL = settings.DATABASE_URL

connect_args = {}
engine_kwargs = {}
if "sqlite" in SQLALCHEMY_DATABASE_URL:
    # Needed for SQLite with FastAPI's threadpool request handling
    connect_args["check_same_thread"] = False
    if SQLALCHEMY_DATABASE_URL in ("sqlite://", "sqlite:///:memory:"):
        # One shared connection, otherwise every session sees a fresh empty database
        engine_kwargs["poolclass"] = StaticPool

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args=connect_args,
    **engine_kwargs,
)

# Create a configured "Session" class
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db() -> None:
    """Create tables that do not exist yet."""
    Base.metadata.create_all(bind=engine)


# Dependency to get a database session
def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db # Provide the session to the endpoint
    finally:
        db.close() # Ensure the session is closed afterwards
