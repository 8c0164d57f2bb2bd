import sys
import logging

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError, SQLAlchemyError

logger = logging.getLogger(__name__)


def mask_database_url(db_url: str) -> str:
    """Hide the password part of a user:password@host URL."""
    if "@" not in db_url:
        return db_url
    credentials_part = db_url.split('@')[0].split('://')[-1]
    if ':' in credentials_part: # user:password format
        return db_url.replace(credentials_part.split(':', 1)[1], "****", 1)
    return db_url


def check_database_connection(engine: Engine) -> bool:
    """
    Runs a trivial query against the database. Returns True when the
    database answered, False otherwise. Used by the /health endpoint.
    """
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1")).scalar()
        return True
    except (OperationalError, SQLAlchemyError) as e:
        logger.error(f"Database health check failed: {e}")
        return False


def verify_database_connection() -> bool:
    """
    Attempts to connect to the database configured in DATABASE_URL and run
    a simple query, printing a short report.
    """
    from cv_validator.db.database import SQLALCHEMY_DATABASE_URL, engine

    print("--- Database Connection Verification ---")
    print(f"Using Database URL: {mask_database_url(SQLALCHEMY_DATABASE_URL)}")

    if check_database_connection(engine):
        print("Connection successful! Simple query (SELECT 1) returned.")
        return True

    print("\nERROR: Could not connect to the database.")
    print("Check: Database server running? Correct host/port? Credentials? Database exists?")
    return False


if __name__ == "__main__":
    if verify_database_connection():
        print("\nDatabase connection appears to be working.")
        sys.exit(0) # Exit with success status
    else:
        print("\nDatabase connection verification failed.")
        sys.exit(1) # Exit with error status
