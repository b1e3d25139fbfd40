"""SQLite + SQLModel engine and sessions"""

import logging
from collections.abc import Generator

from sqlalchemy import event
from sqlmodel import Session, SQLModel, create_engine

from investkaps.config import settings

logger = logging.getLogger(__name__)

BUSY_TIMEOUT_MS = 5000

engine = create_engine(
    settings.database_url,
    echo=False,
    connect_args={"check_same_thread": False},
)


@event.listens_for(engine, "connect")
def _sqlite_pragmas(dbapi_connection, connection_record) -> None:
    # scheduler jobs write while API requests read
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute(f"PRAGMA busy_timeout={BUSY_TIMEOUT_MS}")
    cursor.close()


def get_session() -> Generator[Session, None, None]:
    with Session(engine) as session:
        yield session


def create_db_and_tables() -> None:
    """Create every table registered by investkaps.models"""
    import investkaps.models  # noqa: F401

    SQLModel.metadata.create_all(engine)
    logger.info("Database ready at %s (%d tables)", settings.DB_PATH, len(SQLModel.metadata.tables))
