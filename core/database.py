"""
Source database engine management with SQLAlchemy
"""

from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.pool import NullPool

from core.config import settings
import logging

logger = logging.getLogger(__name__)


def create_source_engine(url: Optional[str] = None) -> Engine:
    """
    Create an engine for the database rows are extracted from.

    Extraction holds one connection for the length of a run, so pooling
    is disabled.
    """
    url = url or settings.SOURCE_DATABASE_URL
    return create_engine(
        url,
        echo=settings.ENVIRONMENT == "development" and settings.LOG_LEVEL.upper() == "DEBUG",
        poolclass=NullPool,
        future=True
    )


@contextmanager
def source_connection(engine: Optional[Engine] = None) -> Iterator[Connection]:
    """Get a connection to the source database"""
    engine = engine or create_source_engine()
    connection = engine.connect()
    try:
        yield connection
    finally:
        connection.close()
