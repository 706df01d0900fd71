"""
dsconfig Database Session Management.

Builds short-lived SQLAlchemy engines from a validated DatasourceRecord.
Diagnostics open a single connection per run, so engines use NullPool and
are disposed as soon as the connection scope exits.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.pool import NullPool

from dsconfig.engine.validator import DatasourceRecord

logger = logging.getLogger("dsconfig.db.session")


def build_engine(
    record: DatasourceRecord,
    connect_timeout: int = 5,
    echo: Optional[bool] = None,
) -> Engine:
    """
    Create an engine for the record's database.

    Args:
        record:          Validated datasource record.
        connect_timeout: libpq connect_timeout (seconds).
        echo:            Log every statement. Defaults to the record's
                         ``show_sql`` flag.
    """
    return create_engine(
        record.sqlalchemy_url(),
        poolclass=NullPool,
        echo=record.show_sql if echo is None else echo,
        connect_args={"connect_timeout": connect_timeout},
    )


@contextmanager
def connection_scope(
    record: DatasourceRecord,
    connect_timeout: int = 5,
) -> Generator[Connection, None, None]:
    """
    Context manager yielding one connection; the engine is disposed on exit.

    Usage:
        with connection_scope(record) as conn:
            conn.execute(text("SELECT 1"))
    """
    engine = build_engine(record, connect_timeout=connect_timeout)
    try:
        with engine.connect() as conn:
            yield conn
    finally:
        engine.dispose()
        logger.debug("Disposed engine for %s:%s/%s", record.host, record.port, record.database)
