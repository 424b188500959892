from __future__ import annotations

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from ocha.app.settings import settings


def build_engine(url: str, *, echo: bool = False, timeout: float | None = None) -> Engine:
    """
    Engine pour PostgreSQL (prod) ou SQLite (tests / poste local).

    - PostgreSQL : statement_timeout borne chaque requête.
    - SQLite : chaque transaction ouvre un BEGIN IMMEDIATE, ce qui sérialise
      les écrivains (pas de lost update, pas de deadlock de promotion de verrou).
    """
    timeout = settings.STORE_TIMEOUT_SECONDS if timeout is None else timeout

    if url.startswith("sqlite"):
        engine = create_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False, "timeout": timeout},
        )

        @event.listens_for(engine, "connect")
        def _sqlite_connect(dbapi_connection, connection_record):
            # pysqlite : on gère BEGIN nous-mêmes
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        @event.listens_for(engine, "begin")
        def _sqlite_begin(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")

        return engine

    return create_engine(
        url,
        echo=echo,
        pool_pre_ping=True,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_timeout=timeout,
        connect_args={"options": f"-c statement_timeout={int(timeout * 1000)}"},
    )


engine = build_engine(settings.DATABASE_URL, echo=settings.DB_ECHO)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)
