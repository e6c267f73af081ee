"""Database engine builder.

- Default pool: NullPool (client-side pooling disabled, suits pgbouncer transaction mode)
- ENV: DEALCORE_DB_POOL=nullpool|queuepool (default: nullpool)
- ENV: DEALCORE_DB_POOL_SIZE / DEALCORE_DB_MAX_OVERFLOW (queuepool only)
- ENV: DEALCORE_DB_APPLICATION_NAME (PostgreSQL connection tag)
- SQLite URLs (local runs) get check_same_thread=False and a busy timeout
"""

import logging
import os
import re
from typing import Any

from sqlalchemy import Engine, NullPool, StaticPool, create_engine
from sqlalchemy.orm import Session, sessionmaker

logger = logging.getLogger(__name__)


def _mask_password(url: str) -> str:
    """Mask password in database URL for safe logging."""
    return re.sub(r"://([^:]+):([^@]+)@", r"://\1:***@", url)


def _build_sqlite_engine(url: str) -> Engine:
    connect_args: dict[str, Any] = {"check_same_thread": False, "timeout": 30}
    if url in {"sqlite://", "sqlite:///:memory:"}:
        return create_engine(url, connect_args=connect_args, poolclass=StaticPool)
    return create_engine(url, connect_args=connect_args, poolclass=NullPool)


def build_engine(database_url: str | None = None) -> Engine:
    """
    Build SQLAlchemy engine.

    Args:
        database_url: Database URL. If None, reads from env DATABASE_URL.

    Returns:
        SQLAlchemy Engine instance.

    Raises:
        ValueError: If DATABASE_URL not provided and not in environment,
            or DEALCORE_DB_POOL holds an unknown mode.
    """
    url = database_url or os.getenv("DATABASE_URL")
    if not url:
        raise ValueError(
            "DATABASE_URL is required. "
            "Pass as argument or set DATABASE_URL environment variable."
        )

    if url.startswith("sqlite"):
        engine = _build_sqlite_engine(url)
        logger.debug("Database engine created: pool=%s, url=%s", engine.pool.__class__.__name__, url)
        return engine

    connect_args: dict[str, Any] = {}
    app_name = os.getenv("DEALCORE_DB_APPLICATION_NAME", "dealcore-api")
    if app_name:
        connect_args["application_name"] = app_name

    pool_mode = os.getenv("DEALCORE_DB_POOL", "nullpool").lower()

    if pool_mode == "nullpool":
        engine = create_engine(
            url,
            poolclass=NullPool,
            pool_pre_ping=True,
            connect_args=connect_args,
        )
    elif pool_mode == "queuepool":
        pool_size = int(os.getenv("DEALCORE_DB_POOL_SIZE", "5"))
        max_overflow = int(os.getenv("DEALCORE_DB_MAX_OVERFLOW", "10"))
        engine = create_engine(
            url,
            pool_pre_ping=True,
            pool_size=pool_size,
            max_overflow=max_overflow,
            connect_args=connect_args,
        )
    else:
        raise ValueError(
            f"Invalid DEALCORE_DB_POOL value: {pool_mode}. "
            "Must be 'nullpool' or 'queuepool'."
        )

    # Never log the raw URL
    logger.debug(
        "Database engine created: pool=%s, url=%s",
        engine.pool.__class__.__name__,
        _mask_password(url),
    )

    return engine


def build_sessionmaker(engine: Engine) -> sessionmaker[Session]:
    """
    Build SQLAlchemy sessionmaker.

    Args:
        engine: SQLAlchemy Engine instance.

    Returns:
        sessionmaker instance configured with autoflush=False.
    """
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)
