"""
Database connection and session management.
"""
from __future__ import annotations

from typing import Any, Generator

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from volunteer_automation.config import settings

engine: Engine = create_engine(
    settings.database_url,
    pool_pre_ping=True,
    pool_size=settings.db_pool_size,
    max_overflow=settings.db_max_overflow,
    echo=False,
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    """
    Dependency for getting a database session.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind: Engine | None = None) -> None:
    """
    Initialize database by registering models and creating tables.
    """
    from volunteer_automation.models import Base

    Base.metadata.create_all(bind=bind or engine)


def check_database_connection() -> bool:
    """
    Return True when the database connection is healthy.
    """
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
        return True
    except SQLAlchemyError:
        return False


def database_health() -> dict[str, Any]:
    """
    Return structured database health details.
    """
    try:
        with engine.connect() as connection:
            result = connection.execute(
                text(
                    "SELECT current_database() AS database_name, "
                    "current_user AS database_user, "
                    "version() AS server_version"
                )
            ).mappings().one()

        return {
            "ok": True,
            "database": str(result["database_name"]),
            "user": str(result["database_user"]),
            "server_version": str(result["server_version"]),
        }
    except SQLAlchemyError as exc:
        return {
            "ok": False,
            "error": str(exc),
        }
