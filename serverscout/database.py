"""
Database schema and connection management.

Uses SQLite with SQLAlchemy as an alternative durable backend for the
key-value store behind the endpoint cache.
"""

from datetime import datetime
from pathlib import Path
from typing import Union

from sqlalchemy import create_engine, Column, String, Text, DateTime
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

Base = declarative_base()


class Setting(Base):
    """One persisted key-value pair."""

    __tablename__ = "settings"

    key = Column(String, primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)


def database_url(target: Union[str, Path]) -> str:
    """Accept either a ``sqlite:///`` URL or a plain file path."""
    target = str(target)
    if target.startswith("sqlite://"):
        return target
    return f"sqlite:///{target}"


def init_database(target: Union[str, Path]) -> Engine:
    """
    Initialize database and create tables.

    Args:
        target: Path to SQLite database file, or a sqlite:/// URL

    Returns:
        SQLAlchemy engine bound to the database
    """
    url = database_url(target)
    prefix = "sqlite:///"
    if url.startswith(prefix) and url[len(prefix):] not in ("", ":memory:"):
        Path(url[len(prefix):]).parent.mkdir(parents=True, exist_ok=True)
    engine = create_engine(url, connect_args={"check_same_thread": False})
    Base.metadata.create_all(engine)
    return engine


def get_session_factory(engine: Engine):
    """
    Get a session factory bound to ``engine``.

    Returns:
        SQLAlchemy sessionmaker
    """
    return sessionmaker(bind=engine)
