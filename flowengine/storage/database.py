"""Database connection and session management."""

import os
from typing import Optional
from sqlalchemy import create_engine, Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

DEFAULT_DATABASE_URL = "sqlite:///./flowengine.db"

# Base class for all database models
Base = declarative_base()


def build_engine(database_url: Optional[str] = None,
                 echo: bool = False,
                 connect_args: Optional[dict] = None) -> Engine:
    """Create a database engine with settings suited to the URL's backend."""
    if database_url is None:
        database_url = os.getenv("FLOWENGINE_DATABASE_URL", DEFAULT_DATABASE_URL)

    if connect_args is None:
        connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}

    if database_url.startswith("sqlite"):
        # One shared connection so background runs see the same in-memory database
        return create_engine(
            database_url,
            connect_args=connect_args,
            poolclass=StaticPool,
            echo=echo
        )
    return create_engine(database_url, echo=echo, connect_args=connect_args, pool_pre_ping=True)


engine = build_engine()

# Session factory, rebound by init_database()
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_database(database_url: Optional[str] = None, echo: bool = False) -> Engine:
    """Point the session factory at `database_url` and create missing tables."""
    global engine
    engine.dispose()
    engine = build_engine(database_url, echo=echo)
    SessionLocal.configure(bind=engine)
    create_tables()
    return engine


def create_tables():
    """Create all database tables."""
    # Register the mapped classes on Base.metadata
    from . import models  # noqa: F401
    Base.metadata.create_all(bind=engine)
