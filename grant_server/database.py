"""
Database engine and session factory. SQLite for development, any SQLAlchemy URL otherwise.
"""
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from grant_server.models import Base


def make_engine(url: str) -> Engine:
    # SQLite: in-memory needs StaticPool so all connections share the same DB (for tests)
    # File-based SQLite needs check_same_thread=False for FastAPI's thread pool
    if url.startswith("sqlite:///:memory:") or url == "sqlite://":
        return create_engine(url, connect_args={"check_same_thread": False}, poolclass=StaticPool)
    connect_args = {"check_same_thread": False} if "sqlite" in url else {}
    return create_engine(url, connect_args=connect_args)


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)


def init_db(engine: Engine) -> None:
    """Create all tables."""
    Base.metadata.create_all(bind=engine)
