"""
Database session management.

The conversation store owns session lifetimes, so there is no per-request
session dependency here; callers get a factory and open short-lived sessions.
"""

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from godrick.db.engine import get_engine

_session_factory: sessionmaker[Session] | None = None


def make_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Build a session factory bound to ``engine``."""
    return sessionmaker(
        bind=engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )


def get_session_factory() -> sessionmaker[Session]:
    """
    Get or create the session factory.

    Returns cached factory instance, creating it on first call.
    """
    global _session_factory

    if _session_factory is None:
        _session_factory = make_session_factory(get_engine())

    return _session_factory


def reset_session_factory() -> None:
    """Drop the cached factory, e.g. after the engine was disposed."""
    global _session_factory
    _session_factory = None
