from contextlib import contextmanager

from academy.db.base import SessionLocal


def get_db():
    """FastAPI dependency: one session per request."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def session_scope(session_factory=SessionLocal):
    """
    Session for work that runs outside a request (background passes, scripts).
    Rolls back on error; the caller decides when to commit.
    """
    db = session_factory()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
