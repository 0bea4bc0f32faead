# =============================================================================
# Database Engine & Session Management
# =============================================================================
#
# DESIGN DECISION: One synchronous engine for every caller.
# The coordinators are invoked from two places:
#   1. FastAPI route handlers (plain `def` endpoints, run in the threadpool)
#   2. Celery workers (synchronous by nature)
# Both need the same transaction semantics — the audit row must commit or
# roll back together with the mutation it documents — so both go through
# the same `session_scope()` context manager on the same engine.
#
# SESSION LIFECYCLE:
#   create → yield → commit (or rollback on error) → close
#
# A coordinator that must act AFTER commit (blob cleanup on deletion) opens
# its own scope, lets it exit, and only then touches the blob store.
# =============================================================================

from collections.abc import Callable, Generator
from contextlib import AbstractContextManager, contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from jobtrackr.config import settings

# A zero-argument callable returning a transactional session context.
SessionScope = Callable[[], AbstractContextManager[Session]]


# ---------------------------------------------------------------------------
# Engine — Lazy Initialization
# ---------------------------------------------------------------------------
# Lazy init avoids import errors (and connection attempts) in contexts that
# never touch the database, e.g. unit tests that inject their own scope.
#
# - pool_size=5 / max_overflow=10: fine for a single API node + workers.
# - pool_pre_ping=True: drop stale connections after DB restarts instead of
#   failing the first request that picks them up.
# ---------------------------------------------------------------------------

_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None


def _get_engine() -> Engine:
    """Lazily create and cache the SQLAlchemy engine."""
    global _engine
    if _engine is None:
        kwargs: dict = {"echo": settings.debug, "pool_pre_ping": True}
        if not settings.database_url.startswith("sqlite"):
            kwargs["pool_size"] = 5
            kwargs["max_overflow"] = 10
        _engine = create_engine(settings.database_url, **kwargs)
        enable_sqlite_foreign_keys(_engine)
    return _engine


def _get_session_factory() -> sessionmaker[Session]:
    """Lazily create and cache the session factory."""
    global _session_factory
    if _session_factory is None:
        _session_factory = sessionmaker(
            bind=_get_engine(),
            class_=Session,
            expire_on_commit=False,
        )
    return _session_factory


def enable_sqlite_foreign_keys(engine: Engine) -> None:
    """
    Turn on FK enforcement for SQLite connections.

    SQLite ignores ON DELETE CASCADE unless `PRAGMA foreign_keys=ON` is
    issued per connection. No-op for other dialects.
    """
    if engine.dialect.name != "sqlite":
        return

    @event.listens_for(engine, "connect")
    def _set_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def make_session_scope(factory: sessionmaker[Session]) -> SessionScope:
    """
    Build a `session_scope`-style context manager around any session factory.

    Used by tests to run the coordinators against an in-memory database.
    """

    @contextmanager
    def scope() -> Generator[Session, None, None]:
        session = factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    return scope


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """
    Context manager that provides one transactional database session.

    Usage:
        with session_scope() as session:
            app = session.get(Application, application_id)
            app.status = ApplicationStatus.INTERVIEW
            # Auto-commits on exit, auto-rollbacks on exception
    """
    with make_session_scope(_get_session_factory())() as session:
        yield session


def init_db() -> None:
    """Create all tables that do not exist yet (local dev convenience)."""
    from jobtrackr.db.models import Base

    Base.metadata.create_all(bind=_get_engine())
