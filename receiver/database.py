"""
Database session management for the telematics tracker.

Provides the database engine and session factory shared by blueprints and
scheduler jobs without circular dependencies.
"""

import logging
import time

from config import Config
from flask import g
from models import get_engine
from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import scoped_session, sessionmaker

logger = logging.getLogger(__name__)

# Create engine and session factory
engine = get_engine(Config.DATABASE_URL)
SessionLocal = scoped_session(sessionmaker(bind=engine, expire_on_commit=False))

# Poll cycles run many small queries; flag any that take longer than this
SLOW_QUERY_THRESHOLD_MS = 500


@event.listens_for(Engine, "before_cursor_execute")
def before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
    """Record query start time."""
    conn.info.setdefault("query_start_time", []).append(time.time())


@event.listens_for(Engine, "after_cursor_execute")
def after_cursor_execute(conn, cursor, statement, parameters, context, executemany):
    """Log slow queries."""
    duration_ms = (time.time() - conn.info["query_start_time"].pop(-1)) * 1000

    if duration_ms > SLOW_QUERY_THRESHOLD_MS:
        truncated_query = statement[:200] + "..." if len(statement) > 200 else statement
        logger.warning(
            f"Slow query detected: {duration_ms:.2f}ms - {truncated_query}", extra={"duration_ms": duration_ms}
        )


def get_db():
    """
    Get database session for the current request.

    The session is stored on Flask's application context and removed in
    teardown.
    """
    if "db" not in g:
        g.db = SessionLocal()
    return g.db


def get_scheduler_db():
    """Get a database session for background jobs (thread-local)."""
    return SessionLocal()


def close_db(exception=None):
    """Close database session at end of request."""
    db = g.pop("db", None)
    if db is not None:
        SessionLocal.remove()


def init_app(app):
    """Register the session teardown with the Flask app."""
    app.teardown_appcontext(close_db)
