# shadowchat/infra/postgres.py

from contextlib import contextmanager

from fastapi import Request
from sqlalchemy import create_engine, event, text
from sqlalchemy.orm import sessionmaker

from shadowchat.core.config import DATABASE_URL
from shadowchat.models.base import Base
from shadowchat.utils.logger import get_logger

logger = get_logger(__name__)

# =========================
# ENGINE CONFIGURATION
# =========================


def make_engine(url: str = DATABASE_URL, **kwargs):
    """
    Build an engine for the given URL.
    SQLite gets foreign keys switched on so ON DELETE CASCADE / SET NULL behave
    like they do on PostgreSQL, and SQLAlchemy takes over BEGIN from the driver
    so savepoints (begin_nested) nest inside the real transaction.
    """
    if url.startswith("sqlite"):
        engine = create_engine(url, **kwargs)

        @event.listens_for(engine, "connect")
        def _on_connect(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        @event.listens_for(engine, "begin")
        def _on_begin(conn):
            conn.exec_driver_sql("BEGIN")

        return engine

    return create_engine(
        url,
        pool_pre_ping=True,  # Check connections before using them
        pool_size=5,         # Maintain 5 connections in the pool
        max_overflow=10,     # Allow 10 extra connections if needed
        pool_recycle=3600,   # Recycle connections every hour
        echo=False,
        **kwargs,
    )


engine = make_engine()

# =========================
# SESSION CONFIGURATION
# =========================

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine
)

# =========================
# DATABASE FUNCTIONS
# =========================

def get_db(request: Request):
    """
    FastAPI dependency to provide a DB session to routes.
    Uses the session factory the app was built with; commits when the route returns.
    Usage:
        def my_route(db: Session = Depends(get_db)):
            ...
    """
    with db_session(request.app.state.session_factory) as db:
        yield db


@contextmanager
def db_session(factory=None):
    """
    Context manager for standalone DB operations.
    Commits on success, rolls back on any exception and always closes.
    Usage:
        with db_session() as db:
            user = db.query(User).first()
    """
    session = (factory or SessionLocal)()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_db(bind=None):
    """
    Create all tables based on registered models.
    """
    # Import models here to register them with Base
    from shadowchat.models import chat, chat_member, friend, message, reaction, user  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
    logger.info("Database tables created")


def test_connection() -> bool:
    """
    Test DB connection.
    """
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
            logger.info("Database connection successful")
            return True
    except Exception as e:
        logger.error(f"Database connection failed: {e}")
        return False


if __name__ == "__main__":
    test_connection()
