"""Database session management"""
from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import sessionmaker

from paddock.models.base import Base
from paddock.core.config import settings


def _engine_options(database_url: str) -> dict:
    """Bound every store operation by STORE_TIMEOUT_SECONDS.

    The processor retries deliveries it gets no answer for, so a hung query
    must turn into an error we can classify instead of a silent timeout.
    """
    timeout = settings.STORE_TIMEOUT_SECONDS
    backend = make_url(database_url).get_backend_name()

    if backend == "sqlite":
        return {
            "connect_args": {"check_same_thread": False, "timeout": timeout},
        }

    options = {
        "pool_pre_ping": True,
        "pool_recycle": 3600,
        "pool_timeout": timeout,
    }
    if backend == "postgresql":
        options["connect_args"] = {
            "connect_timeout": timeout,
            "options": f"-c statement_timeout={timeout * 1000}",
        }
    return options


# Create engine
engine = create_engine(settings.DATABASE_URL, **_engine_options(settings.DATABASE_URL))

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    """Dependency for FastAPI endpoints"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_session_factory():
    """Dependency: factory for work that outlives the request session (background tasks)"""
    return SessionLocal


def init_db():
    """Initialize database (create all tables)"""
    Base.metadata.create_all(bind=engine)
