import tempfile
from pathlib import Path
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool
import structlog

from qa_orchestrator.config.settings import settings

logger = structlog.get_logger()


def build_engine(db_url: str) -> Engine:
    """Create an engine, sharing one connection for in-memory SQLite"""
    url = make_url(db_url)
    if not url.drivername.startswith("sqlite"):
        return create_engine(db_url, pool_pre_ping=True)

    kwargs = {"connect_args": {"check_same_thread": False}}
    if not url.database or url.database == ":memory:":
        kwargs["poolclass"] = StaticPool
    return create_engine(db_url, **kwargs)


def ensure_sqlite_directory(db_url: str) -> str:
    """Create the parent directory of a file-backed SQLite URL.

    Falls back to a file in the system temp directory when the configured
    location is not writable.
    """
    url = make_url(db_url)
    if not url.drivername.startswith("sqlite") or not url.database or url.database == ":memory:":
        return db_url

    db_path = Path(url.database)
    if not db_path.is_absolute():
        db_path = (Path.cwd() / db_path).resolve()

    try:
        db_path.parent.mkdir(parents=True, exist_ok=True)
        probe = db_path.parent / ".writable_probe"
        probe.write_text("ok")
        probe.unlink()
    except OSError as e:
        fallback = Path(tempfile.gettempdir()) / "qa_packages_fallback.db"
        logger.error(
            "SQLite directory not writable, using temp file",
            path=str(db_path),
            fallback=str(fallback),
            error=str(e),
        )
        return f"sqlite:///{fallback.as_posix()}"

    logger.info("Resolved sqlite path", resolved=str(db_path))
    return db_url


resolved_db_url = ensure_sqlite_directory(settings.database_url)
engine = build_engine(resolved_db_url)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_database() -> Generator[Session, None, None]:
    """Dependency to get database session"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def create_tables(bind: Engine = None):
    """Create all database tables"""
    from qa_orchestrator.models.database import Base

    try:
        Base.metadata.create_all(bind=bind or engine)
        logger.info("Database tables created successfully")
    except Exception as e:
        logger.error("Failed to create database tables", error=str(e))
        raise
