from pathlib import Path

from sqlalchemy import inspect

from qa_orchestrator.core.database import build_engine, create_tables, ensure_sqlite_directory


def test_sqlite_directory_is_created(tmp_path):
    """Fresh deploys have no data directory yet; it must exist before SQLite opens the file"""
    db_path = tmp_path / "nested" / "data" / "qa_packages.db"
    url = f"sqlite:///{db_path.as_posix()}"

    resolved = ensure_sqlite_directory(url)

    assert resolved == url
    assert db_path.parent.exists()


def test_create_tables_on_file_database(tmp_path):
    db_path = tmp_path / "data" / "qa_packages.db"
    engine = build_engine(ensure_sqlite_directory(f"sqlite:///{db_path.as_posix()}"))

    create_tables(bind=engine)

    assert Path(db_path).exists()
    assert "qa_packages" in inspect(engine).get_table_names()
    engine.dispose()


def test_in_memory_urls_are_left_alone():
    assert ensure_sqlite_directory("sqlite://") == "sqlite://"
    assert ensure_sqlite_directory("sqlite:///:memory:") == "sqlite:///:memory:"
    assert ensure_sqlite_directory("postgresql://user@db/qa") == "postgresql://user@db/qa"
