"""Tests for the startup schema upgrade.

The Alembic environment drives its own event loop, so these are plain sync
tests. They run the real migration chain against a throwaway SQLite file.
"""

import sqlalchemy as sa

from lab_api.main import _upgrade_schema


def test_upgrade_creates_schema_on_sqlite(tmp_path, monkeypatch):
    database_file = tmp_path / "lab.db"
    # env.py gives DATABASE_URL precedence over the injected option.
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{database_file}")

    _upgrade_schema(f"sqlite+aiosqlite:///{database_file}")

    engine = sa.create_engine(f"sqlite:///{database_file}")
    try:
        inspector = sa.inspect(engine)
        assert {"users", "container_statuses", "containers", "audit_logs"} <= set(
            inspector.get_table_names()
        )
        container_columns = {column["name"] for column in inspector.get_columns("containers")}
        assert {"lxc_name", "ip_address", "status_id", "metadata", "created_at"} <= container_columns

        with engine.connect() as connection:
            names = connection.execute(
                sa.text("SELECT name FROM container_statuses ORDER BY id")
            ).scalars().all()
        assert names == ["creating", "running", "stopped", "failed", "deleting"]
    finally:
        engine.dispose()


def test_upgrade_is_idempotent(tmp_path, monkeypatch):
    url = f"sqlite+aiosqlite:///{tmp_path / 'lab.db'}"
    monkeypatch.setenv("DATABASE_URL", url)

    _upgrade_schema(url)
    _upgrade_schema(url)
