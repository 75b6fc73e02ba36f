import sqlite3
from contextlib import closing
from pathlib import Path

import allure

from wikidata_filter_runner.orchestrator.repository import SQLiteTokenStore
from wikidata_filter_runner.runbook.repository import SQLitePipelineStore

pytestmark = [
    allure.epic("Storage"),
    allure.feature("Schema Migrations"),
]


def test_alembic_schema_is_initialized_to_head(tmp_path: Path) -> None:
    db_path = tmp_path / "migrations.db"
    store = SQLiteTokenStore(db_path)
    store.init_schema()
    store.close()

    with closing(sqlite3.connect(db_path)) as connection:
        connection.row_factory = sqlite3.Row
        row = connection.execute("SELECT version_num FROM alembic_version LIMIT 1").fetchone()
        assert row is not None
        assert str(row["version_num"]) == "20261018_0002"

        tables = connection.execute(
            """
            SELECT name
            FROM sqlite_master
            WHERE type = 'table'
              AND name IN ('tracking_tokens', 'task_runs', 'pipeline_steps')
            ORDER BY name
            """
        ).fetchall()
        assert [str(row["name"]) for row in tables] == [
            "pipeline_steps",
            "task_runs",
            "tracking_tokens",
        ]

        columns = connection.execute("PRAGMA table_info(tracking_tokens)").fetchall()
        assert "env_json" in {str(column["name"]) for column in columns}


def test_schema_upgrade_is_repeatable_across_stores(tmp_path: Path) -> None:
    db_path = tmp_path / "shared.db"
    tokens = SQLiteTokenStore(db_path)
    steps = SQLitePipelineStore(db_path)

    tokens.init_schema()
    steps.init_schema()
    tokens.init_schema()

    assert steps.list_steps("20201230") == []
    tokens.close()
    steps.close()
