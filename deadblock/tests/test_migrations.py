"""
Tests for migration discovery and the schema file.
"""
from deadblock.shared.migrations.runner import VERSIONS_DIR, MigrationRunner


def test_discovers_versioned_sql_in_order(tmp_path):
    for name in ("010_b.sql", "000_a.sql", "notes.txt"):
        (tmp_path / name).write_text("SELECT 1;")

    runner = MigrationRunner(pool=None, versions_dir=tmp_path)

    assert [p.name for p in runner.discover()] == ["000_a.sql", "010_b.sql"]


def test_initial_schema_defines_coordination_tables():
    sql = (VERSIONS_DIR / "000_initial_schema.sql").read_text()

    for table in ("profiles", "queue_entries", "games", "rematch_requests"):
        assert f"CREATE TABLE IF NOT EXISTS {table}" in sql
    assert "UNIQUE (user_id)" in sql


def test_rematch_order_uses_statement_time():
    sql = (VERSIONS_DIR / "000_initial_schema.sql").read_text()
    rematch_table = sql.split("CREATE TABLE IF NOT EXISTS rematch_requests", 1)[1].split(");", 1)[0]

    assert "created_at TIMESTAMPTZ NOT NULL DEFAULT clock_timestamp()" in rematch_table
