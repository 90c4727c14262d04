"""Unit tests for the order database migration."""

import re
from pathlib import Path

MIGRATION = Path(__file__).resolve().parents[2] / "supabase" / "migrations" / "20251018120000_orders.sql"


def function_body(sql: str, name: str) -> str:
    match = re.search(rf"create or replace function {name}\(.*?\$\$(.*?)\$\$", sql, re.DOTALL | re.IGNORECASE)
    assert match is not None, f"{name} not defined"
    return match.group(1)


class TestOrderMigration:
    """Tests for lock timeouts in the order functions."""

    def test_order_functions_bound_lock_waits(self) -> None:
        """Both order functions apply the per-call lock_timeout."""
        sql = MIGRATION.read_text()

        for name in ("place_order", "apply_order_transition"):
            assert "set_config('lock_timeout'" in function_body(sql, name)

    def test_service_role_bounds_statement_time(self) -> None:
        """Row locks cannot be held longer than the service role statement_timeout."""
        sql = MIGRATION.read_text()

        assert re.search(r"alter role service_role set statement_timeout = '\d+s';", sql)
        assert "notify pgrst, 'reload config';" in sql
