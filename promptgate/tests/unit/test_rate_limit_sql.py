from __future__ import annotations

from sqlalchemy.dialects import postgresql

from promptgate.persistence.repos.rate_limits import build_increment_statement
from promptgate.services.rate_limit import SCOPE_USER, CounterKey


def test_increment_statement_is_single_atomic_upsert() -> None:
    stmt = build_increment_statement(CounterKey(SCOPE_USER, "u1", "2026-03-01T14:30"))
    sql = str(stmt.compile(dialect=postgresql.dialect()))

    assert sql.startswith("INSERT INTO ai_rate_limits")
    assert "ON CONFLICT ON CONSTRAINT uq_ai_rate_limits_scope_identity_window DO UPDATE" in sql
    assert "ai_rate_limits.request_count +" in sql
    assert "RETURNING ai_rate_limits.request_count" in sql
