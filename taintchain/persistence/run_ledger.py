"""SQLite ledger of chain run outcomes."""

from __future__ import annotations

import json

import aiosqlite

from taintchain.models.chains import ChainRunResult

_SCHEMA = """
CREATE TABLE IF NOT EXISTS chain_runs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    run_id TEXT NOT NULL UNIQUE,
    chain_id TEXT NOT NULL,
    expected_category TEXT NOT NULL,
    state TEXT NOT NULL,
    error_kind TEXT,
    execution_id TEXT NOT NULL,
    session_id TEXT,
    sink_category_match INTEGER,
    record TEXT NOT NULL,
    started_at TEXT NOT NULL,
    finished_at TEXT
)
"""

_INDEX = "CREATE INDEX IF NOT EXISTS idx_chain_runs_chain ON chain_runs (chain_id)"


class SQLiteRunLedger:
    def __init__(self, db_path: str) -> None:
        self.db_path = db_path

    async def initialize(self) -> None:
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(_SCHEMA)
            await db.execute(_INDEX)
            await db.commit()

    async def record(self, result: ChainRunResult) -> str:
        record = result.to_record()
        match = result.sink_category_match
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                """INSERT INTO chain_runs (
                    run_id, chain_id, expected_category, state, error_kind,
                    execution_id, session_id, sink_category_match, record,
                    started_at, finished_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    result.run_id,
                    result.chain_id,
                    str(result.expected_category),
                    str(result.state),
                    result.error.kind if result.error else None,
                    result.execution_id,
                    result.session_id,
                    None if match is None else int(match),
                    json.dumps(record, default=str, sort_keys=True),
                    record["started_at"],
                    record["finished_at"],
                ),
            )
            await db.commit()
        return result.run_id

    async def list_runs(self, chain_id: str | None = None) -> list[dict[str, object]]:
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            if chain_id is None:
                cursor = await db.execute("SELECT record FROM chain_runs ORDER BY id ASC")
            else:
                cursor = await db.execute(
                    "SELECT record FROM chain_runs WHERE chain_id = ? ORDER BY id ASC",
                    (chain_id,),
                )
            rows = await cursor.fetchall()
        return [json.loads(row["record"]) for row in rows]

    async def summary(self) -> dict[str, int]:
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                "SELECT state, COUNT(*) FROM chain_runs GROUP BY state ORDER BY state"
            )
            rows = await cursor.fetchall()
        return {str(row[0]): int(row[1]) for row in rows}


__all__ = ["SQLiteRunLedger"]
