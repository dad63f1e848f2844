import asyncio
import json
from datetime import datetime, timezone
from typing import Any, List, Optional, Tuple

import aiosqlite


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class EventLog:
    """Append-only store of runs and their progress events."""

    def __init__(self, path: str):
        self.path = path
        self._append_lock = asyncio.Lock()

    async def init(self) -> None:
        async with aiosqlite.connect(self.path) as db:
            await db.executescript(
                """
                PRAGMA journal_mode=WAL;
                CREATE TABLE IF NOT EXISTS runs(
                    run_id TEXT PRIMARY KEY,
                    created_at TEXT,
                    finished_at TEXT,
                    prompt TEXT,
                    status TEXT,
                    task_spec_json TEXT,
                    final_answer TEXT,
                    cost_json TEXT,
                    error TEXT
                );
                CREATE TABLE IF NOT EXISTS events(
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    run_id TEXT,
                    seq INTEGER,
                    event_type TEXT,
                    payload_json TEXT,
                    created_at TEXT,
                    UNIQUE(run_id, seq)
                );
                CREATE INDEX IF NOT EXISTS idx_events_run_seq ON events(run_id, seq);
                """
            )
            await db.commit()

    async def execute(self, query: str, params: Tuple[Any, ...] = ()) -> None:
        async with aiosqlite.connect(self.path) as db:
            await db.execute(query, params)
            await db.commit()

    async def fetchall(self, query: str, params: Tuple[Any, ...] = ()) -> List[aiosqlite.Row]:
        async with aiosqlite.connect(self.path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(query, params)
            rows = await cursor.fetchall()
            await cursor.close()
            return rows

    async def fetchone(self, query: str, params: Tuple[Any, ...] = ()) -> Optional[aiosqlite.Row]:
        rows = await self.fetchall(query, params)
        return rows[0] if rows else None

    async def create_run(self, run_id: str, prompt: str, status: str = "running") -> None:
        await self.execute(
            "INSERT INTO runs(run_id, created_at, prompt, status) VALUES (?,?,?,?)",
            (run_id, utc_now(), prompt, status),
        )

    async def finish_run(
        self,
        run_id: str,
        status: str,
        final_answer: Optional[str] = None,
        task_spec: Optional[dict] = None,
        cost: Optional[dict] = None,
        error: Optional[str] = None,
    ) -> None:
        await self.execute(
            "UPDATE runs SET status=?, finished_at=?, final_answer=?, task_spec_json=?, cost_json=?, error=? "
            "WHERE run_id=?",
            (
                status,
                utc_now(),
                final_answer,
                json.dumps(task_spec) if task_spec is not None else None,
                json.dumps(cost) if cost is not None else None,
                error,
                run_id,
            ),
        )

    async def get_run(self, run_id: str) -> Optional[dict]:
        row = await self.fetchone(
            "SELECT run_id, created_at, finished_at, prompt, status, task_spec_json, final_answer, cost_json, error "
            "FROM runs WHERE run_id=?",
            (run_id,),
        )
        if not row:
            return None
        data = dict(row)
        data["task_spec"] = json.loads(data.pop("task_spec_json") or "null")
        data["cost"] = json.loads(data.pop("cost_json") or "null")
        return data

    async def next_event_seq(self, run_id: str) -> int:
        row = await self.fetchone("SELECT MAX(seq) as max_seq FROM events WHERE run_id=?", (run_id,))
        max_seq = row["max_seq"] if row and row["max_seq"] is not None else 0
        return int(max_seq) + 1

    async def append_event(self, run_id: str, event_type: str, payload: dict) -> dict:
        # Background summaries append concurrently with the main flow.
        async with self._append_lock:
            seq = await self.next_event_seq(run_id)
            created_at = utc_now()
            await self.execute(
                "INSERT INTO events(run_id, seq, event_type, payload_json, created_at) VALUES (?,?,?,?,?)",
                (run_id, seq, event_type, json.dumps(payload), created_at),
            )
        return {"run_id": run_id, "seq": seq, "event_type": event_type, "payload": payload, "created_at": created_at}

    async def list_events(self, run_id: str, after_seq: int = 0) -> List[dict]:
        rows = await self.fetchall(
            "SELECT seq, event_type, payload_json, created_at FROM events WHERE run_id=? AND seq>? ORDER BY seq ASC",
            (run_id, after_seq),
        )
        return [
            {
                "seq": row["seq"],
                "event_type": row["event_type"],
                "payload": json.loads(row["payload_json"] or "{}"),
                "created_at": row["created_at"],
            }
            for row in rows
        ]
