"""SQLite implementation of the job repository."""

from __future__ import annotations

import asyncio
import json
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Any

from ..contracts import EntityId, Flow, Job, Pipeline, utcnow
from ..status import PENDING, PROCESSING, SEPARATOR, is_status_final
from ..utils.merge import deep_merge
from ._rows import entity_to_text, row_to_flow, row_to_job, row_to_pipeline
from .repository import JobRepository


class SQLiteJobRepository(JobRepository):
    """Persist jobs, flows and pipelines using SQLite."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS pipelines (
                pipeline_id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                description TEXT,
                pipeline_config TEXT NOT NULL,
                created_at TEXT NOT NULL
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS flows (
                flow_id INTEGER PRIMARY KEY AUTOINCREMENT,
                pipeline_id INTEGER NOT NULL,
                name TEXT NOT NULL,
                description TEXT,
                flow_config TEXT NOT NULL,
                scheduling_config TEXT NOT NULL,
                last_run_at TEXT
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS jobs (
                job_id INTEGER PRIMARY KEY AUTOINCREMENT,
                pipeline_id TEXT NOT NULL,
                flow_id TEXT NOT NULL,
                source TEXT NOT NULL,
                label TEXT,
                status TEXT NOT NULL,
                engine_data TEXT,
                created_at TEXT NOT NULL,
                completed_at TEXT
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS processed_items (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                flow_step_id TEXT NOT NULL,
                source_type TEXT NOT NULL,
                item_identifier TEXT NOT NULL,
                job_id INTEGER NOT NULL,
                processed_at TEXT NOT NULL,
                UNIQUE (flow_step_id, source_type, item_identifier)
            )
            """
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> int:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            self._conn.commit()
            return cur.rowcount

    def _insert(self, query: str, *params: Any) -> int:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            self._conn.commit()
            return cur.lastrowid

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchall()

    def _update_engine_data(self, job_id: int, mutate) -> dict[str, Any] | None:
        with self._lock:
            row = self._fetchone(
                "SELECT engine_data FROM jobs WHERE job_id = ?", job_id
            )
            if row is None:
                return None
            data = mutate(json.loads(row["engine_data"]) if row["engine_data"] else {})
            self._execute(
                "UPDATE jobs SET engine_data = ? WHERE job_id = ?",
                json.dumps(data),
                job_id,
            )
            return data

    def _complete(self, job_id: int, status: str) -> bool:
        with self._lock:
            row = self._fetchone("SELECT status FROM jobs WHERE job_id = ?", job_id)
            if row is None or is_status_final(row["status"]):
                return False
            self._execute(
                "UPDATE jobs SET status = ?, completed_at = ? WHERE job_id = ?",
                status,
                utcnow().isoformat(),
                job_id,
            )
            return True

    @staticmethod
    def _where(
        status: str | None, flow_id: EntityId | None, pipeline_id: EntityId | None
    ) -> tuple[str, list[Any]]:
        clauses: list[str] = []
        params: list[Any] = []
        if status is not None:
            prefix = f"{status}{SEPARATOR}"
            clauses.append("(status = ? OR substr(status, 1, ?) = ?)")
            params.extend([status, len(prefix), prefix])
        if flow_id is not None:
            clauses.append("flow_id = ?")
            params.append(entity_to_text(flow_id))
        if pipeline_id is not None:
            clauses.append("pipeline_id = ?")
            params.append(entity_to_text(pipeline_id))
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        return where, params

    # ------------------------------------------------------------------
    # Jobs
    async def create_job(
        self,
        pipeline_id: EntityId,
        flow_id: EntityId,
        source: str = "flow",
        label: str | None = None,
        created_at: datetime | None = None,
    ) -> Job:
        created = created_at or utcnow()
        job_id = await asyncio.to_thread(
            self._insert,
            """
            INSERT INTO jobs (pipeline_id, flow_id, source, label, status, engine_data, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            entity_to_text(pipeline_id),
            entity_to_text(flow_id),
            source,
            label,
            PENDING,
            json.dumps({}),
            created.isoformat(),
        )
        return Job(
            job_id=job_id,
            pipeline_id=pipeline_id,
            flow_id=flow_id,
            source=source,
            label=label,
            status=PENDING,
            created_at=created,
        )

    async def get_job(self, job_id: int) -> Job | None:
        row = await asyncio.to_thread(
            self._fetchone, "SELECT * FROM jobs WHERE job_id = ?", job_id
        )
        return row_to_job(row) if row else None

    async def delete_job(self, job_id: int) -> bool:
        count = await asyncio.to_thread(
            self._execute, "DELETE FROM jobs WHERE job_id = ?", job_id
        )
        return count > 0

    async def start_job(self, job_id: int) -> bool:
        count = await asyncio.to_thread(
            self._execute,
            "UPDATE jobs SET status = ? WHERE job_id = ? AND status = ?",
            PROCESSING,
            job_id,
            PENDING,
        )
        return count > 0

    async def complete_job(self, job_id: int, status: str) -> bool:
        return await asyncio.to_thread(self._complete, job_id, status)

    async def set_job_status(
        self, job_id: int, status: str, completed: bool = False
    ) -> bool:
        if completed:
            count = await asyncio.to_thread(
                self._execute,
                "UPDATE jobs SET status = ?, completed_at = ? WHERE job_id = ?",
                status,
                utcnow().isoformat(),
                job_id,
            )
        else:
            count = await asyncio.to_thread(
                self._execute,
                "UPDATE jobs SET status = ? WHERE job_id = ?",
                status,
                job_id,
            )
        return count > 0

    async def list_jobs(
        self,
        status: str | None = None,
        flow_id: EntityId | None = None,
        pipeline_id: EntityId | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Job]:
        where, params = self._where(status, flow_id, pipeline_id)
        rows = await asyncio.to_thread(
            self._fetchall,
            f"SELECT * FROM jobs{where} ORDER BY job_id DESC LIMIT ? OFFSET ?",
            *params,
            limit,
            offset,
        )
        return [row_to_job(r) for r in rows]

    async def count_jobs(
        self,
        status: str | None = None,
        flow_id: EntityId | None = None,
        pipeline_id: EntityId | None = None,
    ) -> int:
        where, params = self._where(status, flow_id, pipeline_id)
        row = await asyncio.to_thread(
            self._fetchone, f"SELECT COUNT(*) AS n FROM jobs{where}", *params
        )
        return int(row["n"])

    # ------------------------------------------------------------------
    # Engine data
    async def store_engine_data(self, job_id: int, data: dict[str, Any]) -> bool:
        count = await asyncio.to_thread(
            self._execute,
            "UPDATE jobs SET engine_data = ? WHERE job_id = ?",
            json.dumps(data),
            job_id,
        )
        return count > 0

    async def retrieve_engine_data(self, job_id: int) -> dict[str, Any]:
        row = await asyncio.to_thread(
            self._fetchone, "SELECT engine_data FROM jobs WHERE job_id = ?", job_id
        )
        if not row or not row["engine_data"]:
            return {}
        return json.loads(row["engine_data"])

    async def merge_engine_data(
        self, job_id: int, updates: dict[str, Any]
    ) -> dict[str, Any]:
        merged = await asyncio.to_thread(
            self._update_engine_data, job_id, lambda data: deep_merge(data, updates)
        )
        return merged or {}

    async def remove_engine_data_keys(self, job_id: int, *keys: str) -> bool:
        def _drop(data: dict[str, Any]) -> dict[str, Any]:
            return {k: v for k, v in data.items() if k not in keys}

        return await asyncio.to_thread(self._update_engine_data, job_id, _drop) is not None

    # ------------------------------------------------------------------
    # Pipelines
    async def create_pipeline(
        self,
        name: str,
        pipeline_config: dict[str, Any] | None = None,
        description: str = "",
    ) -> Pipeline:
        pipeline = Pipeline(
            pipeline_id=0,
            name=name,
            description=description,
            pipeline_config=pipeline_config or {},
        )
        pipeline.pipeline_id = await asyncio.to_thread(
            self._insert,
            "INSERT INTO pipelines (name, description, pipeline_config, created_at) VALUES (?, ?, ?, ?)",
            name,
            description,
            json.dumps(pipeline.pipeline_config),
            pipeline.created_at.isoformat(),
        )
        return pipeline

    async def get_pipeline(self, pipeline_id: int) -> Pipeline | None:
        row = await asyncio.to_thread(
            self._fetchone, "SELECT * FROM pipelines WHERE pipeline_id = ?", pipeline_id
        )
        return row_to_pipeline(row) if row else None

    async def update_pipeline_config(
        self, pipeline_id: int, pipeline_config: dict[str, Any]
    ) -> bool:
        count = await asyncio.to_thread(
            self._execute,
            "UPDATE pipelines SET pipeline_config = ? WHERE pipeline_id = ?",
            json.dumps(pipeline_config),
            pipeline_id,
        )
        return count > 0

    # ------------------------------------------------------------------
    # Flows
    async def create_flow(
        self,
        pipeline_id: int,
        name: str,
        flow_config: dict[str, Any] | None = None,
        scheduling_config: dict[str, Any] | None = None,
        description: str = "",
    ) -> Flow:
        flow = Flow(
            flow_id=0,
            pipeline_id=pipeline_id,
            name=name,
            description=description,
            flow_config=flow_config or {},
            scheduling_config=scheduling_config or {"interval": "manual"},
        )
        flow.flow_id = await asyncio.to_thread(
            self._insert,
            """
            INSERT INTO flows (pipeline_id, name, description, flow_config, scheduling_config)
            VALUES (?, ?, ?, ?, ?)
            """,
            pipeline_id,
            name,
            description,
            json.dumps(flow.flow_config),
            json.dumps(flow.scheduling_config),
        )
        return flow

    async def get_flow(self, flow_id: int) -> Flow | None:
        row = await asyncio.to_thread(
            self._fetchone, "SELECT * FROM flows WHERE flow_id = ?", flow_id
        )
        return row_to_flow(row) if row else None

    async def list_flows(self, pipeline_id: int | None = None) -> list[Flow]:
        if pipeline_id is None:
            rows = await asyncio.to_thread(
                self._fetchall, "SELECT * FROM flows ORDER BY flow_id"
            )
        else:
            rows = await asyncio.to_thread(
                self._fetchall,
                "SELECT * FROM flows WHERE pipeline_id = ? ORDER BY flow_id",
                pipeline_id,
            )
        return [row_to_flow(r) for r in rows]

    async def update_flow_config(
        self, flow_id: int, flow_config: dict[str, Any]
    ) -> bool:
        count = await asyncio.to_thread(
            self._execute,
            "UPDATE flows SET flow_config = ? WHERE flow_id = ?",
            json.dumps(flow_config),
            flow_id,
        )
        return count > 0

    async def update_flow_scheduling(
        self, flow_id: int, scheduling_config: dict[str, Any]
    ) -> bool:
        count = await asyncio.to_thread(
            self._execute,
            "UPDATE flows SET scheduling_config = ? WHERE flow_id = ?",
            json.dumps(scheduling_config),
            flow_id,
        )
        return count > 0

    async def mark_flow_run(self, flow_id: int, when: datetime) -> bool:
        count = await asyncio.to_thread(
            self._execute,
            "UPDATE flows SET last_run_at = ? WHERE flow_id = ?",
            when.isoformat(),
            flow_id,
        )
        return count > 0

    # ------------------------------------------------------------------
    # Processed items
    async def add_processed_item(
        self,
        flow_step_id: str,
        source_type: str,
        item_identifier: str,
        job_id: int,
    ) -> bool:
        count = await asyncio.to_thread(
            self._execute,
            """
            INSERT OR IGNORE INTO processed_items
                (flow_step_id, source_type, item_identifier, job_id, processed_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            flow_step_id,
            source_type,
            item_identifier,
            job_id,
            utcnow().isoformat(),
        )
        return count > 0

    async def is_item_processed(
        self, flow_step_id: str, source_type: str, item_identifier: str
    ) -> bool:
        row = await asyncio.to_thread(
            self._fetchone,
            """
            SELECT 1 FROM processed_items
            WHERE flow_step_id = ? AND source_type = ? AND item_identifier = ?
            """,
            flow_step_id,
            source_type,
            item_identifier,
        )
        return row is not None

    async def has_processed_items(self, flow_step_id: str) -> bool:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT 1 FROM processed_items WHERE flow_step_id = ? LIMIT 1",
            flow_step_id,
        )
        return row is not None

    async def delete_processed_items(self, job_id: int) -> int:
        return await asyncio.to_thread(
            self._execute, "DELETE FROM processed_items WHERE job_id = ?", job_id
        )
