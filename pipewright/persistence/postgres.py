"""PostgreSQL implementation of the job repository."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any

import asyncpg

from ..contracts import EntityId, Flow, Job, Pipeline, utcnow
from ..status import PENDING, PROCESSING, SEPARATOR, is_status_final
from ..utils.merge import deep_merge
from ._rows import entity_to_text, load_json, row_to_flow, row_to_job, row_to_pipeline
from .repository import JobRepository


class PostgresJobRepository(JobRepository):
    """Persist jobs, flows and pipelines using PostgreSQL."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS pipelines (
                pipeline_id SERIAL PRIMARY KEY,
                name TEXT NOT NULL,
                description TEXT,
                pipeline_config JSONB NOT NULL,
                created_at TIMESTAMPTZ NOT NULL
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS flows (
                flow_id SERIAL PRIMARY KEY,
                pipeline_id INTEGER NOT NULL,
                name TEXT NOT NULL,
                description TEXT,
                flow_config JSONB NOT NULL,
                scheduling_config JSONB NOT NULL,
                last_run_at TIMESTAMPTZ
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS jobs (
                job_id SERIAL PRIMARY KEY,
                pipeline_id TEXT NOT NULL,
                flow_id TEXT NOT NULL,
                source TEXT NOT NULL,
                label TEXT,
                status TEXT NOT NULL,
                engine_data JSONB,
                created_at TIMESTAMPTZ NOT NULL,
                completed_at TIMESTAMPTZ
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS processed_items (
                id SERIAL PRIMARY KEY,
                flow_step_id TEXT NOT NULL,
                source_type TEXT NOT NULL,
                item_identifier TEXT NOT NULL,
                job_id INTEGER NOT NULL,
                processed_at TIMESTAMPTZ NOT NULL,
                UNIQUE (flow_step_id, source_type, item_identifier)
            )
            """
        )

    async def _execute(self, query: str, *params: Any) -> int:
        conn = await self._connect()
        try:
            result = await conn.execute(query, *params)
        finally:
            await conn.close()
        # asyncpg returns a command tag such as "UPDATE 1"
        return int(result.split()[-1]) if result else 0

    async def _fetchrow(self, query: str, *params: Any) -> asyncpg.Record | None:
        conn = await self._connect()
        try:
            return await conn.fetchrow(query, *params)
        finally:
            await conn.close()

    async def _fetch(self, query: str, *params: Any) -> list[asyncpg.Record]:
        conn = await self._connect()
        try:
            return await conn.fetch(query, *params)
        finally:
            await conn.close()

    @staticmethod
    def _where(
        status: str | None, flow_id: EntityId | None, pipeline_id: EntityId | None
    ) -> tuple[str, list[Any]]:
        clauses: list[str] = []
        params: list[Any] = []
        if status is not None:
            prefix = f"{status}{SEPARATOR}"
            params.extend([status, len(prefix), prefix])
            n = len(params)
            clauses.append(f"(status = ${n - 2} OR substr(status, 1, ${n - 1}) = ${n})")
        if flow_id is not None:
            params.append(entity_to_text(flow_id))
            clauses.append(f"flow_id = ${len(params)}")
        if pipeline_id is not None:
            params.append(entity_to_text(pipeline_id))
            clauses.append(f"pipeline_id = ${len(params)}")
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        return where, params

    # ------------------------------------------------------------------
    async def create_job(
        self,
        pipeline_id: EntityId,
        flow_id: EntityId,
        source: str = "flow",
        label: str | None = None,
        created_at: datetime | None = None,
    ) -> Job:
        created = created_at or utcnow()
        row = await self._fetchrow(
            """
            INSERT INTO jobs (pipeline_id, flow_id, source, label, status, engine_data, created_at)
            VALUES ($1, $2, $3, $4, $5, $6, $7) RETURNING job_id
            """,
            entity_to_text(pipeline_id),
            entity_to_text(flow_id),
            source,
            label,
            PENDING,
            json.dumps({}),
            created,
        )
        return Job(
            job_id=row["job_id"],
            pipeline_id=pipeline_id,
            flow_id=flow_id,
            source=source,
            label=label,
            status=PENDING,
            created_at=created,
        )

    async def get_job(self, job_id: int) -> Job | None:
        row = await self._fetchrow("SELECT * FROM jobs WHERE job_id = $1", job_id)
        return row_to_job(row) if row else None

    async def delete_job(self, job_id: int) -> bool:
        return await self._execute("DELETE FROM jobs WHERE job_id = $1", job_id) > 0

    async def start_job(self, job_id: int) -> bool:
        count = await self._execute(
            "UPDATE jobs SET status = $1 WHERE job_id = $2 AND status = $3",
            PROCESSING,
            job_id,
            PENDING,
        )
        return count > 0

    async def complete_job(self, job_id: int, status: str) -> bool:
        conn = await self._connect()
        try:
            async with conn.transaction():
                row = await conn.fetchrow(
                    "SELECT status FROM jobs WHERE job_id = $1 FOR UPDATE", job_id
                )
                if row is None or is_status_final(row["status"]):
                    return False
                await conn.execute(
                    "UPDATE jobs SET status = $1, completed_at = $2 WHERE job_id = $3",
                    status,
                    utcnow(),
                    job_id,
                )
                return True
        finally:
            await conn.close()

    async def set_job_status(
        self, job_id: int, status: str, completed: bool = False
    ) -> bool:
        if completed:
            count = await self._execute(
                "UPDATE jobs SET status = $1, completed_at = $2 WHERE job_id = $3",
                status,
                utcnow(),
                job_id,
            )
        else:
            count = await self._execute(
                "UPDATE jobs SET status = $1 WHERE job_id = $2", status, job_id
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
        n = len(params)
        rows = await self._fetch(
            f"SELECT * FROM jobs{where} ORDER BY job_id DESC LIMIT ${n + 1} OFFSET ${n + 2}",
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
        row = await self._fetchrow(f"SELECT COUNT(*) AS n FROM jobs{where}", *params)
        return int(row["n"])

    # ------------------------------------------------------------------
    async def store_engine_data(self, job_id: int, data: dict[str, Any]) -> bool:
        count = await self._execute(
            "UPDATE jobs SET engine_data = $1 WHERE job_id = $2",
            json.dumps(data),
            job_id,
        )
        return count > 0

    async def retrieve_engine_data(self, job_id: int) -> dict[str, Any]:
        row = await self._fetchrow(
            "SELECT engine_data FROM jobs WHERE job_id = $1", job_id
        )
        return load_json(row["engine_data"]) if row else {}

    async def _update_engine_data(self, job_id: int, mutate) -> dict[str, Any] | None:
        conn = await self._connect()
        try:
            async with conn.transaction():
                row = await conn.fetchrow(
                    "SELECT engine_data FROM jobs WHERE job_id = $1 FOR UPDATE", job_id
                )
                if row is None:
                    return None
                data = mutate(load_json(row["engine_data"]))
                await conn.execute(
                    "UPDATE jobs SET engine_data = $1 WHERE job_id = $2",
                    json.dumps(data),
                    job_id,
                )
                return data
        finally:
            await conn.close()

    async def merge_engine_data(
        self, job_id: int, updates: dict[str, Any]
    ) -> dict[str, Any]:
        merged = await self._update_engine_data(
            job_id, lambda data: deep_merge(data, updates)
        )
        return merged or {}

    async def remove_engine_data_keys(self, job_id: int, *keys: str) -> bool:
        result = await self._update_engine_data(
            job_id, lambda data: {k: v for k, v in data.items() if k not in keys}
        )
        return result is not None

    # ------------------------------------------------------------------
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
        row = await self._fetchrow(
            """
            INSERT INTO pipelines (name, description, pipeline_config, created_at)
            VALUES ($1, $2, $3, $4) RETURNING pipeline_id
            """,
            name,
            description,
            json.dumps(pipeline.pipeline_config),
            pipeline.created_at,
        )
        pipeline.pipeline_id = row["pipeline_id"]
        return pipeline

    async def get_pipeline(self, pipeline_id: int) -> Pipeline | None:
        row = await self._fetchrow(
            "SELECT * FROM pipelines WHERE pipeline_id = $1", pipeline_id
        )
        return row_to_pipeline(row) if row else None

    async def update_pipeline_config(
        self, pipeline_id: int, pipeline_config: dict[str, Any]
    ) -> bool:
        count = await self._execute(
            "UPDATE pipelines SET pipeline_config = $1 WHERE pipeline_id = $2",
            json.dumps(pipeline_config),
            pipeline_id,
        )
        return count > 0

    # ------------------------------------------------------------------
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
        row = await self._fetchrow(
            """
            INSERT INTO flows (pipeline_id, name, description, flow_config, scheduling_config)
            VALUES ($1, $2, $3, $4, $5) RETURNING flow_id
            """,
            pipeline_id,
            name,
            description,
            json.dumps(flow.flow_config),
            json.dumps(flow.scheduling_config),
        )
        flow.flow_id = row["flow_id"]
        return flow

    async def get_flow(self, flow_id: int) -> Flow | None:
        row = await self._fetchrow("SELECT * FROM flows WHERE flow_id = $1", flow_id)
        return row_to_flow(row) if row else None

    async def list_flows(self, pipeline_id: int | None = None) -> list[Flow]:
        if pipeline_id is None:
            rows = await self._fetch("SELECT * FROM flows ORDER BY flow_id")
        else:
            rows = await self._fetch(
                "SELECT * FROM flows WHERE pipeline_id = $1 ORDER BY flow_id",
                pipeline_id,
            )
        return [row_to_flow(r) for r in rows]

    async def update_flow_config(
        self, flow_id: int, flow_config: dict[str, Any]
    ) -> bool:
        count = await self._execute(
            "UPDATE flows SET flow_config = $1 WHERE flow_id = $2",
            json.dumps(flow_config),
            flow_id,
        )
        return count > 0

    async def update_flow_scheduling(
        self, flow_id: int, scheduling_config: dict[str, Any]
    ) -> bool:
        count = await self._execute(
            "UPDATE flows SET scheduling_config = $1 WHERE flow_id = $2",
            json.dumps(scheduling_config),
            flow_id,
        )
        return count > 0

    async def mark_flow_run(self, flow_id: int, when: datetime) -> bool:
        count = await self._execute(
            "UPDATE flows SET last_run_at = $1 WHERE flow_id = $2", when, flow_id
        )
        return count > 0

    # ------------------------------------------------------------------
    async def add_processed_item(
        self,
        flow_step_id: str,
        source_type: str,
        item_identifier: str,
        job_id: int,
    ) -> bool:
        count = await self._execute(
            """
            INSERT INTO processed_items
                (flow_step_id, source_type, item_identifier, job_id, processed_at)
            VALUES ($1, $2, $3, $4, $5)
            ON CONFLICT DO NOTHING
            """,
            flow_step_id,
            source_type,
            item_identifier,
            job_id,
            utcnow(),
        )
        return count > 0

    async def is_item_processed(
        self, flow_step_id: str, source_type: str, item_identifier: str
    ) -> bool:
        row = await self._fetchrow(
            """
            SELECT 1 FROM processed_items
            WHERE flow_step_id = $1 AND source_type = $2 AND item_identifier = $3
            """,
            flow_step_id,
            source_type,
            item_identifier,
        )
        return row is not None

    async def has_processed_items(self, flow_step_id: str) -> bool:
        row = await self._fetchrow(
            "SELECT 1 FROM processed_items WHERE flow_step_id = $1 LIMIT 1",
            flow_step_id,
        )
        return row is not None

    async def delete_processed_items(self, job_id: int) -> int:
        return await self._execute(
            "DELETE FROM processed_items WHERE job_id = $1", job_id
        )
