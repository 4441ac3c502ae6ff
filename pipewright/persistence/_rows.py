"""Row conversion helpers shared by the SQL backends."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Mapping

from ..constants import DIRECT
from ..contracts import EntityId, Flow, Job, Pipeline
from ..status import SEPARATOR, JobStatus


def entity_to_text(value: EntityId) -> str:
    return str(value)


def text_to_entity(value: Any) -> EntityId:
    if value is None or value == DIRECT:
        return DIRECT
    return int(value)


def load_json(value: Any) -> Any:
    if value is None:
        return {}
    if isinstance(value, (str, bytes)):
        return json.loads(value)
    return value


def load_datetime(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def status_matches(status: str, wanted: str) -> bool:
    """A filter on ``failed`` matches ``failed`` and ``failed - <reason>``."""
    if status == wanted:
        return True
    return SEPARATOR not in wanted and JobStatus.parse(status).base == wanted


def row_to_job(row: Mapping[str, Any]) -> Job:
    return Job(
        job_id=row["job_id"],
        pipeline_id=text_to_entity(row["pipeline_id"]),
        flow_id=text_to_entity(row["flow_id"]),
        source=row["source"],
        label=row["label"],
        status=row["status"],
        engine_data=load_json(row["engine_data"]),
        created_at=load_datetime(row["created_at"]),
        completed_at=load_datetime(row["completed_at"]),
    )


def row_to_pipeline(row: Mapping[str, Any]) -> Pipeline:
    return Pipeline(
        pipeline_id=row["pipeline_id"],
        name=row["name"],
        description=row["description"] or "",
        pipeline_config=load_json(row["pipeline_config"]),
        created_at=load_datetime(row["created_at"]),
    )


def row_to_flow(row: Mapping[str, Any]) -> Flow:
    return Flow(
        flow_id=row["flow_id"],
        pipeline_id=row["pipeline_id"],
        name=row["name"],
        description=row["description"] or "",
        flow_config=load_json(row["flow_config"]),
        scheduling_config=load_json(row["scheduling_config"]) or {"interval": "manual"},
        last_run_at=load_datetime(row["last_run_at"]),
    )
