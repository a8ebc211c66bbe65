# src/tracesmith/store/sql.py
"""SQLAlchemy Core implementations of the store protocols.

Every SQLAlchemyError leaving this module is wrapped in StorageError.
Operational errors (connection drops, locked database) are marked
retryable; anything else (integrity, programming errors) is not.
"""

from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from sqlalchemy import and_, select
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError, SQLAlchemyError

from tracesmith.contracts.errors import StorageError
from tracesmith.contracts.patterns import ConsensusPattern
from tracesmith.contracts.routing import RoutingArmStats
from tracesmith.contracts.traces import ExecutionTrace
from tracesmith.contracts.workflows import SynthesizedWorkflow
from tracesmith.core.canonical import CANONICAL_VERSION, canonical_json, stable_hash
from tracesmith.store.database import StoreDB
from tracesmith.store.schema import patterns_table, routing_stats_table, traces_table, workflows_table


@contextmanager
def storage_errors(operation: str) -> Iterator[None]:
    """Translate SQLAlchemy failures into StorageError."""
    try:
        yield
    except OperationalError as e:
        raise StorageError(f"{operation} failed: {e}", retryable=True) from e
    except DBAPIError as e:
        raise StorageError(f"{operation} failed: {e}", retryable=bool(e.connection_invalidated)) from e
    except SQLAlchemyError as e:
        raise StorageError(f"{operation} failed: {e}", retryable=False) from e


def _record(data: dict[str, Any]) -> tuple[str, str]:
    return canonical_json(data), stable_hash(data)


def _load(text: str) -> dict[str, Any]:
    loaded: dict[str, Any] = json.loads(text)
    return loaded


class SqlTraceStore:
    def __init__(self, db: StoreDB) -> None:
        self._db = db

    def add(self, trace: ExecutionTrace) -> None:
        trace_json, trace_hash = _record(trace.to_dict())
        with storage_errors("add trace"), self._db.connection() as conn:
            conn.execute(
                traces_table.insert().values(
                    trace_id=trace.trace_id,
                    fingerprint=trace.fingerprint,
                    success=trace.success,
                    timestamp=trace.timestamp,
                    trace_json=trace_json,
                    trace_hash=trace_hash,
                    canonical_version=CANONICAL_VERSION,
                )
            )

    def list_successful_traces(self, fingerprint: str, limit: int) -> list[ExecutionTrace]:
        query = (
            select(traces_table.c.trace_json)
            .where(and_(traces_table.c.fingerprint == fingerprint, traces_table.c.success.is_(True)))
            .order_by(traces_table.c.timestamp.desc(), traces_table.c.trace_id)
            .limit(limit)
        )
        with storage_errors("list traces"), self._db.connection() as conn:
            rows = conn.execute(query).fetchall()
        return [ExecutionTrace.from_dict(_load(row.trace_json)) for row in rows]

    def list_fingerprints(self) -> list[str]:
        query = select(traces_table.c.fingerprint).distinct().order_by(traces_table.c.fingerprint)
        with storage_errors("list fingerprints"), self._db.connection() as conn:
            return [row.fingerprint for row in conn.execute(query)]


def _pattern_row(pattern: ConsensusPattern) -> dict[str, Any]:
    pattern_json, pattern_hash = _record(pattern.to_dict())
    return {
        "pattern_id": pattern.pattern_id,
        "fingerprint": pattern.fingerprint,
        "confidence": pattern.confidence,
        "mined_at": pattern.mined_at,
        "pattern_json": pattern_json,
        "pattern_hash": pattern_hash,
        "canonical_version": CANONICAL_VERSION,
    }


def _workflow_row(workflow: SynthesizedWorkflow) -> dict[str, Any]:
    workflow_json, workflow_hash = _record(workflow.to_dict())
    return {
        "workflow_id": workflow.workflow_id,
        "fingerprint": workflow.fingerprint,
        "pattern_id": workflow.pattern_id,
        "confidence": workflow.confidence,
        "created_at": workflow.created_at,
        "workflow_json": workflow_json,
        "workflow_hash": workflow_hash,
        "canonical_version": CANONICAL_VERSION,
    }


class SqlPatternStore:
    def __init__(self, db: StoreDB) -> None:
        self._db = db

    def put(self, pattern: ConsensusPattern) -> None:
        with storage_errors("put pattern"), self._db.connection() as conn:
            conn.execute(patterns_table.insert().values(**_pattern_row(pattern)))

    def latest(self, fingerprint: str) -> ConsensusPattern | None:
        query = (
            select(patterns_table.c.pattern_json)
            .where(patterns_table.c.fingerprint == fingerprint)
            .order_by(patterns_table.c.mined_at.desc())
            .limit(1)
        )
        with storage_errors("load pattern"), self._db.connection() as conn:
            row = conn.execute(query).first()
        return ConsensusPattern.from_dict(_load(row.pattern_json)) if row is not None else None


class SqlWorkflowStore:
    def __init__(self, db: StoreDB) -> None:
        self._db = db

    def put(self, workflow: SynthesizedWorkflow) -> None:
        with storage_errors("put workflow"), self._db.connection() as conn:
            conn.execute(workflows_table.insert().values(**_workflow_row(workflow)))

    def get(self, fingerprint: str) -> SynthesizedWorkflow | None:
        query = (
            select(workflows_table.c.workflow_json)
            .where(workflows_table.c.fingerprint == fingerprint)
            .order_by(workflows_table.c.created_at.desc())
            .limit(1)
        )
        with storage_errors("load workflow"), self._db.connection() as conn:
            row = conn.execute(query).first()
        return SynthesizedWorkflow.from_dict(_load(row.workflow_json)) if row is not None else None


class SqlDeploymentStore:
    """Writes a pattern and its workflow in one transaction."""

    def __init__(self, db: StoreDB) -> None:
        self._db = db

    def deploy(self, pattern: ConsensusPattern, workflow: SynthesizedWorkflow) -> None:
        if workflow.pattern_id != pattern.pattern_id:
            raise ValueError(f"Workflow {workflow.workflow_id} was not compiled from pattern {pattern.pattern_id}")
        with storage_errors("deploy"), self._db.connection() as conn:
            conn.execute(patterns_table.insert().values(**_pattern_row(pattern)))
            conn.execute(workflows_table.insert().values(**_workflow_row(workflow)))


class SqlRouterStatsStore:
    def __init__(self, db: StoreDB) -> None:
        self._db = db

    def get(self, query_pattern: str) -> RoutingArmStats | None:
        query = select(routing_stats_table.c.stats_json).where(routing_stats_table.c.query_pattern == query_pattern)
        with storage_errors("load routing stats"), self._db.connection() as conn:
            row = conn.execute(query).first()
        return RoutingArmStats.from_dict(_load(row.stats_json)) if row is not None else None

    def put(self, stats: RoutingArmStats, expected_version: int) -> bool:
        values = {
            "version": stats.version,
            "updated_at": stats.updated_at,
            "stats_json": canonical_json(stats.to_dict()),
        }
        if expected_version == 0:
            try:
                with storage_errors("insert routing stats"), self._db.connection() as conn:
                    conn.execute(routing_stats_table.insert().values(query_pattern=stats.query_pattern, **values))
            except StorageError as e:
                # Another writer inserted the row first
                if isinstance(e.__cause__, IntegrityError):
                    return False
                raise
            return True

        with storage_errors("update routing stats"), self._db.connection() as conn:
            result = conn.execute(
                routing_stats_table.update()
                .where(
                    and_(
                        routing_stats_table.c.query_pattern == stats.query_pattern,
                        routing_stats_table.c.version == expected_version,
                    )
                )
                .values(**values)
            )
        return result.rowcount == 1


def sql_stores(db: StoreDB) -> tuple[SqlTraceStore, SqlPatternStore, SqlWorkflowStore, SqlDeploymentStore, SqlRouterStatsStore]:
    """All stores over one database."""
    return SqlTraceStore(db), SqlPatternStore(db), SqlWorkflowStore(db), SqlDeploymentStore(db), SqlRouterStatsStore(db)

