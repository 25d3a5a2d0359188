"""
netledger Database Service

Provides dual SQLite + PostgreSQL support with a unified interface.
Uses the Protocol pattern to define the database contract.

Queries are written once with ``?`` placeholders; the PostgreSQL backend
rewrites them to ``%s`` before execution.
"""

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Protocol, Sequence, Union

from netledger.errors import EntityNotFoundError, StateConflictError
from netledger.logging import get_logger
from netledger.models.domain import (
    Artifact,
    ArtifactRevision,
    BlobMetadata,
    ContentBlob,
    ContentChunk,
    DirectiveStatus,
    NetworkDirective,
    NetworkStage,
    NetworkTask,
    ResultMarker,
    StageInfo,
    TaskDependency,
    TaskStatus,
)
from netledger.models.inputs import PolicyInfo

logger = get_logger(__name__)

# Try to import psycopg for PostgreSQL support
try:
    import psycopg
    from psycopg.rows import dict_row
    from psycopg_pool import ConnectionPool
except ImportError:
    psycopg = None  # type: ignore
    dict_row = None  # type: ignore
    ConnectionPool = None  # type: ignore


# Sentinel for unset optional parameters
_UNSET = object()

_TERMINAL_STATUSES = (TaskStatus.COMPLETED, TaskStatus.FAILED)


def utcnow() -> str:
    """Current UTC time as an ISO-8601 string with microsecond precision."""
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def _elapsed_ms(started_at: Optional[str], finished_at: str) -> Optional[int]:
    if not started_at:
        return None
    try:
        start = datetime.fromisoformat(started_at)
        end = datetime.fromisoformat(finished_at)
    except ValueError:
        return None
    if start.tzinfo is None:
        start = start.replace(tzinfo=timezone.utc)
    return max(0, int((end - start).total_seconds() * 1000))


class DatabaseProtocol(Protocol):
    """Protocol defining the database interface."""

    def init_schema(self) -> None: ...

    # Network tasks
    def create_tasks(
        self,
        rows: Sequence[Dict[str, Any]],
        dependencies: Optional[Sequence[Dict[str, Any]]] = None,
    ) -> List[NetworkTask]: ...
    def get_task(self, task_id: str) -> NetworkTask: ...
    def find_task(self, task_id: str) -> Optional[NetworkTask]: ...
    def get_main_task(self, network_id: str) -> NetworkTask: ...
    def list_network_tasks(self, network_id: str, *, include_main: bool = False) -> List[NetworkTask]: ...
    def list_tasks_by_status(self, status: str, *, network_id: Optional[str] = None) -> List[NetworkTask]: ...
    def list_tasks_by_worker(self, worker_id: str) -> List[NetworkTask]: ...
    def list_tasks_by_type(self, task_type: str, *, network_id: Optional[str] = None, limit: int = 20) -> List[NetworkTask]: ...
    def list_tasks_by_creator(self, created_by: str, *, limit: int = 20) -> List[NetworkTask]: ...
    def update_task_status(
        self,
        task_id: str,
        status: str,
        *,
        expected_status: Optional[str] = None,
        exclude_statuses: Sequence[str] = (),
        subtask_only: bool = False,
    ) -> NetworkTask: ...
    def update_task_progress(self, task_id: str, progress: int) -> NetworkTask: ...
    def update_task_result(
        self,
        task_id: str,
        result: Any,
        *,
        partial: bool,
        author: Optional[str],
        status: Optional[str] = None,
    ) -> NetworkTask: ...
    def assign_task_worker(self, task_id: str, worker_id: Optional[str]) -> NetworkTask: ...
    def update_network_stage(
        self,
        network_id: str,
        stage: str,
        *,
        expected_stage: Optional[str] = None,
        replan_from_step: Any = _UNSET,
    ) -> NetworkTask: ...
    def update_network_policy(
        self,
        network_id: str,
        policy: PolicyInfo,
        *,
        stage: Optional[str] = None,
        expected_stage: Optional[str] = None,
    ) -> NetworkTask: ...
    def delete_tasks_from_step(self, network_id: str, step_number: int) -> int: ...
    def replan_network(self, network_id: str, policy: PolicyInfo, from_step: Optional[int]) -> int: ...
    def claim_subtask(self, network_id: str, task_id: str, *, assigned_to: Optional[str] = None) -> NetworkTask: ...

    # Dependencies
    def add_task_dependency(self, dependency_id: str, task_id: str, depends_on_task_id: str, dependency_type: str) -> TaskDependency: ...
    def list_task_dependencies(self, task_id: str) -> List[TaskDependency]: ...
    def list_task_dependents(self, task_id: str) -> List[TaskDependency]: ...

    # Content store
    def insert_blob(self, content_hash: str, content_type: str, data: bytes) -> bool: ...
    def get_blob(self, content_hash: str) -> Optional[ContentBlob]: ...
    def get_blob_metadata(self, content_hash: str) -> Optional[BlobMetadata]: ...
    def blob_exists(self, content_hash: str) -> bool: ...
    def find_blob_hashes(self, prefix: str) -> List[str]: ...
    def insert_chunk(self, chunk_id: str, content_hash: str, chunk_index: int, data: bytes, offset: int) -> ContentChunk: ...
    def list_chunks(self, content_hash: str) -> List[ContentChunk]: ...

    # Artifacts
    def create_artifact(
        self,
        *,
        artifact_id: str,
        job_id: str,
        mime_type: str,
        task_id: Optional[str],
        labels: Optional[List[str]],
        revision_id: str,
        empty_hash: str,
        empty_content_type: str,
        message: str,
        author: str,
    ) -> Artifact: ...
    def get_artifact(self, artifact_id: str) -> Artifact: ...
    def list_artifacts_by_task(self, task_id: str) -> List[Artifact]: ...
    def list_artifacts_by_job(self, job_id: str) -> List[Artifact]: ...
    def commit_revision(
        self,
        *,
        artifact_id: str,
        revision_id: str,
        content_hash: str,
        parent_revisions: List[str],
        message: str,
        author: str,
    ) -> ArtifactRevision: ...
    def get_revision(self, revision_id: str) -> ArtifactRevision: ...
    def list_revisions(self, artifact_id: str) -> List[ArtifactRevision]: ...

    # Directives
    def create_directive(
        self,
        *,
        directive_id: str,
        network_id: str,
        content: str,
        directive_type: str,
        source: Optional[str],
        metadata: Optional[Dict[str, Any]],
    ) -> NetworkDirective: ...
    def get_directive(self, directive_id: str) -> NetworkDirective: ...
    def list_directives(self, network_id: str, *, statuses: Optional[Sequence[str]] = None) -> List[NetworkDirective]: ...
    def update_directive_status(self, directive_id: str, status: str) -> NetworkDirective: ...


class _SQLDatabase:
    """
    Backend-neutral persistence for netledger state.

    Subclasses provide connections, transactions and row-locking.
    """

    # Backend hooks

    @contextmanager
    def _transaction(self, *, exclusive: bool = False) -> Iterator[Any]:  # pragma: no cover - abstract
        raise NotImplementedError
        yield

    def _q(self, query: str) -> str:
        return query

    def _lock_row(self, conn: Any, table: str, key_column: str, key: str) -> None:
        """Take a row lock for the rest of the transaction (no-op where the transaction is already exclusive)."""

    def _dump_json(self, value: Any) -> Optional[str]:
        if value is None:
            return None
        return json.dumps(value)

    def _load_json(self, value: Any) -> Any:
        if value is None:
            return None
        if isinstance(value, (bytes, bytearray, memoryview)):
            value = bytes(value).decode("utf-8")
        if isinstance(value, str):
            try:
                return json.loads(value)
            except ValueError:
                return None
        return value

    # Query helpers

    def _execute(self, conn: Any, query: str, params: Iterable[Any] = ()) -> Any:
        return conn.execute(self._q(query), tuple(params))

    def _fetchone(self, query: str, params: Iterable[Any] = ()) -> Optional[Any]:
        with self._transaction() as conn:
            return self._execute(conn, query, params).fetchone()

    def _fetchall(self, query: str, params: Iterable[Any] = ()) -> List[Any]:
        with self._transaction() as conn:
            return list(self._execute(conn, query, params).fetchall() or [])

    @staticmethod
    def _coerce_ts(value: Any) -> str:
        if isinstance(value, datetime):
            if value.tzinfo is None:
                value = value.replace(tzinfo=timezone.utc)
            return value.isoformat(timespec="microseconds")
        if isinstance(value, str):
            text = value.strip()
            if not text:
                return ""
            try:
                parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
                if parsed.tzinfo is None:
                    parsed = parsed.replace(tzinfo=timezone.utc)
                return parsed.isoformat(timespec="microseconds")
            except ValueError:
                return text
        return str(value) if value else ""

    def _opt_ts(self, value: Any) -> Optional[str]:
        return self._coerce_ts(value) if value else None

    # Row to model converters

    def _row_to_task(self, row: Any) -> NetworkTask:
        stage = None
        if row["stage"] is not None:
            stage = StageInfo(
                stage=row["stage"],
                replan_from_step=row["replan_from_step"],
                updated_at=self._opt_ts(row["stage_updated_at"]),
            )
        policy_data = self._load_json(row["policy"])
        depends_on = self._load_json(row["depends_on"]) or []
        return NetworkTask(
            task_id=row["task_id"],
            network_id=row["network_id"],
            parent_job_id=row["parent_job_id"],
            network_type=row["network_type"],
            status=row["status"],
            task_type=row["task_type"],
            description=row["description"],
            parameters=self._load_json(row["parameters"]) or {},
            result=self._load_json(row["result"]),
            progress=row["progress"] or 0,
            step_number=row["step_number"],
            depends_on=depends_on if isinstance(depends_on, list) else [],
            priority=row["priority"],
            created_by=row["created_by"],
            assigned_to=row["assigned_to"],
            metadata=self._load_json(row["metadata"]) or {},
            created_at=self._coerce_ts(row["created_at"]),
            updated_at=self._coerce_ts(row["updated_at"]),
            completed_at=self._opt_ts(row["completed_at"]),
            execution_time_ms=row["execution_time_ms"],
            stage=stage,
            policy=PolicyInfo.model_validate(policy_data) if policy_data else None,
            result_marker=ResultMarker(
                partial=bool(row["result_partial"]),
                last_author=row["result_last_author"],
                last_updated_at=self._opt_ts(row["result_updated_at"]),
            ),
        )

    def _row_to_dependency(self, row: Any) -> TaskDependency:
        return TaskDependency(
            dependency_id=row["dependency_id"],
            task_id=row["task_id"],
            depends_on_task_id=row["depends_on_task_id"],
            dependency_type=row["dependency_type"],
            created_at=self._coerce_ts(row["created_at"]),
        )

    def _row_to_blob(self, row: Any) -> ContentBlob:
        return ContentBlob(
            content_hash=row["content_hash"],
            content_type=row["content_type"],
            data=bytes(row["content"]),
            size=row["size"],
            created_at=self._coerce_ts(row["created_at"]),
        )

    def _row_to_chunk(self, row: Any) -> ContentChunk:
        return ContentChunk(
            chunk_id=row["chunk_id"],
            content_hash=row["content_hash"],
            chunk_index=row["chunk_index"],
            data=bytes(row["chunk_data"]),
            offset=row["chunk_offset"],
            size=row["size"],
            created_at=self._coerce_ts(row["created_at"]),
        )

    def _row_to_artifact(self, row: Any) -> Artifact:
        labels = self._load_json(row["labels"]) or []
        return Artifact(
            artifact_id=row["artifact_id"],
            job_id=row["job_id"],
            task_id=row["task_id"],
            mime_type=row["mime_type"],
            current_revision=row["current_revision"],
            labels=labels if isinstance(labels, list) else [],
            created_at=self._coerce_ts(row["created_at"]),
            updated_at=self._coerce_ts(row["updated_at"]),
        )

    def _row_to_revision(self, row: Any) -> ArtifactRevision:
        parents = self._load_json(row["parent_revisions"]) or []
        return ArtifactRevision(
            revision_id=row["revision_id"],
            artifact_id=row["artifact_id"],
            revision_number=row["revision_number"],
            content_hash=row["content_hash"],
            parent_revisions=parents if isinstance(parents, list) else [],
            commit_message=row["commit_message"],
            author=row["author"],
            created_at=self._coerce_ts(row["created_at"]),
        )

    def _row_to_directive(self, row: Any) -> NetworkDirective:
        return NetworkDirective(
            directive_id=row["directive_id"],
            network_id=row["network_id"],
            content=row["content"],
            directive_type=row["directive_type"],
            source=row["source"],
            status=row["status"],
            metadata=self._load_json(row["metadata"]) or {},
            created_at=self._coerce_ts(row["created_at"]),
            updated_at=self._coerce_ts(row["updated_at"]),
            acknowledged_at=self._opt_ts(row["acknowledged_at"]),
            applied_at=self._opt_ts(row["applied_at"]),
        )

    # Network tasks

    _TASK_COLUMNS = (
        "task_id", "network_id", "parent_job_id", "network_type", "status",
        "task_type", "description", "parameters", "step_number", "position",
        "depends_on", "priority", "created_by", "assigned_to", "metadata", "stage",
        "stage_updated_at", "created_at", "updated_at",
    )

    def create_tasks(
        self,
        rows: Sequence[Dict[str, Any]],
        dependencies: Optional[Sequence[Dict[str, Any]]] = None,
    ) -> List[NetworkTask]:
        """Insert tasks (and their dependency edges) in one transaction."""
        placeholders = ", ".join("?" for _ in self._TASK_COLUMNS)
        insert_sql = f"INSERT INTO network_tasks ({', '.join(self._TASK_COLUMNS)}) VALUES ({placeholders})"
        task_ids: List[str] = []
        with self._transaction(exclusive=True) as conn:
            for row in rows:
                now = utcnow()
                values = {
                    "status": TaskStatus.QUEUED,
                    "priority": "medium",
                    "position": 0,
                    **row,
                    "created_at": now,
                    "updated_at": now,
                }
                values["stage_updated_at"] = now if values.get("stage") else None
                for key in ("parameters", "metadata"):
                    values[key] = self._dump_json(values.get(key) or {})
                values["depends_on"] = self._dump_json(values.get("depends_on") or [])
                self._execute(conn, insert_sql, [values.get(col) for col in self._TASK_COLUMNS])
                task_ids.append(values["task_id"])
            for dep in dependencies or ():
                self._execute(
                    conn,
                    """
                    INSERT INTO task_dependencies (dependency_id, task_id, depends_on_task_id, dependency_type, created_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (dep["dependency_id"], dep["task_id"], dep["depends_on_task_id"], dep["dependency_type"], utcnow()),
                )
        return [self.get_task(task_id) for task_id in task_ids]

    def find_task(self, task_id: str) -> Optional[NetworkTask]:
        row = self._fetchone("SELECT * FROM network_tasks WHERE task_id = ?", (task_id,))
        return self._row_to_task(row) if row is not None else None

    def get_task(self, task_id: str) -> NetworkTask:
        task = self.find_task(task_id)
        if task is None:
            raise EntityNotFoundError(f"Task {task_id} not found", metadata={"task_id": task_id})
        return task

    def get_main_task(self, network_id: str) -> NetworkTask:
        row = self._fetchone(
            "SELECT * FROM network_tasks WHERE network_id = ? AND step_number IS NULL",
            (network_id,),
        )
        if row is None:
            raise EntityNotFoundError(f"Network {network_id} not found", metadata={"network_id": network_id})
        return self._row_to_task(row)

    def list_network_tasks(self, network_id: str, *, include_main: bool = False) -> List[NetworkTask]:
        query = "SELECT * FROM network_tasks WHERE network_id = ?"
        if not include_main:
            query += " AND step_number IS NOT NULL"
        # Main task (NULL step) sorts first on both backends via the CASE key
        query += " ORDER BY CASE WHEN step_number IS NULL THEN 0 ELSE 1 END, step_number, position, created_at, task_id"
        return [self._row_to_task(row) for row in self._fetchall(query, (network_id,))]

    def list_tasks_by_status(self, status: str, *, network_id: Optional[str] = None) -> List[NetworkTask]:
        if network_id is None:
            rows = self._fetchall(
                "SELECT * FROM network_tasks WHERE status = ? ORDER BY created_at, task_id",
                (status,),
            )
        else:
            rows = self._fetchall(
                """
                SELECT * FROM network_tasks
                WHERE network_id = ? AND status = ? AND step_number IS NOT NULL
                ORDER BY step_number, position, created_at, task_id
                """,
                (network_id, status),
            )
        return [self._row_to_task(row) for row in rows]

    def list_tasks_by_worker(self, worker_id: str) -> List[NetworkTask]:
        rows = self._fetchall(
            """
            SELECT * FROM network_tasks
            WHERE assigned_to = ? AND status IN (?, ?)
            ORDER BY created_at, task_id
            """,
            (worker_id, TaskStatus.QUEUED, TaskStatus.RUNNING),
        )
        return [self._row_to_task(row) for row in rows]

    def list_tasks_by_type(self, task_type: str, *, network_id: Optional[str] = None, limit: int = 20) -> List[NetworkTask]:
        if network_id is None:
            rows = self._fetchall(
                "SELECT * FROM network_tasks WHERE task_type = ? ORDER BY created_at, task_id LIMIT ?",
                (task_type, limit),
            )
        else:
            rows = self._fetchall(
                """
                SELECT * FROM network_tasks
                WHERE network_id = ? AND task_type = ? AND step_number IS NOT NULL
                ORDER BY step_number, position, created_at, task_id
                LIMIT ?
                """,
                (network_id, task_type, limit),
            )
        return [self._row_to_task(row) for row in rows]

    def list_tasks_by_creator(self, created_by: str, *, limit: int = 20) -> List[NetworkTask]:
        rows = self._fetchall(
            "SELECT * FROM network_tasks WHERE created_by = ? ORDER BY created_at, task_id LIMIT ?",
            (created_by, limit),
        )
        return [self._row_to_task(row) for row in rows]

    def _status_assignments(self, current: Any, status: str, now: str) -> Dict[str, Any]:
        values: Dict[str, Any] = {"status": status, "updated_at": now}
        if status == TaskStatus.RUNNING and not current["started_at"]:
            values["started_at"] = now
        if status in _TERMINAL_STATUSES:
            values["completed_at"] = now
            started = self._opt_ts(current["started_at"])
            values["execution_time_ms"] = _elapsed_ms(started, now)
        return values

    def _update_columns(self, conn: Any, table: str, key_column: str, key: str, values: Dict[str, Any]) -> None:
        assignments = ", ".join(f"{col} = ?" for col in values)
        self._execute(
            conn,
            f"UPDATE {table} SET {assignments} WHERE {key_column} = ?",
            [*values.values(), key],
        )

    def _select_task_for_update(self, conn: Any, task_id: str) -> Any:
        self._lock_row(conn, "network_tasks", "task_id", task_id)
        row = self._execute(conn, "SELECT * FROM network_tasks WHERE task_id = ?", (task_id,)).fetchone()
        if row is None:
            raise EntityNotFoundError(f"Task {task_id} not found", metadata={"task_id": task_id})
        return row

    def update_task_status(
        self,
        task_id: str,
        status: str,
        *,
        expected_status: Optional[str] = None,
        exclude_statuses: Sequence[str] = (),
        subtask_only: bool = False,
    ) -> NetworkTask:
        """
        Set a task's status.

        Preconditions are checked under the row lock and raise
        ``StateConflictError``:

        - ``expected_status``: the stored status must still match.
        - ``exclude_statuses``: the stored status must not be one of these.
        - ``subtask_only``: the row must be a sub-task, not a main task.

        A task holding a partial result never moves to completed.
        """
        with self._transaction(exclusive=True) as conn:
            current = self._select_task_for_update(conn, task_id)
            metadata = {"task_id": task_id}
            if subtask_only and current["step_number"] is None:
                raise StateConflictError("STEP_NUMBER_REQUIRED", f"Task {task_id} is a main task", metadata=metadata)
            if expected_status is not None and current["status"] != expected_status:
                raise StateConflictError(
                    "STATUS_CONFLICT",
                    f"Task {task_id} is {current['status']}, expected {expected_status}",
                    metadata=metadata,
                )
            if current["status"] in exclude_statuses:
                raise StateConflictError(
                    "STATUS_CONFLICT",
                    f"Task {task_id} is {current['status']} and cannot move to {status}",
                    metadata=metadata,
                )
            if status == TaskStatus.COMPLETED and current["result_partial"]:
                raise StateConflictError(
                    "RESULT_PARTIAL_CONTINUE_REQUIRED",
                    f"Task {task_id} holds a partial result by {current['result_last_author']}",
                    metadata=metadata,
                )
            self._update_columns(
                conn, "network_tasks", "task_id", task_id,
                self._status_assignments(current, status, utcnow()),
            )
        return self.get_task(task_id)

    def update_task_progress(self, task_id: str, progress: int) -> NetworkTask:
        clamped = max(0, min(100, int(progress)))
        with self._transaction() as conn:
            self._select_task_for_update(conn, task_id)
            self._update_columns(
                conn, "network_tasks", "task_id", task_id,
                {"progress": clamped, "updated_at": utcnow()},
            )
        return self.get_task(task_id)

    def update_task_result(
        self,
        task_id: str,
        result: Any,
        *,
        partial: bool,
        author: Optional[str],
        status: Optional[str] = None,
    ) -> NetworkTask:
        """
        Store a task result together with its partial marker.

        A final write (``partial=False``) clears the marker. ``status``, when
        given, is applied in the same transaction.
        """
        with self._transaction(exclusive=True) as conn:
            current = self._select_task_for_update(conn, task_id)
            now = utcnow()
            values: Dict[str, Any] = {
                "result": self._dump_json(result),
                "result_partial": bool(partial),
                "result_last_author": author if partial else None,
                "result_updated_at": now if partial else None,
                "updated_at": now,
            }
            if status is not None:
                values.update(self._status_assignments(current, status, now))
                if status == TaskStatus.COMPLETED:
                    values["progress"] = 100
            self._update_columns(conn, "network_tasks", "task_id", task_id, values)
        return self.get_task(task_id)

    def assign_task_worker(self, task_id: str, worker_id: Optional[str]) -> NetworkTask:
        with self._transaction() as conn:
            self._select_task_for_update(conn, task_id)
            self._update_columns(
                conn, "network_tasks", "task_id", task_id,
                {"assigned_to": worker_id, "updated_at": utcnow()},
            )
        return self.get_task(task_id)

    def _select_main_for_update(self, conn: Any, network_id: str) -> Any:
        self._lock_row(conn, "network_tasks", "task_id", network_id)
        row = self._execute(
            conn,
            "SELECT * FROM network_tasks WHERE network_id = ? AND step_number IS NULL",
            (network_id,),
        ).fetchone()
        if row is None:
            raise EntityNotFoundError(f"Network {network_id} not found", metadata={"network_id": network_id})
        return row

    def update_network_stage(
        self,
        network_id: str,
        stage: str,
        *,
        expected_stage: Optional[str] = None,
        replan_from_step: Any = _UNSET,
    ) -> NetworkTask:
        with self._transaction(exclusive=True) as conn:
            main = self._select_main_for_update(conn, network_id)
            current_stage = main["stage"] or NetworkStage.INITIALIZED
            if expected_stage is not None and current_stage != expected_stage:
                raise StateConflictError(
                    "INVALID_STAGE",
                    f"Network {network_id} is at stage {current_stage}, expected {expected_stage}",
                    metadata={"network_id": network_id},
                )
            now = utcnow()
            values: Dict[str, Any] = {"stage": stage, "stage_updated_at": now, "updated_at": now}
            if replan_from_step is not _UNSET:
                values["replan_from_step"] = replan_from_step
            self._update_columns(conn, "network_tasks", "task_id", main["task_id"], values)
            return self._row_to_task(
                self._execute(conn, "SELECT * FROM network_tasks WHERE task_id = ?", (main["task_id"],)).fetchone()
            )

    def update_network_policy(
        self,
        network_id: str,
        policy: PolicyInfo,
        *,
        stage: Optional[str] = None,
        expected_stage: Optional[str] = None,
    ) -> NetworkTask:
        with self._transaction(exclusive=True) as conn:
            main = self._select_main_for_update(conn, network_id)
            current_stage = main["stage"] or NetworkStage.INITIALIZED
            if expected_stage is not None and current_stage != expected_stage:
                raise StateConflictError(
                    "INVALID_STAGE",
                    f"Network {network_id} is at stage {current_stage}, expected {expected_stage}",
                    metadata={"network_id": network_id},
                )
            now = utcnow()
            values: Dict[str, Any] = {"policy": self._dump_json(policy.model_dump(mode="json")), "updated_at": now}
            if stage is not None:
                values["stage"] = stage
                values["stage_updated_at"] = now
            self._update_columns(conn, "network_tasks", "task_id", main["task_id"], values)
        return self.get_main_task(network_id)

    def _delete_from_step(self, conn: Any, network_id: str, step_number: int) -> int:
        cur = self._execute(
            conn,
            """
            DELETE FROM network_tasks
            WHERE network_id = ? AND step_number IS NOT NULL AND step_number >= ? AND status != ?
            """,
            (network_id, step_number, TaskStatus.COMPLETED),
        )
        return cur.rowcount or 0

    def delete_tasks_from_step(self, network_id: str, step_number: int) -> int:
        """Delete not-yet-completed sub-tasks at or after ``step_number``. Completed tasks are kept."""
        with self._transaction(exclusive=True) as conn:
            self._select_main_for_update(conn, network_id)
            return self._delete_from_step(conn, network_id, step_number)

    def replan_network(self, network_id: str, policy: PolicyInfo, from_step: Optional[int]) -> int:
        """
        Record an updated policy and open a replan window.

        Deletes non-completed sub-tasks from ``from_step`` onward, moves the
        network back to planning and stores the replan marker. Refuses while
        a sub-task is running.
        """
        with self._transaction(exclusive=True) as conn:
            main = self._select_main_for_update(conn, network_id)
            running = self._execute(
                conn,
                "SELECT task_id FROM network_tasks WHERE network_id = ? AND step_number IS NOT NULL AND status = ?",
                (network_id, TaskStatus.RUNNING),
            ).fetchone()
            if running is not None:
                raise StateConflictError(
                    "ACTIVE_TASK_EXISTS",
                    f"Task {running['task_id']} is running; cannot replan",
                    metadata={"network_id": network_id},
                )
            deleted = 0
            if from_step is not None:
                deleted = self._delete_from_step(conn, network_id, from_step)
            now = utcnow()
            self._update_columns(
                conn, "network_tasks", "task_id", main["task_id"],
                {
                    "policy": self._dump_json(policy.model_dump(mode="json")),
                    "stage": NetworkStage.PLANNING,
                    "stage_updated_at": now,
                    "replan_from_step": from_step,
                    "updated_at": now,
                },
            )
        return deleted

    def claim_subtask(
        self,
        network_id: str,
        task_id: str,
        *,
        assigned_to: Optional[str] = None,
    ) -> NetworkTask:
        """
        Atomically move a queued sub-task to running.

        Re-checks, under the network lock, that the task is queued, that no
        other sub-task is running and that its step is the next runnable one.
        Promotes the network from planning to executing on the first start.
        Raises ``StateConflictError`` carrying the rejection code.
        """
        with self._transaction(exclusive=True) as conn:
            main = self._select_main_for_update(conn, network_id)
            row = self._execute(conn, "SELECT * FROM network_tasks WHERE task_id = ?", (task_id,)).fetchone()
            if row is None or row["network_id"] != network_id:
                raise StateConflictError("TASK_NOT_FOUND", f"Task {task_id} not found in network {network_id}")
            if row["step_number"] is None:
                raise StateConflictError("STEP_NUMBER_REQUIRED", f"Task {task_id} has no step number")
            if row["status"] == TaskStatus.RUNNING:
                raise StateConflictError("TASK_ALREADY_RUNNING", f"Task {task_id} is already running")
            if row["status"] != TaskStatus.QUEUED:
                raise StateConflictError("TASK_NOT_QUEUED", f"Task {task_id} is {row['status']}")
            running = self._execute(
                conn,
                "SELECT task_id FROM network_tasks WHERE network_id = ? AND step_number IS NOT NULL AND status = ?",
                (network_id, TaskStatus.RUNNING),
            ).fetchone()
            if running is not None:
                raise StateConflictError(
                    "ACTIVE_TASK_EXISTS",
                    f"Task {running['task_id']} is already running in network {network_id}",
                )
            next_step = self._execute(
                conn,
                """
                SELECT MIN(step_number) AS next_step FROM network_tasks
                WHERE network_id = ? AND step_number IS NOT NULL AND status != ?
                """,
                (network_id, TaskStatus.COMPLETED),
            ).fetchone()["next_step"]
            if next_step is None or row["step_number"] != next_step:
                raise StateConflictError(
                    "PREVIOUS_STEP_NOT_COMPLETED",
                    f"Step {row['step_number']} is not runnable; next runnable step is {next_step}",
                )
            now = utcnow()
            values = self._status_assignments(row, TaskStatus.RUNNING, now)
            if assigned_to is not None:
                values["assigned_to"] = assigned_to
            self._update_columns(conn, "network_tasks", "task_id", task_id, values)
            if main["stage"] == NetworkStage.PLANNING:
                self._update_columns(
                    conn, "network_tasks", "task_id", main["task_id"],
                    {"stage": NetworkStage.EXECUTING, "stage_updated_at": now, "updated_at": now},
                )
        return self.get_task(task_id)

    # Dependencies

    def add_task_dependency(
        self,
        dependency_id: str,
        task_id: str,
        depends_on_task_id: str,
        dependency_type: str,
    ) -> TaskDependency:
        with self._transaction() as conn:
            self._execute(
                conn,
                """
                INSERT INTO task_dependencies (dependency_id, task_id, depends_on_task_id, dependency_type, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (dependency_id, task_id, depends_on_task_id, dependency_type, utcnow()),
            )
        row = self._fetchone("SELECT * FROM task_dependencies WHERE dependency_id = ?", (dependency_id,))
        return self._row_to_dependency(row)

    def list_task_dependencies(self, task_id: str) -> List[TaskDependency]:
        rows = self._fetchall(
            "SELECT * FROM task_dependencies WHERE task_id = ? ORDER BY created_at, dependency_id",
            (task_id,),
        )
        return [self._row_to_dependency(row) for row in rows]

    def list_task_dependents(self, task_id: str) -> List[TaskDependency]:
        """Edges whose prerequisite is ``task_id``."""
        rows = self._fetchall(
            "SELECT * FROM task_dependencies WHERE depends_on_task_id = ? ORDER BY created_at, dependency_id",
            (task_id,),
        )
        return [self._row_to_dependency(row) for row in rows]

    # Content store

    def _insert_blob(self, conn: Any, content_hash: str, content_type: str, data: bytes) -> bool:
        cur = self._execute(
            conn,
            """
            INSERT INTO content_store (content_hash, content_type, content, size, created_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT (content_hash) DO NOTHING
            """,
            (content_hash, content_type, data, len(data), utcnow()),
        )
        return (cur.rowcount or 0) > 0

    def insert_blob(self, content_hash: str, content_type: str, data: bytes) -> bool:
        """Insert a blob unless one with the same hash exists. Returns True when a row was written."""
        with self._transaction() as conn:
            return self._insert_blob(conn, content_hash, content_type, bytes(data))

    def get_blob(self, content_hash: str) -> Optional[ContentBlob]:
        row = self._fetchone("SELECT * FROM content_store WHERE content_hash = ?", (content_hash,))
        return self._row_to_blob(row) if row is not None else None

    def get_blob_metadata(self, content_hash: str) -> Optional[BlobMetadata]:
        row = self._fetchone(
            "SELECT size, content_type, created_at FROM content_store WHERE content_hash = ?",
            (content_hash,),
        )
        if row is None:
            return None
        return BlobMetadata(
            size=row["size"],
            content_type=row["content_type"],
            created_at=self._coerce_ts(row["created_at"]),
        )

    def blob_exists(self, content_hash: str) -> bool:
        row = self._fetchone("SELECT 1 AS present FROM content_store WHERE content_hash = ?", (content_hash,))
        return row is not None

    def find_blob_hashes(self, prefix: str) -> List[str]:
        rows = self._fetchall(
            "SELECT content_hash FROM content_store WHERE content_hash LIKE ? ORDER BY created_at, content_hash",
            (prefix + "%",),
        )
        return [row["content_hash"] for row in rows]

    def insert_chunk(
        self,
        chunk_id: str,
        content_hash: str,
        chunk_index: int,
        data: bytes,
        offset: int,
    ) -> ContentChunk:
        data = bytes(data)
        with self._transaction() as conn:
            self._execute(
                conn,
                """
                INSERT INTO content_chunks (chunk_id, content_hash, chunk_index, chunk_data, chunk_offset, size, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (chunk_id, content_hash, chunk_index, data, offset, len(data), utcnow()),
            )
        row = self._fetchone("SELECT * FROM content_chunks WHERE chunk_id = ?", (chunk_id,))
        return self._row_to_chunk(row)

    def list_chunks(self, content_hash: str) -> List[ContentChunk]:
        rows = self._fetchall(
            "SELECT * FROM content_chunks WHERE content_hash = ? ORDER BY chunk_index, created_at",
            (content_hash,),
        )
        return [self._row_to_chunk(row) for row in rows]

    # Artifacts

    def create_artifact(
        self,
        *,
        artifact_id: str,
        job_id: str,
        mime_type: str,
        task_id: Optional[str],
        labels: Optional[List[str]],
        revision_id: str,
        empty_hash: str,
        empty_content_type: str,
        message: str,
        author: str,
    ) -> Artifact:
        """Create an artifact, its empty blob and its initial revision in one transaction."""
        with self._transaction() as conn:
            self._insert_blob(conn, empty_hash, empty_content_type, b"")
            now = utcnow()
            self._execute(
                conn,
                """
                INSERT INTO artifacts (artifact_id, job_id, task_id, current_revision, mime_type, labels, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (artifact_id, job_id, task_id, revision_id, mime_type, self._dump_json(labels or []), now, now),
            )
            self._execute(
                conn,
                """
                INSERT INTO artifact_revisions (
                    revision_id, artifact_id, revision_number, content_hash,
                    parent_revisions, commit_message, author, created_at
                )
                VALUES (?, ?, 0, ?, ?, ?, ?, ?)
                """,
                (revision_id, artifact_id, empty_hash, self._dump_json([]), message, author, now),
            )
        return self.get_artifact(artifact_id)

    def get_artifact(self, artifact_id: str) -> Artifact:
        row = self._fetchone("SELECT * FROM artifacts WHERE artifact_id = ?", (artifact_id,))
        if row is None:
            raise EntityNotFoundError(f"Artifact {artifact_id} not found", metadata={"artifact_id": artifact_id})
        return self._row_to_artifact(row)

    def list_artifacts_by_task(self, task_id: str) -> List[Artifact]:
        rows = self._fetchall(
            "SELECT * FROM artifacts WHERE task_id = ? ORDER BY created_at, artifact_id",
            (task_id,),
        )
        return [self._row_to_artifact(row) for row in rows]

    def list_artifacts_by_job(self, job_id: str) -> List[Artifact]:
        rows = self._fetchall(
            "SELECT * FROM artifacts WHERE job_id = ? ORDER BY created_at, artifact_id",
            (job_id,),
        )
        return [self._row_to_artifact(row) for row in rows]

    def commit_revision(
        self,
        *,
        artifact_id: str,
        revision_id: str,
        content_hash: str,
        parent_revisions: List[str],
        message: str,
        author: str,
    ) -> ArtifactRevision:
        """Append a revision and repoint the artifact's current revision."""
        with self._transaction(exclusive=True) as conn:
            self._lock_row(conn, "artifacts", "artifact_id", artifact_id)
            exists = self._execute(conn, "SELECT 1 AS present FROM artifacts WHERE artifact_id = ?", (artifact_id,)).fetchone()
            if exists is None:
                raise EntityNotFoundError(f"Artifact {artifact_id} not found", metadata={"artifact_id": artifact_id})
            latest = self._execute(
                conn,
                "SELECT MAX(revision_number) AS latest FROM artifact_revisions WHERE artifact_id = ?",
                (artifact_id,),
            ).fetchone()["latest"]
            number = 0 if latest is None else latest + 1
            now = utcnow()
            self._execute(
                conn,
                """
                INSERT INTO artifact_revisions (
                    revision_id, artifact_id, revision_number, content_hash,
                    parent_revisions, commit_message, author, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (revision_id, artifact_id, number, content_hash, self._dump_json(list(parent_revisions)), message, author, now),
            )
            self._update_columns(
                conn, "artifacts", "artifact_id", artifact_id,
                {"current_revision": revision_id, "updated_at": now},
            )
        return self.get_revision(revision_id)

    def get_revision(self, revision_id: str) -> ArtifactRevision:
        row = self._fetchone("SELECT * FROM artifact_revisions WHERE revision_id = ?", (revision_id,))
        if row is None:
            raise EntityNotFoundError(f"Revision {revision_id} not found", metadata={"revision_id": revision_id})
        return self._row_to_revision(row)

    def list_revisions(self, artifact_id: str) -> List[ArtifactRevision]:
        rows = self._fetchall(
            """
            SELECT * FROM artifact_revisions WHERE artifact_id = ?
            ORDER BY created_at DESC, revision_number DESC
            """,
            (artifact_id,),
        )
        return [self._row_to_revision(row) for row in rows]

    # Directives

    def create_directive(
        self,
        *,
        directive_id: str,
        network_id: str,
        content: str,
        directive_type: str,
        source: Optional[str],
        metadata: Optional[Dict[str, Any]],
    ) -> NetworkDirective:
        now = utcnow()
        with self._transaction() as conn:
            self._execute(
                conn,
                """
                INSERT INTO network_directives (
                    directive_id, network_id, content, directive_type, source,
                    status, metadata, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    directive_id, network_id, content, directive_type, source,
                    DirectiveStatus.PENDING, self._dump_json(metadata or {}), now, now,
                ),
            )
        return self.get_directive(directive_id)

    def get_directive(self, directive_id: str) -> NetworkDirective:
        row = self._fetchone("SELECT * FROM network_directives WHERE directive_id = ?", (directive_id,))
        if row is None:
            raise EntityNotFoundError(f"Directive {directive_id} not found", metadata={"directive_id": directive_id})
        return self._row_to_directive(row)

    def list_directives(
        self,
        network_id: str,
        *,
        statuses: Optional[Sequence[str]] = None,
    ) -> List[NetworkDirective]:
        query = "SELECT * FROM network_directives WHERE network_id = ?"
        params: List[Any] = [network_id]
        if statuses:
            query += f" AND status IN ({', '.join('?' for _ in statuses)})"
            params.extend(statuses)
        query += " ORDER BY created_at, directive_id"
        return [self._row_to_directive(row) for row in self._fetchall(query, params)]

    def update_directive_status(self, directive_id: str, status: str) -> NetworkDirective:
        now = utcnow()
        values: Dict[str, Any] = {"status": status, "updated_at": now}
        if status == DirectiveStatus.ACKNOWLEDGED:
            values["acknowledged_at"] = now
        elif status == DirectiveStatus.APPLIED:
            values["applied_at"] = now
        with self._transaction() as conn:
            self._lock_row(conn, "network_directives", "directive_id", directive_id)
            exists = self._execute(
                conn, "SELECT 1 AS present FROM network_directives WHERE directive_id = ?", (directive_id,)
            ).fetchone()
            if exists is None:
                raise EntityNotFoundError(f"Directive {directive_id} not found", metadata={"directive_id": directive_id})
            self._update_columns(conn, "network_directives", "directive_id", directive_id, values)
        return self.get_directive(directive_id)


class SQLiteDatabase(_SQLDatabase):
    """
    SQLite-backed persistence for netledger state.

    Exclusive transactions use ``BEGIN IMMEDIATE`` so that concurrent
    processes serialize on the database write lock.
    """

    def __init__(self, db_path: Path, *, timeout: float = 30.0) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.timeout = timeout

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=self.timeout, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def _transaction(self, *, exclusive: bool = False) -> Iterator[sqlite3.Connection]:
        """Context manager for database transactions."""
        conn = self._connect()
        try:
            if exclusive:
                conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def init_schema(self) -> None:
        """Initialize database schema."""
        from netledger.db.schema import SCHEMA_SQLITE

        with self._transaction() as conn:
            conn.executescript(SCHEMA_SQLITE)


class PostgresDatabase(_SQLDatabase):
    """
    PostgreSQL-backed persistence for netledger state.
    Requires psycopg>=3. Follows the same contract as the SQLite Database class.
    """

    def __init__(self, db_url: str, pool_size: int = 5) -> None:
        if psycopg is None:
            raise ImportError("psycopg is required for Postgres support. Install psycopg[binary].")

        self.db_url = db_url
        self.pool = None

        if ConnectionPool:
            self.pool = ConnectionPool(
                conninfo=db_url,
                min_size=1,
                max_size=pool_size,
                kwargs={"row_factory": dict_row},
                open=True,
            )

    @contextmanager
    def _transaction(self, *, exclusive: bool = False) -> Iterator[Any]:
        """Context manager for database transactions."""
        if self.pool is not None:
            with self.pool.connection() as conn:
                yield conn
        else:
            with psycopg.connect(self.db_url, row_factory=dict_row) as conn:
                yield conn

    def _q(self, query: str) -> str:
        return query.replace("?", "%s")

    def _lock_row(self, conn: Any, table: str, key_column: str, key: str) -> None:
        self._execute(conn, f"SELECT 1 FROM {table} WHERE {key_column} = ? FOR UPDATE", (key,))

    def _load_json(self, value: Any) -> Any:
        # JSONB columns come back already decoded
        return value

    def init_schema(self) -> None:
        """Initialize database schema."""
        from netledger.db.schema import SCHEMA_POSTGRES

        with self._transaction() as conn:
            with conn.cursor() as cur:
                cur.execute(SCHEMA_POSTGRES)

    def close(self) -> None:
        if self.pool is not None:
            self.pool.close()


# Type alias for the unified database interface
Database = Union[SQLiteDatabase, PostgresDatabase]


def get_database(db_url: Optional[str] = None, db_path: Optional[Path] = None, pool_size: int = 5) -> Database:
    """
    Factory function to create the appropriate database instance.

    Args:
        db_url: PostgreSQL connection URL (postgresql://...)
        db_path: SQLite database file path
        pool_size: Connection pool size for PostgreSQL

    Returns:
        Either SQLiteDatabase or PostgresDatabase instance
    """
    if db_url and db_url.startswith("postgres"):
        return PostgresDatabase(db_url, pool_size=pool_size)

    if db_path:
        return SQLiteDatabase(db_path)

    return SQLiteDatabase(Path(".netledger.sqlite"))
