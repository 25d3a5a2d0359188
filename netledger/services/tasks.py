"""
netledger Task Store Service

CRUD and queries over network tasks: the main task of each network plus its
ordered sub-tasks and their dependency edges.
"""

import uuid
from typing import Any, Dict, List, Optional, Sequence

from netledger.db.database import DatabaseProtocol
from netledger.errors import ValidationError
from netledger.models.domain import (
    DependencyType,
    NetworkStage,
    NetworkSummary,
    NetworkTask,
    ResultMode,
    TaskDependency,
    TaskPriority,
    TaskStatus,
)
from netledger.services.base import Service, ServiceContext
from netledger.services.results import ErrorCode, OperationResult


class TaskStoreService(Service):
    """
    Service for task records.

    Example:
        tasks = TaskStoreService(context, db)
        main = tasks.create_main_task("net-1", description="Research report", task_type="report")
        step_one = tasks.create_task("net-1", task_type="research", description="Collect sources", step_number=1)
        tasks.get_next_runnable_task("net-1")   # -> step_one
    """

    def __init__(self, context: ServiceContext, db: DatabaseProtocol) -> None:
        super().__init__(context)
        self.db = db

    # Creation

    def create_main_task(
        self,
        network_id: str,
        *,
        description: str,
        task_type: str = "network",
        created_by: Optional[str] = None,
        parent_job_id: Optional[str] = None,
        parameters: Optional[Dict[str, Any]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> NetworkTask:
        """Create the main task of a network (``task_id == network_id``) at stage initialized."""
        if not network_id:
            raise ValidationError("network_id is required")
        task = self.db.create_tasks([
            {
                "task_id": network_id,
                "network_id": network_id,
                "parent_job_id": parent_job_id,
                "network_type": self.config.network_type,
                "status": TaskStatus.RUNNING,
                "task_type": task_type,
                "description": description,
                "parameters": parameters,
                "step_number": None,
                "created_by": created_by,
                "metadata": metadata,
                "stage": NetworkStage.INITIALIZED,
            }
        ])[0]
        self.logger.info(
            "network_created",
            extra=self.log_extra(network_id=network_id, agent_id=created_by, stage=NetworkStage.INITIALIZED),
        )
        return task

    @staticmethod
    def _subtask_row(network_id: str, spec: Dict[str, Any], position: int, network_type: str) -> Dict[str, Any]:
        if not spec.get("task_type") or not spec.get("description"):
            raise ValidationError("task_type and description are required")
        priority = spec.get("priority") or TaskPriority.MEDIUM
        if priority not in TaskPriority.ALL:
            raise ValidationError(f"Invalid priority: {priority}")
        return {
            "task_id": spec.get("task_id") or str(uuid.uuid4()),
            "network_id": network_id,
            "parent_job_id": spec.get("parent_job_id"),
            "network_type": network_type,
            "status": TaskStatus.QUEUED,
            "task_type": spec["task_type"],
            "description": spec["description"],
            "parameters": spec.get("parameters"),
            "step_number": spec.get("step_number"),
            "position": position,
            "depends_on": list(spec.get("depends_on") or []),
            "priority": priority,
            "created_by": spec.get("created_by"),
            "metadata": spec.get("metadata"),
        }

    def create_task(
        self,
        network_id: str,
        *,
        task_type: str,
        description: str,
        step_number: Optional[int] = None,
        parameters: Optional[Dict[str, Any]] = None,
        depends_on: Optional[Sequence[str]] = None,
        priority: str = TaskPriority.MEDIUM,
        created_by: Optional[str] = None,
        parent_job_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        task_id: Optional[str] = None,
    ) -> NetworkTask:
        """Create a single sub-task (``requires_completion`` edges are added for ``depends_on``)."""
        if step_number is None or step_number < 1:
            raise ValidationError("Sub-tasks require a step_number >= 1")
        return self.create_batch(
            network_id,
            [
                {
                    "task_id": task_id,
                    "task_type": task_type,
                    "description": description,
                    "step_number": step_number,
                    "parameters": parameters,
                    "depends_on": list(depends_on or []),
                    "priority": priority,
                    "created_by": created_by,
                    "parent_job_id": parent_job_id,
                    "metadata": metadata,
                }
            ],
        )[0]

    def create_batch(self, network_id: str, specs: Sequence[Dict[str, Any]]) -> List[NetworkTask]:
        """Insert sub-tasks and their dependency edges in one transaction."""
        existing = self.db.list_network_tasks(network_id)
        offset = len(existing)
        rows = [
            self._subtask_row(network_id, spec, offset + index, self.config.network_type)
            for index, spec in enumerate(specs)
        ]
        dependencies = [
            {
                "dependency_id": str(uuid.uuid4()),
                "task_id": row["task_id"],
                "depends_on_task_id": dep,
                "dependency_type": DependencyType.REQUIRES_COMPLETION,
            }
            for row in rows
            for dep in row["depends_on"]
        ]
        created = self.db.create_tasks(rows, dependencies)
        self.logger.info(
            "subtasks_created",
            extra=self.log_extra(network_id=network_id, count=len(created)),
        )
        return created

    # Lookups

    def get_task(self, task_id: str) -> NetworkTask:
        return self.db.get_task(task_id)

    def find_task(self, task_id: str) -> Optional[NetworkTask]:
        return self.db.find_task(task_id)

    def get_main_task(self, network_id: str) -> NetworkTask:
        return self.db.get_main_task(network_id)

    def network_exists(self, network_id: str) -> bool:
        task = self.db.find_task(network_id)
        return task is not None and task.is_main

    def list_by_network(self, network_id: str) -> List[NetworkTask]:
        """Main task first, then sub-tasks by step."""
        return self.db.list_network_tasks(network_id, include_main=True)

    def list_subtasks(self, network_id: str) -> List[NetworkTask]:
        return self.db.list_network_tasks(network_id)

    def list_by_status(self, status: str) -> List[NetworkTask]:
        if status not in TaskStatus.ALL:
            raise ValidationError(f"Invalid status: {status}")
        return self.db.list_tasks_by_status(status)

    def list_by_network_and_status(self, network_id: str, status: str) -> List[NetworkTask]:
        if status not in TaskStatus.ALL:
            raise ValidationError(f"Invalid status: {status}")
        return self.db.list_tasks_by_status(status, network_id=network_id)

    def list_by_worker(self, worker_id: str) -> List[NetworkTask]:
        """Queued and running tasks assigned to ``worker_id``."""
        return self.db.list_tasks_by_worker(worker_id)

    # Discovery

    def list_by_type(self, network_id: Optional[str], task_type: str, *, limit: int = 20) -> List[NetworkTask]:
        """Tasks of ``task_type``, within one network's sub-tasks or across all networks when ``network_id`` is None."""
        if not task_type:
            raise ValidationError("task_type is required")
        return self.db.list_tasks_by_type(task_type, network_id=network_id, limit=limit)

    def list_by_creator(self, created_by: str, *, limit: int = 20) -> List[NetworkTask]:
        if not created_by:
            raise ValidationError("created_by is required")
        return self.db.list_tasks_by_creator(created_by, limit=limit)

    def find_related(self, task_id: str, *, limit: int = 20) -> List[NetworkTask]:
        """
        Tasks related to ``task_id``, without duplicates and without the task
        itself: its prerequisites, then tasks that depend on it, then the
        other sub-tasks of its network in step order.

        Raises ``EntityNotFoundError`` for an unknown task.
        """
        task = self.db.get_task(task_id)
        candidates: List[str] = [dep.depends_on_task_id for dep in self.db.list_task_dependencies(task_id)]
        candidates += [dep.task_id for dep in self.db.list_task_dependents(task_id)]
        candidates += [sibling.task_id for sibling in self.db.list_network_tasks(task.network_id)]

        related: List[NetworkTask] = []
        seen = {task_id}
        for candidate in candidates:
            if candidate in seen:
                continue
            seen.add(candidate)
            found = self.db.find_task(candidate)
            if found is not None:
                related.append(found)
            if len(related) >= limit:
                break
        return related

    # Updates

    def update_status(
        self,
        task_id: str,
        status: str,
        *,
        expected_status: Optional[str] = None,
        exclude_statuses: Sequence[str] = (),
        subtask_only: bool = False,
    ) -> NetworkTask:
        """
        Set a task's status. Raises ``StateConflictError`` when a precondition
        fails or when completing a task whose result is still partial.
        """
        if status not in TaskStatus.ALL:
            raise ValidationError(f"Invalid status: {status}")
        task = self.db.update_task_status(
            task_id,
            status,
            expected_status=expected_status,
            exclude_statuses=exclude_statuses,
            subtask_only=subtask_only,
        )
        self.logger.info(
            "task_status_updated",
            extra=self.log_extra(network_id=task.network_id, task_id=task_id, status=status),
        )
        return task

    def update_progress(self, task_id: str, progress: int) -> NetworkTask:
        """Set progress, clamped to 0..100."""
        return self.db.update_task_progress(task_id, progress)

    def update_result(
        self,
        task_id: str,
        result: Any,
        result_mode: str,
        author_agent_id: Optional[str],
        *,
        complete: bool = False,
    ) -> OperationResult:
        """
        Record a partial or final result.

        A final write fails with ``RESULT_PARTIAL_CONTINUE_REQUIRED`` while a
        partial draft by another author is pending. ``complete`` also marks
        the task completed in the same write.
        """
        if result_mode not in (ResultMode.PARTIAL, ResultMode.FINAL):
            raise ValidationError(f"Invalid result mode: {result_mode}")
        task = self.db.get_task(task_id)
        if result_mode == ResultMode.PARTIAL:
            updated = self.db.update_task_result(task_id, result, partial=True, author=author_agent_id)
            self.logger.info(
                "task_result_partial",
                extra=self.log_extra(network_id=task.network_id, task_id=task_id, agent_id=author_agent_id),
            )
            return OperationResult.ok("Partial result recorded", task=updated)

        marker = task.result_marker
        if marker.partial and marker.last_author and marker.last_author != author_agent_id:
            return OperationResult.fail(
                ErrorCode.RESULT_PARTIAL_CONTINUE_REQUIRED,
                f"Task {task_id} has a partial result by {marker.last_author}; only that author may finalize it",
                last_author=marker.last_author,
            )
        updated = self.db.update_task_result(
            task_id,
            result,
            partial=False,
            author=author_agent_id,
            status=TaskStatus.COMPLETED if complete else None,
        )
        self.logger.info(
            "task_result_final",
            extra=self.log_extra(
                network_id=task.network_id,
                task_id=task_id,
                agent_id=author_agent_id,
                completed=complete,
            ),
        )
        return OperationResult.ok("Final result recorded", task=updated)

    def assign_worker(self, task_id: str, worker_id: Optional[str]) -> NetworkTask:
        return self.db.assign_task_worker(task_id, worker_id)

    def delete_tasks_from_step(self, network_id: str, step_number: int) -> OperationResult:
        """Delete non-completed sub-tasks from ``step_number`` on. Only allowed while planning."""
        main = self.db.get_main_task(network_id)
        stage = main.stage.stage if main.stage else NetworkStage.INITIALIZED
        if stage != NetworkStage.PLANNING:
            return OperationResult.fail(
                ErrorCode.INVALID_STAGE,
                f"Tasks can only be deleted during planning (current stage: {stage})",
            )
        deleted = self.db.delete_tasks_from_step(network_id, step_number)
        self.logger.info(
            "tasks_deleted_from_step",
            extra=self.log_extra(network_id=network_id, step_number=step_number, deleted=deleted),
        )
        return OperationResult.ok(f"Deleted {deleted} tasks", deleted=deleted)

    # Sequencing

    def get_next_runnable_step(self, network_id: str) -> Optional[int]:
        """Lowest step that still has a non-completed sub-task, or None when all are completed."""
        pending = [
            task.step_number
            for task in self.db.list_network_tasks(network_id)
            if task.step_number is not None and task.status != TaskStatus.COMPLETED
        ]
        return min(pending) if pending else None

    def get_next_runnable_task(self, network_id: str) -> Optional[NetworkTask]:
        """First queued sub-task at the next runnable step."""
        step = self.get_next_runnable_step(network_id)
        if step is None:
            return None
        for task in self.db.list_network_tasks(network_id):
            if task.step_number == step and task.status == TaskStatus.QUEUED:
                return task
        return None

    def network_summary(self, network_id: str) -> NetworkSummary:
        main = self.db.get_main_task(network_id)
        subtasks = self.db.list_network_tasks(network_id)
        summary = NetworkSummary(
            network_id=network_id,
            stage=main.stage.stage if main.stage else None,
            total=len(subtasks),
        )
        for task in subtasks:
            if task.status in TaskStatus.ALL:
                setattr(summary, task.status, getattr(summary, task.status) + 1)
        if subtasks:
            summary.average_progress = sum(task.progress for task in subtasks) / len(subtasks)
        return summary

    # Dependencies

    def add_dependency(
        self,
        task_id: str,
        depends_on_task_id: str,
        dependency_type: str = DependencyType.REQUIRES_COMPLETION,
    ) -> TaskDependency:
        if dependency_type not in DependencyType.ALL:
            raise ValidationError(f"Invalid dependency type: {dependency_type}")
        if task_id == depends_on_task_id:
            raise ValidationError("A task cannot depend on itself")
        self.db.get_task(task_id)
        return self.db.add_task_dependency(str(uuid.uuid4()), task_id, depends_on_task_id, dependency_type)

    def list_dependencies(self, task_id: str) -> List[TaskDependency]:
        return self.db.list_task_dependencies(task_id)

    def unsatisfied_dependencies(self, task_id: str) -> List[str]:
        """Ids of ``requires_completion`` prerequisites that are not completed (or no longer exist)."""
        missing: List[str] = []
        for dependency in self.db.list_task_dependencies(task_id):
            if dependency.dependency_type != DependencyType.REQUIRES_COMPLETION:
                continue
            prerequisite = self.db.find_task(dependency.depends_on_task_id)
            if prerequisite is None or prerequisite.status != TaskStatus.COMPLETED:
                missing.append(dependency.depends_on_task_id)
        return missing

    def dependencies_satisfied(self, task_id: str) -> bool:
        return not self.unsatisfied_dependencies(task_id)
