"""
netledger Stage & Routing Governor

Guard functions consulted before every mutation of a network. Guards read
current state and return an ``OperationResult``; they never raise for state
violations.
"""

from typing import Iterable, Optional

from netledger.errors import StateConflictError
from netledger.models.domain import Caller, NetworkStage, NetworkTask, TaskStatus
from netledger.services.base import Service, ServiceContext
from netledger.services.results import ErrorCode, OperationResult
from netledger.services.tasks import TaskStoreService

_STAGE_INDEX = {stage: index for index, stage in enumerate(NetworkStage.ORDER)}


def stage_index(stage: str) -> int:
    return _STAGE_INDEX[stage]


def ensure_role(caller: Caller, allowed_roles: Iterable[str]) -> OperationResult:
    allowed = tuple(allowed_roles)
    if caller.role not in allowed:
        return OperationResult.fail(
            ErrorCode.ROLE_FORBIDDEN,
            f"Role {caller.role} may not perform this operation (allowed: {', '.join(allowed)})",
        )
    return OperationResult.ok()


def ensure_network_binding(
    caller: Caller,
    network_id: str,
    task: Optional[NetworkTask] = None,
) -> OperationResult:
    """Reject callers bound to another network, and tasks that belong to another network."""
    if caller.network_id is not None and caller.network_id != network_id:
        return OperationResult.fail(
            ErrorCode.NETWORK_ID_MISMATCH,
            f"Caller is bound to network {caller.network_id}, not {network_id}",
        )
    if task is not None and task.network_id != network_id:
        return OperationResult.fail(
            ErrorCode.NETWORK_ID_MISMATCH,
            f"Task {task.task_id} belongs to network {task.network_id}, not {network_id}",
        )
    return OperationResult.ok()


def check_partial_continuity(task: NetworkTask, author: Optional[str]) -> OperationResult:
    """Only the author of a pending partial result may finalize it."""
    marker = task.result_marker
    if marker.partial and marker.last_author and marker.last_author != author:
        return OperationResult.fail(
            ErrorCode.RESULT_PARTIAL_CONTINUE_REQUIRED,
            f"Task {task.task_id} has a partial result by {marker.last_author}; continue it as that author",
        )
    return OperationResult.ok()


def next_stage_on_first_run(stage: str) -> str:
    """Stage a network moves to when its first sub-task starts."""
    return NetworkStage.EXECUTING if stage == NetworkStage.PLANNING else stage


def ensure_not_running(task: NetworkTask) -> OperationResult:
    if task.status == TaskStatus.RUNNING:
        return OperationResult.fail(ErrorCode.TASK_ALREADY_RUNNING, f"Task {task.task_id} is already running")
    return OperationResult.ok()


def ensure_queued(task: NetworkTask) -> OperationResult:
    check = ensure_not_running(task)
    if not check.success:
        return check
    if task.status != TaskStatus.QUEUED:
        return OperationResult.fail(ErrorCode.TASK_NOT_QUEUED, f"Task {task.task_id} is {task.status}, not queued")
    return OperationResult.ok()


def ensure_running(task: NetworkTask) -> OperationResult:
    if task.status != TaskStatus.RUNNING:
        return OperationResult.fail(ErrorCode.TASK_NOT_RUNNING, f"Task {task.task_id} is {task.status}, not running")
    return OperationResult.ok()


class Governor(Service):
    """
    Stage machine and network-level guards.

    Example:
        governor = Governor(context, task_store)
        check = governor.require_stage("net-1", [NetworkStage.PLANNING])
        if not check.success:
            return check
    """

    def __init__(self, context: ServiceContext, task_store: TaskStoreService) -> None:
        super().__init__(context)
        self.tasks = task_store

    # Stage

    def get_stage(self, network_id: str) -> str:
        main = self.tasks.get_main_task(network_id)
        return main.stage.stage if main.stage else NetworkStage.INITIALIZED

    def set_stage(self, network_id: str, stage: str, *, expected_stage: Optional[str] = None) -> NetworkTask:
        previous = self.get_stage(network_id)
        main = self.tasks.db.update_network_stage(network_id, stage, expected_stage=expected_stage)
        self.logger.info(
            "network_stage_changed",
            extra=self.log_extra(network_id=network_id, from_stage=previous, to_stage=stage),
        )
        return main

    def advance_stage(self, network_id: str, stage: str) -> bool:
        """
        Move forward to ``stage`` if the network is behind it. Returns True
        when this call changed the stage.

        A concurrent writer that already moved the network to ``stage`` or
        beyond is not an error; any other conflict propagates.
        """
        current = self.get_stage(network_id)
        if stage_index(current) >= stage_index(stage):
            return False
        try:
            self.set_stage(network_id, stage, expected_stage=current)
        except StateConflictError:
            if stage_index(self.get_stage(network_id)) >= stage_index(stage):
                return False
            raise
        return True

    # Guards

    def require_task_exists(self, task_id: str) -> OperationResult:
        task = self.tasks.find_task(task_id)
        if task is None:
            return OperationResult.fail(ErrorCode.TASK_NOT_FOUND, f"Task {task_id} not found")
        return OperationResult.ok(task=task)

    def require_stage(self, network_id: str, allowed_stages: Iterable[str]) -> OperationResult:
        allowed = tuple(allowed_stages)
        current = self.get_stage(network_id)
        if current not in allowed:
            return OperationResult.fail(
                ErrorCode.INVALID_STAGE,
                f"Network {network_id} is at stage {current}; expected one of {', '.join(allowed)}",
                stage=current,
            )
        return OperationResult.ok(stage=current)

    def require_policy(self, network_id: str) -> OperationResult:
        main = self.tasks.get_main_task(network_id)
        if main.policy is None:
            return OperationResult.fail(ErrorCode.POLICY_NOT_SET, f"No policy recorded for network {network_id}")
        return OperationResult.ok()

    def ensure_task_is_next_and_no_concurrent(self, network_id: str, task: NetworkTask) -> OperationResult:
        """
        Check that ``task`` may start now.

        Order of checks: step number present, no running sub-task, and the
        task's step is the next runnable step.
        """
        if task.step_number is None:
            return OperationResult.fail(
                ErrorCode.STEP_NUMBER_REQUIRED,
                f"Task {task.task_id} has no step number",
            )
        running = self.tasks.list_by_network_and_status(network_id, TaskStatus.RUNNING)
        if running:
            return OperationResult.fail(
                ErrorCode.ACTIVE_TASK_EXISTS,
                f"Task {running[0].task_id} (step {running[0].step_number}) is already running",
                active_task_id=running[0].task_id,
            )
        next_step = self.tasks.get_next_runnable_step(network_id)
        if next_step is None or task.step_number != next_step:
            return OperationResult.fail(
                ErrorCode.PREVIOUS_STEP_NOT_COMPLETED,
                f"Step {task.step_number} cannot start; next runnable step is {next_step}",
                next_step=next_step,
            )
        return OperationResult.ok()

    def dependencies_satisfied(self, task: NetworkTask) -> OperationResult:
        missing = self.tasks.unsatisfied_dependencies(task.task_id)
        if missing:
            return OperationResult.fail(
                ErrorCode.PREVIOUS_STEP_NOT_COMPLETED,
                f"Task {task.task_id} waits on {', '.join(missing)}",
                waiting_on=missing,
            )
        return OperationResult.ok()

    def all_subtasks_completed(self, network_id: str) -> OperationResult:
        """Fails when there are no sub-tasks, or any is not completed or still partial."""
        subtasks = self.tasks.list_subtasks(network_id)
        if not subtasks:
            return OperationResult.fail(ErrorCode.SUBTASKS_INCOMPLETE, f"Network {network_id} has no sub-tasks")
        incomplete = [t.task_id for t in subtasks if t.status != TaskStatus.COMPLETED]
        if incomplete:
            return OperationResult.fail(
                ErrorCode.SUBTASKS_INCOMPLETE,
                f"{len(incomplete)} sub-task(s) not completed",
                incomplete=incomplete,
            )
        partial = [t.task_id for t in subtasks if t.is_partial]
        if partial:
            return OperationResult.fail(
                ErrorCode.SUBTASKS_INCOMPLETE,
                f"{len(partial)} sub-task(s) still hold partial results",
                partial=partial,
            )
        return OperationResult.ok()
