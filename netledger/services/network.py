"""
netledger Network Service

Role-facing operations for policy-setter, planner and executor callers.
Every operation takes an explicit ``Caller`` and returns an
``OperationResult``; state, role and ordering violations come back as error
codes, malformed input raises ``ValidationError``.
"""

import uuid
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Type, TypeVar, Union

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from netledger.db.database import utcnow
from netledger.errors import StateConflictError, ValidationError
from netledger.models.domain import (
    Caller,
    NetworkStage,
    NetworkSummary,
    NetworkTask,
    ResultMode,
    Role,
    TaskStatus,
)
from netledger.models.inputs import PolicyInfo, SubtaskSpec
from netledger.services.base import Service, ServiceContext
from netledger.services.governor import (
    Governor,
    check_partial_continuity,
    ensure_network_binding,
    ensure_queued,
    ensure_role,
    ensure_running,
    next_stage_on_first_run,
)
from netledger.services.results import ErrorCode, OperationResult
from netledger.services.tasks import TaskStoreService

ModelT = TypeVar("ModelT", bound=BaseModel)

_UNSET = object()

POLICY_STAGES_SAVE = (NetworkStage.INITIALIZED,)
POLICY_STAGES_UPDATE = (NetworkStage.POLICY_SET, NetworkStage.PLANNING, NetworkStage.EXECUTING)
PLANNING_STAGES = (NetworkStage.POLICY_SET, NetworkStage.PLANNING)
RUN_STAGES = (NetworkStage.PLANNING, NetworkStage.EXECUTING)
EXECUTION_STAGES = (NetworkStage.EXECUTING,)
FINALIZE_STAGES = (NetworkStage.EXECUTING, NetworkStage.FINALIZING)


def _validate(model: Type[ModelT], value: Union[ModelT, Mapping[str, Any]], what: str) -> ModelT:
    if isinstance(value, model):
        return value
    try:
        return model.model_validate(value)
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid {what}: {exc}") from exc


class NetworkService(Service):
    """
    Service exposing the network lifecycle to the three caller roles.

    Example:
        setter = Caller(Role.POLICY_SETTER, "setter-1")
        planner = Caller(Role.PLANNER, "planner-1")
        executor = Caller(Role.EXECUTOR, "worker-1")

        network.create_network("net-1", description="Quarterly report")
        network.save_policy(setter, "net-1", {"strategy": "research then write"})
        network.create_subtasks(planner, "net-1", [
            {"task_type": "research", "description": "Collect data", "step_number": 1},
            {"task_type": "write", "description": "Draft report", "step_number": 2},
        ])
        claim = network.claim_next_task(executor, "net-1")
        network.write_result(executor, "net-1", claim.data["task"].task_id, {"text": "..."})
    """

    def __init__(self, context: ServiceContext, task_store: TaskStoreService, governor: Governor) -> None:
        super().__init__(context)
        self.tasks = task_store
        self.governor = governor

    # Shared gating

    def _gate(
        self,
        caller: Optional[Caller],
        network_id: str,
        *,
        roles: Optional[Iterable[str]] = None,
        stages: Optional[Iterable[str]] = None,
        require_policy: bool = False,
        task_id: Optional[str] = None,
    ) -> Tuple[Optional[OperationResult], Optional[NetworkTask]]:
        """
        Run the standard guards in order and return ``(failure, task)``.

        Order: caller binding, role, network existence, task lookup, task
        network, stage, policy.
        """
        if caller is not None:
            check = ensure_network_binding(caller, network_id)
            if not check.success:
                return check, None
            if roles is not None:
                check = ensure_role(caller, roles)
                if not check.success:
                    return check, None
        if not self.tasks.network_exists(network_id):
            return OperationResult.fail(ErrorCode.TASK_NOT_FOUND, f"Network {network_id} not found"), None
        task = None
        if task_id is not None:
            found = self.governor.require_task_exists(task_id)
            if not found.success:
                return found, None
            task = found.data["task"]
            if task.network_id != network_id:
                return OperationResult.fail(
                    ErrorCode.NETWORK_ID_MISMATCH,
                    f"Task {task_id} belongs to network {task.network_id}, not {network_id}",
                ), None
        if stages is not None:
            check = self.governor.require_stage(network_id, stages)
            if not check.success:
                return check, task
        if require_policy:
            check = self.governor.require_policy(network_id)
            if not check.success:
                return check, task
        return None, task

    # Network lifecycle

    def create_network(
        self,
        network_id: Optional[str] = None,
        *,
        description: str,
        task_type: str = "network",
        created_by: Optional[str] = None,
        parent_job_id: Optional[str] = None,
        parameters: Optional[Dict[str, Any]] = None,
    ) -> OperationResult:
        """Create the main task of a network. Re-creating an existing network returns it unchanged."""
        if not description:
            raise ValidationError("description is required")
        network_id = network_id or str(uuid.uuid4())
        existing = self.tasks.find_task(network_id)
        if existing is not None:
            if not existing.is_main:
                raise ValidationError(f"{network_id} is a sub-task id, not a network id")
            return OperationResult.ok("Network already exists", network_id=network_id, task=existing, created=False)
        main = self.tasks.create_main_task(
            network_id,
            description=description,
            task_type=task_type,
            created_by=created_by,
            parent_job_id=parent_job_id,
            parameters=parameters,
        )
        return OperationResult.ok("Network created", network_id=network_id, task=main, created=True)

    def get_stage(self, network_id: str) -> str:
        return self.governor.get_stage(network_id)

    def get_policy(self, network_id: str) -> Optional[PolicyInfo]:
        return self.tasks.get_main_task(network_id).policy

    def network_summary(self, network_id: str) -> NetworkSummary:
        return self.tasks.network_summary(network_id)

    # Policy

    def save_policy(
        self,
        caller: Caller,
        network_id: str,
        policy: Union[PolicyInfo, Mapping[str, Any]],
    ) -> OperationResult:
        """Record the first policy (version 1) and move the network to policy_set."""
        policy = _validate(PolicyInfo, policy, "policy")
        failure, _ = self._gate(caller, network_id, roles=(Role.POLICY_SETTER,), stages=POLICY_STAGES_SAVE)
        if failure is not None:
            return failure
        now = utcnow()
        saved = policy.model_copy(update={"version": 1, "created_at": now, "updated_at": now})
        try:
            self.tasks.db.update_network_policy(
                network_id, saved, stage=NetworkStage.POLICY_SET, expected_stage=NetworkStage.INITIALIZED
            )
        except StateConflictError as exc:
            return OperationResult.fail(ErrorCode.INVALID_STAGE, str(exc))
        self.logger.info(
            "network_stage_changed",
            extra=self.log_extra(
                network_id=network_id, from_stage=NetworkStage.INITIALIZED, to_stage=NetworkStage.POLICY_SET
            ),
        )
        self.logger.info(
            "policy_saved",
            extra=self.log_extra(network_id=network_id, agent_id=caller.agent_id, version=1),
        )
        return OperationResult.ok("Policy saved", policy=saved, stage=NetworkStage.POLICY_SET)

    def update_policy(
        self,
        caller: Caller,
        network_id: str,
        policy: Union[PolicyInfo, Mapping[str, Any]],
        *,
        replan: bool = False,
    ) -> OperationResult:
        """
        Replace the policy, bumping its version.

        With ``replan`` the network returns to planning: non-completed
        sub-tasks from the first incomplete step on are deleted and that
        step is recorded as the replan marker.
        """
        policy = _validate(PolicyInfo, policy, "policy")
        failure, _ = self._gate(
            caller, network_id,
            roles=(Role.POLICY_SETTER,), stages=POLICY_STAGES_UPDATE, require_policy=True,
        )
        if failure is not None:
            return failure
        current = self.get_policy(network_id)
        updated = policy.model_copy(update={
            "version": current.version + 1,
            "created_at": current.created_at,
            "updated_at": utcnow(),
        })
        if not replan:
            self.tasks.db.update_network_policy(network_id, updated)
            self.logger.info(
                "policy_updated",
                extra=self.log_extra(network_id=network_id, agent_id=caller.agent_id, version=updated.version),
            )
            return OperationResult.ok("Policy updated", policy=updated, replanned=False)

        from_step = self.tasks.get_next_runnable_step(network_id)
        if from_step is None:
            steps = [t.step_number for t in self.tasks.list_subtasks(network_id) if t.step_number is not None]
            from_step = max(steps) + 1 if steps else 1
        stage_before = self.governor.get_stage(network_id)
        try:
            deleted = self.tasks.db.replan_network(network_id, updated, from_step)
        except StateConflictError as exc:
            return OperationResult.fail(ErrorCode(exc.code), str(exc))
        self.logger.info(
            "network_stage_changed",
            extra=self.log_extra(network_id=network_id, from_stage=stage_before, to_stage=NetworkStage.PLANNING),
        )
        self.logger.info(
            "policy_updated",
            extra=self.log_extra(
                network_id=network_id,
                agent_id=caller.agent_id,
                version=updated.version,
                replan_from_step=from_step,
                deleted=deleted,
            ),
        )
        return OperationResult.ok(
            "Policy updated; network returned to planning",
            policy=updated,
            replanned=True,
            replan_from_step=from_step,
            deleted=deleted,
            stage=NetworkStage.PLANNING,
        )

    # Planning

    def create_subtasks(
        self,
        caller: Caller,
        network_id: str,
        tasks: Sequence[Union[SubtaskSpec, Mapping[str, Any]]],
    ) -> OperationResult:
        """
        Create the network's sub-tasks in one batch.

        Re-submission while sub-tasks exist returns the existing set. After a
        replan only steps at or after the replan marker are created. Missing
        step numbers default to consecutive steps from 1 (or the marker).
        """
        if not tasks:
            raise ValidationError("At least one task is required")
        specs = [_validate(SubtaskSpec, spec, f"task #{index}") for index, spec in enumerate(tasks)]
        failure, _ = self._gate(
            caller, network_id,
            roles=(Role.PLANNER,), stages=PLANNING_STAGES, require_policy=True,
        )
        if failure is not None:
            return failure

        main = self.tasks.get_main_task(network_id)
        marker = main.stage.replan_from_step if main.stage else None
        existing = self.tasks.list_subtasks(network_id)
        if existing and marker is None:
            return OperationResult.ok(
                "Sub-tasks already exist",
                tasks=existing,
                created=False,
            )

        base_step = marker or 1
        floor = marker or 1
        rows: List[Dict[str, Any]] = []
        previous = None
        for index, spec in enumerate(specs):
            step = spec.step_number if spec.step_number is not None else base_step + index
            if step < floor:
                return OperationResult.fail(
                    ErrorCode.INVALID_STEP_ORDER,
                    f"Task #{index} has step {step}; steps must be >= {floor}",
                )
            if previous is not None and step < previous:
                return OperationResult.fail(
                    ErrorCode.INVALID_STEP_ORDER,
                    f"Task #{index} has step {step} after step {previous}; steps must not decrease",
                )
            previous = step
            rows.append({
                "task_id": spec.task_id,
                "task_type": spec.task_type,
                "description": spec.description,
                "parameters": spec.parameters,
                "step_number": step,
                "depends_on": spec.depends_on,
                "priority": spec.priority,
                "created_by": caller.agent_id,
                "parent_job_id": main.parent_job_id,
                "metadata": {"batch_created": True, "batch_size": len(specs), **spec.metadata},
            })

        created = self.tasks.create_batch(network_id, rows)
        stage = main.stage.stage if main.stage else NetworkStage.INITIALIZED
        if stage == NetworkStage.POLICY_SET:
            self.governor.advance_stage(network_id, NetworkStage.PLANNING)
        if marker is not None:
            self.tasks.db.update_network_stage(network_id, NetworkStage.PLANNING, replan_from_step=None)
        return OperationResult.ok(
            f"Created {len(created)} sub-tasks",
            tasks=self.tasks.list_subtasks(network_id) if marker is not None else created,
            created=True,
        )

    # Execution

    def start_task(self, caller: Caller, network_id: str, task_id: str) -> OperationResult:
        """
        Move a queued sub-task to running.

        Enforces strict step order and a single running sub-task per
        network. The first start promotes the network to executing.
        """
        failure, task = self._gate(
            caller, network_id,
            roles=(Role.PLANNER, Role.EXECUTOR), stages=RUN_STAGES, require_policy=True, task_id=task_id,
        )
        if failure is not None:
            return failure
        for check in (
            lambda: ensure_queued(task),
            lambda: self.governor.ensure_task_is_next_and_no_concurrent(network_id, task),
            lambda: self.governor.dependencies_satisfied(task),
        ):
            result = check()
            if not result.success:
                return result

        stage_before = self.governor.get_stage(network_id)
        assigned_to = caller.agent_id if caller.role == Role.EXECUTOR else None
        try:
            started = self.tasks.db.claim_subtask(network_id, task_id, assigned_to=assigned_to)
        except StateConflictError as exc:
            return OperationResult.fail(ErrorCode(exc.code), str(exc))

        stage_after = next_stage_on_first_run(stage_before)
        self.logger.info(
            "task_started",
            extra=self.log_extra(
                network_id=network_id,
                task_id=task_id,
                agent_id=caller.agent_id,
                step_number=started.step_number,
            ),
        )
        if stage_before != stage_after:
            self.logger.info(
                "network_stage_changed",
                extra=self.log_extra(network_id=network_id, from_stage=stage_before, to_stage=stage_after),
            )
        return OperationResult.ok(f"Task {task_id} started", task=started, stage=stage_after)

    def claim_next_task(self, caller: Caller, network_id: str) -> OperationResult:
        """Start the next runnable sub-task on behalf of an executor."""
        failure, _ = self._gate(
            caller, network_id,
            roles=(Role.EXECUTOR,), stages=RUN_STAGES, require_policy=True,
        )
        if failure is not None:
            return failure
        running = self.tasks.list_by_network_and_status(network_id, TaskStatus.RUNNING)
        if running:
            return OperationResult.fail(
                ErrorCode.ACTIVE_TASK_EXISTS,
                f"Task {running[0].task_id} is already running",
                active_task_id=running[0].task_id,
            )
        candidate = self.tasks.get_next_runnable_task(network_id)
        if candidate is None:
            return OperationResult.fail(ErrorCode.NO_PENDING_TASKS, f"No runnable tasks in network {network_id}")
        return self.start_task(caller, network_id, candidate.task_id)

    def write_result(
        self,
        caller: Caller,
        network_id: str,
        task_id: str,
        result: Any,
        mode: str = ResultMode.FINAL,
    ) -> OperationResult:
        """
        Record a sub-task result.

        ``partial`` stores a draft owned by the caller; ``final`` requires
        partial continuity and completes the task.
        """
        failure, task = self._gate(
            caller, network_id,
            roles=(Role.EXECUTOR, Role.PLANNER), stages=EXECUTION_STAGES, task_id=task_id,
        )
        if failure is not None:
            return failure
        check = ensure_running(task)
        if not check.success:
            return check
        return self.tasks.update_result(
            task_id,
            result,
            mode,
            caller.agent_id,
            complete=(mode == ResultMode.FINAL),
        )

    def continue_partial(self, caller: Caller, network_id: str, task_id: str) -> OperationResult:
        """Return the caller's pending draft so it can be continued."""
        failure, task = self._gate(
            caller, network_id,
            roles=(Role.EXECUTOR,), stages=EXECUTION_STAGES, task_id=task_id,
        )
        if failure is not None:
            return failure
        if not task.is_partial:
            return OperationResult.fail(ErrorCode.NO_PARTIAL_TO_CONTINUE, f"Task {task_id} has no partial result")
        check = check_partial_continuity(task, caller.agent_id)
        if not check.success:
            return check
        return OperationResult.ok(
            "Partial result loaded",
            task=task,
            result=task.result,
            last_updated_at=task.result_marker.last_updated_at,
        )

    def complete_task(
        self,
        caller: Caller,
        network_id: str,
        task_id: str,
        result: Any = _UNSET,
    ) -> OperationResult:
        """Mark a running, non-partial sub-task completed (optionally recording a final result)."""
        failure, task = self._gate(
            caller, network_id,
            roles=(Role.PLANNER,), stages=EXECUTION_STAGES, task_id=task_id,
        )
        if failure is not None:
            return failure
        check = ensure_running(task)
        if not check.success:
            return check
        if task.is_partial:
            return OperationResult.fail(
                ErrorCode.RESULT_PARTIAL_CONTINUE_REQUIRED,
                f"Task {task_id} holds a partial result by {task.result_marker.last_author}",
            )
        if result is not _UNSET:
            return self.tasks.update_result(task_id, result, ResultMode.FINAL, caller.agent_id, complete=True)
        try:
            completed = self.tasks.update_status(task_id, TaskStatus.COMPLETED, expected_status=TaskStatus.RUNNING)
        except StateConflictError as exc:
            if exc.code == ErrorCode.RESULT_PARTIAL_CONTINUE_REQUIRED:
                return OperationResult.fail(ErrorCode.RESULT_PARTIAL_CONTINUE_REQUIRED, str(exc))
            return OperationResult.fail(ErrorCode.TASK_NOT_RUNNING, str(exc))
        return OperationResult.ok(f"Task {task_id} completed", task=completed)

    def update_progress(self, caller: Caller, network_id: str, task_id: str, progress: int) -> OperationResult:
        failure, task = self._gate(
            caller, network_id,
            roles=(Role.EXECUTOR, Role.PLANNER), stages=EXECUTION_STAGES, task_id=task_id,
        )
        if failure is not None:
            return failure
        check = ensure_running(task)
        if not check.success:
            return check
        return OperationResult.ok(task=self.tasks.update_progress(task_id, progress))

    def _force_status(self, caller: Caller, network_id: str, task_id: str, status: str, reason: Optional[str]) -> OperationResult:
        failure, task = self._gate(caller, network_id, task_id=task_id)
        if failure is not None:
            return failure
        if task.step_number is None:
            return OperationResult.fail(ErrorCode.STEP_NUMBER_REQUIRED, f"Task {task_id} is the main task of {network_id}")
        if task.status == TaskStatus.COMPLETED:
            return OperationResult.fail(ErrorCode.TASK_NOT_QUEUED, f"Task {task_id} is completed")
        try:
            updated = self.tasks.update_status(
                task_id, status, exclude_statuses=(TaskStatus.COMPLETED,), subtask_only=True
            )
        except StateConflictError as exc:
            code = ErrorCode.STEP_NUMBER_REQUIRED if exc.code == ErrorCode.STEP_NUMBER_REQUIRED else ErrorCode.TASK_NOT_QUEUED
            return OperationResult.fail(code, str(exc))
        self.logger.warning(
            "task_abandoned",
            extra=self.log_extra(
                network_id=network_id,
                task_id=task_id,
                agent_id=caller.agent_id,
                status=status,
                reason=reason,
            ),
        )
        return OperationResult.ok(f"Task {task_id} {status}", task=updated)

    def fail_task(self, caller: Caller, network_id: str, task_id: str, reason: Optional[str] = None) -> OperationResult:
        """Force a sub-task to failed. Not stage- or role-gated; completed sub-tasks are refused."""
        return self._force_status(caller, network_id, task_id, TaskStatus.FAILED, reason)

    def pause_task(self, caller: Caller, network_id: str, task_id: str, reason: Optional[str] = None) -> OperationResult:
        """Force a sub-task to paused. Not stage- or role-gated; completed sub-tasks are refused."""
        return self._force_status(caller, network_id, task_id, TaskStatus.PAUSED, reason)

    def resume_task(self, caller: Caller, network_id: str, task_id: str) -> OperationResult:
        """Put a paused task back in the queue."""
        failure, task = self._gate(
            caller, network_id,
            roles=(Role.PLANNER,), stages=RUN_STAGES, task_id=task_id,
        )
        if failure is not None:
            return failure
        if task.status != TaskStatus.PAUSED:
            return OperationResult.fail(ErrorCode.TASK_NOT_QUEUED, f"Task {task_id} is {task.status}, not paused")
        try:
            resumed = self.tasks.update_status(task_id, TaskStatus.QUEUED, expected_status=TaskStatus.PAUSED)
        except StateConflictError as exc:
            return OperationResult.fail(ErrorCode.TASK_NOT_QUEUED, str(exc))
        return OperationResult.ok(f"Task {task_id} resumed", task=resumed)

    # Results and finalization

    def get_consolidated_results(self, caller: Caller, network_id: str) -> OperationResult:
        """Sub-task results in step order."""
        failure, _ = self._gate(caller, network_id, roles=(Role.POLICY_SETTER, Role.PLANNER))
        if failure is not None:
            return failure
        subtasks = self.tasks.list_subtasks(network_id)
        results = [
            {
                "task_id": task.task_id,
                "step_number": task.step_number,
                "task_type": task.task_type,
                "description": task.description,
                "status": task.status,
                "partial": task.is_partial,
                "result": task.result,
            }
            for task in subtasks
        ]
        completed = sum(1 for task in subtasks if task.status == TaskStatus.COMPLETED)
        return OperationResult.ok(
            results=results,
            total=len(subtasks),
            completed=completed,
            stage=self.governor.get_stage(network_id),
        )

    def finalize(self, caller: Caller, network_id: str, final_result: Any) -> OperationResult:
        """
        Close the network once every sub-task is completed and non-partial.

        Moves executing -> finalizing -> completed and records the final
        result on the main task.
        """
        failure, _ = self._gate(
            caller, network_id,
            roles=(Role.POLICY_SETTER,), stages=FINALIZE_STAGES,
        )
        if failure is not None:
            return failure
        check = self.governor.all_subtasks_completed(network_id)
        if not check.success:
            return check
        # Only the call that moves finalizing -> completed records the result.
        try:
            self.governor.advance_stage(network_id, NetworkStage.FINALIZING)
            self.governor.set_stage(network_id, NetworkStage.COMPLETED, expected_stage=NetworkStage.FINALIZING)
        except StateConflictError as exc:
            return OperationResult.fail(ErrorCode.INVALID_STAGE, str(exc), stage=self.governor.get_stage(network_id))
        self.tasks.db.update_task_result(
            network_id,
            final_result,
            partial=False,
            author=caller.agent_id,
            status=TaskStatus.COMPLETED,
        )
        self.logger.info(
            "network_finalized",
            extra=self.log_extra(network_id=network_id, agent_id=caller.agent_id),
        )
        return OperationResult.ok("Network finalized", stage=NetworkStage.COMPLETED, result=final_result)
