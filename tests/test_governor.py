"""
Tests for the stage and routing guards.

Pure guards are exercised on in-memory task records; stage helpers run
against a real SQLite database.
"""

from netledger.models.domain import Caller, NetworkStage, NetworkTask, ResultMarker, Role, TaskStatus
from netledger.services.governor import (
    check_partial_continuity,
    ensure_network_binding,
    ensure_queued,
    ensure_role,
    ensure_running,
    next_stage_on_first_run,
    stage_index,
)
from netledger.services.results import ErrorCode


def make_task(status=TaskStatus.QUEUED, network_id="net-1", step_number=1, marker=None) -> NetworkTask:
    return NetworkTask(
        task_id="task-1",
        network_id=network_id,
        status=status,
        task_type="work",
        description="Do the work",
        created_at="2024-01-01T00:00:00+00:00",
        updated_at="2024-01-01T00:00:00+00:00",
        step_number=step_number,
        result_marker=marker or ResultMarker(),
    )


def test_stage_order():
    assert [stage_index(s) for s in NetworkStage.ORDER] == list(range(6))
    assert stage_index(NetworkStage.PLANNING) < stage_index(NetworkStage.EXECUTING)


def test_next_stage_on_first_run():
    assert next_stage_on_first_run(NetworkStage.PLANNING) == NetworkStage.EXECUTING
    assert next_stage_on_first_run(NetworkStage.EXECUTING) == NetworkStage.EXECUTING


def test_ensure_role():
    executor = Caller(Role.EXECUTOR, "worker-a")

    assert ensure_role(executor, [Role.EXECUTOR, Role.PLANNER]).success
    rejected = ensure_role(executor, [Role.POLICY_SETTER])
    assert rejected.error_code == ErrorCode.ROLE_FORBIDDEN


def test_ensure_network_binding():
    bound = Caller(Role.EXECUTOR, "worker-a", network_id="net-1")

    assert ensure_network_binding(bound, "net-1").success
    assert ensure_network_binding(bound, "net-2").error_code == ErrorCode.NETWORK_ID_MISMATCH
    assert ensure_network_binding(Caller(Role.EXECUTOR, "worker-a"), "net-2").success

    foreign_task = make_task(network_id="net-2")
    assert ensure_network_binding(Caller(Role.EXECUTOR, "w"), "net-1", foreign_task).error_code == (
        ErrorCode.NETWORK_ID_MISMATCH
    )


def test_ensure_queued_and_running():
    assert ensure_queued(make_task(TaskStatus.QUEUED)).success
    assert ensure_queued(make_task(TaskStatus.RUNNING)).error_code == ErrorCode.TASK_ALREADY_RUNNING
    assert ensure_queued(make_task(TaskStatus.COMPLETED)).error_code == ErrorCode.TASK_NOT_QUEUED

    assert ensure_running(make_task(TaskStatus.RUNNING)).success
    assert ensure_running(make_task(TaskStatus.PAUSED)).error_code == ErrorCode.TASK_NOT_RUNNING


def test_partial_continuity():
    draft = make_task(TaskStatus.RUNNING, marker=ResultMarker(partial=True, last_author="worker-a"))

    assert check_partial_continuity(draft, "worker-a").success
    blocked = check_partial_continuity(draft, "worker-b")
    assert blocked.error_code == ErrorCode.RESULT_PARTIAL_CONTINUE_REQUIRED
    assert check_partial_continuity(make_task(TaskStatus.RUNNING), "worker-b").success


# =============================================================================
# Governor against the database
# =============================================================================

def test_advance_stage_only_moves_forward(runtime):
    runtime.tasks.create_main_task("net-1", description="Main")

    assert runtime.governor.advance_stage("net-1", NetworkStage.PLANNING) is True
    assert runtime.governor.advance_stage("net-1", NetworkStage.POLICY_SET) is False
    assert runtime.governor.get_stage("net-1") == NetworkStage.PLANNING


def test_require_stage_and_policy(runtime):
    runtime.tasks.create_main_task("net-1", description="Main")

    assert runtime.governor.require_stage("net-1", [NetworkStage.INITIALIZED]).success
    wrong = runtime.governor.require_stage("net-1", [NetworkStage.PLANNING])
    assert wrong.error_code == ErrorCode.INVALID_STAGE
    assert wrong.data["stage"] == NetworkStage.INITIALIZED

    assert runtime.governor.require_policy("net-1").error_code == ErrorCode.POLICY_NOT_SET


def test_require_task_exists(runtime):
    assert runtime.governor.require_task_exists("missing").error_code == ErrorCode.TASK_NOT_FOUND


def test_next_and_no_concurrent(runtime):
    runtime.tasks.create_main_task("net-1", description="Main")
    step1, step2, step3 = runtime.tasks.create_batch(
        "net-1",
        [{"task_type": "work", "description": f"Step {n}", "step_number": n} for n in (1, 2, 3)],
    )
    governor = runtime.governor

    assert governor.ensure_task_is_next_and_no_concurrent("net-1", step1).success
    assert governor.ensure_task_is_next_and_no_concurrent("net-1", step2).error_code == (
        ErrorCode.PREVIOUS_STEP_NOT_COMPLETED
    )

    runtime.tasks.update_status(step1.task_id, TaskStatus.RUNNING)
    assert governor.ensure_task_is_next_and_no_concurrent("net-1", step2).error_code == ErrorCode.ACTIVE_TASK_EXISTS

    main = runtime.tasks.get_main_task("net-1")
    assert governor.ensure_task_is_next_and_no_concurrent("net-1", main).error_code == ErrorCode.STEP_NUMBER_REQUIRED


def test_all_subtasks_completed(runtime):
    runtime.tasks.create_main_task("net-1", description="Main")
    assert runtime.governor.all_subtasks_completed("net-1").error_code == ErrorCode.SUBTASKS_INCOMPLETE

    (task,) = runtime.tasks.create_batch("net-1", [{"task_type": "work", "description": "Only", "step_number": 1}])
    assert runtime.governor.all_subtasks_completed("net-1").error_code == ErrorCode.SUBTASKS_INCOMPLETE

    runtime.db.update_task_result(task.task_id, "draft", partial=True, author="worker-a", status=TaskStatus.COMPLETED)
    partial = runtime.governor.all_subtasks_completed("net-1")
    assert partial.error_code == ErrorCode.SUBTASKS_INCOMPLETE
    assert partial.data["partial"] == [task.task_id]

    runtime.db.update_task_result(task.task_id, "done", partial=False, author="worker-a")
    assert runtime.governor.all_subtasks_completed("net-1").success
