import pytest

from netledger.errors import EntityNotFoundError, StateConflictError, ValidationError
from netledger.models.domain import NetworkStage, ResultMode, TaskStatus
from netledger.services.results import ErrorCode


def make_network(runtime, network_id="net-1", steps=(1, 2, 3)):
    runtime.tasks.create_main_task(network_id, description="Main", created_by="setter-1")
    return runtime.tasks.create_batch(
        network_id,
        [{"task_type": "work", "description": f"Step {n}", "step_number": n} for n in steps],
    )


def test_main_task_shape(runtime):
    main = runtime.tasks.create_main_task("net-1", description="Research report", task_type="report")

    assert main.task_id == main.network_id == "net-1"
    assert main.is_main
    assert main.status == TaskStatus.RUNNING
    assert main.stage.stage == NetworkStage.INITIALIZED
    assert main.policy is None
    assert runtime.tasks.network_exists("net-1")
    assert not runtime.tasks.network_exists("net-2")


def test_subtasks_listed_in_step_order(runtime):
    runtime.tasks.create_main_task("net-1", description="Main")
    runtime.tasks.create_batch(
        "net-1",
        [
            {"task_type": "b", "description": "second", "step_number": 2},
            {"task_type": "a", "description": "first", "step_number": 1},
            {"task_type": "c", "description": "second, later", "step_number": 2},
        ],
    )

    subtasks = runtime.tasks.list_subtasks("net-1")
    assert [t.description for t in subtasks] == ["first", "second", "second, later"]

    everything = runtime.tasks.list_by_network("net-1")
    assert everything[0].is_main
    assert len(everything) == 4


def test_create_task_requires_step(runtime):
    runtime.tasks.create_main_task("net-1", description="Main")
    with pytest.raises(ValidationError):
        runtime.tasks.create_task("net-1", task_type="work", description="no step")


def test_next_runnable_step_and_task(runtime):
    tasks = make_network(runtime)

    assert runtime.tasks.get_next_runnable_step("net-1") == 1
    assert runtime.tasks.get_next_runnable_task("net-1").task_id == tasks[0].task_id

    runtime.tasks.update_status(tasks[0].task_id, TaskStatus.COMPLETED)
    assert runtime.tasks.get_next_runnable_step("net-1") == 2

    for task in tasks[1:]:
        runtime.tasks.update_status(task.task_id, TaskStatus.COMPLETED)
    assert runtime.tasks.get_next_runnable_step("net-1") is None
    assert runtime.tasks.get_next_runnable_task("net-1") is None


def test_update_status_with_expected_status(runtime):
    tasks = make_network(runtime)

    with pytest.raises(StateConflictError) as excinfo:
        runtime.tasks.update_status(tasks[0].task_id, TaskStatus.COMPLETED, expected_status=TaskStatus.RUNNING)
    assert excinfo.value.code == "STATUS_CONFLICT"

    running = runtime.tasks.update_status(tasks[0].task_id, TaskStatus.RUNNING, expected_status=TaskStatus.QUEUED)
    assert running.status == TaskStatus.RUNNING


def test_terminal_status_records_completion_time(runtime):
    tasks = make_network(runtime)
    runtime.tasks.update_status(tasks[0].task_id, TaskStatus.RUNNING)

    done = runtime.tasks.update_status(tasks[0].task_id, TaskStatus.COMPLETED)

    assert done.completed_at is not None
    assert done.execution_time_ms is not None
    assert done.execution_time_ms >= 0


def test_invalid_status(runtime):
    tasks = make_network(runtime)
    with pytest.raises(ValidationError):
        runtime.tasks.update_status(tasks[0].task_id, "exploded")


def test_progress_is_clamped(runtime):
    tasks = make_network(runtime)

    assert runtime.tasks.update_progress(tasks[0].task_id, 150).progress == 100
    assert runtime.tasks.update_progress(tasks[0].task_id, -5).progress == 0
    assert runtime.tasks.update_progress(tasks[0].task_id, 40).progress == 40


def test_unknown_task(runtime):
    assert runtime.tasks.find_task("missing") is None
    with pytest.raises(EntityNotFoundError):
        runtime.tasks.get_task("missing")


def test_partial_result_continuity(runtime):
    tasks = make_network(runtime)
    task_id = tasks[0].task_id

    partial = runtime.tasks.update_result(task_id, {"text": "draft"}, ResultMode.PARTIAL, "worker-a")
    assert partial.success
    assert partial.data["task"].is_partial
    assert partial.data["task"].result_marker.last_author == "worker-a"

    blocked = runtime.tasks.update_result(task_id, {"text": "other"}, ResultMode.FINAL, "worker-b")
    assert not blocked.success
    assert blocked.error_code == ErrorCode.RESULT_PARTIAL_CONTINUE_REQUIRED
    assert runtime.tasks.get_task(task_id).result == {"text": "draft"}

    final = runtime.tasks.update_result(task_id, {"text": "done"}, ResultMode.FINAL, "worker-a", complete=True)
    task = final.data["task"]
    assert final.success
    assert not task.is_partial
    assert task.status == TaskStatus.COMPLETED
    assert task.progress == 100
    assert task.result == {"text": "done"}


def test_invalid_result_mode(runtime):
    tasks = make_network(runtime)
    with pytest.raises(ValidationError):
        runtime.tasks.update_result(tasks[0].task_id, "x", "draft", "worker-a")


def test_delete_from_step_only_while_planning(runtime):
    tasks = make_network(runtime)

    rejected = runtime.tasks.delete_tasks_from_step("net-1", 2)
    assert rejected.error_code == ErrorCode.INVALID_STAGE

    runtime.db.update_network_stage("net-1", NetworkStage.PLANNING)
    runtime.tasks.update_status(tasks[1].task_id, TaskStatus.COMPLETED)
    deleted = runtime.tasks.delete_tasks_from_step("net-1", 2)

    assert deleted.data["deleted"] == 1
    remaining = [t.step_number for t in runtime.tasks.list_subtasks("net-1")]
    assert remaining == [1, 2]


def test_batch_dependencies(runtime):
    runtime.tasks.create_main_task("net-1", description="Main")
    first, second = runtime.tasks.create_batch(
        "net-1",
        [
            {"task_id": "collect", "task_type": "research", "description": "Collect", "step_number": 1},
            {"task_type": "write", "description": "Write", "step_number": 2, "depends_on": ["collect"]},
        ],
    )

    assert second.depends_on == ["collect"]
    assert [d.depends_on_task_id for d in runtime.tasks.list_dependencies(second.task_id)] == ["collect"]
    assert runtime.tasks.unsatisfied_dependencies(second.task_id) == ["collect"]

    runtime.tasks.update_status(first.task_id, TaskStatus.COMPLETED)
    assert runtime.tasks.dependencies_satisfied(second.task_id)


def test_add_dependency_validation(runtime):
    tasks = make_network(runtime)
    with pytest.raises(ValidationError):
        runtime.tasks.add_dependency(tasks[0].task_id, tasks[0].task_id)
    with pytest.raises(ValidationError):
        runtime.tasks.add_dependency(tasks[1].task_id, tasks[0].task_id, "whenever")


def test_network_summary(runtime):
    tasks = make_network(runtime)
    runtime.tasks.update_status(tasks[0].task_id, TaskStatus.COMPLETED)
    runtime.tasks.update_status(tasks[1].task_id, TaskStatus.RUNNING)

    summary = runtime.tasks.network_summary("net-1")

    assert summary.stage == NetworkStage.INITIALIZED
    assert (summary.total, summary.completed, summary.running, summary.queued) == (3, 1, 1, 1)


def test_list_by_worker(runtime):
    tasks = make_network(runtime)
    runtime.tasks.assign_worker(tasks[0].task_id, "worker-a")

    assert [t.task_id for t in runtime.tasks.list_by_worker("worker-a")] == [tasks[0].task_id]
    assert runtime.tasks.list_by_worker("worker-b") == []


def test_partial_result_blocks_completion(runtime):
    tasks = make_network(runtime)
    task_id = tasks[0].task_id
    runtime.tasks.update_status(task_id, TaskStatus.RUNNING)
    runtime.tasks.update_result(task_id, {"text": "draft"}, ResultMode.PARTIAL, "worker-a")

    with pytest.raises(StateConflictError) as excinfo:
        runtime.tasks.update_status(task_id, TaskStatus.COMPLETED)

    assert excinfo.value.code == "RESULT_PARTIAL_CONTINUE_REQUIRED"
    task = runtime.tasks.get_task(task_id)
    assert task.status == TaskStatus.RUNNING
    assert task.is_partial


def test_update_status_preconditions(runtime):
    tasks = make_network(runtime)
    runtime.tasks.update_status(tasks[0].task_id, TaskStatus.COMPLETED)

    with pytest.raises(StateConflictError) as excinfo:
        runtime.tasks.update_status(tasks[0].task_id, TaskStatus.FAILED, exclude_statuses=(TaskStatus.COMPLETED,))
    assert excinfo.value.code == "STATUS_CONFLICT"
    assert runtime.tasks.get_task(tasks[0].task_id).status == TaskStatus.COMPLETED

    with pytest.raises(StateConflictError) as excinfo:
        runtime.tasks.update_status("net-1", TaskStatus.FAILED, subtask_only=True)
    assert excinfo.value.code == "STEP_NUMBER_REQUIRED"
    assert runtime.tasks.get_main_task("net-1").status == TaskStatus.RUNNING


# =============================================================================
# Discovery
# =============================================================================

def test_list_by_type(runtime):
    runtime.tasks.create_main_task("net-1", description="Main")
    runtime.tasks.create_main_task("net-2", description="Other")
    runtime.tasks.create_batch(
        "net-1",
        [
            {"task_type": "research", "description": "Collect", "step_number": 1},
            {"task_type": "write", "description": "Draft", "step_number": 2},
            {"task_type": "research", "description": "Verify", "step_number": 3},
        ],
    )
    runtime.tasks.create_batch("net-2", [{"task_type": "research", "description": "Elsewhere", "step_number": 1}])

    in_network = runtime.tasks.list_by_type("net-1", "research")
    assert [t.description for t in in_network] == ["Collect", "Verify"]
    assert len(runtime.tasks.list_by_type(None, "research")) == 3
    assert len(runtime.tasks.list_by_type(None, "research", limit=2)) == 2
    with pytest.raises(ValidationError):
        runtime.tasks.list_by_type("net-1", "")


def test_list_by_creator(runtime):
    runtime.tasks.create_main_task("net-1", description="Main", created_by="setter-1")
    runtime.tasks.create_batch(
        "net-1",
        [
            {"task_id": "a-one", "task_type": "work", "description": "One", "step_number": 1, "created_by": "planner-1"},
            {"task_id": "b-two", "task_type": "work", "description": "Two", "step_number": 2, "created_by": "planner-1"},
        ],
    )

    assert [t.description for t in runtime.tasks.list_by_creator("planner-1")] == ["One", "Two"]
    assert [t.task_id for t in runtime.tasks.list_by_creator("setter-1")] == ["net-1"]
    assert runtime.tasks.list_by_creator("nobody") == []


def test_find_related(runtime):
    runtime.tasks.create_main_task("net-1", description="Main")
    runtime.tasks.create_main_task("net-2", description="Other")
    runtime.tasks.create_batch(
        "net-1",
        [
            {"task_id": "collect", "task_type": "research", "description": "Collect", "step_number": 1},
            {"task_id": "draft", "task_type": "write", "description": "Draft", "step_number": 2},
            {"task_id": "review", "task_type": "review", "description": "Review", "step_number": 3},
        ],
    )
    runtime.tasks.create_batch(
        "net-2",
        [{"task_id": "publish", "task_type": "publish", "description": "Publish", "step_number": 1}],
    )
    runtime.tasks.add_dependency("draft", "collect")
    runtime.tasks.add_dependency("publish", "draft")

    related = [t.task_id for t in runtime.tasks.find_related("draft")]

    assert related == ["collect", "publish", "review"]
    assert [t.task_id for t in runtime.tasks.find_related("draft", limit=1)] == ["collect"]
    with pytest.raises(EntityNotFoundError):
        runtime.tasks.find_related("missing")
