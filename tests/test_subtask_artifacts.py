import pytest

from netledger.errors import EntityNotFoundError
from netledger.models.domain import Caller, ResultMode, Role, TaskStatus
from netledger.services.results import ErrorCode
from netledger.services.subtask_artifacts import pick_mime_type


def test_pick_mime_type():
    assert pick_mime_type("slide_deck") == "text/html"
    assert pick_mime_type("HTML page") == "text/html"
    assert pick_mime_type("research") == "text/markdown"
    assert pick_mime_type(None, "text/plain") == "text/plain"


def test_commit_draft_creates_artifact_once(runtime):
    bridge = runtime.subtask_artifacts

    first = bridge.commit_draft("job-1", "task-1", "# Draft", author="worker-a", task_type="slides")
    second = bridge.commit_draft("job-1", "task-1", "# Draft 2", author="worker-a")

    artifacts = runtime.artifacts.find_by_task_id("task-1")
    assert len(artifacts) == 1
    assert artifacts[0].mime_type == "text/html"
    assert first.commit_message == "Worker draft"
    assert second.parent_revisions == [first.revision_id]
    assert bridge.read_latest("task-1").content == "# Draft 2"


def test_diff_and_edits(runtime):
    bridge = runtime.subtask_artifacts
    bridge.commit_draft("job-1", "task-1", "alpha\nbeta", author="worker-a")

    diff = bridge.diff_with_text("task-1", "alpha\ngamma")
    assert "+gamma" in diff.diff

    edited = bridge.apply_edits(
        "task-1",
        [{"type": "find_replace", "find": "beta", "replace": "gamma"}],
        author="planner-1",
    )
    assert edited.revision.commit_message == "Planner edits (1)"
    assert edited.revision.author == "planner-1"
    assert bridge.read_latest("task-1").content == "alpha\ngamma"


def test_missing_artifact(runtime):
    with pytest.raises(EntityNotFoundError):
        runtime.subtask_artifacts.read_latest("nothing")


def test_finalize_to_task(runtime, planned_network, executor):
    planned_network("net-1", steps=1)
    task = runtime.network.claim_next_task(executor, "net-1").data["task"]
    revision = runtime.subtask_artifacts.commit_draft("net-1", task.task_id, "final text", author="worker-a")

    outcome = runtime.subtask_artifacts.finalize_to_task(executor, "net-1", task.task_id)

    assert outcome.success
    assert outcome.data["revision_id"] == revision.revision_id
    stored = runtime.tasks.get_task(task.task_id)
    assert stored.status == TaskStatus.COMPLETED
    assert stored.result["text"] == "final text"
    assert stored.result["artifact_ref"] == "ref:" + revision.content_hash[:12]


def test_finalize_respects_partial_owner(runtime, planned_network, executor):
    planned_network("net-1", steps=1)
    task = runtime.network.claim_next_task(executor, "net-1").data["task"]
    runtime.network.write_result(executor, "net-1", task.task_id, "draft", ResultMode.PARTIAL)
    runtime.subtask_artifacts.commit_draft("net-1", task.task_id, "takeover", author="worker-b")

    outcome = runtime.subtask_artifacts.finalize_to_task(Caller(Role.EXECUTOR, "worker-b"), "net-1", task.task_id)

    assert outcome.error_code == ErrorCode.RESULT_PARTIAL_CONTINUE_REQUIRED
