import json

import pytest

from netledger import textdiff
from netledger.errors import PatchApplyError, ValidationError


@pytest.fixture
def document(runtime):
    artifact = runtime.artifacts.create("job-1", "text/plain")
    base = runtime.artifacts.commit_text(artifact.artifact_id, "line one\nline two\nline three", "base", "worker-a")
    return artifact, base


def revision_count(runtime, artifact_id):
    return len(runtime.artifacts.get_revisions(artifact_id))


def test_diff_between_revisions(runtime, document):
    artifact, base = document
    changed = runtime.artifacts.commit_text(artifact.artifact_id, "line one\nline 2\nline three", "edit", "worker-a")

    result = runtime.revisions.diff(base.revision_id, changed.revision_id)

    assert result.format == "unified"
    assert "-line two" in result.diff
    assert "+line 2" in result.diff
    assert result.stats.to_dict() == {"additions": 1, "deletions": 1, "changes": 1}


def test_json_patch_falls_back_to_unified(runtime, document):
    artifact, base = document
    changed = runtime.artifacts.commit_text(artifact.artifact_id, "other text", "edit", "worker-a")

    result = runtime.revisions.diff(base.revision_id, changed.revision_id, "json_patch")

    assert result.format == "unified"


def test_json_patch_diff_of_json_revisions(runtime):
    artifact = runtime.artifacts.create("job-1", "application/json")
    a = runtime.artifacts.commit_text(artifact.artifact_id, '{"title": "Draft"}', "1", "x")
    b = runtime.artifacts.commit_text(artifact.artifact_id, '{"title": "Final"}', "2", "x")

    result = runtime.revisions.diff(a.revision_id, b.revision_id, "json_patch")

    assert result.format == "json_patch"
    assert json.loads(result.diff) == [{"op": "replace", "path": "/title", "value": "Final"}]


def test_structured_diff(runtime, document):
    artifact, base = document
    changed = runtime.artifacts.commit_text(artifact.artifact_id, "line one\nline three", "drop", "x")

    result = runtime.revisions.diff(base.revision_id, changed.revision_id, "structured")

    assert result.format == "structured"
    assert json.loads(result.diff)["deletions"] == 1


def test_unsupported_diff_format(runtime, document):
    _, base = document
    with pytest.raises(ValidationError):
        runtime.revisions.diff(base.revision_id, base.revision_id, "svg")


def test_patch_commits_with_base_as_parent(runtime, document):
    artifact, base = document
    patch = textdiff.unified_diff("line one\nline two\nline three", "line one\nline TWO\nline three")

    revision = runtime.revisions.patch(artifact.artifact_id, base.revision_id, patch, "unified", author="planner-1")

    assert revision.parent_revisions == [base.revision_id]
    assert revision.commit_message == f"Applied patch to {base.revision_id}"
    assert revision.author == "planner-1"
    assert runtime.artifacts.read(artifact.artifact_id).content == "line one\nline TWO\nline three"


def test_failed_patch_commits_nothing(runtime, document):
    artifact, base = document
    before = revision_count(runtime, artifact.artifact_id)
    patch = textdiff.unified_diff("something\nelse", "something\ndifferent")

    with pytest.raises(PatchApplyError):
        runtime.revisions.patch(artifact.artifact_id, base.revision_id, patch)

    assert revision_count(runtime, artifact.artifact_id) == before
    assert runtime.artifacts.get(artifact.artifact_id).current_revision == base.revision_id


def test_patch_with_edits_format(runtime, document):
    artifact, base = document
    edits = json.dumps([{"type": "find_replace", "find": "two", "replace": "2"}])

    runtime.revisions.patch(artifact.artifact_id, base.revision_id, edits, "edits")

    assert runtime.artifacts.read(artifact.artifact_id).content == "line one\nline 2\nline three"


def test_patch_with_malformed_edits(runtime, document):
    artifact, base = document
    with pytest.raises(PatchApplyError):
        runtime.revisions.patch(artifact.artifact_id, base.revision_id, "{not json", "edits")


def test_apply_edits_commits_one_revision(runtime, document):
    artifact, base = document
    before = revision_count(runtime, artifact.artifact_id)

    result = runtime.revisions.apply_edits(
        artifact.artifact_id,
        [
            {"type": "prepend", "content": "# Title\n"},
            {"type": "find_replace", "find": "missing", "replace": "x"},
        ],
        author="planner-1",
    )

    assert revision_count(runtime, artifact.artifact_id) == before + 1
    assert (result.applied, result.skipped) == (1, 1)
    assert result.revision.commit_message == "Applied 2 edits"
    assert result.revision.parent_revisions == [base.revision_id]
    assert runtime.artifacts.read(artifact.artifact_id).content.startswith("# Title\nline one")


def test_merge_records_both_parents(runtime, document):
    artifact, base = document
    left = runtime.artifacts.commit_text(artifact.artifact_id, "line one\nleft\nline three", "left", "a", [base.revision_id])
    right = runtime.artifacts.commit_text(artifact.artifact_id, "line one\nright\nline three", "right", "b", [base.revision_id])

    result = runtime.revisions.merge(artifact.artifact_id, left.revision_id, right.revision_id, "auto")

    assert result.revision.parent_revisions == [left.revision_id, right.revision_id]
    assert result.revision.is_merge
    assert result.revision.commit_message == f"Merged {left.revision_id} into {right.revision_id}"
    assert result.conflicts == ['Line 2: "left" vs "right"']
    assert not result.resolved
    assert "<<<<<<< source" in runtime.artifacts.read(artifact.artifact_id).content


def test_merge_theirs_is_clean(runtime, document):
    artifact, base = document
    other = runtime.artifacts.commit_text(artifact.artifact_id, "replacement", "other", "b", [base.revision_id])

    result = runtime.revisions.merge(artifact.artifact_id, base.revision_id, other.revision_id, "theirs")

    assert result.resolved
    assert runtime.artifacts.read(artifact.artifact_id).content == "replacement"


def test_merge_rejects_foreign_revisions(runtime, document):
    artifact, base = document
    other = runtime.artifacts.create("job-2")

    with pytest.raises(ValidationError):
        runtime.revisions.merge(artifact.artifact_id, base.revision_id, other.current_revision)
