import json

import pytest
from hypothesis import given, settings, strategies as st

from netledger import textdiff
from netledger.errors import EditError, PatchApplyError

lines_strategy = st.lists(st.sampled_from(["alpha", "beta", "gamma", "delta", ""]), max_size=12)


def test_unified_diff_of_equal_texts_is_empty():
    assert textdiff.unified_diff("same\ntext", "same\ntext") == ""


def test_unified_diff_and_stats():
    diff = textdiff.unified_diff("a\nb\nc", "a\nB\nc")

    assert "-b" in diff
    assert "+B" in diff
    stats = textdiff.unified_stats(diff)
    assert (stats.additions, stats.deletions, stats.changes) == (1, 1, 1)


@settings(max_examples=100, deadline=None)
@given(old=lines_strategy, new=lines_strategy)
def test_generated_patch_applies_to_its_base(old, new):
    old_text, new_text = "\n".join(old), "\n".join(new)
    patch = textdiff.unified_diff(old_text, new_text, context=2)

    assert textdiff.apply_unified_patch(old_text, patch) == new_text


def test_apply_unified_patch_is_strict():
    patch = textdiff.unified_diff("one\ntwo\nthree", "one\n2\nthree")

    with pytest.raises(PatchApplyError):
        textdiff.apply_unified_patch("one\nTWO\nthree", patch)


def test_apply_patch_without_hunks():
    assert textdiff.apply_unified_patch("keep", "") == "keep"
    with pytest.raises(PatchApplyError):
        textdiff.apply_unified_patch("keep", "this is not a diff")


def test_truncated_hunk_is_rejected():
    with pytest.raises(PatchApplyError):
        textdiff.apply_unified_patch("a\nb", "@@ -1,2 +1,2 @@\n a")


def test_structured_diff_lists_hunks():
    document, stats = textdiff.structured_diff("a\nb", "a\nc\nd")

    assert len(document["hunks"]) == 1
    hunk = document["hunks"][0]
    assert {"old_start", "old_lines", "new_start", "new_lines", "lines"} <= set(hunk)
    assert document["additions"] == stats.additions == 2
    assert document["deletions"] == stats.deletions == 1


def test_json_patch_diff():
    result = textdiff.json_patch_diff('{"a": 1, "b": 2}', '{"a": 1, "b": 3, "c": 4}')

    assert result is not None
    text, stats = result
    operations = json.loads(text)
    assert {"op": "replace", "path": "/b", "value": 3} in operations
    assert {"op": "add", "path": "/c", "value": 4} in operations
    assert stats.changes == len(operations)


def test_json_patch_diff_requires_json():
    assert textdiff.json_patch_diff("plain text", '{"a": 1}') is None


def test_apply_json_patch():
    patched = textdiff.apply_json_patch('{"a": 1}', '[{"op": "add", "path": "/b", "value": [1, 2]}]')
    assert json.loads(patched) == {"a": 1, "b": [1, 2]}

    with pytest.raises(PatchApplyError):
        textdiff.apply_json_patch('{"a": 1}', '[{"op": "remove", "path": "/missing"}]')
    with pytest.raises(PatchApplyError):
        textdiff.apply_json_patch("not json", "[]")


# =============================================================================
# Edits
# =============================================================================

def test_find_replace_targets_nth_occurrence():
    outcome = textdiff.apply_edits("a b a b a", [{"type": "find_replace", "find": "a", "replace": "X", "occurrence": 2}])

    assert outcome.text == "a b X b a"
    assert (outcome.applied, outcome.skipped) == (1, 0)


@pytest.mark.parametrize(
    "occurrence, expected",
    [(1, "Xaa"), (2, "aaX"), (3, "aaaa")],
)
def test_find_replace_counts_non_overlapping_matches(occurrence, expected):
    outcome = textdiff.apply_edits("aaaa", [{"type": "find_replace", "find": "aa", "replace": "X", "occurrence": occurrence}])

    assert outcome.text == expected


def test_find_replace_is_literal():
    outcome = textdiff.apply_edits("cost: $5 (approx.)", [{"type": "find_replace", "find": "(approx.)", "replace": "exact"}])
    assert outcome.text == "cost: $5 exact"


def test_missing_occurrence_is_skipped():
    outcome = textdiff.apply_edits("only once", [{"type": "find_replace", "find": "once", "replace": "twice", "occurrence": 2}])

    assert outcome.text == "only once"
    assert (outcome.applied, outcome.skipped) == (0, 1)


def test_line_range_append_prepend_in_order():
    outcome = textdiff.apply_edits(
        "1\n2\n3\n4",
        [
            {"type": "line_range", "start_line": 2, "end_line": 3, "content": "two-three"},
            {"type": "append", "content": "\n5"},
            {"type": "prepend", "content": "0\n"},
        ],
    )

    assert outcome.text == "0\n1\ntwo-three\n4\n5"
    assert outcome.applied == 3


def test_invalid_edit_raises():
    with pytest.raises(EditError):
        textdiff.apply_edits("text", [{"type": "find_replace", "replace": "x"}])
    with pytest.raises(EditError):
        textdiff.apply_edits("text", [{"type": "line_range", "start_line": 3, "end_line": 1, "content": ""}])


# =============================================================================
# Merging
# =============================================================================

def test_auto_merge_marks_conflicts():
    outcome = textdiff.merge_lines("a\nb\nc", "a\nB\nc\nd", "auto")

    assert outcome.text == "a\n<<<<<<< source\nb\n=======\nB\n>>>>>>> target\nc\nd"
    assert outcome.conflicts == ['Line 2: "b" vs "B"']
    assert not outcome.resolved


def test_auto_merge_fills_empty_lines():
    outcome = textdiff.merge_lines("title\n\nfooter", "title\nbody\n", "auto")

    assert outcome.text == "title\nbody\nfooter"
    assert outcome.resolved


def test_ours_and_theirs():
    assert textdiff.merge_lines("mine", "yours", "ours").text == "mine"
    assert textdiff.merge_lines("mine", "yours", "theirs").text == "yours"
    with pytest.raises(ValueError):
        textdiff.merge_lines("mine", "yours", "octopus")
