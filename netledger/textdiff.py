"""
netledger Text Diff Engine

Pure functions for diffing, patching, editing and merging artifact text.
Text is split on ``"\\n"`` only, so a trailing newline shows up as a final
empty line and round-trips exactly.
"""

import difflib
import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

import jsonpatch
from pydantic import ValidationError as PydanticValidationError

from netledger.errors import EditError, PatchApplyError
from netledger.models.inputs import EditOperation

_HUNK_HEADER = re.compile(r"^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@")

CONFLICT_START = "<<<<<<< source"
CONFLICT_SEPARATOR = "======="
CONFLICT_END = ">>>>>>> target"


@dataclass
class Hunk:
    old_start: int
    old_count: int
    new_start: int
    new_count: int
    lines: List[str] = field(default_factory=list)

    @property
    def additions(self) -> int:
        return sum(1 for line in self.lines if line.startswith("+"))

    @property
    def deletions(self) -> int:
        return sum(1 for line in self.lines if line.startswith("-"))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "old_start": self.old_start,
            "old_lines": self.old_count,
            "new_start": self.new_start,
            "new_lines": self.new_count,
            "lines": list(self.lines),
        }


@dataclass
class DiffStats:
    additions: int = 0
    deletions: int = 0
    changes: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {"additions": self.additions, "deletions": self.deletions, "changes": self.changes}


@dataclass
class EditOutcome:
    """Result of applying a batch of edits."""
    text: str
    applied: int = 0
    skipped: int = 0


@dataclass
class MergeOutcome:
    text: str
    conflicts: List[str] = field(default_factory=list)

    @property
    def resolved(self) -> bool:
        return not self.conflicts


def split_lines(text: str) -> List[str]:
    return text.split("\n")


# Diffing

def unified_diff(
    old: str,
    new: str,
    *,
    from_label: str = "a",
    to_label: str = "b",
    context: int = 3,
) -> str:
    """Unified diff of two texts; empty string when they are equal."""
    lines = difflib.unified_diff(
        split_lines(old),
        split_lines(new),
        fromfile=from_label,
        tofile=to_label,
        n=context,
        lineterm="",
    )
    return "\n".join(lines)


def parse_unified(patch_text: str) -> List[Hunk]:
    """
    Parse the hunks of a unified diff.

    File headers and ``\\ No newline`` markers are ignored. Hunk bodies are
    consumed by their declared line counts.
    """
    hunks: List[Hunk] = []
    lines = patch_text.split("\n")
    i = 0
    while i < len(lines):
        match = _HUNK_HEADER.match(lines[i])
        i += 1
        if not match:
            continue
        old_start, old_count, new_start, new_count = (
            int(match.group(1)),
            int(match.group(2)) if match.group(2) is not None else 1,
            int(match.group(3)),
            int(match.group(4)) if match.group(4) is not None else 1,
        )
        hunk = Hunk(old_start, old_count, new_start, new_count)
        old_left, new_left = old_count, new_count
        while (old_left > 0 or new_left > 0) and i < len(lines):
            line = lines[i]
            i += 1
            if line.startswith("\\"):
                continue
            tag = line[:1] or " "
            if tag == " ":
                old_left -= 1
                new_left -= 1
            elif tag == "-":
                old_left -= 1
            elif tag == "+":
                new_left -= 1
            else:
                raise PatchApplyError(f"Unexpected line in hunk {len(hunks)}: {line!r}", hunk=len(hunks))
            hunk.lines.append(tag + line[1:])
        if old_left > 0 or new_left > 0:
            raise PatchApplyError(f"Hunk {len(hunks)} is truncated", hunk=len(hunks))
        hunks.append(hunk)
    return hunks


def structured_diff(old: str, new: str, *, context: int = 3) -> Tuple[Dict[str, Any], DiffStats]:
    hunks = parse_unified(unified_diff(old, new, context=context))
    stats = DiffStats(
        additions=sum(h.additions for h in hunks),
        deletions=sum(h.deletions for h in hunks),
        changes=len(hunks),
    )
    document = {
        "hunks": [h.to_dict() for h in hunks],
        "additions": stats.additions,
        "deletions": stats.deletions,
    }
    return document, stats


def unified_stats(diff_text: str) -> DiffStats:
    hunks = parse_unified(diff_text)
    return DiffStats(
        additions=sum(h.additions for h in hunks),
        deletions=sum(h.deletions for h in hunks),
        changes=len(hunks),
    )


def json_patch_diff(old: str, new: str) -> Optional[Tuple[str, DiffStats]]:
    """RFC 6902 patch between two JSON texts, or None when either is not JSON."""
    try:
        old_doc = json.loads(old)
        new_doc = json.loads(new)
    except ValueError:
        return None
    operations = jsonpatch.make_patch(old_doc, new_doc).patch
    return json.dumps(operations, indent=2), DiffStats(changes=len(operations))


# Patching

def apply_unified_patch(original: str, patch_text: str) -> str:
    """
    Apply a unified diff to ``original``.

    Every context and removed line must match exactly; any mismatch raises
    ``PatchApplyError`` and nothing is applied.
    """
    hunks = parse_unified(patch_text)
    if not hunks:
        if patch_text.strip():
            raise PatchApplyError("Patch contains no hunks")
        return original

    source = split_lines(original)
    output: List[str] = []
    pos = 0
    for number, hunk in enumerate(hunks):
        start = hunk.old_start if hunk.old_count == 0 else hunk.old_start - 1
        if start < pos or start > len(source):
            raise PatchApplyError(
                f"Hunk {number} starts at line {hunk.old_start}, outside the base text",
                hunk=number,
            )
        output.extend(source[pos:start])
        cursor = start
        for line in hunk.lines:
            tag, text = line[0], line[1:]
            if tag == "+":
                output.append(text)
                continue
            if cursor >= len(source) or source[cursor] != text:
                found = source[cursor] if cursor < len(source) else "<end of text>"
                raise PatchApplyError(
                    f"Hunk {number} does not match at line {cursor + 1}: expected {text!r}, found {found!r}",
                    hunk=number,
                )
            if tag == " ":
                output.append(text)
            cursor += 1
        pos = cursor
    output.extend(source[pos:])
    return "\n".join(output)


def apply_json_patch(original: str, patch_text: str) -> str:
    """Apply an RFC 6902 patch and re-serialize with two-space indentation."""
    try:
        document = json.loads(original)
        operations = json.loads(patch_text)
    except ValueError as exc:
        raise PatchApplyError(f"Failed to apply JSON patch: {exc}") from exc
    try:
        patched = jsonpatch.apply_patch(document, operations)
    except (jsonpatch.JsonPatchException, jsonpatch.JsonPointerException) as exc:
        raise PatchApplyError(f"Failed to apply JSON patch: {exc}") from exc
    return json.dumps(patched, indent=2)


# Structured edits

def coerce_edits(edits: Iterable[Union[EditOperation, Mapping[str, Any]]]) -> List[EditOperation]:
    result: List[EditOperation] = []
    for index, edit in enumerate(edits):
        if isinstance(edit, EditOperation):
            result.append(edit)
            continue
        try:
            result.append(EditOperation.model_validate(dict(edit)))
        except PydanticValidationError as exc:
            raise EditError(f"Edit {index} is invalid: {exc}", metadata={"index": index}) from exc
    return result


def _replace_nth(text: str, find: str, replace: str, occurrence: int) -> Optional[str]:
    # Occurrences do not overlap: "aa" occurs twice in "aaaa", at 0 and 2.
    step = len(find) or 1
    index = -step
    for _ in range(occurrence):
        index = text.find(find, index + step)
        if index < 0:
            return None
    return text[:index] + replace + text[index + len(find):]


def apply_edits(text: str, edits: Sequence[Union[EditOperation, Mapping[str, Any]]]) -> EditOutcome:
    """
    Apply edits in order.

    A ``find_replace`` whose occurrence does not exist leaves the text
    unchanged and is counted as skipped. ``line_range`` follows slice
    semantics, so a range past the end appends.
    """
    outcome = EditOutcome(text=text)
    for edit in coerce_edits(edits):
        if edit.type == "find_replace":
            replaced = _replace_nth(outcome.text, edit.find or "", edit.replace or "", edit.occurrence)
            if replaced is None:
                outcome.skipped += 1
                continue
            outcome.text = replaced
        elif edit.type == "line_range":
            lines = split_lines(outcome.text)
            lines[edit.start_line - 1:edit.end_line] = [edit.content or ""]
            outcome.text = "\n".join(lines)
        elif edit.type == "append":
            outcome.text = outcome.text + (edit.content or "")
        elif edit.type == "prepend":
            outcome.text = (edit.content or "") + outcome.text
        outcome.applied += 1
    return outcome


# Merging

def merge_lines(source: str, target: str, strategy: str = "auto") -> MergeOutcome:
    """
    Merge two texts without a common ancestor.

    ``ours`` keeps source, ``theirs`` keeps target. ``auto`` compares line
    by line: equal lines are kept, a line that is empty or missing on one
    side takes the other side, and differing lines become a conflict block.
    """
    if strategy == "ours":
        return MergeOutcome(text=source)
    if strategy == "theirs":
        return MergeOutcome(text=target)
    if strategy != "auto":
        raise ValueError(f"Unknown merge strategy: {strategy}")

    source_lines = split_lines(source)
    target_lines = split_lines(target)
    merged: List[str] = []
    conflicts: List[str] = []
    for i in range(max(len(source_lines), len(target_lines))):
        s = source_lines[i] if i < len(source_lines) else ""
        t = target_lines[i] if i < len(target_lines) else ""
        if s == t:
            merged.append(s)
        elif not s:
            merged.append(t)
        elif not t:
            merged.append(s)
        else:
            conflicts.append(f'Line {i + 1}: "{s}" vs "{t}"')
            merged.append(f"{CONFLICT_START}\n{s}\n{CONFLICT_SEPARATOR}\n{t}\n{CONFLICT_END}")
    return MergeOutcome(text="\n".join(merged), conflicts=conflicts)
