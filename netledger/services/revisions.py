"""
netledger Revision Service

Diff, patch, edit and merge operations over artifact revisions. The text
algorithms live in ``netledger.textdiff``; this service resolves revisions,
stores results in the content store and commits new revisions.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from netledger.errors import PatchApplyError, ValidationError
from netledger.models.domain import ArtifactRevision
from netledger.models.inputs import EditOperation
from netledger.services.artifacts import ArtifactService
from netledger.services.base import Service, ServiceContext
from netledger import textdiff

DIFF_FORMATS = ("unified", "json_patch", "structured")
PATCH_FORMATS = ("unified", "json_patch", "edits")
MERGE_STRATEGIES = ("ours", "theirs", "auto")


@dataclass
class DiffResult:
    """A diff between two revisions. ``format`` is the format actually produced."""
    format: str
    diff: str
    stats: textdiff.DiffStats

    def to_dict(self) -> Dict[str, Any]:
        return {"format": self.format, "diff": self.diff, "stats": self.stats.to_dict()}


@dataclass
class EditResult:
    revision: ArtifactRevision
    applied: int
    skipped: int


@dataclass
class MergeResult:
    revision: ArtifactRevision
    conflicts: List[str] = field(default_factory=list)

    @property
    def resolved(self) -> bool:
        return not self.conflicts


class RevisionService(Service):
    """
    Service for revision-to-revision operations.

    Example:
        revisions = RevisionService(context, artifacts)
        result = revisions.diff(rev_a, rev_b, "unified")
        merged = revisions.merge(artifact_id, rev_a, rev_b, "auto", author="planner-1")
    """

    def __init__(self, context: ServiceContext, artifacts: ArtifactService) -> None:
        super().__init__(context)
        self.artifacts = artifacts

    def _text_of(self, revision: ArtifactRevision) -> str:
        return self.artifacts.content_store.require_text(revision.content_hash)

    def _text_diff(self, old: str, new: str, fmt: str, from_label: str, to_label: str) -> DiffResult:
        context = self.config.diff_context_lines
        if fmt == "json_patch":
            patch = textdiff.json_patch_diff(old, new)
            if patch is not None:
                text, stats = patch
                return DiffResult("json_patch", text, stats)
            fmt = "unified"
        if fmt == "structured":
            document, stats = textdiff.structured_diff(old, new, context=context)
            return DiffResult("structured", json.dumps(document, indent=2), stats)
        text = textdiff.unified_diff(old, new, from_label=from_label, to_label=to_label, context=context)
        return DiffResult("unified", text, textdiff.unified_stats(text))

    def diff(self, from_revision: str, to_revision: str, fmt: str = "unified") -> DiffResult:
        """
        Diff two revisions.

        ``json_patch`` falls back to ``unified`` when either side is not JSON.
        """
        if fmt not in DIFF_FORMATS:
            raise ValidationError(f"Unsupported diff format: {fmt}")
        old_rev = self.artifacts.get_revision(from_revision)
        new_rev = self.artifacts.get_revision(to_revision)
        return self._text_diff(self._text_of(old_rev), self._text_of(new_rev), fmt, from_revision, to_revision)

    def diff_with_text(self, revision_id: str, text: str, fmt: str = "unified") -> DiffResult:
        """Diff a revision against uncommitted text."""
        if fmt not in DIFF_FORMATS:
            raise ValidationError(f"Unsupported diff format: {fmt}")
        revision = self.artifacts.get_revision(revision_id)
        return self._text_diff(self._text_of(revision), text, fmt, revision_id, "working")

    def patch(
        self,
        artifact_id: str,
        base_revision: str,
        patch: Union[str, Sequence[Union[EditOperation, Mapping[str, Any]]]],
        fmt: str = "unified",
        *,
        message: Optional[str] = None,
        author: Optional[str] = None,
    ) -> ArtifactRevision:
        """
        Apply a patch to ``base_revision`` and commit with it as sole parent.

        Fails with ``PatchApplyError`` before anything is stored when the
        patch does not apply.
        """
        if fmt not in PATCH_FORMATS:
            raise ValidationError(f"Unsupported patch format: {fmt}")
        base = self.artifacts.get_revision(base_revision)
        if base.artifact_id != artifact_id:
            raise ValidationError(
                f"Revision {base_revision} does not belong to artifact {artifact_id}",
                metadata={"artifact_id": artifact_id, "revision_id": base_revision},
            )
        base_text = self._text_of(base)
        if fmt == "edits":
            try:
                edits = json.loads(patch) if isinstance(patch, str) else list(patch)
            except ValueError as exc:
                raise PatchApplyError(f"Edits patch is not valid JSON: {exc}") from exc
            if not isinstance(edits, list):
                raise PatchApplyError("Edits patch must be a list of edit operations")
            patched = textdiff.apply_edits(base_text, edits).text
        elif not isinstance(patch, str):
            raise ValidationError(f"{fmt} patches must be text")
        elif fmt == "json_patch":
            patched = textdiff.apply_json_patch(base_text, patch)
        else:
            patched = textdiff.apply_unified_patch(base_text, patch)

        revision = self.artifacts.commit_text(
            artifact_id,
            patched,
            message or f"Applied patch to {base_revision}",
            author or self.config.system_author,
            parent_revisions=[base_revision],
        )
        self.logger.info(
            "artifact_patched",
            extra=self.log_extra(artifact_id=artifact_id, revision_id=revision.revision_id, format=fmt),
        )
        return revision

    def apply_edits(
        self,
        artifact_id: str,
        edits: Sequence[Union[EditOperation, Mapping[str, Any]]],
        *,
        message: Optional[str] = None,
        author: Optional[str] = None,
    ) -> EditResult:
        """Apply an ordered batch of edits to the current content and commit once."""
        if not edits:
            raise ValidationError("At least one edit is required")
        artifact = self.artifacts.get(artifact_id)
        current = self.artifacts.read_revision_text(artifact.current_revision)
        outcome = textdiff.apply_edits(current, edits)
        revision = self.artifacts.commit_text(
            artifact_id,
            outcome.text,
            message or f"Applied {len(edits)} edits",
            author or self.config.system_author,
        )
        self.logger.info(
            "artifact_edited",
            extra=self.log_extra(
                artifact_id=artifact_id,
                revision_id=revision.revision_id,
                applied=outcome.applied,
                skipped=outcome.skipped,
            ),
        )
        return EditResult(revision=revision, applied=outcome.applied, skipped=outcome.skipped)

    def merge(
        self,
        artifact_id: str,
        source_revision: str,
        target_revision: str,
        strategy: str = "auto",
        *,
        message: Optional[str] = None,
        author: Optional[str] = None,
    ) -> MergeResult:
        """
        Merge two revisions and commit with both as parents.

        Conflicts from the ``auto`` strategy are committed inline with
        markers and listed in the result.
        """
        if strategy not in MERGE_STRATEGIES:
            raise ValidationError(f"Unsupported merge strategy: {strategy}")
        source = self.artifacts.get_revision(source_revision)
        target = self.artifacts.get_revision(target_revision)
        for revision in (source, target):
            if revision.artifact_id != artifact_id:
                raise ValidationError(
                    f"Revision {revision.revision_id} does not belong to artifact {artifact_id}",
                    metadata={"artifact_id": artifact_id, "revision_id": revision.revision_id},
                )
        outcome = textdiff.merge_lines(self._text_of(source), self._text_of(target), strategy)
        revision = self.artifacts.commit_text(
            artifact_id,
            outcome.text,
            message or f"Merged {source_revision} into {target_revision}",
            author or self.config.system_author,
            parent_revisions=[source_revision, target_revision],
        )
        if outcome.conflicts:
            self.logger.warning(
                "merge_conflicts",
                extra=self.log_extra(
                    artifact_id=artifact_id,
                    revision_id=revision.revision_id,
                    conflicts=len(outcome.conflicts),
                ),
            )
        return MergeResult(revision=revision, conflicts=outcome.conflicts)
