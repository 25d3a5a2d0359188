"""
netledger Sub-task Artifact Service

Keeps per-sub-task drafts in the content store so large texts move between
executor and planner as revisions, diffs and edits instead of whole task
results.
"""

from typing import Any, Mapping, Optional, Sequence, Union

from netledger.errors import EntityNotFoundError
from netledger.models.domain import Artifact, ArtifactRevision, Caller, ResultMode
from netledger.models.inputs import EditOperation
from netledger.services.artifacts import ArtifactContent, ArtifactService
from netledger.services.base import Service, ServiceContext
from netledger.services.network import NetworkService
from netledger.services.results import OperationResult
from netledger.services.revisions import DiffResult, EditResult, RevisionService

HTML_MIME_TYPE = "text/html"
MARKDOWN_MIME_TYPE = "text/markdown"


def pick_mime_type(task_type: Optional[str], fallback: Optional[str] = None) -> str:
    """HTML for slide/html work, markdown otherwise."""
    lowered = (task_type or "").lower()
    if "slide" in lowered or "html" in lowered:
        return HTML_MIME_TYPE
    return fallback or MARKDOWN_MIME_TYPE


class SubtaskArtifactService(Service):
    """
    Service bridging sub-tasks and their draft artifacts.

    Example:
        bridge.commit_draft("job-1", task_id, "# Findings\\n...", author="worker-1")
        bridge.apply_edits(task_id, [{"type": "append", "content": "\\nDone."}], author="planner-1")
        bridge.finalize_to_task(executor, "net-1", task_id)
    """

    def __init__(
        self,
        context: ServiceContext,
        artifacts: ArtifactService,
        revisions: RevisionService,
        network: NetworkService,
    ) -> None:
        super().__init__(context)
        self.artifacts = artifacts
        self.revisions = revisions
        self.network = network

    def _artifact_for(self, task_id: str) -> Artifact:
        found = self.artifacts.find_by_task_id(task_id)
        if not found:
            raise EntityNotFoundError(f"No artifact for task {task_id}", metadata={"task_id": task_id})
        return found[0]

    def ensure(
        self,
        job_id: str,
        task_id: str,
        mime_type: Optional[str] = None,
        *,
        task_type: Optional[str] = None,
        labels: Optional[Sequence[str]] = None,
    ) -> Artifact:
        artifact, created = self.artifacts.ensure_for_task(
            job_id,
            task_id,
            mime_type or pick_mime_type(task_type, self.config.default_mime_type),
            labels,
        )
        if created:
            self.logger.info(
                "subtask_artifact_created",
                extra=self.log_extra(task_id=task_id, artifact_id=artifact.artifact_id, mime_type=artifact.mime_type),
            )
        return artifact

    def commit_draft(
        self,
        job_id: str,
        task_id: str,
        text: str,
        *,
        author: Optional[str] = None,
        message: Optional[str] = None,
        task_type: Optional[str] = None,
    ) -> ArtifactRevision:
        """Store ``text`` as the next revision of the task's artifact, creating it if needed."""
        artifact = self.ensure(job_id, task_id, task_type=task_type)
        return self.artifacts.commit_text(
            artifact.artifact_id,
            text,
            message or "Worker draft",
            author or self.config.system_author,
        )

    def read_latest(self, task_id: str) -> ArtifactContent:
        return self.artifacts.read(self._artifact_for(task_id).artifact_id)

    def diff_with_text(self, task_id: str, text: str, fmt: str = "unified") -> DiffResult:
        """Diff the latest draft against proposed text."""
        artifact = self._artifact_for(task_id)
        return self.revisions.diff_with_text(artifact.current_revision, text, fmt)

    def apply_edits(
        self,
        task_id: str,
        edits: Sequence[Union[EditOperation, Mapping[str, Any]]],
        *,
        author: Optional[str] = None,
        message: Optional[str] = None,
    ) -> EditResult:
        artifact = self._artifact_for(task_id)
        return self.revisions.apply_edits(
            artifact.artifact_id,
            edits,
            message=message or f"Planner edits ({len(edits)})",
            author=author,
        )

    def finalize_to_task(self, caller: Caller, network_id: str, task_id: str) -> OperationResult:
        """
        Write the latest draft as the task's final result.

        The result is ``{"text": ..., "artifact_ref": "ref:..."}`` and goes
        through the normal result rules, so a pending partial by another
        author still blocks it.
        """
        latest = self.read_latest(task_id)
        result = {
            "text": latest.content,
            "artifact_ref": self.artifacts.content_store.reference(latest.content_hash),
        }
        outcome = self.network.write_result(caller, network_id, task_id, result, ResultMode.FINAL)
        if outcome.success:
            outcome.data.update(artifact_id=latest.artifact_id, revision_id=latest.revision_id)
            self.logger.info(
                "subtask_artifact_finalized",
                extra=self.log_extra(
                    network_id=network_id,
                    task_id=task_id,
                    artifact_id=latest.artifact_id,
                    revision_id=latest.revision_id,
                ),
            )
        return outcome
