"""
netledger Artifact Service

Versioned documents on top of the content store. Every artifact owns an
append-only list of revisions; ``current_revision`` points at the newest
committed snapshot.
"""

import base64
import uuid
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from netledger.db.database import DatabaseProtocol
from netledger.errors import ContentNotFoundError, EntityNotFoundError, ValidationError
from netledger.models.domain import Artifact, ArtifactRevision
from netledger.services.base import Service, ServiceContext
from netledger.services.content_store import EMPTY_CONTENT_TYPE, ContentStoreService

INITIAL_REVISION_MESSAGE = "Initial revision"


@dataclass
class ArtifactContent:
    """Content of one artifact revision as returned by ``read``."""
    artifact_id: str
    revision_id: str
    content_hash: str
    mime_type: str
    content: str
    encoding: str = "text"
    total_lines: Optional[int] = None


@dataclass
class ArtifactStat:
    artifact_id: str
    current_revision: str
    content_hash: str
    mime_type: str
    size: int
    revision_count: int
    reference: str
    created_at: str
    updated_at: str


class ArtifactService(Service):
    """
    Service for creating artifacts and committing revisions.

    Example:
        artifacts = ArtifactService(context, db, content_store)
        artifact = artifacts.create("job-1", "text/markdown", task_id="task-1")
        digest = content_store.store("# Draft", artifact.mime_type)
        revision = artifacts.commit(artifact.artifact_id, digest, "First draft", "executor-1")
    """

    def __init__(self, context: ServiceContext, db: DatabaseProtocol, content_store: ContentStoreService) -> None:
        super().__init__(context)
        self.db = db
        self.content_store = content_store

    # Creation and commits

    def create(
        self,
        job_id: str,
        mime_type: Optional[str] = None,
        *,
        task_id: Optional[str] = None,
        labels: Optional[Sequence[str]] = None,
    ) -> Artifact:
        """
        Create an artifact with an empty initial revision.

        The artifact row, the empty blob and the initial revision are written
        in a single transaction.
        """
        if not job_id:
            raise ValidationError("job_id is required")
        artifact_id = str(uuid.uuid4())
        revision_id = str(uuid.uuid4())
        artifact = self.db.create_artifact(
            artifact_id=artifact_id,
            job_id=job_id,
            mime_type=mime_type or self.config.default_mime_type,
            task_id=task_id,
            labels=list(labels or []),
            revision_id=revision_id,
            empty_hash=self.content_store.empty_hash(),
            empty_content_type=EMPTY_CONTENT_TYPE,
            message=INITIAL_REVISION_MESSAGE,
            author=self.config.system_author,
        )
        self.logger.info(
            "artifact_created",
            extra=self.log_extra(artifact_id=artifact_id, revision_id=revision_id, job_id=job_id, task_id=task_id),
        )
        return artifact

    def commit(
        self,
        artifact_id: str,
        content_hash: str,
        message: str,
        author: str,
        parent_revisions: Optional[Sequence[str]] = None,
    ) -> ArtifactRevision:
        """
        Append a revision pointing at ``content_hash``.

        ``parent_revisions`` defaults to the current revision. Parents must
        belong to this artifact and the blob must already be stored.
        """
        artifact = self.get(artifact_id)
        if not self.content_store.exists(content_hash):
            raise ContentNotFoundError(
                f"Content {content_hash} not found",
                metadata={"content_hash": content_hash, "artifact_id": artifact_id},
            )
        parents = list(parent_revisions) if parent_revisions is not None else [artifact.current_revision]
        for parent_id in parents:
            parent = self.get_revision(parent_id)
            if parent.artifact_id != artifact_id:
                raise ValidationError(
                    f"Revision {parent_id} belongs to artifact {parent.artifact_id}, not {artifact_id}",
                    metadata={"artifact_id": artifact_id, "revision_id": parent_id},
                )
        revision = self.db.commit_revision(
            artifact_id=artifact_id,
            revision_id=str(uuid.uuid4()),
            content_hash=content_hash,
            parent_revisions=parents,
            message=message or "Update",
            author=author or self.config.system_author,
        )
        self.logger.info(
            "revision_committed",
            extra=self.log_extra(
                artifact_id=artifact_id,
                revision_id=revision.revision_id,
                content_hash=content_hash,
                parents=len(parents),
                author=revision.author,
            ),
        )
        return revision

    def commit_text(
        self,
        artifact_id: str,
        text: str,
        message: str,
        author: str,
        parent_revisions: Optional[Sequence[str]] = None,
    ) -> ArtifactRevision:
        """Store ``text`` in the content store and commit it."""
        artifact = self.get(artifact_id)
        content_hash = self.content_store.store(text, artifact.mime_type)
        return self.commit(artifact_id, content_hash, message, author, parent_revisions)

    def stage_append(self, artifact_id: str, text: str) -> str:
        """
        Store current content plus ``text`` as a new blob without committing.

        Returns the hash of the combined content.
        """
        artifact = self.get(artifact_id)
        current = self.read_revision_text(artifact.current_revision)
        return self.content_store.store(current + text, artifact.mime_type)

    # Lookups

    def get(self, artifact_id: str) -> Artifact:
        return self.db.get_artifact(artifact_id)

    def get_revision(self, revision_id: str) -> ArtifactRevision:
        return self.db.get_revision(revision_id)

    def get_revisions(self, artifact_id: str) -> List[ArtifactRevision]:
        """All revisions of an artifact, newest first."""
        self.get(artifact_id)
        return self.db.list_revisions(artifact_id)

    def find_by_task_id(self, task_id: str) -> List[Artifact]:
        return self.db.list_artifacts_by_task(task_id)

    def find_by_job_id(self, job_id: str) -> List[Artifact]:
        return self.db.list_artifacts_by_job(job_id)

    def ensure_for_task(
        self,
        job_id: str,
        task_id: str,
        mime_type: Optional[str] = None,
        labels: Optional[Sequence[str]] = None,
    ) -> Tuple[Artifact, bool]:
        """Get the task's artifact or create it. Returns ``(artifact, created)``."""
        existing = self.find_by_task_id(task_id)
        if existing:
            return existing[0], False
        return self.create(job_id, mime_type, task_id=task_id, labels=labels), True

    # Reading

    def read_revision_text(self, revision_id: str) -> str:
        revision = self.get_revision(revision_id)
        return self.content_store.require_text(revision.content_hash)

    def read(
        self,
        artifact_id: str,
        revision_id: Optional[str] = None,
        *,
        line_range: Optional[Tuple[int, int]] = None,
        encoding: str = "text",
    ) -> ArtifactContent:
        """
        Read an artifact revision (current by default).

        ``line_range`` selects 1-based inclusive lines of text content.
        ``encoding="base64"`` returns the raw bytes base64-encoded.
        """
        artifact = self.get(artifact_id)
        revision = self.get_revision(revision_id or artifact.current_revision)
        if revision.artifact_id != artifact_id:
            raise EntityNotFoundError(
                f"Revision {revision.revision_id} not found in artifact {artifact_id}",
                metadata={"artifact_id": artifact_id, "revision_id": revision.revision_id},
            )
        data = self.content_store.retrieve(revision.content_hash)
        if data is None:
            raise ContentNotFoundError(
                f"Content {revision.content_hash} not found",
                metadata={"content_hash": revision.content_hash},
            )
        if encoding == "base64":
            return ArtifactContent(
                artifact_id=artifact_id,
                revision_id=revision.revision_id,
                content_hash=revision.content_hash,
                mime_type=artifact.mime_type,
                content=base64.b64encode(data).decode("ascii"),
                encoding="base64",
            )
        if encoding != "text":
            raise ValidationError(f"Unsupported encoding: {encoding}")
        text = data.decode("utf-8")
        lines = text.split("\n")
        if line_range is not None:
            start, end = line_range
            if start < 1 or end < start:
                raise ValidationError(f"Invalid line range: {start}-{end}")
            text = "\n".join(lines[start - 1:end])
        return ArtifactContent(
            artifact_id=artifact_id,
            revision_id=revision.revision_id,
            content_hash=revision.content_hash,
            mime_type=artifact.mime_type,
            content=text,
            total_lines=len(lines),
        )

    def stat(self, artifact_id: str) -> ArtifactStat:
        artifact = self.get(artifact_id)
        revision = self.get_revision(artifact.current_revision)
        meta = self.content_store.get_metadata(revision.content_hash)
        return ArtifactStat(
            artifact_id=artifact_id,
            current_revision=artifact.current_revision,
            content_hash=revision.content_hash,
            mime_type=artifact.mime_type,
            size=meta.size if meta is not None else 0,
            revision_count=len(self.db.list_revisions(artifact_id)),
            reference=self.content_store.reference(revision.content_hash),
            created_at=artifact.created_at,
            updated_at=artifact.updated_at,
        )

    def reference(self, artifact_id: str, revision_id: Optional[str] = None) -> str:
        """``ref:`` locator for the content of a revision (current by default)."""
        artifact = self.get(artifact_id)
        revision = self.get_revision(revision_id or artifact.current_revision)
        return self.content_store.reference(revision.content_hash)
