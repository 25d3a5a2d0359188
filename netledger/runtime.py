"""
netledger Runtime

Builds the database and wires every service around a shared ServiceContext.
"""

from dataclasses import dataclass
from typing import Optional

from netledger.config import Config, load_config
from netledger.db.database import Database, get_database
from netledger.services.artifacts import ArtifactService
from netledger.services.base import ServiceContext
from netledger.services.content_store import ContentStoreService
from netledger.services.directives import DirectiveService
from netledger.services.governor import Governor
from netledger.services.network import NetworkService
from netledger.services.revisions import RevisionService
from netledger.services.subtask_artifacts import SubtaskArtifactService
from netledger.services.tasks import TaskStoreService


@dataclass
class Runtime:
    """All services over one database."""
    context: ServiceContext
    db: Database
    tasks: TaskStoreService
    governor: Governor
    network: NetworkService
    directives: DirectiveService
    content: ContentStoreService
    artifacts: ArtifactService
    revisions: RevisionService
    subtask_artifacts: SubtaskArtifactService

    @classmethod
    def open(
        cls,
        config: Optional[Config] = None,
        *,
        init_schema: bool = True,
        request_id: Optional[str] = None,
    ) -> "Runtime":
        config = config or load_config()
        db = get_database(db_url=config.db_url, db_path=config.db_path, pool_size=config.db_pool_size)
        if init_schema:
            db.init_schema()
        return cls.from_database(db, ServiceContext(config=config, request_id=request_id))

    @classmethod
    def from_database(cls, db: Database, context: ServiceContext) -> "Runtime":
        tasks = TaskStoreService(context, db)
        governor = Governor(context, tasks)
        network = NetworkService(context, tasks, governor)
        content = ContentStoreService(context, db)
        artifacts = ArtifactService(context, db, content)
        revisions = RevisionService(context, artifacts)
        return cls(
            context=context,
            db=db,
            tasks=tasks,
            governor=governor,
            network=network,
            directives=DirectiveService(context, db),
            content=content,
            artifacts=artifacts,
            revisions=revisions,
            subtask_artifacts=SubtaskArtifactService(context, artifacts, revisions, network),
        )

    def close(self) -> None:
        close = getattr(self.db, "close", None)
        if close is not None:
            close()
