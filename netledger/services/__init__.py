"""
netledger Services

Service layer for networks, tasks, content and artifacts.
"""

from importlib import import_module
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from netledger.services.base import Service, ServiceContext
    from netledger.services.results import ErrorCode, OperationResult
    from netledger.services.tasks import TaskStoreService
    from netledger.services.governor import Governor
    from netledger.services.content_store import ContentStoreService
    from netledger.services.artifacts import ArtifactService, ArtifactContent, ArtifactStat
    from netledger.services.revisions import RevisionService, DiffResult, EditResult, MergeResult
    from netledger.services.network import NetworkService
    from netledger.services.directives import DirectiveService
    from netledger.services.subtask_artifacts import SubtaskArtifactService

__all__ = [
    # Base
    "Service",
    "ServiceContext",
    # Results
    "ErrorCode",
    "OperationResult",
    # Tasks
    "TaskStoreService",
    "Governor",
    "NetworkService",
    "DirectiveService",
    # Content
    "ContentStoreService",
    "ArtifactService",
    "ArtifactContent",
    "ArtifactStat",
    "RevisionService",
    "DiffResult",
    "EditResult",
    "MergeResult",
    "SubtaskArtifactService",
]

_EXPORTS = {
    "Service": "netledger.services.base",
    "ServiceContext": "netledger.services.base",
    "ErrorCode": "netledger.services.results",
    "OperationResult": "netledger.services.results",
    "TaskStoreService": "netledger.services.tasks",
    "Governor": "netledger.services.governor",
    "NetworkService": "netledger.services.network",
    "DirectiveService": "netledger.services.directives",
    "ContentStoreService": "netledger.services.content_store",
    "ArtifactService": "netledger.services.artifacts",
    "ArtifactContent": "netledger.services.artifacts",
    "ArtifactStat": "netledger.services.artifacts",
    "RevisionService": "netledger.services.revisions",
    "DiffResult": "netledger.services.revisions",
    "EditResult": "netledger.services.revisions",
    "MergeResult": "netledger.services.revisions",
    "SubtaskArtifactService": "netledger.services.subtask_artifacts",
}


def __getattr__(name: str):
    module_path = _EXPORTS.get(name)
    if not module_path:
        raise AttributeError(f"module {__name__} has no attribute {name}")
    module = import_module(module_path)
    return getattr(module, name)


def __dir__() -> list[str]:
    return sorted(__all__)
