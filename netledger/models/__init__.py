"""
netledger Models

Typed domain objects and pydantic input models.
"""

from netledger.models.domain import (
    # Status Constants
    TaskStatus,
    NetworkStage,
    TaskPriority,
    DependencyType,
    Role,
    ResultMode,
    DirectiveStatus,
    DirectiveType,
    # Core Models
    Caller,
    StageInfo,
    ResultMarker,
    NetworkTask,
    TaskDependency,
    NetworkSummary,
    ContentBlob,
    BlobMetadata,
    ContentChunk,
    Artifact,
    ArtifactRevision,
    NetworkDirective,
)

from netledger.models.inputs import (
    OutputRequirements,
    PolicyInfo,
    SubtaskSpec,
    EditOperation,
)

__all__ = [
    "TaskStatus",
    "NetworkStage",
    "TaskPriority",
    "DependencyType",
    "Role",
    "ResultMode",
    "DirectiveStatus",
    "DirectiveType",
    "Caller",
    "StageInfo",
    "ResultMarker",
    "NetworkTask",
    "TaskDependency",
    "NetworkSummary",
    "ContentBlob",
    "BlobMetadata",
    "ContentChunk",
    "Artifact",
    "ArtifactRevision",
    "NetworkDirective",
    "OutputRequirements",
    "PolicyInfo",
    "SubtaskSpec",
    "EditOperation",
]
