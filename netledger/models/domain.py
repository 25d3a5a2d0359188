"""
netledger Domain Models

Data classes representing the core entities of a task network and the
content store. These are used for data transfer between storage and services.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from netledger.models.inputs import PolicyInfo


# Status Constants

class TaskStatus:
    """Network task status values."""
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    PAUSED = "paused"

    ALL = (QUEUED, RUNNING, COMPLETED, FAILED, PAUSED)


class NetworkStage:
    """Network lifecycle stages, in progression order."""
    INITIALIZED = "initialized"
    POLICY_SET = "policy_set"
    PLANNING = "planning"
    EXECUTING = "executing"
    FINALIZING = "finalizing"
    COMPLETED = "completed"

    ORDER = (INITIALIZED, POLICY_SET, PLANNING, EXECUTING, FINALIZING, COMPLETED)


class TaskPriority:
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    ALL = (LOW, MEDIUM, HIGH)


class DependencyType:
    """Task dependency kinds. Only REQUIRES_COMPLETION gates execution."""
    REQUIRES_COMPLETION = "requires_completion"
    USES_ARTIFACT = "uses_artifact"
    PARALLEL = "parallel"

    ALL = (REQUIRES_COMPLETION, USES_ARTIFACT, PARALLEL)


class Role:
    """Caller roles that collaborate on a network."""
    POLICY_SETTER = "policy_setter"
    PLANNER = "planner"
    EXECUTOR = "executor"

    ALL = (POLICY_SETTER, PLANNER, EXECUTOR)


class ResultMode:
    PARTIAL = "partial"
    FINAL = "final"


class DirectiveStatus:
    PENDING = "pending"
    ACKNOWLEDGED = "acknowledged"
    APPLIED = "applied"
    REJECTED = "rejected"


class DirectiveType:
    POLICY_UPDATE = "policy_update"
    TASK_ADDITION = "task_addition"
    PRIORITY_CHANGE = "priority_change"
    ABORT = "abort"
    OTHER = "other"

    ALL = (POLICY_UPDATE, TASK_ADDITION, PRIORITY_CHANGE, ABORT, OTHER)


# Callers

@dataclass(frozen=True)
class Caller:
    """
    Identity of whoever invokes a mutating operation.

    ``network_id`` binds the caller to one network; operations addressed to
    another network are rejected.
    """
    role: str
    agent_id: str
    network_id: Optional[str] = None


# Task records

@dataclass
class StageInfo:
    """Lifecycle position of a network, carried by its main task."""
    stage: str = NetworkStage.INITIALIZED
    replan_from_step: Optional[int] = None
    updated_at: Optional[str] = None


@dataclass
class ResultMarker:
    """Tracks whether a sub-task's stored result is a draft awaiting continuation."""
    partial: bool = False
    last_author: Optional[str] = None
    last_updated_at: Optional[str] = None


@dataclass
class NetworkTask:
    """
    A task inside a network.

    The main task (``step_number is None``, ``task_id == network_id``) carries
    the stage and policy; sub-tasks carry ordered work and its results.
    """
    task_id: str
    network_id: str
    status: str
    task_type: str
    description: str
    created_at: str
    updated_at: str
    parent_job_id: Optional[str] = None
    network_type: Optional[str] = None
    parameters: Dict[str, Any] = field(default_factory=dict)
    result: Optional[Any] = None
    progress: int = 0
    step_number: Optional[int] = None
    depends_on: List[str] = field(default_factory=list)
    priority: str = TaskPriority.MEDIUM
    created_by: Optional[str] = None
    assigned_to: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    completed_at: Optional[str] = None
    execution_time_ms: Optional[int] = None
    stage: Optional[StageInfo] = None
    policy: Optional[PolicyInfo] = None
    result_marker: ResultMarker = field(default_factory=ResultMarker)

    @property
    def is_main(self) -> bool:
        return self.step_number is None

    @property
    def is_partial(self) -> bool:
        return self.result_marker.partial


@dataclass
class TaskDependency:
    dependency_id: str
    task_id: str
    depends_on_task_id: str
    dependency_type: str
    created_at: str


@dataclass
class NetworkSummary:
    """Per-status counts for a network's sub-tasks."""
    network_id: str
    stage: Optional[str]
    total: int = 0
    queued: int = 0
    running: int = 0
    completed: int = 0
    failed: int = 0
    paused: int = 0
    average_progress: float = 0.0


# Content store

@dataclass
class ContentBlob:
    """An immutable blob keyed by the SHA-256 of its bytes."""
    content_hash: str
    content_type: str
    data: bytes
    size: int
    created_at: str


@dataclass
class BlobMetadata:
    size: int
    content_type: str
    created_at: str


@dataclass
class ContentChunk:
    chunk_id: str
    content_hash: str
    chunk_index: int
    data: bytes
    offset: int
    size: int
    created_at: str


# Artifacts

@dataclass
class Artifact:
    """A versioned document whose content lives in the content store."""
    artifact_id: str
    job_id: str
    mime_type: str
    current_revision: str
    created_at: str
    updated_at: str
    task_id: Optional[str] = None
    labels: List[str] = field(default_factory=list)


@dataclass
class ArtifactRevision:
    """
    An immutable snapshot of an artifact.

    ``parent_revisions`` is empty for the initial revision, holds one id for
    an ordinary commit and two or more for a merge commit.
    """
    revision_id: str
    artifact_id: str
    revision_number: int
    content_hash: str
    commit_message: str
    author: str
    created_at: str
    parent_revisions: List[str] = field(default_factory=list)

    @property
    def is_merge(self) -> bool:
        return len(self.parent_revisions) >= 2


# Directives

@dataclass
class NetworkDirective:
    """An externally raised instruction for the planner of a network."""
    directive_id: str
    network_id: str
    content: str
    directive_type: str
    status: str
    created_at: str
    updated_at: str
    source: Optional[str] = None
    acknowledged_at: Optional[str] = None
    applied_at: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
