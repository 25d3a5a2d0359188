"""
netledger Input Models

Pydantic models for caller-supplied structures: network policies, batch
sub-task specifications and structured edit operations.
"""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class OutputRequirements(BaseModel):
    """Shape of the deliverable the network must produce."""
    format: Optional[str] = None
    structure: Optional[str] = None
    specific_requirements: List[str] = Field(default_factory=list)


class PolicyInfo(BaseModel):
    """
    Execution policy recorded on a network's main task.

    ``version`` starts at 1 when the policy is first saved and increases by
    one on every update; timestamps are ISO-8601 strings.
    """
    strategy: str = Field(..., min_length=1)
    priorities: List[str] = Field(default_factory=list)
    success_criteria: List[str] = Field(default_factory=list)
    quality_standards: List[str] = Field(default_factory=list)
    output_requirements: Optional[OutputRequirements] = None
    resources_needed: List[str] = Field(default_factory=list)
    constraints: List[str] = Field(default_factory=list)
    additional_notes: Optional[str] = None
    version: int = Field(default=0, ge=0)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class SubtaskSpec(BaseModel):
    """One entry of a batch sub-task creation request."""
    task_type: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    parameters: Dict[str, Any] = Field(default_factory=dict)
    step_number: Optional[int] = None
    depends_on: List[str] = Field(default_factory=list)
    priority: Literal["low", "medium", "high"] = "medium"
    task_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


EditType = Literal["find_replace", "line_range", "append", "prepend"]


class EditOperation(BaseModel):
    """
    A structured edit applied to artifact text.

    - find_replace: replace the ``occurrence``-th literal match of ``find``
    - line_range: replace lines ``start_line``..``end_line`` (1-based, inclusive)
    - append / prepend: add ``content`` at the end / start
    """
    model_config = ConfigDict(extra="forbid")

    type: EditType
    find: Optional[str] = None
    replace: Optional[str] = None
    occurrence: int = Field(default=1, ge=1)
    start_line: Optional[int] = Field(default=None, ge=1)
    end_line: Optional[int] = Field(default=None, ge=1)
    content: Optional[str] = None

    @model_validator(mode="after")
    def _check_fields(self) -> "EditOperation":
        if self.type == "find_replace":
            if not self.find:
                raise ValueError("find_replace requires a non-empty 'find'")
            if self.replace is None:
                raise ValueError("find_replace requires 'replace'")
        elif self.type == "line_range":
            if self.start_line is None or self.end_line is None:
                raise ValueError("line_range requires 'start_line' and 'end_line'")
            if self.end_line < self.start_line:
                raise ValueError("line_range 'end_line' must be >= 'start_line'")
            if self.content is None:
                raise ValueError("line_range requires 'content'")
        elif self.content is None:
            raise ValueError(f"{self.type} requires 'content'")
        return self
