# models.py
# Data contracts for the plan resolution engine.
# Schema and validation only.
#
# Python attributes are snake_case; every model reads and writes camelCase
# on the wire so model output and serialized plans keep one shape.

from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

PLAN_VERSION = "4.0.0"
ORCHESTRATOR_TAG = "llm-orchestrator"

PRD_SECTIONS: tuple[str, ...] = (
    "targetUsers",
    "solution",
    "keyFeatures",
    "successMetrics",
    "constraints",
)

ToolKind = Literal["skill", "subagent"]
PlanNodeStatus = Literal["pending", "ready", "running", "complete", "blocked", "failed"]


class Contract(BaseModel):
    """Shared config: camelCase aliases, construction by field name allowed."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# Tool catalog
# ---------------------------------------------------------------------------


class ToolMetadata(Contract):
    """Typed descriptor extras. Skills fill the pack fields, subagents the package fields."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    pack_id: str | None = None
    section: str | None = None
    category: str | None = None
    version: str | None = None
    package: str | None = None
    entry: str | None = None
    tags: tuple[str, ...] = ()


class ToolDescriptor(Contract):
    """An immutable capability record offered to the planner."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str = Field(..., min_length=1, description="Unique tool id, e.g. 'persona.builder'.")
    kind: ToolKind
    label: str
    description: str
    input_artifacts: tuple[str, ...] = Field(
        default=(), description="Artifact kinds consumed. Empty means it can start from the request text."
    )
    output_artifact: str
    capabilities: tuple[str, ...] = ()
    metadata: ToolMetadata | None = None


# ---------------------------------------------------------------------------
# Untrusted model output
# ---------------------------------------------------------------------------


class RawStep(Contract):
    """A single model-authored step. Never trusted until validated."""

    id: str
    tool_id: str
    tool_type: ToolKind
    label: str
    rationale: str
    depends_on: list[str] = Field(default_factory=list)
    output_artifact: str | None = None


class RawPlanOutput(Contract):
    """The envelope the model is asked to return."""

    target_artifact: str
    overall_rationale: str
    confidence: float = Field(..., description="Model self-reported confidence, 0-1.")
    warnings: list[str] | None = None
    clarifications: list[str] | None = None
    steps: list[RawStep]


class ValidationResult(Contract):
    valid: bool
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Executable plan
# ---------------------------------------------------------------------------


class SubagentTask(Contract):
    kind: Literal["subagent"] = "subagent"
    agent_id: str


class ClarificationCheckTask(Contract):
    kind: Literal["clarification-check"] = "clarification-check"


class AnalyzeContextTask(Contract):
    kind: Literal["analyze-context"] = "analyze-context"


class AssemblePrdTask(Contract):
    kind: Literal["assemble-prd"] = "assemble-prd"


class WriteSectionTask(Contract):
    kind: Literal["write-section"] = "write-section"
    section: str


class SkillTask(Contract):
    """Any skill without a dedicated task shape."""

    kind: Literal["skill"] = "skill"
    skill_id: str
    operation: str = Field(..., description="Namespace segment of the tool id, 'unknown' if absent.")


PlanTask = Annotated[
    Union[
        SubagentTask,
        ClarificationCheckTask,
        AnalyzeContextTask,
        AssemblePrdTask,
        WriteSectionTask,
        SkillTask,
    ],
    Field(discriminator="kind"),
]


class NodeMetadata(Contract):
    kind: ToolKind
    tool_id: str
    rationale: str
    artifact_kind: str | None = None
    section: str | None = None


class PlanNode(Contract):
    """One trusted step. `status` belongs to the executor once handed off."""

    id: str
    label: str
    task: PlanTask
    status: PlanNodeStatus = "pending"
    depends_on: list[str] = Field(default_factory=list)
    metadata: NodeMetadata


class PlanMetadata(Contract):
    orchestrator: str = ORCHESTRATOR_TAG
    confidence: float = Field(default=0.5, description="Model self-reported confidence, 0-1.")
    overall_rationale: str
    warnings: list[str] | None = None
    clarifications: list[str] | None = None


class PlanGraph(Contract):
    """A validated, acyclic plan ready for an external graph executor."""

    id: str
    artifact_kind: str
    entry_id: str | None = Field(
        default=None, description="Traversal root. None only for an empty plan carrying clarifications."
    )
    created_at: datetime
    version: str = PLAN_VERSION
    nodes: dict[str, PlanNode] = Field(default_factory=dict)
    metadata: PlanMetadata


class PlanStepProposal(Contract):
    """UI-facing mirror of a plan node. Derived, never authoritative."""

    id: str
    tool_id: str
    tool_type: ToolKind
    label: str
    rationale: str
    depends_on: list[str] = Field(default_factory=list)
    output_artifact: str | None = None


class OrchestratorPlanProposal(Contract):
    plan: PlanGraph
    steps: list[PlanStepProposal]
    overall_rationale: str
    confidence: float
    target_artifact: str
    warnings: list[str] | None = None
    suggested_clarifications: list[str] | None = None


# ---------------------------------------------------------------------------
# Orchestration inputs
# ---------------------------------------------------------------------------


class Artifact(Contract):
    id: str
    kind: str
    version: str | None = None
    label: str | None = None


class ConversationTurn(Contract):
    role: str
    content: str


class OrchestratorInput(Contract):
    """A planning request: the message plus whatever context the caller holds."""

    message: str
    existing_artifacts: dict[str, list[Artifact]] = Field(default_factory=dict)
    conversation_history: list[ConversationTurn] = Field(default_factory=list)
    context_payload: dict[str, Any] | None = None
    target_artifact: str | None = None


class OrchestratorRefineInput(Contract):
    current_plan: PlanGraph
    current_steps: list[PlanStepProposal]
    feedback: str
    original_input: OrchestratorInput


class RunRequest(Contract):
    artifact_kind: str | None = None
    input: Any = None
    created_by: str | None = None
    attributes: dict[str, Any] = Field(default_factory=dict)


class RunContext(Contract):
    run_id: str
    request: RunRequest = Field(default_factory=RunRequest)
