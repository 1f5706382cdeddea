# resolver.py
# Plan resolution: untrusted model text in, validated executable plan out.
#
#   parse_output()  text → RawPlanOutput        (MalformedOutputError)
#   validate()      RawPlanOutput → ValidationResult, never raises
#   translate()     RawPlanOutput → OrchestratorPlanProposal (InvalidPlanError)
#
# Nothing here performs I/O. The catalog snapshot handed to the constructor
# is the only notion of "which tools exist" for one resolution.

import json
import logging
import math
import re
from datetime import datetime, timezone
from typing import Any, Callable, Iterable

from pydantic import ValidationError

from artifact_planner.models import (
    PRD_SECTIONS,
    AnalyzeContextTask,
    AssemblePrdTask,
    ClarificationCheckTask,
    NodeMetadata,
    OrchestratorPlanProposal,
    PlanGraph,
    PlanMetadata,
    PlanNode,
    PlanStepProposal,
    PlanTask,
    RawPlanOutput,
    RawStep,
    SkillTask,
    SubagentTask,
    ToolDescriptor,
    ValidationResult,
    WriteSectionTask,
)

logger = logging.getLogger(__name__)

LOW_CONFIDENCE_THRESHOLD = 0.5
LARGE_PLAN_STEPS = 10
EMPTY_PLAN_ERROR = "Plan has no steps and no clarifications - at least one is required"

REQUIRED_STEP_FIELDS = ("id", "toolId", "toolType", "label", "rationale")
WRITE_SECTION_PREFIX = "prd.write-"

_FENCE_OPEN = re.compile(r"^```(?:json)?\s*")
_FENCE_CLOSE = re.compile(r"\s*```$")


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ResolutionError(Exception):
    """Base for every failure to turn model output into a plan."""


class MalformedOutputError(ResolutionError):
    """Raised when model text is not JSON or lacks required plan fields."""


class InvalidPlanError(ResolutionError):
    """Raised when a structurally unsound plan reaches translation."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = list(errors)
        super().__init__(f"Invalid plan: {'; '.join(self.errors)}")


# ---------------------------------------------------------------------------
# Task mapping
# ---------------------------------------------------------------------------

_DOCUMENT_TASKS: dict[str, Callable[[], PlanTask]] = {
    "prd.check-clarification": ClarificationCheckTask,
    "prd.analyze-context": AnalyzeContextTask,
    "prd.assemble-prd": AssemblePrdTask,
}


def _resolve_section(tool_id: str, tool: ToolDescriptor | None) -> str:
    declared = tool.metadata.section if tool and tool.metadata else None
    if declared in PRD_SECTIONS:
        return declared
    return tool_id[len(WRITE_SECTION_PREFIX):]


def resolve_task(step: RawStep, tool: ToolDescriptor | None = None) -> PlanTask:
    """Map a step onto its executor task shape."""
    if step.tool_type == "subagent":
        return SubagentTask(agent_id=step.tool_id)

    dedicated = _DOCUMENT_TASKS.get(step.tool_id)
    if dedicated is not None:
        return dedicated()

    if step.tool_id.startswith(WRITE_SECTION_PREFIX):
        return WriteSectionTask(section=_resolve_section(step.tool_id, tool))

    parts = step.tool_id.split(".")
    operation = parts[1] if len(parts) > 1 and parts[1] else "unknown"
    return SkillTask(skill_id=step.tool_id, operation=operation)


# ---------------------------------------------------------------------------
# Graph checks
# ---------------------------------------------------------------------------

_ON_STACK = 1
_DONE = 2


def detect_cycles(steps: Iterable[RawStep]) -> list[list[str]]:
    """
    Every cycle found by a depth-first walk over step dependencies.

    Each cycle is returned as a closed path, e.g. ["a", "b", "a"]. The walk
    keeps its own stack, so plan size is not bounded by the recursion limit.
    Dependencies on unknown steps are skipped; they are reported separately.
    """
    graph: dict[str, list[str]] = {}
    for step in steps:
        deps = graph.setdefault(step.id, [])
        deps.extend(dep for dep in step.depends_on if dep not in deps)

    state: dict[str, int] = {}
    cycles: list[list[str]] = []

    for root in graph:
        if root in state:
            continue
        state[root] = _ON_STACK
        path = [root]
        pending = [iter(graph[root])]

        while pending:
            dep = next(pending[-1], None)
            if dep is None:
                state[path.pop()] = _DONE
                pending.pop()
                continue
            if dep not in graph:
                continue
            mark = state.get(dep)
            if mark == _ON_STACK:
                cycles.append(path[path.index(dep):] + [dep])
            elif mark is None:
                state[dep] = _ON_STACK
                path.append(dep)
                pending.append(iter(graph[dep]))

    return cycles


def strip_code_fence(text: str) -> str:
    cleaned = _FENCE_OPEN.sub("", text.strip())
    return _FENCE_CLOSE.sub("", cleaned).strip()


def _string_list(value: Any) -> list[str] | None:
    if not isinstance(value, list):
        return None
    return [item for item in value if isinstance(item, str)]


def _reject_constant(name: str) -> Any:
    raise MalformedOutputError(f"Invalid JSON in LLM output: non-finite number {name}")


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------


class PlanResolver:
    """
    Parses, validates and translates one model response against a fixed
    tool snapshot. `clock` supplies the plan timestamp so tests can pin it.
    """

    def __init__(
        self,
        tools: Iterable[ToolDescriptor],
        run_id: str,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.tools = list(tools)
        self.run_id = run_id
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._tools_by_id = {tool.id: tool for tool in self.tools}

    # -- parse ---------------------------------------------------------------

    def parse_output(self, text: str) -> RawPlanOutput:
        try:
            payload = json.loads(strip_code_fence(text), parse_constant=_reject_constant)
        except json.JSONDecodeError as exc:
            raise MalformedOutputError(f"Invalid JSON in LLM output: {exc}") from exc

        if not isinstance(payload, dict):
            raise MalformedOutputError("Invalid JSON in LLM output: expected a JSON object")

        for field in ("targetArtifact", "overallRationale"):
            if not isinstance(payload.get(field), str) or not payload[field]:
                raise MalformedOutputError(f"Missing required field: {field}")

        confidence = payload.get("confidence")
        if (
            isinstance(confidence, bool)
            or not isinstance(confidence, (int, float))
            or (isinstance(confidence, float) and not math.isfinite(confidence))
        ):
            raise MalformedOutputError("Missing or invalid field: confidence")

        steps = payload.get("steps")
        if not isinstance(steps, list):
            raise MalformedOutputError("Missing or invalid field: steps")

        for index, step in enumerate(steps):
            if not isinstance(step, dict):
                raise MalformedOutputError(f"Step {index} is not an object")
            for field in REQUIRED_STEP_FIELDS:
                if not step.get(field):
                    raise MalformedOutputError(f"Step {index} missing required field: {field}")
            if step["toolType"] not in ("skill", "subagent"):
                raise MalformedOutputError(
                    f"Step {index} has invalid toolType: {step['toolType']!r}"
                )
            if not isinstance(step.get("dependsOn"), list):
                step["dependsOn"] = []

        payload["warnings"] = _string_list(payload.get("warnings"))
        payload["clarifications"] = _string_list(payload.get("clarifications"))

        try:
            return RawPlanOutput.model_validate(payload)
        except ValidationError as exc:
            raise MalformedOutputError(f"LLM output does not match the plan schema: {exc}") from exc

    # -- validate ------------------------------------------------------------

    def validate(self, raw: RawPlanOutput) -> ValidationResult:
        errors: list[str] = []
        warnings: list[str] = []

        if not raw.steps:
            if raw.clarifications:
                return ValidationResult(valid=True)
            errors.append(EMPTY_PLAN_ERROR)

        seen: set[str] = set()
        for step in raw.steps:
            if step.id in seen:
                errors.append(f'Duplicate step ID: "{step.id}"')
            seen.add(step.id)

        for step in raw.steps:
            for dep in step.depends_on:
                if dep not in seen:
                    errors.append(f'Step "{step.id}" depends on unknown step "{dep}"')

        for step in raw.steps:
            if step.tool_id not in self._tools_by_id:
                errors.append(f'Step "{step.id}" references unknown tool "{step.tool_id}"')

        for cycle in detect_cycles(raw.steps):
            errors.append(f"Circular dependency: {' → '.join(cycle)}")

        if raw.confidence < LOW_CONFIDENCE_THRESHOLD:
            warnings.append(
                f"Low confidence plan ({raw.confidence}). Consider clarifying requirements."
            )
        if len(raw.steps) > LARGE_PLAN_STEPS:
            warnings.append(f"Plan has {len(raw.steps)} steps. Consider if all are necessary.")

        return ValidationResult(valid=not errors, errors=errors, warnings=warnings)

    # -- translate -----------------------------------------------------------

    def _entry_id(self, raw: RawPlanOutput) -> str | None:
        if not raw.steps:
            return None
        for step in raw.steps:
            if not step.depends_on:
                return step.id
        # Unreachable after validation: an acyclic graph with no dangling
        # dependencies always has a root.
        raise InvalidPlanError(["Plan has no entry step: every step depends on another step"])

    def _to_node(self, step: RawStep) -> PlanNode:
        tool = self._tools_by_id.get(step.tool_id)
        task = resolve_task(step, tool)
        return PlanNode(
            id=step.id,
            label=step.label,
            task=task,
            depends_on=list(step.depends_on),
            metadata=NodeMetadata(
                kind=step.tool_type,
                tool_id=step.tool_id,
                rationale=step.rationale,
                artifact_kind=step.output_artifact or (tool.output_artifact if tool else None),
                section=task.section if isinstance(task, WriteSectionTask) else None,
            ),
        )

    def translate_to_plan_graph(self, raw: RawPlanOutput) -> PlanGraph:
        return PlanGraph(
            id=f"plan-{self.run_id}",
            artifact_kind=raw.target_artifact,
            entry_id=self._entry_id(raw),
            created_at=self._clock(),
            nodes={step.id: self._to_node(step) for step in raw.steps},
            metadata=PlanMetadata(
                confidence=raw.confidence,
                overall_rationale=raw.overall_rationale,
                warnings=raw.warnings,
                clarifications=raw.clarifications,
            ),
        )

    def translate_to_step_proposals(self, raw: RawPlanOutput) -> list[PlanStepProposal]:
        return [
            PlanStepProposal(
                id=step.id,
                tool_id=step.tool_id,
                tool_type=step.tool_type,
                label=step.label,
                rationale=step.rationale,
                depends_on=list(step.depends_on),
                output_artifact=step.output_artifact,
            )
            for step in raw.steps
        ]

    def translate(self, raw: RawPlanOutput) -> OrchestratorPlanProposal:
        validation = self.validate(raw)
        if not validation.valid:
            raise InvalidPlanError(validation.errors)

        warnings = (raw.warnings or []) + validation.warnings
        proposal = OrchestratorPlanProposal(
            plan=self.translate_to_plan_graph(raw),
            steps=self.translate_to_step_proposals(raw),
            overall_rationale=raw.overall_rationale,
            confidence=raw.confidence,
            target_artifact=raw.target_artifact,
            warnings=warnings or None,
            suggested_clarifications=raw.clarifications,
        )
        logger.debug(
            "Translated plan %s: %d node(s), entry=%s",
            proposal.plan.id,
            len(proposal.plan.nodes),
            proposal.plan.entry_id,
        )
        return proposal

    def resolve(self, text: str) -> OrchestratorPlanProposal:
        """parse → validate → translate."""
        return self.translate(self.parse_output(text))
