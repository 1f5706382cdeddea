import json
from datetime import datetime, timezone

import pytest

from artifact_planner.catalog import default_catalog
from artifact_planner.models import (
    PLAN_VERSION,
    AnalyzeContextTask,
    AssemblePrdTask,
    ClarificationCheckTask,
    OrchestratorPlanProposal,
    RawPlanOutput,
    RawStep,
    SkillTask,
    SubagentTask,
    ToolDescriptor,
    ToolMetadata,
    WriteSectionTask,
)
from artifact_planner.resolver import (
    EMPTY_PLAN_ERROR,
    InvalidPlanError,
    MalformedOutputError,
    PlanResolver,
    ResolutionError,
    detect_cycles,
    resolve_task,
    strip_code_fence,
)

FIXED_TIME = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


def _resolver(tools=None) -> PlanResolver:
    if tools is None:
        tools = default_catalog().discover_all()
    return PlanResolver(tools, "run-1", clock=lambda: FIXED_TIME)


def _step(step_id, tool_id="persona.builder", tool_type="subagent", deps=(), output=None) -> RawStep:
    return RawStep(
        id=step_id,
        tool_id=tool_id,
        tool_type=tool_type,
        label=f"Run {tool_id}",
        rationale=f"{step_id} needs {tool_id}",
        depends_on=list(deps),
        output_artifact=output,
    )


def _raw(steps, confidence=0.9, warnings=None, clarifications=None) -> RawPlanOutput:
    return RawPlanOutput(
        target_artifact="prd",
        overall_rationale="Because.",
        confidence=confidence,
        warnings=warnings,
        clarifications=clarifications,
        steps=steps,
    )


def _model_text(**overrides) -> str:
    payload = {
        "targetArtifact": "persona",
        "overallRationale": "Research first, then personas.",
        "confidence": 0.8,
        "steps": [
            {
                "id": "step-1",
                "toolId": "research.core.agent",
                "toolType": "subagent",
                "label": "Research",
                "rationale": "Gather context",
                "dependsOn": [],
                "outputArtifact": "research",
            },
            {
                "id": "step-2",
                "toolId": "persona.builder",
                "toolType": "subagent",
                "label": "Personas",
                "rationale": "Use the research",
                "dependsOn": ["step-1"],
            },
        ],
    }
    payload.update(overrides)
    return json.dumps(payload)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def test_parse_plain_json():
    raw = _resolver().parse_output(_model_text())
    assert raw.target_artifact == "persona"
    assert raw.confidence == 0.8
    assert [s.id for s in raw.steps] == ["step-1", "step-2"]
    assert raw.steps[1].depends_on == ["step-1"]


def test_parse_strips_json_fence():
    raw = _resolver().parse_output("```json\n" + _model_text() + "\n```")
    assert len(raw.steps) == 2


def test_parse_strips_unlabeled_fence():
    raw = _resolver().parse_output("```\n" + _model_text() + "\n```")
    assert raw.target_artifact == "persona"


def test_strip_code_fence_leaves_bare_text_alone():
    assert strip_code_fence('  {"a": 1}  ') == '{"a": 1}'


def test_parse_missing_depends_on_defaults_to_empty():
    text = _model_text(
        steps=[
            {
                "id": "s1",
                "toolId": "persona.builder",
                "toolType": "subagent",
                "label": "Personas",
                "rationale": "Needed",
            }
        ]
    )
    raw = _resolver().parse_output(text)
    assert raw.steps[0].depends_on == []


def test_parse_non_list_depends_on_is_normalized():
    text = _model_text(
        steps=[
            {
                "id": "s1",
                "toolId": "persona.builder",
                "toolType": "subagent",
                "label": "Personas",
                "rationale": "Needed",
                "dependsOn": "s0",
            }
        ]
    )
    assert _resolver().parse_output(text).steps[0].depends_on == []


def test_parse_invalid_json():
    with pytest.raises(MalformedOutputError, match="Invalid JSON in LLM output"):
        _resolver().parse_output("Sure! Here is your plan: {")


def test_parse_non_object_json():
    with pytest.raises(MalformedOutputError, match="Invalid JSON in LLM output"):
        _resolver().parse_output("[1, 2, 3]")


def test_parse_missing_target_artifact():
    payload = json.loads(_model_text())
    del payload["targetArtifact"]
    with pytest.raises(MalformedOutputError, match="Missing required field: targetArtifact"):
        _resolver().parse_output(json.dumps(payload))


def test_parse_missing_overall_rationale():
    with pytest.raises(MalformedOutputError, match="Missing required field: overallRationale"):
        _resolver().parse_output(_model_text(overallRationale=""))


@pytest.mark.parametrize("confidence", ["0.9", None, True])
def test_parse_invalid_confidence(confidence):
    with pytest.raises(MalformedOutputError, match="Missing or invalid field: confidence"):
        _resolver().parse_output(_model_text(confidence=confidence))


@pytest.mark.parametrize("token", ["NaN", "Infinity", "-Infinity", "1e999"])
def test_parse_rejects_non_finite_confidence(token):
    text = _model_text().replace('"confidence": 0.8', f'"confidence": {token}')
    assert token in text
    with pytest.raises(MalformedOutputError):
        _resolver().parse_output(text)


def test_parse_rejects_non_finite_numbers_anywhere():
    text = _model_text().replace('"dependsOn": []', '"dependsOn": [], "weight": NaN')
    with pytest.raises(MalformedOutputError, match="non-finite number NaN"):
        _resolver().parse_output(text)


def test_parse_steps_must_be_a_list():
    with pytest.raises(MalformedOutputError, match="Missing or invalid field: steps"):
        _resolver().parse_output(_model_text(steps={"id": "s1"}))


@pytest.mark.parametrize("field", ["id", "toolId", "toolType", "label", "rationale"])
def test_parse_step_missing_required_field(field):
    payload = json.loads(_model_text())
    del payload["steps"][1][field]
    with pytest.raises(MalformedOutputError, match=f"Step 1 missing required field: {field}"):
        _resolver().parse_output(json.dumps(payload))


def test_parse_rejects_unknown_tool_type():
    payload = json.loads(_model_text())
    payload["steps"][0]["toolType"] = "workflow"
    with pytest.raises(MalformedOutputError, match="invalid toolType"):
        _resolver().parse_output(json.dumps(payload))


def test_parse_drops_non_list_warnings():
    raw = _resolver().parse_output(_model_text(warnings="be careful", clarifications=["Who?", 3]))
    assert raw.warnings is None
    assert raw.clarifications == ["Who?"]


def test_malformed_output_is_a_resolution_error():
    with pytest.raises(ResolutionError):
        _resolver().parse_output("not json")


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def test_validate_accepts_acyclic_plan():
    raw = _raw(
        [
            _step("a", "research.core.agent"),
            _step("b", "persona.builder", deps=["a"]),
            _step("c", "storymap.builder", deps=["a", "b"]),
        ]
    )
    result = _resolver().validate(raw)
    assert result.valid is True
    assert result.errors == []
    assert result.warnings == []


def test_validate_reports_duplicate_ids():
    raw = _raw([_step("a"), _step("a"), _step("b")])
    result = _resolver().validate(raw)
    assert result.valid is False
    assert 'Duplicate step ID: "a"' in result.errors
    assert len(raw.steps) == 3


def test_validate_reports_two_step_cycle():
    raw = _raw([_step("a", deps=["b"]), _step("b", deps=["a"])])
    result = _resolver().validate(raw)
    assert result.valid is False
    cycle_errors = [e for e in result.errors if e.startswith("Circular dependency")]
    assert cycle_errors == ["Circular dependency: a → b → a"]


def test_validate_reports_every_disjoint_cycle():
    raw = _raw(
        [
            _step("a", deps=["b"]),
            _step("b", deps=["a"]),
            _step("c", deps=["d"]),
            _step("d", deps=["e"]),
            _step("e", deps=["c"]),
        ]
    )
    errors = _resolver().validate(raw).errors
    assert "Circular dependency: a → b → a" in errors
    assert "Circular dependency: c → d → e → c" in errors


def test_validate_reports_self_dependency():
    result = _resolver().validate(_raw([_step("a", deps=["a"])]))
    assert "Circular dependency: a → a" in result.errors


def test_validate_empty_plan_without_clarifications():
    result = _resolver().validate(_raw([], clarifications=[]))
    assert result.valid is False
    assert EMPTY_PLAN_ERROR in result.errors


def test_validate_empty_plan_with_clarifications():
    result = _resolver().validate(_raw([], confidence=0.3, clarifications=["Which market?"]))
    assert result.valid is True
    assert result.errors == []
    assert result.warnings == []


def test_validate_unknown_tool():
    result = _resolver().validate(_raw([_step("step-1", "nope.tool", tool_type="skill")]))
    assert result.valid is False
    assert 'Step "step-1" references unknown tool "nope.tool"' in result.errors


def test_validate_dangling_dependency():
    result = _resolver().validate(_raw([_step("a", deps=["ghost"])]))
    assert result.errors == ['Step "a" depends on unknown step "ghost"']


def test_validate_accumulates_all_errors():
    raw = _raw(
        [
            _step("a", deps=["ghost"]),
            _step("a", "nope.tool", tool_type="skill"),
            _step("b", deps=["c"]),
            _step("c", deps=["b"]),
        ]
    )
    errors = _resolver().validate(raw).errors
    assert 'Duplicate step ID: "a"' in errors
    assert 'Step "a" depends on unknown step "ghost"' in errors
    assert 'Step "a" references unknown tool "nope.tool"' in errors
    assert "Circular dependency: b → c → b" in errors


def test_validate_low_confidence_warning():
    result = _resolver().validate(_raw([_step("a")], confidence=0.4))
    assert result.valid is True
    assert result.warnings == ["Low confidence plan (0.4). Consider clarifying requirements."]


def test_validate_large_plan_warning():
    steps = [_step("s0")] + [_step(f"s{i}", deps=[f"s{i - 1}"]) for i in range(1, 11)]
    result = _resolver().validate(_raw(steps))
    assert result.valid is True
    assert result.warnings == ["Plan has 11 steps. Consider if all are necessary."]


def test_detect_cycles_handles_long_chains():
    steps = [_step("s0")] + [_step(f"s{i}", deps=[f"s{i - 1}"]) for i in range(1, 5000)]
    assert detect_cycles(steps) == []

    steps[0] = _step("s0", deps=["s4999"])
    cycles = detect_cycles(steps)
    assert len(cycles) == 1
    assert cycles[0][0] == cycles[0][-1]
    assert len(cycles[0]) == 5001


# ---------------------------------------------------------------------------
# Translation
# ---------------------------------------------------------------------------


def test_translate_research_then_persona():
    raw = _raw(
        [
            _step("step-1", "research.core.agent"),
            _step("step-2", "persona.builder", deps=["step-1"]),
        ]
    )
    result = _resolver().translate(raw)
    plan = result.plan

    assert plan.id == "plan-run-1"
    assert plan.version == PLAN_VERSION
    assert plan.created_at == FIXED_TIME
    assert plan.entry_id == "step-1"
    assert set(plan.nodes) == {"step-1", "step-2"}
    assert plan.nodes["step-2"].depends_on == ["step-1"]
    assert plan.nodes["step-1"].task == SubagentTask(agent_id="research.core.agent")
    assert plan.nodes["step-1"].status == "pending"
    assert plan.nodes["step-1"].metadata.artifact_kind == "research"
    assert plan.metadata.orchestrator == "llm-orchestrator"
    assert result.warnings is None


def test_translate_prefers_declared_output_artifact():
    raw = _raw([_step("a", "research.core.agent", output="brief")])
    node = _resolver().translate(raw).plan.nodes["a"]
    assert node.metadata.artifact_kind == "brief"


def test_entry_is_first_step_without_dependencies():
    raw = _raw(
        [
            _step("b", "persona.builder", deps=["a"]),
            _step("a", "research.core.agent"),
        ]
    )
    assert _resolver().translate(raw).plan.entry_id == "a"


def test_translate_is_deterministic():
    raw = _raw([_step("a", "research.core.agent"), _step("b", deps=["a"])])
    first = _resolver().translate_to_plan_graph(raw)
    second = _resolver().translate_to_plan_graph(raw)
    assert first.nodes == second.nodes
    assert first.entry_id == second.entry_id


def test_nodes_project_back_to_raw_steps():
    raw = _raw(
        [
            _step("a", "research.core.agent"),
            _step("b", "persona.builder", deps=["a"]),
            _step("c", "clarification.check", tool_type="skill", deps=["a", "b"]),
        ]
    )
    plan = _resolver().translate_to_plan_graph(raw)
    for step in raw.steps:
        node = plan.nodes[step.id]
        assert node.label == step.label
        assert node.metadata.rationale == step.rationale
        assert node.metadata.tool_id == step.tool_id
        assert set(node.depends_on) == set(step.depends_on)


def test_step_proposals_mirror_raw_steps():
    raw = _raw([_step("a", "research.core.agent", output="research"), _step("b", deps=["a"])])
    proposals = _resolver().translate_to_step_proposals(raw)
    assert [p.model_dump() for p in proposals] == [s.model_dump() for s in raw.steps]


def test_translate_rejects_invalid_plan():
    raw = _raw([_step("a", deps=["b"]), _step("b", deps=["a"])])
    with pytest.raises(InvalidPlanError) as exc_info:
        _resolver().translate(raw)
    assert exc_info.value.errors == ["Circular dependency: a → b → a"]
    assert str(exc_info.value) == "Invalid plan: Circular dependency: a → b → a"


def test_translate_merges_warnings_in_order():
    raw = _raw([_step("a")], confidence=0.2, warnings=["Thin context"])
    result = _resolver().translate(raw)
    assert result.warnings == [
        "Thin context",
        "Low confidence plan (0.2). Consider clarifying requirements.",
    ]
    assert result.plan.metadata.warnings == ["Thin context"]


def test_translate_empty_plan_with_clarifications():
    raw = _raw([], confidence=0.3, clarifications=["Which market?", "Who are the users?"])
    result = _resolver().translate(raw)
    assert result.plan.nodes == {}
    assert result.plan.entry_id is None
    assert result.steps == []
    assert result.suggested_clarifications == ["Which market?", "Who are the users?"]
    assert result.plan.metadata.clarifications == ["Which market?", "Who are the users?"]


def test_resolve_runs_the_full_chain():
    result = _resolver().resolve("```json\n" + _model_text() + "\n```")
    assert result.target_artifact == "persona"
    assert result.plan.entry_id == "step-1"


def test_resolve_unknown_tool_raises_invalid_plan():
    payload = json.loads(_model_text())
    payload["steps"][1]["toolId"] = "persona.v2"
    with pytest.raises(InvalidPlanError, match='unknown tool "persona.v2"'):
        _resolver().resolve(json.dumps(payload))


def test_proposal_survives_wire_round_trip():
    result = _resolver().resolve(_model_text())
    wire = result.to_wire()

    assert wire["plan"]["entryId"] == "step-1"
    assert wire["plan"]["nodes"]["step-1"]["task"] == {
        "kind": "subagent",
        "agentId": "research.core.agent",
    }
    assert wire["steps"][1]["dependsOn"] == ["step-1"]

    restored = OrchestratorPlanProposal.model_validate(wire)
    assert restored.plan.nodes == result.plan.nodes


# ---------------------------------------------------------------------------
# Task mapping
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "tool_id, expected",
    [
        ("prd.check-clarification", ClarificationCheckTask()),
        ("prd.analyze-context", AnalyzeContextTask()),
        ("prd.assemble-prd", AssemblePrdTask()),
        ("prd.write-targetUsers", WriteSectionTask(section="targetUsers")),
        ("clarification.check", SkillTask(skill_id="clarification.check", operation="check")),
        ("standalone", SkillTask(skill_id="standalone", operation="unknown")),
    ],
)
def test_resolve_task_for_skills(tool_id, expected):
    assert resolve_task(_step("s", tool_id, tool_type="skill")) == expected


def test_resolve_task_subagent_wins_over_skill_naming():
    task = resolve_task(_step("s", "prd.write-solution", tool_type="subagent"))
    assert task == SubagentTask(agent_id="prd.write-solution")


def test_section_comes_from_tool_metadata_when_known():
    tool = ToolDescriptor(
        id="prd.write-users-v2",
        kind="skill",
        label="Users writer",
        description="Writes users",
        output_artifact="prd",
        metadata=ToolMetadata(section="targetUsers", category="section-writer"),
    )
    task = resolve_task(_step("s", tool.id, tool_type="skill"), tool)
    assert task == WriteSectionTask(section="targetUsers")


def test_section_falls_back_to_tool_id_suffix():
    tool = ToolDescriptor(
        id="prd.write-risks",
        kind="skill",
        label="Risks writer",
        description="Writes risks",
        output_artifact="prd",
        metadata=ToolMetadata(section="not-a-section"),
    )
    task = resolve_task(_step("s", tool.id, tool_type="skill"), tool)
    assert task == WriteSectionTask(section="risks")


def test_write_section_node_carries_section_metadata():
    tools = default_catalog(include_prd_agent=False).discover_all()
    raw = _raw(
        [
            _step("ctx", "prd.analyze-context", tool_type="skill"),
            _step("kf", "prd.write-keyFeatures", tool_type="skill", deps=["ctx"]),
            _step("done", "prd.assemble-prd", tool_type="skill", deps=["kf"]),
        ]
    )
    plan = _resolver(tools).translate(raw).plan
    assert plan.nodes["kf"].task == WriteSectionTask(section="keyFeatures")
    assert plan.nodes["kf"].metadata.section == "keyFeatures"
    assert plan.nodes["done"].task == AssemblePrdTask()
    assert plan.nodes["ctx"].metadata.artifact_kind == "prd"
