# prompts.py
# Prompt compiler. Renders the system, user and refinement prompts from
# structured inputs. Pure string building: no model calls, no parsing.

import json

from artifact_planner.models import (
    Artifact,
    ConversationTurn,
    OrchestratorInput,
    PlanGraph,
    PlanStepProposal,
    ToolDescriptor,
)

# ---------------------------------------------------------------------------
# Fixed prompt text
# ---------------------------------------------------------------------------

SYSTEM_HEADER = """\
# Product Agent Orchestrator

You are the planner for a product agent system. Read the user's request and \
compose the available tools into an execution plan that produces the artifact \
they need.\
"""

PLANNING_RULES = """\
## Planning Rules

1. **Dependency Order**: a step that produces an artifact comes before any step that consumes it
2. **No Cycles**: dependencies between steps must never loop back
3. **Minimize Steps**: include only the tools the request actually needs
4. **Reuse Artifacts**: do not regenerate an existing artifact unless the user asks for it
5. **Subagents for Complete Artifacts**: use subagents for whole artifacts (PRD, personas, research). The PRD subagent runs the full PRD workflow internally.
6. **Skills for Atomic Operations**: use skills only where no dedicated subagent exists
7. **Rationale Required**: every step explains why that tool was chosen
8. **Clarify Before Planning**: when the request is too vague to plan, return at most two steps together with clarification questions. Do not research overly broad topics.

## When to Ask for Clarifications

Ask clarification questions with few or no steps when the request is **extremely vague**:
- It names a whole category rather than a domain ("SaaS product", "mobile app", "AI tool")
- There is no hint of the problem space or market
- Nothing is said about who would use it or why

In that case:
- Keep confidence low (0.2-0.5)
- Ask at least three questions covering market, target users and key problems
- Return an empty steps array or at most two steps
- Add a warning about the missing context
- Do not propose research yet

## When to Start with Research

Start with the research subagent when the request names a **specific domain** but lacks detail:
- "mobile payment app", "fitness tracker" and "project management tool" are specific enough to research
- Missing audience, competitors or value proposition is fine; research fills those gaps

## Common Patterns

- **PRD with full context**: prd.core.agent
- **PRD with minimal context**: research.core.agent → persona.builder → prd.core.agent
- **Personas with minimal context**: research.core.agent → persona.builder
- **Market research only**: research.core.agent\
"""

EXAMPLE_PLANS = """\
## Example Plans

### Example 1: "I need a PRD for a task management app for remote teams that integrates with Slack and focuses on async collaboration"
{
  "targetArtifact": "prd",
  "overallRationale": "Audience, integration and value proposition are all stated, so the PRD subagent can run directly.",
  "confidence": 0.9,
  "steps": [
    {
      "id": "step-1",
      "toolId": "prd.core.agent",
      "toolType": "subagent",
      "label": "Generate complete PRD",
      "rationale": "Enough context for the PRD subagent to clarify, analyze, write and assemble on its own",
      "dependsOn": [],
      "outputArtifact": "prd"
    }
  ]
}

### Example 2: "Research the market for AI writing tools"
{
  "targetArtifact": "research",
  "overallRationale": "The user wants market research only.",
  "confidence": 0.85,
  "steps": [
    {
      "id": "step-1",
      "toolId": "research.core.agent",
      "toolType": "subagent",
      "label": "Conduct market research",
      "rationale": "The research subagent searches and synthesizes market information",
      "dependsOn": [],
      "outputArtifact": "research"
    }
  ]
}

### Example 3: "Create personas for my fitness app"
{
  "targetArtifact": "persona",
  "overallRationale": "Personas need market and segment context the user has not given; research supplies it first.",
  "confidence": 0.7,
  "warnings": ["Limited context provided; research will define the user segments"],
  "clarifications": ["Which fitness goals does the app target?", "Is it for beginners, athletes, or a general audience?"],
  "steps": [
    {
      "id": "step-1",
      "toolId": "research.core.agent",
      "toolType": "subagent",
      "label": "Research the fitness app market and user segments",
      "rationale": "Segment and competitor data inform the personas",
      "dependsOn": [],
      "outputArtifact": "research"
    },
    {
      "id": "step-2",
      "toolId": "persona.builder",
      "toolType": "subagent",
      "label": "Build personas from the research",
      "rationale": "Turns the research insights into concrete user personas",
      "dependsOn": ["step-1"],
      "outputArtifact": "persona"
    }
  ]
}

### Example 4: "I need a PRD for a new SaaS product"
{
  "targetArtifact": "prd",
  "overallRationale": "'SaaS product' is an industry, not a domain. Market, users and problem are needed before anything can be planned.",
  "confidence": 0.3,
  "warnings": ["Request is too broad to research"],
  "clarifications": [
    "Which market or industry is the product for?",
    "What problem does it solve for its users?",
    "Who are the intended users?",
    "Which similar products or competitors do you know of?"
  ],
  "steps": []
}

### Example 5: Refinement after the user answers "It's for healthcare teams coordinating patient care across departments"
{
  "targetArtifact": "prd",
  "overallRationale": "The feedback supplies a researchable domain, so research, personas and then the PRD.",
  "confidence": 0.7,
  "steps": [
    {
      "id": "step-1",
      "toolId": "research.core.agent",
      "toolType": "subagent",
      "label": "Research the care coordination market",
      "rationale": "The domain is now specific enough to research competitors and regulation",
      "dependsOn": [],
      "outputArtifact": "research"
    },
    {
      "id": "step-2",
      "toolId": "persona.builder",
      "toolType": "subagent",
      "label": "Build healthcare team personas",
      "rationale": "Personas for the roles surfaced by research",
      "dependsOn": ["step-1"],
      "outputArtifact": "persona"
    },
    {
      "id": "step-3",
      "toolId": "prd.core.agent",
      "toolType": "subagent",
      "label": "Generate the PRD",
      "rationale": "Combines research and personas into the PRD",
      "dependsOn": ["step-2"],
      "outputArtifact": "prd"
    }
  ]
}\
"""

OUTPUT_SCHEMA = """\
{
  "targetArtifact": "string - the artifact kind the plan ultimately produces",
  "overallRationale": "string - why this plan was chosen",
  "confidence": "number (0-1) - how confident you are in the plan",
  "warnings": ["string - potential issues or concerns"],
  "clarifications": ["string - questions for the user when information is missing"],
  "steps": [
    {
      "id": "string - unique step id, e.g. 'step-1'",
      "toolId": "string - id of the tool to run",
      "toolType": "string - 'skill' or 'subagent'",
      "label": "string - human readable description of the step",
      "rationale": "string - why this tool was chosen",
      "dependsOn": ["string - ids of steps this one waits for"],
      "outputArtifact": "string - artifact kind this step produces"
    }
  ]
}\
"""

USER_INSTRUCTIONS = """\
## Instructions

Analyze the request and create an execution plan. Consider:
1. Which artifact does the user ultimately want?
2. Which tools produce it?
3. In what order must they run?
4. Which existing artifacts can be reused?

Provide your plan as a JSON object.\
"""

REFINE_INSTRUCTIONS = """\
## Instructions

The user has commented on the current plan. **Treat the feedback as additional \
context for the original request**, not as a patch to apply to the old plan.

If the current plan asked clarification questions and the feedback answers them:
1. The feedback adds domain or market context that was missing before
2. Apply the planning rules again to the combined request and feedback
3. If the request now names a specific domain, research may be appropriate
4. Choose between asking for clarifications and starting with research using the combined context

Also consider:
1. Does the feedback move the request from too vague to a specific domain?
2. Should the plan now start with research?
3. Which explicit changes did the user ask for?
4. Should steps be added, removed or reordered?
5. Would different tools fit better?

Return the complete revised plan as a JSON object.\
"""

NO_ARTIFACTS = "No existing artifacts available."


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------


def format_tool(tool: ToolDescriptor) -> str:
    consumes = ", ".join(tool.input_artifacts) or "none (can start from prompt)"
    capabilities = ", ".join(tool.capabilities) or "general"
    return (
        f"- **{tool.label}** (id: `{tool.id}`)\n"
        f"  - Type: {tool.kind}\n"
        f"  - Description: {tool.description}\n"
        f"  - Consumes: {consumes}\n"
        f"  - Produces: {tool.output_artifact}\n"
        f"  - Capabilities: {capabilities}"
    )


def _format_tools_by_kind(tools: list[ToolDescriptor]) -> str:
    groups = (
        ("### Skills (atomic operations)", [t for t in tools if t.kind == "skill"]),
        ("### Subagents (complex workflows)", [t for t in tools if t.kind == "subagent"]),
    )
    return "\n\n".join(
        heading + "\n" + "\n\n".join(format_tool(t) for t in members)
        for heading, members in groups
        if members
    )


def format_artifacts(artifacts: dict[str, list[Artifact]]) -> str:
    lines = [
        f"- **{kind}**: {artifact.label or artifact.id} (v{artifact.version or 'unknown'})"
        for kind, entries in artifacts.items()
        for artifact in entries
    ]
    return "\n".join(lines) if lines else NO_ARTIFACTS


def format_history(history: list[ConversationTurn], max_messages: int) -> str:
    if not history or max_messages <= 0:
        return ""
    return "\n\n".join(f"**{turn.role}**: {turn.content}" for turn in history[-max_messages:])


def _snapshot_step(step: PlanStepProposal) -> dict:
    entry = {
        "id": step.id,
        "toolId": step.tool_id,
        "toolType": step.tool_type,
        "label": step.label,
        "rationale": step.rationale,
        "dependsOn": list(step.depends_on),
    }
    if step.output_artifact:
        entry["outputArtifact"] = step.output_artifact
    return entry


def serialize_plan_snapshot(plan: PlanGraph, steps: list[PlanStepProposal]) -> str:
    """JSON view of a plan as embedded into refinement prompts."""
    snapshot = {
        "targetArtifact": plan.artifact_kind,
        "overallRationale": plan.metadata.overall_rationale,
        "confidence": plan.metadata.confidence,
        "steps": [_snapshot_step(step) for step in steps],
    }
    return json.dumps(snapshot, indent=2, ensure_ascii=False)


# ---------------------------------------------------------------------------
# Compiler
# ---------------------------------------------------------------------------


class PromptCompiler:
    """
    Deterministic prompt rendering. Total over its inputs: optional fields
    that are missing simply omit their section.
    """

    def __init__(
        self,
        include_examples: bool = True,
        max_history_messages: int = 10,
        group_tools_by_type: bool = True,
    ) -> None:
        self.include_examples = include_examples
        self.max_history_messages = max_history_messages
        self.group_tools_by_type = group_tools_by_type

    def build_system_prompt(self, tools: list[ToolDescriptor]) -> str:
        if self.group_tools_by_type:
            tool_section = _format_tools_by_kind(tools)
        else:
            tool_section = "\n\n".join(format_tool(t) for t in tools)

        sections = [f"{SYSTEM_HEADER}\n\n## Available Tools\n\n{tool_section}", PLANNING_RULES]
        if self.include_examples:
            sections.append(EXAMPLE_PLANS)
        sections.append(
            "## Output Format\n\n"
            "Return a valid JSON object matching this schema:\n\n"
            f"{OUTPUT_SCHEMA}\n\n"
            "**Important**: return ONLY the JSON object, with no markdown code fences or other text."
        )
        return "\n\n".join(sections)

    def build_user_prompt(self, request: OrchestratorInput) -> str:
        sections = [
            f'## User Request\n\n"{request.message}"',
            f"## Existing Artifacts\n\n{format_artifacts(request.existing_artifacts)}",
        ]

        history = format_history(request.conversation_history, self.max_history_messages)
        if history:
            sections.append(f"## Conversation History\n\n{history}")

        if request.target_artifact:
            sections.append(
                "## Target Artifact Hint\n\n"
                f"The user has indicated they want a **{request.target_artifact}** artifact."
            )

        sections.append(USER_INSTRUCTIONS)
        return "\n\n".join(sections)

    def build_refinement_prompt(
        self,
        original_input: OrchestratorInput,
        current_plan_json: str,
        feedback: str,
    ) -> str:
        return "\n\n".join(
            [
                f"## Current Plan\n\n{current_plan_json}",
                f'## User Feedback\n\n"{feedback}"',
                f'## Original Request\n\n"{original_input.message}"',
                REFINE_INSTRUCTIONS,
            ]
        )
