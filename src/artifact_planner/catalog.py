# catalog.py
# Capability catalog: skill packs, subagent manifests, and the flat
# ToolDescriptor view the planner reasons over.
#
# The planner only ever reads from here. Registries are populated up front;
# discovery never mutates them.

import json
import logging
import threading
from typing import Any, Iterable

from pydantic import ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from artifact_planner.models import PRD_SECTIONS, Contract, ToolDescriptor, ToolMetadata

logger = logging.getLogger(__name__)

SUPERSEDING_SUFFIX = ".core.agent"


class CatalogError(ValueError):
    """Raised when a skill pack or subagent manifest cannot be loaded."""


# ---------------------------------------------------------------------------
# Definitions
# ---------------------------------------------------------------------------


class _Frozen(Contract):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class SkillEntry(_Frozen):
    id: str = Field(..., min_length=1)
    label: str
    version: str = "1.0.0"
    category: str
    description: str | None = None
    section: str | None = None
    pack_id: str | None = None


class SkillPack(_Frozen):
    id: str = Field(..., min_length=1)
    version: str
    label: str
    description: str | None = None
    skills: tuple[SkillEntry, ...] = ()


class SubagentManifest(_Frozen):
    id: str
    package: str
    version: str
    label: str
    creates: str
    consumes: tuple[str, ...] = ()
    capabilities: tuple[str, ...] = ()
    description: str | None = None
    entry: str
    tags: tuple[str, ...] = ()


def _load_json(path: str) -> Any:
    try:
        with open(path, "r", encoding="utf-8") as fh:
            return json.load(fh)
    except (OSError, json.JSONDecodeError) as exc:
        raise CatalogError(f"cannot read catalog file {path}: {exc}") from exc


# ---------------------------------------------------------------------------
# Registries
# ---------------------------------------------------------------------------


class SkillCatalog:
    """Skills from one or more packs. The first pack to declare an id wins."""

    def __init__(self, packs: Iterable[SkillPack]) -> None:
        self._skills: dict[str, SkillEntry] = {}
        for pack in packs:
            for skill in pack.skills:
                if skill.id in self._skills:
                    logger.debug("Skill %s already registered; ignoring copy from %s", skill.id, pack.id)
                    continue
                self._skills[skill.id] = skill.model_copy(update={"pack_id": pack.id})

    @classmethod
    def from_dict(cls, payload: dict[str, Any] | list[dict[str, Any]]) -> "SkillCatalog":
        if isinstance(payload, list):
            packs = payload
        elif isinstance(payload, dict) and "packs" in payload:
            packs = payload["packs"]
        else:
            raise CatalogError("skill catalog payload must be a list or a dict with key 'packs'")
        try:
            return cls(SkillPack.model_validate(pack) for pack in packs)
        except ValidationError as exc:
            raise CatalogError(f"invalid skill pack: {exc}") from exc

    @classmethod
    def from_file(cls, path: str) -> "SkillCatalog":
        return cls.from_dict(_load_json(path))

    def list_skills(self) -> list[SkillEntry]:
        return list(self._skills.values())

    def list_by_category(self, category: str) -> list[SkillEntry]:
        return [skill for skill in self._skills.values() if skill.category == category]

    def find_by_id(self, skill_id: str) -> SkillEntry | None:
        return self._skills.get(skill_id)


class SubagentRegistry:
    """Composite capabilities keyed by manifest id."""

    def __init__(self, manifests: Iterable[SubagentManifest] = ()) -> None:
        self._entries: dict[str, SubagentManifest] = {}
        for manifest in manifests:
            self.register(manifest)

    @classmethod
    def from_dict(cls, payload: dict[str, Any] | list[dict[str, Any]]) -> "SubagentRegistry":
        if isinstance(payload, list):
            manifests = payload
        elif isinstance(payload, dict) and "subagents" in payload:
            manifests = payload["subagents"]
        else:
            raise CatalogError("subagent payload must be a list or a dict with key 'subagents'")
        try:
            return cls(SubagentManifest.model_validate(entry) for entry in manifests)
        except ValidationError as exc:
            raise CatalogError(f"invalid subagent manifest: {exc}") from exc

    @classmethod
    def from_file(cls, path: str) -> "SubagentRegistry":
        return cls.from_dict(_load_json(path))

    def register(self, manifest: SubagentManifest) -> None:
        manifest_id = manifest.id.strip()
        if not manifest_id:
            raise CatalogError("subagent manifest requires a non-empty id")
        self._entries[manifest_id] = manifest

    def list_manifests(self) -> list[SubagentManifest]:
        return list(self._entries.values())

    def get(self, manifest_id: str) -> SubagentManifest | None:
        return self._entries.get(manifest_id)

    def filter_by_artifact(self, kind: str) -> list[SubagentManifest]:
        return [m for m in self._entries.values() if not m.consumes or kind in m.consumes]


# ---------------------------------------------------------------------------
# Descriptor inference
# ---------------------------------------------------------------------------


def _skill_inputs(skill: SkillEntry) -> tuple[str, ...]:
    if skill.category == "section-writer":
        return ("prompt", "prd")
    if skill.category in ("assembly", "assembler"):
        return ("prd",)
    return ("prompt",)


def _skill_capabilities(skill: SkillEntry) -> tuple[str, ...]:
    capabilities = [skill.category]
    if skill.category == "section-writer" and skill.section:
        capabilities.append(f"write-{skill.section}")
    elif skill.category == "analyzer":
        capabilities.append("analyze")
    elif skill.category in ("assembly", "assembler"):
        capabilities.append("assemble")
    return tuple(capabilities)


def skill_to_descriptor(skill: SkillEntry) -> ToolDescriptor:
    return ToolDescriptor(
        id=skill.id,
        kind="skill",
        label=skill.label,
        description=skill.description
        or f"{skill.category} skill for {skill.section or 'general'} operations",
        input_artifacts=_skill_inputs(skill),
        # Skills produce PRD fragments or intermediate PRD data.
        output_artifact="prd",
        capabilities=_skill_capabilities(skill),
        metadata=ToolMetadata(
            pack_id=skill.pack_id,
            section=skill.section,
            category=skill.category,
            version=skill.version,
        ),
    )


def manifest_to_descriptor(manifest: SubagentManifest) -> ToolDescriptor:
    return ToolDescriptor(
        id=manifest.id,
        kind="subagent",
        label=manifest.label,
        description=manifest.description or f"Subagent that creates {manifest.creates} artifacts",
        input_artifacts=manifest.consumes,
        output_artifact=manifest.creates,
        capabilities=manifest.capabilities,
        metadata=ToolMetadata(
            package=manifest.package,
            version=manifest.version,
            entry=manifest.entry,
            tags=manifest.tags,
        ),
    )


# ---------------------------------------------------------------------------
# ToolCatalog
# ---------------------------------------------------------------------------


class ToolCatalog:
    """
    Unified, read-only view over skills and subagents.

    Discovery results are cached for the lifetime of the instance when
    caching is enabled. clear_cache() is the only mutation; callers running
    resolutions concurrently must not interleave it with in-flight reads.
    """

    def __init__(
        self,
        skill_catalog: SkillCatalog,
        subagent_registry: SubagentRegistry,
        enable_cache: bool = True,
    ) -> None:
        self._skill_catalog = skill_catalog
        self._subagent_registry = subagent_registry
        self._enable_cache = enable_cache
        self._lock = threading.Lock()
        self._cached: tuple[ToolDescriptor, ...] | None = None

    def discover_all(self) -> list[ToolDescriptor]:
        if self._enable_cache:
            cached = self._cached
            if cached is not None:
                return list(cached)

        tools = self.discover_skills() + self.discover_subagents()

        if self._enable_cache:
            with self._lock:
                self._cached = tuple(tools)
        return tools

    def discover_skills(self) -> list[ToolDescriptor]:
        """
        Skills as descriptors, minus any superseded by a registered
        `<namespace>.core.agent` subagent that owns the same namespace.
        """
        superseded = {
            manifest.id[: -len(SUPERSEDING_SUFFIX)]
            for manifest in self._subagent_registry.list_manifests()
            if manifest.id.endswith(SUPERSEDING_SUFFIX)
        }
        skills = [
            skill
            for skill in self._skill_catalog.list_skills()
            if skill.id.split(".", 1)[0] not in superseded
        ]
        if superseded:
            logger.debug("Suppressing skills in namespaces: %s", ", ".join(sorted(superseded)))
        return [skill_to_descriptor(skill) for skill in skills]

    def discover_subagents(self) -> list[ToolDescriptor]:
        return [manifest_to_descriptor(m) for m in self._subagent_registry.list_manifests()]

    def find_by_id(self, tool_id: str) -> ToolDescriptor | None:
        return next((tool for tool in self.discover_all() if tool.id == tool_id), None)

    def find_by_input_artifact(self, kind: str) -> list[ToolDescriptor]:
        return [
            tool
            for tool in self.discover_all()
            if not tool.input_artifacts or kind in tool.input_artifacts
        ]

    def find_by_output_artifact(self, kind: str) -> list[ToolDescriptor]:
        return [tool for tool in self.discover_all() if tool.output_artifact == kind]

    def clear_cache(self) -> None:
        with self._lock:
            self._cached = None


# ---------------------------------------------------------------------------
# Built-in capabilities
# ---------------------------------------------------------------------------

_SECTION_LABELS = {
    "targetUsers": "Target Users Section Writer",
    "solution": "Solution Section Writer",
    "keyFeatures": "Key Features Section Writer",
    "successMetrics": "Success Metrics Section Writer",
    "constraints": "Constraints Section Writer",
}

CLARIFICATION_SKILL_PACK = SkillPack(
    id="clarification.core",
    version="1.0.0",
    label="Clarification Skills",
    description="Analyzers that detect missing context and generate targeted clarification questions.",
    skills=(
        SkillEntry(
            id="clarification.check",
            label="Clarification Analyzer",
            category="analyzer",
            description="Evaluates input completeness and drafts critical clarification questions.",
        ),
    ),
)

PRD_SKILL_PACK = SkillPack(
    id="prd.core",
    version="0.3.0",
    label="PRD Core Skills",
    description="Context analysis, section writers, and assembly primitives for PRD generation.",
    skills=(
        SkillEntry(
            id="prd.check-clarification",
            label="Clarification Analyzer",
            category="analyzer",
            description="Evaluates the incoming request and decides if clarification questions are required.",
        ),
        SkillEntry(
            id="prd.analyze-context",
            label="Context Analyzer",
            category="analyzer",
            description="Summarises user goals, requirements, and constraints to seed downstream writers.",
        ),
        *(
            SkillEntry(
                id=f"prd.write-{section}",
                label=_SECTION_LABELS[section],
                category="section-writer",
                section=section,
                description=f"Generates and updates the {section} section of the PRD.",
            )
            for section in PRD_SECTIONS
        ),
        SkillEntry(
            id="prd.assemble-prd",
            label="PRD Assembly",
            category="assembly",
            description="Aggregates section outputs, calculates confidence, and emits final artifact metadata.",
        ),
    ),
)

DEFAULT_SUBAGENTS: tuple[SubagentManifest, ...] = (
    SubagentManifest(
        id="prd.core.agent",
        package="product-agents.prd-agent",
        version="1.0.0",
        label="PRD Agent",
        creates="prd",
        consumes=("prompt", "brief", "persona"),
        capabilities=("plan", "execute", "verify"),
        description="Runs the full PRD workflow: clarification, context analysis, section writing and assembly.",
        entry="product_agents.prd_agent",
        tags=("prd", "controller"),
    ),
    SubagentManifest(
        id="persona.builder",
        package="product-agents.persona-agent",
        version="0.1.0",
        label="Persona Agent",
        creates="persona",
        consumes=("prd", "prompt"),
        capabilities=("analyze", "synthesize"),
        description="LLM-backed persona analyst that can start from PRD sections or raw prompts.",
        entry="product_agents.persona_agent",
        tags=("persona",),
    ),
    SubagentManifest(
        id="research.core.agent",
        package="product-agents.research-agent",
        version="0.1.0",
        label="Research Agent",
        creates="research",
        consumes=("prompt", "prd", "brief"),
        capabilities=("plan", "search", "synthesize", "clarify"),
        description=(
            "Conducts market research, competitor analysis, and contextual intelligence "
            "gathering with web search capabilities."
        ),
        entry="product_agents.research_agent",
        tags=("research",),
    ),
    SubagentManifest(
        id="storymap.builder",
        package="product-agents.storymap-agent",
        version="0.1.0",
        label="Story Map Agent",
        creates="story-map",
        consumes=("prd", "persona", "research"),
        capabilities=("synthesize", "plan"),
        description="Generates user story maps from PRD, personas, and research artifacts.",
        entry="product_agents.storymap_agent",
        tags=("storymap", "planning", "user-stories"),
    ),
)


def default_catalog(enable_cache: bool = True, include_prd_agent: bool = True) -> ToolCatalog:
    """Catalog wired with the built-in packs and subagents."""
    manifests = [m for m in DEFAULT_SUBAGENTS if include_prd_agent or m.id != "prd.core.agent"]
    return ToolCatalog(
        SkillCatalog([CLARIFICATION_SKILL_PACK, PRD_SKILL_PACK]),
        SubagentRegistry(manifests),
        enable_cache=enable_cache,
    )
