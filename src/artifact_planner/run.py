# run.py
# CLI entry point. Wiring and I/O only; planning logic lives in
# orchestrator.py and resolver.py.
#
#   artifact-planner propose "Create a PRD for a mobile payment app" --out plan.json
#   artifact-planner refine plan.json "It's for small retailers" --message "Create a PRD ..."

import asyncio
import json
import logging
import uuid
from pathlib import Path
from typing import Optional

import typer
from pydantic import ValidationError
from rich.logging import RichHandler

from artifact_planner import display
from artifact_planner.catalog import (
    CLARIFICATION_SKILL_PACK,
    DEFAULT_SUBAGENTS,
    PRD_SKILL_PACK,
    CatalogError,
    SkillCatalog,
    SubagentRegistry,
    ToolCatalog,
)
from artifact_planner.config import PlannerConfig
from artifact_planner.llm import UpstreamCallError
from artifact_planner.models import (
    OrchestratorInput,
    OrchestratorPlanProposal,
    OrchestratorRefineInput,
    RunContext,
    RunRequest,
)
from artifact_planner.orchestrator import Orchestrator
from artifact_planner.resolver import InvalidPlanError, ResolutionError

app = typer.Typer(help="Turn a product request into a validated execution plan.")


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=display.console, rich_tracebacks=True, show_path=False)],
        force=True,
    )


def _load_config() -> PlannerConfig:
    try:
        return PlannerConfig.from_env()
    except ValidationError as error:
        display.halt(f"Invalid configuration: {error}")
        raise typer.Exit(code=1) from error


def build_catalog(
    catalog_path: Optional[Path],
    subagents_path: Optional[Path],
    enable_cache: bool = True,
) -> ToolCatalog:
    """Built-in packs and subagents, each replaceable by a JSON file."""
    try:
        skills = (
            SkillCatalog.from_file(str(catalog_path))
            if catalog_path
            else SkillCatalog([CLARIFICATION_SKILL_PACK, PRD_SKILL_PACK])
        )
        subagents = (
            SubagentRegistry.from_file(str(subagents_path))
            if subagents_path
            else SubagentRegistry(DEFAULT_SUBAGENTS)
        )
    except CatalogError as error:
        display.halt(str(error))
        raise typer.Exit(code=1) from error
    return ToolCatalog(skills, subagents, enable_cache=enable_cache)


def _run(coro) -> OrchestratorPlanProposal:
    try:
        return asyncio.run(coro)
    except InvalidPlanError as error:
        display.resolution_failed("The proposed plan failed validation.", error.errors)
        raise typer.Exit(code=1) from error
    except ResolutionError as error:
        display.resolution_failed(str(error))
        raise typer.Exit(code=1) from error
    except UpstreamCallError as error:
        display.halt(str(error))
        raise typer.Exit(code=1) from error


def _write(result: OrchestratorPlanProposal, out: Optional[Path]) -> None:
    if out is None:
        return
    out.write_text(json.dumps(result.to_wire(), indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
    display.console.print(f"[dim]Proposal written to {out}[/dim]")


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command()
def propose(
    message: str = typer.Argument(..., help="The request to plan for."),
    target: Optional[str] = typer.Option(None, "--target", help="Artifact kind the user wants."),
    catalog: Optional[Path] = typer.Option(None, "--catalog", help="JSON file of skill packs."),
    subagents: Optional[Path] = typer.Option(None, "--subagents", help="JSON file of subagent manifests."),
    out: Optional[Path] = typer.Option(None, "--out", help="Write the proposal JSON here."),
    api_key: Optional[str] = typer.Option(None, "--api-key", help="Key for this request only."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging."),
) -> None:
    """Propose a plan for MESSAGE."""
    _configure_logging(verbose)
    config = _load_config()
    orchestrator = Orchestrator(config, build_catalog(catalog, subagents, config.enable_catalog_cache))

    display.banner(config.model, len(orchestrator.catalog.discover_all()))
    display.request_received(message)

    context = RunContext(
        run_id=f"cli-{uuid.uuid4().hex[:12]}",
        request=RunRequest(
            artifact_kind=target,
            input={"message": message},
            created_by="cli",
            attributes={"apiKey": api_key} if api_key else {},
        ),
    )
    result = _run(
        orchestrator.propose(OrchestratorInput(message=message, target_artifact=target), context)
    )
    display.proposal(result)
    _write(result, out)


@app.command()
def refine(
    proposal_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Proposal JSON from `propose`."),
    feedback: str = typer.Argument(..., help="Feedback on the current plan."),
    message: str = typer.Option(..., "--message", help="The original request."),
    catalog: Optional[Path] = typer.Option(None, "--catalog", help="JSON file of skill packs."),
    subagents: Optional[Path] = typer.Option(None, "--subagents", help="JSON file of subagent manifests."),
    out: Optional[Path] = typer.Option(None, "--out", help="Write the refined proposal JSON here."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging."),
) -> None:
    """Refine a saved proposal with FEEDBACK."""
    _configure_logging(verbose)
    config = _load_config()

    try:
        current = OrchestratorPlanProposal.model_validate_json(proposal_file.read_text(encoding="utf-8"))
    except ValidationError as error:
        display.halt(f"{proposal_file} is not a valid proposal: {error}")
        raise typer.Exit(code=1) from error

    orchestrator = Orchestrator(config, build_catalog(catalog, subagents, config.enable_catalog_cache))
    display.request_received(feedback, title="FEEDBACK")

    result = _run(
        orchestrator.refine(
            OrchestratorRefineInput(
                current_plan=current.plan,
                current_steps=current.steps,
                feedback=feedback,
                original_input=OrchestratorInput(message=message),
            )
        )
    )
    display.proposal(result)
    _write(result, out)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
