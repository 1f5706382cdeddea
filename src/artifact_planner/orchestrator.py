# orchestrator.py
# Orchestration loop: catalog → prompts → one model call → resolution.
#
# propose() and refine() each make exactly one outbound model call and
# hold no state between invocations. Telemetry is notified around the call
# and can never fail the operation.

import logging
import time
from datetime import datetime, timezone
from typing import Callable

from artifact_planner.catalog import ToolCatalog
from artifact_planner.config import PlannerConfig
from artifact_planner.llm import ModelClient, ModelRequest, OpenRouterClient
from artifact_planner.models import (
    OrchestratorInput,
    OrchestratorPlanProposal,
    OrchestratorRefineInput,
    RunContext,
    ToolDescriptor,
)
from artifact_planner.prompts import PromptCompiler, serialize_plan_snapshot
from artifact_planner.resolver import InvalidPlanError, MalformedOutputError, PlanResolver
from artifact_planner.telemetry import GenerationRecord, Tracer, notify, traced_span, tracer_from_config

logger = logging.getLogger(__name__)

PLAN_ID_PREFIX = "plan-"


class Orchestrator:
    """
    Proposes and refines plans for a request.

    Example:
        orchestrator = Orchestrator(PlannerConfig.from_env(), default_catalog())
        proposal = asyncio.run(orchestrator.propose(OrchestratorInput(message="...")))
    """

    def __init__(
        self,
        config: PlannerConfig,
        catalog: ToolCatalog,
        client_factory: Callable[[str | None], ModelClient] | None = None,
        tracer: Tracer | None = None,
        clock: Callable[[], datetime] | None = None,
        compiler: PromptCompiler | None = None,
    ) -> None:
        self.config = config
        self.catalog = catalog
        self.tracer = tracer or tracer_from_config(config)
        self.compiler = compiler or PromptCompiler(
            include_examples=config.include_examples,
            max_history_messages=config.max_history_messages,
            group_tools_by_type=config.group_tools_by_type,
        )
        self._client_factory = client_factory or (
            lambda api_key: OpenRouterClient(api_key, base_url=config.base_url)
        )
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------

    async def discover_tools(self) -> list[ToolDescriptor]:
        return self.catalog.discover_all()

    def resolve_api_key(self, context: RunContext | None = None) -> str | None:
        """
        Request attribute `apiKey`, then `settings.apiKey` in the request
        input, then the configured default. Blank strings are skipped.
        """
        if context is not None:
            attribute = context.request.attributes.get("apiKey")
            if isinstance(attribute, str) and attribute.strip():
                return attribute

            payload = context.request.input
            settings = payload.get("settings") if isinstance(payload, dict) else None
            setting = settings.get("apiKey") if isinstance(settings, dict) else None
            if isinstance(setting, str) and setting.strip():
                return setting

        fallback = self.config.api_key
        return fallback if fallback and fallback.strip() else None

    def _new_run_id(self) -> str:
        return f"run-{int(self._clock().timestamp() * 1000)}"

    # ------------------------------------------------------------------
    # Model call
    # ------------------------------------------------------------------

    async def _generate(
        self,
        span_name: str,
        run_id: str,
        system_prompt: str,
        user_prompt: str,
        api_key: str | None,
    ) -> str:
        request = ModelRequest(
            system_prompt=system_prompt,
            user_prompt=user_prompt,
            max_output_tokens=self.config.max_output_tokens,
            temperature=self.config.temperature,
            model=self.config.model,
        )
        logger.debug(
            "%s run=%s system_prompt=%d chars user_prompt=%d chars",
            span_name,
            run_id,
            len(system_prompt),
            len(user_prompt),
        )

        with traced_span(self.tracer, span_name, {"run_id": run_id, "model": self.config.model}):
            client = self._client_factory(api_key)
            started = time.time()
            try:
                response = await client.complete(request)
            finally:
                await client.aclose()

            notify(
                self.tracer.record_generation,
                GenerationRecord(
                    name=span_name,
                    model=response.model or self.config.model,
                    input={"system": system_prompt, "user": user_prompt},
                    output=response.text,
                    start_time=started,
                    end_time=time.time(),
                    usage=response.usage.model_dump() if response.usage else None,
                    model_parameters={
                        "temperature": self.config.temperature,
                        "max_output_tokens": self.config.max_output_tokens,
                    },
                    metadata={"run_id": run_id},
                ),
            )
        return response.text

    def _resolve(self, tools: list[ToolDescriptor], run_id: str, text: str) -> OrchestratorPlanProposal:
        resolver = PlanResolver(tools, run_id, clock=self._clock)
        try:
            proposal = resolver.resolve(text)
        except MalformedOutputError as exc:
            logger.warning("Run %s: model output could not be parsed: %s", run_id, exc)
            raise
        except InvalidPlanError as exc:
            logger.warning("Run %s: plan failed validation: %s", run_id, "; ".join(exc.errors))
            raise

        logger.info(
            "Run %s: proposed %s with %d step(s), confidence %.2f",
            run_id,
            proposal.target_artifact,
            len(proposal.steps),
            proposal.confidence,
        )
        return proposal

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def propose(
        self,
        request: OrchestratorInput,
        context: RunContext | None = None,
    ) -> OrchestratorPlanProposal:
        run_id = context.run_id if context is not None else self._new_run_id()
        tools = await self.discover_tools()

        text = await self._generate(
            "orchestrator.propose",
            run_id,
            self.compiler.build_system_prompt(tools),
            self.compiler.build_user_prompt(request),
            self.resolve_api_key(context),
        )
        return self._resolve(tools, run_id, text)

    async def refine(
        self,
        request: OrchestratorRefineInput,
        context: RunContext | None = None,
    ) -> OrchestratorPlanProposal:
        """
        Ask for a complete replacement plan given feedback on the current one.
        Nothing is merged; the new plan keeps the current plan's run id, or
        gets a fresh one when that id carries none.
        """
        run_id = request.current_plan.id.removeprefix(PLAN_ID_PREFIX) or self._new_run_id()
        tools = await self.discover_tools()

        snapshot = serialize_plan_snapshot(request.current_plan, request.current_steps)
        text = await self._generate(
            "orchestrator.refine",
            run_id,
            self.compiler.build_system_prompt(tools),
            self.compiler.build_refinement_prompt(request.original_input, snapshot, request.feedback),
            self.resolve_api_key(context),
        )
        return self._resolve(tools, run_id, text)
