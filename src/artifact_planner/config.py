# config.py
# Planner configuration. The one place environment variables are read;
# everything downstream receives a PlannerConfig explicitly.

import os
from typing import Literal, Mapping

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

from artifact_planner.llm import OPENROUTER_BASE_URL

DEFAULT_MODEL = "qwen/qwen-2.5-72b-instruct"


def _get_bool(environ: Mapping[str, str], name: str, default: str) -> bool:
    return environ.get(name, default).strip().lower() in ("1", "true", "yes", "on")


def _get_str(environ: Mapping[str, str], name: str) -> str | None:
    value = environ.get(name)
    return value if value and value.strip() else None


class PlannerConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    model: str = DEFAULT_MODEL
    temperature: float = Field(default=0.2, ge=0.0, le=2.0)
    max_output_tokens: int = Field(default=4096, gt=0)
    base_url: str = OPENROUTER_BASE_URL
    api_key: str | None = Field(default=None, description="Process-wide fallback key.", repr=False)
    include_examples: bool = True
    max_history_messages: int = Field(default=10, ge=0)
    group_tools_by_type: bool = True
    enable_catalog_cache: bool = True
    trace_mode: Literal["noop", "log", "jsonl"] = "noop"
    trace_path: str = "./traces/planner.jsonl"

    @classmethod
    def from_env(
        cls,
        environ: Mapping[str, str] | None = None,
        dotenv_path: str | None = None,
    ) -> "PlannerConfig":
        """
        Build a config from environment variables.

        When `environ` is omitted, a `.env` file is loaded first (without
        overriding variables already set) and os.environ is read.
        Malformed values raise pydantic.ValidationError.
        """
        if environ is None:
            load_dotenv(dotenv_path)
            environ = os.environ

        values: dict[str, object] = {
            "include_examples": _get_bool(environ, "PLANNER_INCLUDE_EXAMPLES", "true"),
            "group_tools_by_type": _get_bool(environ, "PLANNER_GROUP_TOOLS", "true"),
            "enable_catalog_cache": _get_bool(environ, "PLANNER_CATALOG_CACHE", "true"),
            "api_key": _get_str(environ, "OPENROUTER_API_KEY"),
        }

        model = _get_str(environ, "ORCHESTRATOR_MODEL") or _get_str(environ, "PRODUCT_AGENT_MODEL")
        optional = {
            "model": model,
            "temperature": _get_str(environ, "ORCHESTRATOR_TEMPERATURE"),
            "max_output_tokens": _get_str(environ, "ORCHESTRATOR_MAX_TOKENS"),
            "base_url": _get_str(environ, "OPENROUTER_BASE_URL"),
            "max_history_messages": _get_str(environ, "PLANNER_MAX_HISTORY"),
            "trace_mode": (_get_str(environ, "PLANNER_TRACE_MODE") or "").lower() or None,
            "trace_path": _get_str(environ, "PLANNER_TRACE_PATH"),
        }
        values.update({key: value for key, value in optional.items() if value is not None})
        return cls.model_validate(values)
