# llm.py
# Model call adapter. The planner sees a text-in/text-out function; this
# module is the only place that knows it is an OpenAI-compatible endpoint.

import logging
from typing import Protocol

from openai import AsyncOpenAI, OpenAIError
from pydantic import BaseModel

logger = logging.getLogger(__name__)

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"


class UpstreamCallError(Exception):
    """Raised when the model endpoint cannot be reached or rejects the call."""


class ModelRequest(BaseModel):
    system_prompt: str
    user_prompt: str
    max_output_tokens: int
    temperature: float
    model: str


class Usage(BaseModel):
    input_tokens: int | None = None
    output_tokens: int | None = None
    total_tokens: int | None = None


class ModelResponse(BaseModel):
    text: str
    usage: Usage | None = None
    model: str | None = None


class ModelClient(Protocol):
    async def complete(self, request: ModelRequest) -> ModelResponse: ...

    async def aclose(self) -> None: ...


class OpenRouterClient:
    """
    Chat-completions client for OpenRouter (or any OpenAI-compatible URL).

    One request, one response. No retries or backoff: a failing call is
    surfaced to the caller as UpstreamCallError.
    """

    def __init__(self, api_key: str | None, base_url: str = OPENROUTER_BASE_URL) -> None:
        try:
            self._client = AsyncOpenAI(base_url=base_url, api_key=api_key)
        except OpenAIError as exc:
            raise UpstreamCallError(f"Cannot create model client: {exc}") from exc

    async def complete(self, request: ModelRequest) -> ModelResponse:
        messages = [
            {"role": "system", "content": request.system_prompt},
            {"role": "user", "content": request.user_prompt},
        ]
        try:
            response = await self._client.chat.completions.create(
                model=request.model,
                messages=messages,
                temperature=request.temperature,
                max_tokens=request.max_output_tokens,
            )
        except OpenAIError as exc:
            raise UpstreamCallError(f"Model call to {request.model} failed: {exc}") from exc

        if not response.choices:
            raise UpstreamCallError(f"Model call to {request.model} returned no choices")

        usage = None
        if response.usage is not None:
            usage = Usage(
                input_tokens=response.usage.prompt_tokens,
                output_tokens=response.usage.completion_tokens,
                total_tokens=response.usage.total_tokens,
            )
        text = (response.choices[0].message.content or "").strip()
        logger.debug("Model %s returned %d characters", request.model, len(text))
        return ModelResponse(text=text, usage=usage, model=response.model)

    async def aclose(self) -> None:
        await self._client.close()
