"""
OpenAI tool-calling agent.

Runs a chat-completions loop: the model may call the allow-listed scheduling
tools, their text results are fed back, and the loop ends when the model
answers with plain text or the step budget is spent.
"""

import asyncio
from typing import Any, Protocol

import openai
from openai import AsyncOpenAI

from inbox_scheduler.config import settings
from inbox_scheduler.errors import AgentError
from inbox_scheduler.infrastructure.observability.logging import get_logger
from inbox_scheduler.services.agent.profiles import AgentProfile
from inbox_scheduler.services.scheduling.tools import SchedulingTools, openai_tool_specs

logger = get_logger(__name__)


class SchedulingAgent(Protocol):
    async def generate(
        self,
        prompt: str,
        *,
        profile: AgentProfile,
        tools: SchedulingTools,
        context: dict[str, Any],
    ) -> str: ...


class OpenAIAgentRunner:
    """Scheduling agent backed by OpenAI chat completions with function calling."""

    def __init__(
        self,
        client: AsyncOpenAI | None = None,
        max_steps: int | None = None,
        max_retries: int | None = None,
    ):
        self._client = client
        self.max_steps = max_steps or settings.AGENT_MAX_STEPS
        self.max_retries = max_retries or settings.OPENAI_MAX_RETRIES

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            if not settings.OPENAI_API_KEY:
                raise AgentError("OPENAI_API_KEY not configured", recoverable=False)
            self._client = AsyncOpenAI(
                api_key=settings.OPENAI_API_KEY, timeout=settings.OPENAI_TIMEOUT_SECONDS
            )
            logger.info("OpenAI client initialized", timeout=settings.OPENAI_TIMEOUT_SECONDS)
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()

    async def _create_with_retry(self, **request):
        """Call chat completions, retrying rate limits, timeouts and server errors."""
        last_error: Exception | None = None

        for attempt in range(self.max_retries):
            try:
                return await self._get_client().chat.completions.create(**request)

            except openai.RateLimitError as e:
                last_error = e
                wait_time = min(2**attempt, 30)
                logger.warning(
                    "OpenAI rate limit hit, retrying",
                    attempt=attempt + 1,
                    wait_time=wait_time,
                    error=str(e),
                )
                if attempt < self.max_retries - 1:
                    await asyncio.sleep(wait_time)

            except openai.APITimeoutError as e:
                last_error = e
                logger.warning("OpenAI API timeout, retrying", attempt=attempt + 1, error=str(e))

            except openai.APIStatusError as e:
                last_error = e
                if 400 <= e.status_code < 500:
                    logger.error(
                        "OpenAI client error (not retrying)", status_code=e.status_code, error=str(e)
                    )
                    break
                logger.warning("OpenAI API error, retrying", attempt=attempt + 1, error=str(e))

            except openai.APIError as e:
                last_error = e
                logger.warning("OpenAI API error, retrying", attempt=attempt + 1, error=str(e))

        logger.error(
            "OpenAI API call failed after all retries",
            max_retries=self.max_retries,
            final_error=str(last_error),
        )
        raise AgentError(f"Language model unavailable: {last_error}") from last_error

    async def generate(
        self,
        prompt: str,
        *,
        profile: AgentProfile,
        tools: SchedulingTools,
        context: dict[str, Any],
    ) -> str:
        """
        Produce the reply body for ``prompt``.

        Raises:
            AgentError: The model failed or produced no answer within the step budget
        """
        messages: list[dict[str, Any]] = [
            {"role": "system", "content": profile.render_instructions(**context)},
            {"role": "user", "content": prompt},
        ]
        tool_specs = openai_tool_specs(profile.tool_allowlist)

        for step in range(1, self.max_steps + 1):
            request: dict[str, Any] = {
                "model": profile.model,
                "messages": messages,
                "max_tokens": settings.OPENAI_MAX_TOKENS,
                "temperature": settings.OPENAI_TEMPERATURE,
            }
            if tool_specs:
                request["tools"] = tool_specs
                # Last step must answer in text
                request["tool_choice"] = "none" if step == self.max_steps else "auto"

            response = await self._create_with_retry(**request)
            if not response.choices:
                raise AgentError("Empty response from language model")

            message = response.choices[0].message
            tool_calls = message.tool_calls or []

            if not tool_calls:
                content = (message.content or "").strip()
                if not content:
                    raise AgentError("Language model returned an empty reply")
                logger.info("Agent reply generated", profile=profile.name.value, steps=step)
                return content

            messages.append(
                {
                    "role": "assistant",
                    "content": message.content,
                    "tool_calls": [
                        {
                            "id": call.id,
                            "type": "function",
                            "function": {
                                "name": call.function.name,
                                "arguments": call.function.arguments,
                            },
                        }
                        for call in tool_calls
                    ],
                }
            )

            for call in tool_calls:
                if call.function.name not in profile.tool_allowlist:
                    result = f"Error: tool '{call.function.name}' is not available"
                else:
                    result = await tools.dispatch(call.function.name, call.function.arguments)
                messages.append({"role": "tool", "tool_call_id": call.id, "content": result})

        raise AgentError(f"Agent did not finish within {self.max_steps} steps")
