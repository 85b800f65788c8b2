"""Agent loop: drives the model through tool calls until it produces an answer."""

from __future__ import annotations

import inspect
import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

from agent.exceptions import ConfigError, MaxIterationsError, PromptTemplateError
from agent.messages import Message, TextBlock, ToolResultBlock, ToolUseBlock, Transcript
from agent.output_parser import ToolCallParser
from agent.providers import Provider, ToolCapability
from agent.response import ToolCall, ToolResult
from prompts.template_engine import PromptTemplateEngine
from tools.catalog import ToolCatalog
from tools.executor import ToolExecutor

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITERATIONS = 10
SINGLE_TURN_MAX_ITERATIONS = 3

FALLBACK_SYSTEM_PROMPT = (
    "You are a practical, trustworthy assistant for personal knowledge management. "
    "Use the available tools to read, write, search, and act on vaults. "
    "Never claim actions you did not take, and state what changed when you act."
)


def build_system_prompt(profile: str = "default") -> str:
    """Render the system prompt for a profile, falling back to a built-in one."""
    try:
        engine = PromptTemplateEngine(profile)
        return engine.render("agent.system.main.md", {
            "current_time": datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC"),
        })
    except PromptTemplateError as e:
        logger.warning("System prompt template unavailable (%s); using built-in prompt", e)
        return FALLBACK_SYSTEM_PROMPT


@dataclass
class AgentCallbacks:
    """Progress notifications. Each may be a plain function or a coroutine function."""
    on_message: Callable[[str, str], Any] | None = None
    on_tool_call: Callable[[ToolCall], Any] | None = None
    on_tool_result: Callable[[ToolCall, ToolResult], Any] | None = None
    on_done: Callable[[str], Any] | None = None
    on_error: Callable[[Exception], Any] | None = None


@dataclass
class AgentLoopConfig:
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    catalog: ToolCatalog = field(default_factory=ToolCatalog)
    system_prompt: str | None = None
    prompt_profile: str = "default"
    conversation_history: Transcript = field(default_factory=Transcript)


class Agent:
    """
    One conversation's tool-calling loop.

    The provider's capability is read once per run and selects the flavor:
    NATIVE providers exchange structured tool_use/tool_result blocks, PROMPT
    providers get tool instructions in the system prompt and answer with
    <tool_call> blocks parsed from their text. Tool calls in a round always
    run sequentially, in the order the model listed them.
    """

    def __init__(
        self,
        provider: Provider,
        executor: ToolExecutor,
        callbacks: AgentCallbacks | None = None,
        config: AgentLoopConfig | None = None,
        telemetry=None,
        parser: ToolCallParser | None = None,
    ):
        self.provider = provider
        self.executor = executor
        self.callbacks = callbacks or AgentCallbacks()
        self.config = config or AgentLoopConfig()
        self.telemetry = telemetry
        self.parser = parser or ToolCallParser()
        self.transcript: Transcript = self.config.conversation_history
        self._base_prompt: str | None = None

        if self.config.max_iterations < 1:
            raise ConfigError("max_iterations must be >= 1")

    async def run(self, user_message: str) -> str:
        """Run the loop for one user message and return the final answer."""
        capability = self.provider.capability
        logger.info(
            "Agent run started (provider=%s, flavor=%s, max_iterations=%d)",
            self.provider.name, capability.value, self.config.max_iterations,
        )
        if capability is ToolCapability.NATIVE:
            return await self._run_native(user_message)
        return await self._run_prompt(user_message)

    # ── Native flavor ────────────────────────────────────────────────

    async def _run_native(self, user_message: str) -> str:
        catalog = self.config.catalog
        summary = catalog.to_tool_summary()
        system = self.base_prompt
        if summary:
            system = f"{system}\n\nAvailable tools:\n{summary}"

        transcript = self.transcript.append(Message("user", user_message))
        self.transcript = transcript
        await self._emit(self.callbacks.on_message, "user", user_message)

        for iteration in range(1, self.config.max_iterations + 1):
            started = time.monotonic()
            try:
                response = await self.provider.generate_with_tools(transcript, catalog, system)
            except Exception as e:
                self._record_provider_call("native", started, 0, error=str(e))
                await self._fail(e)
                raise
            self._record_provider_call("native", started, len(response.tool_calls))

            if not response.has_tool_calls:
                final = response.content
                self.transcript = transcript.append(Message("assistant", final))
                self._record_iteration(iteration, "final", started)
                await self._finish(final)
                return final

            blocks: list = []
            if response.content:
                blocks.append(TextBlock(response.content))
            for call in response.tool_calls:
                blocks.append(ToolUseBlock(call.id, call.name, dict(call.arguments)))
            transcript = transcript.append(Message("assistant", tuple(blocks)))

            result_blocks = []
            for call, result in await self._execute_calls(response.tool_calls):
                result_blocks.append(ToolResultBlock(
                    tool_use_id=call.id,
                    content=json.dumps(result.payload(), default=str),
                    is_error=not result.success,
                ))
            transcript = transcript.append(Message("tool_result", tuple(result_blocks)))
            self.transcript = transcript
            self._record_iteration(
                iteration, "tools:" + ",".join(c.name for c in response.tool_calls), started
            )

        return await self._exhausted()

    # ── Prompt fallback flavor ───────────────────────────────────────

    async def _run_prompt(self, user_message: str) -> str:
        catalog = self.config.catalog
        summary = catalog.to_tool_summary()
        tool_prompt = catalog.to_prompt_tools()
        if summary:
            system = f"{self.base_prompt}\n\nAvailable tools:\n{summary}\n\n{tool_prompt}"
        else:
            system = f"{self.base_prompt}\n\n{tool_prompt}"

        base_history = [
            f"{'User' if role == 'user' else 'Assistant'}: {text}"
            for role, text in self.transcript.plain_turns()
        ]
        tool_loop_history: list[str] = []
        current_prompt = user_message

        await self._emit(self.callbacks.on_message, "user", user_message)

        for iteration in range(1, self.config.max_iterations + 1):
            prompt = self.build_prompt(base_history + tool_loop_history, current_prompt)

            started = time.monotonic()
            try:
                response = await self.provider.generate(prompt, system)
            except Exception as e:
                self._record_provider_call("prompt", started, 0, error=str(e))
                await self._fail(e)
                raise

            parsed = self.parser.parse(response)
            self._record_provider_call("prompt", started, len(parsed.tool_calls))
            if parsed.dropped:
                logger.info("Ignored %d malformed tool_call block(s)", parsed.dropped)

            if not parsed.tool_calls:
                final = parsed.text or response
                self.transcript = self.transcript.extend([
                    Message("user", user_message),
                    Message("assistant", final),
                ])
                self._record_iteration(iteration, "final", started)
                await self._finish(final)
                return final

            lines = []
            for call, result in await self._execute_calls(parsed.tool_calls):
                if result.success:
                    outcome = json.dumps(result.result, default=str)
                else:
                    outcome = f"Error: {result.error}"
                lines.append(f'Tool "{call.name}" result: {outcome}')

            tool_loop_history.append(f"User: {current_prompt}")
            tool_loop_history.append(f"Assistant: {parsed.text or '(executing tools)'}")
            current_prompt = (
                "Tool results:\n" + "\n".join(lines) + "\n\nPlease continue based on these results."
            )
            self._record_iteration(
                iteration, "tools:" + ",".join(c.name for c in parsed.tool_calls), started
            )

        return await self._exhausted()

    @staticmethod
    def build_prompt(history: list[str], current_prompt: str) -> str:
        """Fold plain-text history and the current turn into one prompt."""
        context = ""
        if history:
            context = "Previous conversation:\n" + "\n\n".join(history) + "\n\n"
        return f"{context}User: {current_prompt}"

    # ── Shared pieces ────────────────────────────────────────────────

    @property
    def base_prompt(self) -> str:
        if self._base_prompt is None:
            self._base_prompt = self.config.system_prompt or build_system_prompt(
                self.config.prompt_profile
            )
        return self._base_prompt

    async def _execute_calls(self, calls) -> list[tuple[ToolCall, ToolResult]]:
        results = []
        for call in calls:
            await self._emit(self.callbacks.on_tool_call, call)
            result = await self.executor.execute(call)
            await self._emit(self.callbacks.on_tool_result, call, result)
            results.append((call, result))
        return results

    async def _finish(self, final: str) -> None:
        logger.info("Agent run finished with a final answer (%d chars)", len(final))
        if self.telemetry is not None:
            self.telemetry.finalize("final_answer")
        await self._emit(self.callbacks.on_message, "assistant", final)
        await self._emit(self.callbacks.on_done, final)

    async def _exhausted(self) -> str:
        error = MaxIterationsError(self.config.max_iterations)
        logger.warning("Agent run stopped after %d iterations", self.config.max_iterations)
        if self.telemetry is not None:
            self.telemetry.finalize("max_iterations")
        await self._emit(self.callbacks.on_error, error)
        raise error

    async def _fail(self, error: Exception) -> None:
        logger.error("Provider call failed: %s", error)
        if self.telemetry is not None:
            self.telemetry.finalize("provider_error")
        await self._emit(self.callbacks.on_error, error)

    @staticmethod
    async def _emit(callback, *args) -> None:
        if callback is None:
            return
        outcome = callback(*args)
        if inspect.isawaitable(outcome):
            await outcome

    def _record_provider_call(self, flavor: str, started: float, tool_calls: int, error: str | None = None):
        if self.telemetry is None:
            return
        self.telemetry.record_provider_call(
            provider=self.provider.name,
            model=getattr(self.provider, "model", ""),
            flavor=flavor,
            latency_ms=(time.monotonic() - started) * 1000,
            tool_calls=tool_calls,
            error=error,
        )

    def _record_iteration(self, iteration: int, decision: str, started: float) -> None:
        logger.debug("Round %d: %s", iteration, decision)
        if self.telemetry is None:
            return
        self.telemetry.record_iteration(
            iteration=iteration,
            decision=decision,
            duration_ms=(time.monotonic() - started) * 1000,
        )


async def run_agent_loop(
    user_message: str,
    provider: Provider,
    executor: ToolExecutor,
    callbacks: AgentCallbacks | None = None,
    config: AgentLoopConfig | None = None,
) -> str:
    """Run one agent loop, picking the flavor from the provider's capability."""
    agent = Agent(provider, executor, callbacks=callbacks, config=config)
    return await agent.run(user_message)


async def execute_single_turn(
    user_message: str,
    provider: Provider,
    executor: ToolExecutor,
    config: AgentLoopConfig | None = None,
) -> tuple[str, list[ToolCall]]:
    """Short run for quick actions. Returns the answer and the tools it used."""
    tools_used: list[ToolCall] = []
    base = config or AgentLoopConfig()
    single = AgentLoopConfig(
        max_iterations=SINGLE_TURN_MAX_ITERATIONS,
        catalog=base.catalog,
        system_prompt=base.system_prompt,
        prompt_profile=base.prompt_profile,
        conversation_history=base.conversation_history,
    )
    callbacks = AgentCallbacks(on_tool_call=tools_used.append)
    response = await run_agent_loop(user_message, provider, executor, callbacks, single)
    return response, tools_used


def failure_message(error: Exception) -> str:
    """User-facing text for a run that ended without an answer."""
    if isinstance(error, MaxIterationsError):
        return (
            "Sorry, I couldn't finish that within "
            f"{error.max_iterations} steps. Try breaking the request into smaller parts."
        )
    return f"Sorry, something went wrong while talking to the model: {error}"
