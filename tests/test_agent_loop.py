import json
import unittest
from unittest import mock

from agent.agent import (
    Agent,
    AgentCallbacks,
    AgentLoopConfig,
    FALLBACK_SYSTEM_PROMPT,
    build_system_prompt,
    execute_single_turn,
    failure_message,
    run_agent_loop,
)
from agent.exceptions import (
    ConfigError,
    MaxIterationsError,
    PromptTemplateError,
    ProviderConnectionError,
)
from agent.messages import Message, ToolResultBlock, ToolUseBlock, Transcript
from agent.providers import Provider, ToolCapability
from agent.response import ProviderResponse, ToolCall, ToolResult
from tools.executor import ExecutorContext, ToolExecutor
from vaults.memory_store import InMemoryVaultStore

SYSTEM = "You are a test assistant."


class ScriptedNativeProvider(Provider):
    name = "scripted-native"

    def __init__(self, responses):
        super().__init__("test-model", ToolCapability.NATIVE)
        self.responses = list(responses)
        self.calls = []

    async def generate(self, prompt, system=None):
        raise AssertionError("native provider should not receive text prompts")

    async def generate_with_tools(self, transcript, tools, system=None):
        self.calls.append((transcript, system))
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


class ScriptedPromptProvider(Provider):
    name = "scripted-prompt"

    def __init__(self, responses):
        super().__init__("test-model", ToolCapability.PROMPT)
        self.responses = list(responses)
        self.prompts = []
        self.systems = []

    async def generate(self, prompt, system=None):
        self.prompts.append(prompt)
        self.systems.append(system)
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def tool_response(*calls, content=""):
    return ProviderResponse(content=content, tool_calls=tuple(calls), stop_reason="tool_use")


def final_response(text):
    return ProviderResponse(content=text)


def fake_executor(error_for=()):
    executor = mock.Mock()

    async def execute(call):
        if call.name in error_for:
            return ToolResult.fail(call.id, f"{call.name} failed")
        return ToolResult.ok(call.id, {"tool": call.name})

    executor.execute = mock.AsyncMock(side_effect=execute)
    return executor


def tool_block(name, arguments=None):
    payload = json.dumps({"name": name, "arguments": arguments or {}})
    return f"<tool_call>\n{payload}\n</tool_call>"


class TestNativeLoop(unittest.IsolatedAsyncioTestCase):
    async def test_final_answer_is_returned_unmodified(self):
        provider = ScriptedNativeProvider([final_response("  Hello there!  ")])
        done = mock.Mock()
        agent = Agent(
            provider,
            fake_executor(),
            callbacks=AgentCallbacks(on_done=done),
            config=AgentLoopConfig(system_prompt=SYSTEM),
        )

        answer = await agent.run("hi")

        self.assertEqual(answer, "  Hello there!  ")
        done.assert_called_once_with("  Hello there!  ")
        self.assertEqual([m.role for m in agent.transcript], ["user", "assistant"])

    async def test_tool_round_feeds_results_back(self):
        provider = ScriptedNativeProvider([
            tool_response(ToolCall("c1", "list_containers", {}), content="Checking."),
            final_response("You have one vault."),
        ])
        executor = fake_executor()
        agent = Agent(provider, executor, config=AgentLoopConfig(system_prompt=SYSTEM))

        answer = await agent.run("what vaults do I have?")

        self.assertEqual(answer, "You have one vault.")
        executor.execute.assert_awaited_once()
        second_transcript, _ = provider.calls[1]
        assistant, results = second_transcript[1], second_transcript[2]
        self.assertEqual(assistant.role, "assistant")
        self.assertEqual(assistant.text, "Checking.")
        self.assertIsInstance(assistant.content[1], ToolUseBlock)
        self.assertEqual(results.role, "tool_result")
        block = results.content[0]
        self.assertEqual(block.tool_use_id, "c1")
        self.assertEqual(json.loads(block.content), {"tool": "list_containers"})
        self.assertFalse(block.is_error)

    async def test_failed_tool_is_reported_as_error_block(self):
        provider = ScriptedNativeProvider([
            tool_response(ToolCall("c1", "get_item", {"item_id": "9"})),
            final_response("That item does not exist."),
        ])
        agent = Agent(
            provider,
            fake_executor(error_for=("get_item",)),
            config=AgentLoopConfig(system_prompt=SYSTEM),
        )

        await agent.run("open item 9")

        block = provider.calls[1][0][2].content[0]
        self.assertTrue(block.is_error)
        self.assertEqual(json.loads(block.content), {"error": "get_item failed"})

    async def test_calls_run_sequentially_in_model_order(self):
        order = []
        provider = ScriptedNativeProvider([
            tool_response(
                ToolCall("c1", "list_containers", {}),
                ToolCall("c2", "search_items", {"query": "x"}),
                ToolCall("c3", "get_item", {"item_id": "1"}),
            ),
            final_response("done"),
        ])
        callbacks = AgentCallbacks(
            on_tool_call=lambda call: order.append(("call", call.id)),
            on_tool_result=lambda call, result: order.append(("result", call.id)),
        )
        agent = Agent(provider, fake_executor(), callbacks=callbacks,
                      config=AgentLoopConfig(system_prompt=SYSTEM))

        await agent.run("go")

        self.assertEqual(order, [
            ("call", "c1"), ("result", "c1"),
            ("call", "c2"), ("result", "c2"),
            ("call", "c3"), ("result", "c3"),
        ])

    async def test_iteration_bound(self):
        provider = ScriptedNativeProvider([
            tool_response(ToolCall(f"c{i}", "list_containers", {})) for i in range(5)
        ])
        on_error = mock.Mock()
        agent = Agent(
            provider,
            fake_executor(),
            callbacks=AgentCallbacks(on_error=on_error),
            config=AgentLoopConfig(max_iterations=3, system_prompt=SYSTEM),
        )

        with self.assertRaises(MaxIterationsError) as ctx:
            await agent.run("loop forever")

        self.assertEqual(len(provider.calls), 3)
        self.assertEqual(ctx.exception.max_iterations, 3)
        self.assertEqual(str(ctx.exception), "Agent loop reached maximum iterations")
        on_error.assert_called_once_with(ctx.exception)

    async def test_provider_error_aborts_the_run(self):
        error = ProviderConnectionError("API error: 500 - boom")
        provider = ScriptedNativeProvider([error])
        on_error = mock.Mock()
        executor = fake_executor()
        agent = Agent(provider, executor, callbacks=AgentCallbacks(on_error=on_error),
                      config=AgentLoopConfig(system_prompt=SYSTEM))

        with self.assertRaises(ProviderConnectionError):
            await agent.run("hi")

        on_error.assert_called_once_with(error)
        executor.execute.assert_not_awaited()

    async def test_system_prompt_lists_tools(self):
        provider = ScriptedNativeProvider([final_response("ok")])
        agent = Agent(provider, fake_executor(), config=AgentLoopConfig(system_prompt=SYSTEM))

        await agent.run("hi")

        system = provider.calls[0][1]
        self.assertTrue(system.startswith(SYSTEM + "\n\nAvailable tools:\n"))
        self.assertIn("- search_items: ", system)
        self.assertNotIn("<tool_call>", system)

    async def test_history_is_not_mutated(self):
        history = Transcript().extend([Message("user", "earlier"), Message("assistant", "reply")])
        provider = ScriptedNativeProvider([final_response("ok")])
        agent = Agent(provider, fake_executor(),
                      config=AgentLoopConfig(system_prompt=SYSTEM, conversation_history=history))

        await agent.run("now")

        self.assertEqual(len(history), 2)
        self.assertEqual(len(agent.transcript), 4)
        self.assertEqual(provider.calls[0][0][0].text, "earlier")

    async def test_async_callbacks_are_awaited(self):
        seen = []

        async def on_message(role, text):
            seen.append((role, text))

        provider = ScriptedNativeProvider([final_response("ok")])
        agent = Agent(provider, fake_executor(), callbacks=AgentCallbacks(on_message=on_message),
                      config=AgentLoopConfig(system_prompt=SYSTEM))

        await agent.run("hi")

        self.assertEqual(seen, [("user", "hi"), ("assistant", "ok")])

    def test_max_iterations_must_be_positive(self):
        with self.assertRaises(ConfigError):
            Agent(ScriptedNativeProvider([]), fake_executor(), config=AgentLoopConfig(max_iterations=0))


class TestPromptLoop(unittest.IsolatedAsyncioTestCase):
    async def test_plain_text_is_the_final_answer(self):
        provider = ScriptedPromptProvider(["Just chatting."])
        answer = await run_agent_loop(
            "hello", provider, fake_executor(), config=AgentLoopConfig(system_prompt=SYSTEM)
        )
        self.assertEqual(answer, "Just chatting.")
        self.assertEqual(provider.prompts, ["User: hello"])

    async def test_system_prompt_carries_tool_instructions(self):
        provider = ScriptedPromptProvider(["ok"])
        await run_agent_loop("hi", provider, fake_executor(),
                             config=AgentLoopConfig(system_prompt=SYSTEM))
        system = provider.systems[0]
        self.assertIn("Available tools:\n- list_containers: ", system)
        self.assertIn("To use a tool, respond with this EXACT format", system)

    async def test_tool_results_become_the_next_prompt(self):
        provider = ScriptedPromptProvider([
            "Let me check.\n" + tool_block("list_containers"),
            "You have one vault.",
        ])
        answer = await run_agent_loop(
            "what vaults?", provider, fake_executor(), config=AgentLoopConfig(system_prompt=SYSTEM)
        )

        self.assertEqual(answer, "You have one vault.")
        self.assertEqual(provider.prompts[1], (
            "Previous conversation:\n"
            "User: what vaults?\n\n"
            "Assistant: Let me check.\n\n"
            "User: Tool results:\n"
            'Tool "list_containers" result: {"tool": "list_containers"}\n\n'
            "Please continue based on these results."
        ))

    async def test_tool_errors_are_reported_inline(self):
        provider = ScriptedPromptProvider([
            tool_block("get_item", {"item_id": "9"}),
            "Not found.",
        ])
        await run_agent_loop("open 9", provider, fake_executor(error_for=("get_item",)),
                             config=AgentLoopConfig(system_prompt=SYSTEM))

        self.assertIn("Assistant: (executing tools)", provider.prompts[1])
        self.assertIn('Tool "get_item" result: Error: get_item failed', provider.prompts[1])

    async def test_history_is_folded_into_the_prompt(self):
        history = Transcript().extend([
            Message("user", "remember the milk"),
            Message("assistant", (ToolUseBlock("t1", "create_item", {}),)),
            Message("tool_result", (ToolResultBlock("t1", "{}"),)),
            Message("assistant", "Saved."),
        ])
        provider = ScriptedPromptProvider(["Sure."])
        agent = Agent(provider, fake_executor(),
                      config=AgentLoopConfig(system_prompt=SYSTEM, conversation_history=history))

        await agent.run("thanks")

        self.assertEqual(provider.prompts[0], (
            "Previous conversation:\n"
            "User: remember the milk\n\n"
            "Assistant: Saved.\n\n"
            "User: thanks"
        ))
        self.assertEqual(agent.transcript[-1].text, "Sure.")
        self.assertEqual(len(agent.transcript), 6)

    async def test_malformed_block_only_returns_raw_text(self):
        raw = "<tool_call>{broken</tool_call>"
        provider = ScriptedPromptProvider([raw])
        executor = fake_executor()
        answer = await run_agent_loop("x", provider, executor,
                                      config=AgentLoopConfig(system_prompt=SYSTEM))
        self.assertEqual(answer, raw)
        executor.execute.assert_not_awaited()

    async def test_iteration_bound(self):
        provider = ScriptedPromptProvider([tool_block("list_containers")] * 4)
        with self.assertRaises(MaxIterationsError):
            await run_agent_loop("x", provider, fake_executor(),
                                 config=AgentLoopConfig(max_iterations=2, system_prompt=SYSTEM))
        self.assertEqual(len(provider.prompts), 2)

    async def test_provider_error_propagates(self):
        provider = ScriptedPromptProvider([ProviderConnectionError("down")])
        errors = []
        with self.assertRaises(ProviderConnectionError):
            await run_agent_loop("x", provider, fake_executor(),
                                 callbacks=AgentCallbacks(on_error=errors.append),
                                 config=AgentLoopConfig(system_prompt=SYSTEM))
        self.assertEqual(len(errors), 1)


class TestSingleTurn(unittest.IsolatedAsyncioTestCase):
    async def test_returns_answer_and_tools_used(self):
        provider = ScriptedNativeProvider([
            tool_response(ToolCall("c1", "search_items", {"query": "tax"})),
            final_response("Found it."),
        ])
        answer, used = await execute_single_turn(
            "find tax", provider, fake_executor(), config=AgentLoopConfig(system_prompt=SYSTEM)
        )
        self.assertEqual(answer, "Found it.")
        self.assertEqual([c.name for c in used], ["search_items"])

    async def test_bounded_to_three_rounds(self):
        provider = ScriptedNativeProvider([
            tool_response(ToolCall(f"c{i}", "list_containers", {})) for i in range(10)
        ])
        with self.assertRaises(MaxIterationsError) as ctx:
            await execute_single_turn("x", provider, fake_executor(),
                                      config=AgentLoopConfig(system_prompt=SYSTEM))
        self.assertEqual(ctx.exception.max_iterations, 3)
        self.assertEqual(len(provider.calls), 3)


class TestEndToEnd(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.store = InMemoryVaultStore()
        self.inbox = self.store.add_vault("Inbox")
        self.note = self.store.seed_item(self.inbox.id, "Old draft", "obsolete")

        async def get_key(container_id, name, is_protected):
            return self.store.key_for(container_id)

        self.confirm = mock.AsyncMock(return_value=False)
        self.changes = mock.Mock()
        self.executor = ToolExecutor(self.store, ExecutorContext(
            get_key=get_key,
            list_containers=self.store.containers,
            confirm=self.confirm,
            on_data_change=self.changes,
        ))

    async def test_native_list_my_containers(self):
        provider = ScriptedNativeProvider([
            tool_response(ToolCall("c1", "list_containers", {})),
            final_response("You have one vault: Inbox, with 1 item."),
        ])
        callbacks = AgentCallbacks(
            on_tool_call=mock.Mock(),
            on_tool_result=mock.Mock(),
            on_done=mock.Mock(),
        )

        answer = await run_agent_loop("list my containers", provider, self.executor,
                                      callbacks=callbacks,
                                      config=AgentLoopConfig(system_prompt=SYSTEM))

        self.assertEqual(answer, "You have one vault: Inbox, with 1 item.")
        callbacks.on_tool_call.assert_called_once()
        self.assertEqual(callbacks.on_tool_call.call_args.args[0].name, "list_containers")
        callbacks.on_tool_result.assert_called_once()
        result = callbacks.on_tool_result.call_args.args[1]
        self.assertTrue(result.success)
        self.assertEqual(result.result, [
            {"id": self.inbox.id, "name": "Inbox", "item_count": 1, "is_protected": False},
        ])
        callbacks.on_done.assert_called_once_with("You have one vault: Inbox, with 1 item.")

    async def test_native_create_item(self):
        provider = ScriptedNativeProvider([
            tool_response(ToolCall("c1", "create_item", {
                "container_id": self.inbox.id, "title": "Groceries", "content": "milk, eggs",
            })),
            final_response('Saved "Groceries" to Inbox.'),
        ])

        answer = await run_agent_loop("save my grocery list", provider, self.executor,
                                      config=AgentLoopConfig(system_prompt=SYSTEM))

        self.assertEqual(answer, 'Saved "Groceries" to Inbox.')
        items = await self.store.list_items(self.inbox.id, self.store.key_for(self.inbox.id))
        self.assertEqual([i.title for i in items], ["Old draft", "Groceries"])
        self.changes.assert_called_once()

    async def test_prompt_delete_declined(self):
        provider = ScriptedPromptProvider([
            tool_block("delete_item", {"item_id": self.note.id}),
            "Okay, I left it alone.",
        ])

        answer = await run_agent_loop("delete the old draft", provider, self.executor,
                                      config=AgentLoopConfig(system_prompt=SYSTEM))

        self.assertEqual(answer, "Okay, I left it alone.")
        self.confirm.assert_awaited_once()
        self.assertIn("Error: Action cancelled by user", provider.prompts[1])
        items = await self.store.list_items(self.inbox.id, self.store.key_for(self.inbox.id))
        self.assertEqual(len(items), 1)

    async def test_unknown_tool_is_fed_back(self):
        provider = ScriptedNativeProvider([
            tool_response(ToolCall("c1", "format_disk", {})),
            final_response("I can't do that."),
        ])

        await run_agent_loop("wipe it", provider, self.executor,
                             config=AgentLoopConfig(system_prompt=SYSTEM))

        block = provider.calls[1][0][2].content[0]
        self.assertTrue(block.is_error)
        self.assertEqual(json.loads(block.content), {"error": "Unknown tool: format_disk"})


class TestSystemPrompt(unittest.TestCase):
    def test_default_profile_renders_includes(self):
        prompt = build_system_prompt()
        self.assertIn("Current time: ", prompt)
        self.assertNotIn("{{", prompt)

    def test_missing_profile_falls_back(self):
        self.assertEqual(build_system_prompt("no-such-profile"), FALLBACK_SYSTEM_PROMPT)

    def test_template_error_falls_back(self):
        with mock.patch("agent.agent.PromptTemplateEngine", side_effect=PromptTemplateError("x")):
            self.assertEqual(build_system_prompt(), FALLBACK_SYSTEM_PROMPT)


def test_failure_message_mentions_the_bound():
    text = failure_message(MaxIterationsError(10))
    assert text.startswith("Sorry")
    assert "10 steps" in text


def test_failure_message_for_provider_errors():
    text = failure_message(ProviderConnectionError("down"))
    assert text == "Sorry, something went wrong while talking to the model: down"
