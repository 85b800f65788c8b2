"""Interactive CLI for Vault Agents."""

import asyncio
import getpass
import json
import logging
import uuid
from typing import Callable

from agent.agent import Agent, AgentCallbacks, AgentLoopConfig, failure_message
from agent.config import AgentConfig
from agent.exceptions import AgentError, ProviderError
from agent.messages import Transcript
from agent.models import OllamaClient
from agent.providers import OllamaProvider, Provider, create_provider
from agent.response import ToolCall, ToolResult
from agent.telemetry import Telemetry
from tools.catalog import ToolCatalog
from tools.executor import ExecutorContext, ToolExecutor
from tools.web import WebFetcher
from vaults.memory_store import InMemoryVaultStore

logger = logging.getLogger(__name__)

# ANSI color codes
RESET = "\033[0m"
BOLD = "\033[1m"
DIM = "\033[2m"
CYAN = "\033[36m"
GREEN = "\033[32m"
YELLOW = "\033[33m"
RED = "\033[31m"

RESULT_PREVIEW_CHARS = 300


class KeyCache:
    """Vault keys for this session, asked for at most once per vault."""

    def __init__(self, store: InMemoryVaultStore, prompt: Callable[[str], str] = getpass.getpass):
        self.store = store
        self.prompt = prompt
        self._keys: dict[str, str] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    async def get_key(self, container_id: str, name: str | None, is_protected: bool) -> str:
        lock = self._locks.setdefault(container_id, asyncio.Lock())
        async with lock:
            if container_id in self._keys:
                return self._keys[container_id]
            password = ""
            if is_protected:
                password = self.prompt(f"Password for vault '{name or container_id}': ")
            # A wrong password raises and is not cached, so the next call asks again
            key = self.store.key_for(container_id, password)
            self._keys[container_id] = key
            return key

    def clear(self) -> None:
        self._keys.clear()


class CLIApp:
    """Interactive REPL that keeps one conversation transcript across turns."""

    def __init__(self, config: AgentConfig, provider: Provider | None = None,
                 store: InMemoryVaultStore | None = None):
        self.config = config
        self.provider = provider or create_provider(config)
        self.store = store or self._load_store()
        self.keys = KeyCache(self.store)
        self.transcript = Transcript()
        self.session_id = uuid.uuid4().hex[:12]
        self.telemetry = Telemetry(config.telemetry, self.session_id)
        self.executor = ToolExecutor(
            self.store,
            ExecutorContext(
                get_key=self.keys.get_key,
                list_containers=self.store.containers,
                confirm=self._confirm,
                on_data_change=self._on_data_change,
            ),
            fetcher=WebFetcher(
                connect_timeout=config.http.connect_timeout,
                read_timeout=config.http.read_timeout,
            ),
            settings=config.tools,
            telemetry=self.telemetry,
        )

    async def run(self):
        """Main REPL loop."""
        self._print_banner()

        if not await self._preflight():
            return

        print()
        while True:
            try:
                user_input = input(f"{BOLD}You:{RESET} ").strip()
            except (EOFError, KeyboardInterrupt):
                print(f"\n{DIM}Goodbye!{RESET}")
                break

            if not user_input:
                continue

            command = user_input.lower()
            if command in ("exit", "quit", "/exit", "/quit"):
                print(f"{DIM}Goodbye!{RESET}")
                break
            if command in ("reset", "/reset", "/new"):
                self.reset()
                print(f"{DIM}[Conversation reset]{RESET}")
                continue
            if command in ("help", "/help"):
                self._print_help()
                continue

            print()
            answer = await self.ask(user_input)
            print(f"\n{BOLD}{GREEN}Assistant:{RESET} {answer}")
            print()

    async def ask(self, user_input: str) -> str:
        """Run one turn; errors come back as an apologetic message."""
        agent = Agent(
            self.provider,
            self.executor,
            callbacks=AgentCallbacks(
                on_tool_call=self._print_tool_call,
                on_tool_result=self._print_tool_result,
            ),
            config=AgentLoopConfig(
                max_iterations=self.config.agent.max_iterations,
                catalog=self.executor.catalog,
                system_prompt=self.config.agent.system_prompt or None,
                prompt_profile=self.config.agent.prompt_profile,
                conversation_history=self.transcript,
            ),
            telemetry=self.telemetry,
        )
        try:
            answer = await agent.run(user_input)
        except AgentError as e:
            logger.error("Turn failed: %s: %s", type(e).__name__, e)
            return f"{failure_message(e)}\n{RED}[{type(e).__name__}: {e}]{RESET}"
        self.transcript = agent.transcript
        return answer

    def reset(self) -> None:
        self.transcript = Transcript()
        self.keys.clear()

    # ── Executor callbacks ───────────────────────────────────────────

    async def _confirm(self, message: str) -> bool:
        try:
            answer = input(f"{YELLOW}{message} [y/N]{RESET} ").strip().lower()
        except (EOFError, KeyboardInterrupt):
            return False
        return answer in ("y", "yes")

    def _on_data_change(self) -> None:
        logger.debug("Vault data changed")

    # ── Output ───────────────────────────────────────────────────────

    @staticmethod
    def _print_tool_call(call: ToolCall) -> None:
        args = json.dumps(dict(call.arguments), default=str)
        print(f"{DIM}[tool] {call.name} {args}{RESET}")

    @staticmethod
    def _print_tool_result(call: ToolCall, result: ToolResult) -> None:
        if result.success:
            preview = json.dumps(result.result, default=str)
            if len(preview) > RESULT_PREVIEW_CHARS:
                preview = preview[:RESULT_PREVIEW_CHARS] + "..."
            print(f"{DIM}[result] {call.name}: {preview}{RESET}")
        else:
            print(f"{YELLOW}[error] {call.name}: {result.error}{RESET}")

    def _print_banner(self):
        provider = self.config.provider
        print(f"""
{BOLD}{CYAN}╔══════════════════════════════════════╗
║          Vault Agents v0.1.0         ║
║   Tool-using assistant for vaults    ║
╚══════════════════════════════════════╝{RESET}
{DIM}Provider: {provider.type} ({self.provider.capability.value} tools)
Model: {provider.model_name}
Endpoint: {provider.base_url}{RESET}
""")

    def _print_help(self):
        print(f"""
{BOLD}Commands:{RESET}
  {CYAN}/reset{RESET}  Start a new conversation and forget vault passwords
  {CYAN}/help{RESET}   Show this help
  {CYAN}/exit{RESET}   Quit

{BOLD}How it works:{RESET}
  Each message runs the agent loop: the model may call vault and web
  tools several times before answering. Deleting, moving or rewriting
  an item asks for confirmation first.
""")

    # ── Setup ────────────────────────────────────────────────────────

    def _load_store(self) -> InMemoryVaultStore:
        if self.config.vaults_path:
            store = InMemoryVaultStore.from_json(self.config.vaults_path)
            logger.info("Loaded %d vault(s) from %s", len(store.containers()), self.config.vaults_path)
            return store
        store = InMemoryVaultStore()
        store.add_vault("Inbox")
        return store

    async def _preflight(self) -> bool:
        """Check provider connectivity (and model availability for Ollama)."""
        if isinstance(self.provider, OllamaProvider):
            return await self._preflight_ollama(self.provider.client)

        try:
            models = await self.provider.list_models()
        except ProviderError as e:
            print(f"{YELLOW}[Warning] Could not list models: {e}{RESET}")
            return True
        if models and self.provider.model not in models:
            print(f"{YELLOW}[Warning] Model '{self.provider.model}' not listed by the endpoint{RESET}")
        return True

    async def _preflight_ollama(self, client: OllamaClient) -> bool:
        if self.config.http.health_check_on_start:
            healthy = await client.health_check()
            if not healthy:
                print(f"{RED}[Error] Cannot connect to Ollama at {client.base_url}{RESET}")
                print(f"{DIM}Make sure Ollama is running: ollama serve{RESET}")
                return False

        try:
            models = await client.list_models()
        except ProviderError as e:
            print(f"{RED}[Error] {e}{RESET}")
            return False

        model_names = [m.get("name", "?") for m in models]
        print(f"{DIM}Available models: {', '.join(model_names) if model_names else 'none'}{RESET}")

        missing = OllamaClient.filter_missing_models([self.provider.model], model_names)
        if missing:
            print(f"{RED}[Error] Missing model: {', '.join(missing)}{RESET}")
            print(f"{DIM}Pull with: ollama pull <model>{RESET}")
            return False
        return True
