import asyncio
import unittest
from unittest import mock

from agent.config import AgentConfig
from agent.exceptions import ProviderConnectionError, VaultAccessError
from agent.providers import Provider, ToolCapability
from cli.cli_app import CLIApp, KeyCache
from vaults.memory_store import InMemoryVaultStore


class EchoProvider(Provider):
    name = "echo"

    def __init__(self, replies):
        super().__init__("echo-model", ToolCapability.PROMPT)
        self.replies = list(replies)
        self.prompts = []

    async def generate(self, prompt, system=None):
        self.prompts.append(prompt)
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


class TestKeyCache(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.store = InMemoryVaultStore()
        self.open = self.store.add_vault("Inbox")
        self.locked = self.store.add_vault("Private", password="pw")

    async def test_unprotected_vault_never_prompts(self):
        prompt = mock.Mock()
        cache = KeyCache(self.store, prompt=prompt)
        key = await cache.get_key(self.open.id, "Inbox", False)
        self.assertEqual(key, self.store.key_for(self.open.id))
        prompt.assert_not_called()

    async def test_concurrent_requests_prompt_once(self):
        prompt = mock.Mock(return_value="pw")
        cache = KeyCache(self.store, prompt=prompt)
        keys = await asyncio.gather(*[
            cache.get_key(self.locked.id, "Private", True) for _ in range(3)
        ])
        self.assertEqual(len(set(keys)), 1)
        prompt.assert_called_once()

    async def test_wrong_password_is_not_cached(self):
        prompt = mock.Mock(side_effect=["nope", "pw"])
        cache = KeyCache(self.store, prompt=prompt)
        with self.assertRaises(VaultAccessError):
            await cache.get_key(self.locked.id, "Private", True)
        await cache.get_key(self.locked.id, "Private", True)
        self.assertEqual(prompt.call_count, 2)

    async def test_clear_forgets_keys(self):
        prompt = mock.Mock(return_value="pw")
        cache = KeyCache(self.store, prompt=prompt)
        await cache.get_key(self.locked.id, "Private", True)
        cache.clear()
        await cache.get_key(self.locked.id, "Private", True)
        self.assertEqual(prompt.call_count, 2)


class TestCLIApp(unittest.IsolatedAsyncioTestCase):
    def _app(self, replies) -> CLIApp:
        store = InMemoryVaultStore()
        store.add_vault("Inbox")
        return CLIApp(AgentConfig(), provider=EchoProvider(replies), store=store)

    async def test_transcript_carries_across_turns(self):
        app = self._app(["Hi!", "Still here."])
        with mock.patch("builtins.print"):
            self.assertEqual(await app.ask("hello"), "Hi!")
            self.assertEqual(await app.ask("again"), "Still here.")
        self.assertEqual(len(app.transcript), 4)
        self.assertTrue(app.provider.prompts[1].startswith("Previous conversation:\nUser: hello"))

    async def test_provider_failure_becomes_apology(self):
        app = self._app([ProviderConnectionError("endpoint down")])
        answer = await app.ask("hello")
        self.assertTrue(answer.startswith("Sorry"))
        self.assertIn("ProviderConnectionError: endpoint down", answer)
        self.assertEqual(len(app.transcript), 0)

    async def test_reset_clears_transcript(self):
        app = self._app(["Hi!"])
        await app.ask("hello")
        app.reset()
        self.assertEqual(len(app.transcript), 0)

    async def test_confirm_reads_yes_no(self):
        app = self._app([])
        with mock.patch("builtins.input", return_value="y"):
            self.assertTrue(await app._confirm("Allow?"))
        with mock.patch("builtins.input", return_value=""):
            self.assertFalse(await app._confirm("Allow?"))

    def test_default_store_has_inbox(self):
        app = CLIApp(AgentConfig(), provider=EchoProvider([]))
        self.assertEqual([c.name for c in app.store.containers()], ["Inbox"])
