"""HTTP clients for the Ollama, OpenAI-compatible and Anthropic REST APIs."""

import asyncio
from typing import Awaitable, Callable, Iterable, TypeVar

import aiohttp
from agent.exceptions import ProviderConnectionError, ProviderModelError


T = TypeVar("T")


class _RetryingClient:
    """Shared timeout and exponential backoff behaviour."""

    service_name = "provider"

    def __init__(
        self,
        base_url: str,
        connect_timeout: float = 5.0,
        read_timeout: float = 120.0,
        max_retries: int = 3,
    ):
        self.base_url = base_url.rstrip("/")
        self.connect_timeout = connect_timeout
        self.read_timeout = read_timeout
        self.max_retries = max_retries

    def _timeout(self) -> aiohttp.ClientTimeout:
        """Build a client timeout configuration from settings."""
        return aiohttp.ClientTimeout(
            total=None,
            connect=self.connect_timeout,
            sock_connect=self.connect_timeout,
            sock_read=self.read_timeout,
        )

    async def _with_retry(self, operation: str, func: Callable[[], Awaitable[T]]) -> T:
        """Run an async operation with exponential backoff retries."""
        delay = 1.0
        last_error: Exception | None = None
        for attempt in range(1, self.max_retries + 1):
            try:
                return await func()
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                last_error = e
                if attempt >= self.max_retries:
                    break
                await asyncio.sleep(delay)
                delay *= 2

        raise ProviderConnectionError(self._connection_error_message(operation, last_error))

    def _connection_error_message(self, operation: str, error: Exception | None) -> str:
        """Create a user-friendly connection error message."""
        details = f"{error}" if error else "unknown error"
        return (
            f"Cannot connect to {self.service_name} at {self.base_url} during {operation} "
            f"(after {self.max_retries} attempt(s)): {details}"
        )


class OllamaClient(_RetryingClient):
    """Direct async HTTP client for the Ollama API."""

    service_name = "Ollama"

    def __init__(
        self,
        base_url: str = "http://127.0.0.1:11434",
        connect_timeout: float = 5.0,
        read_timeout: float = 120.0,
        max_retries: int = 3,
    ):
        super().__init__(base_url, connect_timeout, read_timeout, max_retries)

    async def health_check(self) -> bool:
        """Check if Ollama is running. GET /api/tags"""
        try:
            async def _request() -> bool:
                async with aiohttp.ClientSession(timeout=self._timeout()) as session:
                    async with session.get(
                        f"{self.base_url}/api/tags",
                    ) as resp:
                        return resp.status == 200

            return await self._with_retry("health check", _request)
        except ProviderConnectionError:
            return False

    async def list_models(self) -> list[dict]:
        """List available local models. GET /api/tags"""
        async def _request() -> list[dict]:
            async with aiohttp.ClientSession(timeout=self._timeout()) as session:
                async with session.get(
                    f"{self.base_url}/api/tags",
                ) as resp:
                    if resp.status != 200:
                        body = await resp.text()
                        raise ProviderConnectionError(
                            f"Failed to list models (HTTP {resp.status}): {body}"
                        )
                    data = await resp.json()
                    return data.get("models", [])

        return await self._with_retry("list models", _request)

    @staticmethod
    def filter_missing_models(
        required_models: Iterable[str],
        available_models: Iterable[str],
    ) -> list[str]:
        """Filter required models against a list of available model names."""
        available = [m for m in available_models if m]
        missing: list[str] = []
        for required in required_models:
            if not required:
                continue
            if not OllamaClient._model_available(required, available):
                missing.append(required)
        return missing

    @staticmethod
    def _model_available(required: str, available: Iterable[str]) -> bool:
        """Check whether a model name is available, accounting for tags."""
        if required in available:
            return True
        tag_prefix = f"{required}:"
        return any(name.startswith(tag_prefix) for name in available)

    async def generate(
        self,
        model: str,
        prompt: str,
        system: str | None = None,
        temperature: float = 0.7,
        options: dict | None = None,
    ) -> str:
        """One-shot text generation. POST /api/generate"""
        payload = {
            "model": model,
            "prompt": prompt,
            "stream": False,
            "options": {
                "temperature": temperature,
                **(options or {}),
            },
        }
        if system:
            payload["system"] = system

        async def _request() -> str:
            async with aiohttp.ClientSession(timeout=self._timeout()) as session:
                async with session.post(
                    f"{self.base_url}/api/generate",
                    json=payload,
                ) as resp:
                    if resp.status == 404:
                        raise ProviderModelError(
                            f"Model '{model}' not found. Pull it with: ollama pull {model}"
                        )
                    if resp.status != 200:
                        body = await resp.text()
                        raise ProviderConnectionError(
                            f"Ollama generate failed (HTTP {resp.status}): {body}"
                        )
                    data = await resp.json()
                    return data.get("response", "")

        return await self._with_retry("generate", _request)


class OpenAICompatibleClient(_RetryingClient):
    """Async client for `/chat/completions` style endpoints (OpenAI, OpenRouter, LM Studio)."""

    service_name = "OpenAI-compatible endpoint"

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        connect_timeout: float = 5.0,
        read_timeout: float = 120.0,
        max_retries: int = 3,
    ):
        super().__init__(base_url, connect_timeout, read_timeout, max_retries)
        self.api_key = api_key

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def list_models(self) -> list[str]:
        """GET /models"""
        async def _request() -> list[str]:
            async with aiohttp.ClientSession(timeout=self._timeout(), headers=self._headers()) as session:
                async with session.get(f"{self.base_url}/models") as resp:
                    if resp.status != 200:
                        body = await resp.text()
                        raise ProviderConnectionError(
                            f"Failed to list models (HTTP {resp.status}): {body}"
                        )
                    data = await resp.json()
                    entries = data if isinstance(data, list) else data.get("data", [])
                    return [m.get("id") or m.get("name") or "" for m in entries]

        return await self._with_retry("list models", _request)

    async def chat_completions(self, payload: dict) -> dict:
        """POST /chat/completions and return the decoded body."""
        async def _request() -> dict:
            async with aiohttp.ClientSession(timeout=self._timeout(), headers=self._headers()) as session:
                async with session.post(f"{self.base_url}/chat/completions", json=payload) as resp:
                    if resp.status == 404:
                        raise ProviderModelError(
                            f"Model '{payload.get('model')}' not found at {self.base_url}"
                        )
                    if resp.status != 200:
                        body = await resp.text()
                        raise ProviderConnectionError(
                            f"API error: {resp.status} - {body}"
                        )
                    return await resp.json()

        return await self._with_retry("chat completion", _request)


class AnthropicClient(_RetryingClient):
    """Async client for the Anthropic Messages API."""

    service_name = "Anthropic API"
    api_version = "2023-06-01"

    def __init__(
        self,
        base_url: str = "https://api.anthropic.com",
        api_key: str = "",
        connect_timeout: float = 5.0,
        read_timeout: float = 120.0,
        max_retries: int = 3,
    ):
        super().__init__(base_url, connect_timeout, read_timeout, max_retries)
        self.api_key = api_key

    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "x-api-key": self.api_key,
            "anthropic-version": self.api_version,
        }

    async def messages(self, payload: dict) -> dict:
        """POST /v1/messages and return the decoded body."""
        async def _request() -> dict:
            async with aiohttp.ClientSession(timeout=self._timeout(), headers=self._headers()) as session:
                async with session.post(f"{self.base_url}/v1/messages", json=payload) as resp:
                    if resp.status == 404:
                        raise ProviderModelError(
                            f"Model '{payload.get('model')}' not found at {self.base_url}"
                        )
                    if resp.status != 200:
                        body = await resp.text()
                        raise ProviderConnectionError(
                            f"API error: {resp.status} - {body}"
                        )
                    return await resp.json()

        return await self._with_retry("messages", _request)
