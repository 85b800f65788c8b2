"""Model providers and their tool-calling capability."""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import TYPE_CHECKING

from agent.config import KEYED_PROVIDERS, AgentConfig
from agent.exceptions import ConfigError, ProviderError
from agent.messages import TextBlock, ToolResultBlock, ToolUseBlock, Transcript
from agent.models import AnthropicClient, OllamaClient, OpenAICompatibleClient
from agent.response import ProviderResponse, ToolCall, new_tool_call_id

if TYPE_CHECKING:
    from tools.catalog import ToolCatalog

logger = logging.getLogger(__name__)

FINISH_REASONS = {
    "tool_calls": "tool_use",
    "function_call": "tool_use",
    "length": "max_tokens",
    "stop": "end_turn",
    "content_filter": "stop_sequence",
}


class ToolCapability(Enum):
    """How a provider exposes tool calling. Fixed when the provider is built."""
    NATIVE = "native"
    PROMPT = "prompt"


class Provider(ABC):
    """A model endpoint the agent loop can talk to."""

    name: str = ""

    def __init__(self, model: str, capability: ToolCapability):
        self.model = model
        self._capability = capability

    @property
    def capability(self) -> ToolCapability:
        return self._capability

    def supports_native_tools(self) -> bool:
        return self._capability is ToolCapability.NATIVE

    @abstractmethod
    async def generate(self, prompt: str, system: str | None = None) -> str:
        """Free-text generation."""
        ...

    async def generate_with_tools(
        self,
        transcript: Transcript,
        tools: "ToolCatalog",
        system: str | None = None,
    ) -> ProviderResponse:
        """Structured generation with tool definitions. Native providers override this."""
        raise ProviderError(f"Provider '{self.name}' does not support native tool calling")

    async def list_models(self) -> list[str]:
        return []


class OllamaProvider(Provider):
    """Local models via Ollama. Tool calling goes through the prompt fallback."""

    name = "ollama"

    def __init__(self, client: OllamaClient, model: str, temperature: float = 0.7):
        super().__init__(model, ToolCapability.PROMPT)
        self.client = client
        self.temperature = temperature

    async def generate(self, prompt: str, system: str | None = None) -> str:
        return await self.client.generate(
            model=self.model,
            prompt=prompt,
            system=system,
            temperature=self.temperature,
        )

    async def list_models(self) -> list[str]:
        models = await self.client.list_models()
        return [m.get("name", "") for m in models]


class OpenAICompatibleProvider(Provider):
    """Hosted or local `/chat/completions` endpoints with native function calling."""

    def __init__(
        self,
        client: OpenAICompatibleClient,
        model: str,
        name: str = "openai",
        temperature: float = 0.7,
        max_tokens: int = 4096,
        capability: ToolCapability = ToolCapability.NATIVE,
    ):
        super().__init__(model, capability)
        self.client = client
        self.name = name
        self.temperature = temperature
        self.max_tokens = max_tokens

    async def generate(self, prompt: str, system: str | None = None) -> str:
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})
        data = await self.client.chat_completions({
            "model": self.model,
            "messages": messages,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
        })
        try:
            return data["choices"][0]["message"].get("content") or ""
        except (KeyError, IndexError, TypeError, AttributeError) as e:
            raise ProviderError(f"Malformed completion response: {e}") from e

    async def generate_with_tools(
        self,
        transcript: Transcript,
        tools: "ToolCatalog",
        system: str | None = None,
    ) -> ProviderResponse:
        payload = {
            "model": self.model,
            "messages": self.format_messages(transcript, system),
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "tools": tools.to_function_schemas(),
            "tool_choice": "auto",
        }
        data = await self.client.chat_completions(payload)
        return self.parse_response(data)

    async def list_models(self) -> list[str]:
        return await self.client.list_models()

    @staticmethod
    def format_messages(transcript: Transcript, system: str | None = None) -> list[dict]:
        """Convert the transcript into OpenAI chat messages."""
        out: list[dict] = []
        if system:
            out.append({"role": "system", "content": system})

        for message in transcript:
            if message.role == "tool_result":
                for block in message.blocks:
                    out.append({
                        "role": "tool",
                        "tool_call_id": block.tool_use_id,
                        "content": block.content,
                    })
                continue

            if isinstance(message.content, str):
                out.append({"role": message.role, "content": message.content})
                continue

            text = "".join(b.text for b in message.content if isinstance(b, TextBlock))
            tool_uses = [b for b in message.content if isinstance(b, ToolUseBlock)]
            entry: dict = {"role": message.role, "content": text or None}
            if tool_uses and message.role == "assistant":
                entry["tool_calls"] = [
                    {
                        "id": b.id,
                        "type": "function",
                        "function": {"name": b.name, "arguments": json.dumps(b.input)},
                    }
                    for b in tool_uses
                ]
            elif entry["content"] is None:
                entry["content"] = ""
            out.append(entry)
        return out

    @staticmethod
    def parse_response(data: dict) -> ProviderResponse:
        """Turn a chat completion body into a ProviderResponse."""
        try:
            choice = data["choices"][0]
            message = choice.get("message") or {}
        except (KeyError, IndexError, TypeError) as e:
            raise ProviderError(f"Malformed completion response: {e}") from e

        tool_calls = []
        for raw in message.get("tool_calls") or []:
            function = raw.get("function") or {}
            name = function.get("name")
            if not name:
                continue
            arguments = function.get("arguments") or {}
            if isinstance(arguments, str):
                try:
                    arguments = json.loads(arguments) if arguments.strip() else {}
                except json.JSONDecodeError:
                    logger.debug("Undecodable arguments for %s: %r", name, arguments)
                    arguments = {}
            if not isinstance(arguments, dict):
                arguments = {}
            tool_calls.append(ToolCall(
                id=raw.get("id") or new_tool_call_id(),
                name=name,
                arguments=arguments,
            ))

        stop_reason = FINISH_REASONS.get(choice.get("finish_reason") or "stop", "end_turn")
        return ProviderResponse(
            content=message.get("content") or "",
            tool_calls=tuple(tool_calls),
            stop_reason=stop_reason,
            raw=data,
        )


class AnthropicProvider(Provider):
    """Anthropic Messages API with native tool_use / tool_result blocks."""

    name = "anthropic"

    # The Messages API has no model listing endpoint
    KNOWN_MODELS = (
        "claude-sonnet-4-20250514",
        "claude-3-5-sonnet-20241022",
        "claude-3-5-haiku-20241022",
        "claude-3-opus-20240229",
        "claude-3-haiku-20240307",
    )

    def __init__(
        self,
        client: AnthropicClient,
        model: str,
        temperature: float = 0.7,
        max_tokens: int = 4096,
    ):
        super().__init__(model, ToolCapability.NATIVE)
        self.client = client
        self.temperature = temperature
        self.max_tokens = max_tokens

    async def generate(self, prompt: str, system: str | None = None) -> str:
        payload = self._payload([{"role": "user", "content": prompt}], system)
        data = await self.client.messages(payload)
        return self.parse_response(data).content

    async def generate_with_tools(
        self,
        transcript: Transcript,
        tools: "ToolCatalog",
        system: str | None = None,
    ) -> ProviderResponse:
        payload = self._payload(self.format_messages(transcript), system)
        payload["tools"] = self.format_tools(tools)
        data = await self.client.messages(payload)
        return self.parse_response(data)

    async def list_models(self) -> list[str]:
        return list(self.KNOWN_MODELS)

    def _payload(self, messages: list[dict], system: str | None) -> dict:
        payload = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "messages": messages,
        }
        if system:
            payload["system"] = system
        return payload

    @staticmethod
    def format_tools(tools: "ToolCatalog") -> list[dict]:
        """Function schemas reshaped as `{name, description, input_schema}`."""
        return [
            {
                "name": schema["function"]["name"],
                "description": schema["function"].get("description", ""),
                "input_schema": schema["function"].get("parameters", {}),
            }
            for schema in tools.to_function_schemas()
        ]

    @staticmethod
    def format_messages(transcript: Transcript) -> list[dict]:
        """Convert the transcript into Anthropic messages. Tool results go back as the user."""
        out: list[dict] = []
        for message in transcript:
            if isinstance(message.content, str):
                out.append({"role": message.role, "content": message.content})
                continue

            blocks = []
            for block in message.content:
                if isinstance(block, TextBlock):
                    if block.text:
                        blocks.append({"type": "text", "text": block.text})
                elif isinstance(block, ToolUseBlock):
                    blocks.append({
                        "type": "tool_use",
                        "id": block.id,
                        "name": block.name,
                        "input": dict(block.input),
                    })
                elif isinstance(block, ToolResultBlock):
                    blocks.append({
                        "type": "tool_result",
                        "tool_use_id": block.tool_use_id,
                        "content": block.content,
                        "is_error": block.is_error,
                    })
            role = "user" if message.role == "tool_result" else message.role
            out.append({"role": role, "content": blocks})
        return out

    @staticmethod
    def parse_response(data: dict) -> ProviderResponse:
        """Turn a Messages API body into a ProviderResponse."""
        content = data.get("content") if isinstance(data, dict) else None
        if not isinstance(content, list):
            raise ProviderError("Malformed messages response: missing content")

        text_parts = []
        tool_calls = []
        for block in content:
            if not isinstance(block, dict):
                continue
            if block.get("type") == "text":
                text_parts.append(block.get("text") or "")
            elif block.get("type") == "tool_use" and block.get("name"):
                arguments = block.get("input")
                tool_calls.append(ToolCall(
                    id=block.get("id") or new_tool_call_id(),
                    name=block["name"],
                    arguments=arguments if isinstance(arguments, dict) else {},
                ))

        stop_reason = "tool_use" if data.get("stop_reason") == "tool_use" else "end_turn"
        return ProviderResponse(
            content="".join(text_parts),
            tool_calls=tuple(tool_calls),
            stop_reason=stop_reason,
            raw=data,
        )


def create_provider(config: AgentConfig) -> Provider:
    """Build the configured provider."""
    provider = config.provider
    http = config.http

    if provider.type == "ollama":
        client = OllamaClient(
            base_url=provider.base_url,
            connect_timeout=http.connect_timeout,
            read_timeout=http.read_timeout,
            max_retries=http.max_retries,
        )
        return OllamaProvider(client, provider.model_name, provider.temperature)

    if provider.type in KEYED_PROVIDERS and not provider.api_key:
        raise ConfigError(f"provider '{provider.type}' requires an api_key")

    if provider.type == "anthropic":
        client = AnthropicClient(
            base_url=provider.base_url,
            api_key=provider.api_key,
            connect_timeout=http.connect_timeout,
            read_timeout=http.read_timeout,
            max_retries=http.max_retries,
        )
        return AnthropicProvider(
            client,
            provider.model_name,
            temperature=provider.temperature,
            max_tokens=provider.max_tokens,
        )

    client = OpenAICompatibleClient(
        base_url=provider.base_url,
        api_key=provider.api_key,
        connect_timeout=http.connect_timeout,
        read_timeout=http.read_timeout,
        max_retries=http.max_retries,
    )
    # LM Studio models go through the text fallback
    capability = ToolCapability.PROMPT if provider.type == "lmstudio" else ToolCapability.NATIVE
    return OpenAICompatibleProvider(
        client,
        provider.model_name,
        name=provider.type,
        temperature=provider.temperature,
        max_tokens=provider.max_tokens,
        capability=capability,
    )
