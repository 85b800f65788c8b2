"""Custom exceptions for Vault Agents."""


class AgentError(Exception):
    """Base class for all Vault Agents errors."""
    pass


class ConfigError(AgentError):
    """Raised when configuration is invalid or missing."""
    pass


class PromptTemplateError(AgentError):
    """Raised when a prompt template fails to render."""
    pass


class TranscriptError(AgentError):
    """Raised when a message would break the transcript invariants."""
    pass


class ProviderError(AgentError):
    """Raised when the model provider call itself fails."""
    pass


class ProviderConnectionError(ProviderError):
    """Raised when unable to reach the provider endpoint."""
    pass


class ProviderModelError(ProviderError):
    """Raised when the requested model is not available."""
    pass


class ToolExecutionError(AgentError):
    """Raised when a tool fails during execution."""
    pass


class ItemNotFoundError(ToolExecutionError):
    """Raised when an item cannot be found in a vault."""
    pass


class VaultAccessError(ToolExecutionError):
    """Raised when a vault key is missing or wrong."""
    pass


class SearchUnavailableError(ToolExecutionError):
    """Raised when the search index cannot serve a query."""
    pass


class MaxIterationsError(AgentError):
    """Raised when the agent loop exceeds max iterations."""

    def __init__(self, max_iterations: int):
        super().__init__("Agent loop reached maximum iterations")
        self.max_iterations = max_iterations
