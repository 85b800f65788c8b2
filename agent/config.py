"""Configuration loading and validation."""

import json
import os
from dataclasses import dataclass, field
from agent.exceptions import ConfigError

PROVIDER_TYPES = ("ollama", "openai", "openrouter", "lmstudio", "anthropic")

DEFAULT_BASE_URLS = {
    "ollama": "http://127.0.0.1:11434",
    "openai": "https://api.openai.com/v1",
    "openrouter": "https://openrouter.ai/api/v1",
    "lmstudio": "http://127.0.0.1:1234/v1",
    "anthropic": "https://api.anthropic.com",
}

# Provider types that refuse requests without an API key
KEYED_PROVIDERS = ("openai", "openrouter", "anthropic")

VENDOR_KEY_VARS = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
}


@dataclass
class ProviderConfig:
    """Configuration for the model provider."""
    type: str = "ollama"
    model_name: str = "llama3.2"
    base_url: str = DEFAULT_BASE_URLS["ollama"]
    api_key: str = ""
    temperature: float = 0.7
    max_tokens: int = 4096


@dataclass
class HttpSettings:
    """Configuration for provider connectivity and retries."""
    connect_timeout: float = 5.0
    read_timeout: float = 120.0
    max_retries: int = 3
    health_check_on_start: bool = True


@dataclass
class AgentLoopSettings:
    """Configuration for the agent loop."""
    max_iterations: int = 10
    system_prompt: str = ""
    prompt_profile: str = "default"


@dataclass
class ToolSettings:
    """Configuration for tool execution limits and policies."""
    search_limit: int = 20
    webpage_char_limit: int = 10000
    transcript_char_limit: int = 15000
    snippet_chars: int = 200
    confirm_destructive: bool = True


@dataclass
class TelemetryConfig:
    """Configuration for telemetry and metrics logging."""
    enabled: bool = False
    log_dir: str = "./data/metrics"
    otel_enabled: bool = False
    otel_endpoint: str | None = None
    otel_service_name: str = "vault-agents"


@dataclass
class AgentConfig:
    """Complete application configuration."""
    provider: ProviderConfig = field(default_factory=ProviderConfig)
    http: HttpSettings = field(default_factory=HttpSettings)
    agent: AgentLoopSettings = field(default_factory=AgentLoopSettings)
    tools: ToolSettings = field(default_factory=ToolSettings)
    telemetry: TelemetryConfig = field(default_factory=TelemetryConfig)
    data_dir: str = "data"
    log_dir: str = "data/logs"
    log_level: str = "INFO"
    vaults_path: str | None = None


def load_config(config_path: str = "config.json") -> AgentConfig:
    """Load configuration from JSON file with defaults."""
    if not os.path.exists(config_path):
        config = AgentConfig()
        _apply_env_overrides(config.provider)
        return config

    try:
        with open(config_path, "r") as f:
            raw = json.load(f)
    except (json.JSONDecodeError, IOError) as e:
        raise ConfigError(f"Failed to load config from {config_path}: {e}")

    if not isinstance(raw, dict):
        raise ConfigError("config root must be an object")

    data_dir = raw.get("data_dir", "data")
    if not isinstance(data_dir, str) or not data_dir.strip():
        raise ConfigError("data_dir must be a non-empty string")

    provider = _load_provider_settings(raw.get("provider", {}))
    _apply_env_overrides(provider)

    http = _load_http_settings(_section(raw, "http"))
    agent = _load_agent_settings(_section(raw, "agent"))
    tools = _load_tool_settings(_section(raw, "tools"))
    telemetry = _load_telemetry_settings(_section(raw, "telemetry"), data_dir)

    log_dir = raw.get("log_dir", os.path.join(data_dir, "logs"))
    if not isinstance(log_dir, str) or not log_dir.strip():
        raise ConfigError("log_dir must be a non-empty string")

    log_level = str(raw.get("log_level", "INFO")).upper()
    if log_level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
        raise ConfigError("log_level must be a standard logging level name")

    vaults_path = raw.get("vaults_path")
    if vaults_path is not None and (not isinstance(vaults_path, str) or not vaults_path.strip()):
        raise ConfigError("vaults_path must be a non-empty string if provided")

    for d in [data_dir, log_dir]:
        os.makedirs(d, exist_ok=True)

    return AgentConfig(
        provider=provider,
        http=http,
        agent=agent,
        tools=tools,
        telemetry=telemetry,
        data_dir=data_dir,
        log_dir=log_dir,
        log_level=log_level,
        vaults_path=vaults_path.strip() if isinstance(vaults_path, str) else None,
    )


def _section(raw: dict, name: str) -> dict:
    section = raw.get(name, {})
    if not isinstance(section, dict):
        raise ConfigError(f"{name} must be an object")
    return section


def _apply_env_overrides(provider: ProviderConfig) -> None:
    """Environment variables win over the config file for endpoint and key."""
    env_base_url = os.getenv("VAULT_AGENTS_BASE_URL")
    if env_base_url:
        provider.base_url = env_base_url

    env_api_key = os.getenv("VAULT_AGENTS_API_KEY")
    if not env_api_key:
        vendor_key = VENDOR_KEY_VARS.get(provider.type)
        env_api_key = os.getenv(vendor_key) if vendor_key else None
    if env_api_key:
        provider.api_key = env_api_key


def _load_provider_settings(raw: dict) -> ProviderConfig:
    """Parse and validate provider settings."""
    if not isinstance(raw, dict):
        raise ConfigError("provider must be an object")

    provider_type = raw.get("type", "ollama")
    if provider_type not in PROVIDER_TYPES:
        raise ConfigError(f"provider.type must be one of: {', '.join(PROVIDER_TYPES)}")

    model_name = raw.get("model_name", "llama3.2")
    if not isinstance(model_name, str) or not model_name.strip():
        raise ConfigError("provider.model_name must be a non-empty string")

    base_url = raw.get("base_url", DEFAULT_BASE_URLS[provider_type])
    if not isinstance(base_url, str) or not base_url.strip():
        raise ConfigError("provider.base_url must be a non-empty string")

    api_key = raw.get("api_key", "")
    if not isinstance(api_key, str):
        raise ConfigError("provider.api_key must be a string")

    temperature = _coerce_float(raw.get("temperature", 0.7), "provider.temperature", 0.0)
    max_tokens = _coerce_int(raw.get("max_tokens", 4096), "provider.max_tokens", 1)

    return ProviderConfig(
        type=provider_type,
        model_name=model_name.strip(),
        base_url=base_url.strip(),
        api_key=api_key.strip(),
        temperature=temperature,
        max_tokens=max_tokens,
    )


def _load_http_settings(raw: dict) -> HttpSettings:
    """Parse and validate HTTP connectivity settings."""
    connect_timeout = _coerce_float(raw.get("connect_timeout", 5.0), "http.connect_timeout", 0.1)
    read_timeout = _coerce_float(raw.get("read_timeout", 120.0), "http.read_timeout", 0.1)
    max_retries = _coerce_int(raw.get("max_retries", 3), "http.max_retries", 1)

    health_check_on_start = raw.get("health_check_on_start", True)
    if not isinstance(health_check_on_start, bool):
        raise ConfigError("http.health_check_on_start must be a boolean")

    return HttpSettings(
        connect_timeout=connect_timeout,
        read_timeout=read_timeout,
        max_retries=max_retries,
        health_check_on_start=health_check_on_start,
    )


def _load_agent_settings(raw: dict) -> AgentLoopSettings:
    """Parse and validate agent loop settings."""
    max_iterations = _coerce_int(raw.get("max_iterations", 10), "agent.max_iterations", 1)

    system_prompt = raw.get("system_prompt", "")
    if not isinstance(system_prompt, str):
        raise ConfigError("agent.system_prompt must be a string")

    prompt_profile = raw.get("prompt_profile", "default")
    if not isinstance(prompt_profile, str) or not prompt_profile.strip():
        raise ConfigError("agent.prompt_profile must be a non-empty string")

    return AgentLoopSettings(
        max_iterations=max_iterations,
        system_prompt=system_prompt,
        prompt_profile=prompt_profile.strip(),
    )


def _load_tool_settings(raw: dict) -> ToolSettings:
    """Parse and validate tool execution settings."""
    search_limit = _coerce_int(raw.get("search_limit", 20), "tools.search_limit", 1)
    webpage_char_limit = _coerce_int(
        raw.get("webpage_char_limit", 10000), "tools.webpage_char_limit", 1
    )
    transcript_char_limit = _coerce_int(
        raw.get("transcript_char_limit", 15000), "tools.transcript_char_limit", 1
    )
    snippet_chars = _coerce_int(raw.get("snippet_chars", 200), "tools.snippet_chars", 1)

    confirm_destructive = raw.get("confirm_destructive", True)
    if not isinstance(confirm_destructive, bool):
        raise ConfigError("tools.confirm_destructive must be a boolean")

    return ToolSettings(
        search_limit=search_limit,
        webpage_char_limit=webpage_char_limit,
        transcript_char_limit=transcript_char_limit,
        snippet_chars=snippet_chars,
        confirm_destructive=confirm_destructive,
    )


def _load_telemetry_settings(raw: dict, data_dir: str) -> TelemetryConfig:
    """Parse and validate telemetry settings."""
    enabled = raw.get("enabled", False)
    if not isinstance(enabled, bool):
        raise ConfigError("telemetry.enabled must be a boolean")

    log_dir = raw.get("log_dir", os.path.join(data_dir, "metrics"))
    if not isinstance(log_dir, str) or not log_dir.strip():
        raise ConfigError("telemetry.log_dir must be a non-empty string")

    otel_enabled = raw.get("otel_enabled", False)
    if not isinstance(otel_enabled, bool):
        raise ConfigError("telemetry.otel_enabled must be a boolean")

    otel_endpoint = raw.get("otel_endpoint")
    if otel_endpoint is not None and (not isinstance(otel_endpoint, str) or not otel_endpoint.strip()):
        raise ConfigError("telemetry.otel_endpoint must be a non-empty string if provided")

    otel_service_name = raw.get("otel_service_name", "vault-agents")
    if not isinstance(otel_service_name, str) or not otel_service_name.strip():
        raise ConfigError("telemetry.otel_service_name must be a non-empty string")

    return TelemetryConfig(
        enabled=enabled,
        log_dir=log_dir,
        otel_enabled=otel_enabled,
        otel_endpoint=otel_endpoint.strip() if isinstance(otel_endpoint, str) else None,
        otel_service_name=otel_service_name.strip(),
    )


def _coerce_float(value: object, name: str, min_value: float) -> float:
    """Coerce config value to float with basic validation."""
    try:
        value = float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be a number")

    if value < min_value:
        raise ConfigError(f"{name} must be >= {min_value}")
    return value


def _coerce_int(value: object, name: str, min_value: int) -> int:
    """Coerce config value to int with basic validation."""
    try:
        value = int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be an integer")

    if value < min_value:
        raise ConfigError(f"{name} must be >= {min_value}")
    return value
