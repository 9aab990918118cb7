"""Configuration schema using Pydantic."""

from pathlib import Path
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings


class OpenAIConfig(BaseModel):
    """OpenAI-compatible provider configuration."""
    api_key: str = ""
    model: str = "gpt-3.5-turbo"
    base_url: str = "https://api.openai.com/v1"


class OllamaConfig(BaseModel):
    """Ollama provider configuration."""
    model: str = "morpheum-local"
    base_url: str = "http://localhost:11434"


class CopilotConfig(BaseModel):
    """GitHub Copilot coding agent configuration."""
    api_key: str = ""  # GitHub token
    repository: str = ""  # owner/repo
    base_url: str = "https://api.github.com"
    poll_interval: float = 10.0  # Seconds between status polls
    session_timeout: float = 3600.0  # Give up polling after this many seconds


class ProvidersConfig(BaseModel):
    """Configuration for LLM providers."""
    openai: OpenAIConfig = Field(default_factory=OpenAIConfig)
    ollama: OllamaConfig = Field(default_factory=OllamaConfig)
    copilot: CopilotConfig = Field(default_factory=CopilotConfig)


# Provider names accepted by `!llm switch` and `agent.provider`
PROVIDER_NAMES = ["openai", "ollama", "copilot"]


class AgentDefaults(BaseModel):
    """Default agent configuration."""
    provider: str = ""  # Empty: openai when a key is set, otherwise ollama
    max_iterations: int = 10
    devlog_path: str = "DEVLOG.md"


class AgentsConfig(BaseModel):
    """Agent configuration."""
    defaults: AgentDefaults = Field(default_factory=AgentDefaults)


class SandboxConfig(BaseModel):
    """Jail sandbox configuration."""
    host: str = "localhost"
    port: int = 10001
    timeout: int = 120  # Seconds before a command is abandoned
    jail_dir: str = "./jail"  # Where `!create` runs the container launcher


class MatrixConfig(BaseModel):
    """Matrix homeserver connection."""
    homeserver_url: str = ""
    access_token: str = ""
    username: str = ""
    password: str = ""
    sync_timeout_ms: int = 30000


class Config(BaseSettings):
    """Root configuration for morpheum."""
    agents: AgentsConfig = Field(default_factory=AgentsConfig)
    providers: ProvidersConfig = Field(default_factory=ProvidersConfig)
    sandbox: SandboxConfig = Field(default_factory=SandboxConfig)
    matrix: MatrixConfig = Field(default_factory=MatrixConfig)
    debug: bool = False

    @property
    def devlog_path(self) -> Path:
        """Get expanded DEVLOG path."""
        return Path(self.agents.defaults.devlog_path).expanduser()

    def get_provider_name(self) -> str:
        """Return the provider that should be active at startup."""
        preferred = (self.agents.defaults.provider or "").strip().lower()
        if preferred in PROVIDER_NAMES:
            return preferred
        # Default to Ollama if no OpenAI key is provided
        return "openai" if self.providers.openai.api_key else "ollama"

    class Config:
        env_prefix = "MORPHEUM_"
        env_nested_delimiter = "__"
