"""Build LLM clients from configuration."""

from morpheum.config.schema import Config, PROVIDER_NAMES
from morpheum.errors import ConfigurationError
from morpheum.providers.base import LLMClient
from morpheum.providers.copilot_provider import CopilotClient
from morpheum.providers.ollama_provider import OllamaClient
from morpheum.providers.openai_provider import OpenAIClient


def validate_credentials(name: str, config: Config) -> None:
    """Raise ConfigurationError if ``name`` cannot be used with ``config``."""
    if name not in PROVIDER_NAMES:
        raise ConfigurationError(
            f"Unknown provider '{name}'. Use one of: {', '.join(PROVIDER_NAMES)}"
        )
    if name == "openai" and not config.providers.openai.api_key:
        raise ConfigurationError(
            "OpenAI API key is not configured. Set OPENAI_API_KEY to use OpenAI."
        )
    if name == "copilot" and not config.providers.copilot.api_key:
        raise ConfigurationError(
            "GitHub token is not configured. Set GITHUB_TOKEN to use Copilot."
        )


def create_client(
    name: str,
    config: Config,
    target: str | None = None,
    base_url: str | None = None,
) -> LLMClient:
    """
    Create a client for ``name``.

    ``target`` is a model name, or ``owner/repo`` for copilot; it falls back
    to the configured value when omitted.
    """
    name = name.strip().lower()
    validate_credentials(name, config)
    providers = config.providers

    if name == "openai":
        return OpenAIClient(
            api_key=providers.openai.api_key,
            model=target or providers.openai.model,
            base_url=base_url or providers.openai.base_url,
        )
    if name == "ollama":
        return OllamaClient(
            model=target or providers.ollama.model,
            base_url=base_url or providers.ollama.base_url,
        )

    repository = target or providers.copilot.repository
    if not repository:
        raise ConfigurationError(
            "No repository configured for Copilot. Set COPILOT_REPOSITORY or pass owner/repo."
        )
    return CopilotClient(
        token=providers.copilot.api_key,
        repository=repository,
        base_url=base_url or providers.copilot.base_url,
        poll_interval=providers.copilot.poll_interval,
        session_timeout=providers.copilot.session_timeout,
    )
