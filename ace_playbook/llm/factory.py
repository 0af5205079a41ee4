"""Factory for creating LLM clients from configuration."""

from ace_playbook.core.config import LLMConfig, get_config
from ace_playbook.llm.client import AnthropicClient, LLMClient, MockLLMClient, OpenRouterClient


def create_llm_client(config: LLMConfig | None = None, model: str | None = None) -> LLMClient:
    """Create an LLM client based on configuration.

    Args:
        config: LLMConfig to use. If None, loads from global config.
        model: Default model for the client (the Reflector and Curator also pass
               their model per call).

    Returns:
        LLMClient instance for the configured provider.

    Raises:
        ValueError: If provider is not supported.
    """
    if config is None:
        config = get_config().llm

    provider = config.provider.lower()

    if provider == "mock":
        return MockLLMClient()
    elif provider == "openrouter":
        kwargs = {"model": model} if model else {}
        return OpenRouterClient(
            default_temperature=config.temperature,
            default_max_tokens=config.max_tokens,
            default_timeout=config.timeout_seconds,
            **kwargs,
        )
    elif provider == "anthropic":
        kwargs = {"model": model} if model else {}
        return AnthropicClient(
            default_temperature=config.temperature,
            default_max_tokens=config.max_tokens,
            default_timeout=config.timeout_seconds,
            **kwargs,
        )
    else:
        raise ValueError(
            f"Unsupported LLM provider: {config.provider}. "
            f"Supported providers: mock, openrouter, anthropic"
        )
