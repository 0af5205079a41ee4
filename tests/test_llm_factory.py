# tests/test_llm_factory.py
from unittest.mock import patch

import pytest

from ace_playbook.core.config import LLMConfig
from ace_playbook.llm import AnthropicClient, MockLLMClient, OpenRouterClient, create_llm_client


def llm_config(provider: str) -> LLMConfig:
    return LLMConfig(provider=provider, temperature=0.7, max_tokens=2000, timeout_seconds=15)


class TestCreateLLMClient:
    """Tests for create_llm_client factory function."""

    def test_creates_mock_client(self):
        assert isinstance(create_llm_client(llm_config("mock")), MockLLMClient)

    def test_creates_mock_client_case_insensitive(self):
        assert isinstance(create_llm_client(llm_config("MOCK")), MockLLMClient)

    @patch.dict("os.environ", {"OPENROUTER_API_KEY": "test-key"})
    def test_creates_openrouter_client(self):
        client = create_llm_client(llm_config("openrouter"), model="openai/gpt-4")

        assert isinstance(client, OpenRouterClient)
        assert client.model == "openai/gpt-4"
        assert client.default_temperature == 0.7
        assert client.default_max_tokens == 2000
        assert client.default_timeout == 15

    @patch.dict("os.environ", {"ANTHROPIC_API_KEY": "test-key"})
    def test_creates_anthropic_client(self):
        client = create_llm_client(llm_config("anthropic"))
        assert isinstance(client, AnthropicClient)
        assert client.default_timeout == 15

    def test_raises_for_unsupported_provider(self):
        with pytest.raises(ValueError, match="Unsupported LLM provider"):
            create_llm_client(llm_config("unsupported-provider"))

    def test_uses_global_config_when_none_provided(self):
        """conftest forces the mock provider in the global config."""
        assert isinstance(create_llm_client(), MockLLMClient)
