from ace_playbook.llm.client import (
    AnthropicClient,
    LLMClient,
    LLMServiceError,
    LLMTimeoutError,
    MockLLMClient,
    OpenRouterClient,
)
from ace_playbook.llm.factory import create_llm_client
from ace_playbook.llm.schemas import CompletionResponse, Message

__all__ = [
    "LLMClient",
    "MockLLMClient",
    "OpenRouterClient",
    "AnthropicClient",
    "LLMServiceError",
    "LLMTimeoutError",
    "Message",
    "CompletionResponse",
    "create_llm_client",
]
