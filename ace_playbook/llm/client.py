import json
import logging
import os
from abc import ABC, abstractmethod
from typing import List, Optional

import requests

from ace_playbook.llm.schemas import CompletionResponse, Message

logger = logging.getLogger(__name__)


class LLMServiceError(Exception):
    """The text-completion service was unreachable or returned an unusable response."""

    pass


class LLMTimeoutError(LLMServiceError):
    """The text-completion call did not finish within its timeout."""

    pass


class LLMClient(ABC):
    """
    Abstract base class for LLM clients.

    Provides a common interface for different LLM providers: send messages, receive text.
    """

    @abstractmethod
    def complete(self, messages: List[Message], **kwargs) -> CompletionResponse:
        """
        Generate a completion based on the input messages.

        Args:
            messages: List of conversation messages (a leading 'system' message is allowed)
            **kwargs: model, temperature, max_tokens, timeout

        Returns:
            CompletionResponse with generated text

        Raises:
            LLMServiceError: If the service is unreachable or the response is unusable
            LLMTimeoutError: If the request times out
        """
        pass


class MockLLMClient(LLMClient):
    """
    Mock LLM client for testing and development.

    Returns scripted responses in order when given, otherwise a canned, well-formed
    reply chosen from the system prompt (an empty reflection or an empty curation).
    """

    def __init__(self, responses: Optional[List[str]] = None, error: Optional[Exception] = None):
        """
        Initialize the mock client.

        Args:
            responses: Texts to return, one per call, in order
            error: Exception raised by every call instead of returning text
        """
        self.responses = list(responses or [])
        self.error = error
        self.calls: list[dict] = []
        logger.info("Initialized MockLLMClient")

    def complete(self, messages: List[Message], **kwargs) -> CompletionResponse:
        self.calls.append({"messages": list(messages), **kwargs})

        if self.error is not None:
            raise self.error

        if self.responses:
            text = self.responses.pop(0)
        elif not messages:
            logger.warning("Empty messages list provided to MockLLMClient")
            text = ""
        else:
            system = messages[0].content if messages[0].role == "system" else ""
            if "Curator" in system:
                text = json.dumps({"reasoning": "No changes needed.", "operations": []})
            else:
                text = json.dumps({
                    "reasoning": "Mock reflection.",
                    "errorIdentification": "None",
                    "rootCauseAnalysis": "",
                    "correctApproach": "",
                    "keyInsight": "",
                    "bulletTags": [],
                })

        logger.debug(f"MockLLMClient generated response of length {len(text)}")
        return CompletionResponse(text=text, model=kwargs.get("model"))


class OpenRouterClient(LLMClient):
    """
    OpenRouter LLM client for accessing multiple model providers.

    Provides access to various LLM providers through OpenRouter's unified API.
    """

    BASE_URL = "https://openrouter.ai/api/v1/chat/completions"

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "anthropic/claude-sonnet-4",
        site_url: Optional[str] = None,
        app_name: Optional[str] = "ace-playbook",
        default_max_tokens: Optional[int] = None,
        default_temperature: float = 0.3,
        default_timeout: float = 60,
    ):
        """
        Initialize the OpenRouter client.

        Args:
            api_key: OpenRouter API key (defaults to OPENROUTER_API_KEY env var)
            model: Default model; a per-call ``model`` kwarg overrides it
            site_url: Optional site URL for rankings
            app_name: Optional app name for rankings
            default_max_tokens: Default maximum tokens to generate
            default_temperature: Default temperature for generation
            default_timeout: Default request timeout in seconds
        """
        self.api_key = api_key or os.getenv("OPENROUTER_API_KEY")
        if not self.api_key:
            raise ValueError(
                "OpenRouter API key must be provided via api_key parameter "
                "or OPENROUTER_API_KEY environment variable"
            )

        self.model = model
        self.site_url = site_url
        self.app_name = app_name
        self.default_max_tokens = default_max_tokens
        self.default_temperature = default_temperature
        self.default_timeout = default_timeout

        logger.info(f"Initialized OpenRouterClient with model: {model}")

    def complete(self, messages: List[Message], **kwargs) -> CompletionResponse:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        if self.site_url:
            headers["HTTP-Referer"] = self.site_url
        if self.app_name:
            headers["X-Title"] = self.app_name

        model = kwargs.get("model") or self.model
        payload = {
            "model": model,
            "messages": [{"role": msg.role, "content": msg.content} for msg in messages],
            "temperature": kwargs.get("temperature", self.default_temperature),
        }

        if self.default_max_tokens or "max_tokens" in kwargs:
            payload["max_tokens"] = kwargs.get("max_tokens", self.default_max_tokens)

        logger.debug(f"Making OpenRouter API request to {model}")

        try:
            response = requests.post(
                self.BASE_URL,
                headers=headers,
                json=payload,
                timeout=kwargs.get("timeout") or self.default_timeout,
            )
            response.raise_for_status()
            data = response.json()

            if "choices" not in data or len(data["choices"]) == 0:
                raise LLMServiceError("No choices returned in OpenRouter response")

            content = data["choices"][0]["message"]["content"] or ""

            logger.info(
                f"OpenRouter request successful. "
                f"Tokens: {data.get('usage', {}).get('total_tokens', 'unknown')}"
            )
            return CompletionResponse(text=content, model=data.get("model", model))

        except requests.exceptions.Timeout as e:
            logger.error(f"OpenRouter API request timed out: {e}")
            raise LLMTimeoutError(str(e)) from e
        except requests.exceptions.RequestException as e:
            logger.error(f"OpenRouter API request failed: {e}")
            raise LLMServiceError(str(e)) from e
        except (KeyError, ValueError) as e:
            logger.error(f"Failed to parse OpenRouter response: {e}")
            raise LLMServiceError(f"Malformed OpenRouter response: {e}") from e


class AnthropicClient(LLMClient):
    """
    Client for the Anthropic Messages API.

    System messages are lifted into the top-level ``system`` field.
    """

    BASE_URL = "https://api.anthropic.com/v1/messages"
    API_VERSION = "2023-06-01"

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "claude-sonnet-4-20250514",
        default_max_tokens: int = 2000,
        default_temperature: float = 0.3,
        default_timeout: float = 60,
    ):
        self.api_key = api_key or os.getenv("ANTHROPIC_API_KEY")
        if not self.api_key:
            raise ValueError(
                "Anthropic API key must be provided via api_key parameter "
                "or ANTHROPIC_API_KEY environment variable"
            )
        self.model = model
        self.default_max_tokens = default_max_tokens
        self.default_temperature = default_temperature
        self.default_timeout = default_timeout

        logger.info(f"Initialized AnthropicClient with model: {model}")

    def complete(self, messages: List[Message], **kwargs) -> CompletionResponse:
        headers = {
            "x-api-key": self.api_key,
            "anthropic-version": self.API_VERSION,
            "content-type": "application/json",
        }
        system = "\n\n".join(m.content for m in messages if m.role == "system")
        model = kwargs.get("model") or self.model
        payload = {
            "model": model,
            "max_tokens": kwargs.get("max_tokens") or self.default_max_tokens,
            "temperature": kwargs.get("temperature", self.default_temperature),
            "messages": [
                {"role": m.role, "content": m.content} for m in messages if m.role != "system"
            ],
        }
        if system:
            payload["system"] = system

        logger.debug(f"Making Anthropic API request to {model}")

        try:
            response = requests.post(
                self.BASE_URL,
                headers=headers,
                json=payload,
                timeout=kwargs.get("timeout") or self.default_timeout,
            )
            response.raise_for_status()
            data = response.json()

            text_blocks = [c["text"] for c in data.get("content", []) if c.get("type") == "text"]
            if not text_blocks:
                raise LLMServiceError("No text content in Anthropic response")

            return CompletionResponse(text="".join(text_blocks), model=data.get("model", model))

        except requests.exceptions.Timeout as e:
            logger.error(f"Anthropic API request timed out: {e}")
            raise LLMTimeoutError(str(e)) from e
        except requests.exceptions.RequestException as e:
            logger.error(f"Anthropic API request failed: {e}")
            raise LLMServiceError(str(e)) from e
        except (KeyError, ValueError) as e:
            logger.error(f"Failed to parse Anthropic response: {e}")
            raise LLMServiceError(f"Malformed Anthropic response: {e}") from e
