"""Generative-text capability and its Anthropic-backed implementation."""

import json
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any

import anthropic
from anthropic import AsyncAnthropic
from loguru import logger

from taskforge.core.config import Settings, get_settings
from taskforge.core.errors import ConfigurationError, LLMError, RateLimitError
from taskforge.core.timeouts import TimeoutManager, TimeoutOperation


class OutputFormat(str, Enum):
    """Output format hint passed with every generation request."""

    JSON = "json"
    TEXT = "text"


class GenerativeTextClient(ABC):
    """Generate structured text from a prompt."""

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        system_prompt: str = "",
        output_format: OutputFormat = OutputFormat.JSON,
        schema_hint: dict[str, Any] | None = None,
        temperature: float = 0.1,
    ) -> str:
        """
        Generate a completion.

        Raises:
            RateLimitError: On rate limiting (retryable).
            LLMError: On any other provider failure.
            OperationTimeoutError: If the request exceeds its budget.
        """


class AnthropicClient(GenerativeTextClient):
    """
    Generative-text client backed by the Anthropic Messages API.

    Each attempt runs under the ``llm_request`` timeout class; rate-limit
    responses are retried with exponential backoff.

    Example:
        >>> client = AnthropicClient()
        >>> text = await client.generate("Split this task", temperature=0.2)
    """

    def __init__(
        self,
        settings: Settings | None = None,
        client: AsyncAnthropic | None = None,
        timeout_manager: TimeoutManager | None = None,
    ) -> None:
        """
        Initialize the client.

        Args:
            settings: Application settings. Uses cached settings if not provided.
            client: Pre-built AsyncAnthropic client.
            timeout_manager: Timeout and retry policy.

        Raises:
            ConfigurationError: If no client is given and no API key is configured.
        """
        self.settings = settings or get_settings()
        self.timeouts = timeout_manager or self.settings.timeout_manager()

        if client is None:
            if self.settings.anthropic_api_key is None:
                raise ConfigurationError("ANTHROPIC_API_KEY is not configured")
            client = AsyncAnthropic(
                api_key=self.settings.anthropic_api_key.get_secret_value(),
                max_retries=0,
            )
        self._client = client

    async def generate(
        self,
        prompt: str,
        system_prompt: str = "",
        output_format: OutputFormat = OutputFormat.JSON,
        schema_hint: dict[str, Any] | None = None,
        temperature: float = 0.1,
    ) -> str:
        system = self._system_prompt(system_prompt, output_format, schema_hint)

        async def attempt() -> str:
            return await self.timeouts.run(
                TimeoutOperation.LLM_REQUEST,
                self._create(prompt, system, temperature),
            )

        return await self.timeouts.retry(attempt, operation_name="llm_request")

    async def _create(self, prompt: str, system: str, temperature: float) -> str:
        logger.debug(f"Calling {self.settings.taskforge_llm_model} (temperature={temperature})")

        try:
            response = await self._client.messages.create(
                model=self.settings.taskforge_llm_model,
                max_tokens=self.settings.taskforge_llm_max_tokens,
                temperature=temperature,
                system=system,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.RateLimitError as e:
            raise RateLimitError(str(e)) from e
        except (anthropic.AuthenticationError, anthropic.PermissionDeniedError) as e:
            raise LLMError(f"Authentication failed: {e}", retryable=False) from e
        except anthropic.APIError as e:
            raise LLMError(f"Anthropic API error: {e}", retryable=False) from e

        return "".join(
            block.text for block in response.content if getattr(block, "type", "") == "text"
        ).strip()

    @staticmethod
    def _system_prompt(
        system_prompt: str,
        output_format: OutputFormat,
        schema_hint: dict[str, Any] | None,
    ) -> str:
        if output_format != OutputFormat.JSON:
            return system_prompt

        parts = [system_prompt.strip(), "Respond with valid JSON only, without commentary."]
        if schema_hint:
            parts.append(f"The JSON must follow this shape:\n{json.dumps(schema_hint, indent=2)}")
        return "\n\n".join(p for p in parts if p)
