"""
Chat-completion client for Grok via xAI's OpenAI-compatible API.

One system + user message pair in, one free-text completion out.
"""

import os
import logging
from typing import Optional
from dataclasses import dataclass

from .errors import AuthenticationError, Timeout, UpstreamUnavailable

logger = logging.getLogger(__name__)

SERVICE_NAME = "xAI LLM"
DEFAULT_BASE_URL = "https://api.x.ai/v1"


@dataclass
class LLMConfig:
    """Configuration for the LLM client."""
    model: str = "grok-3-mini"
    temperature: float = 0.2  # Low temperature for factual consistency
    max_tokens: int = 2500
    timeout: float = 60.0
    base_url: Optional[str] = None


class LLMClient:
    """Thin wrapper over the OpenAI SDK chat completions endpoint."""

    def __init__(self, config: Optional[LLMConfig] = None, client=None):
        self.config = config or LLMConfig(model=os.getenv("GROK_MODEL", "grok-3-mini"))
        self._client = client

    def _get_client(self):
        """Get or create cached OpenAI client for the xAI API."""
        if self._client is None:
            api_key = os.getenv("XAI_API_KEY")
            if not api_key:
                raise AuthenticationError(
                    SERVICE_NAME,
                    "XAI_API_KEY is not set. RAG features are disabled. "
                    "Add XAI_API_KEY=<your key> to .env.",
                )
            from openai import OpenAI
            self._client = OpenAI(
                base_url=self.config.base_url or os.getenv("XAI_BASE_URL", DEFAULT_BASE_URL),
                api_key=api_key,
                timeout=self.config.timeout,
                max_retries=0,
            )
        return self._client

    def complete(
        self,
        prompt: str,
        system_prompt: str = "",
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        """
        Run one chat completion.

        Raises:
            AuthenticationError: key missing or rejected
            Timeout: no response within the configured timeout
            UpstreamUnavailable: any other API failure or an empty completion
        """
        import openai

        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        client = self._get_client()
        try:
            response = client.chat.completions.create(
                model=self.config.model,
                messages=messages,
                temperature=self.config.temperature if temperature is None else temperature,
                max_tokens=max_tokens or self.config.max_tokens,
            )
        except openai.APITimeoutError:
            raise Timeout(SERVICE_NAME, f"completion timed out after {self.config.timeout}s")
        except (openai.AuthenticationError, openai.PermissionDeniedError):
            raise AuthenticationError(SERVICE_NAME, "API key rejected. Check XAI_API_KEY in .env.")
        except openai.OpenAIError as e:
            raise UpstreamUnavailable(SERVICE_NAME, str(e))

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise UpstreamUnavailable(SERVICE_NAME, "empty completion")
        return content
