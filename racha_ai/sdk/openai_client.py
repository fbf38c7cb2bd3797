"""
OpenAI model provider.

Maps each tier to its configured OpenAI model and turns every SDK failure
into a ProviderError, so the router can retry or degrade.
"""

import logging
from typing import Dict, Optional

import openai
from openai import OpenAI

from ..core.errors import ProviderError
from ..core.pricing import DEFAULT_TIERS, ModelTier, TierProfile
from ..core.prompts import ModelPrompt
from ..core.router import ModelReply

logger = logging.getLogger(__name__)

DEFAULT_REQUEST_TIMEOUT = 30.0
MAX_COMPLETION_TOKENS = 300

_RETRYABLE_ERRORS = (
    openai.APITimeoutError,
    openai.APIConnectionError,
    openai.RateLimitError,
    openai.InternalServerError,
)


class OpenAIModelProvider:
    """Model provider backed by OpenAI chat completions.

    All failures are loud: they surface as ProviderError and are never
    swallowed here.
    """

    def __init__(
        self,
        tiers: Optional[Dict[ModelTier, TierProfile]] = None,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
        client: Optional[OpenAI] = None
    ):
        """Initialize the provider.

        Args:
            tiers: Tier profiles naming the model per tier
            request_timeout: Per-request timeout in seconds
            client: Pre-built OpenAI client (one is created if omitted)

        Raises:
            ValueError: If a tier has no model configured
        """
        self.tiers = dict(tiers or DEFAULT_TIERS)
        for tier in ModelTier:
            if tier not in self.tiers:
                raise ValueError(f"model for tier {tier.value} is required")
        self.request_timeout = request_timeout
        self.client = client or OpenAI(timeout=request_timeout, max_retries=0)

    def call_model(self, tier: ModelTier, prompt: ModelPrompt) -> ModelReply:
        """Create a chat completion for ``prompt`` on ``tier``'s model.

        Args:
            tier: Tier to call
            prompt: System and user messages

        Returns:
            ModelReply with the raw content and token usage

        Raises:
            ProviderError: On any API failure or a reply without content/usage
        """
        model = self.tiers[tier].model
        try:
            response = self.client.chat.completions.create(
                model=model,
                messages=[
                    {"role": "system", "content": prompt.system},
                    {"role": "user", "content": prompt.user},
                ],
                temperature=0,
                max_tokens=MAX_COMPLETION_TOKENS,
                response_format={"type": "json_object"},
            )
        except _RETRYABLE_ERRORS as e:
            raise ProviderError(f"{model} unavailable: {e}", retryable=True) from e
        except openai.OpenAIError as e:
            raise ProviderError(f"{model} rejected the request: {e}", retryable=False) from e

        usage = response.usage
        if not usage:
            raise ProviderError("OpenAI response missing usage information", retryable=False)
        if not response.choices or response.choices[0].message.content is None:
            raise ProviderError("OpenAI response has no content")

        logger.debug("%s answered with %d tokens", model, usage.total_tokens)
        return ModelReply(
            content=response.choices[0].message.content,
            model_confidence=None,
            prompt_tokens=usage.prompt_tokens,
            completion_tokens=usage.completion_tokens,
            model=model,
            request_id=response.id,
        )
