"""LLM-facing abstractions for speaker attribution.

This package defines the provider HTTP clients, prompt library, response schema
validation, retry and rate-limit policies, and the attribution client.
"""

from .attribution import AttributionClient
from .http_client import ProviderError
from .openai_client import OpenAIChatClient, OpenAIProviderError, OpenAISpeechClient
from .prompts import PromptLibrary
from .rate_limiter import RateLimiter
from .retry import RetryPolicy
from .schema import AttributionResponseError, parse_attribution_response

__all__ = [
    "AttributionClient",
    "AttributionResponseError",
    "OpenAIChatClient",
    "OpenAIProviderError",
    "OpenAISpeechClient",
    "PromptLibrary",
    "ProviderError",
    "RateLimiter",
    "RetryPolicy",
    "parse_attribution_response",
]
