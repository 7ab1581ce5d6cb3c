
from .base import JSON_RESPONSE_FORMAT, LLMProvider, make_provider
from .openai_compatible import OpenAICompatibleProvider
from .azure_openai_provider import AzureOpenAIProvider
from .anthropic_provider import AnthropicProvider

__all__ = [
    "JSON_RESPONSE_FORMAT",
    "LLMProvider",
    "make_provider",
    "OpenAICompatibleProvider",
    "AzureOpenAIProvider",
    "AnthropicProvider",
]
