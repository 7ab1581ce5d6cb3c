
from __future__ import annotations
import threading
from typing import Any, Dict, List, Optional
from dataclasses import dataclass
from ..config import ProviderConfig

JSON_RESPONSE_FORMAT = {"type": "json_object"}

@dataclass
class UsageStats:
    input_tokens: int = 0
    output_tokens: int = 0

class LLMProvider:
    """Text-completion boundary: messages in, response text out.

    Implementations raise the underlying SDK/HTTP exceptions unchanged; the
    gateway maps them onto :mod:`qcflow.errors`.
    """
    def __init__(self, conf: ProviderConfig):
        self.conf = conf
        self._total_usage = UsageStats()
        # batches may run on a worker pool
        self._usage_lock = threading.Lock()

    def _update_usage(self, input_tokens: int, output_tokens: int):
        with self._usage_lock:
            self._total_usage.input_tokens += int(input_tokens or 0)
            self._total_usage.output_tokens += int(output_tokens or 0)

    def total_usage(self) -> Dict[str, int]:
        with self._usage_lock:
            return {
                "input_tokens": self._total_usage.input_tokens,
                "output_tokens": self._total_usage.output_tokens,
                "total_tokens": self._total_usage.input_tokens + self._total_usage.output_tokens,
            }

    def json_response_format(self) -> Optional[Dict[str, Any]]:
        return JSON_RESPONSE_FORMAT if self.conf.structured else None

    def generate_text(self, messages: List[Dict[str, str]], response_format: Optional[Dict[str, Any]] = None, **kwargs) -> str:
        raise NotImplementedError

def make_provider(conf: ProviderConfig) -> LLMProvider:
    name = (conf.name or "openai_compatible").lower()
    if name in ("openai_compatible","openai","ollama"):
        from .openai_compatible import OpenAICompatibleProvider
        return OpenAICompatibleProvider(conf)
    elif name == "azure_openai":
        from .azure_openai_provider import AzureOpenAIProvider
        return AzureOpenAIProvider(conf)
    elif name == "anthropic":
        from .anthropic_provider import AnthropicProvider
        return AnthropicProvider(conf)
    else:
        raise ValueError(f"Unknown provider: {name}")
