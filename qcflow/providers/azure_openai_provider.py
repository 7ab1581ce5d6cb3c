
from __future__ import annotations
from typing import Any, Dict, List, Optional
import requests
from .base import LLMProvider

class AzureOpenAIProvider(LLMProvider):
    """Azure OpenAI (not strictly the same path as OpenAI).

    Requires:
      - conf.endpoint (e.g., https://YOUR-RESOURCE.openai.azure.com)
      - conf.deployment (Azure deployment name)
      - conf.api_version (e.g., 2024-02-15-preview)
      - conf.api_key

    The deployment fixes the model, so a per-call ``model`` is only honoured
    as an alternative deployment name.
    """
    def __init__(self, conf):
        super().__init__(conf)
        if not conf.endpoint or not conf.deployment or not conf.api_key:
            raise ValueError("AzureOpenAI requires endpoint, deployment and api_key.")
        self.headers = {"api-key": conf.api_key, "Content-Type": "application/json"}

    def _url(self, deployment: str) -> str:
        endpoint = self.conf.endpoint.rstrip("/")
        return f"{endpoint}/openai/deployments/{deployment}/chat/completions?api-version={self.conf.api_version}"

    def generate_text(self, messages: List[Dict[str, str]], response_format: Optional[Dict[str, Any]] = None, **kwargs) -> str:
        payload = {
            "messages": messages,
            "temperature": kwargs.get("temperature", self.conf.temperature),
            "max_tokens": kwargs.get("max_tokens", self.conf.max_tokens),
        }
        if response_format:
            payload["response_format"] = response_format
        deployment = kwargs.get("model") or self.conf.deployment
        r = requests.post(self._url(deployment), headers=self.headers, json=payload, timeout=self.conf.timeout_sec)
        r.raise_for_status()
        data = r.json()
        usage = data.get("usage", {}) or {}
        self._update_usage(int(usage.get("prompt_tokens", 0) or 0), int(usage.get("completion_tokens", 0) or 0))
        choice = data["choices"][0]
        if choice.get("finish_reason") == "content_filter":
            raise RuntimeError("Response blocked by content_filter")
        return choice["message"].get("content") or ""
