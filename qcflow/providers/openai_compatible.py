
from __future__ import annotations
from typing import Any, Dict, List, Optional
import os
from openai import OpenAI
from .base import LLMProvider

class OpenAICompatibleProvider(LLMProvider):
    """Provider for any cloud that adopts the OpenAI chat-completions protocol.

    Accepts base_url, api_key, organization and extra_headers from
    ProviderConfig, falling back to the usual OPENAI_* environment variables.
    """
    def __init__(self, conf):
        super().__init__(conf)
        base_url = conf.base_url or os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1")
        api_key = conf.api_key or os.getenv("OPENAI_API_KEY")
        organization = conf.organization or os.getenv("OPENAI_ORG_ID")
        headers = {}
        if conf.extra_headers:
            headers.update(conf.extra_headers)
        self.client = OpenAI(
            base_url=base_url,
            api_key=api_key,
            organization=organization,
            default_headers=headers,
            timeout=conf.timeout_sec,
            max_retries=0,
        )

    def _extract_and_update_usage(self, obj: Any):
        usage = getattr(obj, "usage", None)
        prompt = int(getattr(usage, "prompt_tokens", 0) or 0)
        completion = int(getattr(usage, "completion_tokens", 0) or 0)
        self._update_usage(prompt, completion)

    def generate_text(self, messages: List[Dict[str, str]], response_format: Optional[Dict[str, Any]] = None, **kwargs) -> str:
        payload = dict(
            model=kwargs.get("model") or self.conf.model,
            messages=messages,
            temperature=kwargs.get("temperature", self.conf.temperature),
        )
        max_tokens = kwargs.get("max_tokens", self.conf.max_tokens)
        if max_tokens:
            payload["max_tokens"] = max_tokens
        if response_format:
            payload["response_format"] = response_format

        resp = self.client.chat.completions.create(**payload)
        self._extract_and_update_usage(resp)
        choice = resp.choices[0]
        if getattr(choice, "finish_reason", None) == "content_filter":
            raise RuntimeError("Response blocked by content_filter")
        return choice.message.content or ""
