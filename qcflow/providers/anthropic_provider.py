
from __future__ import annotations
from typing import Any, Dict, List, Optional
from anthropic import Anthropic
from .base import LLMProvider

class AnthropicProvider(LLMProvider):
    def __init__(self, conf):
        super().__init__(conf)
        self.client = Anthropic(api_key=conf.api_key, timeout=conf.timeout_sec, max_retries=0)

    def generate_text(self, messages: List[Dict[str, str]], response_format: Optional[Dict[str, Any]] = None, **kwargs) -> str:
        # No JSON mode here; the prompts themselves demand JSON only.
        sys = None
        converted = []
        for m in messages:
            if m["role"] == "system":
                sys = m["content"]
            elif m["role"] in ("user", "assistant"):
                converted.append({"role": m["role"], "content": m["content"]})
        params = dict(
            model=kwargs.get("model") or self.conf.model,
            max_tokens=kwargs.get("max_tokens", self.conf.max_tokens),
            temperature=kwargs.get("temperature", self.conf.temperature),
            messages=converted,
        )
        if sys:
            params["system"] = sys
        resp = self.client.messages.create(**params)
        u = getattr(resp, "usage", None)
        self._update_usage(int(getattr(u, "input_tokens", 0) or 0), int(getattr(u, "output_tokens", 0) or 0))
        if getattr(resp, "stop_reason", None) == "refusal":
            raise RuntimeError("Response blocked by safety refusal")
        return "".join([getattr(c, "text", "") for c in resp.content if getattr(c, "type", None) == "text"])
