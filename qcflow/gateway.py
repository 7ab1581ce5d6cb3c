from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .config import RunConfig
from .cost import usage_delta
from .errors import MalformedResponseError, classify_provider_error
from .providers.base import LLMProvider
from .rate_limiter import TokenBucket
from .utils.json_utils import parse_json

log = logging.getLogger(__name__)

REPAIR_INSTRUCTION = (
    "ERROR: The previous response was invalid JSON. Error: {error}.\n"
    "Fix the JSON syntax and return ONLY the corrected, valid JSON."
)


def _append_to_prompt(messages: List[Dict[str, str]], text: str) -> List[Dict[str, str]]:
    # the caller's list is left untouched
    out = [dict(m) for m in messages]
    if out and out[-1].get("role") == "user":
        out[-1]["content"] = f"{out[-1]['content']}\n\n{text}"
    else:
        out.append({"role": "user", "content": text})
    return out


@dataclass(frozen=True)
class RetryPolicy:
    """How the gateway re-prompts when a response is not parseable JSON.

    Only parse failures are retried. Provider/transport errors are raised on
    the first occurrence.
    """

    max_attempts: int = 2
    backoff_base: float = 0.0
    append_error_context: bool = True

    def delay(self, attempt: int) -> float:
        if self.backoff_base <= 0:
            return 0.0
        return self.backoff_base ** attempt

    @classmethod
    def from_run_config(cls, run: RunConfig) -> "RetryPolicy":
        return cls(max_attempts=run.json_repair_attempts, backoff_base=run.json_repair_backoff)


class LLMGateway:
    """JSON-returning front door to an :class:`LLMProvider`."""

    def __init__(
        self,
        provider: LLMProvider,
        retry: Optional[RetryPolicy] = None,
        limiter: Optional[TokenBucket] = None,
    ):
        self.provider = provider
        self.retry = retry or RetryPolicy()
        self.limiter = limiter

    def usage(self) -> Dict[str, int]:
        return self.provider.total_usage()

    def usage_since(self, before: Dict[str, int]) -> Dict[str, float]:
        conf = self.provider.conf
        return usage_delta(before, self.usage(), conf.price_input_per_1k, conf.price_output_per_1k)

    def _generate(self, messages: List[Dict[str, str]], model: Optional[str]) -> str:
        if self.limiter is not None:
            self.limiter.acquire()
        kwargs = {"model": model} if model else {}
        try:
            return self.provider.generate_text(
                messages, response_format=self.provider.json_response_format(), **kwargs
            )
        except Exception as exc:
            raise classify_provider_error(exc) from exc

    def generate_json(
        self, messages: List[Dict[str, str]], model: Optional[str] = None, label: str = "llm"
    ) -> Any:
        """Send ``messages`` and return the parsed JSON payload.

        On a parse failure the prompt is extended with the parse error and
        re-sent, up to ``retry.max_attempts`` calls in total. A response that
        is still malformed raises :class:`MalformedResponseError`.
        """
        attempt_messages = list(messages)
        raw = ""
        for attempt in range(1, self.retry.max_attempts + 1):
            raw = self._generate(attempt_messages, model)
            try:
                return parse_json(raw)
            except json.JSONDecodeError as exc:
                if attempt >= self.retry.max_attempts:
                    raise MalformedResponseError(
                        f"{label}: response is not valid JSON after {attempt} attempt(s): {exc}",
                        raw=raw,
                    ) from exc
                log.warning("%s: JSON parse error, retrying (%d/%d): %s",
                            label, attempt, self.retry.max_attempts - 1, exc)
                if self.retry.append_error_context:
                    attempt_messages = _append_to_prompt(attempt_messages, REPAIR_INSTRUCTION.format(error=exc))
                delay = self.retry.delay(attempt)
                if delay:
                    time.sleep(delay)
        raise MalformedResponseError(f"{label}: no attempts made", raw=raw)
