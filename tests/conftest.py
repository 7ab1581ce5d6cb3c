from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from qcflow.config import ProviderConfig
from qcflow.gateway import LLMGateway
from qcflow.models.schemas import DataUnit, Theme
from qcflow.pipeline.resolution import Taxonomy
from qcflow.providers.base import LLMProvider


THEMES = [
    {
        "id": "t1",
        "name": "Financial Constraints",
        "subThemes": [
            {"id": "s1-1", "name": "Cost", "description": "Mentions of price or cost."},
            {"id": "s1-2", "name": "Budget", "description": "Limited budget or funding."},
        ],
    },
    {
        "id": "t2",
        "name": "Time Pressure",
        "subThemes": [
            {"id": "s2-1", "name": "Deadlines", "description": "Explicit deadlines."},
            {"id": "s2-2", "name": "Workload", "description": "Too much work for the time."},
        ],
    },
    {
        "id": "t3",
        "name": "Tooling",
        "subThemes": [{"id": "s3-1", "name": "Latency", "description": "Slow systems."}],
    },
]

_SECTIONS = {
    "analyst": "### Data to Analyze\n",
    "critic": "### Coding Draft\n",
    "adjudicator": "### Disputed Items\n",
}


def stage_of(messages: List[Dict[str, str]]) -> str:
    system = messages[0]["content"]
    if "Production Qualitative Analyst" in system:
        return "analyst"
    if "QA Specialist" in system:
        return "critic"
    if "Chief Editor" in system:
        return "adjudicator"
    raise AssertionError(f"unexpected prompt: {system[:80]}")


def prompt_payload(messages: List[Dict[str, str]], stage: str) -> List[Dict[str, Any]]:
    """Pull the JSON data line a stage prompt embeds after its section header."""
    content = messages[-1]["content"]
    marker = _SECTIONS[stage]
    start = content.index(marker) + len(marker)
    return json.loads(content[start:].split("\n", 1)[0])


def analyst_all(theme_index: int = 0, sub_index: int = 0, **extra: Any):
    def handler(units: List[Dict[str, Any]]):
        return {"items": [
            dict({"unitId": u["unitId"], "themeIndex": theme_index, "subThemeIndex": sub_index,
                  "strictFit": True, "reasoning": "clear match"}, **extra)
            for u in units
        ]}
    return handler


def critic_agree_all(items: List[Dict[str, Any]]):
    return [{"unitId": i["unitId"], "status": "AGREE", "correction": None, "critique": "ok"} for i in items]


class ScriptedProvider(LLMProvider):
    """Fake provider that routes each call to a per-stage handler.

    A handler gets the decoded payload embedded in the prompt and returns
    either a raw string or an object that is JSON-encoded. Exceptions raised
    by a handler propagate like SDK errors.
    """

    def __init__(self, analyst: Optional[Callable] = None, critic: Optional[Callable] = None,
                 adjudicator: Optional[Callable] = None, conf: Optional[ProviderConfig] = None):
        super().__init__(conf or ProviderConfig(adjudicator_model="judge-model"))
        self.handlers = {
            "analyst": analyst or analyst_all(),
            "critic": critic or critic_agree_all,
            "adjudicator": adjudicator or (lambda conflicts: []),
        }
        self.calls: List[Dict[str, Any]] = []

    def generate_text(self, messages, response_format=None, **kwargs) -> str:
        stage = stage_of(messages)
        payload = prompt_payload(messages, stage)
        self.calls.append({"stage": stage, "model": kwargs.get("model"), "payload": payload, "messages": messages})
        self._update_usage(100, 20)
        out = self.handlers[stage](payload)
        return out if isinstance(out, str) else json.dumps(out)

    def stage_calls(self, stage: str) -> List[Dict[str, Any]]:
        return [c for c in self.calls if c["stage"] == stage]


class QueueProvider(LLMProvider):
    """Fake provider returning canned responses in order."""

    def __init__(self, responses: List[Any]):
        super().__init__(ProviderConfig())
        self.responses = list(responses)
        self.calls: List[Dict[str, Any]] = []

    def generate_text(self, messages, response_format=None, **kwargs) -> str:
        self.calls.append({"messages": messages, "response_format": response_format, "model": kwargs.get("model")})
        out = self.responses.pop(0)
        if isinstance(out, Exception):
            raise out
        return out


def make_units(n: int, prefix: str = "u", start: int = 1) -> List[DataUnit]:
    return [DataUnit(id=f"{prefix}{i}", text=f"observation number {i}") for i in range(start, start + n)]


@pytest.fixture
def themes() -> List[Theme]:
    return [Theme.model_validate(t) for t in THEMES]


@pytest.fixture
def taxonomy(themes) -> Taxonomy:
    return Taxonomy(themes)


@pytest.fixture
def scripted():
    def _make(**handlers) -> LLMGateway:
        return LLMGateway(ScriptedProvider(**handlers))
    return _make
