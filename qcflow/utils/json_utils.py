import json
import re
from typing import Any, List

_FENCE = re.compile(r"```[a-zA-Z0-9_+-]*")
_LIST_KEYS = ("items", "results", "assignments", "codes", "rulings", "audit", "data")


def strip_code_fences(s: str) -> str:
    """Remove Markdown code-fence markers (```json ... ```) wherever they occur."""
    return _FENCE.sub("", s).strip()


def parse_json(s: str) -> Any:
    """Parse model output as JSON, tolerating fences and surrounding prose.

    Raises ``json.JSONDecodeError`` (a ``ValueError``) when the payload is
    still not valid JSON after cleanup.
    """
    if not isinstance(s, str):
        return s
    s = strip_code_fences(s)
    # try to locate first and last braces/brackets
    start = min([x for x in [s.find("{"), s.find("[")] if x != -1], default=-1)
    end = max(s.rfind("}"), s.rfind("]"))
    if start != -1 and end != -1 and end > start:
        s = s[start:end+1]
    try:
        return json.loads(s)
    except json.JSONDecodeError:
        # fix common trailing commas / stray control characters
        s2 = re.sub(r",\s*([}\]])", r"\1", s)
        s2 = re.sub(r"[\x00-\x1F]+", " ", s2)
        return json.loads(s2)


def as_record_list(data: Any) -> List[dict]:
    """Coerce a decoded response into a list of dict records.

    Accepts a bare list, an object wrapping the list under a known key, or a
    single record object. Non-dict entries are dropped.
    """
    if isinstance(data, dict):
        for key in _LIST_KEYS:
            if isinstance(data.get(key), list):
                data = data[key]
                break
        else:
            data = [data] if data else []
    if not isinstance(data, list):
        return []
    return [item for item in data if isinstance(item, dict)]
