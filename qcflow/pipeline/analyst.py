from __future__ import annotations

import json
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..errors import to_user_message
from ..models.schemas import DataUnit, GoldStandardUnit, SampleCorrection
from ..utils.json_utils import as_record_list
from .resolution import Taxonomy

log = logging.getLogger(__name__)

NO_EXAMPLES = "None - apply the Taxonomy operational definitions only."
NO_CORRECTIONS = "None."


@dataclass
class AnalystOutput:
    records: List[Dict[str, Any]] = field(default_factory=list)
    batches: int = 0
    failed_batches: int = 0
    failed_unit_ids: List[str] = field(default_factory=list)


def build_few_shot_block(gold: Sequence[GoldStandardUnit], max_chars: int = 300) -> str:
    if not gold:
        return NO_EXAMPLES
    lines = []
    for g in gold:
        text = g.text or ""
        snippet = text[:max_chars] + ("..." if len(text) > max_chars else "")
        lines.append(
            f'Unit {g.unit_id}: "{snippet}" -> Theme: {g.theme_id or ""}, Sub-theme: {g.sub_theme_id or ""}'
        )
    return "\n".join(lines)


def build_corrections_block(
    corrections: Sequence[SampleCorrection], units_by_id: Dict[str, DataUnit], max_chars: int = 300
) -> str:
    if not corrections:
        return NO_CORRECTIONS
    lines = []
    for c in corrections:
        unit = units_by_id.get(c.unit_id)
        snippet = f' "{unit.text[:max_chars]}"' if unit else ""
        lines.append(
            f"Unit {c.unit_id}{snippet}: coded {c.original_theme_id or '?'}/{c.original_sub_theme_id or '?'}, "
            f"reviewer corrected to {c.corrected_theme_id}/{c.corrected_sub_theme_id}"
        )
    return "\n".join(lines)


def build_prompt(
    taxonomy: Taxonomy, units: Sequence[DataUnit], few_shot: str, corrections: str = NO_CORRECTIONS
) -> List[Dict[str, str]]:
    codebook = json.dumps(taxonomy.serialize_indexed(), ensure_ascii=False, indent=2)
    data = json.dumps(
        [{"unitId": u.id, "text": u.text} for u in units], ensure_ascii=False
    )
    example = (
        '{"items": [\n'
        '  {"unitId": "u105", "themeIndex": 0, "subThemeIndex": 2, "strictFit": true,\n'
        '   "reasoning": "Similar to Gold Standard example regarding \'server latency\'."}\n'
        "]}"
    )
    return [
        {
            "role": "system",
            "content": (
                "You are a Production Qualitative Analyst. You are scaling a thematic analysis "
                "across a large dataset. Return JSON only."
            ),
        },
        {
            "role": "user",
            "content": (
                f"### The Taxonomy (Codebook)\n{codebook}\n\n"
                f"### Gold Standard Examples (USER VALIDATED - FOLLOW THESE STRICTLY)\n{few_shot}\n\n"
                f"### Reviewer Corrections (do not repeat these mistakes)\n{corrections}\n\n"
                f"### Data to Analyze\n{data}\n\n"
                "### Task\n"
                "Code every unit in the Data to Analyze using the Taxonomy. Assign a theme and a "
                "sub-theme to every unit; never return null.\n"
                "Use array indices, not ids: return \"themeIndex\" and \"subThemeIndex\" as integers "
                "taken from the Codebook above.\n"
                "1. If a unit resembles a Gold Standard example, apply the same coding logic.\n"
                "2. Otherwise choose the best available sub-theme from the description fields.\n"
                "3. If a unit is ambiguous, give your best guess and set \"strictFit\": false so it is "
                "flagged for review.\n\n"
                f"### Output\nReturn a JSON object shaped like:\n{example}"
            ),
        },
    ]


def _batches(units: Sequence[DataUnit], batch_size: int) -> List[Sequence[DataUnit]]:
    return [units[i : i + batch_size] for i in range(0, len(units), batch_size)]


def run_batch_analyst(
    gateway,
    units: Sequence[DataUnit],
    taxonomy: Taxonomy,
    few_shot: str = NO_EXAMPLES,
    corrections: str = NO_CORRECTIONS,
    batch_size: int = 10,
    workers: int = 1,
    model: Optional[str] = None,
) -> AnalystOutput:
    """Code ``units`` in fixed-size batches, one gateway call per batch.

    A batch whose call raises is logged and skipped; its units are listed in
    ``failed_unit_ids``. Even when every batch fails the output is returned,
    empty, so the run still completes and reports the coverage gap.
    """
    batches = _batches(units, batch_size)
    out = AnalystOutput(batches=len(batches))
    if not batches:
        return out

    def _run(numbered: Tuple[int, Sequence[DataUnit]]):
        n, batch = numbered
        messages = build_prompt(taxonomy, batch, few_shot, corrections)
        try:
            data = gateway.generate_json(messages, model=model, label=f"analyst batch {n}")
        except Exception as exc:
            log.warning("Analyst batch %d/%d (%d units) failed, skipping: %s",
                        n, len(batches), len(batch), to_user_message(exc))
            return batch, None
        return batch, as_record_list(data)

    numbered = list(enumerate(batches, start=1))
    if workers > 1 and len(batches) > 1:
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="qcflow-batch") as pool:
            # map() preserves batch order
            results = list(pool.map(_run, numbered))
    else:
        results = [_run(item) for item in numbered]

    for batch, records in results:
        if records is None:
            out.failed_batches += 1
            out.failed_unit_ids.extend(u.id for u in batch)
            continue
        out.records.extend(records)

    if out.failed_batches == len(batches):
        log.error("All %d analyst batch(es) failed; no units were coded", len(batches))
    return out
