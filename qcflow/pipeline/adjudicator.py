from __future__ import annotations

import json
import logging
from typing import Dict, List, Optional, Sequence

from ..models.schemas import Conflict, PipelineStats, Ruling, decode_records
from ..utils.json_utils import as_record_list
from .consensus import Coding
from .resolution import FallbackKind, Taxonomy, ThemeRef, resolve_ref

log = logging.getLogger(__name__)

UNRULED_CONFIDENCE = 0.5
UNRULED_REASONING = "No adjudication ruling returned; analyst coding retained for review."


def build_prompt(taxonomy: Taxonomy, conflicts: Sequence[Conflict]) -> List[Dict[str, str]]:
    codebook = json.dumps(taxonomy.serialize_indexed(include_ids=True), ensure_ascii=False)
    disputed = json.dumps([c.to_wire() for c in conflicts], ensure_ascii=False)
    example = (
        '{"items": [\n'
        '  {"unitId": "u5", "finalThemeIndex": 1, "finalSubThemeIndex": 2, "confidence": 0.75,\n'
        '   "ruling": "Agent B is correct. The text explicitly mentions deadlines, fitting Time Pressure."}\n'
        "]}"
    )
    return [
        {
            "role": "system",
            "content": (
                "You are the Chief Editor. Two analysts (Agent A and Agent B) disagree on the coding "
                "of some text segments, and you issue the final ruling. Return JSON only."
            ),
        },
        {
            "role": "user",
            "content": (
                f"### Codebook\n{codebook}\n\n"
                f"### Disputed Items\n{disputed}\n\n"
                "### Decision Rules\n"
                "1. Compare optionA (Analyst) with optionB (Critic).\n"
                "2. Decide which one matches the Codebook definitions better.\n"
                "3. If both are wrong, give your own ruling.\n"
                "Answer with finalThemeIndex and finalSubThemeIndex taken from the Codebook, a confidence "
                "between 0 and 1, and a short ruling. Give exactly one decision per unitId.\n\n"
                f"### Output\nReturn a JSON object shaped like:\n{example}"
            ),
        },
    ]


def resolve_ruling(ruling: Ruling, conflict: Conflict, taxonomy: Taxonomy, stats: PipelineStats) -> Coding:
    """Final ids from the ruling, else the analyst's option A, else the taxonomy default."""
    ref = resolve_ref(ruling, taxonomy)
    option_a = conflict.option_a
    if not ref.exact:
        if taxonomy.contains(option_a.theme_id, option_a.sub_theme_id) and (
            ref.fallback is FallbackKind.FULL or option_a.theme_id == ref.theme_id
        ):
            ref = ThemeRef(option_a.theme_id, option_a.sub_theme_id)
        stats.adjudication_fallbacks += 1
        log.debug("adjudication: unit %s ruling unresolved, using %s/%s",
                  conflict.unit_id, ref.theme_id, ref.sub_theme_id)
    return Coding(
        unit_id=conflict.unit_id,
        theme_id=ref.theme_id,
        sub_theme_id=ref.sub_theme_id,
        confidence=ruling.confidence,
        reasoning=ruling.ruling,
        peer_validated=False,
        strict_fit=False,
    )


def _unruled(conflict: Conflict, taxonomy: Taxonomy) -> Coding:
    a = conflict.option_a
    ref = ThemeRef(a.theme_id, a.sub_theme_id) if taxonomy.contains(a.theme_id, a.sub_theme_id) else taxonomy.default_ref()
    return Coding(
        unit_id=conflict.unit_id,
        theme_id=ref.theme_id,
        sub_theme_id=ref.sub_theme_id,
        confidence=UNRULED_CONFIDENCE,
        reasoning=UNRULED_REASONING,
        peer_validated=False,
        strict_fit=False,
    )


def run_adjudication(
    gateway,
    conflicts: Sequence[Conflict],
    taxonomy: Taxonomy,
    stats: PipelineStats,
    model: Optional[str] = None,
) -> List[Coding]:
    """Rule on every conflict with one call; no call at all when there are none."""
    if not conflicts:
        return []
    data = gateway.generate_json(build_prompt(taxonomy, conflicts), model=model, label="adjudicator")
    rulings: Dict[str, Ruling] = {}
    for ruling in decode_records(Ruling, as_record_list(data)):
        if ruling is not None and ruling.unit_id is not None:
            rulings.setdefault(ruling.unit_id, ruling)

    out: List[Coding] = []
    for conflict in conflicts:
        ruling = rulings.get(conflict.unit_id)
        if ruling is None:
            stats.unruled_conflicts += 1
            out.append(_unruled(conflict, taxonomy))
        else:
            out.append(resolve_ruling(ruling, conflict, taxonomy, stats))
    if stats.unruled_conflicts:
        log.warning("Adjudicator returned no ruling for %d of %d conflict(s)",
                    stats.unruled_conflicts, len(conflicts))
    return out
