from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from ..models.schemas import CriticVerdict, DataUnit, VerdictStatus, decode_records
from ..utils.json_utils import as_record_list
from .resolution import Assignment, FallbackKind, Taxonomy, ThemeRef, resolve_ref

MISSING_TEXT = "Error: Text missing"


@dataclass(frozen=True)
class Verdict:
    status: VerdictStatus
    correction: Optional[ThemeRef] = None
    critique: str = ""


def build_audit_payload(
    assignments: Sequence[Assignment], units_by_id: Dict[str, DataUnit], taxonomy: Taxonomy
) -> List[Dict[str, Any]]:
    payload = []
    for a in assignments:
        unit = units_by_id.get(a.unit_id)
        names = taxonomy.names(a.ref)
        payload.append(
            {
                "unitId": a.unit_id,
                "text": unit.text if unit else MISSING_TEXT,
                "assignedTheme": a.ref.theme_id,
                "assignedThemeName": names["theme"],
                "assignedSubTheme": a.ref.sub_theme_id,
                "assignedSubThemeName": names["subTheme"],
                "analystReasoning": a.reasoning,
            }
        )
    return payload


def build_prompt(taxonomy: Taxonomy, audit_payload: List[Dict[str, Any]]) -> List[Dict[str, str]]:
    codebook = json.dumps(taxonomy.serialize_indexed(include_ids=True), ensure_ascii=False)
    draft = json.dumps(audit_payload, ensure_ascii=False)
    example = (
        '{"items": [\n'
        '  {"unitId": "u0", "status": "AGREE", "correction": null,\n'
        '   "critique": "Correctly identified financial constraint."},\n'
        '  {"unitId": "u1", "status": "DISAGREE", "correction": {"themeIndex": 1, "subThemeIndex": 0},\n'
        '   "critique": "Text discusses time, not money."}\n'
        "]}"
    )
    return [
        {
            "role": "system",
            "content": "You are a QA Specialist auditing a qualitative coding dataset. Return JSON only.",
        },
        {
            "role": "user",
            "content": (
                f"### Codebook\n{codebook}\n\n"
                f"### Coding Draft\n{draft}\n\n"
                "### Task\n"
                "Review each item and decide whether assignedTheme and assignedSubTheme are accurate "
                "for the text, given the Codebook definitions.\n"
                "1. Deference: if the assignment is reasonable or defensible, mark it \"AGREE\". Do not nitpick.\n"
                "2. Correction: if the assignment is clearly wrong (hallucination, missed obvious keyword, "
                "wrong sentiment), mark it \"DISAGREE\" and give the correct themeIndex and subThemeIndex "
                "from the Codebook.\n"
                "3. If the text is too short or ambiguous to judge, suggest the best available sub-theme "
                "and mark it \"DISAGREE\" so it is flagged for review. Never suggest null.\n\n"
                f"### Output\nReturn one entry per unitId, as a JSON object shaped like:\n{example}"
            ),
        },
    ]


def decode_verdicts(records: Sequence[Any], taxonomy: Taxonomy, known_ids) -> Dict[str, Verdict]:
    """First recognizable verdict per known unit id.

    Entries with an unrecognized status are ignored, so the unit counts as
    unreviewed. A correction that does not resolve to a taxonomy reference is
    dropped rather than defaulted.
    """
    verdicts: Dict[str, Verdict] = {}
    for record in decode_records(CriticVerdict, records):
        if record is None or record.status is None:
            continue
        unit_id = record.unit_id
        if unit_id is None or unit_id not in known_ids or unit_id in verdicts:
            continue
        correction = None
        if record.correction is not None:
            ref = resolve_ref(record.correction, taxonomy)
            if ref.fallback is not FallbackKind.FULL:
                correction = ref
        verdicts[unit_id] = Verdict(record.status, correction, record.critique)
    return verdicts


def run_critic(
    gateway,
    assignments: Sequence[Assignment],
    units_by_id: Dict[str, DataUnit],
    taxonomy: Taxonomy,
    model: Optional[str] = None,
) -> Dict[str, Verdict]:
    """Audit every assignment in a single call. Gateway errors propagate."""
    if not assignments:
        return {}
    messages = build_prompt(taxonomy, build_audit_payload(assignments, units_by_id, taxonomy))
    data = gateway.generate_json(messages, model=model, label="critic")
    return decode_verdicts(as_record_list(data), taxonomy, {a.unit_id for a in assignments})
