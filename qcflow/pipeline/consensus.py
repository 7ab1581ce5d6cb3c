from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Sequence, Tuple

from ..models.schemas import Conflict, ConflictOption, DataUnit, PipelineStats, VerdictStatus
from .critic import MISSING_TEXT, Verdict
from .resolution import Assignment

AGREED_CONFIDENCE = 0.95
UNREVIEWED_CONFIDENCE = 0.85


@dataclass(frozen=True)
class Coding:
    """A final coding decision, before the unit text is re-attached."""
    unit_id: str
    theme_id: str
    sub_theme_id: str
    confidence: float
    reasoning: str
    peer_validated: bool
    strict_fit: bool


def split_consensus(
    assignments: Sequence[Assignment],
    verdicts: Dict[str, Verdict],
    units_by_id: Dict[str, DataUnit],
    stats: PipelineStats,
) -> Tuple[List[Coding], List[Conflict]]:
    """Partition assignments into consensus codings and conflicts.

    AGREE -> consensus at 0.95, peer validated. DISAGREE -> conflict. No
    verdict -> consensus at 0.85, not peer validated.
    """
    consensus: List[Coding] = []
    conflicts: List[Conflict] = []
    for a in assignments:
        verdict = verdicts.get(a.unit_id)
        if verdict is not None and verdict.status is VerdictStatus.DISAGREE:
            unit = units_by_id.get(a.unit_id)
            suggested = verdict.correction
            conflicts.append(
                Conflict(
                    unit_id=a.unit_id,
                    text=unit.text if unit else MISSING_TEXT,
                    option_a=ConflictOption(
                        theme_id=a.ref.theme_id, sub_theme_id=a.ref.sub_theme_id, reasoning=a.reasoning
                    ),
                    option_b=ConflictOption(
                        theme_id=suggested.theme_id if suggested else None,
                        sub_theme_id=suggested.sub_theme_id if suggested else None,
                        reasoning=verdict.critique,
                    ),
                )
            )
            continue
        agreed = verdict is not None
        consensus.append(
            Coding(
                unit_id=a.unit_id,
                theme_id=a.ref.theme_id,
                sub_theme_id=a.ref.sub_theme_id,
                confidence=AGREED_CONFIDENCE if agreed else UNREVIEWED_CONFIDENCE,
                reasoning=a.reasoning,
                peer_validated=agreed,
                strict_fit=a.strict_fit,
            )
        )
        if agreed:
            stats.agreed += 1
        else:
            stats.unreviewed += 1
    stats.conflicts = len(conflicts)
    return consensus, conflicts
