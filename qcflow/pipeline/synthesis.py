from __future__ import annotations

import logging
from typing import Dict, List, Sequence

from ..models.schemas import CodedUnit, DataUnit, PipelineStats
from .consensus import Coding

log = logging.getLogger(__name__)

LOST_CONTEXT_TEXT = "Observation context lost"


def merge_results(
    consensus: Sequence[Coding],
    adjudicated: Sequence[Coding],
    units_by_id: Dict[str, DataUnit],
    stats: PipelineStats,
) -> List[CodedUnit]:
    """Consensus first, then adjudicated, with verbatim text from the source units.

    Text echoed back by the model is never used. An unknown unit id gets
    ``LOST_CONTEXT_TEXT``.
    """
    out: List[CodedUnit] = []
    for coding in list(consensus) + list(adjudicated):
        unit = units_by_id.get(coding.unit_id)
        if unit is None:
            stats.lost_context += 1
            log.warning("Unit %s is not in the submitted data; text replaced by sentinel", coding.unit_id)
        out.append(
            CodedUnit(
                id=coding.unit_id,
                text=unit.text if unit else LOST_CONTEXT_TEXT,
                source_id=unit.source_id if unit else None,
                speaker=unit.speaker if unit else None,
                timestamp=unit.timestamp if unit else None,
                theme_id=coding.theme_id,
                sub_theme_id=coding.sub_theme_id,
                confidence=coding.confidence,
                reasoning=coding.reasoning,
                peer_validated=coding.peer_validated,
                strict_fit=coding.strict_fit,
            )
        )
    stats.coded_units = len(out)
    return out
