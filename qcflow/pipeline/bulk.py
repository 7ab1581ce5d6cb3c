"""The bulk-coding chain: analyst -> critic -> adjudication -> merge.

Stages run strictly in sequence because each consumes the previous stage's
output. Only the analyst stage tolerates failure (per batch); an error in
the critic or adjudicator call fails the whole run.
"""
from __future__ import annotations

import logging
from typing import Optional

from ..config import RunConfig
from ..gateway import LLMGateway
from ..models.schemas import BulkAnalysisRequest, BulkAnalysisResult, PipelineStats
from .adjudicator import run_adjudication
from .analyst import build_corrections_block, build_few_shot_block, run_batch_analyst
from .consensus import split_consensus
from .critic import run_critic
from .resolution import Taxonomy, resolve_assignments
from .synthesis import merge_results

log = logging.getLogger(__name__)

STAGE_ANALYST = "analyst"
STAGE_CRITIC = "critic"
STAGE_ADJUDICATION = "adjudication"


def run_bulk_analysis(
    gateway: LLMGateway,
    request: BulkAnalysisRequest,
    run_conf: Optional[RunConfig] = None,
    adjudicator_model: Optional[str] = None,
    analyst_model: Optional[str] = None,
) -> BulkAnalysisResult:
    run_conf = run_conf or RunConfig()
    taxonomy = Taxonomy(request.themes)
    units = list(request.units)
    units_by_id = {u.id: u for u in units}
    stats = PipelineStats(units_in=len(units))

    def _record_usage(stage: str, before) -> None:
        stats.stage_usage[stage] = gateway.usage_since(before)

    log.info("Bulk analyst: %d units in batches of %d", len(units), run_conf.batch_size)
    before = gateway.usage()
    analyst = run_batch_analyst(
        gateway,
        units,
        taxonomy,
        few_shot=build_few_shot_block(request.gold_standard_units, run_conf.few_shot_chars),
        corrections=build_corrections_block(request.corrections, units_by_id, run_conf.few_shot_chars),
        batch_size=run_conf.batch_size,
        workers=run_conf.concurrent_workers,
        model=analyst_model,
    )
    _record_usage(STAGE_ANALYST, before)
    stats.batches = analyst.batches
    stats.failed_batches = analyst.failed_batches
    stats.failed_unit_ids = analyst.failed_unit_ids
    if analyst.failed_batches:
        log.warning("%d of %d analyst batches failed; %d units will be missing from the output",
                    analyst.failed_batches, analyst.batches, len(analyst.failed_unit_ids))

    assignments = resolve_assignments(analyst.records, taxonomy, stats)

    log.info("Bulk critic: auditing %d assignments", len(assignments))
    before = gateway.usage()
    verdicts = run_critic(gateway, assignments, units_by_id, taxonomy, model=analyst_model)
    _record_usage(STAGE_CRITIC, before)

    consensus, conflicts = split_consensus(assignments, verdicts, units_by_id, stats)
    log.info("Bulk synthesis: %d agreed, %d unreviewed, %d conflicts",
             stats.agreed, stats.unreviewed, stats.conflicts)

    before = gateway.usage()
    adjudicated = run_adjudication(gateway, conflicts, taxonomy, stats, model=adjudicator_model)
    if conflicts:
        _record_usage(STAGE_ADJUDICATION, before)

    coded = merge_results(consensus, adjudicated, units_by_id, stats)
    log.info("Bulk analysis done: %d of %d units coded", stats.coded_units, stats.units_in)
    return BulkAnalysisResult(coded_units=coded, stats=stats)
