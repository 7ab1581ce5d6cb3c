from __future__ import annotations

from qcflow.gateway import LLMGateway
from qcflow.models.schemas import PipelineStats, VerdictStatus, parse_status
from qcflow.pipeline.consensus import AGREED_CONFIDENCE, UNREVIEWED_CONFIDENCE, split_consensus
from qcflow.pipeline.critic import (
    MISSING_TEXT,
    build_audit_payload,
    decode_verdicts,
    run_critic,
)
from qcflow.pipeline.resolution import Assignment, ThemeRef

from conftest import ScriptedProvider, make_units


def _assignments(n, theme="t1", sub="s1-1"):
    return [Assignment(f"u{i}", ThemeRef(theme, sub), strict_fit=True, reasoning=f"r{i}") for i in range(1, n + 1)]


def test_audit_payload_carries_ids_names_and_source_text(taxonomy):
    units = {u.id: u for u in make_units(1)}
    payload = build_audit_payload(_assignments(2), units, taxonomy)
    assert payload[0] == {
        "unitId": "u1",
        "text": "observation number 1",
        "assignedTheme": "t1",
        "assignedThemeName": "Financial Constraints",
        "assignedSubTheme": "s1-1",
        "assignedSubThemeName": "Cost",
        "analystReasoning": "r1",
    }
    assert payload[1]["text"] == MISSING_TEXT


def test_parse_status_is_lenient():
    assert parse_status(" agree ") is VerdictStatus.AGREE
    assert parse_status("Disagree") is VerdictStatus.DISAGREE
    assert parse_status("maybe") is None
    assert parse_status(None) is None


def test_decode_verdicts_keeps_first_known_and_resolves_corrections(taxonomy):
    records = [
        {"unitId": "u1", "status": "DISAGREE", "correction": {"themeIndex": 1, "subThemeIndex": 0}, "critique": "time"},
        {"unitId": "u1", "status": "AGREE"},
        {"unitId": "u2", "status": "DISAGREE", "correction": {"themeIndex": 77}},
        {"unitId": "u3", "status": "??"},
        {"unitId": "ghost", "status": "AGREE"},
    ]
    verdicts = decode_verdicts(records, taxonomy, {"u1", "u2", "u3"})

    assert set(verdicts) == {"u1", "u2"}
    assert verdicts["u1"].correction == ThemeRef("t2", "s2-1")
    assert verdicts["u1"].critique == "time"
    assert verdicts["u2"].correction is None


def test_decode_verdicts_reads_alternate_spellings(taxonomy):
    records = [
        "u1 AGREE",
        {"uId": 4.0, "verdict": "approved", "comment": "fine"},
        {"unit_id": "u5", "status": "rejected", "correction": "Time Pressure", "reasoning": "deadlines"},
        {"unitId": "u6", "status": "DISAGREE", "correction": {"themeId": "null", "subThemeIndex": 0}},
    ]
    verdicts = decode_verdicts(records, taxonomy, {"u1", "4", "u5", "u6"})

    assert set(verdicts) == {"4", "u5", "u6"}
    assert verdicts["4"].status is VerdictStatus.AGREE
    assert verdicts["4"].critique == "fine"
    assert verdicts["u5"].status is VerdictStatus.DISAGREE
    assert verdicts["u5"].correction is None
    assert verdicts["u5"].critique == "deadlines"
    assert verdicts["u6"].correction is None


def test_run_critic_makes_one_call_for_all_assignments(taxonomy):
    provider = ScriptedProvider()
    units = {u.id: u for u in make_units(12)}

    verdicts = run_critic(LLMGateway(provider), _assignments(12), units, taxonomy)

    assert len(provider.stage_calls("critic")) == 1
    assert len(provider.calls[0]["payload"]) == 12
    assert all(v.status is VerdictStatus.AGREE for v in verdicts.values())


def test_run_critic_skips_call_without_assignments(taxonomy):
    provider = ScriptedProvider()
    assert run_critic(LLMGateway(provider), [], {}, taxonomy) == {}
    assert provider.calls == []


def test_critic_disagreement_becomes_conflict(taxonomy):
    """One DISAGREE with a correction: one conflict, everything else agreed."""
    units = {u.id: u for u in make_units(3)}

    def critic(items):
        out = []
        for item in items:
            if item["unitId"] == "u2":
                out.append({"unitId": "u2", "status": "DISAGREE",
                            "correction": {"themeIndex": 1, "subThemeIndex": 0},
                            "critique": "Text discusses time, not money."})
            else:
                out.append({"unitId": item["unitId"], "status": "AGREE", "correction": None})
        return {"items": out}

    stats = PipelineStats()
    verdicts = run_critic(LLMGateway(ScriptedProvider(critic=critic)), _assignments(3), units, taxonomy)
    consensus, conflicts = split_consensus(_assignments(3), verdicts, units, stats)

    assert [c.unit_id for c in consensus] == ["u1", "u3"]
    assert all(c.confidence == AGREED_CONFIDENCE and c.peer_validated for c in consensus)
    (conflict,) = conflicts
    assert conflict.unit_id == "u2"
    assert conflict.text == "observation number 2"
    assert (conflict.option_a.theme_id, conflict.option_a.sub_theme_id) == ("t1", "s1-1")
    assert conflict.option_a.reasoning == "r2"
    assert (conflict.option_b.theme_id, conflict.option_b.sub_theme_id) == ("t2", "s2-1")
    assert conflict.option_b.reasoning == "Text discusses time, not money."
    assert (stats.agreed, stats.unreviewed, stats.conflicts) == (2, 0, 1)


def test_units_the_critic_omits_are_unreviewed(taxonomy):
    units = {u.id: u for u in make_units(4)}

    def critic(items):
        return [{"unitId": "u1", "status": "AGREE"}]

    stats = PipelineStats()
    assignments = _assignments(4)
    verdicts = run_critic(LLMGateway(ScriptedProvider(critic=critic)), assignments, units, taxonomy)
    consensus, conflicts = split_consensus(assignments, verdicts, units, stats)

    assert conflicts == []
    by_id = {c.unit_id: c for c in consensus}
    assert by_id["u1"].confidence == AGREED_CONFIDENCE
    for uid in ("u2", "u3", "u4"):
        assert by_id[uid].confidence == UNREVIEWED_CONFIDENCE
        assert by_id[uid].peer_validated is False
    assert (stats.agreed, stats.unreviewed) == (1, 3)


def test_split_is_a_partition(taxonomy):
    units = {u.id: u for u in make_units(6)}
    assignments = _assignments(6)
    verdicts = decode_verdicts(
        [
            {"unitId": "u1", "status": "AGREE"},
            {"unitId": "u2", "status": "DISAGREE"},
            {"unitId": "u4", "status": "DISAGREE", "correction": {"themeId": "t3", "subThemeId": "s3-1"}},
        ],
        taxonomy,
        {a.unit_id for a in assignments},
    )
    consensus, conflicts = split_consensus(assignments, verdicts, units, PipelineStats())

    consensus_ids = {c.unit_id for c in consensus}
    conflict_ids = {c.unit_id for c in conflicts}
    assert consensus_ids.isdisjoint(conflict_ids)
    assert consensus_ids | conflict_ids == {a.unit_id for a in assignments}
    # DISAGREE without a correction still conflicts, with an empty option B
    u2 = next(c for c in conflicts if c.unit_id == "u2")
    assert u2.option_b.theme_id is None
