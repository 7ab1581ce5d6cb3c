from __future__ import annotations

import pytest

from qcflow.models.schemas import AnalystRecord, PipelineStats, Theme, ThemeSelection
from qcflow.pipeline.resolution import (
    FallbackKind,
    Taxonomy,
    ThemeRef,
    resolve_assignment,
    resolve_assignments,
    resolve_ref,
)


def _ref(raw, taxonomy):
    return resolve_ref(ThemeSelection.model_validate(raw), taxonomy)


def _assign(raw, taxonomy, stats):
    return resolve_assignment(AnalystRecord.model_validate(raw), taxonomy, stats)


def test_indices_resolve_to_ids(taxonomy):
    assert _ref({"themeIndex": 1, "subThemeIndex": 1}, taxonomy) == ThemeRef("t2", "s2-2")
    # numeric strings are accepted as indices
    assert _ref({"themeIndex": "2", "subThemeIndex": "0"}, taxonomy) == ThemeRef("t3", "s3-1")


def test_ids_and_names_resolve_when_indices_absent(taxonomy):
    assert _ref({"themeId": "t1", "subThemeId": "s1-2"}, taxonomy) == ThemeRef("t1", "s1-2")
    assert _ref({"themeId": "time pressure", "subThemeId": "WORKLOAD"}, taxonomy) == ThemeRef("t2", "s2-2")


@pytest.mark.parametrize(
    "raw",
    [
        {},
        {"themeIndex": 99, "subThemeIndex": 0},
        {"themeIndex": -1},
        {"themeIndex": "-1", "subThemeIndex": "0"},
        {"themeIndex": 1.5},
        {"themeId": {"id": "t2"}},
        {"themeIndex": None, "themeId": "null"},
        {"themeIndex": True, "subThemeIndex": 0},
        {"themeId": "t9", "subThemeId": "s9"},
    ],
)
def test_unresolvable_theme_falls_back_to_first_theme_and_sub_theme(taxonomy, raw):
    ref = _ref(raw, taxonomy)
    assert ref == ThemeRef("t1", "s1-1", FallbackKind.FULL)
    assert not ref.exact


def test_invalid_sub_theme_keeps_resolved_theme(taxonomy):
    ref = _ref({"themeIndex": 1, "subThemeIndex": 7}, taxonomy)
    assert ref == ThemeRef("t2", "s2-1", FallbackKind.SUB_THEME)


def test_resolution_is_deterministic_and_idempotent(taxonomy):
    raw = {"themeIndex": 42, "subThemeIndex": "x"}
    first = _ref(raw, taxonomy)
    assert all(_ref(raw, taxonomy) == first for _ in range(5))
    # feeding resolved ids back in yields the same ids
    again = _ref({"themeId": first.theme_id, "subThemeId": first.sub_theme_id}, taxonomy)
    assert (again.theme_id, again.sub_theme_id) == (first.theme_id, first.sub_theme_id)
    assert again.exact


def test_strict_fit_is_cleared_by_fallback_or_explicit_false(taxonomy):
    stats = PipelineStats()
    exact = _assign({"unitId": "u1", "themeIndex": 0, "subThemeIndex": 1}, taxonomy, stats)
    assert exact.strict_fit is True
    ambiguous = _assign(
        {"unitId": "u2", "themeIndex": 0, "subThemeIndex": 1, "strictFit": "false"}, taxonomy, stats
    )
    assert ambiguous.strict_fit is False
    defaulted = _assign({"unitId": "u3", "themeIndex": 9, "strictFit": True}, taxonomy, stats)
    assert defaulted.strict_fit is False
    assert stats.theme_fallbacks == 1


def test_resolve_assignments_dedupes_and_counts(taxonomy):
    stats = PipelineStats()
    records = [
        {"unitId": "u1", "themeIndex": 0, "subThemeIndex": 0, "reasoning": "first"},
        {"unitId": "u1", "themeIndex": 1, "subThemeIndex": 0, "reasoning": "second"},
        {"id": 2, "themeIndex": 1, "subThemeIndex": 5},
        {"themeIndex": 0, "subThemeIndex": 0},
    ]
    out = resolve_assignments(records, taxonomy, stats)

    assert [a.unit_id for a in out] == ["u1", "2"]
    assert out[0].reasoning == "first"
    assert out[1].ref.fallback is FallbackKind.SUB_THEME
    assert stats.assignments == 2
    assert stats.duplicate_records == 1
    assert stats.unidentified_records == 1
    assert stats.sub_theme_fallbacks == 1


def test_taxonomy_normalizes_missing_ids_and_empty_sub_themes():
    taxonomy = Taxonomy([Theme(name="Loose"), Theme(id="t7", name="Empty", description="catch-all")])
    first, second = taxonomy.themes
    assert first.id == "t0"
    assert second.sub_themes[0].id == "t7-general"
    assert second.sub_themes[0].name == "General"
    assert taxonomy.default_ref() == ThemeRef("t0", "t0-general", FallbackKind.FULL)


def test_empty_taxonomy_is_rejected():
    with pytest.raises(ValueError, match="at least one theme"):
        Taxonomy([])


def test_serialize_indexed_exposes_positions(taxonomy):
    entries = taxonomy.serialize_indexed()
    assert [e["themeIndex"] for e in entries] == [0, 1, 2]
    assert entries[1]["subThemes"][1] == {"subThemeIndex": 1, "name": "Workload", "description": "Too much work for the time."}
    assert "themeId" not in entries[0]
    assert taxonomy.serialize_indexed(include_ids=True)[0]["themeId"] == "t1"


def test_whole_number_floats_are_indices_and_ids(taxonomy):
    stats = PipelineStats()
    out = resolve_assignments([{"unitId": 5.0, "themeIndex": 1.0, "subThemeIndex": "1"}], taxonomy, stats)

    assert [a.unit_id for a in out] == ["5"]
    assert out[0].ref == ThemeRef("t2", "s2-2")
    assert ThemeSelection.model_validate({"themeIndex": " -2 "}).theme_index == -2


def test_unreadable_records_count_as_unidentified(taxonomy):
    stats = PipelineStats()
    records = [
        "u1 -> Cost",
        {"unitId": "null", "themeIndex": 0},
        {"uId": "u3", "theme_index": 2, "sub_theme_index": 0, "rationale": " short ", "extra": [1, 2]},
    ]
    out = resolve_assignments(records, taxonomy, stats)

    assert [(a.unit_id, a.ref.theme_id, a.reasoning) for a in out] == [("u3", "t3", "short")]
    assert stats.unidentified_records == 2
