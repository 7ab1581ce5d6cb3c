"""Decode loosely-shaped model output into canonical taxonomy references.

Model responses address themes by index (preferred), by id, or by some
alternate key spelling. Every field is treated as untrusted: decoding either
yields an exact reference or a :class:`ThemeRef` tagged with the kind of
fallback that was applied. Fallbacks never raise.
"""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from ..models.schemas import (
    AnalystRecord,
    PipelineStats,
    SubTheme,
    Theme,
    ThemeSelection,
    decode_records,
    normalize_taxonomy,
)

log = logging.getLogger(__name__)


class FallbackKind(str, enum.Enum):
    NONE = "none"
    SUB_THEME = "sub_theme"  # theme resolved, sub-theme defaulted to the theme's first
    FULL = "full"  # taxonomy's first theme and first sub-theme


@dataclass(frozen=True)
class ThemeRef:
    theme_id: str
    sub_theme_id: str
    fallback: FallbackKind = FallbackKind.NONE

    @property
    def exact(self) -> bool:
        return self.fallback is FallbackKind.NONE


@dataclass(frozen=True)
class Assignment:
    """One analyst coding after resolution."""
    unit_id: str
    ref: ThemeRef
    strict_fit: bool
    reasoning: str = ""


class Taxonomy:
    """Normalized, index-addressable view over a theme list."""

    def __init__(self, themes: Iterable[Theme]):
        self.themes: List[Theme] = normalize_taxonomy(list(themes))
        self._by_id = {t.id: t for t in self.themes}

    def theme_at(self, index: Optional[int]) -> Optional[Theme]:
        if index is None or not 0 <= index < len(self.themes):
            return None
        return self.themes[index]

    @staticmethod
    def sub_theme_at(theme: Theme, index: Optional[int]) -> Optional[SubTheme]:
        if index is None or not 0 <= index < len(theme.sub_themes):
            return None
        return theme.sub_themes[index]

    def find_theme(self, key: Optional[str]) -> Optional[Theme]:
        if not key:
            return None
        if key in self._by_id:
            return self._by_id[key]
        folded = key.casefold()
        return next((t for t in self.themes if t.name.casefold() == folded), None)

    @staticmethod
    def find_sub_theme(theme: Theme, key: Optional[str]) -> Optional[SubTheme]:
        if not key:
            return None
        for sub in theme.sub_themes:
            if sub.id == key:
                return sub
        folded = key.casefold()
        return next((s for s in theme.sub_themes if s.name.casefold() == folded), None)

    def contains(self, theme_id: Optional[str], sub_theme_id: Optional[str]) -> bool:
        theme = self._by_id.get(theme_id or "")
        return theme is not None and any(s.id == sub_theme_id for s in theme.sub_themes)

    def default_ref(self) -> ThemeRef:
        first = self.themes[0]
        return ThemeRef(first.id, first.sub_themes[0].id, FallbackKind.FULL)

    def names(self, ref: ThemeRef) -> Dict[str, str]:
        theme = self._by_id[ref.theme_id]
        sub = next(s for s in theme.sub_themes if s.id == ref.sub_theme_id)
        return {"theme": theme.name, "subTheme": sub.name}

    def serialize_indexed(self, include_ids: bool = False) -> List[Dict[str, Any]]:
        out = []
        for i, theme in enumerate(self.themes):
            entry: Dict[str, Any] = {"themeIndex": i}
            if include_ids:
                entry["themeId"] = theme.id
            entry["name"] = theme.name
            if theme.description:
                entry["description"] = theme.description
            subs = []
            for j, sub in enumerate(theme.sub_themes):
                sub_entry: Dict[str, Any] = {"subThemeIndex": j}
                if include_ids:
                    sub_entry["subThemeId"] = sub.id
                sub_entry["name"] = sub.name
                sub_entry["description"] = sub.description
                subs.append(sub_entry)
            entry["subThemes"] = subs
            out.append(entry)
        return out


def resolve_ref(selection: Optional[ThemeSelection], taxonomy: Taxonomy) -> ThemeRef:
    """Indices first, then ids (or names), then the deterministic default."""
    if selection is None:
        return taxonomy.default_ref()
    theme = taxonomy.theme_at(selection.theme_index)
    if theme is None:
        theme = taxonomy.find_theme(selection.theme_key)
    if theme is None:
        return taxonomy.default_ref()
    sub = taxonomy.sub_theme_at(theme, selection.sub_theme_index)
    if sub is None:
        sub = taxonomy.find_sub_theme(theme, selection.sub_theme_key)
    if sub is None:
        return ThemeRef(theme.id, theme.sub_themes[0].id, FallbackKind.SUB_THEME)
    return ThemeRef(theme.id, sub.id)


def count_fallback(ref: ThemeRef, stats: PipelineStats, unit_id: str, stage: str) -> None:
    if ref.fallback is FallbackKind.FULL:
        stats.theme_fallbacks += 1
    elif ref.fallback is FallbackKind.SUB_THEME:
        stats.sub_theme_fallbacks += 1
    else:
        return
    log.debug("%s: unit %s defaulted to %s/%s (%s fallback)",
              stage, unit_id, ref.theme_id, ref.sub_theme_id, ref.fallback.value)


def resolve_assignment(
    record: Optional[AnalystRecord], taxonomy: Taxonomy, stats: PipelineStats
) -> Optional[Assignment]:
    if record is None or record.unit_id is None:
        stats.unidentified_records += 1
        return None
    ref = resolve_ref(record, taxonomy)
    count_fallback(ref, stats, record.unit_id, "analyst")
    return Assignment(
        unit_id=record.unit_id,
        ref=ref,
        strict_fit=record.strict_fit and ref.exact,
        reasoning=record.reasoning,
    )


def resolve_assignments(
    records: Iterable[Any], taxonomy: Taxonomy, stats: PipelineStats
) -> List[Assignment]:
    """Resolve raw analyst records, keeping the first record per unit id."""
    out: List[Assignment] = []
    seen = set()
    for record in decode_records(AnalystRecord, records):
        assignment = resolve_assignment(record, taxonomy, stats)
        if assignment is None:
            continue
        if assignment.unit_id in seen:
            stats.duplicate_records += 1
            continue
        seen.add(assignment.unit_id)
        out.append(assignment)
    stats.assignments = len(out)
    if stats.theme_fallbacks or stats.sub_theme_fallbacks:
        log.warning("ID resolution defaulted %d theme(s) and %d sub-theme(s); those units are marked strictFit=false",
                    stats.theme_fallbacks, stats.sub_theme_fallbacks)
    if stats.unidentified_records:
        log.warning("Dropped %d analyst record(s) without a unit id", stats.unidentified_records)
    return out
