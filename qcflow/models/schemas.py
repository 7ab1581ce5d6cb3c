
from __future__ import annotations
import enum
import math
import time
from typing import Any, Dict, Iterable, List, Optional, Type, TypeVar
from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    computed_field,
    field_validator,
)
from pydantic.alias_generators import to_camel


class _WireModel(BaseModel):
    # snake_case in Python, camelCase on the wire; both accepted on input
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


def _as_str(v: Any) -> Any:
    if isinstance(v, float) and v.is_integer():
        return str(int(v))
    if isinstance(v, (int, float)) and not isinstance(v, bool):
        return str(v)
    return v


class DataUnit(_WireModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    text: str
    source_id: Optional[str] = None
    speaker: Optional[str] = None
    timestamp: Optional[str] = None

    @field_validator("id", "source_id", "timestamp", mode="before")
    @classmethod
    def coerce_ids(cls, v: Any) -> Any:
        return _as_str(v)


class SubTheme(_WireModel):
    id: str = ""
    name: str = ""
    description: Optional[str] = ""

    @field_validator("id", mode="before")
    @classmethod
    def coerce_ids(cls, v: Any) -> Any:
        return _as_str(v)


class Theme(_WireModel):
    id: str = ""
    name: str = ""
    description: Optional[str] = None
    sub_themes: List[SubTheme] = Field(default_factory=list)

    @field_validator("id", mode="before")
    @classmethod
    def coerce_ids(cls, v: Any) -> Any:
        return _as_str(v)


class SampleCorrection(_WireModel):
    unit_id: str
    original_theme_id: Optional[str] = None
    original_sub_theme_id: Optional[str] = None
    corrected_theme_id: str
    corrected_sub_theme_id: str

    @field_validator("unit_id", mode="before")
    @classmethod
    def coerce_ids(cls, v: Any) -> Any:
        return _as_str(v)


class GoldStandardUnit(_WireModel):
    unit_id: str = Field(validation_alias=AliasChoices("unitId", "unit_id", "id"))
    text: str = ""
    theme_id: Optional[str] = None
    sub_theme_id: Optional[str] = None

    @field_validator("unit_id", mode="before")
    @classmethod
    def coerce_ids(cls, v: Any) -> Any:
        return _as_str(v)


class CodedUnit(DataUnit):
    theme_id: str
    sub_theme_id: str
    confidence: float = Field(ge=0.0, le=1.0)
    reasoning: str = ""
    peer_validated: bool = False
    strict_fit: bool = False


class ConflictOption(_WireModel):
    theme_id: Optional[str] = None
    sub_theme_id: Optional[str] = None
    reasoning: Optional[str] = None


class Conflict(_WireModel):
    unit_id: str
    text: str
    option_a: ConflictOption
    option_b: ConflictOption


class BulkAnalysisRequest(_WireModel):
    units: List[DataUnit]
    themes: List[Theme]
    corrections: List[SampleCorrection] = Field(default_factory=list)
    gold_standard_units: List[GoldStandardUnit] = Field(default_factory=list)

    @field_validator("corrections", "gold_standard_units", mode="before")
    @classmethod
    def none_is_empty(cls, v: Any) -> Any:
        return [] if v is None else v


class JobStatus(str, enum.Enum):
    pending = "pending"
    processing = "processing"
    completed = "completed"
    failed = "failed"

    @property
    def terminal(self) -> bool:
        return self in (JobStatus.completed, JobStatus.failed)


class Job(_WireModel):
    id: str
    status: JobStatus = JobStatus.pending
    result: Optional[List[CodedUnit]] = None
    error: Optional[str] = None
    stats: Optional[Dict[str, Any]] = None
    created_at: float = Field(default_factory=time.time)
    updated_at: float = Field(default_factory=time.time)


def normalize_taxonomy(themes: List[Theme]) -> List[Theme]:
    """Fill in missing ids/names so every theme and sub-theme is addressable.

    A theme with no sub-themes receives a synthetic "General" sub-theme, so
    every theme can supply a fallback sub-theme id.
    """
    if not themes:
        raise ValueError("Taxonomy must contain at least one theme.")
    out: List[Theme] = []
    for i, theme in enumerate(themes):
        tid = (theme.id or "").strip() or f"t{i}"
        subs: List[SubTheme] = []
        for j, sub in enumerate(theme.sub_themes):
            sid = (sub.id or "").strip() or f"{tid}-s{j}"
            subs.append(SubTheme(id=sid, name=sub.name or sid, description=sub.description or ""))
        if not subs:
            subs.append(SubTheme(id=f"{tid}-general", name="General", description=theme.description or ""))
        out.append(Theme(id=tid, name=theme.name or tid, description=theme.description, sub_themes=subs))
    return out


class PipelineStats(BaseModel):
    """Counters collected over one bulk-coding run.

    Fallbacks and dropped units never raise; these counters are how they
    surface.
    """
    units_in: int = 0
    batches: int = 0
    failed_batches: int = 0
    failed_unit_ids: List[str] = Field(default_factory=list)
    assignments: int = 0
    unidentified_records: int = 0
    duplicate_records: int = 0
    theme_fallbacks: int = 0
    sub_theme_fallbacks: int = 0
    agreed: int = 0
    unreviewed: int = 0
    conflicts: int = 0
    unruled_conflicts: int = 0
    adjudication_fallbacks: int = 0
    lost_context: int = 0
    coded_units: int = 0
    stage_usage: Dict[str, Dict[str, float]] = Field(default_factory=dict)

    @computed_field
    @property
    def coverage_gap(self) -> int:
        return max(0, self.units_in - self.coded_units)


class BulkAnalysisResult(BaseModel):
    coded_units: List[CodedUnit]
    stats: PipelineStats


# --- records decoded from model output ---------------------------------------

_NULLISH = ("", "null", "none", "undefined", "n/a")
_AGREE = ("AGREE", "AGREED", "ACCEPT", "APPROVE", "APPROVED")
_DISAGREE = ("DISAGREE", "DISAGREED", "REJECT", "REJECTED")

DEFAULT_RULING_CONFIDENCE = 0.75

UNIT_ID_ALIASES = AliasChoices("unitId", "unit_id", "id", "uId")

R = TypeVar("R", bound=BaseModel)


def _blank_to_none(v: Any) -> Any:
    if isinstance(v, str) and v.strip().lower() in _NULLISH:
        return None
    return v


def _as_key(v: Any) -> Optional[str]:
    v = _blank_to_none(v)
    if v is None or isinstance(v, (dict, list, bool)):
        return None
    return str(_as_str(v)).strip()


def _as_index(v: Any) -> Optional[int]:
    v = _blank_to_none(v)
    if v is None or isinstance(v, bool):
        return None
    if isinstance(v, int):
        return v
    if isinstance(v, float):
        return int(v) if v.is_integer() else None
    if isinstance(v, str):
        digits = v.strip()
        if digits.isdecimal() or (digits[:1] == "-" and digits[1:].isdecimal()):
            return int(digits)
    return None


class VerdictStatus(str, enum.Enum):
    AGREE = "AGREE"
    DISAGREE = "DISAGREE"


def parse_status(value: Any) -> Optional[VerdictStatus]:
    text = str(value or "").strip().upper()
    if text in _AGREE:
        return VerdictStatus.AGREE
    if text in _DISAGREE:
        return VerdictStatus.DISAGREE
    return None


def parse_confidence(value: Any, default: float = DEFAULT_RULING_CONFIDENCE) -> float:
    try:
        conf = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(conf):
        return default
    if 1.0 < conf <= 100.0:
        # percentages
        conf = conf / 100.0
    return min(1.0, max(0.0, conf))


class _ModelRecord(BaseModel):
    # every field is optional; junk values become None instead of failing
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class ThemeSelection(_ModelRecord):
    """A theme/sub-theme pick as the model wrote it, by index or by id/name."""
    theme_index: Optional[int] = Field(None, validation_alias=AliasChoices("themeIndex", "theme_index"))
    sub_theme_index: Optional[int] = Field(
        None, validation_alias=AliasChoices("subThemeIndex", "sub_theme_index", "subIndex")
    )
    theme_key: Optional[str] = Field(None, validation_alias=AliasChoices("themeId", "theme_id"))
    sub_theme_key: Optional[str] = Field(None, validation_alias=AliasChoices("subThemeId", "sub_theme_id"))

    @field_validator("theme_index", "sub_theme_index", mode="before")
    @classmethod
    def lenient_index(cls, v: Any) -> Optional[int]:
        return _as_index(v)

    @field_validator("theme_key", "sub_theme_key", mode="before")
    @classmethod
    def lenient_key(cls, v: Any) -> Optional[str]:
        return _as_key(v)


class AnalystRecord(ThemeSelection):
    unit_id: Optional[str] = Field(None, validation_alias=UNIT_ID_ALIASES)
    strict_fit: bool = Field(True, validation_alias=AliasChoices("strictFit", "strict_fit"))
    reasoning: str = Field("", validation_alias=AliasChoices("reasoning", "rationale", "reason"))

    @field_validator("unit_id", mode="before")
    @classmethod
    def lenient_unit_id(cls, v: Any) -> Optional[str]:
        return _as_key(v)

    @field_validator("strict_fit", mode="before")
    @classmethod
    def only_false_is_false(cls, v: Any) -> bool:
        if isinstance(v, str):
            return v.strip().lower() != "false"
        return v is not False

    @field_validator("reasoning", mode="before")
    @classmethod
    def lenient_text(cls, v: Any) -> str:
        return _as_key(v) or ""


class CriticVerdict(_ModelRecord):
    unit_id: Optional[str] = Field(None, validation_alias=UNIT_ID_ALIASES)
    status: Optional[VerdictStatus] = Field(None, validation_alias=AliasChoices("status", "verdict"))
    correction: Optional[ThemeSelection] = None
    critique: str = Field("", validation_alias=AliasChoices("critique", "reasoning", "comment"))

    @field_validator("unit_id", mode="before")
    @classmethod
    def lenient_unit_id(cls, v: Any) -> Optional[str]:
        return _as_key(v)

    @field_validator("status", mode="before")
    @classmethod
    def lenient_status(cls, v: Any) -> Optional[VerdictStatus]:
        return parse_status(v)

    @field_validator("correction", mode="before")
    @classmethod
    def dict_or_none(cls, v: Any) -> Any:
        return v if isinstance(v, dict) else None

    @field_validator("critique", mode="before")
    @classmethod
    def lenient_text(cls, v: Any) -> str:
        return _as_key(v) or ""


class Ruling(ThemeSelection):
    """Adjudicator decision; the final* keys win over the plain ones."""
    unit_id: Optional[str] = Field(None, validation_alias=UNIT_ID_ALIASES)
    theme_index: Optional[int] = Field(
        None, validation_alias=AliasChoices("finalThemeIndex", "themeIndex", "theme_index")
    )
    sub_theme_index: Optional[int] = Field(
        None, validation_alias=AliasChoices("finalSubThemeIndex", "subThemeIndex", "sub_theme_index")
    )
    theme_key: Optional[str] = Field(None, validation_alias=AliasChoices("finalThemeId", "themeId", "theme_id"))
    sub_theme_key: Optional[str] = Field(
        None, validation_alias=AliasChoices("finalSubThemeId", "subThemeId", "sub_theme_id")
    )
    confidence: float = DEFAULT_RULING_CONFIDENCE
    ruling: str = Field("", validation_alias=AliasChoices("ruling", "reasoning", "justification"))

    @field_validator("unit_id", mode="before")
    @classmethod
    def lenient_unit_id(cls, v: Any) -> Optional[str]:
        return _as_key(v)

    @field_validator("confidence", mode="before")
    @classmethod
    def lenient_confidence(cls, v: Any) -> float:
        return parse_confidence(v)

    @field_validator("ruling", mode="before")
    @classmethod
    def lenient_text(cls, v: Any) -> str:
        return _as_key(v) or ""


def decode_records(model: Type[R], records: Iterable[Any]) -> List[Optional[R]]:
    """Validate each record on its own; one that still fails decodes to None."""
    adapter = TypeAdapter(model)
    out: List[Optional[R]] = []
    for raw in records:
        try:
            out.append(adapter.validate_python(raw))
        except ValidationError:
            out.append(None)
    return out
