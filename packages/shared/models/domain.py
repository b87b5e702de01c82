import os
import datetime as dt
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from packages.shared.errors import ConfigurationError

from .common import Anchor, EvidenceSpan, FieldValue, ScalarValue, TemporalReference
from .enums import (
    DedupKind,
    Polarity,
    QualityGrade,
    TemporalQualifier,
    TimelineEventType,
    TriggerDirection,
)

# ── Field catalogue ──────────────────────────────────────────────────────

SCALAR_FIELDS: tuple[str, ...] = (
    "demographics.name",
    "demographics.age",
    "demographics.gender",
    "dates.ictus",
    "dates.admission",
    "dates.discharge",
    "pathology",
    "pathology.location",
    "discharge.disposition",
)

MULTI_VALUED_FIELDS: tuple[str, ...] = (
    "dates.procedure",
    "pathology.grade",
    "procedures",
    "complications",
    "medications",
    "functional_scores",
    "exam_findings",
    "imaging",
    "follow_up",
)

KNOWN_FIELDS: frozenset[str] = frozenset(SCALAR_FIELDS + MULTI_VALUED_FIELDS)

DEFAULT_REQUIRED_FIELDS = frozenset({
    "demographics.age",
    "demographics.gender",
    "pathology",
    "procedures",
    "dates.admission",
})

DEFAULT_OPTIONAL_FIELDS = frozenset({
    "dates.ictus",
    "dates.discharge",
    "pathology.grade",
    "complications",
    "medications",
    "functional_scores",
    "imaging",
    "follow_up",
})

_DEFAULT_MAX_NOTE_CHARS = int(os.getenv("NOTELINE_MAX_NOTE_CHARS", "200000"))


class Warning(BaseModel):
    code: str
    message: str
    note_id: Optional[str] = None


class PipelineConfig(BaseModel):
    """Configuration for a pipeline run. Invalid values fail at construction."""
    similarity_threshold: float = 0.85
    preserve_chronology: bool = True
    merge_complementary: bool = True
    required_fields: frozenset[str] = DEFAULT_REQUIRED_FIELDS
    optional_fields: frozenset[str] = DEFAULT_OPTIONAL_FIELDS
    negation_window: int = 6
    max_note_chars: int = _DEFAULT_MAX_NOTE_CHARS

    @model_validator(mode="after")
    def _check(self) -> "PipelineConfig":
        if not 0.0 < self.similarity_threshold <= 1.0:
            raise ConfigurationError(
                f"similarity_threshold must be in (0, 1], got {self.similarity_threshold}"
            )
        if self.negation_window < 1:
            raise ConfigurationError(f"negation_window must be >= 1, got {self.negation_window}")
        if self.max_note_chars < 1:
            raise ConfigurationError(f"max_note_chars must be >= 1, got {self.max_note_chars}")
        if not self.required_fields:
            raise ConfigurationError("required_fields must not be empty")
        overlap = self.required_fields & self.optional_fields
        if overlap:
            raise ConfigurationError(f"Fields cannot be both required and optional: {sorted(overlap)}")
        unknown = (self.required_fields | self.optional_fields) - KNOWN_FIELDS
        if unknown:
            raise ConfigurationError(f"Unknown field names in config: {sorted(unknown)}")
        return self


class RawNote(BaseModel):
    model_config = ConfigDict(frozen=True)

    text: str
    note_id: Optional[str] = None
    ordinal: Optional[int] = None


class Section(BaseModel):
    label: str
    text: str
    start_offset: int = Field(ge=0)
    end_offset: int = Field(ge=0)


class ExtractedField(BaseModel):
    field_name: str
    value: Annotated[FieldValue, Field(discriminator="shape")]
    confidence: float = Field(ge=0.0, le=1.0)
    raw_confidence: float = Field(ge=0.0, le=1.0)
    evidence: EvidenceSpan
    calibrated: bool = False
    rule_id: Optional[str] = None
    note_id: Optional[str] = None
    note_ordinal: int = 0
    section: Optional[str] = None
    sources: list[str] = Field(default_factory=list)
    date: Optional[dt.date] = None
    qualifier: Optional[TemporalQualifier] = None
    reference: Optional[TemporalReference] = None

    def normalized_value(self) -> str:
        return self.value.normalized()

    def display_value(self) -> str:
        return self.value.display()

    def plain_value(self):
        v = self.value
        return v.value if isinstance(v, ScalarValue) else v.label


class ScalarSlot(BaseModel):
    shape: Literal["scalar"] = "scalar"
    primary: Optional[ExtractedField] = None
    secondary: list[ExtractedField] = Field(default_factory=list)


class MultiValuedSlot(BaseModel):
    shape: Literal["multi_valued"] = "multi_valued"
    items: list[ExtractedField] = Field(default_factory=list)


FieldSlot = Annotated[Union[ScalarSlot, MultiValuedSlot], Field(discriminator="shape")]


class NegationSpan(BaseModel):
    scope_start: int = Field(ge=0)
    scope_end: int = Field(ge=0)
    trigger: str
    trigger_start: int = Field(ge=0)
    trigger_end: int = Field(ge=0)
    direction: TriggerDirection
    polarity: Polarity = Polarity.NEGATED
    confidence: float = Field(default=0.95, ge=0.0, le=1.0)

    def covers(self, offset: int) -> bool:
        return self.scope_start <= offset < self.scope_end


class ComponentScores(BaseModel):
    completeness: float = Field(ge=0.0, le=1.0)
    validation: float = Field(ge=0.0, le=1.0)
    coherence: float = Field(ge=0.0, le=1.0)
    timeline_presence: float = Field(ge=0.0, le=1.0)


class QualityAssessment(BaseModel):
    score: float = Field(ge=0.0, le=1.0)
    grade: QualityGrade
    component_scores: ComponentScores
    issues: list[str] = Field(default_factory=list)
    strengths: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)


class DedupCluster(BaseModel):
    representative_id: str
    member_ids: list[str] = Field(min_length=1)
    kind: DedupKind
    similarity: float = Field(ge=0.0, le=1.0)


class DedupMetadata(BaseModel):
    input_count: int = 0
    output_count: int = 0
    exact_duplicates_removed: int = 0
    near_duplicates_removed: int = 0
    merge_count: int = 0
    sentences_removed: int = 0


class TimelineEvent(BaseModel):
    date: Optional[dt.date] = None
    type: TimelineEventType
    description: str
    source_field_refs: list[str] = Field(default_factory=list)
    note_id: Optional[str] = None
    qualifier: Optional[TemporalQualifier] = None
    relative_marker: Optional[str] = None
    unanchored: bool = False
    order: int = 0


class NoteExtraction(BaseModel):
    """Per-note output of steps 1-6, joined before calibration and timeline."""
    note: RawNote
    text: str
    sections: list[Section] = Field(default_factory=list)
    references: list[TemporalReference] = Field(default_factory=list)
    anchors: list[Anchor] = Field(default_factory=list)
    candidates: list[ExtractedField] = Field(default_factory=list)
    suppressed: list[ExtractedField] = Field(default_factory=list)
    negation_spans: list[NegationSpan] = Field(default_factory=list)
    warnings: list[Warning] = Field(default_factory=list)


class StructuredRecord(BaseModel):
    fields: dict[str, FieldSlot] = Field(default_factory=dict)
    quality: QualityAssessment
    timeline: list[TimelineEvent] = Field(default_factory=list)
    dedup_metadata: DedupMetadata = Field(default_factory=DedupMetadata)
    dedup_clusters: list[DedupCluster] = Field(default_factory=list)
    negated: list[ExtractedField] = Field(default_factory=list)
    notes_processed: int = 0
    rule_table_version: str = ""
    warnings: list[Warning] = Field(default_factory=list)

    def primary(self, name: str) -> Optional[ExtractedField]:
        slot = self.fields.get(name)
        if isinstance(slot, ScalarSlot):
            return slot.primary
        return None

    def primary_value(self, name: str):
        field = self.primary(name)
        return field.plain_value() if field is not None else None

    def values(self, name: str) -> list:
        slot = self.fields.get(name)
        if isinstance(slot, MultiValuedSlot):
            return [f.plain_value() for f in slot.items]
        if isinstance(slot, ScalarSlot) and slot.primary is not None:
            return [slot.primary.plain_value()] + [f.plain_value() for f in slot.secondary]
        return []
