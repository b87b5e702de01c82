from .enums import (
    AnchorKind,
    DedupKind,
    Polarity,
    QualityGrade,
    ReferenceStatus,
    TemporalKind,
    TemporalQualifier,
    TimelineEventType,
    TriggerDirection,
)
from .common import (
    Anchor,
    EvidenceSpan,
    FieldValue,
    ScalarValue,
    StructuredValue,
    TemporalReference,
    normalize_text_value,
)
from .domain import (
    DEFAULT_OPTIONAL_FIELDS,
    DEFAULT_REQUIRED_FIELDS,
    KNOWN_FIELDS,
    MULTI_VALUED_FIELDS,
    SCALAR_FIELDS,
    ComponentScores,
    DedupCluster,
    DedupMetadata,
    ExtractedField,
    FieldSlot,
    MultiValuedSlot,
    NegationSpan,
    NoteExtraction,
    PipelineConfig,
    QualityAssessment,
    RawNote,
    ScalarSlot,
    Section,
    StructuredRecord,
    TimelineEvent,
    Warning,
)
