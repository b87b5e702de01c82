import re
import datetime as dt
from typing import Literal, Optional, Union

from pydantic import BaseModel, Field

from .enums import AnchorKind, ReferenceStatus, TemporalKind

_NORMALIZE_RE = re.compile(r"[^\w\s]")


def normalize_text_value(text: str) -> str:
    """Lowercase, drop punctuation, collapse whitespace. Used for equality checks."""
    return re.sub(r"\s+", " ", _NORMALIZE_RE.sub(" ", str(text).lower())).strip()


class EvidenceSpan(BaseModel):
    start: int = Field(ge=0)
    end: int = Field(ge=0)
    text: str = ""


class ScalarValue(BaseModel):
    shape: Literal["scalar"] = "scalar"
    value: Union[bool, int, float, dt.date, str]

    def normalized(self) -> str:
        if isinstance(self.value, dt.date):
            return self.value.isoformat()
        return normalize_text_value(self.value)

    def display(self) -> str:
        if isinstance(self.value, dt.date):
            return self.value.isoformat()
        return str(self.value)


class StructuredValue(BaseModel):
    shape: Literal["structured"] = "structured"
    label: str  # identity used for dedup and display
    subfields: dict[str, Union[int, float, str, None]] = Field(default_factory=dict)

    def normalized(self) -> str:
        return normalize_text_value(self.label)

    def display(self) -> str:
        return self.label


FieldValue = Union[ScalarValue, StructuredValue]


class Anchor(BaseModel):
    kind: AnchorKind
    date: dt.date
    raw_text: str
    start: int = Field(ge=0)
    rule_id: Optional[str] = None
    note_id: Optional[str] = None


class TemporalReference(BaseModel):
    kind: TemporalKind
    raw_text: str
    start: int = Field(ge=0)
    end: int = Field(ge=0)
    resolved_date: Optional[dt.date] = None
    anchor_used: Optional[AnchorKind] = None
    offset_days: Optional[int] = None
    marker: Optional[str] = None  # e.g. "pod", "hospital_day", "post_ictus"
    required_anchor: Optional[AnchorKind] = None
    status: ReferenceStatus = ReferenceStatus.RESOLVED

    @property
    def is_resolved(self) -> bool:
        return self.resolved_date is not None

    def sort_key(self) -> tuple[int, str]:
        """Return a sortable tuple. Resolved dates first, then bare offsets."""
        if self.resolved_date is not None:
            return (0, self.resolved_date.isoformat())
        if self.offset_days is not None:
            return (1, f"REL:{self.required_anchor.value if self.required_anchor else ''}:{self.offset_days:06d}")
        return (99, "UNKNOWN")
