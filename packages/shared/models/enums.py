from enum import Enum


class TemporalKind(str, Enum):
    ABSOLUTE = "absolute"
    RELATIVE = "relative"


class AnchorKind(str, Enum):
    ADMISSION = "admission"
    PROCEDURE = "procedure"
    ICTUS = "ictus"
    DISCHARGE = "discharge"


class ReferenceStatus(str, Enum):
    RESOLVED = "resolved"
    UNRESOLVED_NO_ANCHOR = "unresolved_no_anchor"
    UNRESOLVED_AMBIGUOUS_ANCHOR = "unresolved_ambiguous_anchor"


class TemporalQualifier(str, Enum):
    PAST = "PAST"
    PRESENT = "PRESENT"
    FUTURE = "FUTURE"
    ADMISSION = "ADMISSION"
    DISCHARGE = "DISCHARGE"
    PROCEDURE_RELATIVE = "PROCEDURE_RELATIVE"


class Polarity(str, Enum):
    NEGATED = "negated"
    AFFIRMED = "affirmed"


class TriggerDirection(str, Enum):
    PRE = "pre"  # Trigger precedes the finding ("no vasospasm")
    POST = "post"  # Trigger follows the finding ("vasospasm was ruled out")


class QualityGrade(str, Enum):
    EXCELLENT = "EXCELLENT"
    GOOD = "GOOD"
    FAIR = "FAIR"
    POOR = "POOR"
    VERY_POOR = "VERY_POOR"


class DedupKind(str, Enum):
    EXACT = "exact"
    NEAR = "near"
    MERGED = "merged"  # Complementary fragments combined into one


class TimelineEventType(str, Enum):
    ICTUS = "ictus"
    ADMISSION = "admission"
    PROCEDURE = "procedure"
    COMPLICATION = "complication"
    MEDICATION = "medication"
    IMAGING = "imaging"
    FINDING = "finding"
    FOLLOW_UP = "follow_up"
    DISCHARGE = "discharge"
    OTHER = "other"
