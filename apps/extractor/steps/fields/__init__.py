from apps.extractor.lib.rule_engine import RuleTable

from . import complications, dates, demographics, findings, follow_up, medications, pathology, procedures, scores
from .common import ExtractionContext
from .complications import extract_complications
from .dates import extract_dates
from .demographics import extract_demographics
from .findings import extract_exam_findings, extract_imaging
from .follow_up import extract_follow_up
from .medications import extract_medications
from .pathology import extract_pathology
from .procedures import extract_procedures
from .scores import extract_functional_scores

RULE_TABLE_VERSION = "2025.10.1"

DEFAULT_RULE_TABLE = RuleTable(
    RULE_TABLE_VERSION,
    dates.RULES
    + demographics.RULES
    + pathology.RULES
    + procedures.RULES
    + complications.RULES
    + medications.RULES
    + scores.RULES
    + findings.RULES
    + follow_up.RULES,
)

# Run order. Each returns (fields, warnings).
EXTRACTORS = (
    extract_demographics,
    extract_dates,
    extract_pathology,
    extract_procedures,
    extract_complications,
    extract_medications,
    extract_functional_scores,
    extract_exam_findings,
    extract_imaging,
    extract_follow_up,
)

__all__ = [
    "DEFAULT_RULE_TABLE",
    "EXTRACTORS",
    "ExtractionContext",
    "RULE_TABLE_VERSION",
    "extract_complications",
    "extract_dates",
    "extract_demographics",
    "extract_exam_findings",
    "extract_follow_up",
    "extract_functional_scores",
    "extract_imaging",
    "extract_medications",
    "extract_pathology",
    "extract_procedures",
]
