"""
Step 7 — Source quality assessment.
Score a note's extraction on completeness, date consistency, narrative
coherence and timeline presence. The grade is a pure function of the score.
"""
from __future__ import annotations

import logging
from datetime import date

from packages.shared.models import (
    ComponentScores,
    ExtractedField,
    PipelineConfig,
    QualityAssessment,
    QualityGrade,
    ReferenceStatus,
    Section,
    TemporalKind,
    TemporalReference,
    Warning,
)

logger = logging.getLogger(__name__)

# ── Weights (sum to 1.0) ─────────────────────────────────────────────────

W_COMPLETENESS = 0.40
W_VALIDATION = 0.20
W_COHERENCE = 0.25
W_TIMELINE = 0.15

_GRADE_CUTS: list[tuple[float, QualityGrade]] = [
    (0.90, QualityGrade.EXCELLENT),
    (0.75, QualityGrade.GOOD),
    (0.60, QualityGrade.FAIR),
    (0.40, QualityGrade.POOR),
]

NARRATIVE_GROUPS: dict[str, frozenset[str]] = {
    "history": frozenset({"chief_complaint", "history_present_illness", "past_medical_history"}),
    "exam/imaging": frozenset({"physical_exam", "neuro_exam", "imaging", "labs"}),
    "course/procedures": frozenset({"hospital_course", "procedures", "complications"}),
    "assessment/plan": frozenset({"assessment", "plan", "diagnosis"}),
    "discharge/follow-up": frozenset({"discharge", "follow_up", "medications"}),
}

VALIDATION_CHECKS = ("discharge_after_admission", "ictus_before_admission", "procedures_within_stay", "age_plausible")


def grade_for(score: float) -> QualityGrade:
    for cut, grade in _GRADE_CUTS:
        if score >= cut:
            return grade
    return QualityGrade.VERY_POOR


def _best(candidates: list[ExtractedField], name: str) -> ExtractedField | None:
    best: ExtractedField | None = None
    for c in candidates:
        if c.field_name == name and (best is None or c.raw_confidence > best.raw_confidence):
            best = c
    return best


def _best_date(candidates: list[ExtractedField], name: str) -> date | None:
    f = _best(candidates, name)
    return f.date if f is not None else None


# ── Components ───────────────────────────────────────────────────────────


def completeness_score(candidates: list[ExtractedField], config: PipelineConfig) -> tuple[float, list[str]]:
    """Required fields count double. Returns (score, missing required fields)."""
    populated = {c.field_name for c in candidates}
    required = sorted(config.required_fields)
    optional = sorted(config.optional_fields)
    missing = [f for f in required if f not in populated]
    req_hits = len(required) - len(missing)
    opt_hits = sum(1 for f in optional if f in populated)
    denom = 2 * len(required) + len(optional)
    return (2 * req_hits + opt_hits) / denom, missing


def validation_checks(candidates: list[ExtractedField]) -> dict[str, bool]:
    """Fixed list of consistency checks. A check whose inputs are missing fails."""
    admission = _best_date(candidates, "dates.admission")
    discharge = _best_date(candidates, "dates.discharge")
    ictus = _best_date(candidates, "dates.ictus")
    age_field = _best(candidates, "demographics.age")

    procedure_dates = [
        c.date for c in candidates
        if c.field_name in ("dates.procedure", "procedures") and c.date is not None
    ]

    checks: dict[str, bool] = {}
    checks["discharge_after_admission"] = bool(admission and discharge and discharge >= admission)
    checks["ictus_before_admission"] = bool(admission and ictus and ictus <= admission)
    checks["procedures_within_stay"] = bool(
        admission and procedure_dates and all(
            admission <= d and (discharge is None or d <= discharge) for d in procedure_dates
        )
    )
    age = age_field.plain_value() if age_field is not None else None
    checks["age_plausible"] = isinstance(age, int) and not isinstance(age, bool) and 0 <= age <= 120
    return checks


def coherence_score(sections: list[Section]) -> tuple[float, list[str]]:
    """Fraction of narrative groups present. Returns (score, missing group names)."""
    labels = {s.label for s in sections}
    missing = [name for name, members in NARRATIVE_GROUPS.items() if not labels & members]
    return (len(NARRATIVE_GROUPS) - len(missing)) / len(NARRATIVE_GROUPS), missing


def timeline_presence_score(
    candidates: list[ExtractedField],
    references: list[TemporalReference],
) -> tuple[float, int]:
    """Returns (score, distinct resolved dates)."""
    resolved = {c.date for c in candidates if c.date is not None}
    resolved |= {r.resolved_date for r in references if r.resolved_date is not None}
    has_relative = any(
        r.kind == TemporalKind.RELATIVE and r.status != ReferenceStatus.RESOLVED for r in references
    )
    if len(resolved) >= 2:
        return 1.0, len(resolved)
    if len(resolved) == 1 or has_relative:
        return 0.5, len(resolved)
    return 0.0, 0


# ── Assessment ───────────────────────────────────────────────────────────


def assess_quality(
    candidates: list[ExtractedField],
    sections: list[Section],
    references: list[TemporalReference],
    config: PipelineConfig,
    note_id: str | None = None,
) -> tuple[QualityAssessment, list[Warning]]:
    """Return (assessment, warnings) for one note's candidates."""
    warnings: list[Warning] = []
    issues: list[str] = []
    strengths: list[str] = []
    recommendations: list[str] = []

    completeness, missing = completeness_score(candidates, config)
    checks = validation_checks(candidates)
    validation = sum(checks.values()) / len(VALIDATION_CHECKS)
    coherence, missing_groups = coherence_score(sections)
    timeline, n_dates = timeline_presence_score(candidates, references)

    if missing:
        issues.append(f"Missing required fields: {', '.join(missing)}")
        recommendations.append(f"Document {', '.join(missing)} explicitly")
    else:
        strengths.append("All required fields present")

    failed = [name for name, ok in checks.items() if not ok]
    if failed:
        issues.append(f"Failed or unverifiable date/value checks: {', '.join(failed)}")
        if "discharge_after_admission" in failed or "procedures_within_stay" in failed:
            recommendations.append("Record admission, procedure and discharge dates")
    else:
        strengths.append("Dates and values are internally consistent")

    if missing_groups:
        issues.append(f"Missing narrative sections: {', '.join(missing_groups)}")
        if coherence < 0.6:
            recommendations.append("Use standard section headers (HPI, Exam, Hospital Course, Assessment/Plan, Discharge)")
    else:
        strengths.append("Complete narrative structure")

    if timeline == 0.0:
        issues.append("No dates found")
        recommendations.append("Include dates for key clinical events")
    elif n_dates >= 2:
        strengths.append(f"Timeline has {n_dates} distinct dates")

    score = (
        W_COMPLETENESS * completeness
        + W_VALIDATION * validation
        + W_COHERENCE * coherence
        + W_TIMELINE * timeline
    )
    score = round(min(1.0, max(0.0, score)), 4)
    grade = grade_for(score)

    if grade in (QualityGrade.POOR, QualityGrade.VERY_POOR):
        warnings.append(Warning(
            code="LOW_SOURCE_QUALITY",
            message=f"Source quality {grade.value} (score {score:.2f})",
            note_id=note_id,
        ))

    logger.info(
        f"Quality {note_id}: score={score:.3f} grade={grade.value} "
        f"(completeness={completeness:.2f}, validation={validation:.2f}, "
        f"coherence={coherence:.2f}, timeline={timeline:.2f})"
    )

    return QualityAssessment(
        score=score,
        grade=grade,
        component_scores=ComponentScores(
            completeness=round(completeness, 4),
            validation=round(validation, 4),
            coherence=round(coherence, 4),
            timeline_presence=timeline,
        ),
        issues=issues,
        strengths=strengths,
        recommendations=recommendations,
    ), warnings


def assess_batch(assessments: list[QualityAssessment]) -> QualityAssessment:
    """Mean of per-note assessments; issues and recommendations de-duplicated in order."""
    if not assessments:
        return QualityAssessment(
            score=0.0,
            grade=QualityGrade.VERY_POOR,
            component_scores=ComponentScores(completeness=0.0, validation=0.0, coherence=0.0, timeline_presence=0.0),
            issues=["No notes assessed"],
        )
    if len(assessments) == 1:
        return assessments[0]

    n = len(assessments)

    def _mean(attr: str) -> float:
        return round(sum(getattr(a.component_scores, attr) for a in assessments) / n, 4)

    score = round(sum(a.score for a in assessments) / n, 4)
    return QualityAssessment(
        score=score,
        grade=grade_for(score),
        component_scores=ComponentScores(
            completeness=_mean("completeness"),
            validation=_mean("validation"),
            coherence=_mean("coherence"),
            timeline_presence=_mean("timeline_presence"),
        ),
        issues=list(dict.fromkeys(i for a in assessments for i in a.issues)),
        strengths=list(dict.fromkeys(s for a in assessments for s in a.strengths)),
        recommendations=list(dict.fromkeys(r for a in assessments for r in a.recommendations)),
    )
