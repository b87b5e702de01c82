"""
Pipeline orchestrator — runs all steps over a batch of notes.

  0 validate -> 1 preprocess -> 9 dedup
  per note: 2 segment -> 3 temporal -> 4 fields -> 5 negation -> 6 qualifiers -> 7 quality
  join: external merge -> 8 calibrate -> 10 timeline -> schema check
"""
from __future__ import annotations

import json
import logging
import os
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Iterable, Mapping

from pydantic import ValidationError

from packages.shared.errors import ConfigurationError
from packages.shared.models import (
    ExtractedField,
    NoteExtraction,
    PipelineConfig,
    QualityAssessment,
    RawNote,
    StructuredRecord,
    Warning,
)
from packages.shared.schema_validator import validate_output

from apps.extractor.lib.rule_engine import RuleOverrides, RuleTable
from apps.extractor.steps.fields import DEFAULT_RULE_TABLE
from apps.extractor.steps.step00_validate import validate_notes
from apps.extractor.steps.step01_preprocess import preprocess_note
from apps.extractor.steps.step02_segment import segment_note
from apps.extractor.steps.step03_temporal import extract_temporal_references
from apps.extractor.steps.step04_fields import extract_fields
from apps.extractor.steps.step05_negation import filter_negated
from apps.extractor.steps.step06_qualifiers import tag_qualifiers
from apps.extractor.steps.step07_quality import assess_batch, assess_quality
from apps.extractor.steps.step08_calibrate import calibrate_fields, merge_external_candidates
from apps.extractor.steps.step09_dedup import deduplicate_notes
from apps.extractor.steps.step10_timeline import build_timeline

logger = logging.getLogger(__name__)

_WORKERS = max(1, int(os.getenv("NOTELINE_WORKERS", "1")))
_MAX_SCHEMA_WARNINGS = 10


class ExtractionPipeline:
    """
    Holds a validated config and rule table. Construction raises
    ConfigurationError; run() raises InputError for unusable notes.
    """

    def __init__(
        self,
        config: PipelineConfig | Mapping[str, Any] | None = None,
        rules: RuleTable | None = None,
        overrides: RuleOverrides | None = None,
    ):
        if config is None:
            config = PipelineConfig()
        elif not isinstance(config, PipelineConfig):
            try:
                config = PipelineConfig(**config)
            except ValidationError as exc:
                raise ConfigurationError(f"Invalid pipeline config: {exc}") from exc
        self.config = config

        table = rules if rules is not None else DEFAULT_RULE_TABLE
        if overrides is not None:
            table = table.with_overrides(overrides)
        self.rules = table

    def run(
        self,
        notes: Iterable[RawNote | str | dict],
        external_candidates: Mapping[str, Any] | None = None,
        run_id: str | None = None,
    ) -> StructuredRecord:
        run_id = run_id or uuid.uuid4().hex[:8]
        try:
            return self._run(run_id, notes, external_candidates)
        except Exception as exc:
            logger.exception(f"[{run_id}] Pipeline failed: {exc}")
            raise

    # ── Stages ───────────────────────────────────────────────────────────

    def _run(
        self,
        run_id: str,
        notes: Iterable[RawNote | str | dict],
        external_candidates: Mapping[str, Any] | None,
    ) -> StructuredRecord:
        start_time = time.time()
        all_warnings: list[Warning] = []
        config = self.config

        # ── Step 0: Validate ──────────────────────────────────────────
        logger.info(f"[{run_id}] Step 0: Input validation")
        valid_notes, step_warnings = validate_notes(notes, config)
        all_warnings.extend(step_warnings)

        # ── Step 1: Preprocess ────────────────────────────────────────
        logger.info(f"[{run_id}] Step 1: Preprocessing {len(valid_notes)} notes")
        cleaned: list[RawNote] = []
        for note in valid_notes:
            text, step_warnings = preprocess_note(note.text, note.note_id)
            all_warnings.extend(step_warnings)
            cleaned.append(note.model_copy(update={"text": text}))

        # ── Step 9: Deduplicate (before extraction) ───────────────────
        logger.info(f"[{run_id}] Step 9: Cross-note deduplication")
        survivors, dedup_metadata, dedup_clusters, step_warnings = deduplicate_notes(cleaned, config)
        all_warnings.extend(step_warnings)

        # ── Steps 2-7: Per-note extraction ────────────────────────────
        results = self._extract_all(run_id, survivors)
        extractions = [r[0] for r in results]
        assessments = [r[1] for r in results]
        for extraction in extractions:
            all_warnings.extend(extraction.warnings)

        quality = assess_batch(assessments)
        note_grades = {e.note.note_id: a.grade for e, a in zip(extractions, assessments)}

        # ── Step 8: External merge + calibration ──────────────────────
        logger.info(f"[{run_id}] Step 8: Confidence calibration")
        candidates: list[ExtractedField] = [c for e in extractions for c in e.candidates]
        candidates, step_warnings = merge_external_candidates(candidates, external_candidates)
        all_warnings.extend(step_warnings)
        fields, step_warnings = calibrate_fields(candidates, quality.grade, note_grades)
        all_warnings.extend(step_warnings)

        # ── Step 10: Timeline ─────────────────────────────────────────
        logger.info(f"[{run_id}] Step 10: Timeline")
        fields_by_note: dict[str, list[ExtractedField]] = {e.note.note_id: e.candidates for e in extractions}
        external = [c for c in candidates if c.note_id is None and c.date is not None]
        if external:
            fields_by_note["external"] = external
        timeline, step_warnings = build_timeline(
            fields_by_note,
            {e.note.note_id: e.anchors for e in extractions},
        )
        all_warnings.extend(step_warnings)

        record = StructuredRecord(
            fields=fields,
            quality=quality,
            timeline=timeline,
            dedup_metadata=dedup_metadata,
            dedup_clusters=dedup_clusters,
            negated=[c for e in extractions for c in e.suppressed],
            notes_processed=len(survivors),
            rule_table_version=self.rules.version,
        )

        # Validate against schema
        is_valid, errors = validate_output(record_to_dict(record))
        if not is_valid:
            for err in errors[:_MAX_SCHEMA_WARNINGS]:
                all_warnings.append(Warning(code="SCHEMA_VALIDATION_ERROR", message=err[:500]))
            logger.warning(f"[{run_id}] Schema validation failed with {len(errors)} errors")

        record.warnings = all_warnings
        logger.info(
            f"[{run_id}] Pipeline completed in {time.time() - start_time:.2f}s: "
            f"notes={len(survivors)}, candidates={len(candidates)}, events={len(timeline)}, "
            f"grade={quality.grade.value}, warnings={len(all_warnings)}"
        )
        return record

    def _extract_all(self, run_id: str, notes: list[RawNote]) -> list[tuple[NoteExtraction, QualityAssessment]]:
        if _WORKERS <= 1 or len(notes) <= 1:
            return [self.extract_note(n, run_id) for n in notes]
        logger.info(f"[{run_id}] Extracting {len(notes)} notes with {_WORKERS} workers")
        with ThreadPoolExecutor(max_workers=_WORKERS) as executor:
            # map() yields in submission order
            return list(executor.map(lambda n: self.extract_note(n, run_id), notes))

    def extract_note(self, note: RawNote, run_id: str = "-") -> tuple[NoteExtraction, QualityAssessment]:
        """Steps 2-7 for one preprocessed note."""
        warnings: list[Warning] = []
        text = note.text
        note_id = note.note_id

        logger.info(f"[{run_id}] Step 2: Segmentation for {note_id}")
        sections, step_warnings = segment_note(text)
        warnings.extend(step_warnings)

        logger.info(f"[{run_id}] Step 3: Temporal references for {note_id}")
        references, anchors, step_warnings = extract_temporal_references(text, self.rules, note_id)
        warnings.extend(step_warnings)

        logger.info(f"[{run_id}] Step 4: Field extraction for {note_id}")
        candidates, step_warnings = extract_fields(note, text, self.rules, sections, references, anchors)
        warnings.extend(step_warnings)

        logger.info(f"[{run_id}] Step 5: Negation filter for {note_id}")
        kept, suppressed, spans, step_warnings = filter_negated(
            candidates, text, window=self.config.negation_window
        )
        warnings.extend(step_warnings)

        logger.info(f"[{run_id}] Step 6: Temporal qualifiers for {note_id}")
        tagged, step_warnings = tag_qualifiers(kept, text, references)
        warnings.extend(step_warnings)

        logger.info(f"[{run_id}] Step 7: Source quality for {note_id}")
        assessment, step_warnings = assess_quality(tagged, sections, references, self.config, note_id)
        warnings.extend(step_warnings)

        return NoteExtraction(
            note=note,
            text=text,
            sections=sections,
            references=references,
            anchors=anchors,
            candidates=tagged,
            suppressed=suppressed,
            negation_spans=spans,
            warnings=warnings,
        ), assessment


def run_pipeline(
    notes: Iterable[RawNote | str | dict],
    config: PipelineConfig | Mapping[str, Any] | None = None,
    external_candidates: Mapping[str, Any] | None = None,
    rules: RuleTable | None = None,
    overrides: RuleOverrides | None = None,
) -> StructuredRecord:
    """One-shot convenience wrapper around ExtractionPipeline."""
    pipeline = ExtractionPipeline(config=config, rules=rules, overrides=overrides)
    return pipeline.run(notes, external_candidates=external_candidates)


def record_to_dict(record: StructuredRecord) -> dict[str, Any]:
    """JSON-able form of a record (dates as ISO strings)."""
    return json.loads(record.model_dump_json())
