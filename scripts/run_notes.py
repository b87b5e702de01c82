from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from packages.shared.errors import NoteLineError
from packages.shared.models import PipelineConfig, RawNote
from apps.extractor.pipeline import ExtractionPipeline, record_to_dict

logger = logging.getLogger(__name__)


def load_notes(paths: list[Path]) -> list[RawNote]:
    return [
        RawNote(text=p.read_text(encoding="utf-8"), note_id=p.stem, ordinal=i)
        for i, p in enumerate(paths)
    ]


def main() -> int:
    parser = argparse.ArgumentParser(description="Extract a structured record from clinical note text files.")
    parser.add_argument("notes", nargs="+", help="Paths to plain-text notes, in chronological order.")
    parser.add_argument("--threshold", type=float, default=0.85, help="Near-duplicate similarity threshold (0, 1].")
    parser.add_argument("--no-merge", action="store_true", help="Do not merge complementary note fragments.")
    parser.add_argument("--external", help="JSON file of externally extracted candidates {field: value | [values]}.")
    parser.add_argument("--out", help="Write the record JSON here instead of stdout.")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    try:
        config = PipelineConfig(similarity_threshold=args.threshold, merge_complementary=not args.no_merge)
        external = None
        if args.external:
            external = json.loads(Path(args.external).read_text(encoding="utf-8"))
        record = ExtractionPipeline(config=config).run(
            load_notes([Path(p) for p in args.notes]),
            external_candidates=external,
        )
    except NoteLineError as exc:
        logger.error(f"Extraction failed: {exc}")
        return 2

    payload = json.dumps(record_to_dict(record), indent=2)
    if args.out:
        out = Path(args.out)
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(payload, encoding="utf-8")
        logger.info(f"Wrote {out} (grade={record.quality.grade.value}, events={len(record.timeline)})")
    else:
        print(payload)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
