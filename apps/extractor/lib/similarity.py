"""
Hybrid text similarity for note deduplication.

combined = 0.4 * token Jaccard + 0.2 * Levenshtein + 0.4 * concept overlap

The concept term maps synonyms ("coil embolization", "endovascular coiling")
to one canonical concept, so two differently worded notes about the same
events still score high. Texts that normalize to the same string are exact
duplicates and short-circuit to 1.0.
"""
from __future__ import annotations

import re
from dataclasses import dataclass

from rapidfuzz.distance import Levenshtein

from packages.shared.models import normalize_text_value

W_JACCARD = 0.4
W_LEVENSHTEIN = 0.2
W_SEMANTIC = 0.4

LEVENSHTEIN_MAX_CHARS = 2000

_TOKEN_RE = re.compile(r"[^\w\s]")

# ── Concept dictionary ───────────────────────────────────────────────────
# canonical concept -> synonyms (matched as whole words, case-insensitive)

CONCEPT_SYNONYMS: dict[str, tuple[str, ...]] = {
    # procedures
    "aneurysm coiling": ("coiling", "coiled", "coil embolization", "endovascular coiling", "endovascular treatment"),
    "aneurysm clipping": ("clipping", "clipped", "surgical clipping", "microsurgical clipping"),
    "craniotomy": ("craniotomy", "crani"),
    "craniectomy": ("craniectomy", "decompressive craniectomy", "hemicraniectomy"),
    "evd placement": ("evd", "external ventricular drain", "ventriculostomy"),
    "lumbar drain": ("lumbar drain", "ld"),
    "vp shunt": ("vp shunt", "ventriculoperitoneal shunt", "shunt"),
    "tumor resection": ("resection", "gross total resection", "subtotal resection", "gtr", "str", "debulking"),
    "biopsy": ("biopsy", "stereotactic biopsy"),
    "cranioplasty": ("cranioplasty",),
    "angiography": ("angiography", "angiogram", "dsa", "cerebral angiogram"),
    "embolization": ("embolization", "embolisation"),
    # medications
    "aspirin": ("aspirin", "asa"),
    "clopidogrel": ("clopidogrel", "plavix"),
    "warfarin": ("warfarin", "coumadin"),
    "apixaban": ("apixaban", "eliquis"),
    "levetiracetam": ("levetiracetam", "keppra"),
    "dexamethasone": ("dexamethasone", "decadron"),
    "nimodipine": ("nimodipine", "nimotop"),
    "heparin": ("heparin", "enoxaparin", "lovenox"),
    # complications
    "vasospasm": ("vasospasm", "cerebral vasospasm", "spasm"),
    "hydrocephalus": ("hydrocephalus", "ventriculomegaly"),
    "rebleed": ("rebleed", "rebleeding", "rerupture"),
    "seizure": ("seizure", "seizures", "convulsion"),
    "infection": ("infection", "meningitis", "ventriculitis", "wound infection"),
    "dvt": ("dvt", "deep vein thrombosis"),
    "pneumonia": ("pneumonia",),
    "hyponatremia": ("hyponatremia", "siadh", "cerebral salt wasting"),
    # pathologies
    "subarachnoid hemorrhage": ("sah", "subarachnoid hemorrhage", "subarachnoid haemorrhage"),
    "aneurysm": ("aneurysm", "aneurysmal"),
    "hemorrhage": ("hemorrhage", "haemorrhage", "bleed", "ich"),
    "subdural hematoma": ("sdh", "subdural hematoma", "subdural"),
    "epidural hematoma": ("edh", "epidural hematoma"),
    "tumor": ("tumor", "tumour", "mass", "neoplasm", "lesion"),
    "glioblastoma": ("glioblastoma", "gbm"),
    "metastasis": ("metastasis", "metastases", "metastatic"),
    "meningioma": ("meningioma",),
    # imaging
    "ct": ("ct", "cat scan", "computed tomography", "ct head"),
    "cta": ("cta", "ct angiogram", "ct angiography"),
    "mri": ("mri", "magnetic resonance"),
    "scan": ("scan", "imaging"),
    # anatomy
    "frontal": ("frontal",),
    "parietal": ("parietal",),
    "temporal": ("temporal",),
    "occipital": ("occipital",),
    "cerebellum": ("cerebellum", "cerebellar"),
    "brainstem": ("brainstem", "brain stem", "pons", "medulla"),
    "ventricle": ("ventricle", "ventricles", "ventricular", "intraventricular"),
    "acom": ("acom", "anterior communicating artery"),
    "mca": ("mca", "middle cerebral artery"),
    "pcom": ("pcom", "posterior communicating artery"),
    # findings
    "deficit": ("deficit", "deficits"),
    "weakness": ("weakness", "hemiparesis", "paresis"),
    "numbness": ("numbness",),
    "headache": ("headache", "thunderclap headache"),
    "confusion": ("confusion", "confused", "altered mental status"),
    "coma": ("coma", "comatose", "obtunded"),
}


def _concept_re(synonyms: tuple[str, ...]) -> re.Pattern:
    alts = sorted(synonyms, key=len, reverse=True)
    body = "|".join(r"\s+".join(re.escape(w) for w in s.split()) for s in alts)
    return re.compile(rf"\b(?:{body})\b", re.IGNORECASE)


_CONCEPT_PATTERNS: list[tuple[str, re.Pattern]] = [
    (concept, _concept_re(synonyms)) for concept, synonyms in CONCEPT_SYNONYMS.items()
]


@dataclass(frozen=True)
class SimilarityBreakdown:
    jaccard: float
    levenshtein: float
    semantic: float
    combined: float
    exact: bool = False


# ── Components ───────────────────────────────────────────────────────────


def tokenize(text: str) -> set[str]:
    """Lowercase words longer than two characters, punctuation stripped."""
    return {w for w in _TOKEN_RE.sub(" ", text.lower()).split() if len(w) > 2}


def jaccard(a: set[str], b: set[str]) -> float:
    if not a and not b:
        return 1.0
    union = a | b
    return len(a & b) / len(union) if union else 0.0


def levenshtein_similarity(a: str, b: str, max_chars: int = LEVENSHTEIN_MAX_CHARS) -> float:
    """1 - distance / max(len) over normalized text, truncated to max_chars."""
    a = normalize_text_value(a)[:max_chars]
    b = normalize_text_value(b)[:max_chars]
    if not a and not b:
        return 1.0
    return Levenshtein.normalized_similarity(a, b)


def extract_concepts(text: str) -> set[str]:
    return {concept for concept, pattern in _CONCEPT_PATTERNS if pattern.search(text)}


def semantic_similarity(a: str, b: str) -> float:
    """Jaccard over canonical concepts; token Jaccard when neither text names one."""
    ca, cb = extract_concepts(a), extract_concepts(b)
    if not ca and not cb:
        return jaccard(tokenize(a), tokenize(b))
    return jaccard(ca, cb)


# ── Combined ─────────────────────────────────────────────────────────────


def hybrid_similarity(a: str, b: str) -> SimilarityBreakdown:
    if normalize_text_value(a) == normalize_text_value(b):
        return SimilarityBreakdown(jaccard=1.0, levenshtein=1.0, semantic=1.0, combined=1.0, exact=True)

    j = jaccard(tokenize(a), tokenize(b))
    lev = levenshtein_similarity(a, b)
    sem = semantic_similarity(a, b)
    combined = W_JACCARD * j + W_LEVENSHTEIN * lev + W_SEMANTIC * sem
    return SimilarityBreakdown(
        jaccard=round(j, 4),
        levenshtein=round(lev, 4),
        semantic=round(sem, 4),
        combined=round(min(1.0, max(0.0, combined)), 4),
    )
