"""
Format detection for pasted cutlist text.

Classifies raw text into a source-format hint and maps that hint to the parsing
strategy the orchestrator tries first. Detection runs in priority order:

    1. Software signatures   - vendor names / version strings (0.75-0.99)
    2. Header line           - recognised column headers on line 1 (0.8)
    3. Structure             - consistent tab / comma / space columns
    4. Fallback              - free_form (0.5)
"""
import logging
import re
from typing import Dict, List, Optional, Tuple

from app.models.cutlist_schema import FormatDetectionResult, ParsingStrategy
from app.services import parser_config as cfg
from app.services.parser_utils import round_half_up

logger = logging.getLogger("cutlist-parser.detect")


# ── Stage 1: Software signatures ──────────────────────────────────────────────
# format → [(pattern, confidence)]; literal product names score highest.

FORMAT_PATTERNS: Dict[str, List[Tuple[re.Pattern, float]]] = {
    "cabinet_vision": [
        (re.compile(r"Cabinet\s*Vision", re.I), 0.95),
        (re.compile(r"CV\d+\.\d+", re.I), 0.85),
        (re.compile(r"\bCVTX\b", re.I), 0.9),
        (re.compile(r"Part\s+List\s+Report", re.I), 0.8),
    ],
    "mozaik": [
        (re.compile(r"Mozaik", re.I), 0.95),
        (re.compile(r"\bMOZ\b.*\bCUT\b", re.I), 0.85),
    ],
    "polyboard": [
        (re.compile(r"Polyboard", re.I), 0.95),
        (re.compile(r"\bPB\d+\.\d+\b", re.I), 0.85),
        (re.compile(r"Panel\s+Optimizer", re.I), 0.75),
    ],
    "cutrite": [
        (re.compile(r"CutRite", re.I), 0.95),
        (re.compile(r"\bCR\b.*Cut\s*List", re.I), 0.85),
    ],
    "sketchlist": [
        (re.compile(r"SketchList", re.I), 0.95),
        (re.compile(r"SketchUp.*Cut\s*List", re.I), 0.8),
    ],
    "pro100": [
        (re.compile(r"PRO\s*100", re.I), 0.95),
        (re.compile(r"\bP100\b", re.I), 0.8),
    ],
    "cai_template": [
        (re.compile(r"CABINETAI_TEMPLATE", re.I), 0.99),
        (re.compile(r"CAI-\d+\.\d+-[A-Z0-9]+", re.I), 0.95),
        (re.compile(r"cai-org-template", re.I), 0.95),
    ],
}


# ── Stage 2: Header line ──────────────────────────────────────────────────────

HEADER_PATTERNS: Dict[str, List[re.Pattern]] = {
    "excel": [
        re.compile(r"^(Part|Name|Label)\t(Length|L)\t(Width|W)\t", re.I),
        re.compile(r"^[A-Za-z]+\t[A-Za-z]+\t[A-Za-z]+"),
    ],
    "cabinet_vision": [
        re.compile(r"Part\s+Name.*Length.*Width.*Qty", re.I),
        re.compile(r"Assembly.*Component.*Material", re.I),
    ],
    "mozaik": [
        re.compile(r"Description.*L\s*\(mm\).*W\s*\(mm\)", re.I),
        re.compile(r"Panel.*Thickness.*Grain", re.I),
    ],
    "polyboard": [
        re.compile(r"Panel.*Length.*Width.*Thickness", re.I),
    ],
    "cutrite": [
        re.compile(r"Part.*Dimensions.*Material", re.I),
    ],
    "sketchlist": [
        re.compile(r"Component.*Length.*Width.*Thickness", re.I),
    ],
    "pro100": [
        re.compile(r"Element.*Size.*Material", re.I),
    ],
    "cai_template": [
        re.compile(r"#.*Part.*L.*W.*Qty.*Material", re.I),
        re.compile(r"Part\s+Name.*Length.*Width.*Thickness.*Quantity", re.I),
    ],
}


# ── Strategy routing ──────────────────────────────────────────────────────────

_DETERMINISTIC_FORMATS = frozenset({
    "excel",
    "cabinet_vision",
    "mozaik",
    "polyboard",
    "cutrite",
    "sketchlist",
    "pro100",
    "cai_template",
    "generic_table",
})


def get_parsing_strategy(fmt: str) -> ParsingStrategy:
    """Tabular and software formats → deterministic, free_form → llm, else regex."""
    if fmt in _DETERMINISTIC_FORMATS:
        return "deterministic"
    if fmt == "free_form":
        return "llm"
    return "regex"


# ── Detection ─────────────────────────────────────────────────────────────────

def detect_format(text: str) -> FormatDetectionResult:
    """Classify ``text``. Never raises; blank input is free_form at confidence 0."""
    trimmed = text.strip()
    if not trimmed:
        return FormatDetectionResult(format="free_form", confidence=0.0, method="heuristic")

    for fmt, patterns in FORMAT_PATTERNS.items():
        for pattern, confidence in patterns:
            if pattern.search(trimmed):
                logger.debug(f"Software signature matched: {fmt} ({pattern.pattern})")
                return FormatDetectionResult(format=fmt, confidence=confidence, method="pattern")

    first_line = trimmed.split("\n", 1)[0]
    for fmt, patterns in HEADER_PATTERNS.items():
        if any(p.search(first_line) for p in patterns):
            logger.debug(f"Header line matched: {fmt}")
            return FormatDetectionResult(
                format=fmt, confidence=cfg.HEADER_MATCH_CONFIDENCE, method="header"
            )

    structure = analyze_structure(trimmed)
    if structure is not None:
        return structure

    return FormatDetectionResult(
        format="free_form", confidence=cfg.FREE_FORM_CONFIDENCE, method="heuristic"
    )


def _consistent_counts(lines: List[str], delimiter: str) -> Optional[float]:
    """Mean delimiter count when it is >= 2 and every line is within 1 of it."""
    counts = [line.count(delimiter) for line in lines]
    avg = sum(counts) / len(counts)
    if avg >= 2 and all(abs(c - avg) <= 1 for c in counts):
        return avg
    return None


def analyze_structure(text: str) -> Optional[FormatDetectionResult]:
    """Structural fallback; needs at least two non-blank lines."""
    lines = [line for line in text.split("\n") if line.strip()]
    if len(lines) < 2:
        return None

    for delimiter, confidence in (("\t", cfg.STRUCTURE_TAB_CONFIDENCE), (",", cfg.STRUCTURE_COMMA_CONFIDENCE)):
        avg = _consistent_counts(lines, delimiter)
        if avg is not None:
            return FormatDetectionResult(
                format="excel",
                confidence=confidence,
                method="structure",
                delimiter=delimiter,
                has_headers=True,
                column_count=round_half_up(avg) + 1,
            )

    spaced = sum(1 for line in lines if re.search(r"\s{2,}", line))
    if spaced >= len(lines) * cfg.SPACE_TABLE_LINE_RATIO:
        return FormatDetectionResult(
            format="generic_table",
            confidence=cfg.STRUCTURE_SPACE_CONFIDENCE,
            method="structure",
            delimiter="space",
            has_headers=True,
        )
    return None


def is_structured_table(text: str) -> bool:
    result = detect_format(text)
    return result.format != "free_form" and result.confidence >= cfg.STRUCTURED_TABLE_MIN_CONFIDENCE
