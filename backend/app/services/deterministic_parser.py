"""
Deterministic column parser (layer 1).

Header-driven parsing of tabular cutlists pasted from spreadsheets or exported
by cabinet software. No natural-language understanding: the header row decides
which column is which, and every data row is read through that mapping.

Per-row problems are recorded in ``failed_rows`` and never abort the batch.
"""
import csv
import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from app.models.cutlist_schema import (
    CutPart,
    DimLW,
    EdgebandEdge,
    EdgeEdgingOps,
    FailedRow,
    PartAudit,
    PartNotes,
    PartOps,
)
from app.services import parser_config as cfg
from app.services.parser_utils import generate_part_id, round_half_up

logger = logging.getLogger("cutlist-parser.deterministic")


class RowParseError(ValueError):
    """A data row that cannot become a CutPart."""


# ── Column detection ──────────────────────────────────────────────────────────
# Checked in order; the first field whose pattern matches a header cell wins,
# and a field keeps the first column it was assigned.

COLUMN_PATTERNS: Dict[str, re.Pattern] = {
    "label": re.compile(r"^(name|label|part|description|desc|component|item)$", re.I),
    "length": re.compile(r"^(length|len|l|long|dimension1|dim1)$", re.I),
    "width": re.compile(r"^(width|wid|w|wide|dimension2|dim2)$", re.I),
    "thickness": re.compile(r"^(thick(ness)?|thk|t|depth|z)$", re.I),
    "qty": re.compile(r"^(qty|quantity|count|pcs|pieces|num|#|amount)$", re.I),
    "material": re.compile(r"^(material|mat|board|stock|substrate|panel)$", re.I),
    "rotation": re.compile(r"^(rotation|rot|allow.?rotation)$", re.I),
    "rotate": re.compile(r"^(rotate|can.?rotate)$", re.I),
    "grain": re.compile(r"^(grain|direction|dir|gl|gw|orientation)$", re.I),
    "edgeband": re.compile(r"^(edge|edgeband(ing)?|eb|banding|band|tape)$", re.I),
    "notes": re.compile(r"^(notes?|comment|remark|info|description)$", re.I),
}

# "L (mm)", "Width [mm]", "thk mm" → bare header for a second pass
_UNIT_SUFFIX = re.compile(r"\s*[\(\[]?\s*(mm|cm|in|inch|inches)\s*[\)\]]?\s*$", re.I)
_UNIT_FIELDS = ("length", "width", "thickness")

# ── Rotation values ───────────────────────────────────────────────────────────

_NO_ROTATION = re.compile(r"^(n|no|false|0|l|length|along.?l|gl|w|width|along.?w|gw)$", re.I)
_ALLOW_ROTATION = re.compile(r"^(y|yes|true|1|none)$", re.I)

# ── Edgeband shortcodes ───────────────────────────────────────────────────────

EDGEBAND_SHORTCODES: Dict[str, List[str]] = {
    "0": [],
    "-": [],
    "NONE": [],
    "L": ["L1"],
    "L1": ["L1"],
    "L2": ["L2"],
    "W": ["W1"],
    "W1": ["W1"],
    "W2": ["W2"],
    "2L": ["L1", "L2"],
    "2W": ["W1", "W2"],
    "LW": ["L1", "W1"],
    "L2W": ["L1", "W1", "W2"],
    "2L1W": ["L1", "L2", "W1"],
    "2LW": ["L1", "L2", "W1"],
    "2L2W": ["L1", "L2", "W1", "W2"],
    "ALL": ["L1", "L2", "W1", "W2"],
    "4": ["L1", "L2", "W1", "W2"],
    "4S": ["L1", "L2", "W1", "W2"],
}

_DELIMITERS = ("\t", ",", ";", "|")


@dataclass
class DeterministicParseResult:
    parts: List[CutPart] = field(default_factory=list)
    failed_rows: List[FailedRow] = field(default_factory=list)
    confidence: float = 0.0
    method: str = "deterministic"
    detected_format: str = "excel"
    skip_other_layers: bool = False
    delimiter: str = "\t"
    column_mapping: Dict[str, int] = field(default_factory=dict)
    total_data_rows: int = 0


# ── Helpers ───────────────────────────────────────────────────────────────────

def detect_delimiter(text: str) -> str:
    """Most frequent of tab/comma/semicolon/pipe in the first lines, if seen 3+ times."""
    sample = text.split("\n")[:cfg.DELIMITER_SAMPLE_LINES]
    counts = {d: sum(line.count(d) for line in sample) for d in _DELIMITERS}
    best = max(_DELIMITERS, key=lambda d: counts[d])
    return best if counts[best] >= cfg.DELIMITER_MIN_OCCURRENCES else "\t"


def split_row(line: str, delimiter: str) -> List[str]:
    """Split one line into cells, honouring double-quoted cells."""
    line = line.rstrip("\r")
    try:
        return next(csv.reader([line], delimiter=delimiter, skipinitialspace=True), [])
    except csv.Error as e:
        # oversized cell or stray quote: plain split, quotes left in place
        logger.debug(f"csv split failed ({e}), falling back to plain split")
        return [cell.lstrip(" ") for cell in line.split(delimiter)]


def detect_columns(headers: List[str]) -> Dict[str, int]:
    """Map canonical field names to zero-based column indexes from the header row."""
    mapping: Dict[str, int] = {}
    for index, raw in enumerate(headers):
        header = raw.strip().lower()
        matched = False
        for field_name, pattern in COLUMN_PATTERNS.items():
            if field_name not in mapping and pattern.match(header):
                mapping[field_name] = index
                matched = True
                break
        if matched:
            continue

        bare = _UNIT_SUFFIX.sub("", header)
        if bare and bare != header:
            for field_name in _UNIT_FIELDS:
                if field_name not in mapping and COLUMN_PATTERNS[field_name].match(bare):
                    mapping[field_name] = index
                    break
    return mapping


def parse_edgeband_shortcode(code: str) -> Optional[EdgeEdgingOps]:
    """'2L2W' → all four edges banded. Unknown or empty codes give None."""
    edges = EDGEBAND_SHORTCODES.get(code.strip().upper())
    if not edges:
        return None
    return EdgeEdgingOps(edges={edge: EdgebandEdge(apply=True) for edge in edges})


def infer_allow_rotation(value: str) -> Optional[bool]:
    """False for grain/no-rotate values, True for yes/none, None when unrecognised."""
    value = value.strip()
    if not value:
        return None
    if _NO_ROTATION.match(value):
        return False
    if _ALLOW_ROTATION.match(value):
        return True
    return None


def _cell_number(value: str) -> Optional[float]:
    """Strip everything but digits, dot and minus, then read the leading number."""
    cleaned = re.sub(r"[^\d.\-]", "", value)
    match = re.match(r"-?(?:\d+(?:\.\d+)?|\.\d+)", cleaned)
    return float(match.group(0)) if match else None


# ── Row parsing ───────────────────────────────────────────────────────────────

def _parse_row(
    row: List[str],
    row_num: int,
    line: str,
    mapping: Dict[str, int],
    default_material_id: Optional[str],
    default_thickness_mm: Optional[float],
) -> Optional[CutPart]:
    """CutPart for a data row, None for a blank row, RowParseError otherwise."""
    if len(row) <= max(mapping["length"], mapping["width"]):
        raise RowParseError("Row does not match table columns")

    def value(field_name: str) -> str:
        idx = mapping.get(field_name)
        return row[idx].strip() if idx is not None and idx < len(row) else ""

    def number(field_name: str) -> Optional[float]:
        raw = value(field_name)
        return _cell_number(raw) if raw else None

    length = number("length")
    width = number("width")

    if not length and not width:
        return None
    if length is None or length <= 0:
        raise RowParseError("Invalid length")
    if width is None or width <= 0:
        raise RowParseError("Invalid width")

    label = value("label") or None
    thickness = number("thickness")
    if thickness is None or thickness <= 0:
        thickness = default_thickness_mm or cfg.DEFAULT_THICKNESS_MM
    qty = max(1, round_half_up(number("qty") or 1))
    material = value("material") or default_material_id or cfg.DEFAULT_MATERIAL_ID
    notes = value("notes") or None

    rotation_value = value("rotation") or value("rotate") or value("grain")
    inferred = infer_allow_rotation(rotation_value)
    allow_rotation = True if inferred is None else inferred

    edging = parse_edgeband_shortcode(value("edgeband"))

    return CutPart(
        part_id=generate_part_id("excel_table", row_num, line),
        label=label,
        qty=qty,
        size=DimLW(L=length, W=width),
        thickness_mm=thickness,
        material_id=material,
        allow_rotation=allow_rotation,
        ops=PartOps(edging=edging) if edging else None,
        notes=PartNotes(operator=notes) if notes else None,
        audit=PartAudit(
            source_method="excel_table",
            source_ref=f"row:{label or 'unknown'}",
            confidence=cfg.DETERMINISTIC_PART_CONFIDENCE,
            human_verified=False,
        ),
    )


# ── Public API ────────────────────────────────────────────────────────────────

def parse_deterministic(
    text: str,
    format: Optional[str] = None,
    default_material_id: Optional[str] = None,
    default_thickness_mm: Optional[float] = None,
    delimiter: Optional[str] = None,
    skip_header: bool = True,
    column_mapping: Optional[Dict[str, int]] = None,
) -> DeterministicParseResult:
    """
    Parse a delimited table into CutParts.

    Confidence is ``success_rate * 0.95`` over the data rows; ``skip_other_layers``
    is set when at least 90% of the data rows produced a part. Without a
    detectable length and width column nothing is parsed and a single failed
    row describes why.
    """
    detected_format = format or "excel"
    lines = [line.rstrip("\r") for line in text.split("\n") if line.strip()]
    if not lines:
        return DeterministicParseResult(detected_format=detected_format)

    delimiter = delimiter or detect_delimiter(text)
    rows = [split_row(line, delimiter) for line in lines]
    mapping = dict(column_mapping) if column_mapping else detect_columns(rows[0])

    if "length" not in mapping or "width" not in mapping:
        logger.debug(f"No length/width header in {rows[0]!r}")
        return DeterministicParseResult(
            failed_rows=[FailedRow(row=0, line=lines[0], error="Missing length or width columns")],
            detected_format=detected_format,
            delimiter=delimiter,
            column_mapping=mapping,
        )

    start_row = 1 if skip_header else 0
    parts: List[CutPart] = []
    failed_rows: List[FailedRow] = []

    for i in range(start_row, len(rows)):
        try:
            part = _parse_row(
                rows[i], i + 1, lines[i], mapping, default_material_id, default_thickness_mm
            )
        except ValueError as e:
            reason = (str(e).splitlines() or ["Parse error"])[0]
            failed_rows.append(FailedRow(row=i + 1, line=lines[i], error=reason))
            continue
        if part is not None:
            parts.append(part)

    total_data_rows = len(rows) - start_row
    success_rate = len(parts) / total_data_rows if total_data_rows > 0 else 0.0

    logger.debug(
        f"Deterministic: {len(parts)}/{total_data_rows} rows parsed, "
        f"{len(failed_rows)} failed, delimiter={delimiter!r}"
    )
    return DeterministicParseResult(
        parts=parts,
        failed_rows=failed_rows,
        confidence=success_rate * cfg.DETERMINISTIC_MAX_CONFIDENCE,
        detected_format=detected_format,
        skip_other_layers=success_rate >= cfg.SKIP_OTHER_LAYERS_SUCCESS_RATE,
        delimiter=delimiter,
        column_mapping=mapping,
        total_data_rows=total_data_rows,
    )


def can_parse_deterministically(text: str) -> bool:
    """Cheap eligibility check: consistent columns and a length + width header."""
    lines = [line for line in text.split("\n") if line.strip()]
    if len(lines) < 2:
        return False

    delimiter = detect_delimiter(text)
    rows = [split_row(line, delimiter) for line in lines]
    counts = [len(r) for r in rows]
    avg = sum(counts) / len(counts)
    if avg < 2 or not all(abs(c - avg) <= 1 for c in counts):
        return False

    mapping = detect_columns(rows[0])
    return "length" in mapping and "width" in mapping
