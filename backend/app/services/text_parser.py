"""
Regex / heuristic line parser (layer 2).

One part per line (or per ``;`` / ``|`` separated segment). Each line is tried
two ways:

    A. Tabular reading  - columns split on tabs or 2+ spaces, numbers picked
                          out by position (row number, L, W, qty, X edge marks)
    B. Pattern reading  - regex families for dimensions, quantity, grain,
                          label, material, thickness and edges

Confidence of a pattern reading is the product of its field confidences.
Lines without dimensions fail and are handed to the next layer.
"""
import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from app.models.cutlist_schema import (
    CutPart,
    DimLW,
    EdgebandEdge,
    EdgeEdgingOps,
    GrooveOp,
    IngestionMethod,
    ParseOptions,
    PartAudit,
    PartOps,
)
from app.services import parser_config as cfg
from app.services.parser_patterns import (
    DIMENSION_PATTERNS,
    GRAIN_PATTERNS,
    MATERIAL_KEYWORDS,
    QUANTITY_PATTERNS,
    THICKNESS_PATTERNS,
)
from app.services.parser_utils import (
    find_material_match,
    generate_part_id,
    normalize_text,
    parse_edges,
    parse_number,
    round_half_up,
    to_millimeters,
)

logger = logging.getLogger("cutlist-parser.regex")

NON_DATA_ERROR = "Header or non-data line"
NO_DIMENSIONS_ERROR = "Could not extract dimensions (expected format: LxW, e.g., 720x560)"
GUESSED_DIMENSIONS_WARNING = "Length and width not both in the dimension range; first two numbers used"

_HEADER_KEYWORDS = re.compile(
    r"\b(length|width|height|qty|quantity|pcs|pieces|description|component|part|label|name|"
    r"l\s*/\s*h|w\s*/\s*b|edge|edging|groove|cnc|material|thickness)\b",
    re.I,
)

SKIP_LINE_PATTERNS = [
    re.compile(r"^(no|#|item|component|description|part|label|length|width|qty|edge|total|sum|count)\s*$", re.I),
    re.compile(r"^\d+\s*$"),
    re.compile(r"^[-=_]+$"),
    re.compile(r"^(client|job|date|board|material|edging|updated|revision)\s*:", re.I),
]

_LABEL_PATTERNS = [
    re.compile(r"^([A-Za-z][A-Za-z\s]{1,30}?)[\s:,-]+(?=\d)"),
    re.compile(r"\"([^\"]+)\"|'([^']+)'"),
]

_TABULAR_MATERIAL_WORDS = re.compile(
    r"\b(melamine|mel|mdf|plywood|ply|pb|particleboard|oak|cherry|walnut)\b", re.I
)


@dataclass
class TextParseResult:
    part: Optional[CutPart]
    confidence: float
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    original_text: str = ""

    @property
    def skipped(self) -> bool:
        """Header / separator / metadata line rather than a failed part."""
        return NON_DATA_ERROR in self.errors


@dataclass
class TextBatchParseResult:
    results: List[TextParseResult] = field(default_factory=list)
    total_parsed: int = 0
    total_errors: int = 0
    average_confidence: float = 0.0

    @property
    def parts(self) -> List[CutPart]:
        return [r.part for r in self.results if r.part is not None and not r.errors]

    @property
    def failed_lines(self) -> List[str]:
        """Lines that looked like data but produced no part."""
        return [r.original_text for r in self.results if r.errors and not r.skipped]


@dataclass
class _TabularReading:
    length: float
    width: float
    qty: int
    label: str
    edges: List[str]
    has_groove: bool
    confidence: float
    material_hint: Optional[str] = None
    warnings: List[str] = field(default_factory=list)


# ── Line classification ───────────────────────────────────────────────────────

def is_header_line(line: str) -> bool:
    """Two or more distinct column words and no multi-digit number."""
    if re.search(r"\d{2,}", line):
        return False
    keywords = {m.group(1).lower() for m in _HEADER_KEYWORDS.finditer(line)}
    return len(keywords) >= 2


def should_skip_line(line: str) -> bool:
    trimmed = line.strip()
    if not trimmed:
        return True
    if any(p.search(trimmed) for p in SKIP_LINE_PATTERNS):
        return True
    return len(re.sub(r"[^a-zA-Z0-9]", "", trimmed)) < 2


# ── A. Tabular reading ────────────────────────────────────────────────────────

def _material_hint_from_cells(cells: List[str], line: str) -> Optional[str]:
    for cell in cells:
        if _TABULAR_MATERIAL_WORDS.search(cell) and not re.fullmatch(r"[\d.\s]+", cell):
            return cell
    match = re.search(r"\b(PB|MDF|PLY|melamine|plywood)\s+\w+(?:\s+\w+)?", line, re.I)
    return match.group(0) if match else None


def _edges_from_markers(cells: List[str], after_index: int) -> Tuple[List[str], bool]:
    """X / XX columns after the quantity, in L1, W1, L2, W2 order."""
    positional = ("L1", "W1", "L2", "W2")
    edges: List[str] = []
    has_groove = False
    for i in range(after_index + 1, len(cells)):
        cell = cells[i].strip()
        pos = i - after_index - 1
        if cell.upper() in ("X", "XX") and pos < len(positional):
            edges.append(positional[pos])
            if cell.upper() == "XX":
                edges.append("L2" if positional[pos].startswith("L") else "W2")
        if cell == "x" or "groove" in cell.lower():
            has_groove = True
    return list(dict.fromkeys(edges)), has_groove


def _is_row_number(cells: List[str], first_index: int, first_value: float) -> bool:
    """A leading small integer followed by text, or too small to be a dimension."""
    if first_index != 0 or not first_value.is_integer() or first_value >= 1000:
        return False
    if first_value < cfg.TABULAR_DIMENSION_MIN_MM:
        return True
    return len(cells) > 1 and parse_number(cells[1]) is None


def _parse_space_separated(tokens: List[str], line: str) -> Optional[_TabularReading]:
    numbers = [(i, float(t)) for i, t in enumerate(tokens) if re.fullmatch(r"\d+(?:\.\d+)?", t)]
    if len(numbers) < 2:
        return None

    start = 1 if _is_row_number(tokens, *numbers[0]) else 0
    if len(numbers) - start < 2:
        return None

    length = numbers[start][1]
    width = numbers[start + 1][1]
    qty = 1
    last_numeric = numbers[start + 1][0]
    if len(numbers) - start >= 3 and numbers[start + 2][1] <= cfg.TABULAR_MAX_QUANTITY:
        qty = round_half_up(numbers[start + 2][1])
        last_numeric = numbers[start + 2][0]

    first_dim = numbers[start][0]
    label = " ".join(t for i, t in enumerate(tokens) if i < first_dim and not re.fullmatch(r"\d+(?:\.\d+)?", t))
    edges, has_groove = _edges_from_markers(tokens, last_numeric)

    return _TabularReading(
        length=length,
        width=width,
        qty=qty,
        label=label.strip(),
        edges=edges,
        has_groove=has_groove,
        confidence=cfg.SPACE_SEPARATED_LINE_CONFIDENCE,
        material_hint=_material_hint_from_cells(tokens, line),
    )


def _parse_tabular_line(line: str) -> Optional[_TabularReading]:
    # "720x560" style tokens belong to the pattern reading
    if any(p.search(line) for p in DIMENSION_PATTERNS):
        return None
    cells = [c.strip() for c in re.split(r"\t|\s{2,}", line) if c.strip()]
    if len(cells) < 3:
        tokens = line.split()
        if len(tokens) >= 3:
            return _parse_space_separated(tokens, line)
        return None

    numeric: List[Tuple[int, float]] = []
    for i, cell in enumerate(cells):
        value = parse_number(cell)
        if value is not None and value > 0:
            numeric.append((i, value))
    if len(numeric) < 2:
        return None

    first_index, first_value = numeric[0]
    is_row_number = _is_row_number(cells, first_index, first_value)
    candidates = numeric[1:] if is_row_number else numeric
    if len(candidates) < 2:
        return None

    def is_dimension(n: float) -> bool:
        return cfg.TABULAR_DIMENSION_MIN_MM <= n <= cfg.TABULAR_DIMENSION_MAX_MM

    length: Optional[float] = None
    width: Optional[float] = None
    qty = 1
    qty_index = None
    for index, value in candidates:
        if is_dimension(value) and length is None:
            length = value
        elif is_dimension(value) and width is None:
            width = value
        elif length is not None and width is not None and 1 <= value <= cfg.TABULAR_MAX_QUANTITY:
            qty = round_half_up(value)
            qty_index = index
            break

    confidence = cfg.TABULAR_LINE_CONFIDENCE
    warnings: List[str] = []
    if length is None or width is None:
        # no L/W pair in the dimension window: take the first two numbers as read
        length, width = candidates[0][1], candidates[1][1]
        confidence = cfg.TABULAR_GUESSED_DIMENSIONS_CONFIDENCE
        warnings.append(GUESSED_DIMENSIONS_WARNING)
        if len(candidates) >= 3 and candidates[2][1] <= cfg.TABULAR_MAX_QUANTITY:
            qty = round_half_up(candidates[2][1])
            qty_index = candidates[2][0]

    first_dim_index = candidates[0][0]
    label_start = 1 if is_row_number else 0
    label = " ".join(
        cells[i] for i in range(label_start, first_dim_index) if not re.fullmatch(r"\d+", cells[i])
    )

    if qty_index is None:
        qty_index = candidates[1][0]
    edges, has_groove = _edges_from_markers(cells, qty_index)

    return _TabularReading(
        length=length,
        width=width,
        qty=qty,
        label=label.strip(),
        edges=edges,
        has_groove=has_groove,
        confidence=confidence,
        material_hint=_material_hint_from_cells(cells, line),
        warnings=warnings,
    )


# ── B. Pattern reading ────────────────────────────────────────────────────────

def _extract_dimensions(text: str, options: ParseOptions) -> Optional[Tuple[float, float, Tuple[int, int]]]:
    for pattern in DIMENSION_PATTERNS:
        match = pattern.search(text)
        if not match:
            continue
        d1, d2 = parse_number(match.group(1)), parse_number(match.group(2))
        if d1 and d2:
            length = to_millimeters(d1, options.units)
            width = to_millimeters(d2, options.units)
            # "infer" keeps the order as written: L is the grain direction and may be the shorter side
            if options.dim_order_hint == "WxL":
                length, width = width, length
            return length, width, match.span()
    return None


def _extract_quantity(text: str) -> Tuple[int, float]:
    for pattern in QUANTITY_PATTERNS:
        match = pattern.search(text)
        if match:
            qty = parse_number(match.group(1))
            if qty and 0 < qty <= cfg.PATTERN_MAX_QUANTITY:
                return int(qty), cfg.PATTERN_QUANTITY_CONFIDENCE
    return 1, cfg.DEFAULT_QUANTITY_CONFIDENCE


def extract_grain(text: str) -> Tuple[str, bool, float]:
    """(grain, allow_rotation, confidence). Grain across the width is still 'no rotation'."""
    if any(p.search(text) for p in GRAIN_PATTERNS["grain_length"] + GRAIN_PATTERNS["grain_width"]):
        return "along_L", False, 0.85
    if any(p.search(text) for p in GRAIN_PATTERNS["allow_rotation"]):
        return "none", True, 0.85
    if any(p.search(text) for p in GRAIN_PATTERNS["no_rotation"]):
        return "along_L", False, 0.75
    return "none", True, 0.5


def _extract_label(text: str) -> Optional[str]:
    for pattern in _LABEL_PATTERNS:
        match = pattern.search(text)
        if match:
            label = next((g for g in match.groups() if g), "").strip()
            if label:
                return label
    return None


def _extract_thickness(text: str) -> Optional[float]:
    for pattern in THICKNESS_PATTERNS:
        match = pattern.search(text)
        if match:
            thickness = float(match.group(1))
            if cfg.THICKNESS_MIN_MM <= thickness <= cfg.THICKNESS_MAX_MM:
                return thickness
    return None


def _ops_for(edges: List[str], has_groove: bool = False) -> Optional[PartOps]:
    edging = EdgeEdgingOps(edges={e: EdgebandEdge(apply=True) for e in edges}) if edges else None
    grooves = [GrooveOp(side="W2", offset_mm=10, width_mm=4, notes="back panel groove")] if has_groove else None
    if edging is None and grooves is None:
        return None
    return PartOps(edging=edging, grooves=grooves)


# ── Public API ────────────────────────────────────────────────────────────────

def parse_text_line(
    text: str,
    options: Optional[ParseOptions] = None,
    source_method: IngestionMethod = "paste_parser",
    index: int = 0,
) -> TextParseResult:
    """Parse one line into a CutPart, or report why it is not one."""
    options = options or ParseOptions()
    clean = text.strip()
    if not clean:
        return TextParseResult(part=None, confidence=0.0, errors=["Empty input"], original_text=text)
    if is_header_line(clean) or should_skip_line(clean):
        return TextParseResult(part=None, confidence=0.0, errors=[NON_DATA_ERROR], original_text=text)

    thickness_default = options.default_thickness_mm or cfg.DEFAULT_THICKNESS_MM
    snippet = clean[:cfg.SNIPPET_LENGTH]

    tabular = _parse_tabular_line(clean)
    if tabular and tabular.length > 0 and tabular.width > 0:
        part = CutPart(
            part_id=generate_part_id(source_method, index, clean),
            label=tabular.label or None,
            qty=max(1, tabular.qty),
            size=DimLW(
                L=to_millimeters(tabular.length, options.units),
                W=to_millimeters(tabular.width, options.units),
            ),
            thickness_mm=thickness_default,
            material_id=options.default_material_id or cfg.DEFAULT_MATERIAL_ID,
            grain="none",
            allow_rotation=True,
            tags=[tabular.material_hint] if tabular.material_hint else None,
            ops=_ops_for(tabular.edges, tabular.has_groove),
            audit=PartAudit(
                source_method=source_method,
                parsed_text_snippet=snippet,
                confidence=tabular.confidence,
                warnings=tabular.warnings or None,
                human_verified=False,
            ),
        )
        return TextParseResult(
            part=part, confidence=tabular.confidence, warnings=tabular.warnings, original_text=text
        )

    normalized = normalize_text(clean)
    dims = _extract_dimensions(normalized, options)
    if dims is None:
        return TextParseResult(part=None, confidence=0.0, errors=[NO_DIMENSIONS_ERROR], original_text=text)

    length, width, (dim_start, dim_end) = dims
    warnings: List[str] = []
    confidence = cfg.PATTERN_DIMENSION_CONFIDENCE

    without_dims = f"{normalized[:dim_start]} {normalized[dim_end:]}".strip()
    qty, qty_confidence = _extract_quantity(without_dims)
    confidence *= qty_confidence
    if qty_confidence < 0.7:
        warnings.append("Quantity not specified, defaulting to 1")

    grain, allow_rotation, grain_confidence = extract_grain(normalized)
    if grain_confidence < 0.7:
        confidence *= 0.95

    material_hint = find_material_match(normalized, MATERIAL_KEYWORDS)
    edges = parse_edges(normalized)

    part = CutPart(
        part_id=generate_part_id(source_method, index, clean),
        label=_extract_label(normalized),
        qty=qty,
        size=DimLW(L=length, W=width),
        thickness_mm=_extract_thickness(without_dims) or thickness_default,
        material_id=options.default_material_id or material_hint or cfg.DEFAULT_MATERIAL_ID,
        grain=grain,
        allow_rotation=allow_rotation,
        tags=[material_hint] if material_hint else None,
        ops=_ops_for(edges),
        audit=PartAudit(
            source_method=source_method,
            parsed_text_snippet=normalized[:cfg.SNIPPET_LENGTH],
            confidence=confidence,
            warnings=warnings or None,
            human_verified=False,
        ),
    )
    return TextParseResult(part=part, confidence=confidence, warnings=warnings, original_text=text)


def parse_text_batch(
    text: str,
    options: Optional[ParseOptions] = None,
    source_method: IngestionMethod = "paste_parser",
    split_segments: bool = True,
) -> TextBatchParseResult:
    """
    Parse every line / segment. Non-data lines are skipped, not counted as errors.

    Lines are also split on ";" and "|" unless ``split_segments`` is False,
    which keeps rows of a rejected delimited table whole.
    """
    separators = r"[\n;|]" if split_segments else r"\n"
    segments = [s.strip() for s in re.split(separators, text) if s.strip()]
    results: List[TextParseResult] = []
    confidence_sum = 0.0
    parsed = 0
    error_count = 0

    for index, segment in enumerate(segments):
        try:
            result = parse_text_line(segment, options, source_method=source_method, index=index)
        except ValueError as e:
            # e.g. a value that breaks CutPart validation
            result = TextParseResult(part=None, confidence=0.0, errors=[str(e).splitlines()[0]], original_text=segment)
        results.append(result)
        if result.part is not None and not result.errors:
            parsed += 1
            confidence_sum += result.confidence
        elif not result.skipped:
            error_count += 1

    logger.debug(f"Regex: {parsed}/{len(segments)} segments parsed, {error_count} errors")
    return TextBatchParseResult(
        results=results,
        total_parsed=parsed,
        total_errors=error_count,
        average_confidence=confidence_sum / parsed if parsed else 0.0,
    )


def quick_parse(text: str, options: Optional[ParseOptions] = None) -> Optional[CutPart]:
    """Single-field manual entry: the part, or None when unsure."""
    result = parse_text_line(text, options, source_method="manual")
    if result.errors or result.confidence < cfg.CONFIDENCE_LOW:
        return None
    return result.part


def validate_parsed_part(part: CutPart) -> Dict[str, object]:
    """Suggestions for a parsed part; ``valid`` is False only for impossible values."""
    suggestions: List[str] = []
    valid = True
    if part.size.L <= 0 or part.size.W <= 0:
        valid = False
        suggestions.append("Dimensions must be positive numbers")
    if part.size.L > 3000 or part.size.W > 2000:
        suggestions.append("Dimensions seem large - verify they are in mm")
    if part.qty <= 0:
        valid = False
        suggestions.append("Quantity must be at least 1")
    if part.grain == "along_L" and part.allow_rotation:
        suggestions.append("Grained parts typically should not allow rotation")
    return {"valid": valid, "suggestions": suggestions}
