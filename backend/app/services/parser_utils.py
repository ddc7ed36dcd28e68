"""
Normalization helpers shared by every parser layer: text cleanup, unit
conversion, spoken numbers, labels, edge notation and confidence scoring.
"""
import hashlib
import math
import re
from typing import Dict, List, Mapping, Optional, Sequence

from app.services.parser_patterns import (
    DIMENSION_PATTERNS,
    EDGEBAND_PATTERNS,
    LABEL_CLEANUP_PATTERNS,
    NUMBER_WORDS,
)

_LEADING_NUMBER = re.compile(r"^\s*(-?\d+(?:\.\d+)?)")

# unit → millimetres per unit
_UNIT_FACTORS: Dict[str, float] = {
    "": 1.0,
    "mm": 1.0,
    "cm": 10.0,
    "m": 1000.0,
    "in": 25.4,
    "inch": 25.4,
    "inches": 25.4,
    '"': 25.4,
    "ft": 304.8,
    "feet": 304.8,
    "foot": 304.8,
    "'": 304.8,
}


# ── Text ──────────────────────────────────────────────────────────────────────

def normalize_text(text: str) -> str:
    """
    Trim, unify multiplication signs to ``x``, dashes to ``-``, curly quotes to
    straight ones, and collapse runs of whitespace to one space.
    """
    text = text.strip()
    text = re.sub(r"[×✕✖]", "x", text)
    text = re.sub(r"[–—]", "-", text)
    text = re.sub(r"[‘’]", "'", text)
    text = re.sub(r"[“”]", '"', text)
    return re.sub(r"\s+", " ", text)


def split_lines(text: str) -> List[str]:
    """Split on any line ending, trim each line and drop blank ones."""
    return [line.strip() for line in re.split(r"[\r\n]+", text) if line.strip()]


# ── Units ─────────────────────────────────────────────────────────────────────

def to_millimeters(value: float, unit: str = "mm") -> float:
    """Convert ``value`` in ``unit`` to mm; unknown units are assumed to be mm."""
    return value * _UNIT_FACTORS.get(unit.lower().strip(), 1.0)


def parse_dimension_value(raw: str) -> float:
    """'720', '72 cm', '28.5"' → millimetres. Unparseable input gives 0."""
    match = re.match(r"^(\d+(?:\.\d+)?)\s*(mm|cm|m|in|inch|inches|ft|feet|foot|\"|')?$", raw.strip(), re.I)
    if not match:
        lead = _LEADING_NUMBER.match(raw)
        return float(lead.group(1)) if lead else 0.0
    return to_millimeters(float(match.group(1)), match.group(2) or "mm")


def round_half_up(value: float) -> int:
    """2.5 → 3, not the banker's 2 that round() gives."""
    return int(math.floor(value + 0.5))


def parse_number(raw: Optional[str]) -> Optional[float]:
    """Leading number of ``raw`` with thousands separators removed, else None."""
    if not raw:
        return None
    match = _LEADING_NUMBER.match(raw.replace(",", ""))
    return float(match.group(1)) if match else None


# ── Spoken numbers ────────────────────────────────────────────────────────────

def parse_spoken_number(text: str, words: Mapping[str, int] = NUMBER_WORDS) -> Optional[float]:
    """
    Parse digits or number words.

    "720" → 720, "seven hundred twenty" → 720, "five sixty" → 560,
    "twenty five" → 25, "one thousand two hundred" → 1200.
    Returns None when nothing positive can be read.
    """
    direct = parse_number(text.replace(" ", "")) if re.fullmatch(r"[\d\s,.]+", text.strip() or "x") else None
    if direct is not None and direct > 0:
        return direct

    tokens = [t for t in re.split(r"[\s-]+", text.lower().strip()) if t]

    # Shorthand pairs: "five sixty" is 560, "twenty five" is 25
    if len(tokens) == 2 and tokens[0] in words and tokens[1] in words:
        first, second = words[tokens[0]], words[tokens[1]]
        if 0 < first < 10 and 10 <= second < 100:
            return float(first * 100 + second)
        if 20 <= first < 100 and 0 < second < 10:
            return float(first + second)

    result = 0
    current = 0
    for token in tokens:
        value = words.get(token)
        if value is None:
            digits = re.match(r"^(\d+)", token)
            if digits:
                current = int(digits.group(1))
            continue
        if value == 100:
            current = 100 if current == 0 else current * 100
        elif value == 1000:
            current = 1000 if current == 0 else current * 1000
            result += current
            current = 0
        else:
            current += value

    result += current
    return float(result) if result > 0 else None


def parse_spoken_dimensions(text: str, words: Mapping[str, int] = NUMBER_WORDS) -> Optional[Dict[str, float]]:
    """'seven twenty by five sixty' → {'L': 720, 'W': 560}."""
    spaced = re.sub(r"(\d)\s*[x×]\s*(\d)", r"\1 by \2", text.lower().strip())
    pieces = re.split(r"\s+(?:by|x|×)\s+", spaced)
    if len(pieces) != 2:
        return None
    length = parse_spoken_number(pieces[0], words)
    width = parse_spoken_number(pieces[1], words)
    if length is None or width is None:
        return None
    return {"L": length, "W": width}


# ── Labels ────────────────────────────────────────────────────────────────────

def clean_label(text: str, patterns: Sequence[re.Pattern] = LABEL_CLEANUP_PATTERNS) -> str:
    """Remove every parsed token from ``text`` and tidy what is left."""
    cleaned = text
    for pattern in patterns:
        cleaned = pattern.sub(" ", cleaned)
    cleaned = re.sub(r"^\s*[-–—:,;]+\s*", "", cleaned)
    cleaned = re.sub(r"\s*[-–—:,;]+\s*$", "", cleaned)
    return re.sub(r"\s+", " ", cleaned).strip()


def extract_label(text: str) -> str:
    """Text in front of the first dimension token, or ''."""
    match = DIMENSION_PATTERNS[0].search(text)
    if match and match.start() > 0:
        return text[:match.start()].strip()
    return ""


# ── Edges ─────────────────────────────────────────────────────────────────────

def parse_edges(text: str) -> List[str]:
    """Edges named in free text: L1/L2/W1/W2, 'all edges', 'long/short sides'."""
    if EDGEBAND_PATTERNS["all_edges"].search(text):
        return ["L1", "L2", "W1", "W2"]

    upper = text.upper()
    edges = [edge for edge in ("L1", "L2", "W1", "W2") if re.search(rf"\b{edge}\b", upper)]

    if EDGEBAND_PATTERNS["two_long_one_short"].search(text):
        edges += [e for e in ("L1", "L2", "W1") if e not in edges]
    if EDGEBAND_PATTERNS["long_edges"].search(text):
        edges += [e for e in ("L1", "L2") if e not in edges]
    if EDGEBAND_PATTERNS["short_edges"].search(text):
        edges += [e for e in ("W1", "W2") if e not in edges]
    return edges


# ── Materials ─────────────────────────────────────────────────────────────────

def find_material_match(text: str, material_keywords: Mapping[str, Sequence[str]]) -> Optional[str]:
    """First material id whose keyword appears in ``text`` as a whole word."""
    lower = text.lower()
    for material_id, keywords in material_keywords.items():
        for keyword in keywords:
            if re.search(rf"\b{re.escape(keyword.lower())}\b", lower):
                return material_id
    return None


# ── Confidence ────────────────────────────────────────────────────────────────

def calculate_confidence(
    has_dimensions: bool,
    has_quantity: bool,
    has_label: bool,
    has_material: bool,
    has_thickness: bool,
    dimensions_reasonable: bool,
) -> float:
    """
    Weighted field presence score in [0, 1].

    Dimensions 30 (+10 when reasonable), quantity 15, label 20, material 15,
    thickness 10; out of 100.
    """
    score = 0.0
    if has_dimensions:
        score += 30
        if dimensions_reasonable:
            score += 10
    if has_quantity:
        score += 15
    if has_label:
        score += 20
    if has_material:
        score += 15
    if has_thickness:
        score += 10
    return score / 100.0


def are_dimensions_reasonable(length: float, width: float) -> bool:
    """Woodworking range check: both sides within 10-5000 mm."""
    return 10 <= length <= 5000 and 10 <= width <= 5000


# ── Identity ──────────────────────────────────────────────────────────────────

def generate_part_id(source_method: str, index: int, text: str) -> str:
    """Stable id so that parsing the same input twice yields the same parts."""
    digest = hashlib.sha1(f"{source_method}|{index}|{text}".encode("utf-8")).hexdigest()
    return f"P-{digest[:10]}"
