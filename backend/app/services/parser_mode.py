"""
Parser-mode recommendation: pattern parsing or AI-assisted parsing.

Independent of format detection. Format detection says what the text looks
like; this module estimates whether a fixed set of regex templates can cover it.
Five 0-1 metrics and a format-variation scan feed two accumulators
(``pattern_score`` / ``ai_score``); the larger wins and

    confidence = min(0.95, |pattern_score - ai_score| / total + 0.5)

Point values live in parser_config and are tunable; tests assert direction of
effect, not exact scores.
"""
import logging
import re
import statistics
from dataclasses import dataclass, field
from typing import Dict, List, Literal, Optional

from app.models.cutlist_schema import FormatDetectionResult
from app.services import parser_config as cfg
from app.services.format_detector import detect_format

logger = logging.getLogger("cutlist-parser.detect")

ParserMode = Literal["pattern", "ai"]


# ── Indicator tables ──────────────────────────────────────────────────────────

# (pattern, weight) per line; a line's structural score is capped at 1
STRUCTURE_INDICATORS = [
    (re.compile(r"\t"), 1.0),
    (re.compile(r"\|"), 0.8),
    (re.compile(r"^[\s+\-=|_]{5,}$"), 0.8),
    (re.compile(r"\S\s{2,}\S"), 0.6),
    (re.compile(r"^[^,]+(?:,[^,]*){2,}$"), 0.6),
    (re.compile(r"^\d+[.)]?\s"), 0.3),
]

DIMENSION_TOKEN = re.compile(r"\d+(?:\.\d+)?\s*(?:mm|cm|in)?\s*[x×X*]\s*\d+(?:\.\d+)?")

NATURAL_LANGUAGE_INDICATORS = [
    # politeness and requests
    re.compile(r"\b(?:please|thanks|thank you|can you|could you|would you|i need|i want|we need|would like)\b", re.I),
    # connectors
    re.compile(r"\b(?:and|also|then|with|which|that|each|for the|of the)\b", re.I),
    # descriptive / hedging words
    re.compile(r"\b(?:about|roughly|approximately|around|same|usual|standard|normal|nice|another)\b", re.I),
    # sentence boundaries
    re.compile(r"[.!?](?:\s|$)"),
]

IMPERATIVE_PHRASES = re.compile(
    r"\b(?:please|can you|could you|would you|help me|i need|i want|make me)\b", re.I
)

# field → notation name → pattern
VARIATION_NOTATIONS: Dict[str, Dict[str, re.Pattern]] = {
    "quantity": {
        "qty_prefix": re.compile(r"\bqty\s*[:=]?\s*\d+", re.I),
        "quantity_word": re.compile(r"\bquantity\s*[:=]?\s*\d+", re.I),
        "x_suffix": re.compile(r"(?:^|\s)[x×]\s*\d+\b", re.I),
        "pcs_suffix": re.compile(r"\b\d+\s*(?:pcs?|pieces?)\b", re.I),
        "parenthesized": re.compile(r"\(\s*\d+\s*\)"),
        "off_suffix": re.compile(r"\b\d+\s*off\b", re.I),
    },
    "dimension": {
        "x": re.compile(r"\d\s*[xX]\s*\d"),
        "times_sign": re.compile(r"\d\s*×\s*\d"),
        "star": re.compile(r"\d\s*\*\s*\d"),
        "by": re.compile(r"\d\s+by\s+\d", re.I),
        "labelled": re.compile(r"\bL\s*[:=]?\s*\d+.*\bW\s*[:=]?\s*\d+"),
    },
    "edge": {
        "shortcode": re.compile(r"\b(?:2L2W|2L1W|2LW|L2W|2L|2W|LW|4S)\b"),
        "edge_ids": re.compile(r"\b[LW][12]\b"),
        "words": re.compile(r"\b(?:all|long|short)\s+(?:edges?|sides?)\b", re.I),
        "eb_prefix": re.compile(r"\bEB\b"),
        "x_markers": re.compile(r"(?:^|\s)XX?(?:\s|$)"),
    },
    "operation": {
        "groove_word": re.compile(r"\b(?:groove|grooved|grv|dado)\b", re.I),
        "groove_code": re.compile(r"\bG[LW]\d"),
        "hole_word": re.compile(r"\b(?:holes?|drill(?:ing)?|bore)\b", re.I),
        "hole_code": re.compile(r"\bH\d+\b"),
        "cnc_word": re.compile(r"\b(?:cnc|rout(?:e|ing)|pocket)\b", re.I),
    },
}


# ── Result types ──────────────────────────────────────────────────────────────

@dataclass
class ParserModeMetrics:
    structural_score: float = 0.0
    dimension_density: float = 0.0
    natural_language_score: float = 0.0
    consistency_score: float = 0.0
    avg_tokens_per_line: float = 0.0
    line_count: int = 0


@dataclass
class FormatVariation:
    """Distinct notations seen per semantic field across the whole document."""
    notations: Dict[str, List[str]] = field(default_factory=dict)
    varying_fields: List[str] = field(default_factory=list)
    strong: bool = False


@dataclass
class ParserModeAnalysis:
    recommended: ParserMode
    confidence: float
    reasons: List[str] = field(default_factory=list)
    metrics: ParserModeMetrics = field(default_factory=ParserModeMetrics)
    variation: FormatVariation = field(default_factory=FormatVariation)
    pattern_score: float = 0.0
    ai_score: float = 0.0


# ── Metrics ───────────────────────────────────────────────────────────────────

def _lines(text: str) -> List[str]:
    return [line for line in text.split("\n") if line.strip()]


def _structural_score(lines: List[str]) -> float:
    total = 0.0
    for line in lines:
        hit = sum(weight for pattern, weight in STRUCTURE_INDICATORS if pattern.search(line))
        total += min(1.0, hit)
    return total / len(lines)


def _dimension_density(lines: List[str]) -> float:
    hits = sum(len(DIMENSION_TOKEN.findall(line)) for line in lines)
    return min(1.0, hits / len(lines))


def _natural_language_score(lines: List[str]) -> float:
    hits = 0
    for line in lines:
        for pattern in NATURAL_LANGUAGE_INDICATORS:
            hits += len(pattern.findall(line))
    # three indicator hits per line reads as prose
    return min(1.0, hits / (len(lines) * 3))


def _consistency_score(lines: List[str]) -> float:
    if len(lines) < 2:
        return 0.5
    lengths = [len(line) for line in lines]
    mean = statistics.fmean(lengths)
    cv = statistics.pstdev(lengths) / mean if mean else 1.0
    score = max(0.0, 1.0 - cv)

    tokens = [len(line.split()) for line in lines]
    token_mean = statistics.fmean(tokens)
    if token_mean and statistics.pstdev(tokens) / token_mean < 0.2:
        score = min(1.0, score + 0.2)
    return score


def compute_metrics(text: str) -> ParserModeMetrics:
    lines = _lines(text)
    if not lines:
        return ParserModeMetrics()
    return ParserModeMetrics(
        structural_score=_structural_score(lines),
        dimension_density=_dimension_density(lines),
        natural_language_score=_natural_language_score(lines),
        consistency_score=_consistency_score(lines),
        avg_tokens_per_line=statistics.fmean(len(line.split()) for line in lines),
        line_count=len(lines),
    )


def detect_format_variations(text: str) -> FormatVariation:
    """
    Count distinct notations per field (quantity, dimension, edge, operation).

    Quantity notations are scanned with dimension tokens removed so "720x560"
    does not read as an "x560" quantity.
    """
    without_dims = DIMENSION_TOKEN.sub(" ", text)
    notations: Dict[str, List[str]] = {}
    for field_name, table in VARIATION_NOTATIONS.items():
        haystack = without_dims if field_name == "quantity" else text
        seen = [name for name, pattern in table.items() if pattern.search(haystack)]
        if seen:
            notations[field_name] = seen

    varying = [name for name, seen in notations.items() if len(seen) >= 2]
    return FormatVariation(notations=notations, varying_fields=varying, strong=bool(varying))


# ── Short circuits ────────────────────────────────────────────────────────────

def should_force_ai(text: str) -> bool:
    """One long undelimited line, or an explicit request phrased to a person."""
    lines = _lines(text)
    if not lines:
        return False
    if len(lines) == 1:
        line = lines[0]
        if len(line) >= cfg.FORCE_AI_MIN_LINE_CHARS and not re.search(r"[\t,;|]", line):
            return True
    return bool(IMPERATIVE_PHRASES.search(text))


def should_force_pattern(text: str, detection: Optional[FormatDetectionResult] = None) -> bool:
    """Confidently detected non-free-form format, or a rigid tab grid."""
    detection = detection or detect_format(text)
    if detection.confidence >= cfg.FORCE_PATTERN_FORMAT_CONFIDENCE and detection.format != "free_form":
        return True

    tab_counts = [line.count("\t") for line in _lines(text)]
    return (
        len(tab_counts) >= cfg.FORCE_PATTERN_MIN_LINES
        and len(set(tab_counts)) == 1
        and tab_counts[0] >= cfg.FORCE_PATTERN_MIN_TABS
    )


# ── Recommendation ────────────────────────────────────────────────────────────

def analyze_text_for_parser_mode(text: str) -> ParserModeAnalysis:
    """Recommend pattern or AI parsing for ``text``."""
    if not text.strip():
        return ParserModeAnalysis(recommended="pattern", confidence=0.0, reasons=["Empty input"])

    metrics = compute_metrics(text)
    variation = detect_format_variations(text)

    if should_force_ai(text):
        return ParserModeAnalysis(
            recommended="ai",
            confidence=cfg.MODE_MAX_CONFIDENCE,
            reasons=["Conversational request or single unstructured paragraph"],
            metrics=metrics,
            variation=variation,
        )
    if should_force_pattern(text):
        return ParserModeAnalysis(
            recommended="pattern",
            confidence=cfg.MODE_MAX_CONFIDENCE,
            reasons=["Known export format or rigid tab-separated grid"],
            metrics=metrics,
            variation=variation,
        )

    pattern_score = 0.0
    ai_score = 0.0
    reasons: List[str] = []

    if metrics.structural_score > cfg.MODE_STRUCTURE_STRONG:
        pattern_score += 3
        reasons.append(f"Strong table structure ({metrics.structural_score:.2f})")
    elif metrics.structural_score > cfg.MODE_STRUCTURE_WEAK:
        pattern_score += 1.5
        reasons.append(f"Some table structure ({metrics.structural_score:.2f})")

    if metrics.dimension_density >= cfg.MODE_DIMENSION_DENSITY:
        pattern_score += 2
        reasons.append("Most lines carry an LxW dimension token")
    elif metrics.dimension_density >= cfg.MODE_DIMENSION_DENSITY / 2:
        pattern_score += 1

    if metrics.natural_language_score > cfg.MODE_NATURAL_LANGUAGE_HIGH:
        ai_score += 3
        reasons.append(f"Prose-like wording ({metrics.natural_language_score:.2f})")
    elif metrics.natural_language_score > cfg.MODE_NATURAL_LANGUAGE_LOW:
        ai_score += 1.5
        reasons.append(f"Some natural language ({metrics.natural_language_score:.2f})")

    if metrics.consistency_score > cfg.MODE_CONSISTENCY_HIGH:
        pattern_score += 2
        reasons.append("Consistent line shape")
    elif metrics.consistency_score < cfg.MODE_CONSISTENCY_LOW:
        ai_score += 1
        reasons.append("Irregular line shape")

    if metrics.avg_tokens_per_line > cfg.MODE_LONG_LINE_TOKENS:
        ai_score += 2
        reasons.append(f"Long lines ({metrics.avg_tokens_per_line:.1f} tokens)")
    elif metrics.avg_tokens_per_line <= cfg.MODE_SHORT_LINE_TOKENS:
        pattern_score += 1

    if variation.strong:
        ai_score += cfg.MODE_VARIATION_POINTS + (len(variation.varying_fields) - 1)
        reasons.append(f"Mixed notations for: {', '.join(variation.varying_fields)}")

    total = pattern_score + ai_score
    recommended: ParserMode = "ai" if ai_score > pattern_score else "pattern"
    confidence = 0.5 if total == 0 else min(cfg.MODE_MAX_CONFIDENCE, abs(pattern_score - ai_score) / total + 0.5)

    logger.debug(
        f"Parser mode: {recommended} (pattern={pattern_score:.1f}, ai={ai_score:.1f}, "
        f"confidence={confidence:.2f})"
    )
    return ParserModeAnalysis(
        recommended=recommended,
        confidence=round(confidence, 3),
        reasons=reasons,
        metrics=metrics,
        variation=variation,
        pattern_score=pattern_score,
        ai_score=ai_score,
    )
