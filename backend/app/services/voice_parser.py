"""
Voice / dictation parser.

Turns a transcript such as "side panel seven twenty by five sixty quantity two"
into a CutPart. Speech-to-text output has no punctuation and often mishears
short number words, so numbers are read as runs of number words on either side
of a dimension connector ("by", "x", "times", "cross", "multiplied by").
"""
import logging
import re
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from app.models.cutlist_schema import CutPart, DimLW, ParseOptions, PartAudit
from app.services import parser_config as cfg
from app.services.parser_patterns import NUMBER_WORDS
from app.services.parser_utils import (
    generate_part_id,
    normalize_text,
    parse_spoken_dimensions,
    parse_spoken_number,
)

logger = logging.getLogger("cutlist-parser.voice")

EXTENDED_NUMBER_WORDS: Dict[str, int] = {
    **NUMBER_WORDS,
    # ordinals
    "first": 1,
    "second": 2,
    "third": 3,
    "fourth": 4,
    "fifth": 5,
    # common mishearings
    "to": 2,
    "too": 2,
    "for": 4,
    "won": 1,
    "ate": 8,
    "sex": 6,
}

# Tried in order; "times" last so "720 by 560 times 2" keeps its quantity
DIMENSION_CONNECTORS: List[Tuple[str, ...]] = [
    ("by",),
    ("x",),
    ("multiplied", "by"),
    ("cross",),
    ("times",),
]

QUANTITY_INDICATORS = [
    re.compile(r"\b(?:quantity|qty)\s*(?:of\s*)?(\w+)", re.I),
    re.compile(r"\b(\d+)\s*(?:pieces?|pcs?|off|units?)\b", re.I),
    re.compile(r"\b(?:need|make|cut)\s*(\d+)\b", re.I),
    re.compile(r"\btimes\s*(\d+)$", re.I),
]

_MATERIAL_WORDS = [
    (re.compile(r"\bwhite\b", re.I), "white-melamine"),
    (re.compile(r"\boak\b", re.I), "oak"),
    (re.compile(r"\bwalnut\b", re.I), "walnut"),
    (re.compile(r"\bmdf\b", re.I), "mdf"),
    (re.compile(r"\bply(?:wood)?\b", re.I), "plywood"),
]

_THICKNESS = re.compile(r"\b(\d+)\s*(?:mm|millimet(?:er|re)s?)\b", re.I)
_GLUED_DIMENSIONS = re.compile(r"(\d)\s*x\s*(\d)", re.I)
_EXPLICIT_ONE = re.compile(r"\b(?:one|single|1)\b", re.I)


@dataclass
class VoiceParseResult:
    part: Optional[CutPart]
    confidence: float
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    original_text: str = ""
    normalized_text: str = ""


# ── Numbers ───────────────────────────────────────────────────────────────────

def _is_number_token(token: str) -> bool:
    return token in EXTENDED_NUMBER_WORDS or bool(re.match(r"^\d", token))


def _run_end(tokens: List[str], index: int) -> int:
    """End of the number run starting at ``index``: one digit token, or consecutive number words."""
    if index >= len(tokens) or not _is_number_token(tokens[index]):
        return index
    if re.match(r"^\d", tokens[index]):
        return index + 1
    end = index
    while (
        end < len(tokens)
        and tokens[end] in EXTENDED_NUMBER_WORDS
        and _connector_at(tokens, end) is None
    ):
        end += 1
    return end


def _run_start(tokens: List[str], index: int) -> int:
    """Start of the number run ending just before ``index``."""
    if index == 0 or not _is_number_token(tokens[index - 1]):
        return index
    if re.match(r"^\d", tokens[index - 1]):
        return index - 1
    start = index
    while start > 0 and tokens[start - 1] in EXTENDED_NUMBER_WORDS:
        start -= 1
    return start


def _connector_at(tokens: List[str], index: int) -> Optional[int]:
    """Length of the connector starting at ``index``, if any."""
    for connector in DIMENSION_CONNECTORS:
        if tuple(tokens[index:index + len(connector)]) == connector:
            return len(connector)
    return None


def locate_spoken_dimensions(text: str) -> Optional[Tuple[float, float, int, int]]:
    """
    (L, W, start, end) token span of the spoken dimensions, or None.

    The shorter side becomes W. Number runs end at the first non-number word
    and never mix digits with words, so "seven twenty by five sixty quantity
    two" reads 720 x 560 and "800 by 400 three pieces" reads 800 x 400.
    """
    spaced = _GLUED_DIMENSIONS.sub(r"\1 by \2", text.lower())
    tokens = spaced.split()

    for connector in DIMENSION_CONNECTORS:
        for i in range(1, len(tokens)):
            if tuple(tokens[i:i + len(connector)]) != connector:
                continue
            start = _run_start(tokens, i)
            end = _run_end(tokens, i + len(connector))
            if start == i or end == i + len(connector):
                continue
            pair = parse_spoken_dimensions(
                " ".join(tokens[start:i]) + " by " + " ".join(tokens[i + len(connector):end]),
                EXTENDED_NUMBER_WORDS,
            )
            if pair:
                return max(pair["L"], pair["W"]), min(pair["L"], pair["W"]), start, end

    # "dimensions 720 560"
    match = re.search(r"(\d+)\D+(\d+)", spaced)
    if match:
        first, second = float(match.group(1)), float(match.group(2))
        if first > 0 and second > 0:
            prefix = len(spaced[:match.start()].split())
            return max(first, second), min(first, second), prefix, prefix + len(match.group(0).split())
    return None


def parse_spoken_quantity(text: str) -> Optional[int]:
    """Quantity from indicator phrases, else a trailing number word under 100."""
    for pattern in QUANTITY_INDICATORS:
        match = pattern.search(text)
        if match:
            qty = parse_spoken_number(match.group(1), EXTENDED_NUMBER_WORDS)
            if qty is not None and 0 < qty < 10000:
                return int(qty)

    end_match = re.search(r"(\w+)\s*(?:pieces?|pcs?|off)?$", text, re.I)
    if end_match and _is_number_token(end_match.group(1).lower()):
        qty = parse_spoken_number(end_match.group(1).lower(), EXTENDED_NUMBER_WORDS)
        if qty is not None and 0 < qty < 100:
            return int(qty)
    return None


# ── Parser ────────────────────────────────────────────────────────────────────

def parse_voice_input(text: str, options: Optional[ParseOptions] = None, index: int = 0) -> VoiceParseResult:
    """
    Parse one dictated part.

    "Side panel seven twenty by five sixty quantity two"
    "Top shelf 800 by 400 three pieces"
    "Drawer front 450 x 200 grain length"
    """
    options = options or ParseOptions()
    normalized = normalize_text(text)
    warnings: List[str] = []
    confidence = 1.0

    dims = locate_spoken_dimensions(normalized)
    if dims is None:
        logger.debug(f"No dimensions in transcript: {normalized[:cfg.SNIPPET_LENGTH]!r}")
        return VoiceParseResult(
            part=None,
            confidence=0.0,
            errors=["Could not understand dimensions"],
            original_text=text,
            normalized_text=normalized,
        )
    length, width, start, end = dims

    tokens = _GLUED_DIMENSIONS.sub(r"\1 by \2", normalized).split()
    label_text = " ".join(tokens[:start])
    rest_text = " ".join(tokens[end:])

    qty = parse_spoken_quantity(rest_text) or parse_spoken_quantity(label_text) or 1
    if qty == 1 and not _EXPLICIT_ONE.search(normalized):
        warnings.append("No quantity detected, defaulting to 1")
        confidence *= 0.9

    grain = "none"
    allow_rotation = True
    if re.search(r"\bgrain\s*(?:along\s*)?(?:length|width)\b", normalized, re.I) or re.search(r"\bG[LW]\b", normalized):
        grain = "along_L"
        allow_rotation = False
    elif re.search(r"\bno\s*rotat(?:e|ion)\b|\bfixed\b", normalized, re.I):
        allow_rotation = False

    label_match = re.match(r"^([a-zA-Z][a-zA-Z\s]{1,30})", label_text)
    label = label_match.group(1).strip() if label_match else None
    if label:
        label = re.sub(r"\b(?:need|make|cut)\b\s*", "", label, flags=re.I).strip() or None

    material_id = options.default_material_id or cfg.DEFAULT_MATERIAL_ID
    for pattern, material in _MATERIAL_WORDS:
        if pattern.search(normalized):
            material_id = material
            break

    thickness = options.default_thickness_mm or cfg.DEFAULT_THICKNESS_MM
    for match in _THICKNESS.finditer(rest_text):
        value = float(match.group(1))
        if cfg.THICKNESS_MIN_MM <= value <= cfg.THICKNESS_MAX_MM:
            thickness = value
            break

    part = CutPart(
        part_id=generate_part_id("voice", index, normalized),
        label=label,
        qty=qty,
        size=DimLW(L=length, W=width),
        thickness_mm=thickness,
        material_id=material_id,
        grain=grain,
        allow_rotation=allow_rotation,
        audit=PartAudit(
            source_method="voice",
            parsed_text_snippet=normalized[:cfg.SNIPPET_LENGTH],
            confidence=confidence,
            warnings=warnings or None,
            human_verified=False,
        ),
    )
    return VoiceParseResult(
        part=part,
        confidence=confidence,
        warnings=warnings,
        original_text=text,
        normalized_text=normalized,
    )


class VoiceParserStream:
    """
    Buffers partial transcripts from a speech recogniser and emits parts.

    The buffer is parsed when a transcript is final or grows past 200
    characters; it is cleared only once a part was produced.
    """

    def __init__(self, on_part: Callable[[VoiceParseResult], None], options: Optional[ParseOptions] = None):
        self.options = options
        self.on_part = on_part
        self.buffer = ""
        self._emitted = 0

    def add_transcript(self, text: str, is_final: bool = False) -> None:
        self.buffer = f"{self.buffer} {text}"
        if is_final or len(self.buffer) > 200:
            self._process_buffer()

    def _process_buffer(self) -> None:
        text = self.buffer.strip()
        if not text:
            return
        result = parse_voice_input(text, self.options, index=self._emitted)
        if result.part is not None:
            self._emitted += 1
            self.buffer = ""
            self.on_part(result)

    def flush(self) -> Optional[VoiceParseResult]:
        """Parse whatever is buffered, part or not, and empty the buffer."""
        text = self.buffer.strip()
        self.buffer = ""
        if not text:
            return None
        return parse_voice_input(text, self.options, index=self._emitted)

    def clear(self) -> None:
        self.buffer = ""
