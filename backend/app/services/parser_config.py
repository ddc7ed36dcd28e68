"""
Cutlist parser configuration: single source of truth for defaults, confidence
levels, layer gates and heuristic weights.

Import from here in all parser layers rather than hardcoding values.
"""
from __future__ import annotations

import os

# ── Part defaults ─────────────────────────────────────────────────────────────

DEFAULT_THICKNESS_MM: float = 18.0
DEFAULT_MATERIAL_ID: str = "default"

# Confidence assumed for a part whose audit carries no confidence
UNSET_PART_CONFIDENCE: float = 0.8

# ── Format detection ──────────────────────────────────────────────────────────

HEADER_MATCH_CONFIDENCE: float = 0.8
STRUCTURE_TAB_CONFIDENCE: float = 0.85
STRUCTURE_COMMA_CONFIDENCE: float = 0.80
STRUCTURE_SPACE_CONFIDENCE: float = 0.70
FREE_FORM_CONFIDENCE: float = 0.5

# Share of lines that must contain a 2+ space run to call it a space table
SPACE_TABLE_LINE_RATIO: float = 0.8

# is_structured_table() floor
STRUCTURED_TABLE_MIN_CONFIDENCE: float = 0.6

# ── Deterministic layer ───────────────────────────────────────────────────────

DETERMINISTIC_PART_CONFIDENCE: float = 0.95
DETERMINISTIC_MAX_CONFIDENCE: float = 0.95

# Per-row success rate at or above which regex/LLM layers are skipped
SKIP_OTHER_LAYERS_SUCCESS_RATE: float = 0.90

# Lines sampled for delimiter auto-detection, and minimum hits to trust it
DELIMITER_SAMPLE_LINES: int = 5
DELIMITER_MIN_OCCURRENCES: int = 3

# ── Regex layer ───────────────────────────────────────────────────────────────

TABULAR_LINE_CONFIDENCE: float = 0.8
SPACE_SEPARATED_LINE_CONFIDENCE: float = 0.75
# neither number fell inside the dimension window, so the first two were taken as L and W
TABULAR_GUESSED_DIMENSIONS_CONFIDENCE: float = 0.5
PATTERN_DIMENSION_CONFIDENCE: float = 0.95
PATTERN_QUANTITY_CONFIDENCE: float = 0.9
DEFAULT_QUANTITY_CONFIDENCE: float = 0.6

TABULAR_DIMENSION_MIN_MM: float = 50.0
TABULAR_DIMENSION_MAX_MM: float = 3000.0
TABULAR_MAX_QUANTITY: int = 500
PATTERN_MAX_QUANTITY: int = 1000

THICKNESS_MIN_MM: float = 3.0
THICKNESS_MAX_MM: float = 100.0

SNIPPET_LENGTH: int = 100

# ── Input bounds ──────────────────────────────────────────────────────────────
# Regex families run line by line; bounding the input bounds worst-case work.

MAX_INPUT_LINES: int = 5000
MAX_INPUT_CHARS: int = 500_000

# ── Parser-mode recommendation weights ────────────────────────────────────────
# Point values are tunable; only their relative ordering matters.

MODE_STRUCTURE_STRONG: float = 0.6      # structural score above this → pattern +3
MODE_STRUCTURE_WEAK: float = 0.3        # above this → pattern +1.5
MODE_DIMENSION_DENSITY: float = 0.7     # share of lines with NxM tokens → pattern +2
MODE_NATURAL_LANGUAGE_HIGH: float = 0.4  # → ai +3
MODE_NATURAL_LANGUAGE_LOW: float = 0.2   # → ai +1.5
MODE_CONSISTENCY_HIGH: float = 0.7      # → pattern +2
MODE_CONSISTENCY_LOW: float = 0.3       # → ai +1
MODE_LONG_LINE_TOKENS: float = 15.0     # avg tokens per line above this → ai +2
MODE_SHORT_LINE_TOKENS: float = 8.0     # at or below this → pattern +1
MODE_VARIATION_POINTS: float = 4.0      # strong format variation → ai +4
MODE_MAX_CONFIDENCE: float = 0.95

FORCE_AI_MIN_LINE_CHARS: int = 200
FORCE_PATTERN_FORMAT_CONFIDENCE: float = 0.9
FORCE_PATTERN_MIN_LINES: int = 5
FORCE_PATTERN_MIN_TABS: int = 3

# ── Review thresholds ─────────────────────────────────────────────────────────

CONFIDENCE_HIGH: float = 0.9
CONFIDENCE_MEDIUM: float = 0.7
CONFIDENCE_LOW: float = 0.5
CONFIDENCE_CRITICAL: float = 0.3

# ── LLM layer ─────────────────────────────────────────────────────────────────

LLM_PRIMARY_MODEL: str = os.getenv("LLM_PRIMARY_MODEL", "groq/llama-3.1-70b-versatile")
LLM_FALLBACK_MODEL: str = os.getenv("LLM_FALLBACK_MODEL", "gemini/gemini-1.5-flash")
LLM_TIMEOUT_S: float = float(os.getenv("LLM_TIMEOUT_S", "60"))
LLM_MAX_INPUT_CHARS: int = 12_000

# Model family prefix → API key env var that makes it usable
LLM_KEY_ENV_VARS: dict[str, str] = {
    "groq": "GROQ_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "openai": "OPENAI_API_KEY",
    "gpt": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "claude": "ANTHROPIC_API_KEY",
}

# ── Result cache ──────────────────────────────────────────────────────────────

PARSE_CACHE_TTL_S: float = float(os.getenv("PARSE_CACHE_TTL_S", "300"))
PARSE_CACHE_MAX_ENTRIES: int = 256
