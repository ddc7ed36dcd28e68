"""
LLM fallback layer (layer 3).

Only the lines the deterministic and regex layers could not read reach this
layer. The provider capability is deliberately small, ``is_configured()`` and
``parse_text(text, options)``, so tests and alternative backends can stand in
for the litellm-backed default.
"""
import asyncio
import json
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, List, Optional, Protocol, runtime_checkable

from pydantic import ValidationError

from app.models.cutlist_schema import (
    ALL_EDGES,
    CutPart,
    DimLW,
    EdgebandEdge,
    EdgeEdgingOps,
    ParseOptions,
    PartAudit,
    PartNotes,
    PartOps,
)
from app.services import parser_config as cfg
from app.services.llm_client import LLMClient
from app.services.parser_utils import generate_part_id, parse_number, round_half_up

logger = logging.getLogger("cutlist-parser.llm")

# JSON shape requested from the model, one object per distinct part
_ITEM_SCHEMA = {
    "label": "string or null",
    "length": "number, mm, grain direction",
    "width": "number, mm",
    "thickness": "number, mm, or null",
    "quantity": "integer >= 1",
    "material": "string or null",
    "grain": "'along_L' or 'none'",
    "allowRotation": "boolean",
    "edgeBanding": {"detected": "boolean", "edges": ["L1", "L2", "W1", "W2"]},
    "notes": "string or null",
    "confidence": "number 0-1",
    "warnings": ["string"],
}

_MATERIAL_HINTS = [
    (re.compile(r"white.*\bmel|\bmel.*white", re.I), "white-melamine"),
    (re.compile(r"black.*melamine", re.I), "black-melamine"),
    (re.compile(r"oak", re.I), "oak"),
    (re.compile(r"mdf", re.I), "mdf"),
    (re.compile(r"ply", re.I), "plywood"),
]


@dataclass
class ParsedPartResult:
    part: CutPart
    confidence: float
    warnings: List[str] = field(default_factory=list)
    original_text: Optional[str] = None


@dataclass
class AIParseResult:
    success: bool
    parts: List[ParsedPartResult] = field(default_factory=list)
    total_confidence: float = 0.0
    raw_response: Optional[str] = None
    errors: List[str] = field(default_factory=list)
    processing_time_ms: float = 0.0


@runtime_checkable
class LLMProvider(Protocol):
    def is_configured(self) -> bool:
        ...

    async def parse_text(self, text: str, options: ParseOptions) -> AIParseResult:
        ...


# ── Prompt / response ─────────────────────────────────────────────────────────

def build_parse_prompt(text: str) -> str:
    return (
        "You are extracting a woodworking cutlist from messy text.\n"
        "Return a JSON object {\"parts\": [...]} where each part follows this schema:\n"
        f"{json.dumps(_ITEM_SCHEMA, indent=2)}\n\n"
        "Rules:\n"
        "- One object per distinct part; quantity defaults to 1\n"
        "- Dimensions in millimetres; convert inches (x25.4) or cm (x10)\n"
        "- Length is the grain direction and may be shorter than width\n"
        "- Skip header rows, totals and notes that are not parts\n"
        "- NEVER invent dimensions; omit a part you cannot read\n\n"
        f"INPUT DATA:\n{text[:cfg.LLM_MAX_INPUT_CHARS]}"
    )


def extract_items(raw: Any) -> Optional[List[dict]]:
    """Pull the parts array out of a model reply ({"parts": [...]}, a bare array, or prose around one)."""
    parsed: Any = raw
    if isinstance(raw, str):
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            match = re.search(r"\[.*\]", raw, re.DOTALL)
            if not match:
                return None
            try:
                parsed = json.loads(match.group(0))
            except json.JSONDecodeError:
                return None

    if isinstance(parsed, dict):
        parsed = parsed.get("parts", [parsed] if "length" in parsed else None)
    if not isinstance(parsed, list):
        return None
    return [item for item in parsed if isinstance(item, dict)]


def map_material(name: Optional[str]) -> Optional[str]:
    if not name:
        return None
    for pattern, material_id in _MATERIAL_HINTS:
        if pattern.search(name):
            return material_id
    return name.strip() or None


def item_to_part(item: dict, index: int, options: ParseOptions, model: str) -> ParsedPartResult:
    """Convert one model item; raises ValueError when it cannot be a CutPart."""
    length = parse_number(str(item.get("length") or ""))
    width = parse_number(str(item.get("width") or ""))
    if not length or not width or length <= 0 or width <= 0:
        raise ValueError(f"Skipped part \"{item.get('label') or 'unknown'}\": missing or invalid dimensions")

    warnings = [str(w) for w in item.get("warnings") or []]
    confidence = item.get("confidence")
    if not isinstance(confidence, (int, float)) or not 0 <= confidence <= 1:
        confidence = cfg.UNSET_PART_CONFIDENCE

    qty_raw = parse_number(str(item.get("quantity") or "1")) or 1
    qty = max(1, round_half_up(qty_raw))
    if qty > 100:
        warnings.append("High quantity - verify")

    thickness = parse_number(str(item.get("thickness") or ""))
    if not thickness or thickness <= 0:
        thickness = options.default_thickness_mm or cfg.DEFAULT_THICKNESS_MM

    grain = "along_L" if item.get("grain") == "along_L" else "none"
    allow_rotation = item.get("allowRotation") is not False and grain != "along_L"

    edging = None
    banding = item.get("edgeBanding") or {}
    if isinstance(banding, dict) and banding.get("detected"):
        edges = [e for e in banding.get("edges") or [] if e in ALL_EDGES]
        if edges:
            edging = EdgeEdgingOps(edges={e: EdgebandEdge(apply=True) for e in edges})

    label = item.get("label") or None
    notes = item.get("notes")
    part = CutPart(
        part_id=generate_part_id("api", index, json.dumps(item, sort_keys=True, default=str)),
        label=label,
        qty=qty,
        size=DimLW(L=length, W=width),
        thickness_mm=thickness,
        material_id=map_material(item.get("material")) or options.default_material_id or cfg.DEFAULT_MATERIAL_ID,
        grain=grain,
        allow_rotation=allow_rotation,
        ops=PartOps(edging=edging) if edging else None,
        notes=PartNotes(operator=str(notes)) if notes else None,
        audit=PartAudit(
            source_method="api",
            source_ref=f"llm:{model}",
            confidence=confidence,
            warnings=warnings or None,
            human_verified=False,
        ),
    )
    return ParsedPartResult(part=part, confidence=confidence, warnings=warnings, original_text=label)


# ── Provider ──────────────────────────────────────────────────────────────────

class LiteLLMCutlistProvider:
    """Default provider: litellm through llm_client, primary then fallback model."""

    def __init__(self, client: Optional[LLMClient] = None, timeout_s: Optional[float] = None):
        self.client = client or LLMClient()
        self.timeout_s = timeout_s or cfg.LLM_TIMEOUT_S

    def is_configured(self) -> bool:
        return self.client.is_configured()

    async def parse_text(self, text: str, options: ParseOptions) -> AIParseResult:
        start = time.perf_counter()

        def elapsed() -> float:
            return round((time.perf_counter() - start) * 1000, 2)

        try:
            raw = await asyncio.wait_for(
                self.client.chat(
                    messages=[{"role": "user", "content": build_parse_prompt(text)}],
                    temperature=0.1,
                    json_mode=True,
                ),
                timeout=self.timeout_s,
            )
        except asyncio.TimeoutError:
            logger.warning(f"LLM parse timed out after {self.timeout_s}s")
            return AIParseResult(success=False, errors=[f"LLM timed out after {self.timeout_s}s"], processing_time_ms=elapsed())
        except Exception as e:
            logger.warning(f"LLM parse failed: {e}")
            return AIParseResult(success=False, errors=[str(e)], processing_time_ms=elapsed())

        items = extract_items(raw)
        if items is None:
            return AIParseResult(
                success=False,
                raw_response=raw if isinstance(raw, str) else json.dumps(raw),
                errors=["Failed to parse AI response as valid parts array"],
                processing_time_ms=elapsed(),
            )

        parts: List[ParsedPartResult] = []
        errors: List[str] = []
        for index, item in enumerate(items):
            try:
                parts.append(item_to_part(item, index, options, self.client.primary_model))
            except (ValueError, ValidationError) as e:
                errors.append(str(e).splitlines()[0])

        total = sum(p.confidence for p in parts) / len(parts) if parts else 0.0
        logger.debug(f"LLM returned {len(items)} items, {len(parts)} valid parts")
        return AIParseResult(
            success=bool(parts),
            parts=parts,
            total_confidence=total,
            raw_response=raw if isinstance(raw, str) else json.dumps(raw),
            errors=errors,
            processing_time_ms=elapsed(),
        )


_default_provider: Optional[LiteLLMCutlistProvider] = None


def get_default_provider() -> LiteLLMCutlistProvider:
    global _default_provider
    if _default_provider is None:
        _default_provider = LiteLLMCutlistProvider()
    return _default_provider

