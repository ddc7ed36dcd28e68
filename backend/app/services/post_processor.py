"""
Post-parse validation.

Applies the same shop rules to parts from every input method and scores each
field, so the review queue can show the least trustworthy parts first.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from app.models.cutlist_schema import ALL_EDGES, CutPart
from app.services import parser_config as cfg

logger = logging.getLogger("cutlist-parser.post")

# (L, W, name)
COMMON_SHEET_SIZES = [
    (2440, 1220, "Standard 8x4"),
    (2800, 2070, "Large panel"),
    (2500, 1250, "Metric 8x4"),
    (3050, 1525, "10x5"),
]

DEFAULT_MATERIAL_CODES = ("W", "Ply", "B", "M", "MDF", "OAK", "BK", "WH", "NAT")


@dataclass
class PostProcessorOptions:
    max_dimension: float = 3000
    min_dimension: float = 10
    max_quantity: int = 500
    # Length is the grain direction in cabinet making, not necessarily the longer side
    auto_swap_dimensions: bool = False
    valid_material_codes: Sequence[str] = DEFAULT_MATERIAL_CODES
    default_material_id: str = ""


@dataclass
class FieldConfidence:
    length: float = 1.0
    width: float = 1.0
    quantity: float = 1.0
    material: float = 1.0
    edge_banding: float = 1.0
    grooving: float = 1.0
    overall: float = 1.0


@dataclass
class ValidationResult:
    is_valid: bool
    errors: List[str]
    warnings: List[str]
    field_confidence: FieldConfidence
    normalized_part: CutPart


@dataclass
class BatchValidation:
    valid_parts: List[CutPart] = field(default_factory=list)
    results: List[ValidationResult] = field(default_factory=list)
    summary: Dict[str, float] = field(default_factory=dict)


def validate_part(part: CutPart, options: Optional[PostProcessorOptions] = None) -> ValidationResult:
    """Check one part against shop rules and return a normalized copy."""
    opts = options or PostProcessorOptions()
    errors: List[str] = []
    warnings: List[str] = []
    conf = FieldConfidence()
    updates: Dict[str, object] = {}

    # ── Dimensions ──
    length, width = part.size.L, part.size.W
    if length <= 0 or width <= 0:
        errors.append("Missing or invalid dimensions")
        conf.length = 0.0
        conf.width = 0.0
    else:
        if opts.auto_swap_dimensions and length < width:
            length, width = width, length
            updates["size"] = part.size.model_copy(update={"L": length, "W": width})
            warnings.append("Swapped L/W (length must be >= width)")
            conf.length *= 0.95
            conf.width *= 0.95

        if length > opts.max_dimension:
            warnings.append(f"Length {length:g}mm exceeds typical max {opts.max_dimension:g}mm")
            conf.length *= 0.7
        if width > opts.max_dimension:
            warnings.append(f"Width {width:g}mm exceeds typical max {opts.max_dimension:g}mm")
            conf.width *= 0.7
        if length < opts.min_dimension:
            warnings.append(f"Length {length:g}mm is very small")
            conf.length *= 0.8
        if width < opts.min_dimension:
            warnings.append(f"Width {width:g}mm is very small")
            conf.width *= 0.8

        exceeds_all_sheets = all(length > sl or width > sw for sl, sw, _ in COMMON_SHEET_SIZES)
        if exceeds_all_sheets and length > 2500:
            warnings.append("Dimensions may exceed standard sheet sizes")
            conf.length *= 0.85
            conf.width *= 0.85

        # 1000, 2000 ... are often a dropped digit
        if length >= 1000 and length % 1000 == 0:
            warnings.append(f"Length {length:g}mm is a round number - verify")
            conf.length *= 0.9

    # ── Quantity ──
    if part.qty > opts.max_quantity:
        warnings.append(f"Quantity {part.qty} is unusually high")
        conf.quantity *= 0.6
    elif part.qty > 50:
        warnings.append(f"High quantity ({part.qty}) - verify")
        conf.quantity *= 0.85

    # ── Material ──
    if not part.material_id or part.material_id == cfg.DEFAULT_MATERIAL_ID:
        if opts.default_material_id:
            updates["material_id"] = opts.default_material_id
            warnings.append("Material defaulted")
        conf.material = 0.5
    elif opts.valid_material_codes:
        known = {code.upper() for code in opts.valid_material_codes}
        if part.material_id.upper() not in known:
            warnings.append(f'Material code "{part.material_id}" not in standard list')
            conf.material *= 0.75

    # ── Thickness ──
    thickness = part.thickness_mm
    if thickness < 1 or thickness > 100:
        thickness = cfg.DEFAULT_THICKNESS_MM
        updates["thickness_mm"] = thickness
        warnings.append(f"Thickness defaulted to {cfg.DEFAULT_THICKNESS_MM:g}mm")

    # ── Edge banding ──
    if part.ops and part.ops.edging and part.ops.edging.edges:
        invalid = [e for e in part.ops.edging.edges if e not in ALL_EDGES]
        if invalid:
            warnings.append(f"Invalid edge codes: {', '.join(invalid)}")
            conf.edge_banding *= 0.7

    # ── Grooving ──
    if part.ops and part.ops.grooves:
        for groove in part.ops.grooves:
            if groove.width_mm and (groove.width_mm < 1 or groove.width_mm > 20):
                warnings.append(f"Groove width {groove.width_mm:g}mm is unusual")
                conf.grooving *= 0.8
            if groove.depth_mm and (groove.depth_mm < 1 or groove.depth_mm > thickness):
                warnings.append(f"Groove depth {groove.depth_mm:g}mm may be invalid")
                conf.grooving *= 0.8

    conf.overall = min(conf.length, conf.width, conf.quantity, conf.material, conf.edge_banding, conf.grooving)
    if part.audit is not None:
        updates["audit"] = part.audit.model_copy(update={"confidence": conf.overall})

    return ValidationResult(
        is_valid=not errors,
        errors=errors,
        warnings=warnings,
        field_confidence=conf,
        normalized_part=part.model_copy(update=updates, deep=True),
    )


def validate_parts(parts: List[CutPart], options: Optional[PostProcessorOptions] = None) -> BatchValidation:
    results = [validate_part(p, options) for p in parts]
    valid_parts = [r.normalized_part for r in results if r.is_valid]
    total_confidence = sum(r.field_confidence.overall for r in results)

    summary = {
        "total": len(parts),
        "valid": len(valid_parts),
        "with_warnings": sum(1 for r in results if r.warnings),
        "needs_review": sum(1 for r in results if r.field_confidence.overall < cfg.CONFIDENCE_MEDIUM),
        "average_confidence": total_confidence / len(parts) if parts else 0.0,
    }
    logger.debug(f"Post-processed {len(parts)} parts: {summary['needs_review']} need review")
    return BatchValidation(valid_parts=valid_parts, results=results, summary=summary)


def calculate_accuracy_score(results: List[ValidationResult]) -> int:
    """
    0-100 score for a batch: overall field confidence as a percentage, minus 25
    per error and 5 per warning, clamped per part and averaged.
    """
    if not results:
        return 0
    total = 0.0
    for r in results:
        score = r.field_confidence.overall * 100 - len(r.errors) * 25 - len(r.warnings) * 5
        total += max(0.0, min(100.0, score))
    return int(total / len(results) + 0.5)


def get_parts_needing_review(results: List[ValidationResult]) -> List[Dict[str, object]]:
    """Parts with issues or below medium confidence, lowest confidence first."""
    queue = [
        {
            "index": i,
            "part": r.normalized_part,
            "issues": r.errors + r.warnings,
            "confidence": r.field_confidence.overall,
        }
        for i, r in enumerate(results)
    ]
    queue = [item for item in queue if item["confidence"] < cfg.CONFIDENCE_MEDIUM or item["issues"]]
    return sorted(queue, key=lambda item: item["confidence"])
