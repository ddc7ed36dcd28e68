"""
Canonical cutlist schema.

CutPart is the unit every parser layer emits. The remaining models describe
format detection, per-row failures and the aggregate three-layer result that
the HTTP layer returns to the client.

Wire names of the aggregate result keep the camelCase keys the frontend
consumes (``parsedDeterministic``, ``layersUsed`` ...) through field aliases;
Python code uses the snake_case attribute names.
"""
from __future__ import annotations

from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field


# ── Primitive vocabularies ────────────────────────────────────────────────────

EdgeId = Literal["L1", "L2", "W1", "W2"]
GrainMode = Literal["none", "along_L"]
PartFamily = Literal["panel", "door", "drawer_box", "face_frame", "filler", "misc"]
IngestionMethod = Literal["manual", "paste_parser", "excel_table", "ocr", "voice", "api"]
Units = Literal["mm", "cm", "inch"]
DimOrderHint = Literal["LxW", "WxL", "infer"]
ParsingStrategy = Literal["deterministic", "regex", "llm"]
LayerName = Literal["deterministic", "regex", "llm"]
DetectionMethod = Literal["pattern", "header", "structure", "heuristic"]

SourceFormat = Literal[
    "auto",
    "excel",
    "cabinet_vision",
    "mozaik",
    "polyboard",
    "cutrite",
    "sketchlist",
    "pro100",
    "generic_table",
    "free_form",
    "cai_template",
]

ALL_EDGES: tuple = ("L1", "L2", "W1", "W2")


class DimLW(BaseModel):
    """Finished size in millimetres."""
    L: float = Field(..., gt=0, description="Length (grain direction) in mm")
    W: float = Field(..., gt=0, description="Width in mm")


# ── Operations ────────────────────────────────────────────────────────────────

class EdgebandEdge(BaseModel):
    apply: bool = True
    edgeband_id: Optional[str] = None
    thickness_mm: Optional[float] = Field(None, gt=0)
    remarks: Optional[str] = None


class EdgingSummary(BaseModel):
    total_length_mm: Optional[float] = None
    notes: Optional[str] = None


class EdgeEdgingOps(BaseModel):
    """Edge banding for the edges that receive it; absent edges are unbanded."""
    edges: Dict[EdgeId, EdgebandEdge] = Field(default_factory=dict)
    summary: Optional[EdgingSummary] = None


class GrooveOp(BaseModel):
    groove_id: Optional[str] = None
    profile_id: Optional[str] = None
    side: EdgeId
    offset_mm: float = Field(0.0, ge=0)
    length_mm: Optional[float] = Field(None, gt=0)
    depth_mm: Optional[float] = Field(None, gt=0)
    width_mm: Optional[float] = Field(None, gt=0)
    stopped: Optional[bool] = None
    face: Optional[Literal["front", "back"]] = None
    notes: Optional[str] = None


class HolePoint(BaseModel):
    x: float
    y: float
    dia_mm: float = Field(..., gt=0)
    depth_mm: Optional[float] = Field(None, gt=0)


class HoleOp(BaseModel):
    pattern_id: Optional[str] = None
    holes: Optional[List[HolePoint]] = None
    face: Optional[Literal["front", "back", "edge"]] = None
    notes: Optional[str] = None


class RoutingRegion(BaseModel):
    x: float
    y: float
    L: float = Field(..., gt=0)
    W: float = Field(..., gt=0)


class RoutingOp(BaseModel):
    profile_id: Optional[str] = None
    region: RoutingRegion
    depth_mm: Optional[float] = Field(None, gt=0)
    through: Optional[bool] = None
    notes: Optional[str] = None


class ShapePayload(BaseModel):
    """A parametric CNC shape from the shop's shape library."""
    kind: Literal["shape"] = "shape"
    shape_id: str
    params: Dict[str, float] = Field(default_factory=dict)


class OpaquePayload(BaseModel):
    """Anything the parser does not model, carried as serialized JSON."""
    kind: Literal["opaque"] = "opaque"
    blob: str = Field(..., description="JSON-serialized operation payload")


CncPayload = Annotated[Union[ShapePayload, OpaquePayload], Field(discriminator="kind")]


class CustomCncOp(BaseModel):
    op_type: str = Field(..., min_length=1)
    payload: CncPayload
    notes: Optional[str] = None


class PartOps(BaseModel):
    edging: Optional[EdgeEdgingOps] = None
    grooves: Optional[List[GrooveOp]] = None
    holes: Optional[List[HoleOp]] = None
    routing: Optional[List[RoutingOp]] = None
    custom_cnc_ops: Optional[List[CustomCncOp]] = None


# ── Notes and audit ───────────────────────────────────────────────────────────

class PartNotes(BaseModel):
    operator: Optional[str] = Field(None, description="Note for the saw operator")
    cnc: Optional[str] = Field(None, description="Note for the CNC operator")
    design: Optional[str] = Field(None, description="Design/engineering note")


class PartAudit(BaseModel):
    """How a part was ingested and how much the parser trusts it."""
    source_method: IngestionMethod
    source_ref: Optional[str] = None
    parsed_text_snippet: Optional[str] = None
    confidence: Optional[float] = Field(None, ge=0, le=1)
    warnings: Optional[List[str]] = None
    errors: Optional[List[str]] = None
    human_verified: bool = False


# ── CutPart ───────────────────────────────────────────────────────────────────

class CutPart(BaseModel):
    """
    One distinct cut piece (with quantity).

    Invariants enforced on construction: L > 0, W > 0, thickness_mm > 0,
    qty >= 1. Grain together with allow_rotation=True is legal but flagged by
    validate_part_geometry().
    """
    part_id: str = Field(..., min_length=1)
    label: Optional[str] = None
    family: Optional[PartFamily] = None
    qty: int = Field(..., ge=1)
    size: DimLW
    thickness_mm: float = Field(..., gt=0)
    material_id: str = Field(..., min_length=1)
    grain: GrainMode = "none"
    allow_rotation: Optional[bool] = None
    group_id: Optional[str] = None
    tags: Optional[List[str]] = None
    ops: Optional[PartOps] = None
    notes: Optional[PartNotes] = None
    audit: Optional[PartAudit] = None


def validate_part_geometry(part: CutPart) -> List[str]:
    """Non-fatal geometry checks; returns human-readable problems."""
    problems: List[str] = []
    if part.grain == "along_L" and part.allow_rotation is True:
        problems.append("Grained parts should not allow rotation")
    if part.size.L > 10000:
        problems.append("Length exceeds 10m - verify this is correct")
    if part.size.W > 5000:
        problems.append("Width exceeds 5m - verify this is correct")
    if part.thickness_mm > 100:
        problems.append("Thickness exceeds 100mm - verify this is correct")
    return problems


def calculate_cut_size(finished: DimLW, edging: Optional[Dict[str, float]] = None) -> DimLW:
    """Cut size = finished size minus the band thickness on each banded edge."""
    edging = edging or {}
    return DimLW(
        L=finished.L - edging.get("L1", 0.0) - edging.get("L2", 0.0),
        W=finished.W - edging.get("W1", 0.0) - edging.get("W2", 0.0),
    )


def get_part_summary(part: CutPart) -> str:
    label = part.label or part.part_id
    return f"{label}: {part.qty}x {part.size.L:g}x{part.size.W:g}x{part.thickness_mm:g}"


def get_part_area(part: CutPart) -> float:
    """Total area in mm² (qty × L × W)."""
    return part.qty * part.size.L * part.size.W


def get_part_edging_length(part: CutPart) -> float:
    """Total banded length in mm across all copies of the part."""
    if not part.ops or not part.ops.edging:
        return 0.0
    total = 0.0
    for edge_id, edge in part.ops.edging.edges.items():
        if not edge.apply:
            continue
        total += part.size.L if edge_id.startswith("L") else part.size.W
    return total * part.qty


def merge_parts(first: CutPart, second: CutPart) -> CutPart:
    """Combine two duplicate parts by summing quantities."""
    if (
        first.size.L != second.size.L
        or first.size.W != second.size.W
        or first.thickness_mm != second.thickness_mm
        or first.material_id != second.material_id
    ):
        raise ValueError("Cannot merge parts with different dimensions or material")

    tags = list(dict.fromkeys((first.tags or []) + (second.tags or [])))
    return first.model_copy(update={
        "qty": first.qty + second.qty,
        "tags": tags or None,
        "notes": first.notes or second.notes,
        "audit": PartAudit(source_method="manual", human_verified=True),
    })


# ── Parse options ─────────────────────────────────────────────────────────────

class ParseOptions(BaseModel):
    """Options bag accepted by every parser entry point."""
    format_hint: Optional[SourceFormat] = Field(None, alias="formatHint")
    default_material_id: Optional[str] = Field(None, alias="defaultMaterialId")
    default_thickness_mm: Optional[float] = Field(None, gt=0, alias="defaultThicknessMm")
    use_llm_fallback: bool = Field(False, alias="useLLMFallback")
    dim_order_hint: DimOrderHint = Field("LxW", alias="dimOrderHint")
    units: Units = "mm"

    model_config = {"populate_by_name": True}


# ── Detection and layer results ───────────────────────────────────────────────

class FormatDetectionResult(BaseModel):
    format: SourceFormat
    confidence: float = Field(..., ge=0, le=1)
    method: DetectionMethod
    delimiter: Optional[str] = None
    column_count: Optional[int] = Field(None, alias="columnCount")
    has_headers: Optional[bool] = Field(None, alias="hasHeaders")

    model_config = {"populate_by_name": True}


class FailedRow(BaseModel):
    """A row or line a layer could not turn into a CutPart."""
    row: int
    line: str
    error: str


class ParseStats(BaseModel):
    total_lines: int = Field(0, alias="totalLines")
    parsed_deterministic: int = Field(0, alias="parsedDeterministic")
    parsed_regex: int = Field(0, alias="parsedRegex")
    parsed_llm: int = Field(0, alias="parsedLLM")
    failed: int = 0
    valid_count: int = Field(0, alias="validCount")
    parse_time_ms: float = Field(0.0, alias="parseTimeMs")

    model_config = {"populate_by_name": True, "frozen": True}


class ThreeLayerParseResult(BaseModel):
    parts: List[CutPart] = Field(default_factory=list)
    stats: ParseStats = Field(default_factory=ParseStats)
    detected_format: SourceFormat = Field("auto", alias="detectedFormat")
    layers_used: List[LayerName] = Field(default_factory=list, alias="layersUsed")
    average_confidence: float = Field(0.0, alias="averageConfidence")
    warnings: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)

    model_config = {"populate_by_name": True, "frozen": True}
