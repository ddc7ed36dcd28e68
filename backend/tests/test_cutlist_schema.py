"""
test_cutlist_schema.py — CutPart model invariants and part helpers.
"""

import pytest
from pydantic import ValidationError

from app.models.cutlist_schema import (
    CustomCncOp,
    CutPart,
    DimLW,
    EdgebandEdge,
    EdgeEdgingOps,
    OpaquePayload,
    ParseOptions,
    PartOps,
    ShapePayload,
    ThreeLayerParseResult,
    calculate_cut_size,
    get_part_area,
    get_part_edging_length,
    get_part_summary,
    merge_parts,
    validate_part_geometry,
)


def make_part(**overrides) -> CutPart:
    data = dict(part_id="P-1", label="Side", qty=2, size=DimLW(L=720, W=560), thickness_mm=18, material_id="WH")
    data.update(overrides)
    return CutPart(**data)


class TestInvariants:

    @pytest.mark.parametrize("field,value", [("qty", 0), ("thickness_mm", 0), ("material_id", "")])
    def test_rejects_invalid_values(self, field, value):
        with pytest.raises(ValidationError):
            make_part(**{field: value})

    def test_rejects_non_positive_size(self):
        with pytest.raises(ValidationError):
            DimLW(L=0, W=560)

    def test_result_is_frozen(self):
        result = ThreeLayerParseResult()
        with pytest.raises(ValidationError):
            result.warnings = ["x"]

    def test_wire_names(self):
        dumped = ThreeLayerParseResult().model_dump(by_alias=True)
        assert set(dumped["stats"]) >= {"totalLines", "parsedDeterministic", "parsedRegex", "parsedLLM", "failed"}
        assert "layersUsed" in dumped

    def test_options_accept_camel_case(self):
        options = ParseOptions.model_validate({"useLLMFallback": True, "dimOrderHint": "WxL"})
        assert options.use_llm_fallback is True
        assert options.dim_order_hint == "WxL"


class TestCncPayloads:

    def test_shape_variant(self):
        op = CustomCncOp.model_validate(
            {"op_type": "arch", "payload": {"kind": "shape", "shape_id": "arch-top", "params": {"radius": 300}}}
        )
        assert isinstance(op.payload, ShapePayload)
        assert op.payload.params["radius"] == 300

    def test_opaque_variant(self):
        op = CustomCncOp.model_validate({"op_type": "pocket", "payload": {"kind": "opaque", "blob": "{\"d\": 5}"}})
        assert isinstance(op.payload, OpaquePayload)

    def test_unknown_kind_rejected(self):
        with pytest.raises(ValidationError):
            CustomCncOp.model_validate({"op_type": "x", "payload": {"kind": "laser"}})


class TestHelpers:

    def test_geometry_warnings(self):
        part = make_part(size=DimLW(L=11000, W=560), grain="along_L", allow_rotation=True, thickness_mm=120)
        problems = validate_part_geometry(part)
        assert "Grained parts should not allow rotation" in problems
        assert "Length exceeds 10m - verify this is correct" in problems
        assert "Thickness exceeds 100mm - verify this is correct" in problems

    def test_cut_size(self):
        cut = calculate_cut_size(DimLW(L=720, W=560), {"L1": 1, "L2": 1, "W1": 2})
        assert (cut.L, cut.W) == (718, 558)

    def test_summary(self):
        assert get_part_summary(make_part()) == "Side: 2x 720x560x18"

    def test_area(self):
        assert get_part_area(make_part()) == 2 * 720 * 560

    def test_edging_length(self):
        edges = {"L1": EdgebandEdge(), "W1": EdgebandEdge(), "W2": EdgebandEdge(apply=False)}
        part = make_part(ops=PartOps(edging=EdgeEdgingOps(edges=edges)))
        assert get_part_edging_length(part) == (720 + 560) * 2
        assert get_part_edging_length(make_part()) == 0

    def test_merge(self):
        merged = merge_parts(make_part(tags=["a"]), make_part(qty=3, tags=["a", "b"]))
        assert merged.qty == 5
        assert merged.tags == ["a", "b"]
        assert merged.audit.human_verified is True

    def test_merge_mismatch(self):
        with pytest.raises(ValueError, match="Cannot merge"):
            merge_parts(make_part(), make_part(material_id="oak"))
