"""
test_text_parser.py — Regex / heuristic line parser.

Tests cover:
  - Pattern reading: LxW variants, quantity, grain, material, thickness, edges
  - Dimension order hint and unit conversion
  - Tabular reading: row numbers, X edge markers, grooves, space-separated rows
  - Header / separator / metadata lines skipped rather than failed
  - Batch splitting and failed-line collection
  - quick_parse and validate_parsed_part
"""

import pytest

from app.models.cutlist_schema import CutPart, DimLW, ParseOptions
from app.services import parser_config as cfg
from app.services.text_parser import (
    GUESSED_DIMENSIONS_WARNING,
    NO_DIMENSIONS_ERROR,
    NON_DATA_ERROR,
    extract_grain,
    is_header_line,
    parse_text_batch,
    parse_text_line,
    quick_parse,
    should_skip_line,
    validate_parsed_part,
)


class TestPatternReading:

    def test_label_dimensions_quantity(self):
        result = parse_text_line("Side panel 720x560 qty 2")
        part = result.part
        assert result.errors == []
        assert part.label == "Side panel"
        assert part.size.L == 720 and part.size.W == 560
        assert part.qty == 2
        assert part.thickness_mm == 18.0
        assert part.material_id == "default"
        assert part.audit.source_method == "paste_parser"
        # dims 0.95 × qty 0.9 × unspecified grain 0.95
        assert result.confidence == pytest.approx(0.95 * 0.9 * 0.95)

    def test_spaced_x_with_trailing_quantity_and_material(self):
        part = parse_text_line("Shelf 600 x 300 x 4 white melamine").part
        assert (part.size.L, part.size.W) == (600, 300)
        assert part.qty == 4
        assert part.material_id == "white-melamine"
        assert part.tags == ["white-melamine"]

    def test_by_and_pcs_with_grain(self):
        part = parse_text_line("Door 715 by 396 2 pcs GL").part
        assert (part.size.L, part.size.W) == (715, 396)
        assert part.qty == 2
        assert part.grain == "along_L"
        assert part.allow_rotation is False

    def test_x_quantity_suffix(self):
        assert parse_text_line("Shelf 600x300 x2").part.qty == 2

    def test_missing_quantity_defaults_with_warning(self):
        result = parse_text_line("Shelf 600x300")
        assert result.part.qty == 1
        assert "Quantity not specified, defaulting to 1" in result.warnings
        assert result.part.audit.warnings == result.warnings

    def test_thickness_token(self):
        assert parse_text_line("Side 720x560 t16").part.thickness_mm == 16

    def test_default_thickness_option(self):
        part = parse_text_line("Side 720x560", ParseOptions(default_thickness_mm=25)).part
        assert part.thickness_mm == 25

    def test_default_material_option_wins(self):
        part = parse_text_line("Shelf 600x300 white melamine", ParseOptions(default_material_id="carcass")).part
        assert part.material_id == "carcass"
        assert part.tags == ["white-melamine"]

    def test_edges(self):
        part = parse_text_line("Side 720x560 qty 2 EB L1 L2").part
        assert set(part.ops.edging.edges) == {"L1", "L2"}

    def test_all_edges(self):
        part = parse_text_line("Top 800x560 all edges").part
        assert set(part.ops.edging.edges) == {"L1", "L2", "W1", "W2"}

    def test_quoted_label(self):
        assert parse_text_line('720x560 "end panel"').part.label == "end panel"


class TestDimensionOptions:

    def test_wxl_swaps(self):
        part = parse_text_line("Side 560x720", ParseOptions(dim_order_hint="WxL")).part
        assert (part.size.L, part.size.W) == (720, 560)

    def test_infer_keeps_written_order(self):
        part = parse_text_line("Rail 80x600", ParseOptions(dim_order_hint="infer")).part
        assert (part.size.L, part.size.W) == (80, 600)

    def test_centimetres(self):
        part = parse_text_line("Side 72x56", ParseOptions(units="cm")).part
        assert part.size.L == pytest.approx(720)
        assert part.size.W == pytest.approx(560)


class TestGrain:

    @pytest.mark.parametrize("text,expected", [
        ("GL", ("along_L", False)),
        ("grain width", ("along_L", False)),
        ("no grain", ("none", True)),
        ("no rotation", ("along_L", False)),
        ("plain", ("none", True)),
    ])
    def test_grain_words(self, text, expected):
        grain, allow_rotation, _ = extract_grain(text)
        assert (grain, allow_rotation) == expected


class TestTabularReading:

    def test_row_number_skipped(self):
        result = parse_text_line("1\tSide\t720\t560\t2")
        part = result.part
        assert part.label == "Side"
        assert (part.size.L, part.size.W, part.qty) == (720, 560, 2)
        assert result.confidence == pytest.approx(0.8)

    def test_leading_dimension_is_not_a_row_number(self):
        part = parse_text_line("720\t560\t2").part
        assert (part.size.L, part.size.W, part.qty) == (720, 560, 2)

    def test_guessed_dimensions_are_flagged(self):
        result = parse_text_line("B\t\t50\t1")
        assert (result.part.size.L, result.part.size.W) == (50, 1)
        assert result.confidence == pytest.approx(cfg.TABULAR_GUESSED_DIMENSIONS_CONFIDENCE)
        assert result.warnings == [GUESSED_DIMENSIONS_WARNING]
        assert result.part.audit.warnings == [GUESSED_DIMENSIONS_WARNING]

    def test_x_edge_markers(self):
        part = parse_text_line("Side\t720\t560\t2\tX\tX").part
        assert set(part.ops.edging.edges) == {"L1", "W1"}

    def test_double_x_bands_both_edges(self):
        part = parse_text_line("Side\t720\t560\t2\tXX").part
        assert set(part.ops.edging.edges) == {"L1", "L2"}

    def test_groove_column(self):
        part = parse_text_line("Back\t700\t500\t1\tgroove").part
        groove = part.ops.grooves[0]
        assert groove.side == "W2"
        assert groove.offset_mm == 10
        assert groove.width_mm == 4

    def test_material_cell_becomes_tag(self):
        part = parse_text_line("Side\t720\t560\t2\tPB white").part
        assert part.tags == ["PB white"]
        assert part.material_id == "default"

    def test_space_separated(self):
        result = parse_text_line("Side 720 560 2")
        assert (result.part.size.L, result.part.size.W, result.part.qty) == (720, 560, 2)
        assert result.confidence == pytest.approx(0.75)

    def test_dimension_token_uses_pattern_reading(self):
        result = parse_text_line("Door  720x560  2")
        assert (result.part.size.L, result.part.size.W) == (720, 560)


class TestNonDataLines:

    @pytest.mark.parametrize("line", ["Part Length Width Qty", "Client: Smith", "-----", "Total", "7"])
    def test_skipped(self, line):
        result = parse_text_line(line)
        assert result.part is None
        assert result.errors == [NON_DATA_ERROR]
        assert result.skipped

    def test_header_detection(self):
        assert is_header_line("Name\tLength\tWidth")
        assert not is_header_line("Side 720 length")

    def test_metadata_requires_colon(self):
        assert should_skip_line("Material: MDF")
        assert not should_skip_line("Material MDF 720x560")

    def test_no_dimensions(self):
        result = parse_text_line("just some words")
        assert result.errors == [NO_DIMENSIONS_ERROR]
        assert not result.skipped

    def test_empty(self):
        assert parse_text_line("   ").errors == ["Empty input"]


class TestBatch:

    def test_free_form_lines(self, free_form_lines):
        batch = parse_text_batch(free_form_lines)
        assert batch.total_parsed == 3
        assert batch.total_errors == 0
        assert [p.qty for p in batch.parts] == [2, 4, 2]
        assert 0 < batch.average_confidence <= 1

    def test_semicolon_segments(self):
        batch = parse_text_batch("Side 720x560 qty 2; Top 800x560 qty 1")
        assert [p.label for p in batch.parts] == ["Side", "Top"]

    def test_table_rows_kept_whole(self):
        assert parse_text_batch("Top;;560;1").failed_lines == ["Top"]
        assert parse_text_batch("Top;;560;1", split_segments=False).failed_lines == ["Top;;560;1"]

    def test_headers_skipped_failures_collected(self):
        batch = parse_text_batch("Part Length Width\nSide 720x560 qty 2\nnonsense words here\n")
        assert batch.total_parsed == 1
        assert batch.total_errors == 1
        assert batch.failed_lines == ["nonsense words here"]

    def test_ids_stable(self, free_form_lines):
        first = [p.part_id for p in parse_text_batch(free_form_lines).parts]
        assert first == [p.part_id for p in parse_text_batch(free_form_lines).parts]


class TestHelpers:

    def test_quick_parse(self):
        part = quick_parse("720x560")
        assert part is not None
        assert part.audit.source_method == "manual"
        assert quick_parse("hello there") is None

    def test_validate_flags_grain_with_rotation(self):
        part = CutPart(
            part_id="P-1", qty=1, size=DimLW(L=3200, W=500), thickness_mm=18,
            material_id="oak", grain="along_L", allow_rotation=True,
        )
        report = validate_parsed_part(part)
        assert report["valid"] is True
        assert "Grained parts typically should not allow rotation" in report["suggestions"]
        assert "Dimensions seem large - verify they are in mm" in report["suggestions"]
