"""
test_three_layer_parser.py — Cascade orchestration.

Tests cover:
  - Layer routing for tables, mixed input and free text
  - Residue hand-off: each layer only sees what earlier layers failed
  - Stats bookkeeping (counts add up, failed = total - parts)
  - LLM layer: opt-in, not-configured warning, errors downgraded to warnings
  - Stage exceptions never abort the parse
  - Repeat parses give identical parts
  - Input bounding

The LLM layer is always a StubProvider; no network access.
"""

import asyncio

import pytest

from app.models.cutlist_schema import ParseOptions
from app.services import parser_config as cfg
from app.services.perf_monitor import tracker
from app.services.three_layer_parser import (
    LLM_NOT_CONFIGURED,
    PipelineContext,
    Residue,
    StageOutput,
    auto_parse,
    choose_parse_mode,
    fast_parse,
    parse_three_layers,
    regex_stage,
    run_pipeline,
    smart_parse,
)

UNREADABLE_LINE = "the back panel is seven hundred by five hundred"
FREE_TEXT_WITH_PROSE = "Side panel 720x560 qty 2\n" + UNREADABLE_LINE + "\n"


def run(coro):
    return asyncio.run(coro)


class TestRouting:

    def test_clean_table_uses_only_deterministic(self, tab_table):
        result = run(fast_parse(tab_table))
        assert result.layers_used == ["deterministic"]
        assert result.detected_format == "excel"
        assert len(result.parts) == 3
        assert result.stats.total_lines == 4
        assert result.stats.parsed_deterministic == 3
        assert result.stats.parsed_regex == 0
        assert result.stats.failed == 1
        assert result.average_confidence == pytest.approx(0.95)

    def test_mixed_input_falls_through_to_regex(self, mixed_input):
        result = run(fast_parse(mixed_input))
        assert result.layers_used == ["deterministic", "regex"]
        assert result.stats.parsed_deterministic == 2
        assert result.stats.parsed_regex == 1
        regex_part = result.parts[-1]
        assert regex_part.audit.source_method == "paste_parser"
        assert (regex_part.size.L, regex_part.size.W, regex_part.qty) == (720, 560, 2)

    def test_free_text_goes_to_regex(self, free_form_lines):
        result = run(fast_parse(free_form_lines))
        assert result.detected_format == "free_form"
        assert result.layers_used == ["regex"]
        assert result.stats.parsed_regex == 3
        assert result.stats.failed == 0

    def test_format_hint_overrides_detection(self, free_form_lines):
        result = run(fast_parse(free_form_lines, ParseOptions(format_hint="generic_table")))
        assert result.detected_format == "generic_table"
        assert result.layers_used == ["regex"]
        assert len(result.parts) == 3

    def test_empty_input(self):
        result = run(fast_parse("  \n\n "))
        assert result.parts == []
        assert result.errors == ["Empty input"]
        assert result.stats.total_lines == 0


class TestLLMLayer:

    def test_llm_reads_only_the_residue(self, stub_provider):
        result = run(smart_parse(FREE_TEXT_WITH_PROSE, provider=stub_provider))
        assert stub_provider.calls == [UNREADABLE_LINE]
        assert result.layers_used == ["regex", "llm"]
        assert result.stats.parsed_llm == 1
        llm_part = result.parts[-1]
        assert llm_part.label == "Back panel"
        assert llm_part.audit.source_method == "api"
        assert llm_part.audit.source_ref == "llm:stub/model"

    def test_rejected_table_row_reaches_llm_whole(self, stub_provider):
        text = "Part;Length;Width;Qty\nSide;720;560;2\nTop;;560;1\n"
        result = run(smart_parse(text, provider=stub_provider))
        assert stub_provider.calls == ["Top;;560;1"]
        assert result.layers_used == ["deterministic", "llm"]
        assert result.stats.parsed_deterministic == 1
        assert result.stats.parsed_llm == 1

    def test_fast_parse_never_calls_llm(self, stub_provider):
        options = ParseOptions(use_llm_fallback=True)
        result = run(fast_parse(FREE_TEXT_WITH_PROSE, options))
        assert "llm" not in result.layers_used
        assert result.warnings == []

    def test_llm_opt_in(self, stub_provider):
        run(parse_three_layers(FREE_TEXT_WITH_PROSE, ParseOptions(), provider=stub_provider))
        assert stub_provider.calls == []

    def test_not_configured_warns(self, unconfigured_provider):
        result = run(smart_parse(FREE_TEXT_WITH_PROSE, provider=unconfigured_provider))
        assert LLM_NOT_CONFIGURED in result.warnings
        assert len(result.parts) == 1
        assert unconfigured_provider.calls == []

    def test_provider_exception_becomes_warning(self, stub_provider):
        stub_provider.fail_with = RuntimeError("boom")
        result = run(smart_parse(FREE_TEXT_WITH_PROSE, provider=stub_provider))
        assert "LLM parsing error: boom" in result.warnings
        assert len(result.parts) == 1
        assert result.errors == []

    def test_empty_llm_answer_becomes_warning(self, stub_provider):
        stub_provider.items = []
        result = run(smart_parse(FREE_TEXT_WITH_PROSE, provider=stub_provider))
        assert "LLM parsing error: no parts" in result.warnings

    def test_clean_table_skips_llm(self, tab_table, stub_provider):
        result = run(smart_parse(tab_table, provider=stub_provider))
        assert stub_provider.calls == []
        assert result.layers_used == ["deterministic"]

    def test_smart_keeps_every_fast_part(self, mixed_input, stub_provider):
        text = mixed_input + UNREADABLE_LINE + "\n"
        fast = run(fast_parse(text))
        smart = run(smart_parse(text, provider=stub_provider))
        fast_ids = [p.part_id for p in fast.parts]
        assert [p.part_id for p in smart.parts][:len(fast_ids)] == fast_ids
        assert len(smart.parts) == len(fast.parts) + 1


class TestAutoMode:

    def test_request_phrasing_enables_llm(self, stub_provider):
        text = "please cut " + UNREADABLE_LINE
        mode, analysis = choose_parse_mode(text)
        assert (mode, analysis.recommended) == ("smart", "ai")
        result = run(auto_parse(text, provider=stub_provider))
        assert stub_provider.calls == [text]
        assert result.layers_used == ["llm"]

    def test_table_keeps_llm_off(self, tab_table, stub_provider):
        mode, analysis = choose_parse_mode(tab_table)
        assert (mode, analysis.recommended) == ("fast", "pattern")
        result = run(auto_parse(tab_table, provider=stub_provider))
        assert "llm" not in result.layers_used
        assert stub_provider.calls == []


class TestResultInvariants:

    @pytest.mark.parametrize("fixture", ["tab_table", "csv_table", "mixed_input", "free_form_lines"])
    def test_counts_add_up(self, fixture, request):
        result = run(fast_parse(request.getfixturevalue(fixture)))
        stats = result.stats
        assert stats.parsed_deterministic + stats.parsed_regex + stats.parsed_llm == len(result.parts)
        assert stats.valid_count == len(result.parts)
        assert stats.failed == max(0, stats.total_lines - len(result.parts))

    def test_header_and_blank_rows_count_as_failed(self, stub_provider):
        """A row with empty L/W cells is skipped silently and, like the header, lands in failed."""
        text = "Part\tLength\tWidth\tQty\nSide\t720\t560\t2\nSpacer\t\t\t\nTop\t600\t560\t1\n"
        result = run(smart_parse(text, provider=stub_provider))
        stats = result.stats
        assert stats.total_lines == 4
        assert stats.parsed_deterministic == 2
        assert stats.parsed_regex == 0
        assert stats.parsed_llm == 0
        assert stats.valid_count == 2
        assert stats.failed == 2
        assert result.layers_used == ["deterministic"]
        # the skipped row is not residue, so nothing is left for the LLM
        assert stub_provider.calls == []

    @pytest.mark.parametrize("fixture", ["tab_table", "csv_table", "mixed_input", "free_form_lines"])
    def test_parts_are_well_formed(self, fixture, request):
        for part in run(fast_parse(request.getfixturevalue(fixture))).parts:
            assert part.size.L > 0 and part.size.W > 0
            assert part.qty >= 1
            assert part.thickness_mm > 0
            assert 0 <= part.audit.confidence <= 1

    def test_repeat_parse_is_identical(self, mixed_input):
        first = run(fast_parse(mixed_input))
        second = run(fast_parse(mixed_input))
        assert first.parts == second.parts
        assert first.layers_used == second.layers_used


class TestPipeline:

    def _ctx(self, **options):
        return PipelineContext(options=ParseOptions(**options), detected_format="free_form", strategy="llm")

    def test_stage_exception_passes_residue_through(self):
        tracker.reset()

        def broken(residue, ctx):
            raise ValueError("kaboom")

        stages = (("deterministic", broken), ("regex", regex_stage))
        result = run(run_pipeline(Residue(("Side 720x560 qty 2",)), self._ctx(), stages))
        assert result.warnings == ["Deterministic parsing error: kaboom"]
        assert result.counts == {"deterministic": 0, "regex": 1}
        assert result.layers_used == ["regex"]
        assert tracker.get_metrics()["error_count_by_layer"] == {"deterministic": 1}

    def test_done_stops_the_cascade(self):
        calls = []

        def finishing(residue, ctx):
            calls.append("first")
            return StageOutput(parts=[], residue=Residue(("left over",)), done=True)

        def never(residue, ctx):
            calls.append("second")
            return StageOutput(parts=[], residue=residue)

        result = run(run_pipeline(Residue(("x",)), self._ctx(), (("deterministic", finishing), ("regex", never))))
        assert calls == ["first"]
        assert result.residue.lines == ("left over",)

    def test_async_stage_awaited(self):
        async def async_stage(residue, ctx):
            return StageOutput(parts=[], residue=Residue())

        result = run(run_pipeline(Residue(("x",)), self._ctx(), (("llm", async_stage),)))
        assert not result.residue

    def test_residue_from_text_drops_blank_lines(self):
        residue = Residue.from_text("a\n\n  \nb\n")
        assert residue.lines == ("a", "b")
        assert residue.text == "a\nb"
        assert len(residue) == 2


class TestBounds:

    def test_line_limit(self, monkeypatch):
        monkeypatch.setattr(cfg, "MAX_INPUT_LINES", 2)
        text = "".join(f"Part{i} 720x560 qty 1\n" for i in range(5))
        result = run(fast_parse(text))
        assert "Input truncated to 2 lines" in result.warnings
        assert result.stats.total_lines == 2
        assert len(result.parts) == 2


class TestTracking:

    def test_parse_recorded(self, tab_table):
        tracker.reset()
        run(fast_parse(tab_table))
        metrics = tracker.get_metrics()
        assert metrics["parses_processed"] == 1
        assert metrics["parts_by_layer"]["deterministic"] == 3
        assert metrics["parses_by_format"] == {"excel": 1}
