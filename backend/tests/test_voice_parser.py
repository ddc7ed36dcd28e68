"""
test_voice_parser.py — Dictated cutlist entries.

Tests cover:
  - Number-word dimensions around each connector
  - Quantity phrases and trailing number words
  - Longer side becomes L
  - Grain, material and thickness words
  - Streaming buffer behaviour
"""

import pytest

from app.models.cutlist_schema import ParseOptions
from app.services.voice_parser import (
    VoiceParserStream,
    locate_spoken_dimensions,
    parse_spoken_quantity,
    parse_voice_input,
)


class TestSpokenDimensions:

    def test_number_words(self):
        length, width, _, _ = locate_spoken_dimensions("side panel seven twenty by five sixty quantity two")
        assert (length, width) == (720, 560)

    def test_digit_runs_do_not_absorb_words(self):
        length, width, _, end = locate_spoken_dimensions("top shelf 800 by 400 three pieces")
        assert (length, width) == (800, 400)
        assert end == 5

    @pytest.mark.parametrize("text", [
        "seven twenty x five sixty",
        "seven twenty times five sixty",
        "seven twenty cross five sixty",
        "seven twenty multiplied by five sixty",
        "720x560",
    ])
    def test_connectors(self, text):
        length, width, _, _ = locate_spoken_dimensions(text)
        assert (length, width) == (720, 560)

    def test_longer_side_is_length(self):
        length, width, _, _ = locate_spoken_dimensions("three hundred by six hundred")
        assert (length, width) == (600, 300)

    def test_bare_number_pair(self):
        length, width, _, _ = locate_spoken_dimensions("dimensions 560 720")
        assert (length, width) == (720, 560)

    def test_nothing_to_read(self):
        assert locate_spoken_dimensions("hello world") is None

    def test_pair_read_through_shared_utility(self):
        from app.services import parser_utils, voice_parser
        assert voice_parser.parse_spoken_dimensions is parser_utils.parse_spoken_dimensions


class TestSpokenQuantity:

    @pytest.mark.parametrize("text,expected", [
        ("quantity two", 2),
        ("qty of 4", 4),
        ("6 pieces", 6),
        ("need 3", 3),
        ("three pieces", 3),
        ("times 5", 5),
    ])
    def test_phrases(self, text, expected):
        assert parse_spoken_quantity(text) == expected

    def test_no_quantity(self):
        assert parse_spoken_quantity("grain length") is None


class TestParseVoiceInput:

    def test_full_sentence(self):
        result = parse_voice_input("Side panel seven twenty by five sixty quantity two")
        part = result.part
        assert part.label == "Side panel"
        assert (part.size.L, part.size.W) == (720, 560)
        assert part.qty == 2
        assert part.audit.source_method == "voice"
        assert result.confidence == pytest.approx(1.0)
        assert result.warnings == []

    def test_pieces_after_digits(self):
        part = parse_voice_input("Top shelf 800 by 400 three pieces").part
        assert part.label == "Top shelf"
        assert (part.size.L, part.size.W, part.qty) == (800, 400, 3)

    def test_grain_locks_rotation(self):
        result = parse_voice_input("Drawer front 450 x 200 grain length")
        assert result.part.grain == "along_L"
        assert result.part.allow_rotation is False
        assert "No quantity detected, defaulting to 1" in result.warnings
        assert result.confidence == pytest.approx(0.9)

    def test_explicit_one_is_not_a_warning(self):
        result = parse_voice_input("one back panel 700 by 500")
        assert result.part.qty == 1
        assert result.warnings == []

    def test_material_and_thickness(self):
        part = parse_voice_input("white shelf 600 by 300 16mm quantity 2").part
        assert part.material_id == "white-melamine"
        assert part.thickness_mm == 16
        assert part.qty == 2

    def test_default_material_option(self):
        part = parse_voice_input("shelf 600 by 300", ParseOptions(default_material_id="carcass")).part
        assert part.material_id == "carcass"

    def test_unreadable(self):
        result = parse_voice_input("um let me think")
        assert result.part is None
        assert result.errors == ["Could not understand dimensions"]


class TestVoiceParserStream:

    def test_final_transcript_emits_part(self):
        emitted = []
        stream = VoiceParserStream(emitted.append)
        stream.add_transcript("side panel seven twenty")
        assert emitted == []
        stream.add_transcript("by five sixty quantity two", is_final=True)
        assert len(emitted) == 1
        assert emitted[0].part.qty == 2
        assert stream.buffer == ""

    def test_failed_parse_keeps_buffer(self):
        emitted = []
        stream = VoiceParserStream(emitted.append)
        stream.add_transcript("side panel", is_final=True)
        assert emitted == []
        result = stream.flush()
        assert result.part is None
        assert stream.buffer == ""
        assert stream.flush() is None

    def test_clear(self):
        stream = VoiceParserStream(lambda result: None)
        stream.add_transcript("side panel")
        stream.clear()
        assert stream.buffer == ""
