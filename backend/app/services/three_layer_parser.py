"""
Three-layer cutlist parser.

Cascade of decreasing-cost, increasing-power strategies:

    1. Deterministic  - header-driven column parsing of tables
    2. Regex          - line patterns for semi-structured text
    3. LLM            - external model for whatever is left (opt-in)

Each stage is a function ``(residue, context) -> StageOutput`` that consumes
the lines the previous stage could not read and hands on its own failures.
``run_pipeline`` drives the stages in order; a stage exception is downgraded
to a warning and the residue passes through untouched.
"""
import inspect
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Literal, Optional, Sequence, Tuple, Union

from app.models.cutlist_schema import (
    CutPart,
    LayerName,
    ParseOptions,
    ParseStats,
    ParsingStrategy,
    ThreeLayerParseResult,
)
from app.services import parser_config as cfg
from app.services.deterministic_parser import can_parse_deterministically, parse_deterministic
from app.services.format_detector import detect_format, get_parsing_strategy
from app.services.llm_parser import LLMProvider, get_default_provider
from app.services.parser_mode import ParserModeAnalysis, analyze_text_for_parser_mode
from app.services.perf_monitor import timed_async, tracker
from app.services.text_parser import parse_text_batch

logger = logging.getLogger("cutlist-parser")

LLM_NOT_CONFIGURED = "LLM provider not configured - skipping AI parsing layer"

_LAYER_LABELS: Dict[str, str] = {
    "deterministic": "Deterministic",
    "regex": "Regex",
    "llm": "LLM",
}


# ── Pipeline types ────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Residue:
    """Lines no stage has turned into parts yet."""
    lines: Tuple[str, ...] = ()
    # rejected rows of a delimited table; each line is one record, not ";"/"|" segments
    table_rows: bool = False

    @classmethod
    def from_text(cls, text: str) -> "Residue":
        return cls(tuple(line for line in text.split("\n") if line.strip()))

    @property
    def text(self) -> str:
        return "\n".join(self.lines)

    def __bool__(self) -> bool:
        return bool(self.lines)

    def __len__(self) -> int:
        return len(self.lines)


@dataclass(frozen=True)
class PipelineContext:
    options: ParseOptions
    detected_format: str
    strategy: ParsingStrategy
    provider: Optional[LLMProvider] = None


@dataclass
class StageOutput:
    parts: List[CutPart]
    residue: Residue
    warnings: List[str] = field(default_factory=list)
    # set when the stage read the input cleanly enough that later stages are not needed
    done: bool = False


StageResult = Union[StageOutput, Awaitable[StageOutput]]
Stage = Tuple[LayerName, Callable[[Residue, PipelineContext], StageResult]]


# ── Stages ────────────────────────────────────────────────────────────────────

def deterministic_stage(residue: Residue, ctx: PipelineContext) -> StageOutput:
    """
    Parse the residue as a table when the format routes here or the text has a
    length + width header. Without parts the residue passes through whole.
    """
    text = residue.text
    if ctx.strategy != "deterministic" and not can_parse_deterministically(text):
        return StageOutput(parts=[], residue=residue)

    result = parse_deterministic(
        text,
        format=ctx.detected_format,
        default_material_id=ctx.options.default_material_id,
        default_thickness_mm=ctx.options.default_thickness_mm,
    )
    if not result.parts:
        return StageOutput(parts=[], residue=residue)

    failed = Residue(tuple(row.line for row in result.failed_rows), table_rows=True)
    logger.debug(
        f"Deterministic layer: {len(result.parts)} parts, {len(failed)} failed rows, "
        f"confidence={result.confidence:.2f}"
    )
    return StageOutput(parts=result.parts, residue=failed, done=result.skip_other_layers)


def regex_stage(residue: Residue, ctx: PipelineContext) -> StageOutput:
    """Line patterns over the residue; header and separator lines are dropped, not forwarded."""
    if not residue:
        return StageOutput(parts=[], residue=residue)

    batch = parse_text_batch(
        residue.text,
        ctx.options,
        source_method="paste_parser",
        split_segments=not residue.table_rows,
    )
    failed = Residue(tuple(batch.failed_lines))
    logger.debug(f"Regex layer: {batch.total_parsed} parts, {len(failed)} lines left")
    return StageOutput(parts=batch.parts, residue=failed)


async def llm_stage(residue: Residue, ctx: PipelineContext) -> StageOutput:
    """
    Hand the residue to the LLM provider when enabled; an unconfigured provider is a warning.

    The stage trusts ``use_llm_fallback`` as given. Callers that want the
    parser-mode recommendation to decide whether LLM calls are worth making
    go through ``auto_parse``.
    """
    if not ctx.options.use_llm_fallback or not residue:
        return StageOutput(parts=[], residue=residue)

    provider = ctx.provider or get_default_provider()
    if not provider.is_configured():
        return StageOutput(parts=[], residue=residue, warnings=[LLM_NOT_CONFIGURED])

    result = await provider.parse_text(residue.text, ctx.options)
    if result.success and result.parts:
        logger.debug(f"LLM layer: {len(result.parts)} parts in {result.processing_time_ms}ms")
        return StageOutput(parts=[p.part for p in result.parts], residue=Residue())

    reason = "; ".join(result.errors) or "no parts returned"
    logger.warning(f"LLM layer returned no parts: {reason}")
    return StageOutput(parts=[], residue=residue, warnings=[f"LLM parsing error: {reason}"])


DEFAULT_STAGES: Sequence[Stage] = (
    ("deterministic", deterministic_stage),
    ("regex", regex_stage),
    ("llm", llm_stage),
)


@dataclass
class PipelineRun:
    parts: List[CutPart] = field(default_factory=list)
    counts: Dict[str, int] = field(default_factory=dict)
    layers_used: List[LayerName] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    residue: Residue = field(default_factory=Residue)


async def run_pipeline(
    residue: Residue,
    ctx: PipelineContext,
    stages: Sequence[Stage] = DEFAULT_STAGES,
) -> PipelineRun:
    """Run ``stages`` in order over a shrinking residue."""
    run = PipelineRun(counts={name: 0 for name, _ in stages}, residue=residue)

    for name, stage in stages:
        try:
            output = stage(run.residue, ctx)
            if inspect.isawaitable(output):
                output = await output
        except Exception as e:
            message = f"{_LAYER_LABELS.get(name, name)} parsing error: {e}"
            logger.warning(message)
            tracker.record_layer_error(name)
            run.warnings.append(message)
            continue

        run.warnings.extend(output.warnings)
        if output.parts:
            run.parts.extend(output.parts)
            run.counts[name] += len(output.parts)
            run.layers_used.append(name)
        run.residue = output.residue
        if output.done:
            break

    return run


# ── Entry points ──────────────────────────────────────────────────────────────

def _bound_input(text: str) -> Tuple[str, Optional[str]]:
    """Truncate to MAX_INPUT_CHARS then MAX_INPUT_LINES non-blank lines."""
    truncated = False
    if len(text) > cfg.MAX_INPUT_CHARS:
        text = text[:cfg.MAX_INPUT_CHARS]
        truncated = True
    lines = [line for line in text.split("\n") if line.strip()]
    if len(lines) > cfg.MAX_INPUT_LINES:
        lines = lines[:cfg.MAX_INPUT_LINES]
        truncated = True
    if not truncated:
        return text, None
    return "\n".join(lines), f"Input truncated to {len(lines)} lines"


def _average_confidence(parts: List[CutPart]) -> float:
    if not parts:
        return 0.0
    total = 0.0
    for part in parts:
        confidence = part.audit.confidence if part.audit else None
        total += cfg.UNSET_PART_CONFIDENCE if confidence is None else confidence
    return total / len(parts)


@timed_async
async def parse_three_layers(
    text: str,
    options: Optional[ParseOptions] = None,
    provider: Optional[LLMProvider] = None,
) -> ThreeLayerParseResult:
    """
    Parse cutlist text with the three-layer cascade.

    Never raises for content problems: empty input returns a result with
    ``errors == ["Empty input"]``, layer failures become warnings.
    """
    options = options or ParseOptions()
    start = time.perf_counter()

    trimmed = text.strip()
    if not trimmed:
        return ThreeLayerParseResult(errors=["Empty input"])

    trimmed, truncation_warning = _bound_input(trimmed)
    warnings: List[str] = [truncation_warning] if truncation_warning else []

    detection = detect_format(trimmed)
    fmt = options.format_hint or detection.format
    ctx = PipelineContext(
        options=options,
        detected_format=fmt,
        strategy=get_parsing_strategy(fmt),
        provider=provider,
    )
    residue = Residue.from_text(trimmed)
    total_lines = len(residue)

    run = await run_pipeline(residue, ctx)
    warnings.extend(run.warnings)

    parse_time_ms = round((time.perf_counter() - start) * 1000, 2)
    valid_count = len(run.parts)
    stats = ParseStats(
        total_lines=total_lines,
        parsed_deterministic=run.counts.get("deterministic", 0),
        parsed_regex=run.counts.get("regex", 0),
        parsed_llm=run.counts.get("llm", 0),
        failed=max(0, total_lines - valid_count),
        valid_count=valid_count,
        parse_time_ms=parse_time_ms,
    )

    tracker.record_parse(fmt, run.counts, parse_time_ms)
    logger.info(
        f"Parsed {valid_count} parts from {total_lines} lines",
        extra={
            "detected_format": fmt,
            "layers_used": list(run.layers_used),
            "duration_ms": parse_time_ms,
        },
    )

    return ThreeLayerParseResult(
        parts=run.parts,
        stats=stats,
        detected_format=fmt,
        layers_used=run.layers_used,
        average_confidence=_average_confidence(run.parts),
        warnings=warnings,
    )


async def smart_parse(
    text: str,
    options: Optional[ParseOptions] = None,
    provider: Optional[LLMProvider] = None,
) -> ThreeLayerParseResult:
    """All layers, LLM fallback on."""
    options = (options or ParseOptions()).model_copy(update={"use_llm_fallback": True})
    return await parse_three_layers(text, options, provider=provider)


async def fast_parse(text: str, options: Optional[ParseOptions] = None) -> ThreeLayerParseResult:
    """Deterministic and regex layers only."""
    options = (options or ParseOptions()).model_copy(update={"use_llm_fallback": False})
    return await parse_three_layers(text, options)


def choose_parse_mode(text: str) -> Tuple[Literal["smart", "fast"], ParserModeAnalysis]:
    """Smart (LLM on) when the parser-mode recommendation is AI, fast otherwise."""
    analysis = analyze_text_for_parser_mode(text)
    return ("smart" if analysis.recommended == "ai" else "fast"), analysis


async def auto_parse(
    text: str,
    options: Optional[ParseOptions] = None,
    provider: Optional[LLMProvider] = None,
) -> ThreeLayerParseResult:
    """Consult the parser-mode recommendation before committing to LLM calls."""
    mode, analysis = choose_parse_mode(text)
    logger.debug(f"auto mode: {mode} ({analysis.recommended}, confidence={analysis.confidence:.2f})")
    if mode == "smart":
        return await smart_parse(text, options, provider=provider)
    return await fast_parse(text, options)
