"""
Cutlist parse routes.

POST /api/v1/parse         - three-layer parse (smart, fast or auto mode)
POST /api/v1/parse/detect  - format detection + parser-mode recommendation
"""
import logging
from dataclasses import asdict
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from app.models.cutlist_schema import ParseOptions
from app.services.format_detector import detect_format, get_parsing_strategy
from app.services.llm_parser import LLMProvider, get_default_provider
from app.services.parser_mode import analyze_text_for_parser_mode
from app.services.result_cache import ParseResultCache, make_cache_key
from app.services.three_layer_parser import choose_parse_mode, fast_parse, smart_parse

logger = logging.getLogger("cutlist-api")

router = APIRouter(prefix="/api/v1/parse", tags=["Parsing"])

# Shared across requests; LLM results are never stored
result_cache = ParseResultCache()

ParseMode = Literal["smart", "fast", "auto"]


class ParseRequest(BaseModel):
    text: str
    mode: ParseMode = "fast"
    options: ParseOptions = Field(default_factory=ParseOptions)


class DetectRequest(BaseModel):
    text: str


def get_llm_provider() -> LLMProvider:
    return get_default_provider()


@router.post("")
async def parse_cutlist(
    req: ParseRequest,
    request: Request,
    provider: LLMProvider = Depends(get_llm_provider),
):
    """
    Parse pasted cutlist text.

    ``auto`` asks the parser-mode heuristic first and only enables the LLM
    layer when it recommends AI. Partial results are a 200; only empty text
    is rejected.
    """
    if not req.text.strip():
        raise HTTPException(status_code=400, detail="Text is required")

    request_id: Optional[str] = getattr(request.state, "request_id", None)
    result_cache.evict_expired()

    mode = req.mode
    recommendation = None
    if mode == "auto":
        mode, recommendation = choose_parse_mode(req.text)

    key = make_cache_key(req.text, req.options, mode)
    cached = result_cache.get(key)
    if cached is not None:
        logger.debug("parse served from cache", extra={"request_id": request_id})
        result = cached
    elif mode == "smart":
        result = await smart_parse(req.text, req.options, provider=provider)
    else:
        result = await fast_parse(req.text, req.options)
    if cached is None:
        result_cache.set(key, result)

    logger.info(
        f"parse request: mode={mode} parts={len(result.parts)}",
        extra={
            "request_id": request_id,
            "detected_format": result.detected_format,
            "layers_used": list(result.layers_used),
        },
    )
    return {
        "mode": mode,
        "cached": cached is not None,
        "recommendation": asdict(recommendation) if recommendation else None,
        "result": result.model_dump(by_alias=True, exclude_none=True),
    }


@router.post("/detect")
async def detect_cutlist_format(req: DetectRequest):
    """Format hint, parsing strategy and parser-mode analysis without parsing."""
    if not req.text.strip():
        raise HTTPException(status_code=400, detail="Text is required")

    detection = detect_format(req.text)
    analysis = analyze_text_for_parser_mode(req.text)
    return {
        "detection": detection.model_dump(by_alias=True, exclude_none=True),
        "strategy": get_parsing_strategy(detection.format),
        "parserMode": asdict(analysis),
    }
