"""
Cutlist Intake API v1.0
FastAPI service around the three-layer cutlist parser:
deterministic columns → regex lines → LLM fallback (Groq primary, Gemini fallback).
"""
import os
import logging
import sys
import time
from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from app.services import parser_config as cfg
from app.services.llm_client import is_model_configured
from app.services.logging_config import setup_logging
from app.services.middleware import RequestTimingMiddleware
from app.services.perf_monitor import tracker as perf_tracker

# Load .env file automatically in dev (no-op if the file is missing)
load_dotenv()

_log_level = os.getenv("LOG_LEVEL", "INFO")
_json_logs = os.getenv("LOG_FORMAT", "json").lower() != "text"
setup_logging(level=_log_level, json_output=_json_logs)
logger = logging.getLogger("cutlist-api")

# Record process start time for uptime calculation
_PROCESS_START = time.monotonic()

if not (is_model_configured(cfg.LLM_PRIMARY_MODEL) or is_model_configured(cfg.LLM_FALLBACK_MODEL)):
    logger.info("No LLM API key set - smart parsing will skip the AI layer")


app = FastAPI(
    title="Cutlist Intake API",
    version="1.0.0",
    description="Three-layer parsing of pasted cutlists into canonical parts",
)

# ---------------------------------------------------------------------------
# CORS - restricted to allowed origins from env
# ---------------------------------------------------------------------------
_cors_default = "http://localhost:3000,http://localhost:8000"
cors_origins = [o.strip() for o in os.getenv("CORS_ORIGINS", _cors_default).split(",") if o.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "Accept", "X-Requested-With", "X-Request-ID"],
)
# Request timing + X-Request-ID must be outermost so it wraps all other middleware
app.add_middleware(RequestTimingMiddleware)

# Routers
from app.api.parse_routes import router as parse_router

app.include_router(parse_router)


@app.get("/health")
async def health_check():
    return {
        "status": "active",
        "version": "1.0.0",
        "llm_primary": cfg.LLM_PRIMARY_MODEL,
        "llm_configured": is_model_configured(cfg.LLM_PRIMARY_MODEL) or is_model_configured(cfg.LLM_FALLBACK_MODEL),
    }


@app.get("/metrics")
async def metrics():
    """
    Performance metrics endpoint.

    Parse throughput, average duration, parts per layer and layer error
    counts from the in-process ParseTracker singleton, plus process memory.
    """
    uptime_seconds = round(time.monotonic() - _PROCESS_START, 1)

    memory_mb: float = 0.0
    try:
        import resource  # Unix only
        usage = resource.getrusage(resource.RUSAGE_SELF)
        # ru_maxrss is in kilobytes on Linux, bytes on macOS
        if sys.platform == "darwin":
            memory_mb = round(usage.ru_maxrss / (1024 * 1024), 2)
        else:
            memory_mb = round(usage.ru_maxrss / 1024, 2)
    except ImportError:
        memory_mb = 0.0

    snapshot = perf_tracker.get_metrics()

    return {
        "uptime_seconds": uptime_seconds,
        "memory_usage_mb": memory_mb,
        **snapshot,
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("app.main:app", host="0.0.0.0", port=8000, reload=True)
