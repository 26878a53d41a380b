from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import RedirectResponse
import logging
import os
import time

from routers import receipts, vision
from services import receipt_validator, vision_service

VERSION = "0.1.0"

# ── Logging setup ─────────────────────────────────────────────────────────────
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
# Quiet noisy libraries unless we're in DEBUG
if LOG_LEVEL != "DEBUG":
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("anthropic").setLevel(logging.WARNING)

logger = logging.getLogger("receiptcheck")

app = FastAPI(
    title="Receipt Check",
    description="Receipt extraction with arithmetic reconciliation and consistency scoring",
    version=VERSION,
)

_cors_origins = os.environ.get("CORS_ORIGINS", "").strip()
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins.split(",") if _cors_origins else ["*"],
    allow_credentials=bool(_cors_origins),  # only send credentials when origins are explicit
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(receipts.router, prefix="/api/receipts", tags=["receipts"])
app.include_router(vision.router,   prefix="/api/models",   tags=["models"])


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.time()
    response = await call_next(request)
    elapsed = (time.time() - start) * 1000
    if LOG_LEVEL == "DEBUG" or response.status_code >= 400:
        logger.log(
            logging.WARNING if response.status_code >= 400 else logging.DEBUG,
            "%s %s → %s (%.0fms)",
            request.method, request.url.path, response.status_code, elapsed,
        )
    return response

@app.on_event("startup")
async def on_startup():
    logger.info("Starting Receipt Check v%s  LOG_LEVEL=%s  MODEL=%s  TOTAL_FLOOR=%g",
                VERSION, LOG_LEVEL, vision_service.DEFAULT_MODEL, receipt_validator.TOTAL_FLOOR)

@app.get("/", include_in_schema=False)
async def root():
    return RedirectResponse(url="/docs")

@app.get("/api/health")
async def health():
    return {"status": "ok", "version": VERSION}


@app.get("/api/diagnose")
async def diagnose():
    """Report whether the vision model can be reached with the current configuration."""
    results = {}

    # Anthropic key: report presence only, never key material
    key = os.environ.get("ANTHROPIC_API_KEY", "")
    results["anthropic_key"] = {
        "ok": bool(key and key.startswith("sk-")),
        "set": bool(key),
    }

    known = {m.id for m in vision_service.AVAILABLE_MODELS}
    results["default_model"] = {
        "ok": vision_service.DEFAULT_MODEL in known,
        "model": vision_service.DEFAULT_MODEL,
    }

    results["validator"] = {
        "ok": receipt_validator.TOTAL_FLOOR >= 0,
        "total_floor": receipt_validator.TOTAL_FLOOR,
        "rules": len(receipt_validator.RULES),
    }

    return {"all_ok": all(v.get("ok") for v in results.values()), "checks": results}
