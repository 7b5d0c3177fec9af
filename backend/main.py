from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
import logging
import os
import time

from routers import bills
from services.ocr_service import OcrEngine, OCRError, is_tesseract_available

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
    logging.getLogger("PIL").setLevel(logging.WARNING)

logger = logging.getLogger("billscan")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting Bill Scan v%s  LOG_LEVEL=%s", VERSION, LOG_LEVEL)
    engine = OcrEngine.from_env()
    try:
        engine.start()
    except OCRError as e:
        # Text parsing still works without OCR; /scan answers 503
        logger.warning("OCR disabled: %s", e)
    app.state.ocr_engine = engine
    try:
        yield
    finally:
        engine.close()


app = FastAPI(
    title="Bill Scan — Receipt to Items",
    description="Turns a photographed bill into editable line items, tax and totals",
    version=VERSION,
    lifespan=lifespan,
)

_cors_origins = os.environ.get("CORS_ORIGINS", "").strip()
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins.split(",") if _cors_origins else ["*"],
    allow_credentials=bool(_cors_origins),  # only send credentials when origins are explicit
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(bills.router, prefix="/api/bills", tags=["bills"])


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


@app.get("/api/health")
async def health():
    return {"status": "ok", "version": VERSION}


@app.get("/api/diagnose")
async def diagnose(request: Request):
    """Check that the OCR dependencies are working."""
    results = {}

    engine = getattr(request.app.state, "ocr_engine", None)
    results["tesseract"] = {
        "ok": is_tesseract_available(engine.tesseract_cmd if engine else None),
        "version": engine.version if engine else None,
    }

    try:
        import pytesseract
        results["pytesseract"] = {"ok": True, "version": getattr(pytesseract, "__version__", None)}
    except ImportError as e:
        results["pytesseract"] = {"ok": False, "error": str(e)}

    try:
        import PIL
        results["pillow"] = {"ok": True, "version": PIL.__version__}
    except ImportError as e:
        results["pillow"] = {"ok": False, "error": str(e)}

    results["ocr_engine"] = {
        "ok": bool(engine and engine.available),
        "lang": engine.lang if engine else None,
        "psm": engine.psm if engine else None,
    }

    return {"all_ok": all(v.get("ok") for v in results.values()), "checks": results}
