"""
Bills Router

POST /api/bills/parse   — parse already-recognised receipt text
POST /api/bills/scan    — upload a bill photo, run OCR, parse and hand off items
"""
import logging
import os

from fastapi import APIRouter, File, UploadFile, HTTPException, Request
from fastapi.concurrency import run_in_threadpool

from models.schemas import ParseTextRequest, ParseResult, ScanResult
from services.ocr_service import OCRError
from services.receipt_parser import parse_receipt_text
from services.draft_service import ingest_draft, verify_total

logger = logging.getLogger("billscan.bills")
router = APIRouter()

MAX_UPLOAD_MB = float(os.environ.get("MAX_UPLOAD_MB", "10"))


# ── Parse text ────────────────────────────────────────────────────────────────

@router.post("/parse", response_model=ParseResult)
async def parse_text(body: ParseTextRequest):
    """Parse OCR text into items + tax/subtotal/total.  Never fails on odd input."""
    draft = parse_receipt_text(body.text)
    return ParseResult(**draft.to_dict())


# ── Scan image ────────────────────────────────────────────────────────────────

@router.post("/scan", response_model=ScanResult)
async def scan_bill(request: Request, file: UploadFile = File(...)):
    """
    Accept a bill photo, OCR it, parse the text and return a ready-to-edit item list.
    A scan that finds no items is still a 200; the client falls back to manual entry.
    """
    # Read one byte past the limit; that is enough to tell an oversized upload
    limit = int(MAX_UPLOAD_MB * 1024 * 1024)
    contents = await file.read(limit + 1)
    if not contents:
        raise HTTPException(status_code=400, detail="Empty upload")
    if len(contents) > limit:
        raise HTTPException(status_code=413, detail=f"Image larger than {MAX_UPLOAD_MB:g} MB")

    engine = getattr(request.app.state, "ocr_engine", None)
    if engine is None or not engine.available:
        raise HTTPException(status_code=503, detail="OCR engine unavailable, is tesseract installed?")

    try:
        ocr = await run_in_threadpool(engine.recognize, contents)
    except OCRError as e:
        logger.warning("OCR failed for %s: %s", file.filename, e)
        raise HTTPException(status_code=422, detail=f"OCR failed: {e}")

    draft = parse_receipt_text(ocr.text)
    items, tax = ingest_draft(draft)
    verified, verify_msg = verify_total(draft)

    logger.info("Scanned %s: %d items, confidence %.2f, verified=%s",
                file.filename, len(items), ocr.confidence, verified)
    if not items:
        logger.info("No items recognised in %s, manual entry needed", file.filename)

    return ScanResult(
        ocr_text=ocr.text,
        ocr_confidence=ocr.confidence,
        items=items,
        tax=tax,
        subtotal=draft.subtotal,
        total=draft.total,
        total_verified=verified,
        verification_message=verify_msg,
    )
