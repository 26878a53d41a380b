"""
Receipts Router

POST /api/receipts/parse     — extract a receipt from an image, reconcile and validate it
POST /api/receipts/validate  — reconcile and validate an already-extracted receipt
"""
import logging

from fastapi import APIRouter, HTTPException
from pydantic import ValidationError

from models.schemas import ParseRequest, Receipt, ValidatedReceipt
from services.receipt_calculator import calculate_discrepancy
from services.receipt_validator import validate
from services.vision_service import (
    InvalidImageError,
    UnknownModelError,
    VisionExtractionError,
    VisionNotConfiguredError,
    parse_receipt_image,
)

logger = logging.getLogger("receiptcheck.receipts")
router = APIRouter()


def reconcile(receipt: Receipt) -> dict:
    """Annotate the receipt with its discrepancy, then merge in the validation result."""
    record = calculate_discrepancy(receipt.to_record())
    result = validate(record)
    if not result.valid or result.confidence_score < 0.5:
        logger.info("Receipt flagged: valid=%s confidence=%.2f issues=%s",
                    result.valid, result.confidence_score,
                    ", ".join(issue.type.value for issue in result.issues))
    return {**record, "validation": result.model_dump(mode="json")}


# ── Parse (image → receipt) ───────────────────────────────────────────────────

@router.post("/parse", response_model=ValidatedReceipt, response_model_exclude_none=True)
async def parse_receipt(body: ParseRequest):
    """
    Send the image to the vision model, check its output against the receipt
    schema, then run the calculator and validator over it.
    """
    try:
        data = await parse_receipt_image(body.image, body.model)
    except (InvalidImageError, UnknownModelError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except VisionNotConfiguredError as e:
        raise HTTPException(status_code=503, detail=f"Vision model not configured: {e}")
    except VisionExtractionError as e:
        raise HTTPException(status_code=502, detail=f"Failed to parse receipt: {e}")

    try:
        receipt = Receipt.model_validate(data)
    except ValidationError as e:
        logger.warning("Model output failed schema validation (%d errors)", e.error_count())
        raise HTTPException(
            status_code=422,
            detail=f"Model output does not match the receipt schema ({e.error_count()} errors)",
        )

    return reconcile(receipt)


# ── Validate (receipt → receipt + validation) ─────────────────────────────────

@router.post("/validate", response_model=ValidatedReceipt, response_model_exclude_none=True)
async def validate_receipt(receipt: Receipt):
    """Run the calculator and validator over a receipt record supplied by the client."""
    return reconcile(receipt)
