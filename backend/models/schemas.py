from pydantic import BaseModel, Field
from typing import Optional, List

from models.enums import IssueType, PaymentMethodKind, Severity, SpendCategory


# ── Receipt record ─────────────────────────────────────
# Every field is optional so a partial extraction still reaches the
# calculator and validator; those guard each field they read.

class ReceiptHeader(BaseModel):
    receipt_number: Optional[str] = None
    timestamp: Optional[str] = Field(None, description="Receipt timestamp (RFC3339)")
    store_name: Optional[str] = None
    store_address: Optional[str] = None

    class Config:
        extra = "allow"

class ReceiptItem(BaseModel):
    description: Optional[str] = None
    quantity: Optional[float] = None
    unit_price: Optional[float] = None
    total_price: Optional[float] = None
    tax: Optional[float] = None

    class Config:
        extra = "allow"

class PaymentMethod(BaseModel):
    method: Optional[PaymentMethodKind] = None
    amount: Optional[float] = None
    card_four_digit: Optional[str] = Field(
        None, description="Last or first four digits of the card number (if applicable)"
    )

    class Config:
        extra = "allow"

class Payment(BaseModel):
    total_amount: Optional[float] = None
    currency: Optional[str] = Field("IDR", description="Currency code, defaults to IDR")
    payment_methods: Optional[List[PaymentMethod]] = None
    taxes: Optional[float] = None
    discounts: Optional[float] = None

    class Config:
        extra = "allow"

class OtherCharge(BaseModel):
    description: Optional[str] = None
    amount: Optional[float] = None

class ReceiptSummary(BaseModel):
    subtotal: Optional[float] = None
    taxes: Optional[float] = None
    total: Optional[float] = None
    discounts: Optional[float] = None
    service_charge: Optional[float] = None
    other_charges: Optional[List[OtherCharge]] = None
    discrepancy: Optional[float] = Field(
        None,
        description="Difference between stated total and expected total "
                    "(line items + tax + charges - discount)",
    )
    service_charge_included: Optional[bool] = None

    class Config:
        extra = "allow"

class Receipt(BaseModel):
    is_receipt: Optional[bool] = Field(None, description="Indicates if the document is a receipt")
    header: Optional[ReceiptHeader] = None
    category: Optional[SpendCategory] = None
    items: Optional[List[ReceiptItem]] = None
    payment: Optional[Payment] = None
    summary: Optional[ReceiptSummary] = None
    notes: Optional[str] = None
    schema_version: Optional[str] = None

    class Config:
        extra = "allow"

    def to_record(self) -> dict:
        """Plain JSON-compatible dict, the shape the calculator and validator work on."""
        return self.model_dump(mode="json", exclude_none=True)


# ── Validation ─────────────────────────────────────────
class ValidationIssue(BaseModel):
    type: IssueType
    message: str
    severity: Severity

class ValidationResult(BaseModel):
    valid: bool
    issues: List[ValidationIssue]
    confidence_score: float = Field(ge=0, le=1)


# ── API ────────────────────────────────────────────────
class ParseRequest(BaseModel):
    image: str = Field(description="Base64 encoded image data URL (data:image/...;base64,...)")
    model: Optional[str] = Field(None, description="Model ID to use for parsing (optional)")

class VisionModel(BaseModel):
    id: str
    name: str
    provider: str

class ValidatedReceipt(Receipt):
    """Annotated receipt returned by the API with its validation result merged in."""
    validation: ValidationResult
