from pydantic import BaseModel, Field
from typing import Literal, Optional, List


TaxKind = Literal["percentage", "absolute"]


# ── Parse ──────────────────────────────────────────────
class ParseTextRequest(BaseModel):
    text: str = ""

class ParsedItem(BaseModel):
    name: str
    quantity: int = 1
    unit_price: float
    confidence: Optional[float] = None

class ParsedTax(BaseModel):
    kind: TaxKind
    value: float           # percent when kind == "percentage", otherwise the amount
    amount: float          # tax amount as printed on the receipt

class ParseResult(BaseModel):
    items: List[ParsedItem] = []
    tax: Optional[ParsedTax] = None
    subtotal: Optional[float] = None
    total: Optional[float] = None


# ── Working bill (after hand-off) ──────────────────────
class BillItem(BaseModel):
    id: str
    name: str
    quantity: int = 1
    unit_price: float
    assigned_to: List[str] = Field(default_factory=list)   # person ids
    confidence: Optional[float] = None

class BillTax(BaseModel):
    kind: TaxKind
    value: float
    parsed: bool = False   # True = detected by OCR, False = user-entered


# ── Scan / Processing ──────────────────────────────────
class ScanResult(BaseModel):
    ocr_text: str
    ocr_confidence: float
    items: List[BillItem]
    tax: Optional[BillTax] = None
    subtotal: Optional[float] = None
    total: Optional[float] = None
    total_verified: bool
    verification_message: str
